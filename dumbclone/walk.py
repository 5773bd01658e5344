# walk.py -- Recovering the object graph reachable from a commit
# Copyright (C) 2025 Dumbclone contributors
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# Dumbclone is dual-licensed under the Apache License, Version 2.0 and the GNU
# General Public License as published by the Free Software Foundation; version 2.0
# or (at your option) any later version. You can redistribute it and/or
# modify it under the terms of either of these two licenses.
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# You should have received a copy of the licenses; if not, see
# <http://www.gnu.org/licenses/> for a copy of the GNU General Public License
# and <http://www.apache.org/licenses/LICENSE-2.0> for a copy of the Apache
# License, Version 2.0.
#

"""Recovering the object graph reachable from a commit.

Every object goes through fetch, decode, verify and store, in that order;
commits, trees and tags are then expanded into the objects they reference.
A pool of workers consumes a shared frontier, and a single
:class:`VisitedSet` decides which worker (if any) gets to process a hash,
so every object is dispatched at most once no matter how many commits or
trees share it.

A failure only affects the object it happened to. Everything that could be
recovered is recovered, and the :class:`RecoveryReport` lists what could not
be, along with the object that referenced it.
"""

__all__ = [
    "DEFAULT_CONCURRENCY",
    "FailedObject",
    "ObjectGraphWalker",
    "ObjectState",
    "RecoveryReport",
    "VisitedSet",
]

import enum
import queue
import threading
from collections.abc import Callable, Iterable
from typing import NamedTuple, Optional

from . import log_utils
from .dumb import DumbHTTPObjectSource
from .errors import RecoveryError
from .object_format import DEFAULT_OBJECT_FORMAT, ObjectFormat
from .object_store import BaseObjectStore, WriteResult
from .objects import (
    DecodedObject,
    ObjectID,
    Tree,
    check_object_id,
    decode_object,
    decompress_object,
    valid_hexsha,
)

logger = log_utils.getLogger(__name__)

DEFAULT_CONCURRENCY = 8


class ObjectState(enum.Enum):
    """Final state of an object, as reported to progress callbacks."""

    STORED = "stored"
    PRESENT = "present"
    FAILED = "failed"
    SKIPPED_DUPLICATE = "skipped-duplicate"
    SKIPPED_SUBMODULE = "skipped-submodule"


ProgressFunc = Callable[[ObjectID, ObjectState], None]


class VisitedSet:
    """Set of hashes that have been dispatched for processing.

    :meth:`add` is an atomic test-and-insert; it is the only place that
    decides whether a hash gets processed.
    """

    def __init__(self, shas: Iterable[ObjectID] = ()) -> None:
        self._lock = threading.Lock()
        self._shas = set(shas)

    def add(self, sha: ObjectID) -> bool:
        """Add a hash.

        Returns: True if the hash was not present before, False otherwise
        """
        with self._lock:
            if sha in self._shas:
                return False
            self._shas.add(sha)
            return True

    def __contains__(self, sha: object) -> bool:
        with self._lock:
            return sha in self._shas

    def __len__(self) -> int:
        with self._lock:
            return len(self._shas)


class FailedObject(NamedTuple):
    """An object that could not be recovered."""

    sha: ObjectID
    kind: str
    error: RecoveryError
    referrer: Optional[ObjectID]


class RecoveryReport:
    """Outcome of a walk."""

    def __init__(self, start: ObjectID) -> None:
        self.start = start
        self.stored: set[ObjectID] = set()
        self.present: set[ObjectID] = set()
        self.failures: dict[ObjectID, FailedObject] = {}
        self.submodules: list[tuple[ObjectID, bytes, ObjectID]] = []
        self.duplicates = 0
        self.aborted = False
        self._lock = threading.Lock()

    def add_object(self, sha: ObjectID, state: ObjectState) -> None:
        with self._lock:
            if state is ObjectState.STORED:
                self.stored.add(sha)
            else:
                self.present.add(sha)

    def add_failure(
        self, sha: ObjectID, error: RecoveryError, referrer: Optional[ObjectID]
    ) -> None:
        with self._lock:
            self.failures[sha] = FailedObject(sha, error.kind, error, referrer)

    def add_submodule(self, sha: ObjectID, path: bytes, referrer: ObjectID) -> None:
        with self._lock:
            self.submodules.append((sha, path, referrer))

    def add_duplicate(self) -> None:
        with self._lock:
            self.duplicates += 1

    @property
    def object_count(self) -> int:
        """Number of objects now available in the local store."""
        return len(self.stored) + len(self.present)

    @property
    def complete(self) -> bool:
        """Whether every reachable object was recovered."""
        return not self.failures and not self.aborted

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} start={self.start!r} "
            f"objects={self.object_count} failures={len(self.failures)}>"
        )


class _Traversal:
    """State shared between the workers of a single walk."""

    def __init__(self, start: ObjectID) -> None:
        self.visited = VisitedSet()
        self.frontier: "queue.Queue[Optional[tuple[ObjectID, Optional[ObjectID]]]]" = (
            queue.Queue()
        )
        self.report = RecoveryReport(start)
        self.fatal: Optional[BaseException] = None
        self.lock = threading.Lock()


class ObjectGraphWalker:
    """Recovers all objects reachable from a start object into a store.

    Objects that are already in the store are read back from it instead of
    being fetched again, so a walk over an interrupted earlier run only
    fetches what is missing.
    """

    def __init__(
        self,
        source: DumbHTTPObjectSource,
        store: BaseObjectStore,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        object_format: Optional[ObjectFormat] = None,
        progress: Optional[ProgressFunc] = None,
    ) -> None:
        """Initialize an ObjectGraphWalker.

        Args:
          source: Where to fetch objects from; anything with a
            ``fetch(sha) -> bytes`` method
          store: Where to put recovered objects
          concurrency: Number of parallel workers
          object_format: Object format of the repository
          progress: Optional callback, called with (sha, ObjectState) once for
            every object that reaches a final state. It is called from
            worker threads.
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, not {concurrency}")
        self.source = source
        self.store = store
        self.concurrency = concurrency
        self.object_format = object_format or DEFAULT_OBJECT_FORMAT
        self._progress = progress
        self._abort = threading.Event()

    def abort(self) -> None:
        """Stop dispatching new objects.

        Fetches already in flight finish; everything still queued is dropped.
        Calling this before :meth:`walk` makes the next walk stop before its
        first fetch.
        """
        self._abort.set()

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def _report(self, sha: ObjectID, state: ObjectState) -> None:
        logger.debug("%s %s", sha.decode("ascii"), state.value)
        if self._progress is not None:
            self._progress(sha, state)

    def _retrieve(self, sha: ObjectID) -> tuple[bytes, bool]:
        if self.store.contains(sha):
            try:
                return self.store.get_raw(sha), False
            except KeyError:
                pass
        return self.source.fetch(sha), True

    def process_object(self, sha: ObjectID) -> tuple[DecodedObject, ObjectState]:
        """Fetch, decode, verify and store a single object.

        Args:
          sha: Hex id of the object
        Returns: Tuple with the decoded object and its final state
        Raises:
          RecoveryError: if the object can not be recovered
        """
        raw, fetched = self._retrieve(sha)
        data = decompress_object(raw)
        obj = decode_object(data, sha, self.object_format)
        check_object_id(sha, data, self.object_format)
        if fetched and self.store.put(sha, raw) is WriteResult.WRITTEN:
            return obj, ObjectState.STORED
        return obj, ObjectState.PRESENT

    def _discover(
        self, traversal: _Traversal, sha: ObjectID, referrer: Optional[ObjectID]
    ) -> None:
        if traversal.visited.add(sha):
            traversal.frontier.put((sha, referrer))
        else:
            traversal.report.add_duplicate()
            self._report(sha, ObjectState.SKIPPED_DUPLICATE)

    def _expand(self, traversal: _Traversal, obj: DecodedObject) -> None:
        assert obj.id is not None
        if isinstance(obj, Tree):
            for entry in obj.submodules():
                traversal.report.add_submodule(entry.sha, entry.path, obj.id)
                self._report(entry.sha, ObjectState.SKIPPED_SUBMODULE)
        for sha in obj.references():
            self._discover(traversal, sha, obj.id)

    def _visit(
        self, traversal: _Traversal, sha: ObjectID, referrer: Optional[ObjectID]
    ) -> None:
        try:
            try:
                obj, state = self.process_object(sha)
            except RecoveryError as exc:
                logger.warning("Unable to recover %s: %s", sha.decode("ascii"), exc)
                traversal.report.add_failure(sha, exc, referrer)
                self._report(sha, ObjectState.FAILED)
                return
            traversal.report.add_object(sha, state)
            self._report(sha, state)
            self._expand(traversal, obj)
        except Exception as exc:
            # Any other error ends the walk; the references of this object
            # were not queued.
            logger.error("Aborting after unexpected error on %s", sha.decode("ascii"))
            with traversal.lock:
                if traversal.fatal is None:
                    traversal.fatal = exc
            self.abort()

    def _worker(self, traversal: _Traversal) -> None:
        while True:
            item = traversal.frontier.get()
            try:
                if item is None:
                    return
                if self._abort.is_set():
                    continue
                self._visit(traversal, *item)
            finally:
                traversal.frontier.task_done()

    def _run(self, traversal: _Traversal) -> None:
        """Process the frontier until it is empty and all workers are idle."""
        threads = [
            threading.Thread(
                target=self._worker,
                args=(traversal,),
                name=f"dumbclone-walker-{i}",
                daemon=True,
            )
            for i in range(self.concurrency)
        ]
        for thread in threads:
            thread.start()
        try:
            try:
                traversal.frontier.join()
            except KeyboardInterrupt:
                logger.info("Interrupted; waiting for fetches in flight")
                self.abort()
                traversal.frontier.join()
                raise
        finally:
            for _ in threads:
                traversal.frontier.put(None)
            for thread in threads:
                thread.join()

    def walk(self, start: ObjectID) -> RecoveryReport:
        """Recover everything reachable from ``start``.

        Args:
          start: Hex id of the start object, usually a commit
        Returns: A RecoveryReport
        Raises:
          RecoveryError: if the start object itself can not be recovered;
            there is nothing to walk in that case
          ValueError: if ``start`` is not a valid object id
        """
        if not valid_hexsha(start, self.object_format):
            raise ValueError(f"Invalid object id: {start!r}")
        try:
            return self._walk(start)
        finally:
            # An abort only applies to the walk it was issued for
            self._abort.clear()

    def _walk(self, start: ObjectID) -> RecoveryReport:
        traversal = _Traversal(start)
        traversal.visited.add(start)

        if not self.aborted:
            # The start object is processed up front: if it can not be
            # recovered the whole run fails.
            obj, state = self.process_object(start)
            traversal.report.add_object(start, state)
            self._report(start, state)
            self._expand(traversal, obj)
            self._run(traversal)

        if traversal.fatal is not None:
            raise traversal.fatal
        report = traversal.report
        report.aborted = self.aborted
        logger.info(
            "Recovered %d objects from %s (%d failed)",
            report.object_count,
            start.decode("ascii"),
            len(report.failures),
        )
        return report
