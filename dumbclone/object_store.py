# object_store.py -- Local content-addressed object stores
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

"""Local stores for recovered objects.

Objects are kept exactly as they were fetched: still compressed, one file
per object, laid out the way git lays out loose objects. A store can
therefore be read directly by ordinary git tooling.
"""

__all__ = [
    "PACKDIR",
    "BaseObjectStore",
    "DiskObjectStore",
    "MemoryObjectStore",
    "WriteResult",
]

import enum
import os
import tempfile
import threading
from collections.abc import Iterator
from typing import Optional, Union

from .object_format import DEFAULT_OBJECT_FORMAT, ObjectFormat
from .objects import ObjectID, hex_to_filename, valid_hexsha

INFODIR = "info"
PACKDIR = "pack"

# Loose objects are never modified after they are written
PACK_MODE = 0o444


class WriteResult(enum.Enum):
    """Outcome of storing an object."""

    WRITTEN = "written"
    ALREADY_PRESENT = "already-present"


class BaseObjectStore:
    """Object store interface."""

    object_format: ObjectFormat

    def put(self, sha: ObjectID, raw: bytes) -> WriteResult:
        """Store the compressed bytes of an object.

        Storing an object that is already present is a successful no-op.

        Args:
          sha: Hex id of the object
          raw: Compressed object bytes, as fetched
        Returns: A WriteResult
        """
        raise NotImplementedError(self.put)

    def contains(self, sha: ObjectID) -> bool:
        """Check if a particular object is present by hex id."""
        raise NotImplementedError(self.contains)

    def get_raw(self, sha: ObjectID) -> bytes:
        """Obtain the compressed bytes of an object.

        Raises:
          KeyError: if the object is not present
        """
        raise NotImplementedError(self.get_raw)

    def __iter__(self) -> Iterator[ObjectID]:
        raise NotImplementedError(self.__iter__)

    def __contains__(self, sha: object) -> bool:
        return isinstance(sha, bytes) and self.contains(sha)

    def __len__(self) -> int:
        return sum(1 for _ in self)


class DiskObjectStore(BaseObjectStore):
    """Object store in an ``objects`` directory on disk."""

    def __init__(
        self,
        path: Union[str, "os.PathLike[str]"],
        *,
        fsync_object_files: bool = False,
        object_format: Optional[ObjectFormat] = None,
    ) -> None:
        """Open an object store.

        Args:
          path: Path of the object store (the ``objects`` directory).
          fsync_object_files: whether to fsync object files for durability
          object_format: Hash algorithm in use (SHA1 by default)
        """
        self.path = os.fspath(path)
        self.fsync_object_files = fsync_object_files
        self.object_format = object_format or DEFAULT_OBJECT_FORMAT
        # Serializes the existence check against concurrent writers of the
        # same object.
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}({self.path!r})>"

    @classmethod
    def init(
        cls,
        path: Union[str, "os.PathLike[str]"],
        **kwargs,
    ) -> "DiskObjectStore":
        """Create the directory structure of an object store.

        Existing directories are left alone, so this can be used to reopen
        a store left behind by an earlier, interrupted run.
        """
        for subdir in ("", INFODIR, PACKDIR):
            try:
                os.mkdir(os.path.join(path, subdir))
            except FileExistsError:
                pass
        return cls(path, **kwargs)

    def _get_shafile_path(self, sha: ObjectID) -> str:
        return hex_to_filename(self.path, sha)

    def contains(self, sha: ObjectID) -> bool:
        return os.path.exists(self._get_shafile_path(sha))

    def get_raw(self, sha: ObjectID) -> bytes:
        try:
            with open(self._get_shafile_path(sha), "rb") as f:
                return f.read()
        except FileNotFoundError:
            raise KeyError(sha)

    def put(self, sha: ObjectID, raw: bytes) -> WriteResult:
        path = self._get_shafile_path(sha)
        dirname = os.path.dirname(path)
        with self._lock:
            if os.path.exists(path):
                return WriteResult.ALREADY_PRESENT
            try:
                os.mkdir(dirname)
            except FileExistsError:
                pass
        # Temporary names are never valid object names
        fd, tmp_path = tempfile.mkstemp(dir=dirname, prefix="tmp_obj_")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(raw)
                if self.fsync_object_files:
                    f.flush()
                    os.fsync(f.fileno())
            os.chmod(tmp_path, PACK_MODE)
            os.replace(tmp_path, path)
        except BaseException:
            try:
                os.remove(tmp_path)
            except FileNotFoundError:
                pass
            raise
        return WriteResult.WRITTEN

    def __iter__(self) -> Iterator[ObjectID]:
        try:
            bases = os.listdir(self.path)
        except FileNotFoundError:
            return
        for base in bases:
            if len(base) != 2:
                continue
            for rest in os.listdir(os.path.join(self.path, base)):
                sha = os.fsencode(base + rest)
                if not valid_hexsha(sha, self.object_format):
                    continue
                yield sha


class MemoryObjectStore(BaseObjectStore):
    """Object store that keeps all objects in memory."""

    def __init__(self, object_format: Optional[ObjectFormat] = None) -> None:
        self._data: dict[ObjectID, bytes] = {}
        self._lock = threading.Lock()
        self.object_format = object_format or DEFAULT_OBJECT_FORMAT

    def contains(self, sha: ObjectID) -> bool:
        return sha in self._data

    def get_raw(self, sha: ObjectID) -> bytes:
        return self._data[sha]

    def put(self, sha: ObjectID, raw: bytes) -> WriteResult:
        with self._lock:
            if sha in self._data:
                return WriteResult.ALREADY_PRESENT
            self._data[sha] = raw
        return WriteResult.WRITTEN

    def __iter__(self) -> Iterator[ObjectID]:
        return iter(list(self._data))
