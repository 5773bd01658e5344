# refs.py -- Resolving the start commit of a dumb remote
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

"""Resolving the start commit of a dumb remote."""

__all__ = [
    "HEADREF",
    "LOCAL_BRANCH_PREFIX",
    "LOCAL_TAG_PREFIX",
    "SYMREF",
    "check_ref_format",
    "check_refname",
    "parse_head",
    "read_info_refs",
    "read_packed_refs",
    "resolve_head",
]

import logging
from typing import Optional

from .dumb import DumbHTTPObjectSource
from .errors import NotGitRepository, ObjectNotFound, RefFormatError
from .object_format import DEFAULT_OBJECT_FORMAT, ObjectFormat
from .objects import ObjectID, valid_hexsha

logger = logging.getLogger(__name__)

Ref = bytes

HEADREF = b"HEAD"
SYMREF = b"ref: "
LOCAL_BRANCH_PREFIX = b"refs/heads/"
LOCAL_TAG_PREFIX = b"refs/tags/"
PEELED_TAG_SUFFIX = b"^{}"
BAD_REF_CHARS = set(b"\177 ~^:?*[")

# Maximum number of symbolic refs to follow
MAX_SYMREF_DEPTH = 5


def check_ref_format(refname: Ref) -> bool:
    """Check if a refname is correctly formatted.

    Implements all the same rules as git-check-ref-format[1].

    [1]
    http://www.kernel.org/pub/software/scm/git/docs/git-check-ref-format.html

    Args:
      refname: The refname to check
    Returns: True if refname is valid, False otherwise
    """
    if b"/." in refname or refname.startswith(b"."):
        return False
    if b"/" not in refname:
        return False
    if b".." in refname:
        return False
    for c in refname:
        if c < 0o40 or c in BAD_REF_CHARS:
            return False
    if refname[-1] in b"/.":
        return False
    if refname.endswith(b".lock"):
        return False
    if b"@{" in refname:
        return False
    if b"\\" in refname:
        return False
    return True


def check_refname(name: Ref) -> None:
    """Ensure a full ref name is HEAD or a well-formed name below refs/.

    Raises:
      RefFormatError: if the name is not acceptable
    """
    if name == HEADREF:
        return
    if not name.startswith(b"refs/") or not check_ref_format(name[5:]):
        raise RefFormatError(name)


def _valid_ref_argument(ref: Ref) -> bool:
    if ref == HEADREF:
        return True
    if ref.startswith(b"refs/"):
        return check_ref_format(ref[5:])
    # Short names are looked up below refs/heads and refs/tags
    return check_ref_format(LOCAL_BRANCH_PREFIX[5:] + ref)


def parse_head(
    contents: bytes, object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT
) -> tuple[Optional[Ref], Optional[ObjectID]]:
    """Parse the contents of HEAD or of a loose ref file.

    Args:
      contents: File contents
    Returns: Tuple of (target ref, None) for a symbolic ref or
      (None, sha) for a ref holding an object id
    Raises:
      ValueError: if the contents are neither
    """
    contents = contents.strip()
    if contents.startswith(SYMREF):
        target = contents[len(SYMREF) :].strip()
        if not target:
            raise ValueError(contents)
        return target, None
    if valid_hexsha(contents, object_format):
        return None, contents
    raise ValueError(contents)


def read_packed_refs(contents: bytes) -> dict[Ref, ObjectID]:
    """Read a packed-refs file, ignoring peeled entries.

    Returns: Dictionary mapping ref names to object ids
    """
    ret = {}
    for line in contents.splitlines():
        if not line or line.startswith((b"#", b"^")):
            continue
        sha, _, name = line.partition(b" ")
        ret[name.strip()] = sha
    return ret


def read_info_refs(contents: bytes) -> dict[Ref, ObjectID]:
    """Read an info/refs file, ignoring peeled entries.

    Returns: Dictionary mapping ref names to object ids
    """
    ret = {}
    for line in contents.splitlines():
        if not line:
            continue
        sha, _, name = line.partition(b"\t")
        if name.endswith(PEELED_TAG_SUFFIX):
            continue
        ret[name] = sha
    return ret


def _candidates(ref: Ref) -> list[Ref]:
    if ref == HEADREF or ref.startswith(b"refs/"):
        return [ref]
    return [ref, b"refs/" + ref, LOCAL_BRANCH_PREFIX + ref, LOCAL_TAG_PREFIX + ref]


class _RefResolver:
    def __init__(
        self, source: DumbHTTPObjectSource, object_format: ObjectFormat
    ) -> None:
        self.source = source
        self.object_format = object_format
        self._listed: Optional[dict[Ref, ObjectID]] = None

    def _listed_refs(self) -> dict[Ref, ObjectID]:
        # packed-refs and info/refs only need to be fetched once
        if self._listed is None:
            self._listed = {}
            for path, reader in (
                ("info/refs", read_info_refs),
                ("packed-refs", read_packed_refs),
            ):
                try:
                    self._listed.update(reader(self.source.fetch_file(path)))
                except ObjectNotFound:
                    logger.debug("Remote has no %s", path)
        return self._listed

    def _read_loose(self, ref: Ref) -> Optional[bytes]:
        try:
            return self.source.fetch_file(ref.decode("utf-8"))
        except ObjectNotFound:
            return None

    def resolve(self, ref: Ref) -> tuple[Ref, ObjectID]:
        for _ in range(MAX_SYMREF_DEPTH):
            if not _valid_ref_argument(ref):
                raise NotGitRepository(
                    f"Invalid ref name {ref.decode('utf-8', 'replace')!r}"
                )
            for candidate in _candidates(ref):
                contents = self._read_loose(candidate)
                if contents is not None:
                    try:
                        target, sha = parse_head(contents, self.object_format)
                    except ValueError:
                        raise NotGitRepository(
                            f"{candidate.decode('utf-8', 'replace')} is not a valid ref"
                        )
                    break
                sha = self._listed_refs().get(candidate)
                if sha is not None:
                    target = None
                    break
            else:
                raise NotGitRepository(
                    f"Unable to resolve {ref.decode('utf-8', 'replace')} "
                    f"at {self.source.base_url}"
                )
            if target is None:
                assert sha is not None
                if not valid_hexsha(sha, self.object_format):
                    raise NotGitRepository(f"Invalid object id {sha!r} for {candidate!r}")
                return candidate, sha
            ref = target
        raise NotGitRepository(f"Too many levels of symbolic refs at {ref!r}")


def resolve_head(
    source: DumbHTTPObjectSource,
    ref: Optional[Ref] = None,
    object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT,
) -> tuple[Ref, ObjectID]:
    """Find the commit to start recovery from.

    Reads ``HEAD`` (or ``ref``, if given) and follows symbolic refs to an
    object id. Loose ref files are tried first, then ``info/refs`` and
    ``packed-refs``.

    Args:
      source: Remote to read from
      ref: Ref name to resolve instead of HEAD; short names such as
        ``main`` or ``v1.0`` are looked up below refs/heads and refs/tags
      object_format: Object format of the remote repository
    Returns: Tuple of (ref name the id was read from, object id)
    Raises:
      NotGitRepository: if the ref can not be resolved
      NetworkError: if the remote can not be reached
    """
    return _RefResolver(source, object_format).resolve(ref or HEADREF)
