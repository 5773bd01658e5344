# objects.py -- Decoding of loose git objects
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

"""Decoding of loose git objects.

A loose object is the zlib-compressed text ``<type> <length>\\0<body>``. The
classes here only keep what is needed to discover further objects: the tree
and parents of a commit, the entries of a tree and the target of a tag.
"""

__all__ = [
    "OBJECT_CLASSES",
    "S_IFGITLINK",
    "S_ISGITLINK",
    "Blob",
    "Commit",
    "DecodedObject",
    "ObjectID",
    "Tag",
    "Tree",
    "TreeEntry",
    "check_object_id",
    "decode_object",
    "decompress_object",
    "hex_to_filename",
    "hex_to_sha",
    "object_class",
    "parse_commit",
    "parse_object_header",
    "parse_tag",
    "parse_tree",
    "sha_to_hex",
    "valid_hexsha",
]

import binascii
import os
import stat
import zlib
from collections.abc import Iterator
from typing import NamedTuple, Optional

from .errors import DecodeError, IntegrityError
from .object_format import DEFAULT_OBJECT_FORMAT, ObjectFormat

ObjectID = bytes

# Header fields for commits
_TREE_HEADER = b"tree"
_PARENT_HEADER = b"parent"

# Header fields for tags
_OBJECT_HEADER = b"object"
_TYPE_HEADER = b"type"

S_IFGITLINK = 0o160000


def S_ISGITLINK(m: int) -> bool:
    """Check if a mode indicates a submodule.

    Args:
      m: Mode to check
    Returns: a ``boolean``
    """
    return stat.S_IFMT(m) == S_IFGITLINK


def valid_hexsha(hex: bytes, object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT) -> bool:
    """Check whether ``hex`` is a well-formed hex object id."""
    if len(hex) != object_format.hex_length:
        return False
    try:
        binascii.unhexlify(hex)
    except (TypeError, binascii.Error):
        return False
    # unhexlify accepts upper case; object ids are always lower case
    return hex == hex.lower()


def sha_to_hex(sha: bytes) -> ObjectID:
    """Takes a binary sha and returns the hex of the sha within."""
    return binascii.hexlify(sha)


def hex_to_sha(hex: bytes) -> bytes:
    """Takes a hex sha and returns a binary sha."""
    try:
        return binascii.unhexlify(hex)
    except binascii.Error as exc:
        raise ValueError(exc.args[0]) from exc


def hex_to_filename(path: str, hex: ObjectID) -> str:
    """Takes a hex sha and returns its filename relative to the given path."""
    hex_str = hex.decode("ascii")
    return os.path.join(path, hex_str[:2], hex_str[2:])


class TreeEntry(NamedTuple):
    """Named tuple encapsulating a single tree entry."""

    path: bytes
    mode: int
    sha: ObjectID

    def is_tree(self) -> bool:
        return stat.S_ISDIR(self.mode)

    def is_submodule(self) -> bool:
        return S_ISGITLINK(self.mode)


class DecodedObject:
    """Base class for decoded objects."""

    __slots__ = ("id",)

    type_name: bytes

    def __init__(self, id: Optional[ObjectID] = None) -> None:
        self.id = id

    def references(self) -> Iterator[ObjectID]:
        """Iterate over the ids of objects this object refers to.

        Submodule entries of trees are not included; they name objects in
        another repository.
        """
        return iter(())

    def __repr__(self) -> str:
        id = self.id.decode("ascii") if self.id is not None else None
        return f"<{self.__class__.__name__} {id}>"


class Blob(DecodedObject):
    """Opaque file content."""

    __slots__ = ("size",)

    type_name = b"blob"

    def __init__(self, size: int = 0, id: Optional[ObjectID] = None) -> None:
        super().__init__(id)
        self.size = size


class Tree(DecodedObject):
    """A git tree: an ordered list of entries."""

    __slots__ = ("entries",)

    type_name = b"tree"

    def __init__(
        self, entries: Optional[list[TreeEntry]] = None, id: Optional[ObjectID] = None
    ) -> None:
        super().__init__(id)
        self.entries = entries if entries is not None else []

    def submodules(self) -> list[TreeEntry]:
        return [entry for entry in self.entries if entry.is_submodule()]

    def references(self) -> Iterator[ObjectID]:
        for entry in self.entries:
            if not entry.is_submodule():
                yield entry.sha


class Commit(DecodedObject):
    """A git commit. Only the tree and the parents are kept."""

    __slots__ = ("parents", "tree")

    type_name = b"commit"

    def __init__(
        self,
        tree: ObjectID,
        parents: Optional[list[ObjectID]] = None,
        id: Optional[ObjectID] = None,
    ) -> None:
        super().__init__(id)
        self.tree = tree
        self.parents = parents if parents is not None else []

    def references(self) -> Iterator[ObjectID]:
        yield self.tree
        yield from self.parents


class Tag(DecodedObject):
    """An annotated tag, pointing at exactly one object."""

    __slots__ = ("object_sha", "object_type")

    type_name = b"tag"

    def __init__(
        self, object_type: bytes, object_sha: ObjectID, id: Optional[ObjectID] = None
    ) -> None:
        super().__init__(id)
        self.object_type = object_type
        self.object_sha = object_sha

    def references(self) -> Iterator[ObjectID]:
        yield self.object_sha


OBJECT_CLASSES = (Commit, Tree, Blob, Tag)

_TYPE_MAP = {cls.type_name: cls for cls in OBJECT_CLASSES}


def object_class(type_name: bytes) -> Optional[type[DecodedObject]]:
    """Get the object class corresponding to the given type name.

    Args:
      type_name: A type name such as b"commit"
    Returns: The DecodedObject subclass, or None if the type is unknown
    """
    return _TYPE_MAP.get(type_name)


def decompress_object(raw: bytes) -> bytes:
    """Decompress a loose object, returning header and body."""
    dcomp = zlib.decompressobj()
    try:
        data = dcomp.decompress(raw)
        data += dcomp.flush()
    except zlib.error as exc:
        raise DecodeError(f"Unable to decompress object: {exc}") from exc
    if not dcomp.eof:
        raise DecodeError("Truncated compressed stream")
    return data


def parse_object_header(data: bytes) -> tuple[bytes, bytes]:
    """Split decompressed object text into its type name and body.

    Args:
      data: Decompressed object text (header and body)
    Returns: Tuple of (type name, body)
    Raises:
      DecodeError: for a malformed header, an unknown type or a body whose
        length does not match the declared length
    """
    header_end = data.find(b"\x00")
    if header_end == -1:
        raise DecodeError("Object header is not terminated")
    header = data[:header_end]
    parts = header.split(b" ")
    if len(parts) != 2:
        raise DecodeError(f"Invalid object header: {header[:32]!r}")
    type_name, size_text = parts
    if object_class(type_name) is None:
        raise DecodeError(f"Unknown object type: {type_name[:16]!r}")
    if not size_text.isdigit() or (len(size_text) > 1 and size_text[0:1] == b"0"):
        raise DecodeError(f"Invalid object length: {size_text[:32]!r}")
    size = int(size_text)
    body = data[header_end + 1 :]
    if len(body) < size:
        raise DecodeError(f"Truncated object: expected {size} bytes, got {len(body)}")
    if len(body) > size:
        raise DecodeError(f"Trailing data after object: expected {size} bytes")
    return type_name, body


def _parse_sha(value: bytes, object_format: ObjectFormat, field: bytes) -> ObjectID:
    if not valid_hexsha(value, object_format):
        raise DecodeError(f"Invalid {field.decode('ascii')} hash: {value[:80]!r}")
    return value


def _iter_header_lines(body: bytes) -> Iterator[tuple[bytes, bytes]]:
    # Headers end at the first empty line; continuation lines start with
    # a space (e.g. gpgsig) and never carry references.
    for line in body.split(b"\n"):
        if line == b"":
            return
        if line.startswith(b" "):
            continue
        field, _, value = line.partition(b" ")
        yield field, value


def parse_commit(
    body: bytes, object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT
) -> Commit:
    """Parse the body of a commit, keeping its tree and parents.

    Unrecognized header lines are ignored.
    """
    tree = None
    parents = []
    for field, value in _iter_header_lines(body):
        if field == _TREE_HEADER:
            if tree is not None:
                raise DecodeError("Commit has more than one tree")
            tree = _parse_sha(value, object_format, field)
        elif field == _PARENT_HEADER:
            parents.append(_parse_sha(value, object_format, field))
    if tree is None:
        raise DecodeError("Commit has no tree")
    return Commit(tree, parents)


def parse_tree(
    body: bytes, object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT
) -> Iterator[TreeEntry]:
    """Parse a tree body.

    Records are ``<octal mode> <name>\\0<raw hash>``; the only thing that
    separates one record from the next is the fixed width of the raw hash.

    Args:
      body: Tree body to parse
      object_format: Object format, determining the raw hash width
    Returns: iterator of TreeEntry
    """
    count = 0
    length = len(body)
    oid_length = object_format.oid_length
    while count < length:
        mode_end = body.find(b" ", count)
        if mode_end == -1:
            raise DecodeError(f"Tree entry at offset {count} has no mode")
        mode_text = body[count:mode_end]
        if not mode_text or mode_text.strip(b"01234567"):
            raise DecodeError(f"Invalid mode {mode_text[:16]!r} at offset {count}")
        mode = int(mode_text, 8)
        name_end = body.find(b"\x00", mode_end)
        if name_end == -1:
            raise DecodeError(f"Tree entry at offset {count} has no name terminator")
        name = body[mode_end + 1 : name_end]
        if not name:
            raise DecodeError(f"Empty name in tree entry at offset {count}")
        count = name_end + 1 + oid_length
        if count > length:
            raise DecodeError(f"Truncated hash in tree entry {name!r}")
        sha = body[name_end + 1 : count]
        yield TreeEntry(name, mode, sha_to_hex(sha))


def parse_tag(body: bytes, object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT) -> Tag:
    """Parse the body of an annotated tag, keeping the tagged object."""
    object_sha = None
    object_type = None
    for field, value in _iter_header_lines(body):
        if field == _OBJECT_HEADER:
            object_sha = _parse_sha(value, object_format, field)
        elif field == _TYPE_HEADER:
            object_type = value
    if object_sha is None or object_type is None:
        raise DecodeError("Tag has no object")
    if object_class(object_type) is None:
        raise DecodeError(f"Tag points at unknown object type {object_type[:16]!r}")
    return Tag(object_type, object_sha)


def decode_object(
    data: bytes,
    sha: Optional[ObjectID] = None,
    object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT,
) -> DecodedObject:
    """Decode decompressed object text into a typed object.

    Args:
      data: Decompressed object text (header and body)
      sha: Hex id of the object, recorded on the result
      object_format: Object format of the repository
    Returns: A Commit, Tree, Blob or Tag
    Raises:
      DecodeError: if the object is malformed
    """
    type_name, body = parse_object_header(data)
    obj: DecodedObject
    if type_name == Commit.type_name:
        obj = parse_commit(body, object_format)
    elif type_name == Tree.type_name:
        obj = Tree(list(parse_tree(body, object_format)))
    elif type_name == Tag.type_name:
        obj = parse_tag(body, object_format)
    else:
        obj = Blob(len(body))
    obj.id = sha
    return obj


def check_object_id(
    sha: ObjectID, data: bytes, object_format: ObjectFormat = DEFAULT_OBJECT_FORMAT
) -> bool:
    """Check that decompressed object text hashes to the requested id.

    Args:
      sha: Hex id the object was requested by
      data: Decompressed object text, header included
      object_format: Object format of the repository
    Returns: True
    Raises:
      IntegrityError: if the recomputed id differs
    """
    got = object_format.hash_object_hex(data)
    if got != sha:
        raise IntegrityError(sha, got)
    return True
