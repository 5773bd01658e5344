# test_objects.py -- Tests for object decoding
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

"""Tests for the decoding of loose objects."""

import zlib

from dumbclone.errors import DecodeError, IntegrityError
from dumbclone.object_format import SHA256
from dumbclone.objects import (
    Blob,
    Commit,
    S_ISGITLINK,
    Tag,
    Tree,
    TreeEntry,
    check_object_id,
    decode_object,
    decompress_object,
    hex_to_filename,
    hex_to_sha,
    object_class,
    parse_commit,
    parse_object_header,
    parse_tag,
    parse_tree,
    sha_to_hex,
    valid_hexsha,
)

from . import TestCase
from .utils import (
    MODE_BLOB,
    MODE_GITLINK,
    MODE_TREE,
    commit_body,
    make_object,
    tag_body,
    tree_body,
)

a_sha = b"6f670c0fb53f9463760b7295fbb814e965fb20c8"
b_sha = b"2969be3e8ee1c0222396a5611407e4769f14e54b"
c_sha = b"d1d3f76a6fcbd6b7c9b5cd4e6a5e84d4ec8bc3b9"
tree_sha = b"70c190eb48fa8bbb50ddc692a17b44cb781af7f6"


class HexShaTests(TestCase):
    def test_valid_hexsha(self) -> None:
        self.assertTrue(valid_hexsha(a_sha))
        self.assertFalse(valid_hexsha(a_sha[:-1]))
        self.assertFalse(valid_hexsha(a_sha.upper()))
        self.assertFalse(valid_hexsha(b"g" * 40))
        self.assertFalse(valid_hexsha(a_sha, SHA256))
        self.assertTrue(valid_hexsha(b"ab" * 32, SHA256))

    def test_hex_roundtrip(self) -> None:
        self.assertEqual(a_sha, sha_to_hex(hex_to_sha(a_sha)))

    def test_hex_to_sha_invalid(self) -> None:
        self.assertRaises(ValueError, hex_to_sha, b"abc")

    def test_hex_to_filename(self) -> None:
        self.assertEqual(
            "objects/6f/670c0fb53f9463760b7295fbb814e965fb20c8",
            hex_to_filename("objects", a_sha),
        )


class ObjectClassTests(TestCase):
    def test_known(self) -> None:
        self.assertIs(Commit, object_class(b"commit"))
        self.assertIs(Tree, object_class(b"tree"))
        self.assertIs(Blob, object_class(b"blob"))
        self.assertIs(Tag, object_class(b"tag"))

    def test_unknown(self) -> None:
        self.assertIsNone(object_class(b"ofs-delta"))

    def test_gitlink_mode(self) -> None:
        self.assertTrue(S_ISGITLINK(MODE_GITLINK))
        self.assertFalse(S_ISGITLINK(MODE_TREE))
        self.assertFalse(S_ISGITLINK(MODE_BLOB))


class DecompressTests(TestCase):
    def test_decompress(self) -> None:
        self.assertEqual(b"blob 0\x00", decompress_object(zlib.compress(b"blob 0\x00")))

    def test_not_zlib(self) -> None:
        self.assertRaises(DecodeError, decompress_object, b"blob 0\x00")

    def test_truncated_stream(self) -> None:
        raw = zlib.compress(b"blob 5\x00hello")
        self.assertRaises(DecodeError, decompress_object, raw[:-4])


class ParseObjectHeaderTests(TestCase):
    def test_blob(self) -> None:
        self.assertEqual((b"blob", b"hello"), parse_object_header(b"blob 5\x00hello"))

    def test_empty_body(self) -> None:
        self.assertEqual((b"tree", b""), parse_object_header(b"tree 0\x00"))

    def test_no_terminator(self) -> None:
        self.assertRaises(DecodeError, parse_object_header, b"blob 5 hello")

    def test_no_length(self) -> None:
        self.assertRaises(DecodeError, parse_object_header, b"blob\x00hello")

    def test_unknown_type(self) -> None:
        self.assertRaises(DecodeError, parse_object_header, b"blub 5\x00hello")

    def test_invalid_length(self) -> None:
        self.assertRaises(DecodeError, parse_object_header, b"blob five\x00hello")
        self.assertRaises(DecodeError, parse_object_header, b"blob -5\x00hello")
        self.assertRaises(DecodeError, parse_object_header, b"blob 05\x00hello")

    def test_truncated(self) -> None:
        self.assertRaises(DecodeError, parse_object_header, b"blob 6\x00hello")

    def test_trailing_data(self) -> None:
        self.assertRaises(DecodeError, parse_object_header, b"blob 4\x00hello")


class ParseCommitTests(TestCase):
    def test_tree_and_parents(self) -> None:
        commit = parse_commit(commit_body(tree_sha, [a_sha, b_sha]))
        self.assertEqual(tree_sha, commit.tree)
        self.assertEqual([a_sha, b_sha], commit.parents)
        self.assertEqual([tree_sha, a_sha, b_sha], list(commit.references()))

    def test_root_commit(self) -> None:
        commit = parse_commit(commit_body(tree_sha))
        self.assertEqual([], commit.parents)
        self.assertEqual([tree_sha], list(commit.references()))

    def test_ignores_unknown_headers(self) -> None:
        body = (
            b"tree " + tree_sha + b"\n"
            b"parent " + a_sha + b"\n"
            b"author A U Thor <author@example.com> 1174773719 +0000\n"
            b"encoding ISO-8859-1\n"
            b"mergetag object " + c_sha + b"\n"
            b" type commit\n"
            b"gpgsig -----BEGIN PGP SIGNATURE-----\n"
            b" parent " + b_sha + b"\n"
            b" -----END PGP SIGNATURE-----\n"
            b"\n"
            b"parent " + c_sha + b"\n"
        )
        commit = parse_commit(body)
        self.assertEqual(tree_sha, commit.tree)
        self.assertEqual([a_sha], commit.parents)

    def test_message_is_not_parsed(self) -> None:
        commit = parse_commit(commit_body(tree_sha, message=b"tree " + a_sha + b"\n"))
        self.assertEqual(tree_sha, commit.tree)

    def test_missing_tree(self) -> None:
        self.assertRaises(DecodeError, parse_commit, b"parent " + a_sha + b"\n\nmsg\n")

    def test_two_trees(self) -> None:
        body = b"tree " + tree_sha + b"\ntree " + a_sha + b"\n\nmsg\n"
        self.assertRaises(DecodeError, parse_commit, body)

    def test_invalid_tree(self) -> None:
        self.assertRaises(DecodeError, parse_commit, b"tree xyz\n\nmsg\n")

    def test_invalid_parent(self) -> None:
        body = b"tree " + tree_sha + b"\nparent " + a_sha[:-2] + b"\n\nmsg\n"
        self.assertRaises(DecodeError, parse_commit, body)


class ParseTreeTests(TestCase):
    def test_entries(self) -> None:
        body = tree_body(
            [
                (b"a", MODE_BLOB, a_sha),
                (b"bin", MODE_TREE, b_sha),
                (b"lib", MODE_GITLINK, c_sha),
            ]
        )
        self.assertEqual(
            [
                TreeEntry(b"a", MODE_BLOB, a_sha),
                TreeEntry(b"bin", MODE_TREE, b_sha),
                TreeEntry(b"lib", MODE_GITLINK, c_sha),
            ],
            list(parse_tree(body)),
        )

    def test_empty(self) -> None:
        self.assertEqual([], list(parse_tree(b"")))

    def test_zero_padded_tree_mode(self) -> None:
        body = b"040000 dir\x00" + hex_to_sha(a_sha)
        [entry] = parse_tree(body)
        self.assertEqual(TreeEntry(b"dir", MODE_TREE, a_sha), entry)
        self.assertTrue(entry.is_tree())

    def test_name_with_spaces(self) -> None:
        body = tree_body([(b"a file name", MODE_BLOB, a_sha)])
        self.assertEqual([TreeEntry(b"a file name", MODE_BLOB, a_sha)], list(parse_tree(body)))

    def test_hash_bytes_look_like_separators(self) -> None:
        # Raw hashes can contain NUL and space bytes
        spaces = b"20" * 20
        nuls = b"00" * 20
        body = tree_body([(b"a", MODE_BLOB, spaces), (b"b", MODE_BLOB, nuls), (b"c", MODE_BLOB, a_sha)])
        self.assertEqual(
            [spaces, nuls, a_sha], [entry.sha for entry in parse_tree(body)]
        )

    def test_sha256(self) -> None:
        sha = b"ab" * 32
        body = tree_body([(b"a", MODE_BLOB, sha), (b"b", MODE_TREE, sha)])
        self.assertEqual(
            [TreeEntry(b"a", MODE_BLOB, sha), TreeEntry(b"b", MODE_TREE, sha)],
            list(parse_tree(body, SHA256)),
        )

    def test_truncated_hash(self) -> None:
        body = tree_body([(b"a", MODE_BLOB, a_sha)])
        self.assertRaises(DecodeError, list, parse_tree(body[:-1]))

    def test_missing_name_terminator(self) -> None:
        self.assertRaises(DecodeError, list, parse_tree(b"100644 a"))

    def test_missing_mode(self) -> None:
        self.assertRaises(DecodeError, list, parse_tree(b"garbage"))

    def test_invalid_mode(self) -> None:
        self.assertRaises(DecodeError, list, parse_tree(b"10064x a\x00" + hex_to_sha(a_sha)))
        self.assertRaises(DecodeError, list, parse_tree(b" a\x00" + hex_to_sha(a_sha)))
        self.assertRaises(DecodeError, list, parse_tree(b"100_644 a\x00" + hex_to_sha(a_sha)))

    def test_empty_name(self) -> None:
        self.assertRaises(DecodeError, list, parse_tree(b"100644 \x00" + hex_to_sha(a_sha)))

    def test_references_skip_submodules(self) -> None:
        tree = Tree(
            [
                TreeEntry(b"a", MODE_BLOB, a_sha),
                TreeEntry(b"lib", MODE_GITLINK, c_sha),
                TreeEntry(b"src", MODE_TREE, b_sha),
            ]
        )
        self.assertEqual([a_sha, b_sha], list(tree.references()))
        self.assertEqual([TreeEntry(b"lib", MODE_GITLINK, c_sha)], tree.submodules())


class ParseTagTests(TestCase):
    def test_tag(self) -> None:
        tag = parse_tag(tag_body(a_sha, b"commit"))
        self.assertEqual(a_sha, tag.object_sha)
        self.assertEqual(b"commit", tag.object_type)
        self.assertEqual([a_sha], list(tag.references()))

    def test_missing_object(self) -> None:
        self.assertRaises(DecodeError, parse_tag, b"type commit\ntag v1\n\nmsg\n")

    def test_missing_type(self) -> None:
        self.assertRaises(DecodeError, parse_tag, b"object " + a_sha + b"\n\nmsg\n")

    def test_unknown_type(self) -> None:
        self.assertRaises(DecodeError, parse_tag, tag_body(a_sha, b"thing"))


class DecodeObjectTests(TestCase):
    def decode(self, type_name, body):
        sha, raw = make_object(type_name, body)
        return sha, decode_object(decompress_object(raw), sha)

    def test_blob(self) -> None:
        sha, obj = self.decode(b"blob", b"hello\n")
        self.assertIsInstance(obj, Blob)
        self.assertEqual(6, obj.size)
        self.assertEqual(sha, obj.id)
        self.assertEqual([], list(obj.references()))

    def test_commit(self) -> None:
        sha, obj = self.decode(b"commit", commit_body(tree_sha, [a_sha]))
        self.assertIsInstance(obj, Commit)
        self.assertEqual(sha, obj.id)
        self.assertEqual([tree_sha, a_sha], list(obj.references()))

    def test_tree(self) -> None:
        sha, obj = self.decode(b"tree", tree_body([(b"a", MODE_BLOB, a_sha)]))
        self.assertIsInstance(obj, Tree)
        self.assertEqual([a_sha], list(obj.references()))

    def test_tag(self) -> None:
        sha, obj = self.decode(b"tag", tag_body(c_sha))
        self.assertIsInstance(obj, Tag)
        self.assertEqual([c_sha], list(obj.references()))

    def test_repr(self) -> None:
        self.assertEqual(f"<Blob {a_sha.decode('ascii')}>", repr(Blob(0, a_sha)))

    def test_malformed_tree(self) -> None:
        _, raw = make_object(b"tree", b"100644 a\x00short")
        self.assertRaises(DecodeError, decode_object, decompress_object(raw))


class CheckObjectIdTests(TestCase):
    def test_empty_blob(self) -> None:
        self.assertTrue(
            check_object_id(
                b"e69de29bb2d1d6434b8b29ae775ad8c2e48c5391", b"blob 0\x00"
            )
        )

    def test_matches(self) -> None:
        sha, raw = make_object(b"blob", b"some content")
        self.assertTrue(check_object_id(sha, decompress_object(raw)))

    def test_mismatch(self) -> None:
        sha, _ = make_object(b"blob", b"some content")
        with self.assertRaises(IntegrityError) as cm:
            check_object_id(sha, b"blob 5\x00other")
        self.assertEqual(sha.decode("ascii"), cm.exception.expected)
        self.assertNotEqual(cm.exception.expected, cm.exception.got)
        self.assertEqual("integrity", cm.exception.kind)

    def test_sha256(self) -> None:
        sha, raw = make_object(b"blob", b"", SHA256)
        self.assertEqual(
            b"473a0f4c3be8a93681a267e3b1e9a7dcda1185436fe141f7749120a303721813", sha
        )
        self.assertTrue(check_object_id(sha, decompress_object(raw), SHA256))
