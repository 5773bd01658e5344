# utils.py -- Test utilities for dumbclone
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

"""Utility functions and fakes common to dumbclone tests."""

import collections
import threading
import zlib
from typing import Optional
from urllib.parse import urlparse

from dumbclone.dumb import DumbHTTPObjectSource
from dumbclone.object_format import DEFAULT_OBJECT_FORMAT
from dumbclone.objects import S_IFGITLINK, hex_to_sha

BASE_URL = "https://example.com/repo/.git/"

# Modes as git writes them
MODE_BLOB = 0o100644
MODE_TREE = 0o040000
MODE_GITLINK = S_IFGITLINK


def make_object(type_name, body, object_format=DEFAULT_OBJECT_FORMAT):
    """Build a loose object.

    Returns: Tuple of (hex id, compressed bytes)
    """
    data = type_name + b" " + str(len(body)).encode("ascii") + b"\x00" + body
    return object_format.hash_object_hex(data), zlib.compress(data)


def tree_body(entries):
    """Serialize tree entries given as (name, mode, hex id) tuples."""
    return b"".join(
        (b"%o" % mode) + b" " + name + b"\x00" + hex_to_sha(sha)
        for name, mode, sha in entries
    )


def commit_body(tree, parents=(), message=b"Commit message\n"):
    lines = [b"tree " + tree]
    lines.extend(b"parent " + parent for parent in parents)
    lines.append(b"author Jane Doe <jane@example.com> 1700000000 +0000")
    lines.append(b"committer Jane Doe <jane@example.com> 1700000000 +0000")
    return b"\n".join(lines) + b"\n\n" + message


def tag_body(object_sha, object_type=b"commit", name=b"v1.0"):
    return (
        b"object " + object_sha + b"\n"
        b"type " + object_type + b"\n"
        b"tag " + name + b"\n"
        b"tagger Jane Doe <jane@example.com> 1700000000 +0000\n"
        b"\n"
        b"Release\n"
    )


class MockResponse:
    def __init__(self, status=200, content=b"", headers=None):
        self.status = status
        self.content = content
        self.headers = headers or {}
        self.closed = False

    def close(self):
        self.closed = True


class FakeRemote:
    """A dumb HTTP remote backed by a dictionary of files.

    Objects are added with the builder methods, which return the hex id of
    the new object. Requests are counted per path.
    """

    def __init__(self, base_url=BASE_URL, object_format=DEFAULT_OBJECT_FORMAT):
        self.base_url = base_url
        self.object_format = object_format
        self.files = {}
        self.statuses = {}
        self.requests = collections.Counter()
        self.responses = []
        self._lock = threading.Lock()

    def source(self):
        return DumbHTTPObjectSource(self.base_url, self.http_request)

    @staticmethod
    def object_path(sha):
        hex_sha = sha.decode("ascii")
        return f"objects/{hex_sha[:2]}/{hex_sha[2:]}"

    def add_file(self, path, content):
        self.files[path] = content

    def add_raw(self, sha, raw):
        self.files[self.object_path(sha)] = raw
        return sha

    def add_object(self, type_name, body):
        sha, raw = make_object(type_name, body, self.object_format)
        return self.add_raw(sha, raw)

    def blob(self, data):
        return self.add_object(b"blob", data)

    def tree(self, entries):
        """Add a tree; entries are (name, mode, hex id) tuples."""
        return self.add_object(b"tree", tree_body(entries))

    def commit(self, tree, parents=(), message=b"Commit message\n"):
        return self.add_object(b"commit", commit_body(tree, parents, message))

    def tag(self, object_sha, object_type=b"commit"):
        return self.add_object(b"tag", tag_body(object_sha, object_type))

    def remove(self, sha):
        del self.files[self.object_path(sha)]

    def set_status(self, sha, status):
        self.statuses[self.object_path(sha)] = status

    def fetches(self, sha):
        """Number of times the object was requested."""
        return self.requests[self.object_path(sha)]

    def object_fetches(self):
        return sum(
            count for path, count in self.requests.items() if path.startswith("objects/")
        )

    def http_request(self, url, headers):
        path = urlparse(url).path[len(urlparse(self.base_url).path) :]
        with self._lock:
            self.requests[path] += 1
        if path in self.statuses:
            resp = MockResponse(self.statuses[path])
            content = b""
        elif path in self.files:
            content = self.files[path]
            resp = MockResponse(200, content)
        else:
            resp = MockResponse(404)
            content = b""
        with self._lock:
            self.responses.append(resp)
        offset = [0]

        def read(size=None):
            if size is None:
                result = content[offset[0] :]
            else:
                result = content[offset[0] : offset[0] + size]
            offset[0] += len(result)
            return result

        return resp, read


def build_history(remote, depth, branching, shared_blob: Optional[bytes] = None):
    """Build a linear history of ``depth`` commits over trees of fan-out
    ``branching`` with two levels of subdirectories.

    Every commit gets its own file contents, so no two commits share
    objects except through ``shared_blob``.

    Returns: Tuple of (tip commit id, set of ids of all reachable objects)
    """
    reachable = set()
    parent = None
    for c in range(depth):
        subtrees = []
        for d in range(branching):
            entries = []
            for f in range(branching):
                blob = remote.blob(b"commit %d dir %d file %d\n" % (c, d, f))
                reachable.add(blob)
                entries.append((b"file%d" % f, MODE_BLOB, blob))
            if shared_blob is not None:
                entries.append((b"shared", MODE_BLOB, shared_blob))
                reachable.add(shared_blob)
            subtree = remote.tree(entries)
            reachable.add(subtree)
            subtrees.append((b"dir%d" % d, MODE_TREE, subtree))
        root = remote.tree(subtrees)
        reachable.add(root)
        parent = remote.commit(root, [parent] if parent else [], b"commit %d\n" % c)
        reachable.add(parent)
    return parent, reachable
