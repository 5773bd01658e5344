# dumb.py -- Fetching objects from dumb HTTP(S) git repositories
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

"""Fetching objects from dumb HTTP(S) git repositories.

A "dumb" repository is a git directory served as plain files. Every loose
object lives at ``objects/<first two hex digits>/<remaining hex digits>``
below the repository root.
"""

__all__ = [
    "DumbHTTPObjectSource",
]

from collections.abc import Callable
from typing import Any
from urllib.parse import urljoin

from . import log_utils
from .errors import NetworkError, ObjectNotFound
from .objects import ObjectID

logger = log_utils.getLogger(__name__)

HttpRequestFunc = Callable[[str, dict[str, str]], tuple[Any, Callable[[int], bytes]]]

NOT_FOUND_STATUSES = (404, 410)


class DumbHTTPObjectSource:
    """Fetches raw objects and files from a dumb HTTP remote.

    Nothing is cached here; the local object store serves as the cache.
    """

    def __init__(self, base_url: str, http_request_func: HttpRequestFunc) -> None:
        """Initialize a DumbHTTPObjectSource.

        Args:
          base_url: Base URL of the remote git directory
            (e.g. "https://example.com/repo/.git/")
          http_request_func: Function to make HTTP requests, should accept
            (url, headers) and return (response, read_func).
        """
        self.base_url = base_url.rstrip("/") + "/"
        self._http_request = http_request_func

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.base_url!r})"

    def _fetch_url(self, path: str) -> bytes:
        """Fetch content from a URL path relative to base_url.

        Args:
          path: Path relative to base URL
        Returns:
          Content as bytes
        Raises:
          ObjectNotFound: If the server answers not-found
          NetworkError: On any other failure
        """
        url = urljoin(self.base_url, path)
        resp, read = self._http_request(url, {})
        try:
            if resp.status in NOT_FOUND_STATUSES:
                raise ObjectNotFound(path, url)
            elif resp.status != 200:
                raise NetworkError(f"HTTP error {resp.status}: {url}", resp.status)

            chunks = []
            while True:
                chunk = read(4096)
                if not chunk:
                    break
                chunks.append(chunk)
            return b"".join(chunks)
        finally:
            resp.close()

    def fetch_file(self, path: str) -> bytes:
        """Fetch a file (e.g. ``HEAD``) below the repository root."""
        return self._fetch_url(path)

    def fetch(self, sha: ObjectID) -> bytes:
        """Fetch the compressed bytes of a loose object.

        Args:
          sha: Hex id of the object
        Returns:
          The object exactly as served, still compressed
        Raises:
          ObjectNotFound: If the remote does not have the object
          NetworkError: On transport failure
        """
        hex_sha = sha.decode("ascii")
        path = f"objects/{hex_sha[:2]}/{hex_sha[2:]}"
        try:
            data = self._fetch_url(path)
        except ObjectNotFound as exc:
            raise ObjectNotFound(sha, exc.url) from exc
        logger.debug("Fetched %s (%d bytes)", hex_sha, len(data))
        return data
