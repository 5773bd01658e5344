# errors.py -- errors for dumbclone
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

"""Exception classes raised while recovering an object graph.

Every per-object failure is a :class:`RecoveryError` carrying a short
``kind`` string, which is what ends up in the recovery report.
"""

__all__ = [
    "DecodeError",
    "FileFormatException",
    "IntegrityError",
    "NetworkError",
    "NotGitRepository",
    "ObjectNotFound",
    "RecoveryError",
    "RefFormatError",
]

from typing import Optional, Union


def _to_str(value: Union[bytes, str]) -> str:
    if isinstance(value, bytes):
        return value.decode("ascii", "replace")
    return value


class RecoveryError(Exception):
    """Base class for errors that concern a single object."""

    kind = "error"


class NetworkError(RecoveryError):
    """Transport failure while talking to the remote.

    Retryable; by the time this reaches the walker the transport has
    already exhausted its retry budget.
    """

    kind = "network"

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        """Initialize a NetworkError.

        Args:
            message: Description of the failure.
            status: HTTP status code, if the server answered at all.
        """
        self.status = status
        super().__init__(message)


class ObjectNotFound(RecoveryError, KeyError):
    """The remote does not have the requested object (or file)."""

    kind = "not-found"

    def __init__(self, sha: Union[bytes, str], url: Optional[str] = None) -> None:
        """Initialize an ObjectNotFound exception.

        Args:
            sha: Hex hash (or path) that was requested.
            url: URL that answered not-found.
        """
        self.sha = sha
        self.url = url
        message = f"{_to_str(sha)} not found"
        if url is not None:
            message += f" at {url}"
        Exception.__init__(self, message)

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return str(self.args[0])


class FileFormatException(Exception):
    """Base class for exceptions relating to reading git file formats."""


class DecodeError(RecoveryError, FileFormatException):
    """An object payload could not be decompressed or parsed."""

    kind = "decode"


class IntegrityError(RecoveryError):
    """The content hash of an object does not match the requested hash."""

    kind = "integrity"

    def __init__(
        self,
        expected: Union[bytes, str],
        got: Union[bytes, str],
        extra: Optional[str] = None,
    ) -> None:
        """Initialize an IntegrityError.

        Args:
            expected: The hex hash that was requested.
            got: The hex hash recomputed from the content.
            extra: Optional additional error information.
        """
        self.expected = _to_str(expected)
        self.got = _to_str(got)
        self.extra = extra
        message = f"Checksum mismatch: Expected {self.expected}, got {self.got}"
        if extra is not None:
            message += f"; {extra}"
        super().__init__(message)


class NotGitRepository(Exception):
    """The remote does not look like an exposed git directory."""


class RefFormatError(Exception):
    """Indicates an invalid ref name."""
