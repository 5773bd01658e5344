# cli.py -- Command line interface for dumbclone
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

"""Command line interface for dumbclone.

Recovers the objects of a remote git directory into ``DIRECTORY/.git`` and
points HEAD at the start commit. Check out the result with ordinary git
tooling, e.g. ``git -C DIRECTORY checkout .``.
"""

__all__ = [
    "EXIT_COMPLETE",
    "EXIT_FATAL",
    "EXIT_PARTIAL",
    "ProgressPrinter",
    "format_report",
    "init_git_dir",
    "main",
    "write_head",
]

import argparse
import logging
import os
import sys
import threading
from collections.abc import Sequence
from typing import Optional, TextIO

from .client import Urllib3HttpRequester, default_retries, default_urllib3_manager
from .dumb import DumbHTTPObjectSource
from .errors import NetworkError, NotGitRepository, RecoveryError
from .file import GitFile, ensure_dir_exists
from .log_utils import default_logging_config
from .object_format import OBJECT_FORMATS, get_object_format
from .object_store import DiskObjectStore
from .objects import ObjectID, valid_hexsha
from .refs import HEADREF, LOCAL_BRANCH_PREFIX, Ref, check_refname, resolve_head
from .walk import DEFAULT_CONCURRENCY, ObjectGraphWalker, ObjectState, RecoveryReport

logger = logging.getLogger(__name__)

EXIT_COMPLETE = 0
EXIT_PARTIAL = 1
EXIT_FATAL = 2

DEFAULT_CONFIG = b"""[core]
\trepositoryformatversion = 0
\tfilemode = true
\tbare = false
"""


def init_git_dir(directory: str, fsync_object_files: bool = False) -> DiskObjectStore:
    """Create (or reopen) ``directory/.git`` and return its object store."""
    gitdir = os.path.join(directory, ".git")
    for subdir in ("refs/heads", "refs/tags"):
        ensure_dir_exists(os.path.join(gitdir, subdir))
    config_path = os.path.join(gitdir, "config")
    if not os.path.exists(config_path):
        with GitFile(config_path, fsync=False) as f:
            f.write(DEFAULT_CONFIG)
    return DiskObjectStore.init(
        os.path.join(gitdir, "objects"), fsync_object_files=fsync_object_files
    )


def write_head(directory: str, ref: Optional[Ref], sha: ObjectID) -> None:
    """Point HEAD of ``directory/.git`` at ``sha``.

    If ``ref`` is a ref below ``refs/``, the ref is written as well. HEAD only
    becomes a symbolic ref for branches; otherwise it is detached.

    Raises:
      RefFormatError: if ``ref`` is not a well-formed ref name
    """
    gitdir = os.path.join(directory, ".git")
    if ref is not None and ref.startswith(b"refs/"):
        check_refname(ref)
        ref_path = os.path.join(gitdir, *ref.decode("utf-8").split("/"))
        ensure_dir_exists(os.path.dirname(ref_path))
        with GitFile(ref_path, fsync=False) as f:
            f.write(sha + b"\n")
    if ref is not None and ref.startswith(LOCAL_BRANCH_PREFIX):
        head = b"ref: " + ref + b"\n"
    else:
        head = sha + b"\n"
    with GitFile(os.path.join(gitdir, "HEAD"), fsync=False) as f:
        f.write(head)


class ProgressPrinter:
    """Progress callback printing a running count of handled objects."""

    def __init__(self, outstream: TextIO, every: int = 100) -> None:
        self.outstream = outstream
        self.every = every
        self.count = 0
        self._lock = threading.Lock()

    def __call__(self, sha: ObjectID, state: ObjectState) -> None:
        if state not in (ObjectState.STORED, ObjectState.PRESENT):
            return
        with self._lock:
            self.count += 1
            if self.count % self.every == 0:
                self.outstream.write(f"\rRecovering objects: {self.count}")
                self.outstream.flush()

    def done(self) -> None:
        if self.count >= self.every:
            self.outstream.write(f"\rRecovering objects: {self.count}, done.\n")
            self.outstream.flush()


def format_report(report: RecoveryReport) -> list[str]:
    """Format a recovery report as lines of text."""
    if report.complete:
        return [f"Recovered {report.object_count} objects (complete)"]
    lines = [
        f"Recovered {report.object_count} objects "
        f"(partial: {len(report.failures)} failed"
        + (", interrupted" if report.aborted else "")
        + ")"
    ]
    for failure in sorted(report.failures.values()):
        referrer = (
            failure.referrer.decode("ascii") if failure.referrer is not None else "-"
        )
        lines.append(
            f"  {failure.sha.decode('ascii')} {failure.kind} "
            f"(referenced by {referrer}): {failure.error}"
        )
    return lines


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dumbclone",
        description="Recover a git repository from a web server exposing its .git directory",
    )
    parser.add_argument("url", help="URL of the remote .git directory")
    parser.add_argument("directory", help="Directory to recover into")
    parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=DEFAULT_CONCURRENCY,
        help="Number of parallel fetches (default: %(default)s)",
    )
    start = parser.add_mutually_exclusive_group()
    start.add_argument("--ref", help="Ref to start from instead of HEAD")
    start.add_argument("--commit", help="Object id to start from, skipping ref lookup")
    parser.add_argument(
        "--retries",
        type=int,
        default=3,
        help="Retries for transient network errors (default: %(default)s)",
    )
    parser.add_argument("--timeout", type=float, help="HTTP timeout in seconds")
    parser.add_argument(
        "--no-verify-ssl",
        action="store_true",
        help="Do not verify TLS certificates",
    )
    parser.add_argument(
        "--object-format",
        choices=sorted(OBJECT_FORMATS),
        default="sha1",
        help="Hash algorithm of the remote repository (default: %(default)s)",
    )
    parser.add_argument(
        "--fsync", action="store_true", help="fsync every object file after writing"
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-q", "--quiet", action="store_true")
    verbosity.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(
    argv: Optional[Sequence[str]] = None,
    outstream: Optional[TextIO] = None,
    errstream: Optional[TextIO] = None,
) -> int:
    """Main entry point for the dumbclone command line.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])
        outstream: Where to write the report (defaults to sys.stdout)
        errstream: Where to write progress and errors (defaults to sys.stderr)

    Returns:
        Exit code: 0 for a complete recovery, 1 for a partial one, 2 if
        nothing could be recovered
    """
    if outstream is None:
        outstream = sys.stdout
    if errstream is None:
        errstream = sys.stderr

    parser = _build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return EXIT_FATAL if e.code else EXIT_COMPLETE
    if args.jobs < 1:
        errstream.write("fatal: --jobs must be at least 1\n")
        return EXIT_FATAL

    if args.verbose:
        default_logging_config(logging.DEBUG)
    elif args.quiet:
        default_logging_config(logging.ERROR)
    else:
        default_logging_config(logging.WARNING)

    object_format = get_object_format(args.object_format)
    pool_manager = default_urllib3_manager(
        base_url=args.url,
        timeout=args.timeout,
        retries=default_retries(args.retries),
        cert_reqs="CERT_NONE" if args.no_verify_ssl else None,
        maxsize=args.jobs,
    )
    source = DumbHTTPObjectSource(
        args.url, Urllib3HttpRequester(pool_manager, timeout=args.timeout)
    )

    ref: Optional[Ref]
    if args.commit is not None:
        ref = None
        sha = args.commit.encode("ascii", "replace")
        if not valid_hexsha(sha, object_format):
            errstream.write(f"fatal: {args.commit} is not a valid object id\n")
            return EXIT_FATAL
    else:
        try:
            ref, sha = resolve_head(
                source,
                args.ref.encode("utf-8") if args.ref else None,
                object_format,
            )
        except (NotGitRepository, NetworkError) as e:
            errstream.write(f"fatal: {e}\n")
            return EXIT_FATAL
        logger.info("Starting from %s (%s)", sha.decode("ascii"), ref.decode("utf-8"))

    store = init_git_dir(args.directory, fsync_object_files=args.fsync)
    progress = None if args.quiet else ProgressPrinter(errstream)
    walker = ObjectGraphWalker(
        source,
        store,
        concurrency=args.jobs,
        object_format=object_format,
        progress=progress,
    )
    try:
        report = walker.walk(sha)
    except RecoveryError as e:
        errstream.write(f"fatal: unable to recover {sha.decode('ascii')}: {e}\n")
        return EXIT_FATAL
    except OSError as e:
        errstream.write(f"fatal: unable to write to the local store: {e}\n")
        return EXIT_FATAL
    except KeyboardInterrupt:
        errstream.write("\ninterrupted; run again to resume\n")
        return EXIT_PARTIAL
    if progress is not None:
        progress.done()

    write_head(args.directory, ref if ref != HEADREF else None, sha)

    for line in format_report(report):
        outstream.write(line + "\n")
    for submodule_sha, path, _ in report.submodules:
        logger.info(
            "Skipped submodule %s at %s",
            submodule_sha.decode("ascii"),
            path.decode("utf-8", "replace"),
        )
    return EXIT_COMPLETE if report.complete else EXIT_PARTIAL


def _main() -> None:
    sys.exit(main())


if __name__ == "__main__":
    _main()
