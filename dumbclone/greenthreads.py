# greenthreads.py -- Walking an object graph with gevent
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

"""Walking an object graph with gevent.

Same contract as :class:`dumbclone.walk.ObjectGraphWalker`, except that the
workers are greenlets from a :class:`gevent.pool.Pool`. Fetches only run
concurrently if sockets are cooperative, so call
``gevent.monkey.patch_all()`` before creating the HTTP pool manager.
"""

__all__ = ["GreenThreadsObjectGraphWalker"]

import logging
import queue

import gevent
from gevent import pool

from .walk import ObjectGraphWalker, _Traversal

logger = logging.getLogger(__name__)


class GreenThreadsObjectGraphWalker(ObjectGraphWalker):
    """Recovers an object graph using a pool of greenlets."""

    def _run(self, traversal: _Traversal) -> None:
        p = pool.Pool(size=self.concurrency)
        try:
            while not self._abort.is_set():
                try:
                    item = traversal.frontier.get_nowait()
                except queue.Empty:
                    if not len(p):
                        break
                    # Wait for one of the running greenlets; it may have
                    # discovered more objects.
                    gevent.wait(list(p), count=1)
                    continue
                assert item is not None
                # Blocks while the pool is full
                p.spawn(self._visit, traversal, *item)
        except KeyboardInterrupt:
            logger.info("Interrupted; waiting for fetches in flight")
            self.abort()
            raise
        finally:
            p.join()
