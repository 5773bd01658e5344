# client.py -- HTTP transport for talking to dumb git servers
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

"""HTTP transport based on urllib3.

The objects in this module produce the ``http_request_func`` callables that
:class:`dumbclone.dumb.DumbHTTPObjectSource` uses. Transient failures are
retried by urllib3 itself, with exponential backoff, according to the
:class:`urllib3.util.Retry` policy built by :func:`default_retries`; what
is left over after that surfaces as :class:`dumbclone.errors.NetworkError`.

Environment variables honoured:

* ``https_proxy``, ``http_proxy``, ``all_proxy`` and ``no_proxy``
* ``GIT_SSL_NO_VERIFY`` -- disable certificate verification when set
* ``GIT_HTTP_USER_AGENT`` -- override the User-Agent header
"""

__all__ = [
    "DEFAULT_RETRIES",
    "Urllib3HttpRequester",
    "check_for_proxy_bypass",
    "default_retries",
    "default_urllib3_manager",
    "default_user_agent_string",
]

import io
import ipaddress
import logging
import os
from collections.abc import Callable
from typing import TYPE_CHECKING, Optional, Union
from urllib.parse import urlparse

import urllib3
import urllib3.exceptions
from urllib3.util import Retry

import dumbclone

from .errors import NetworkError

if TYPE_CHECKING:
    from urllib3.response import BaseHTTPResponse

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 3
DEFAULT_BACKOFF_FACTOR = 0.5

# Statuses worth asking again for; anything else is final.
RETRY_STATUSES = frozenset([429, 500, 502, 503, 504])


def default_user_agent_string() -> str:
    """Return the default user agent string."""
    # Start user agent with "git/"; some hosting sites refuse anything else.
    return "git/dumbclone/{}".format(".".join([str(x) for x in dumbclone.__version__]))


def default_retries(
    total: int = DEFAULT_RETRIES, backoff_factor: float = DEFAULT_BACKOFF_FACTOR
) -> Retry:
    """Build the retry policy for object fetches.

    Connection errors, read errors and transient server statuses are retried
    up to ``total`` times, sleeping ``backoff_factor * 2 ** (n - 1)`` seconds
    between attempts. Not-found answers are never retried.
    """
    return Retry(
        total=total,
        connect=total,
        read=total,
        status=total,
        redirect=5,
        backoff_factor=backoff_factor,
        status_forcelist=RETRY_STATUSES,
        allowed_methods=frozenset(["GET", "HEAD"]),
        raise_on_status=True,
    )


def check_for_proxy_bypass(base_url: Optional[str]) -> bool:
    """Check whether ``no_proxy`` says to bypass the proxy for ``base_url``."""
    if not base_url:
        return False
    no_proxy_str = os.environ.get("no_proxy")
    if not no_proxy_str:
        return False
    hostname = urlparse(base_url).hostname
    if not hostname:
        return False
    try:
        hostname_ip = ipaddress.ip_address(hostname)
    except ValueError:
        hostname_ip = None

    for value in no_proxy_str.split(","):
        value = value.strip().lower()
        if not value:
            continue
        if value == "*":
            return True
        if hostname_ip is not None:
            try:
                if hostname_ip in ipaddress.ip_network(value, strict=False):
                    return True
            except ValueError:
                pass
        if hostname == value:
            return True
        # only match complete domains
        if hostname.endswith("." + value.lstrip(".")):
            return True
    return False


def default_urllib3_manager(
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
    retries: Optional[Retry] = None,
    cert_reqs: Optional[str] = None,
    user_agent: Optional[str] = None,
    maxsize: int = 10,
    pool_manager_cls: Optional[type] = None,
    proxy_manager_cls: Optional[type] = None,
) -> Union[urllib3.ProxyManager, urllib3.PoolManager]:
    """Return urllib3 connection pool manager.

    Honour detected proxy configurations.

    Args:
      base_url: Base URL for proxy bypass checks
      timeout: Timeout for HTTP requests in seconds
      retries: Retry policy; defaults to :func:`default_retries`
      cert_reqs: SSL certificate requirements (e.g. "CERT_REQUIRED", "CERT_NONE")
      user_agent: User agent; defaults to ``GIT_HTTP_USER_AGENT`` or our own
      maxsize: Connections kept per host; should match the worker count
      pool_manager_cls: Pool manager class to use
      proxy_manager_cls: Proxy manager class to use

    Returns:
      Either proxy_manager_cls (defaults to `urllib3.ProxyManager`) instance
      for proxy configurations, pool_manager_cls (defaults to
      `urllib3.PoolManager`) instance otherwise
    """
    proxy_server: Optional[str] = None
    for proxyname in ("https_proxy", "http_proxy", "all_proxy"):
        proxy_server = os.environ.get(proxyname)
        if proxy_server:
            break

    if proxy_server and check_for_proxy_bypass(base_url):
        proxy_server = None

    if user_agent is None:
        user_agent = os.environ.get("GIT_HTTP_USER_AGENT") or default_user_agent_string()

    headers = {"User-agent": user_agent}

    if cert_reqs is None:
        if os.environ.get("GIT_SSL_NO_VERIFY"):
            cert_reqs = "CERT_NONE"
        else:
            cert_reqs = "CERT_REQUIRED"

    kwargs: dict[str, object] = {
        "cert_reqs": cert_reqs,
        "maxsize": maxsize,
        "retries": retries if retries is not None else default_retries(),
    }
    if timeout is not None:
        kwargs["timeout"] = timeout

    manager: Union[urllib3.ProxyManager, urllib3.PoolManager]
    if proxy_server:
        if proxy_manager_cls is None:
            proxy_manager_cls = urllib3.ProxyManager
        proxy_server_url = urlparse(proxy_server)
        if proxy_server_url.username is not None:
            proxy_headers = urllib3.make_headers(
                proxy_basic_auth=f"{proxy_server_url.username}:{proxy_server_url.password or ''}"
            )
        else:
            proxy_headers = {}
        logger.debug("Using proxy %s", proxy_server_url.hostname)
        manager = proxy_manager_cls(
            proxy_server, proxy_headers=proxy_headers, headers=headers, **kwargs
        )
    else:
        if pool_manager_cls is None:
            pool_manager_cls = urllib3.PoolManager
        manager = pool_manager_cls(headers=headers, **kwargs)

    return manager


class Urllib3HttpRequester:
    """Callable issuing GET requests through a urllib3 pool manager.

    Instances can be passed as ``http_request_func``; they return
    ``(response, read)``. The body is read while the request is made, so a
    connection that drops halfway through the body is retried like any
    other transient failure.
    """

    def __init__(
        self,
        pool_manager: Optional[urllib3.PoolManager] = None,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        retries: Optional[Retry] = None,
        maxsize: int = 10,
    ) -> None:
        if pool_manager is None:
            pool_manager = default_urllib3_manager(
                base_url=base_url, timeout=timeout, retries=retries, maxsize=maxsize
            )
        self.pool_manager = pool_manager
        self._timeout = timeout

    def __call__(
        self, url: str, headers: Optional[dict[str, str]] = None
    ) -> tuple["BaseHTTPResponse", Callable[..., bytes]]:
        req_headers = dict(self.pool_manager.headers)
        if headers is not None:
            req_headers.update(headers)
        req_headers["Pragma"] = "no-cache"

        request_kwargs: dict[str, object] = {
            "headers": req_headers,
            "preload_content": True,
        }
        if self._timeout is not None:
            request_kwargs["timeout"] = self._timeout

        try:
            resp = self.pool_manager.request("GET", url, **request_kwargs)
        except urllib3.exceptions.HTTPError as e:
            raise NetworkError(f"{url}: {e}") from e
        return resp, io.BytesIO(resp.data).read
