from __future__ import annotations

import http.client
import logging
import urllib.error
import urllib.request
from typing import Protocol

logger = logging.getLogger(__name__)

_USER_AGENT = "Mozilla/5.0 (compatible; ContentFactoryBot/1.0)"
# The resource exists; bot protection or a HEAD-less server refused the probe.
_RESTRICTED_STATUSES = frozenset({403, 405})
_PROBE_ERRORS = (urllib.error.URLError, http.client.HTTPException, TimeoutError, OSError, ValueError)


class ReachabilityCheck(Protocol):
    def __call__(self, url: str, timeout_ms: int) -> bool:
        ...


def _probe(url: str, method: str, timeout_seconds: float) -> int:
    """Issue one request and return its HTTP status code.

    Args:
        url: Absolute http(s) URL.
        method: ``HEAD`` or ``GET``.
        timeout_seconds: Socket timeout for connect and read.

    Returns:
        The response status, including 4xx/5xx codes.

    Raises:
        urllib.error.URLError: DNS, connection or TLS failure.
        TimeoutError: The request exceeded ``timeout_seconds``.
    """
    request = urllib.request.Request(url, method=method, headers={"User-Agent": _USER_AGENT})
    try:
        with urllib.request.urlopen(request, timeout=timeout_seconds) as response:
            return int(response.status)
    except urllib.error.HTTPError as exc:
        return int(exc.code)


def _accepted(status: int) -> bool:
    return 200 <= status < 300 or status in _RESTRICTED_STATUSES


def is_reachable(url: str, timeout_ms: int = 5_000) -> bool:
    """Return True when ``url`` points at something a human could open.

    A lightweight HEAD probe runs first. When it errors or answers with a
    non-accepted status, a GET probe with its own timeout decides. 2xx, 403
    and 405 count as reachable; every other status and any network error or
    timeout count as unreachable.
    """
    if not url or not url.lower().startswith(("http://", "https://")):
        return False
    timeout_seconds = max(timeout_ms, 1) / 1000.0

    try:
        status = _probe(url, "HEAD", timeout_seconds)
    except _PROBE_ERRORS as exc:
        logger.debug("HEAD %s failed: %s", url, exc)
    else:
        if _accepted(status):
            return True
        logger.debug("HEAD %s answered %d, falling back to GET", url, status)

    try:
        status = _probe(url, "GET", timeout_seconds)
    except _PROBE_ERRORS as exc:
        logger.info("Source %s unreachable: %s", url, exc)
        return False
    if not _accepted(status):
        logger.info("Source %s answered HTTP %d", url, status)
        return False
    return True
