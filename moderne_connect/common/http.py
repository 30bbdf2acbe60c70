"""HTTP response helpers shared by the provider and ingestion clients."""

from __future__ import annotations

import contextlib
import email.utils
import time
import typing as typ

if typ.TYPE_CHECKING:
    import httpx

HTTP_ERROR_STATUS_THRESHOLD = 400
SERVER_ERROR_STATUS_THRESHOLD = 500


def parse_retry_after(response: httpx.Response) -> float | None:
    """Return the advertised wait in seconds, if the response carries one.

    Understands ``Retry-After`` as delta-seconds or an HTTP date, and
    GitHub's ``X-RateLimit-Reset`` epoch timestamp.
    """
    raw = (response.headers.get("Retry-After") or "").strip()
    if raw:
        with contextlib.suppress(ValueError):
            return max(0.0, float(raw))
        with contextlib.suppress(TypeError, ValueError):
            parsed = email.utils.parsedate_to_datetime(raw)
            return max(0.0, parsed.timestamp() - time.time())
    reset = (response.headers.get("X-RateLimit-Reset") or "").strip()
    if reset:
        with contextlib.suppress(ValueError):
            return max(0.0, float(reset) - time.time())
    return None
