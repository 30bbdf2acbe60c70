"""Clock helpers shared by the pipeline components."""

from __future__ import annotations

import datetime as dt
import time


def utcnow() -> dt.datetime:
    """Return an aware UTC timestamp suitable for reports and DB defaults."""
    return dt.datetime.now(dt.UTC)


def monotonic() -> float:
    """Return a monotonic clock reading in seconds."""
    return time.monotonic()


def elapsed_since(started: float) -> dt.timedelta:
    """Return the time elapsed since a :func:`monotonic` reading."""
    return dt.timedelta(seconds=max(0.0, time.monotonic() - started))
