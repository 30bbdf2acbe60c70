"""Per-key asyncio locks that disappear when nobody holds them."""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc


@dataclasses.dataclass(slots=True)
class _Entry:
    lock: asyncio.Lock = dataclasses.field(default_factory=asyncio.Lock)
    holders: int = 0


class KeyedLock:
    """Serialise work per key without keeping a lock per key forever.

    An entry is created on first use and removed once the last holder or
    waiter releases it, so a long run over many repositories keeps only the
    locks currently in use.
    """

    def __init__(self) -> None:
        """Create an empty lock table."""
        self._entries: dict[cabc.Hashable, _Entry] = {}

    @contextlib.asynccontextmanager
    async def hold(self, key: cabc.Hashable) -> cabc.AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        entry = self._entries.get(key)
        if entry is None:
            entry = _Entry()
            self._entries[key] = entry
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._entries[key]

    def __len__(self) -> int:
        """Return the number of keys currently held or awaited."""
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        """Return True while ``key`` is held or awaited."""
        return key in self._entries
