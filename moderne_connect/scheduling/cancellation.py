"""Run-scoped cancellation signal."""

from __future__ import annotations

import asyncio


class CancellationToken:
    """A one-shot cancellation signal shared by everything in one run.

    The token is created per run and never reused, so a cancelled run cannot
    leak its state into the next one.
    """

    def __init__(self) -> None:
        """Create an un-cancelled token."""
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        """Return True once :meth:`cancel` has been called."""
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        """Return the reason passed to the first :meth:`cancel` call."""
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Signal cancellation; later calls keep the first reason."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()

    async def sleep(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds unless cancelled first.

        Returns
        -------
        bool
            True when the sleep was interrupted by cancellation.

        """
        if delay <= 0:
            await asyncio.sleep(0)
            return self.cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except TimeoutError:
            return False
        return True


async def acquire_unless_cancelled(
    semaphore: asyncio.Semaphore, token: CancellationToken
) -> bool:
    """Acquire ``semaphore`` unless ``token`` is cancelled first.

    Returns True with the semaphore held, or False without it.
    """
    if token.cancelled:
        return False
    acquire = asyncio.ensure_future(semaphore.acquire())
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({acquire, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except BaseException:
        waiter.cancel()
        acquire.cancel()
        if acquire.done() and not acquire.cancelled():
            semaphore.release()
        raise
    waiter.cancel()
    if not acquire.done():
        acquire.cancel()
        return False
    if token.cancelled:
        semaphore.release()
        return False
    return True
