"""Group concurrent submissions into batched requests."""

from __future__ import annotations

import asyncio
import typing as typ

from moderne_connect.logging import get_logger, log_debug

if typ.TYPE_CHECKING:
    from .client import IngestionClient
    from .models import Ack, SubmissionUnit

logger = get_logger(__name__)


class _Pending(typ.NamedTuple):
    unit: SubmissionUnit
    attempt: int
    future: asyncio.Future[Ack]


class SubmissionBatcher:
    """Collect ``submit`` calls and send them ``batch_size`` at a time.

    A batch is sent when it is full or when ``linger_s`` has passed since its
    first unit arrived. Every caller is resolved with its own
    acknowledgement or error; a request-level failure is raised to every
    caller in the batch.
    """

    def __init__(
        self,
        client: IngestionClient,
        *,
        batch_size: int = 20,
        linger_s: float = 0.05,
    ) -> None:
        """Initialise with the client that sends each batch."""
        if batch_size < 1:
            msg = f"batch_size must be positive, got: {batch_size}"
            raise ValueError(msg)
        self._client = client
        self._batch_size = batch_size
        self._linger_s = linger_s
        self._pending: list[_Pending] = []
        self._timer: asyncio.TimerHandle | None = None
        self._inflight: set[asyncio.Task[None]] = set()
        self.batches_sent = 0

    async def submit(self, unit: SubmissionUnit, *, attempt: int = 1) -> Ack:
        """Queue ``unit`` and wait for its acknowledgement."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Ack] = loop.create_future()
        self._pending.append(_Pending(unit, attempt, future))
        if len(self._pending) >= self._batch_size:
            self._flush()
        elif self._timer is None:
            self._timer = loop.call_later(self._linger_s, self._flush)
        return await future

    def _flush(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        batch = [entry for entry in self._pending if not entry.future.done()]
        self._pending.clear()
        if not batch:
            return
        task = asyncio.create_task(self._send(batch))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _send(self, batch: list[_Pending]) -> None:
        self.batches_sent += 1
        log_debug(logger, "Submitting batch of %d unit(s)", len(batch))
        try:
            results = await self._client.submit_batch(
                [entry.unit for entry in batch],
                attempt=[entry.attempt for entry in batch],
            )
        except Exception as exc:  # noqa: BLE001 - delivered to every caller
            for entry in batch:
                if not entry.future.done():
                    entry.future.set_exception(exc)
            return
        for entry, result in zip(batch, results, strict=True):
            if entry.future.done():
                continue
            if isinstance(result, Exception):
                entry.future.set_exception(result)
            else:
                entry.future.set_result(result)

    async def aclose(self) -> None:
        """Send anything still queued and wait for in-flight batches."""
        self._flush()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
