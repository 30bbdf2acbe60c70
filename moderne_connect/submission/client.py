"""HTTP client for the ingestion service."""

from __future__ import annotations

import collections.abc as cabc
import typing as typ

import httpx
import msgspec

from moderne_connect.common.http import (
    HTTP_ERROR_STATUS_THRESHOLD,
    SERVER_ERROR_STATUS_THRESHOLD,
    parse_retry_after,
)
from moderne_connect.errors import AuthError, RateLimited, TransientNetworkError

from .errors import (
    IngestionResponseShapeError,
    Rejected,
    SubmissionTimeout,
    TransientServerError,
)
from .models import Ack, SubmissionRequest, WireAck, to_wire, unit_key

if typ.TYPE_CHECKING:
    from .config import IngestionConfig
    from .models import SubmissionUnit

_SERVICE = "ingestion service"
_AUTH_STATUSES = frozenset({401, 403})
_REQUEST_TIMEOUT_STATUS = 408
_TOO_MANY_REQUESTS_STATUS = 429

type SubmitResult = Ack | Rejected | TransientServerError


class IngestionClient:
    """Submit units with ``POST {"units": [...]}`` and decode acknowledgements.

    Whole-request failures (authentication, timeouts, 5xx, rate limiting)
    raise. Per-unit outcomes inside a successful response are returned in
    input order, so one rejected unit does not fail its batch mates.
    """

    def __init__(
        self,
        config: IngestionConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client with the provided service configuration."""
        self._config = config
        headers = {
            "User-Agent": config.user_agent,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=config.timeout_s, headers=headers, verify=config.verify_tls
        )
        if not self._owns_client:
            self._client.headers.update(headers)

    @property
    def host(self) -> str:
        """Return the ingestion host name."""
        return self._config.host

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def submit(self, unit: SubmissionUnit, *, attempt: int = 1) -> Ack:
        """Submit one unit and return its acknowledgement.

        Raises
        ------
        AuthError
            If the service rejects the credentials.
        Rejected
            If the service refuses the unit permanently.
        SubmissionTimeout
            If the request times out.
        RateLimited
            If the service asks the caller to slow down.
        TransientServerError
            For 5xx responses or a missing acknowledgement.
        TransientNetworkError
            For transport failures.

        """
        (result,) = await self.submit_batch([unit], attempt=attempt)
        if isinstance(result, Exception):
            raise result
        return result

    async def submit_batch(
        self,
        units: cabc.Sequence[SubmissionUnit],
        *,
        attempt: int | cabc.Sequence[int] = 1,
    ) -> list[SubmitResult]:
        """Submit ``units`` in one request.

        ``attempt`` is either shared by every unit or given per unit.
        """
        if not units:
            return []
        attempts = (
            [attempt] * len(units) if isinstance(attempt, int) else list(attempt)
        )
        if len(attempts) != len(units):
            msg = "attempt must be an int or have one entry per unit"
            raise ValueError(msg)
        request = SubmissionRequest(
            units=[
                to_wire(unit, attempt=unit_attempt)
                for unit, unit_attempt in zip(units, attempts, strict=True)
            ]
        )
        response = await self._post(msgspec.json.encode(request))
        acks = self._decode(response)
        by_key = {ack.key: ack for ack in acks}
        return [self._result_for(unit, by_key.get(unit_key(unit))) for unit in units]

    async def _post(self, body: bytes) -> httpx.Response:
        try:
            response = await self._client.post(self._config.endpoint, content=body)
        except httpx.TimeoutException as exc:
            raise SubmissionTimeout.after(self._config.timeout_s) from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError.from_exception(_SERVICE, exc) from exc
        self._raise_for_status(response)
        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        status = response.status_code
        if status < HTTP_ERROR_STATUS_THRESHOLD:
            return
        if status in _AUTH_STATUSES:
            raise AuthError.for_service(_SERVICE, status)
        if status == _REQUEST_TIMEOUT_STATUS:
            raise SubmissionTimeout.server_timeout()
        if status == _TOO_MANY_REQUESTS_STATUS:
            raise RateLimited.from_service(_SERVICE, parse_retry_after(response))
        if status >= SERVER_ERROR_STATUS_THRESHOLD:
            raise TransientServerError.http_error(status)
        raise Rejected.http_error(status, response.text)

    @staticmethod
    def _decode(response: httpx.Response) -> list[WireAck]:
        try:
            return msgspec.json.decode(response.content, type=list[WireAck])
        except msgspec.ValidationError as exc:
            raise IngestionResponseShapeError.invalid(response.text, str(exc)) from exc
        except msgspec.DecodeError as exc:
            raise IngestionResponseShapeError.invalid(
                response.text, "not JSON"
            ) from exc

    @staticmethod
    def _result_for(unit: SubmissionUnit, ack: WireAck | None) -> SubmitResult:
        slug = unit.descriptor.slug
        if ack is None:
            return TransientServerError.missing_ack(slug)
        if ack.status == "rejected":
            return Rejected.for_unit(slug, ack.reason)
        return Ack(
            identity=unit.descriptor.identity,
            revision=unit.revision,
            duplicate=ack.status == "duplicate",
        )
