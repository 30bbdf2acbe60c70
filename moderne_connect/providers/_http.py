"""Shared HTTP plumbing for REST-based provider clients."""

from __future__ import annotations

import typing as typ

import httpx

from moderne_connect.common.http import (
    HTTP_ERROR_STATUS_THRESHOLD,
    SERVER_ERROR_STATUS_THRESHOLD,
    parse_retry_after,
)
from moderne_connect.errors import AuthError, RateLimited, TransientNetworkError

from .errors import NotFound, ProviderAPIError, ProviderResponseShapeError

_AUTH_STATUSES = frozenset({401, 403})
_NOT_FOUND_STATUS = 404
_TOO_MANY_REQUESTS_STATUS = 429


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == _TOO_MANY_REQUESTS_STATUS:
        return True
    # GitHub signals primary rate limits with 403 and an exhausted quota.
    return (
        response.status_code == 403  # noqa: PLR2004
        and response.headers.get("X-RateLimit-Remaining") == "0"
    )


def raise_for_provider_status(
    service: str, response: httpx.Response, *, organization: str | None
) -> None:
    """Map an error response onto the shared error hierarchy."""
    status = response.status_code
    if status < HTTP_ERROR_STATUS_THRESHOLD:
        return
    if _is_rate_limited(response):
        raise RateLimited.from_service(service, parse_retry_after(response))
    if status in _AUTH_STATUSES:
        raise AuthError.for_service(service, status)
    if status == _NOT_FOUND_STATUS:
        raise NotFound.organization(service, organization or "<default>")
    if status >= SERVER_ERROR_STATUS_THRESHOLD:
        msg = f"{service} HTTP {status}"
        raise TransientNetworkError(msg)
    raise ProviderAPIError.http_error(service, status)


class RestProviderClient:
    """Base class owning the ``httpx.AsyncClient`` used by REST providers."""

    service: typ.ClassVar[str] = "provider"

    def __init__(
        self,
        *,
        headers: dict[str, str],
        timeout_s: float,
        verify: bool = True,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise with default headers, or adopt an injected client."""
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=timeout_s, headers=headers, verify=verify
        )
        if not self._owns_client:
            self._client.headers.update(headers)

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def _get_list(
        self,
        url: str,
        *,
        params: dict[str, str | int] | None,
        organization: str | None,
    ) -> tuple[list[dict[str, typ.Any]], str | None]:
        """GET a JSON array and return it with the ``rel="next"`` link."""
        try:
            response = await self._client.get(url, params=params)
        except httpx.TransportError as exc:
            raise TransientNetworkError.from_exception(self.service, exc) from exc
        raise_for_provider_status(self.service, response, organization=organization)
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderResponseShapeError.unexpected(
                self.service, "body is not JSON"
            ) from exc
        if not isinstance(payload, list):
            raise ProviderResponseShapeError.unexpected(
                self.service, f"expected a JSON array, got {type(payload).__name__}"
            )
        items: list[dict[str, typ.Any]] = []
        for item in payload:
            if not isinstance(item, dict):
                raise ProviderResponseShapeError.unexpected(
                    self.service, "array item is not an object"
                )
            items.append(item)
        next_link = response.links.get("next", {}).get("url")
        return items, next_link or None


def require_str(service: str, item: dict[str, typ.Any], field: str) -> str:
    """Return a non-empty string field or raise a shape error."""
    value = item.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ProviderResponseShapeError.missing(service, field)
    return value
