"""Protocol definition for repository providers."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    from moderne_connect.providers.models import RepositoryPage


class RepositoryProvider(typ.Protocol):
    """Interface for listing repositories one page at a time.

    Implementations translate one provider's listing API into
    :class:`RepositoryPage` values. Pagination tokens are opaque to callers;
    a page with ``next_token=None`` is the last one.
    """

    @property
    def name(self) -> str:
        """Return the provider host used in repository identities."""
        ...

    async def fetch_page(
        self, organization: str | None, *, page_token: str | None = None
    ) -> RepositoryPage:
        """Fetch one page of repositories for ``organization``.

        Parameters
        ----------
        organization
            Organization or group to list. ``None`` asks for the provider's
            default listing, which only file-backed providers support.
        page_token
            Token from the previous page, or ``None`` for the first page.

        Raises
        ------
        AuthError
            If the provider rejects the configured credentials.
        RateLimited
            If the provider asks the caller to slow down.
        TransientNetworkError
            If the request failed in a way that may clear on retry.
        NotFound
            If the organization does not exist.

        """
        ...

    async def aclose(self) -> None:
        """Release any resources held by the provider."""
        ...
