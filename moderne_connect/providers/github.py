"""GitHub REST implementation of :class:`RepositoryProvider`."""

from __future__ import annotations

import typing as typ
from urllib.parse import quote

from moderne_connect.errors import ConfigError

from ._http import RestProviderClient, require_str
from .models import RepositoryDescriptor, RepositoryPage, Visibility

if typ.TYPE_CHECKING:
    import httpx

    from .config import ProviderConfig


class GitHubProvider(RestProviderClient):
    """List organization repositories through ``GET /orgs/{org}/repos``.

    The continuation token is the ``rel="next"`` URL from the ``Link``
    header, so resuming a listing replays exactly the request GitHub asked
    for.
    """

    service = "GitHub"

    def __init__(
        self,
        config: ProviderConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client with the provided API configuration."""
        token = (config.token or "").strip()
        if not token:
            raise ConfigError.missing("MODERNE_CONNECT_PROVIDER_TOKEN")
        self._config = config
        super().__init__(
            headers={
                "Authorization": f"Bearer {token}",
                "User-Agent": config.user_agent,
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout_s=config.timeout_s,
            verify=config.verify_tls,
            http_client=http_client,
        )

    @property
    def name(self) -> str:
        """Return the provider host used in repository identities."""
        return self._config.resolved_host

    async def fetch_page(
        self, organization: str | None, *, page_token: str | None = None
    ) -> RepositoryPage:
        """Fetch one page of an organization's repositories."""
        if organization is None:
            raise ConfigError.missing("organization (GitHub lists by organization)")
        if page_token:
            url, params = page_token, None
        else:
            url = f"{self._config.resolved_api_url}/orgs/{quote(organization)}/repos"
            params = {"per_page": self._config.page_size, "type": "all"}
        items, next_token = await self._get_list(
            url, params=params, organization=organization
        )
        descriptors = tuple(self._descriptor(organization, item) for item in items)
        return RepositoryPage(descriptors=descriptors, next_token=next_token)

    def _descriptor(
        self, organization: str, item: dict[str, typ.Any]
    ) -> RepositoryDescriptor:
        owner = item.get("owner")
        login = owner.get("login") if isinstance(owner, dict) else None
        visibility = Visibility.parse(item.get("visibility"))
        if visibility is Visibility.UNKNOWN and isinstance(item.get("private"), bool):
            visibility = Visibility.PRIVATE if item["private"] else Visibility.PUBLIC
        skip_reason = None
        if item.get("archived") and not self._config.include_archived:
            skip_reason = "archived repository"
        return RepositoryDescriptor(
            provider=self.name,
            organization=login if isinstance(login, str) and login else organization,
            name=require_str(self.service, item, "name"),
            clone_url=require_str(self.service, item, "clone_url"),
            default_branch=item.get("default_branch") or self._config.default_branch,
            visibility=visibility,
            skip_reason=skip_reason,
        )
