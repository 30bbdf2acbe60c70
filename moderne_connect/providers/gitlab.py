"""GitLab REST implementation of :class:`RepositoryProvider`."""

from __future__ import annotations

import typing as typ
from urllib.parse import quote

from moderne_connect.errors import ConfigError

from ._http import RestProviderClient, require_str
from .models import RepositoryDescriptor, RepositoryPage, Visibility

if typ.TYPE_CHECKING:
    import httpx

    from .config import ProviderConfig


class GitLabProvider(RestProviderClient):
    """List group projects, subgroups included, through the v4 API."""

    service = "GitLab"

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
                "Accept": "application/json",
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
        """Fetch one page of a group's projects."""
        if organization is None:
            raise ConfigError.missing("organization (GitLab lists by group)")
        if page_token:
            url, params = page_token, None
        else:
            group = quote(organization, safe="")
            url = f"{self._config.resolved_api_url}/api/v4/groups/{group}/projects"
            params = {
                "per_page": self._config.page_size,
                "include_subgroups": "true",
                "order_by": "id",
                "sort": "asc",
            }
        items, next_token = await self._get_list(
            url, params=params, organization=organization
        )
        descriptors = tuple(self._descriptor(organization, item) for item in items)
        return RepositoryPage(descriptors=descriptors, next_token=next_token)

    def _descriptor(
        self, organization: str, item: dict[str, typ.Any]
    ) -> RepositoryDescriptor:
        namespace = item.get("namespace")
        full_path = namespace.get("full_path") if isinstance(namespace, dict) else None
        skip_reason = None
        if item.get("archived") and not self._config.include_archived:
            skip_reason = "archived project"
        elif item.get("empty_repo"):
            skip_reason = "empty repository"
        return RepositoryDescriptor(
            provider=self.name,
            organization=full_path
            if isinstance(full_path, str) and full_path
            else organization,
            name=require_str(self.service, item, "path"),
            clone_url=require_str(self.service, item, "http_url_to_repo"),
            default_branch=item.get("default_branch") or self._config.default_branch,
            visibility=Visibility.parse(item.get("visibility")),
            skip_reason=skip_reason,
        )
