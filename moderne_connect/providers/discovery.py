"""Lazy, resumable repository discovery across organizations.

Discovery walks the requested organizations in order and fetches one page at
a time, so the first repositories can be synced while later pages are still
being listed. Each page is retried on rate limiting and transient network
errors; an unknown organization is logged and contributes nothing.

Usage
-----
>>> listing = discover(provider, OrganizationFilter(organizations=("acme",)))
>>> async for descriptor in listing:  # doctest: +SKIP
...     print(descriptor.slug)

"""

from __future__ import annotations

import asyncio
import dataclasses
import fnmatch
import typing as typ

from moderne_connect.errors import ConfigError
from moderne_connect.logging import get_logger, log_info, log_warning
from moderne_connect.scheduling.retry import RetryPolicy, RetryState, retry_call

from .errors import NotFound

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from moderne_connect.scheduling.cancellation import CancellationToken

    from .models import RepositoryDescriptor, RepositoryPage
    from .protocol import RepositoryProvider

logger = get_logger(__name__)


@dataclasses.dataclass(frozen=True, slots=True)
class OrganizationFilter:
    """Which organizations to list and which repositories to keep.

    Attributes
    ----------
    organizations
        Organizations or groups to walk, in order. Empty means the provider's
        default listing (only the CSV provider has one).
    include
        Glob patterns matched against ``organization/name``; empty keeps all.
    prefix
        Keep only repositories whose ``organization/name`` starts with this.

    """

    organizations: tuple[str, ...] = ()
    include: tuple[str, ...] = ()
    prefix: str | None = None

    def matches(self, descriptor: RepositoryDescriptor) -> bool:
        """Return True when ``descriptor`` passes the include and prefix rules."""
        path = descriptor.identity.path
        if self.prefix and not path.startswith(self.prefix):
            return False
        if self.include:
            return any(fnmatch.fnmatchcase(path, pattern) for pattern in self.include)
        return True


@dataclasses.dataclass(frozen=True, slots=True)
class DiscoveryCursor:
    """Position of the page discovery is working on.

    Restarting from a cursor re-fetches that page; descriptors already seen
    are dropped by identity downstream.
    """

    organization_index: int = 0
    page_token: str | None = None

    def __str__(self) -> str:
        """Return the ``<organization index>:<page token>`` form."""
        return f"{self.organization_index}:{self.page_token or ''}"

    @classmethod
    def parse(cls, text: str) -> DiscoveryCursor:
        """Parse the form produced by :meth:`__str__`.

        Raises
        ------
        ConfigError
            If the organization index is not a non-negative integer.

        """
        raw_index, _, token = text.strip().partition(":")
        if not raw_index.isdigit():
            reason = f"expected <organization index>:<page token>, got {text!r}"
            raise ConfigError.invalid("resume_from", reason)
        return cls(int(raw_index), token or None)


class RepositoryListing:
    """Async iterable of descriptors that remembers where it stopped."""

    def __init__(
        self,
        provider: RepositoryProvider,
        organization_filter: OrganizationFilter,
        *,
        retry_policy: RetryPolicy | None = None,
        cursor: DiscoveryCursor | None = None,
        sleep: cabc.Callable[[float], cabc.Awaitable[object]] = asyncio.sleep,
        cancellation: CancellationToken | None = None,
    ) -> None:
        """Prepare a listing; nothing is fetched until iteration starts."""
        self._provider = provider
        self._filter = organization_filter
        self._policy = retry_policy or RetryPolicy()
        self._cursor = cursor or DiscoveryCursor()
        self._cancellation = cancellation
        if cancellation is not None and sleep is asyncio.sleep:
            sleep = cancellation.sleep
        self._sleep = sleep
        self.pages_fetched = 0

    @property
    def cursor(self) -> DiscoveryCursor:
        """Return the cursor for the page in progress (or the next one)."""
        return self._cursor

    @property
    def exhausted(self) -> bool:
        """Return True once every requested organization has been listed."""
        organizations = self._filter.organizations or (None,)
        return self._cursor.organization_index >= len(organizations)

    def __aiter__(self) -> cabc.AsyncIterator[RepositoryDescriptor]:
        """Iterate lazily from the current cursor."""
        return self._iterate()

    def _stopped(self) -> bool:
        if self._cancellation is None or not self._cancellation.cancelled:
            return False
        log_info(
            logger,
            "Discovery stopped at organization %d page %s: %s",
            self._cursor.organization_index,
            self._cursor.page_token or "<first>",
            self._cancellation.reason,
        )
        return True

    async def _iterate(self) -> cabc.AsyncIterator[RepositoryDescriptor]:
        organizations: tuple[str | None, ...] = self._filter.organizations or (None,)
        index = self._cursor.organization_index
        token = self._cursor.page_token
        while index < len(organizations):
            if self._stopped():
                return
            organization = organizations[index]
            try:
                page = await self._fetch(organization, token)
            except NotFound as exc:
                log_warning(logger, "Skipping organization %s: %s", organization, exc)
                page = None
            except Exception:
                # A retry wait cut short by cancellation re-raises its error.
                if self._stopped():
                    return
                raise
            if page is not None:
                for descriptor in page.descriptors:
                    if self._filter.matches(descriptor):
                        yield descriptor
            if page is not None and page.next_token:
                token = page.next_token
            else:
                index += 1
                token = None
            self._cursor = DiscoveryCursor(index, token)

    async def _fetch(
        self, organization: str | None, page_token: str | None
    ) -> RepositoryPage:
        async def call(_state: RetryState) -> RepositoryPage:
            return await self._provider.fetch_page(organization, page_token=page_token)

        page = await retry_call(
            call,
            self._policy,
            sleep=self._sleep,
            on_retry=lambda state, exc, delay: log_warning(
                logger,
                "Retrying %s page for %s (attempt %d) in %.2fs: %s",
                self._provider.name,
                organization or "<default>",
                state.attempt,
                delay,
                exc,
            ),
        )
        self.pages_fetched += 1
        log_info(
            logger,
            "Fetched %d repositories from %s (%s)",
            len(page.descriptors),
            self._provider.name,
            organization or "<default>",
        )
        return page


def discover(
    provider: RepositoryProvider,
    organization_filter: OrganizationFilter,
    *,
    retry_policy: RetryPolicy | None = None,
    cursor: DiscoveryCursor | None = None,
    sleep: cabc.Callable[[float], cabc.Awaitable[object]] = asyncio.sleep,
    cancellation: CancellationToken | None = None,
) -> RepositoryListing:
    """Return a lazy listing of the repositories matched by ``organization_filter``.

    With a ``cancellation`` token, retry waits end as soon as it is cancelled
    and the listing stops at the page in progress.
    """
    return RepositoryListing(
        provider,
        organization_filter,
        retry_policy=retry_policy,
        cursor=cursor,
        sleep=sleep,
        cancellation=cancellation,
    )
