"""In-memory collaborators for pipeline tests."""

from __future__ import annotations

import asyncio
import dataclasses
import datetime as dt
import typing as typ

from moderne_connect.cache import WorkingCopy
from moderne_connect.providers import RepositoryPage
from moderne_connect.submission import Ack

if typ.TYPE_CHECKING:
    from pathlib import Path

    from moderne_connect.cache import WorkingCopyIndex
    from moderne_connect.providers import RepositoryDescriptor
    from moderne_connect.submission import SubmissionUnit

_EPOCH = dt.datetime(2026, 1, 1, tzinfo=dt.UTC)


async def no_sleep(_delay: float) -> None:
    """Stand in for ``asyncio.sleep`` in retry loops."""
    await asyncio.sleep(0)


class FakeProvider:
    """Serve pre-built pages per organization.

    ``pages`` maps an organization to a list of pages; each page is a list
    of descriptors or an exception to raise when that page is requested.
    """

    def __init__(
        self,
        pages: dict[str | None, list[list[RepositoryDescriptor] | Exception]],
        *,
        name: str = "github.com",
    ) -> None:
        """Initialise with the page script."""
        self._pages = pages
        self._name = name
        self.requests: list[tuple[str | None, str | None]] = []
        self.closed = False

    @property
    def name(self) -> str:
        """Return the provider label."""
        return self._name

    async def fetch_page(
        self, organization: str | None, *, page_token: str | None = None
    ) -> RepositoryPage:
        """Return (or raise) the scripted page for ``organization``."""
        self.requests.append((organization, page_token))
        script = self._pages.get(organization, [[]])
        position = int(page_token or 0)
        entry = script[position]
        if isinstance(entry, Exception):
            # Each scripted error fires once; the retry sees the next entry.
            script.pop(position)
            raise entry
        next_token = str(position + 1) if position + 1 < len(script) else None
        return RepositoryPage(descriptors=tuple(entry), next_token=next_token)

    async def aclose(self) -> None:
        """Record the close."""
        self.closed = True


@dataclasses.dataclass(slots=True)
class FakeCache:
    """Repository cache double that hands out synthetic working copies."""

    root: Path
    index: WorkingCopyIndex | None = None
    revisions: dict[str, str] = dataclasses.field(default_factory=dict)
    failures: dict[str, list[Exception]] = dataclasses.field(default_factory=dict)
    delay: float = 0.0
    synced: list[str] = dataclasses.field(default_factory=list)
    active: int = 0
    peak: int = 0
    removed: list[str] = dataclasses.field(default_factory=list)
    remove_failures: dict[str, Exception] = dataclasses.field(default_factory=dict)

    async def sync(self, descriptor: RepositoryDescriptor) -> WorkingCopy:
        """Return a working copy, raising scripted failures first."""
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            pending = self.failures.get(descriptor.slug)
            if pending:
                raise pending.pop(0)
            self.synced.append(descriptor.slug)
            path = self.root / descriptor.provider / descriptor.organization
            path = path / descriptor.name
            path.mkdir(parents=True, exist_ok=True)
            working_copy = WorkingCopy(
                descriptor=descriptor,
                local_path=path,
                current_revision=self.revisions.get(descriptor.slug, "a" * 40),
                last_synced_at=_EPOCH,
            )
            if self.index is not None:
                await self.index.record_sync(working_copy)
            return working_copy
        finally:
            self.active -= 1

    async def remove(self, descriptor: RepositoryDescriptor) -> bool:
        """Record the removal; only previously synced slugs existed."""
        error = self.remove_failures.get(descriptor.slug)
        if error is not None:
            raise error
        self.removed.append(descriptor.slug)
        return descriptor.slug in self.synced


class FakeSubmitter:
    """Submitter double that records units and replays scripted failures."""

    def __init__(
        self,
        *,
        failures: dict[str, list[Exception]] | None = None,
        delay: float = 0.0,
        host: str = "ingest.example.test",
    ) -> None:
        """Initialise with per-slug failure scripts."""
        self.failures = failures or {}
        self.delay = delay
        self.host = host
        self.calls: list[tuple[str, str, int]] = []
        self.accepted: dict[tuple[str, str], int] = {}

    async def submit(self, unit: SubmissionUnit, *, attempt: int = 1) -> Ack:
        """Acknowledge ``unit``; repeated revisions come back as duplicates."""
        slug = unit.descriptor.slug
        self.calls.append((slug, unit.revision, attempt))
        if self.delay:
            await asyncio.sleep(self.delay)
        pending = self.failures.get(slug)
        if pending:
            raise pending.pop(0)
        key = (slug, unit.revision)
        self.accepted[key] = self.accepted.get(key, 0) + 1
        return Ack(
            identity=unit.descriptor.identity,
            revision=unit.revision,
            duplicate=self.accepted[key] > 1,
        )
