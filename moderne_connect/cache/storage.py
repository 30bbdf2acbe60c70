"""Persistent index of working copies and their last submitted revision.

The index plays the role of a watermark: once a revision has been
acknowledged by the ingestion service it is recorded here, and later runs
can skip repositories whose synced revision has not moved.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import typing as typ

from sqlalchemy import DateTime, String, UniqueConstraint, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from moderne_connect.common.time import utcnow

from .models import IndexEntry

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

    from moderne_connect.providers.models import RepositoryIdentity

    from .models import WorkingCopy


class Base(DeclarativeBase):
    """Base declarative class for working-copy index models."""


class UTCDateTime(TypeDecorator[dt.datetime]):
    """DateTime wrapper that round-trips UTC tzinfo even on SQLite."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Force bound datetime values to UTC with tzinfo."""
        if value is None:
            return None
        if value.tzinfo is None:
            msg = "working-copy index timestamps must be timezone-aware"
            raise ValueError(msg)
        return value.astimezone(dt.UTC)

    def process_result_value(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Ensure result datetimes are UTC and timezone aware."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


class WorkingCopyRecord(Base):
    """One cached repository and its sync/submission watermarks."""

    __tablename__ = "working_copies"
    __table_args__ = (
        UniqueConstraint(
            "provider", "organization", "name", name="uq_working_copy_identity"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String(255))
    organization: Mapped[str] = mapped_column(String(512))
    name: Mapped[str] = mapped_column(String(255))
    local_path: Mapped[str] = mapped_column(String(4096))
    current_revision: Mapped[str | None] = mapped_column(String(64), default=None)
    last_synced_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    last_submitted_revision: Mapped[str | None] = mapped_column(
        String(64), default=None
    )
    last_submitted_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )

    def to_entry(self) -> IndexEntry:
        """Detach the record into an immutable value."""
        return IndexEntry(
            local_path=self.local_path,
            current_revision=self.current_revision,
            last_synced_at=self.last_synced_at,
            last_submitted_revision=self.last_submitted_revision,
            last_submitted_at=self.last_submitted_at,
        )


async def init_index_storage(engine: AsyncEngine) -> None:
    """Create all tables registered with Base if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


class WorkingCopyIndex:
    """Async access to :class:`WorkingCopyRecord` rows.

    Writes are serialised through one lock; SQLite allows a single writer
    and concurrent sync tasks would otherwise contend for it.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        """Initialise with a session factory; ``engine`` is disposed on close."""
        self._session_factory = session_factory
        self._engine = engine
        self._write_lock = asyncio.Lock()

    @classmethod
    async def open(cls, database_url: str) -> WorkingCopyIndex:
        """Create the engine and schema for ``database_url`` and return an index."""
        engine = create_async_engine(database_url)
        await init_index_storage(engine)
        return cls(async_sessionmaker(engine, expire_on_commit=False), engine=engine)

    async def aclose(self) -> None:
        """Dispose of an engine created by :meth:`open`."""
        if self._engine is not None:
            await self._engine.dispose()

    @staticmethod
    async def _find(
        session: AsyncSession, identity: RepositoryIdentity
    ) -> WorkingCopyRecord | None:
        return await session.scalar(
            select(WorkingCopyRecord).where(
                WorkingCopyRecord.provider == identity.provider,
                WorkingCopyRecord.organization == identity.organization,
                WorkingCopyRecord.name == identity.name,
            )
        )

    async def get(self, identity: RepositoryIdentity) -> IndexEntry | None:
        """Return the index entry for ``identity``, if one exists."""
        async with self._session_factory() as session:
            record = await self._find(session, identity)
            return record.to_entry() if record is not None else None

    async def record_sync(self, working_copy: WorkingCopy) -> None:
        """Store the path and revision of a freshly synced working copy."""
        identity = working_copy.descriptor.identity
        async with self._write_lock, self._session_factory() as session:
            record = await self._find(session, identity)
            if record is None:
                record = WorkingCopyRecord(
                    provider=identity.provider,
                    organization=identity.organization,
                    name=identity.name,
                    local_path=str(working_copy.local_path),
                )
                session.add(record)
            record.local_path = str(working_copy.local_path)
            record.current_revision = working_copy.current_revision
            record.last_synced_at = working_copy.last_synced_at
            await session.commit()

    async def record_submission(
        self,
        identity: RepositoryIdentity,
        revision: str,
        *,
        submitted_at: dt.datetime | None = None,
    ) -> None:
        """Remember that ``revision`` was acknowledged by the ingestion service."""
        async with self._write_lock, self._session_factory() as session:
            record = await self._find(session, identity)
            if record is None:
                return
            record.last_submitted_revision = revision
            record.last_submitted_at = submitted_at or utcnow()
            await session.commit()

    async def last_submitted_revision(self, identity: RepositoryIdentity) -> str | None:
        """Return the last acknowledged revision for ``identity``."""
        entry = await self.get(identity)
        return entry.last_submitted_revision if entry is not None else None
