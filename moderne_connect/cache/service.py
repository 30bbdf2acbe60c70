"""Clone-or-update service for the on-disk repository cache."""

from __future__ import annotations

import asyncio
import contextlib
import errno
import shutil
import typing as typ

from moderne_connect.common.time import utcnow
from moderne_connect.logging import get_logger, log_info, log_warning

from .config import CacheConfig
from .errors import CorruptWorkingCopy, DiskSpaceError
from .git import GitRunner
from .locks import KeyedLock
from .models import WorkingCopy
from .paths import working_copy_path

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

    from moderne_connect.providers.models import RepositoryDescriptor

    from .storage import WorkingCopyIndex

logger = get_logger(__name__)

_PARTIAL_SUFFIX = ".partial"


class _DiskUsage(typ.Protocol):
    free: int


@contextlib.contextmanager
def _disk_full_as_error(path: Path) -> cabc.Iterator[None]:
    """Translate ENOSPC from filesystem calls into :class:`DiskSpaceError`."""
    try:
        yield
    except OSError as exc:
        if exc.errno == errno.ENOSPC:
            raise DiskSpaceError.from_os_error(path, exc) from exc
        raise


class RepositoryCache:
    """Materialise repositories under ``root/provider/organization/name``.

    Syncs of the same repository are serialised by a per-identity lock.
    Fresh clones land in a ``.partial`` sibling directory first and are
    renamed into place, so an interrupted clone never looks like a usable
    working copy.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        git: GitRunner | None = None,
        index: WorkingCopyIndex | None = None,
        locks: KeyedLock | None = None,
        disk_usage: cabc.Callable[[Path], _DiskUsage] = shutil.disk_usage,
    ) -> None:
        """Initialise the cache; git defaults to the configured executable."""
        self._config = config or CacheConfig()
        self._root = self._config.resolved_root
        self._git = git or GitRunner(
            executable=self._config.git_executable,
            timeout_s=self._config.git_timeout_s,
        )
        self._index = index
        self._locks = locks or KeyedLock()
        self._disk_usage = disk_usage

    @property
    def root(self) -> Path:
        """Return the expanded cache root."""
        return self._root

    @property
    def index(self) -> WorkingCopyIndex | None:
        """Return the working-copy index, when one is attached."""
        return self._index

    def path_for(self, descriptor: RepositoryDescriptor) -> Path:
        """Return the validated cache path for ``descriptor``."""
        return working_copy_path(self._root, descriptor.identity)

    async def sync(self, descriptor: RepositoryDescriptor) -> WorkingCopy:
        """Clone or update ``descriptor`` and return its working copy.

        A working copy that git reports as corrupt is deleted and cloned
        again once; a second corruption propagates.

        Raises
        ------
        InvalidRepositoryPath
            If the identity cannot be mapped safely under the cache root.
        CloneError
            If git fails in a way worth retrying.
        DiskSpaceError
            If the cache volume is full or below the configured floor.
        CorruptWorkingCopy
            If a fresh clone is also unusable.

        """
        path = self.path_for(descriptor)
        async with self._locks.hold(descriptor.identity):
            await self._check_free_space()
            cloned = not await asyncio.to_thread(path.exists)
            try:
                if cloned:
                    revision = await self._clone(descriptor, path)
                else:
                    revision = await self._update(descriptor, path)
            except CorruptWorkingCopy as exc:
                if cloned:
                    raise
                log_warning(
                    logger, "Recloning %s after corruption: %s", descriptor.slug, exc
                )
                await self._remove(path)
                revision = await self._clone(descriptor, path)
                cloned = True
            working_copy = WorkingCopy(
                descriptor=descriptor,
                local_path=path,
                current_revision=revision,
                last_synced_at=utcnow(),
                cloned=cloned,
            )
            if self._index is not None:
                await self._index.record_sync(working_copy)
        log_info(
            logger,
            "%s %s at %s",
            "Cloned" if cloned else "Updated",
            descriptor.slug,
            revision,
        )
        return working_copy

    async def remove(self, descriptor: RepositoryDescriptor) -> bool:
        """Delete the working copy of ``descriptor``; return True if one existed."""
        path = self.path_for(descriptor)
        async with self._locks.hold(descriptor.identity):
            if not await asyncio.to_thread(path.exists):
                return False
            await self._remove(path)
        log_info(logger, "Removed working copy of %s", descriptor.slug)
        return True

    async def _check_free_space(self) -> None:
        required = self._config.min_free_bytes
        if required <= 0:
            return
        with _disk_full_as_error(self._root):
            await asyncio.to_thread(self._root.mkdir, parents=True, exist_ok=True)
        usage = await asyncio.to_thread(self._disk_usage, self._root)
        if usage.free < required:
            raise DiskSpaceError.below_floor(self._root, usage.free, required)

    async def _update(self, descriptor: RepositoryDescriptor, path: Path) -> str:
        if not await asyncio.to_thread((path / ".git").exists):
            raise CorruptWorkingCopy.not_a_repository(path)
        branch = descriptor.default_branch
        await self._git.fetch(path, branch=branch)
        await self._git.reset_to_fetched(path, branch=branch)
        return await self._git.head_revision(path)

    async def _clone(self, descriptor: RepositoryDescriptor, path: Path) -> str:
        partial = path.with_name(path.name + _PARTIAL_SUFFIX)
        await self._remove(partial)
        try:
            with _disk_full_as_error(partial):
                await asyncio.to_thread(
                    partial.parent.mkdir, parents=True, exist_ok=True
                )
            await self._git.clone(
                descriptor.clone_url, partial, branch=descriptor.default_branch
            )
            revision = await self._git.head_revision(partial)
            with _disk_full_as_error(path):
                await asyncio.to_thread(partial.rename, path)
        except Exception:
            await self._remove(partial)
            raise
        return revision

    @staticmethod
    async def _remove(path: Path) -> None:
        def remove() -> None:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            elif path.exists() or path.is_symlink():
                path.unlink()

        await asyncio.to_thread(remove)
