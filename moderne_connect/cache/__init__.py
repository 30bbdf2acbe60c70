"""On-disk repository cache: clone, update and index working copies."""

from __future__ import annotations

from .config import CacheConfig
from .errors import (
    CloneError,
    CorruptWorkingCopy,
    DiskSpaceError,
    GitRemoteError,
    GitUnavailableError,
    InvalidRepositoryPath,
)
from .git import GitResult, GitRunner
from .locks import KeyedLock
from .models import IndexEntry, WorkingCopy
from .paths import validate_component, working_copy_path
from .service import RepositoryCache
from .storage import WorkingCopyIndex, WorkingCopyRecord, init_index_storage

__all__ = [
    "CacheConfig",
    "CloneError",
    "CorruptWorkingCopy",
    "DiskSpaceError",
    "GitRemoteError",
    "GitResult",
    "GitRunner",
    "GitUnavailableError",
    "IndexEntry",
    "InvalidRepositoryPath",
    "KeyedLock",
    "RepositoryCache",
    "WorkingCopy",
    "WorkingCopyIndex",
    "WorkingCopyRecord",
    "init_index_storage",
    "validate_component",
    "working_copy_path",
]
