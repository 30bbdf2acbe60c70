"""Configuration for the repository cache.

Usage
-----
>>> from pathlib import Path
>>> config = CacheConfig(root=Path("/tmp/repos"))
>>> config.index_url
'sqlite+aiosqlite:////tmp/repos/.moderne-connect.sqlite3'

"""

from __future__ import annotations

import dataclasses as dc
from pathlib import Path

from moderne_connect.common.env import (
    env_str,
    parse_bool,
    parse_non_negative_float,
)

DEFAULT_CACHE_ROOT = Path("~/.cache/moderne-connect/repos")
INDEX_FILENAME = ".moderne-connect.sqlite3"


@dc.dataclass(frozen=True, slots=True)
class CacheConfig:
    """Settings for the on-disk repository cache.

    Attributes
    ----------
    root
        Directory that holds ``provider/organization/name`` working copies.
    git_executable
        Name or path of the git binary.
    git_timeout_s
        Timeout applied to each git command. Default 600 seconds.
    min_free_bytes
        Refuse to sync when the cache volume has less free space than this.
        ``0`` disables the check.
    use_index
        Whether to keep the SQLite working-copy index under ``root``.
    database_url
        Override for the index database URL.

    """

    root: Path = DEFAULT_CACHE_ROOT
    git_executable: str = "git"
    git_timeout_s: float = 600.0
    min_free_bytes: int = 0
    use_index: bool = True
    database_url: str | None = None

    @property
    def resolved_root(self) -> Path:
        """Return the cache root with ``~`` expanded."""
        return self.root.expanduser()

    @property
    def index_url(self) -> str:
        """Return the SQLAlchemy URL of the working-copy index."""
        if self.database_url:
            return self.database_url
        return f"sqlite+aiosqlite:///{self.resolved_root / INDEX_FILENAME}"

    @classmethod
    def from_env(cls) -> CacheConfig:
        """Create configuration from environment variables.

        Reads ``MODERNE_CONNECT_CACHE_ROOT``, ``MODERNE_CONNECT_GIT``,
        ``MODERNE_CONNECT_GIT_TIMEOUT``, ``MODERNE_CONNECT_MIN_FREE_BYTES``,
        ``MODERNE_CONNECT_USE_INDEX`` and ``MODERNE_CONNECT_DATABASE_URL``.
        """
        root = env_str("MODERNE_CONNECT_CACHE_ROOT")
        return cls(
            root=Path(root) if root else DEFAULT_CACHE_ROOT,
            git_executable=env_str("MODERNE_CONNECT_GIT", "git") or "git",
            git_timeout_s=parse_non_negative_float(
                "MODERNE_CONNECT_GIT_TIMEOUT", 600.0
            ),
            min_free_bytes=int(
                parse_non_negative_float("MODERNE_CONNECT_MIN_FREE_BYTES", 0)
            ),
            use_index=parse_bool("MODERNE_CONNECT_USE_INDEX", default=True),
            database_url=env_str("MODERNE_CONNECT_DATABASE_URL"),
        )
