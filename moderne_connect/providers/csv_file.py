"""Repository listings read from a CSV file.

The file carries a header row. ``repoName`` (``organization/name``) is
required; ``scmHost``, ``repoBranch``, ``skip`` and ``skipReason`` are
optional, and any other columns are ignored::

    scmHost,repoName,repoBranch,skip,skipReason
    https://github.com,openrewrite/rewrite,main,,
    https://gitlab.example.com,platform/tools/cli,develop,true,retired
"""

from __future__ import annotations

import asyncio
import csv
import typing as typ
from urllib.parse import urlsplit

from moderne_connect.common.slug import parse_repo_path
from moderne_connect.errors import ConfigError
from moderne_connect.logging import get_logger, log_warning

from .errors import CsvSourceError
from .models import RepositoryDescriptor, RepositoryPage

if typ.TYPE_CHECKING:
    from pathlib import Path

    from .config import ProviderConfig

logger = get_logger(__name__)

DEFAULT_SCM_HOST = "https://github.com"
_REQUIRED_COLUMN = "repoName"


def _cell(row: dict[str, str | None], column: str) -> str:
    return (row.get(column) or "").strip()


def _row_descriptor(
    row: dict[str, str | None], *, line: int, default_branch: str
) -> RepositoryDescriptor | None:
    repo_name = _cell(row, _REQUIRED_COLUMN)
    if not repo_name:
        log_warning(logger, "Skipping CSV line %d: empty repoName", line)
        return None
    try:
        organization, name = parse_repo_path(repo_name)
    except ValueError as exc:
        log_warning(logger, "Skipping CSV line %d: %s", line, exc)
        return None
    scm_host = (_cell(row, "scmHost") or DEFAULT_SCM_HOST).rstrip("/")
    host = urlsplit(scm_host).hostname
    if not host:
        log_warning(logger, "Skipping CSV line %d: invalid scmHost %r", line, scm_host)
        return None
    skip_reason = None
    if _cell(row, "skip").lower() == "true":
        skip_reason = _cell(row, "skipReason") or "marked as skipped"
    return RepositoryDescriptor(
        provider=host,
        organization=organization,
        name=name,
        clone_url=f"{scm_host}/{organization}/{name}.git",
        default_branch=_cell(row, "repoBranch") or default_branch,
        skip_reason=skip_reason,
    )


def read_repository_csv(
    path: Path, *, default_branch: str
) -> list[RepositoryDescriptor]:
    """Parse ``path`` into descriptors, in file order.

    Raises
    ------
    ConfigError
        If the file does not exist.
    CsvSourceError
        If the header lacks the ``repoName`` column.

    """
    if not path.is_file():
        raise ConfigError.invalid("csv_path", f"{path} is not a readable file")
    descriptors: list[RepositoryDescriptor] = []
    with path.open(newline="", encoding="utf-8-sig") as handle:
        reader = csv.DictReader(handle)
        if reader.fieldnames is None or _REQUIRED_COLUMN not in reader.fieldnames:
            raise CsvSourceError.missing_column(str(path), _REQUIRED_COLUMN)
        for row in reader:
            descriptor = _row_descriptor(
                row, line=reader.line_num, default_branch=default_branch
            )
            if descriptor is not None:
                descriptors.append(descriptor)
    return descriptors


class CsvProvider:
    """Serve a CSV repository list through the provider interface.

    The page token is the row offset within the (optionally
    organization-filtered) listing. ``organization=None`` lists every row.
    """

    def __init__(self, config: ProviderConfig) -> None:
        """Initialise with the CSV path and default branch from ``config``."""
        if config.csv_path is None:
            raise ConfigError.missing("MODERNE_CONNECT_CSV_PATH")
        self._path = config.csv_path
        self._default_branch = config.default_branch
        self._page_size = config.page_size
        self._rows: list[RepositoryDescriptor] | None = None
        self._load_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        """Return the provider label; row identities carry their own host."""
        return "csv"

    async def _load(self) -> list[RepositoryDescriptor]:
        async with self._load_lock:
            if self._rows is None:
                self._rows = await asyncio.to_thread(
                    read_repository_csv,
                    self._path,
                    default_branch=self._default_branch,
                )
            return self._rows

    async def fetch_page(
        self, organization: str | None, *, page_token: str | None = None
    ) -> RepositoryPage:
        """Return the rows for ``organization`` starting at the token offset."""
        rows = await self._load()
        if organization is not None:
            rows = [row for row in rows if row.organization == organization]
        try:
            offset = int(page_token) if page_token else 0
        except ValueError as exc:
            raise ConfigError.invalid(
                "page_token", f"{page_token!r} is not a row offset"
            ) from exc
        end = offset + self._page_size
        next_token = str(end) if end < len(rows) else None
        return RepositoryPage(
            descriptors=tuple(rows[offset:end]), next_token=next_token
        )

    async def aclose(self) -> None:
        """Release cached rows."""
        self._rows = None
