"""Unit tests for the CSV repository source."""

from __future__ import annotations

import typing as typ

import pytest

from moderne_connect.errors import ConfigError
from moderne_connect.providers import (
    CsvProvider,
    CsvSourceError,
    ProviderConfig,
    ProviderKind,
    read_repository_csv,
)

if typ.TYPE_CHECKING:
    from pathlib import Path

_CSV = """\
scmHost,repoName,repoBranch,skip,skipReason,origin
https://github.com,openrewrite/rewrite,main,,,ignored
https://gitlab.example.com/,platform/tools/cli,develop,true,retired,
,acme/widget,,,,
,not-a-path,,,,
,,,,,
"""


@pytest.fixture
def csv_path(tmp_path: Path) -> Path:
    """Write the sample repository list."""
    path = tmp_path / "repos.csv"
    path.write_text(_CSV, encoding="utf-8")
    return path


class TestReadRepositoryCsv:
    """Tests for read_repository_csv."""

    def test_parses_rows_in_order(self, csv_path: Path) -> None:
        """Valid rows become descriptors; invalid rows are dropped."""
        rows = read_repository_csv(csv_path, default_branch="trunk")

        assert [row.slug for row in rows] == [
            "github.com:openrewrite/rewrite",
            "gitlab.example.com:platform/tools/cli",
            "github.com:acme/widget",
        ]
        assert rows[1].clone_url == "https://gitlab.example.com/platform/tools/cli.git"
        assert rows[1].skip_reason == "retired"
        assert rows[2].default_branch == "trunk"
        assert rows[0].skip_reason is None

    def test_missing_column(self, tmp_path: Path) -> None:
        """A file without repoName is rejected."""
        path = tmp_path / "bad.csv"
        path.write_text("name\nwidget\n", encoding="utf-8")
        with pytest.raises(CsvSourceError, match="repoName"):
            read_repository_csv(path, default_branch="main")

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file is a configuration error."""
        with pytest.raises(ConfigError, match="csv_path"):
            read_repository_csv(tmp_path / "absent.csv", default_branch="main")


class TestCsvProvider:
    """Tests for CsvProvider pagination."""

    @pytest.mark.asyncio
    async def test_pages_by_row_offset(self, csv_path: Path) -> None:
        """Tokens are row offsets into the listing."""
        provider = CsvProvider(
            ProviderConfig(kind=ProviderKind.CSV, csv_path=csv_path, page_size=2)
        )

        first = await provider.fetch_page(None)
        second = await provider.fetch_page(None, page_token=first.next_token)

        assert len(first.descriptors) == 2
        assert first.next_token == "2"
        assert [d.name for d in second.descriptors] == ["widget"]
        assert second.next_token is None

    @pytest.mark.asyncio
    async def test_filters_by_organization(self, csv_path: Path) -> None:
        """Naming an organization keeps only its rows."""
        provider = CsvProvider(ProviderConfig(kind=ProviderKind.CSV, csv_path=csv_path))
        page = await provider.fetch_page("acme")
        assert [d.slug for d in page.descriptors] == ["github.com:acme/widget"]

    @pytest.mark.asyncio
    async def test_rejects_bad_token(self, csv_path: Path) -> None:
        """Tokens that are not offsets are rejected."""
        provider = CsvProvider(ProviderConfig(kind=ProviderKind.CSV, csv_path=csv_path))
        with pytest.raises(ConfigError, match="page_token"):
            await provider.fetch_page(None, page_token="next")
