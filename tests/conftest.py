"""Shared fixtures for unit and feature tests."""

from __future__ import annotations

import os
import shutil
import subprocess
import typing as typ

import pytest
import pytest_asyncio

from moderne_connect.cache import WorkingCopyIndex
from moderne_connect.providers import RepositoryDescriptor

if typ.TYPE_CHECKING:
    from pathlib import Path

_GIT = shutil.which("git")


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear MODERNE_CONNECT_* variables so host settings never leak in."""
    for name in list(os.environ):
        if name.startswith("MODERNE_CONNECT_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_descriptor() -> typ.Callable[..., RepositoryDescriptor]:
    """Return a factory for repository descriptors with sensible defaults."""

    def factory(
        name: str = "widget",
        *,
        organization: str = "acme",
        provider: str = "github.com",
        **kwargs: typ.Any,  # noqa: ANN401 - forwarded to the dataclass
    ) -> RepositoryDescriptor:
        kwargs.setdefault(
            "clone_url", f"https://{provider}/{organization}/{name}.git"
        )
        return RepositoryDescriptor(
            provider=provider, organization=organization, name=name, **kwargs
        )

    return factory


@pytest_asyncio.fixture
async def working_copy_index(tmp_path: Path) -> typ.AsyncIterator[WorkingCopyIndex]:
    """Yield a working-copy index backed by a temporary SQLite file."""
    index = await WorkingCopyIndex.open(
        f"sqlite+aiosqlite:///{tmp_path / 'index.sqlite3'}"
    )
    try:
        yield index
    finally:
        await index.aclose()


def _git(*args: str, cwd: Path) -> str:
    result = subprocess.run(  # noqa: S603 - fixed argv
        [typ.cast("str", _GIT), *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
        env={
            "GIT_AUTHOR_NAME": "Test",
            "GIT_AUTHOR_EMAIL": "test@example.test",
            "GIT_COMMITTER_NAME": "Test",
            "GIT_COMMITTER_EMAIL": "test@example.test",
            "GIT_CONFIG_NOSYSTEM": "1",
            "HOME": str(cwd),
            "PATH": "/usr/bin:/bin:/usr/local/bin",
        },
    )
    return result.stdout.strip()


class LocalRemote:
    """A bare repository on disk with a helper to push new commits."""

    def __init__(self, root: Path) -> None:
        """Create the bare remote and a scratch clone used to author commits."""
        self.bare = root / "remote.git"
        self.work = root / "author"
        self.work.mkdir(parents=True)
        _git("init", "--bare", "--initial-branch=main", str(self.bare), cwd=root)
        _git("init", "--initial-branch=main", cwd=self.work)
        _git("remote", "add", "origin", str(self.bare), cwd=self.work)

    @property
    def url(self) -> str:
        """Return a ``file://`` URL for the bare remote."""
        return self.bare.as_uri()

    def commit(self, filename: str, content: str) -> str:
        """Write ``filename``, commit and push; return the new revision."""
        (self.work / filename).write_text(content, encoding="utf-8")
        _git("add", filename, cwd=self.work)
        _git("commit", "-m", f"update {filename}", cwd=self.work)
        _git("push", "origin", "main", cwd=self.work)
        return _git("rev-parse", "HEAD", cwd=self.work)


@pytest.fixture
def local_remote(tmp_path: Path) -> LocalRemote:
    """Return a local bare git remote; skips when git is missing."""
    if _GIT is None:
        pytest.skip("git executable not found")
    return LocalRemote(tmp_path / "remotes")
