"""Asynchronous wrapper around the ``git`` executable."""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import os
import typing as typ

from moderne_connect.logging import get_logger, log_debug

from .errors import (
    CloneError,
    CorruptWorkingCopy,
    DiskSpaceError,
    GitRemoteError,
    GitUnavailableError,
)

if typ.TYPE_CHECKING:
    from pathlib import Path

logger = get_logger(__name__)

_DISK_FULL_MARKERS = ("no space left on device", "enospc")
_CORRUPTION_MARKERS = (
    "not a git repository",
    "corrupt",
    "bad object",
    "index file",
    "loose object",
    "unable to read tree",
    "does not point to a valid object",
)
_REMOTE_MARKERS = (
    "repository not found",
    "authentication failed",
    "could not read username",
    "terminal prompts disabled",
    "couldn't find remote ref",
    "remote branch",
    "permission denied",
)


@dataclasses.dataclass(frozen=True, slots=True)
class GitResult:
    """Captured output of a finished git command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str


def _raise_for_git_failure(
    command: str, result: GitResult, *, cwd: Path | None, target: Path | None
) -> None:
    stderr = result.stderr.lower()
    location = target or cwd
    if any(marker in stderr for marker in _DISK_FULL_MARKERS):
        if location is None:
            raise DiskSpaceError(result.stderr.strip())
        raise DiskSpaceError.from_git(location)
    if location is not None and any(marker in stderr for marker in _CORRUPTION_MARKERS):
        raise CorruptWorkingCopy.from_git(location, result.stderr)
    if any(marker in stderr for marker in _REMOTE_MARKERS):
        raise GitRemoteError.from_git(command, result.stderr)
    raise CloneError.from_git(command, result.returncode, result.stderr)


class GitRunner:
    """Run git commands as asyncio subprocesses.

    Credentials are passed per invocation through ``http.extraHeader`` and
    never written to repository configuration. Interactive prompts are
    disabled so a missing credential fails fast instead of hanging.
    """

    def __init__(
        self,
        *,
        executable: str = "git",
        timeout_s: float = 600.0,
        auth_header: str | None = None,
        verify_tls: bool = True,
    ) -> None:
        """Initialise with the git executable, a per-command timeout and auth."""
        self._executable = executable
        self._timeout_s = timeout_s
        self._auth_header = auth_header
        self._verify_tls = verify_tls
        self._env = {
            **os.environ,
            "GIT_TERMINAL_PROMPT": "0",
            "LC_ALL": "C",
        }

    def _base_args(self) -> list[str]:
        args = [self._executable]
        if self._auth_header:
            args += ["-c", f"http.extraHeader={self._auth_header}"]
        if not self._verify_tls:
            args += ["-c", "http.sslVerify=false"]
        return args

    async def run(
        self,
        *args: str,
        cwd: Path | None = None,
        target: Path | None = None,
    ) -> GitResult:
        """Run ``git *args`` and return its output, raising on failure.

        Parameters
        ----------
        *args
            Arguments after ``git``.
        cwd
            Working directory for the command.
        target
            Directory the command writes to, used in error messages when it
            differs from ``cwd`` (for example the clone destination).

        """
        command = args[0] if args else "git"
        log_debug(logger, "Running git %s in %s", " ".join(args), cwd or ".")
        try:
            process = await asyncio.create_subprocess_exec(
                *self._base_args(),
                *args,
                cwd=cwd,
                env=self._env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise GitUnavailableError.for_executable(self._executable) from exc
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self._timeout_s
            )
        except TimeoutError as exc:
            await self._terminate(process)
            raise CloneError.timeout(command, self._timeout_s) from exc
        except asyncio.CancelledError:
            await self._terminate(process)
            raise
        result = GitResult(
            args=tuple(args),
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
        if result.returncode != 0:
            _raise_for_git_failure(command, result, cwd=cwd, target=target)
        return result

    @staticmethod
    async def _terminate(process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()

    async def clone(self, url: str, destination: Path, *, branch: str) -> None:
        """Clone ``branch`` of ``url`` into ``destination``."""
        await self.run(
            "clone",
            "--branch",
            branch,
            "--single-branch",
            "--no-tags",
            url,
            str(destination),
            cwd=destination.parent,
            target=destination,
        )

    async def fetch(self, path: Path, *, branch: str) -> None:
        """Fetch ``branch`` from ``origin`` into ``FETCH_HEAD``."""
        await self.run("fetch", "--prune", "--no-tags", "origin", branch, cwd=path)

    async def reset_to_fetched(self, path: Path, *, branch: str) -> None:
        """Point ``branch`` at ``FETCH_HEAD`` and check it out, discarding edits."""
        await self.run("checkout", "--force", "-B", branch, "FETCH_HEAD", cwd=path)

    async def head_revision(self, path: Path) -> str:
        """Return the commit id checked out at ``path``."""
        result = await self.run("rev-parse", "HEAD", cwd=path)
        return result.stdout.strip()
