"""Repository cache errors."""

from __future__ import annotations

import typing as typ

from moderne_connect.errors import ConfigError, Retryable, Terminal

if typ.TYPE_CHECKING:
    from pathlib import Path

_STDERR_EXCERPT_CHARS = 400


def _excerpt(stderr: str) -> str:
    text = " ".join(stderr.split())
    if len(text) > _STDERR_EXCERPT_CHARS:
        return text[: _STDERR_EXCERPT_CHARS - 3] + "..."
    return text


class CloneError(Retryable):
    """Raised when a git clone or fetch fails in a way worth retrying."""

    def __init__(self, message: str, *, returncode: int | None = None) -> None:
        """Initialise with a message and the git exit status, if any."""
        self.returncode = returncode
        super().__init__(message)

    @classmethod
    def from_git(cls, command: str, returncode: int, stderr: str) -> CloneError:
        """Return an error for a failed git invocation."""
        return cls(
            f"git {command} exited with {returncode}: {_excerpt(stderr)}",
            returncode=returncode,
        )

    @classmethod
    def timeout(cls, command: str, timeout_s: float) -> CloneError:
        """Return an error for a git invocation that exceeded its timeout."""
        return cls(f"git {command} timed out after {timeout_s:g}s")


class GitRemoteError(Terminal):
    """Raised when the remote refuses access or lacks the branch."""

    @classmethod
    def from_git(cls, command: str, stderr: str) -> GitRemoteError:
        """Return an error for a remote-side refusal."""
        return cls(f"git {command} failed: {_excerpt(stderr)}")


class CorruptWorkingCopy(Terminal):
    """Raised when a local working copy cannot be used as a git repository."""

    @classmethod
    def from_git(cls, path: Path, stderr: str) -> CorruptWorkingCopy:
        """Return an error for git reporting a damaged repository."""
        return cls(f"working copy at {path} is corrupt: {_excerpt(stderr)}")

    @classmethod
    def not_a_repository(cls, path: Path) -> CorruptWorkingCopy:
        """Return an error for a cache directory without git metadata."""
        return cls(f"working copy at {path} has no .git directory")


class DiskSpaceError(Terminal):
    """Raised when the cache volume is out of space."""

    @classmethod
    def from_git(cls, path: Path) -> DiskSpaceError:
        """Return an error for git failing with ENOSPC."""
        return cls(f"no space left on device while writing {path}")

    @classmethod
    def from_os_error(cls, path: Path, exc: OSError) -> DiskSpaceError:
        """Return an error for a filesystem call failing with ENOSPC."""
        return cls(f"no space left on device while writing {path}: {exc.strerror}")

    @classmethod
    def below_floor(cls, root: Path, free: int, required: int) -> DiskSpaceError:
        """Return an error for free space under the configured floor."""
        return cls(
            f"cache volume for {root} has {free} bytes free; {required} required"
        )


class InvalidRepositoryPath(Terminal):
    """Raised when a repository identity cannot be mapped to a safe path."""

    @classmethod
    def component(cls, value: str, reason: str) -> InvalidRepositoryPath:
        """Return an error for an unusable path component."""
        return cls(f"invalid repository path component {value!r}: {reason}")

    @classmethod
    def escapes_root(cls, path: Path, root: Path) -> InvalidRepositoryPath:
        """Return an error for a path that resolves outside the cache root."""
        return cls(f"{path} resolves outside the cache root {root}")


class GitUnavailableError(ConfigError):
    """Raised when the git executable cannot be started."""

    @classmethod
    def for_executable(cls, executable: str) -> GitUnavailableError:
        """Return an error for a missing git executable."""
        return cls(f"git executable not found: {executable}")
