"""Repository descriptors produced by provider clients."""

from __future__ import annotations

import dataclasses
import enum

from moderne_connect.common.slug import repo_slug


class Visibility(enum.StrEnum):
    """Repository visibility as reported by the provider."""

    PUBLIC = "public"
    PRIVATE = "private"
    INTERNAL = "internal"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: object) -> Visibility:
        """Map a provider visibility string onto the enum."""
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
        return cls.UNKNOWN


@dataclasses.dataclass(frozen=True, slots=True)
class RepositoryIdentity:
    """The ``(provider, organization, name)`` triple naming a repository."""

    provider: str
    organization: str
    name: str

    @property
    def slug(self) -> str:
        """Return the ``provider:organization/name`` slug."""
        return repo_slug(self.provider, self.organization, self.name)

    @property
    def path(self) -> str:
        """Return the ``organization/name`` path used by filters."""
        return f"{self.organization}/{self.name}"

    def __str__(self) -> str:
        """Render the identity as its slug."""
        return self.slug


@dataclasses.dataclass(frozen=True, slots=True)
class RepositoryDescriptor:
    """Immutable description of one discovered repository.

    Attributes
    ----------
    provider
        Provider host, for example ``github.com``.
    organization
        Owning organization or group path.
    name
        Repository name.
    clone_url
        URL handed to ``git clone``.
    default_branch
        Branch the working copy tracks.
    visibility
        Provider-reported visibility.
    skip_reason
        When set, the repository is reported skipped without being synced.

    """

    provider: str
    organization: str
    name: str
    clone_url: str
    default_branch: str = "main"
    visibility: Visibility = Visibility.UNKNOWN
    skip_reason: str | None = None

    @property
    def identity(self) -> RepositoryIdentity:
        """Return the identity triple used for deduplication and locking."""
        return RepositoryIdentity(self.provider, self.organization, self.name)

    @property
    def slug(self) -> str:
        """Return the run-unique slug."""
        return repo_slug(self.provider, self.organization, self.name)


@dataclasses.dataclass(frozen=True, slots=True)
class RepositoryPage:
    """One page of descriptors and the token for the next page, if any."""

    descriptors: tuple[RepositoryDescriptor, ...]
    next_token: str | None = None
