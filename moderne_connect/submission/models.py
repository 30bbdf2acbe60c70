"""Submission units and the ingestion wire format."""

from __future__ import annotations

import dataclasses
import enum
import typing as typ

import msgspec

if typ.TYPE_CHECKING:
    from moderne_connect.providers.models import (
        RepositoryDescriptor,
        RepositoryIdentity,
    )


class BuildTool(enum.StrEnum):
    """Build tool detected in a working copy."""

    MAVEN = "maven"
    GRADLE = "gradle"
    NONE = "none"


class RepositoryPayload(msgspec.Struct, kw_only=True, frozen=True, rename="camel"):
    """Per-repository metadata sent with each submission.

    Attributes
    ----------
    default_branch
        Branch the revision was taken from.
    clone_url
        URL the working copy was cloned from.
    visibility
        Provider-reported visibility.
    build_tool
        ``maven``, ``gradle`` or ``none``.
    synced_at
        ISO-8601 UTC timestamp of the sync that produced the revision.

    """

    default_branch: str
    clone_url: str
    visibility: str
    build_tool: BuildTool = BuildTool.NONE
    synced_at: str | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class SubmissionUnit:
    """What is sent for one repository; identical across retries."""

    descriptor: RepositoryDescriptor
    revision: str
    payload: RepositoryPayload


class WireRepository(msgspec.Struct, kw_only=True, frozen=True):
    """Repository identity as it appears on the wire."""

    provider: str
    organization: str
    name: str


class WireUnit(msgspec.Struct, kw_only=True, frozen=True):
    """One unit inside a submission request body."""

    repository: WireRepository
    revision: str
    payload: RepositoryPayload
    attempt: int = 1


class SubmissionRequest(msgspec.Struct, kw_only=True, frozen=True):
    """Request body: ``{"units": [...]}``."""

    units: list[WireUnit]


class WireAck(msgspec.Struct, kw_only=True, frozen=True):
    """One element of the ingestion response array."""

    provider: str
    organization: str
    name: str
    revision: str
    status: typ.Literal["accepted", "duplicate", "rejected"]
    reason: str | None = None

    @property
    def key(self) -> tuple[str, str, str, str]:
        """Return the lookup key matching a submitted unit."""
        return (self.provider, self.organization, self.name, self.revision)


@dataclasses.dataclass(frozen=True, slots=True)
class Ack:
    """Acknowledgement of one unit.

    ``duplicate`` is True when the service had already ingested the
    revision; callers treat it as success.
    """

    identity: RepositoryIdentity
    revision: str
    duplicate: bool = False


def to_wire(unit: SubmissionUnit, *, attempt: int) -> WireUnit:
    """Convert a unit into its wire representation."""
    descriptor = unit.descriptor
    return WireUnit(
        repository=WireRepository(
            provider=descriptor.provider,
            organization=descriptor.organization,
            name=descriptor.name,
        ),
        revision=unit.revision,
        payload=unit.payload,
        attempt=attempt,
    )


def unit_key(unit: SubmissionUnit) -> tuple[str, str, str, str]:
    """Return the lookup key for ``unit`` in a response array."""
    descriptor = unit.descriptor
    return (
        descriptor.provider,
        descriptor.organization,
        descriptor.name,
        unit.revision,
    )
