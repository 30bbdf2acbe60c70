"""Build submission units from synced working copies."""

from __future__ import annotations

import asyncio
import typing as typ

from .models import BuildTool, RepositoryPayload, SubmissionUnit

if typ.TYPE_CHECKING:
    from pathlib import Path

    from moderne_connect.cache.models import WorkingCopy

_MAVEN_MARKERS = ("pom.xml",)
_GRADLE_MARKERS = ("build.gradle", "build.gradle.kts", "settings.gradle.kts")


def detect_build_tool(path: Path) -> BuildTool:
    """Return the build tool whose marker file sits at the repository root.

    Maven wins when both are present, matching how mixed repositories are
    usually built.
    """
    if any((path / marker).is_file() for marker in _MAVEN_MARKERS):
        return BuildTool.MAVEN
    if any((path / marker).is_file() for marker in _GRADLE_MARKERS):
        return BuildTool.GRADLE
    return BuildTool.NONE


async def build_unit(working_copy: WorkingCopy) -> SubmissionUnit:
    """Describe ``working_copy`` as a submission unit."""
    descriptor = working_copy.descriptor
    build_tool = await asyncio.to_thread(detect_build_tool, working_copy.local_path)
    payload = RepositoryPayload(
        default_branch=descriptor.default_branch,
        clone_url=descriptor.clone_url,
        visibility=descriptor.visibility.value,
        build_tool=build_tool,
        synced_at=working_copy.last_synced_at.isoformat(),
    )
    return SubmissionUnit(
        descriptor=descriptor,
        revision=working_copy.current_revision,
        payload=payload,
    )
