"""Cache path derivation with traversal protection."""

from __future__ import annotations

import re
import typing as typ

from .errors import InvalidRepositoryPath

if typ.TYPE_CHECKING:
    from pathlib import Path

    from moderne_connect.providers.models import RepositoryIdentity

_SAFE_COMPONENT = re.compile(r"^[A-Za-z0-9._-]+$")


def validate_component(value: str) -> str:
    """Return ``value`` when it is safe as a single path segment.

    Examples
    --------
    >>> validate_component("rewrite-core")
    'rewrite-core'

    """
    if value in {".", ".."}:
        raise InvalidRepositoryPath.component(value, "relative segment")
    if not _SAFE_COMPONENT.match(value):
        raise InvalidRepositoryPath.component(
            value, "only letters, digits, '.', '_' and '-' are allowed"
        )
    return value


def working_copy_path(root: Path, identity: RepositoryIdentity) -> Path:
    """Return ``root/provider/organization/name`` for ``identity``.

    Organization paths with ``/`` (GitLab subgroups) become nested
    directories; every segment is validated and the result must stay under
    ``root`` after resolution.
    """
    segments = [
        identity.provider,
        *identity.organization.split("/"),
        identity.name,
    ]
    for segment in segments:
        validate_component(segment)
    resolved_root = root.resolve()
    candidate = resolved_root.joinpath(*segments).resolve()
    if not candidate.is_relative_to(resolved_root) or candidate == resolved_root:
        raise InvalidRepositoryPath.escapes_root(candidate, resolved_root)
    return candidate
