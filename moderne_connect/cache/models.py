"""Working copy records handed out by the repository cache."""

from __future__ import annotations

import dataclasses
import typing as typ

if typ.TYPE_CHECKING:
    import datetime as dt
    from pathlib import Path

    from moderne_connect.providers.models import RepositoryDescriptor


@dataclasses.dataclass(frozen=True, slots=True)
class WorkingCopy:
    """A local checkout of one repository at a known revision."""

    descriptor: RepositoryDescriptor
    local_path: Path
    current_revision: str
    last_synced_at: dt.datetime
    cloned: bool = False


@dataclasses.dataclass(frozen=True, slots=True)
class IndexEntry:
    """What the working-copy index remembers about one repository."""

    local_path: str
    current_revision: str | None
    last_synced_at: dt.datetime | None
    last_submitted_revision: str | None
    last_submitted_at: dt.datetime | None
