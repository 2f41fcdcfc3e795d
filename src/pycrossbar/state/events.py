"""Change notifications emitted by the entry store.

Every accepted mutation, local or remote, is announced as an
:class:`EntryChange`. The sync engine listens for local ones to push them;
views listen for all of them to refresh.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from pycrossbar.models._base import utcnow
from pycrossbar.models.grid import MeasurementGrid


class ChangeKind(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class ChangeOrigin(StrEnum):
    LOCAL = "local"
    REMOTE = "remote"


class EntryChange(BaseModel):
    """A single accepted mutation of the entry store."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: ChangeKind
    origin: ChangeOrigin
    grid: MeasurementGrid | None = Field(
        default=None,
        description="Snapshot of the entry after the change; None for deletions.",
    )
    observed_at: datetime = Field(default_factory=utcnow)
