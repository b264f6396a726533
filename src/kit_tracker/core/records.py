"""Read models returned by the kit tracker core.

These are immutable pydantic models built from ORM rows or from
reconstructed state. They serialize with camelCase aliases for the JSON API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from kit_tracker.core.fields import KitFields


class KitRecord(KitFields):
    """State of one kit, either current or as of a past timestamp.

    Attributes:
        id: Immutable kit identifier.
        version: Version active at the time this state describes.
        user_id: Actor of the most recent change (or the creator).
        user: Display name of that actor, when known.
        created_at: When the kit was created.
        updated_at: When the state described here was committed.
        as_of: The reconstruction timestamp, or None for current state.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    id: int = Field(..., description="Kit identifier")
    version: int = Field(..., ge=1, description="Version active at this state")
    user_id: int | None = Field(default=None, description="Most recent actor id")
    user: str | None = Field(default=None, description="Most recent actor name")
    created_at: datetime = Field(..., description="Creation timestamp (UTC)")
    updated_at: datetime = Field(..., description="Timestamp this state was committed (UTC)")
    as_of: datetime | None = Field(default=None, description="Reconstruction timestamp, if historical")

    def tracked_fields(self) -> KitFields:
        """Return only the tracked field values."""
        return KitFields.model_validate(self.model_dump(include=set(KitFields.model_fields)))


class ChangeDetailRecord(BaseModel):
    """One field diff inside a change log entry, with decoded values.

    ``field`` is the kit's JSON key (e.g. ``stateStatus``), matching KitRecord.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    field: str
    old_value: Any = None
    new_value: Any = None


class ChangeLogRecord(BaseModel):
    """One committed update of one kit, with its field diffs."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    id: int = Field(..., description="Change log identifier (increasing across all kits)")
    kit_id: int
    version: int = Field(..., ge=2, description="Kit version after this change")
    changed_at: datetime
    changed_by_id: int
    changed_by: str = Field(..., description="Actor display name")
    changes: list[ChangeDetailRecord] = Field(default_factory=list)


class ChangeDetailView(BaseModel):
    """Flat audit row: one field diff joined with its kit and actor."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    change_log_id: int
    kit_id: int
    kit_name: str
    part_number: str
    field: str
    old_value: Any = None
    new_value: Any = None
    version: int
    changed_at: datetime
    changed_by: str


class FieldDelta(BaseModel):
    """Difference in one field between two reconstructed states."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    field: str
    from_value: Any = None
    to_value: Any = None


class KitModification(BaseModel):
    """A kit whose fields differ between two points in time."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    kit_id: int
    part_number: str
    from_version: int
    to_version: int
    changes: list[FieldDelta]


class KitStateDiff(BaseModel):
    """What changed across the kit set between two timestamps."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    from_timestamp: datetime
    to_timestamp: datetime
    added: list[KitRecord] = Field(default_factory=list)
    modified: list[KitModification] = Field(default_factory=list)


class UserRecord(BaseModel):
    """An actor identity."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    id: int
    name: str
    email: str
