"""Pydantic request and response schemas for the kit tracker API.

All API inputs and outputs use Pydantic models, never raw dicts. Read models
(KitRecord, ChangeLogRecord, ...) live in kit_tracker.core.records and are
returned as-is; this module holds the request bodies and the small envelope
responses. JSON keys are camelCase.

Resources:
- Kit: create, versioned update, delete, version lookup
- User: actor registration
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from kit_tracker.core.fields import FieldChange, KitFields
from kit_tracker.core.records import KitRecord

_RECORD_METADATA_KEYS = frozenset(
    {
        "id",
        "version",
        "user",
        "userId",
        "user_id",
        "createdAt",
        "created_at",
        "updatedAt",
        "updated_at",
        "asOf",
        "as_of",
    }
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


# ---------------------------------------------------------------------------
# Kit schemas
# ---------------------------------------------------------------------------


class KitCreateRequest(_CamelModel):
    """Request body for creating a kit."""

    kit: KitFields = Field(description="Initial field values of the kit")
    user_id: int | None = Field(default=None, description="Creating user id")


class KitUpdateRequest(_CamelModel):
    """Request body for a versioned kit update.

    ``kit`` holds the proposed field values (a full row or only the edited
    fields). ``changes`` lists the field diffs the client tracked while
    editing, in edit order; an empty list saves nothing.
    """

    kit: dict[str, Any] = Field(default_factory=dict, description="Proposed field values")
    changes: list[FieldChange] = Field(default_factory=list, description="Field-level diffs")
    user_id: int = Field(description="Id of the user making the change")
    expected_version: int | None = Field(
        default=None,
        ge=1,
        description="Reject the update unless the kit is still at this version",
    )

    @field_validator("kit")
    @classmethod
    def drop_record_metadata(cls, value: dict[str, Any]) -> dict[str, Any]:
        # Clients may echo back a whole KitRecord; only tracked fields are proposals.
        return {key: item for key, item in value.items() if key not in _RECORD_METADATA_KEYS}


class UpdateKitResponse(_CamelModel):
    """Result of a versioned update. ``saved`` is false when there was nothing to save."""

    saved: bool
    message: str
    kit: KitRecord | None = None


class DeleteKitResponse(_CamelModel):
    deleted: bool
    kit_id: int


class VersionResponse(_CamelModel):
    """Latest committed version of a kit (1 when never updated)."""

    kit_id: int
    version: int = Field(ge=1)


# ---------------------------------------------------------------------------
# User schemas
# ---------------------------------------------------------------------------


class UserCreateRequest(_CamelModel):
    """Request body for registering an actor."""

    name: str = Field(min_length=1, max_length=255, description="Display name")
    email: str = Field(min_length=3, max_length=255, description="Unique email address")
