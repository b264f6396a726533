"""Kit field schema and the typed field registry.

KitFields is the fixed, validated set of tracked attributes on a kit. The
registry (KIT_FIELDS) maps each field's python name and its camelCase wire
alias to a typed setter, so change history can only ever be folded onto
known fields with values of the right type.

Stored change values are JSON text (serialize_value / deserialize_value) so
strings, enum values, nulls and booleans round-trip without loss.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum, StrEnum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from kit_tracker.core.errors import PersistenceError, UnknownFieldError, ValidationError


class StateStatus(StrEnum):
    """Indigenization workflow stage of a kit."""

    FORM_17_PENDING = "Form 17 Pending"
    UNDER_INDEGENIZATION = "Under Indegenization"
    PART_UNDER_TF = "Part Under TF"
    DIE_UNDER_TF = "Die Under TF"
    PART_TRIAL_TESTING = "Part Trial Testing"
    MCL = "MCL"
    UNDER_SOURCING = "Under Sourcing"
    SOURCING_COMPLETED = "Sourcing Completed"
    BEYOND_CAPABILITY = "Beyond Capability"


class Manufacturer(StrEnum):
    """Shop responsible for manufacturing a kit."""

    MACHINE_SHOP = "Machine Shop"
    SHEET_METAL = "Sheet Metal"
    RUBBER_AND_POLYMER = "Rubber and Ploymer"
    PMC = "PMC"
    HARNESS_MANUFACTURING = "Harness Manufacturing"
    SPRING_SHOP = "Spring Shop"


KNOWN_KIT_NAMES: tuple[str, ...] = ("Kit B", "Kit C", "Kit C 125")


class KitFields(BaseModel):
    """The tracked, user-editable attributes of a kit.

    Field names are snake_case in python; the JSON API uses the camelCase
    aliases. Either form is accepted on input.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    part_number: str = Field(..., alias="partNumber", min_length=1, description="Part number, e.g. KIT-001")
    noun: str = Field(..., alias="noun", min_length=1, description="Component noun")
    kit_name: str = Field(
        ..., alias="kitName", min_length=1, description="Kit family: Kit B | Kit C | Kit C 125 | other"
    )
    state_status: StateStatus = Field(..., alias="stateStatus", description="Workflow stage")
    current_status: str | None = Field(default=None, alias="currentStatus", description="Free-form status")
    remarks: str = Field(default="", alias="remarks")
    manufacturer: Manufacturer = Field(..., alias="manufacturer", description="Manufacturing shop")
    form48_number: str = Field(default="", alias="form48number", description="Form 48 reference")
    die_required: bool = Field(default=False, alias="dieRequired")
    die_number: str = Field(default="", alias="dieNumber")


def _describe_pydantic_error(exc: PydanticValidationError) -> tuple[str, str | None]:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    return f"{field}: {first.get('msg', 'invalid value')}" if field else str(exc), field


def validate_kit_fields(data: Mapping[str, Any]) -> KitFields:
    """Validate a complete set of kit fields.

    Args:
        data: Field values keyed by python name or wire alias.

    Returns:
        The validated KitFields.

    Raises:
        ValidationError: If a required field is missing or a value is invalid.
    """
    try:
        return KitFields.model_validate(dict(data))
    except PydanticValidationError as exc:
        message, field = _describe_pydantic_error(exc)
        raise ValidationError(message, field=field) from exc


@dataclass(frozen=True)
class KitField:
    """One entry in the typed field registry."""

    name: str
    alias: str
    adapter: TypeAdapter[Any]

    def coerce(self, value: Any) -> Any:
        """Validate a value for this field and return it in canonical form.

        Raises:
            ValidationError: If the value does not fit the field's type.
        """
        try:
            return self.adapter.validate_python(value)
        except PydanticValidationError as exc:
            raise ValidationError(
                f"Invalid value for {self.name}: {value!r}", field=self.name
            ) from exc


def _build_registry() -> dict[str, KitField]:
    registry: dict[str, KitField] = {}
    for name, info in KitFields.model_fields.items():
        annotation: Any = info.annotation
        if info.metadata:
            annotation = Annotated[(annotation, *info.metadata)]
        registry[name] = KitField(name=name, alias=info.alias or name, adapter=TypeAdapter(annotation))
    return registry


KIT_FIELDS: dict[str, KitField] = _build_registry()
_FIELDS_BY_ALIAS: dict[str, KitField] = {field.alias: field for field in KIT_FIELDS.values()}


def resolve_field(name: str) -> KitField:
    """Look up a registry entry by python name or wire alias.

    Raises:
        UnknownFieldError: If the name is not a kit field.
    """
    field = KIT_FIELDS.get(name) or _FIELDS_BY_ALIAS.get(name)
    if field is None:
        raise UnknownFieldError(name)
    return field


def wire_name(name: str) -> str:
    """Return the camelCase JSON key for a stored field name.

    Names outside the registry are returned unchanged.
    """
    field = KIT_FIELDS.get(name)
    return field.alias if field is not None else name


def apply_field(state: dict[str, Any], name: str, value: Any) -> None:
    """Set one field on a state mapping through its typed setter."""
    field = resolve_field(name)
    state[field.name] = field.coerce(value)


def normalize_fields(data: Mapping[str, Any]) -> dict[str, Any]:
    """Resolve aliases and coerce every value of a partial field mapping.

    Unknown keys are rejected rather than ignored.
    """
    normalized: dict[str, Any] = {}
    for key, value in data.items():
        apply_field(normalized, key, value)
    return normalized


def to_plain(value: Any) -> Any:
    """Return a JSON-compatible form of a field value."""
    if isinstance(value, Enum):
        return value.value
    return value


def fields_to_plain(fields: KitFields | Mapping[str, Any]) -> dict[str, Any]:
    """Return a python-name keyed dict of JSON-compatible field values."""
    if isinstance(fields, KitFields):
        fields = fields.model_dump()
    return {name: to_plain(fields[name]) for name in KIT_FIELDS if name in fields}


def serialize_value(value: Any) -> str:
    """Serialize a field value for storage in change_details."""
    return json.dumps(to_plain(value))


def deserialize_value(raw: str | None) -> Any:
    """Decode a stored change value.

    Raises:
        PersistenceError: If the stored text is not valid JSON.
    """
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise PersistenceError(f"Stored change value is not valid JSON: {raw!r}") from exc


class FieldChange(BaseModel):
    """A caller-supplied field diff: one field's old and new value."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    field: str = Field(..., min_length=1, description="Kit field name or wire alias")
    old_value: Any = Field(default=None, alias="oldValue")
    new_value: Any = Field(default=None, alias="newValue")


def diff_fields(current: KitFields | Mapping[str, Any], proposed: Mapping[str, Any]) -> list[FieldChange]:
    """Compute the field diffs between current values and a proposed edit.

    Only fields present in ``proposed`` are compared. The result follows the
    schema's field order.

    Raises:
        UnknownFieldError: If ``proposed`` names a field outside the schema.
        ValidationError: If a proposed value does not fit its field.
    """
    current_plain = fields_to_plain(current)
    proposed_plain = {name: to_plain(value) for name, value in normalize_fields(proposed).items()}
    changes: list[FieldChange] = []
    for name in KIT_FIELDS:
        if name in proposed_plain and proposed_plain[name] != current_plain.get(name):
            changes.append(
                FieldChange(field=name, old_value=current_plain.get(name), new_value=proposed_plain[name])
            )
    return changes
