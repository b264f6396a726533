"""Versioned writer for kit updates.

VersionedKitWriter is the only path by which a kit's fields change after
creation. Each update runs as one transaction that locks the kit row, bumps
its version by exactly one, overwrites its fields and appends a change log
entry with one detail row per caller-supplied field diff. Either all of it
commits or none of it does.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kit_tracker.adapters.database import KitDatabase
from kit_tracker.adapters.repositories import (
    ChangeLogRepository,
    KitRepository,
    UserRepository,
    kit_to_record,
)
from kit_tracker.core.errors import (
    KitTrackerError,
    NoChangesError,
    NotFoundError,
    PersistenceError,
    ValidationError,
    VersionConflictError,
)
from kit_tracker.core.fields import (
    KIT_FIELDS,
    FieldChange,
    normalize_fields,
    resolve_field,
    to_plain,
    validate_kit_fields,
)
from kit_tracker.core.interfaces import IChangeLogRepository, IKitRepository, IUserRepository
from kit_tracker.core.records import KitRecord
from kit_tracker.core.timestamps import utc_now

logger = logging.getLogger(__name__)


def _parse_diffs(field_diffs: Sequence[FieldChange | Mapping[str, Any]]) -> list[FieldChange]:
    diffs: list[FieldChange] = []
    for diff in field_diffs:
        if isinstance(diff, FieldChange):
            diffs.append(diff)
            continue
        try:
            diffs.append(FieldChange.model_validate(diff))
        except PydanticValidationError as exc:
            raise ValidationError(f"Malformed field change: {diff!r}") from exc
    return diffs


def reconcile_diffs(
    diffs: Sequence[FieldChange],
    proposed: dict[str, Any],
) -> list[FieldChange]:
    """Canonicalize field names and check the diffs agree with the proposed values.

    The diffs themselves are trusted as the record of what changed; they are
    never recomputed. Several diffs may name the same field (successive
    edits); the last one must match the proposed value. A diffed field
    missing from ``proposed`` takes the diff's new value.

    Args:
        diffs: Caller-supplied diffs, in edit order.
        proposed: Normalized proposed field values; updated in place.

    Returns:
        The diffs with canonical field names and canonical new values.

    Raises:
        UnknownFieldError: If a diff names a field outside the kit schema.
        ValidationError: If a new value is invalid or disagrees with ``proposed``.
    """
    canonical: list[FieldChange] = []
    last_value: dict[str, Any] = {}
    for diff in diffs:
        field = resolve_field(diff.field)
        new_value = field.coerce(diff.new_value)
        canonical.append(
            FieldChange(field=field.name, old_value=to_plain(diff.old_value), new_value=to_plain(new_value))
        )
        last_value[field.name] = new_value

    for name, value in last_value.items():
        if name not in proposed:
            proposed[name] = value
        elif to_plain(proposed[name]) != to_plain(value):
            raise ValidationError(
                f"Change for {name} ends at {to_plain(value)!r} but the proposed value is "
                f"{to_plain(proposed[name])!r}",
                field=name,
            )
    return canonical


class VersionedKitWriter:
    """Atomically applies a field edit to a kit and records it in history.

    Args:
        database: Storage handle providing transactions.
        clock: Returns the current UTC time; stamps changed_at and updated_at.
        kit_repository_factory: Builds the Record Store for a session.
        change_log_repository_factory: Builds the Change Record Store for a session.
        user_repository_factory: Builds the user repository for a session.
    """

    def __init__(
        self,
        database: KitDatabase,
        *,
        clock: Callable[[], datetime] = utc_now,
        kit_repository_factory: Callable[[AsyncSession], IKitRepository] = KitRepository,
        change_log_repository_factory: Callable[[AsyncSession], IChangeLogRepository] = ChangeLogRepository,
        user_repository_factory: Callable[[AsyncSession], IUserRepository] = UserRepository,
    ) -> None:
        self._database = database
        self._clock = clock
        self._kit_repository_factory = kit_repository_factory
        self._change_log_repository_factory = change_log_repository_factory
        self._user_repository_factory = user_repository_factory

    async def update(
        self,
        kit_id: int,
        proposed_fields: Mapping[str, Any],
        field_diffs: Sequence[FieldChange | Mapping[str, Any]],
        actor_id: int,
        *,
        expected_version: int | None = None,
    ) -> KitRecord:
        """Apply an edit to a kit as one versioned, logged transaction.

        Steps, all inside a single transaction:
        1. Lock the kit row and compute new_version = version + 1.
        2. Overwrite the kit fields with the proposed values, set version,
           last actor and updated_at.
        3. Append one change log stamped new_version with one detail per diff.

        Args:
            kit_id: The kit to update.
            proposed_fields: New field values (python names or wire aliases).
                Fields not given keep their current value.
            field_diffs: The field-level changes that produced the edit.
            actor_id: The user making the change.
            expected_version: If given, the update is rejected unless the kit
                is still at this version.

        Returns:
            The kit's new current state.

        Raises:
            NoChangesError: If ``field_diffs`` is empty. Nothing is written.
            NotFoundError: If the kit does not exist.
            ValidationError: If the edit is malformed or the actor is unknown.
            VersionConflictError: If ``expected_version`` is stale.
            PersistenceError: If storage fails; the transaction is rolled back.
        """
        diffs = _parse_diffs(field_diffs)
        if not diffs:
            raise NoChangesError(kit_id)

        proposed = normalize_fields(proposed_fields)
        details = reconcile_diffs(diffs, proposed)

        try:
            async with self._database.transaction() as session:
                kits = self._kit_repository_factory(session)
                change_logs = self._change_log_repository_factory(session)
                users = self._user_repository_factory(session)

                kit = await kits.get_for_update(kit_id)
                if kit is None:
                    raise NotFoundError(resource="Kit", resource_id=kit_id)
                if expected_version is not None and kit.version != expected_version:
                    raise VersionConflictError(kit_id, expected_version, kit.version)

                actor = await users.get(actor_id)
                if actor is None:
                    raise ValidationError(f"Unknown actor: user {actor_id}", field="user_id")

                current = {name: getattr(kit, name) for name in KIT_FIELDS}
                validated = validate_kit_fields({**current, **proposed})

                new_version = kit.version + 1
                changed_at = self._clock()
                for name in KIT_FIELDS:
                    setattr(kit, name, getattr(validated, name))
                kit.version = new_version
                kit.user_id = actor_id
                kit.updated_at = changed_at
                await session.flush()

                change_log = await change_logs.append_change_log(
                    kit_id=kit.id,
                    version=new_version,
                    actor_id=actor_id,
                    details=details,
                    changed_at=changed_at,
                )
                record = kit_to_record(kit, user_name=actor.name)
        except KitTrackerError:
            raise
        except (SQLAlchemyError, TimeoutError) as exc:
            logger.warning("Kit update rolled back (kit_id=%s): %s", kit_id, exc)
            raise PersistenceError(f"Failed to update kit {kit_id}: {exc}") from exc

        logger.info(
            "Kit updated (kit_id=%s, version=%s, change_log_id=%s, fields=%s)",
            kit_id,
            new_version,
            change_log.id,
            ",".join(detail.field for detail in details),
        )
        return record
