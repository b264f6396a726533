"""Core business logic service for the kit tracker.

KitService is the boundary facade. It composes the storage handle with the
time machine components and exposes every operation the HTTP layer needs:

- Current state: list_kits, get_kit, create_kit, delete_kit
- Versioned writes: update_kit (delegates to VersionedKitWriter)
- History: get_history, get_latest_version, get_changes_in_range
- Time travel: list_kits_at, get_kit_at, diff
- Actors: create_user, list_users

The service contains no framework code. It raises the kit_tracker error
taxonomy and never translates errors into HTTP responses.
"""

import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import date, datetime
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from kit_tracker.adapters.database import KitDatabase
from kit_tracker.adapters.repositories import (
    ChangeLogRepository,
    KitRepository,
    UserRepository,
    actor_name,
    change_log_to_record,
    kit_to_record,
)
from kit_tracker.core.errors import KitTrackerError, NotFoundError, PersistenceError, ValidationError
from kit_tracker.core.fields import FieldChange, KitFields, validate_kit_fields
from kit_tracker.core.models import User
from kit_tracker.core.records import ChangeDetailView, ChangeLogRecord, KitRecord, KitStateDiff, UserRecord
from kit_tracker.core.timestamps import to_utc, utc_now
from kit_tracker.time_machine.change_query import ChangeQueryService
from kit_tracker.time_machine.reconstructor import KitStateReconstructor
from kit_tracker.time_machine.writer import VersionedKitWriter

logger = logging.getLogger(__name__)


class KitService:
    """Kit lifecycle, versioned updates and historical queries.

    Args:
        database: Storage handle shared by all components.
        writer: Versioned writer; built from ``database`` when omitted.
        reconstructor: Temporal reconstructor; built from ``database`` when omitted.
        change_query: Date-range change query; built from ``database`` when omitted.
        clock: Returns the current UTC time; stamps kit creation.
    """

    def __init__(
        self,
        database: KitDatabase,
        *,
        writer: VersionedKitWriter | None = None,
        reconstructor: KitStateReconstructor | None = None,
        change_query: ChangeQueryService | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._database = database
        self._clock = clock
        self._writer = writer or VersionedKitWriter(database, clock=clock)
        self._reconstructor = reconstructor or KitStateReconstructor(database)
        self._change_query = change_query or ChangeQueryService(database)

    # ------------------------------------------------------------------
    # Current state
    # ------------------------------------------------------------------

    async def list_kits(self) -> list[KitRecord]:
        """Return the current state of every kit, ordered by id."""
        async with self._database.session() as session:
            kits = await KitRepository(session).get_all()
            return [kit_to_record(kit, user_name=self._user_name(kit.user, kit.user_id)) for kit in kits]

    async def get_kit(self, kit_id: int) -> KitRecord:
        """Return the current state of one kit.

        Raises:
            NotFoundError: If the kit does not exist.
        """
        async with self._database.session() as session:
            kit = await KitRepository(session).get(kit_id)
            if kit is None:
                raise NotFoundError(resource="Kit", resource_id=kit_id)
            return kit_to_record(kit, user_name=self._user_name(kit.user, kit.user_id))

    async def create_kit(self, fields: KitFields | Mapping[str, Any], actor_id: int | None) -> KitRecord:
        """Create a kit at version 1 and capture its creation baseline.

        Args:
            fields: Kit field values keyed by python name or wire alias.
            actor_id: Creating user, if known.

        Returns:
            The new kit's current state.

        Raises:
            ValidationError: If a required field is missing or invalid, or the
                actor does not exist.
            PersistenceError: If storage fails.
        """
        validated = fields if isinstance(fields, KitFields) else validate_kit_fields(fields)
        try:
            async with self._database.transaction() as session:
                creator_name = None
                if actor_id is not None:
                    actor = await UserRepository(session).get(actor_id)
                    if actor is None:
                        raise ValidationError(f"Unknown actor: user {actor_id}", field="user_id")
                    creator_name = actor.name
                kit = await KitRepository(session).create(validated, actor_id, self._clock())
                record = kit_to_record(kit, user_name=creator_name)
        except KitTrackerError:
            raise
        except SQLAlchemyError as exc:
            logger.warning("Kit creation rolled back (part_number=%s): %s", validated.part_number, exc)
            raise PersistenceError(f"Failed to create kit {validated.part_number}: {exc}") from exc
        return record

    async def update_kit(
        self,
        kit_id: int,
        proposed_fields: Mapping[str, Any],
        field_diffs: Sequence[FieldChange | Mapping[str, Any]],
        actor_id: int,
        expected_version: int | None = None,
    ) -> KitRecord:
        """Apply a field edit through the versioned writer.

        Raises:
            NoChangesError: If ``field_diffs`` is empty.
            NotFoundError: If the kit does not exist.
            ValidationError: If the edit is malformed or the actor is unknown.
            VersionConflictError: If ``expected_version`` is stale.
            PersistenceError: If storage fails.
        """
        return await self._writer.update(
            kit_id,
            proposed_fields,
            field_diffs,
            actor_id,
            expected_version=expected_version,
        )

    async def delete_kit(self, kit_id: int) -> None:
        """Delete a kit together with its baseline and change history.

        Raises:
            NotFoundError: If the kit does not exist.
            PersistenceError: If storage fails.
        """
        try:
            async with self._database.transaction() as session:
                await KitRepository(session).delete(kit_id)
        except KitTrackerError:
            raise
        except SQLAlchemyError as exc:
            logger.warning("Kit deletion rolled back (kit_id=%s): %s", kit_id, exc)
            raise PersistenceError(f"Failed to delete kit {kit_id}: {exc}") from exc

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def get_history(self, kit_id: int, before: datetime | None = None) -> list[ChangeLogRecord]:
        """Return a kit's change log entries, newest first.

        Args:
            kit_id: The kit whose history to return.
            before: Optional inclusive upper bound on changed_at.

        Raises:
            NotFoundError: If the kit does not exist.
        """
        async with self._database.session() as session:
            if await KitRepository(session).get(kit_id) is None:
                raise NotFoundError(resource="Kit", resource_id=kit_id)
            history = await ChangeLogRepository(session).get_history(
                kit_id, to_utc(before) if before is not None else None
            )
            return [change_log_to_record(change_log) for change_log in history]

    async def get_latest_version(self, kit_id: int) -> int:
        """Return the kit's highest logged version, or 1 if it was never updated.

        Raises:
            NotFoundError: If the kit does not exist.
        """
        async with self._database.session() as session:
            if await KitRepository(session).get(kit_id) is None:
                raise NotFoundError(resource="Kit", resource_id=kit_id)
            return await ChangeLogRepository(session).get_latest_version(kit_id)

    async def get_changes_in_range(
        self,
        start: date | datetime | str | None,
        end: date | datetime | str | None,
    ) -> list[ChangeDetailView]:
        return await self._change_query.query_changes_in_range(start, end)

    # ------------------------------------------------------------------
    # Time travel
    # ------------------------------------------------------------------

    async def list_kits_at(self, at: datetime) -> list[KitRecord]:
        return await self._reconstructor.get_all_at(at)

    async def get_kit_at(self, kit_id: int, at: datetime) -> KitRecord:
        return await self._reconstructor.get_kit_at(kit_id, at)

    async def diff(self, from_ts: datetime, to_ts: datetime) -> KitStateDiff:
        return await self._reconstructor.diff(from_ts, to_ts)

    # ------------------------------------------------------------------
    # Actors
    # ------------------------------------------------------------------

    async def create_user(self, name: str, email: str) -> UserRecord:
        """Register an actor.

        Raises:
            ValidationError: If name or email is blank, or the email is taken.
        """
        try:
            async with self._database.transaction() as session:
                user = await UserRepository(session).create(name, email)
                record = UserRecord(id=user.id, name=user.name, email=user.email)
        except KitTrackerError:
            raise
        except IntegrityError as exc:
            raise ValidationError(f"Email already registered: {email}", field="email") from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to create user: {exc}") from exc
        return record

    async def list_users(self) -> list[UserRecord]:
        async with self._database.session() as session:
            users = await UserRepository(session).list_all()
            return [UserRecord(id=user.id, name=user.name, email=user.email) for user in users]

    @staticmethod
    def _user_name(user: User | None, user_id: int | None) -> str | None:
        if user_id is None:
            return None
        return actor_name(user, user_id)
