"""SQLAlchemy repositories for the kit tracker.

Each repository wraps one AsyncSession supplied by the caller; the caller
owns the transaction boundary (see KitDatabase.transaction()).

Repositories:
- UserRepository       - actor identities
- KitRepository        - Record Store: current kit state and baselines
- ChangeLogRepository  - Change Record Store: append-only change history

NOTE: KitRepository has no field-level update method. Kit fields and
versions change only inside VersionedKitWriter, which also appends the
matching change log in the same transaction.
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from kit_tracker.core.errors import NotFoundError, ValidationError
from kit_tracker.core.fields import (
    KIT_FIELDS,
    FieldChange,
    KitFields,
    deserialize_value,
    serialize_value,
    wire_name,
)
from kit_tracker.core.models import ChangeDetail, ChangeLog, Kit, KitBaseline, User
from kit_tracker.core.records import ChangeDetailRecord, ChangeDetailView, ChangeLogRecord, KitRecord
from kit_tracker.core.snapshots import compress_snapshot

logger = logging.getLogger(__name__)


def actor_name(user: User | None, user_id: int | None) -> str:
    """Display name for an actor, falling back to "User <id>"."""
    if user is not None:
        return user.name
    return f"User {user_id}"


def kit_to_record(kit: Kit, *, user_name: str | None = None) -> KitRecord:
    """Build the current-state KitRecord for an ORM Kit."""
    return KitRecord(
        id=kit.id,
        version=kit.version,
        user_id=kit.user_id,
        user=user_name,
        created_at=kit.created_at,
        updated_at=kit.updated_at,
        **{name: getattr(kit, name) for name in KIT_FIELDS},
    )


def change_log_to_record(change_log: ChangeLog) -> ChangeLogRecord:
    """Build a ChangeLogRecord; details and user must be eagerly loaded."""
    return ChangeLogRecord(
        id=change_log.id,
        kit_id=change_log.kit_id,
        version=change_log.version,
        changed_at=change_log.changed_at,
        changed_by_id=change_log.user_id,
        changed_by=actor_name(change_log.user, change_log.user_id),
        changes=[
            ChangeDetailRecord(
                field=wire_name(detail.field),
                old_value=deserialize_value(detail.old_value),
                new_value=deserialize_value(detail.new_value),
            )
            for detail in change_log.details
        ],
    )


class UserRepository:
    """Repository for actor identities.

    Args:
        session: The async session to operate in.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, name: str, email: str) -> User:
        """Create and persist a user.

        Raises:
            ValidationError: If name or email is blank.
        """
        if not name.strip() or not email.strip():
            raise ValidationError("User name and email are required")
        user = User(name=name.strip(), email=email.strip())
        self._session.add(user)
        await self._session.flush()
        logger.info("User created (user_id=%s)", user.id)
        return user

    async def get(self, user_id: int) -> User | None:
        return await self._session.get(User, user_id)

    async def list_all(self) -> list[User]:
        result = await self._session.execute(select(User).order_by(User.id))
        return list(result.scalars().all())


class KitRepository:
    """Record Store: current kit rows plus their immutable baselines.

    Args:
        session: The async session to operate in.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize KitRepository with a database session.

        Args:
            session: The SQLAlchemy async session.
        """
        self._session = session

    async def get(self, kit_id: int) -> Kit | None:
        """Return the kit with its last actor loaded, or None."""
        stmt = select(Kit).options(joinedload(Kit.user)).where(Kit.id == kit_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_update(self, kit_id: int) -> Kit | None:
        """Return the kit row locked for the rest of the transaction.

        Renders SELECT ... FOR UPDATE where the backend supports it. SQLite
        has no row locks; KitDatabase.transaction() takes its write lock at
        BEGIN instead, so two writers on the same kit still cannot both read
        the same version.
        """
        stmt = select(Kit).where(Kit.id == kit_id).with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_all(self) -> list[Kit]:
        """Return all kits ordered by id."""
        stmt = select(Kit).options(joinedload(Kit.user)).order_by(Kit.id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_created_before(self, at: datetime) -> list[Kit]:
        """Return kits created at or before ``at``, ordered by part number then id."""
        stmt = (
            select(Kit)
            .where(Kit.created_at <= at)
            .order_by(Kit.part_number, Kit.id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def create(self, fields: KitFields, user_id: int | None, created_at: datetime) -> Kit:
        """Create a kit at version 1 and capture its baseline snapshot.

        Args:
            fields: Validated kit fields.
            user_id: Creating actor.
            created_at: Creation timestamp; also used for updated_at.

        Returns:
            The persisted Kit.
        """
        kit = Kit(
            **{name: getattr(fields, name) for name in KIT_FIELDS},
            user_id=user_id,
            version=1,
            created_at=created_at,
            updated_at=created_at,
        )
        self._session.add(kit)
        await self._session.flush()

        self._session.add(
            KitBaseline(
                kit_id=kit.id,
                snapshot=compress_snapshot(fields),
                created_by=user_id,
                captured_at=created_at,
            )
        )
        await self._session.flush()
        logger.info("Kit created (kit_id=%s, part_number=%s)", kit.id, kit.part_number)
        return kit

    async def delete(self, kit_id: int) -> bool:
        """Delete a kit together with its baseline and whole change history.

        Raises:
            NotFoundError: If the kit does not exist.
        """
        exists = await self._session.scalar(select(Kit.id).where(Kit.id == kit_id))
        if exists is None:
            raise NotFoundError(resource="Kit", resource_id=kit_id)

        change_log_ids = select(ChangeLog.id).where(ChangeLog.kit_id == kit_id)
        await self._session.execute(delete(ChangeDetail).where(ChangeDetail.change_log_id.in_(change_log_ids)))
        await self._session.execute(delete(ChangeLog).where(ChangeLog.kit_id == kit_id))
        await self._session.execute(delete(KitBaseline).where(KitBaseline.kit_id == kit_id))
        result = await self._session.execute(delete(Kit).where(Kit.id == kit_id))
        logger.info("Kit deleted with its history (kit_id=%s)", kit_id)
        return bool(result.rowcount)

    async def get_baseline(self, kit_id: int) -> KitBaseline | None:
        return await self._session.get(KitBaseline, kit_id)

    async def get_baselines(self, kit_ids: Iterable[int]) -> dict[int, KitBaseline]:
        """Return baselines keyed by kit id for the given kits."""
        ids = list(kit_ids)
        if not ids:
            return {}
        result = await self._session.execute(select(KitBaseline).where(KitBaseline.kit_id.in_(ids)))
        return {baseline.kit_id: baseline for baseline in result.scalars().all()}

    async def count(self) -> int:
        return int(await self._session.scalar(select(func.count()).select_from(Kit)) or 0)


class ChangeLogRepository:
    """Change Record Store: append-only change logs and their field details.

    There are no update methods. Rows disappear only when their kit is
    deleted (KitRepository.delete).

    Args:
        session: The async session to operate in.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append_change_log(
        self,
        kit_id: int,
        version: int,
        actor_id: int,
        details: Sequence[FieldChange],
        changed_at: datetime,
    ) -> ChangeLog:
        """Append one change log entry and one detail row per field diff.

        Args:
            kit_id: The kit that changed.
            version: The kit version after the change.
            actor_id: The user who made the change.
            details: Field diffs with canonical field names.
            changed_at: Commit timestamp.

        Returns:
            The persisted ChangeLog.

        Raises:
            ValidationError: If ``details`` is empty.
        """
        if not details:
            raise ValidationError("A change log entry needs at least one field change")

        change_log = ChangeLog(kit_id=kit_id, user_id=actor_id, version=version, changed_at=changed_at)
        self._session.add(change_log)
        await self._session.flush()
        await self._add_details(change_log, details)
        return change_log

    async def _add_details(self, change_log: ChangeLog, details: Sequence[FieldChange]) -> None:
        for detail in details:
            self._session.add(
                ChangeDetail(
                    change_log_id=change_log.id,
                    field=detail.field,
                    old_value=serialize_value(detail.old_value),
                    new_value=serialize_value(detail.new_value),
                )
            )
        await self._session.flush()

    async def get_history(self, kit_id: int, up_to: datetime | None = None) -> list[ChangeLog]:
        """Return a kit's change logs newest-first, for display.

        Args:
            kit_id: The kit whose history to load.
            up_to: Optional inclusive upper bound on changed_at.
        """
        stmt = (
            select(ChangeLog)
            .options(selectinload(ChangeLog.details), joinedload(ChangeLog.user))
            .where(ChangeLog.kit_id == kit_id)
        )
        if up_to is not None:
            stmt = stmt.where(ChangeLog.changed_at <= up_to)
        stmt = stmt.order_by(ChangeLog.changed_at.desc(), ChangeLog.id.desc())
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_replay_history(self, kit_id: int, up_to: datetime) -> list[ChangeLog]:
        """Return a kit's change logs with changed_at <= up_to, oldest-first.

        Ties on changed_at are broken by version so replay order always
        matches commit order.
        """
        stmt = (
            select(ChangeLog)
            .options(selectinload(ChangeLog.details), joinedload(ChangeLog.user))
            .where(ChangeLog.kit_id == kit_id, ChangeLog.changed_at <= up_to)
            .order_by(ChangeLog.changed_at.asc(), ChangeLog.version.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_replay_history_for_all(self, up_to: datetime) -> dict[int, list[ChangeLog]]:
        """Return every kit's change logs up to ``up_to``, grouped by kit, oldest-first."""
        stmt = (
            select(ChangeLog)
            .options(selectinload(ChangeLog.details), joinedload(ChangeLog.user))
            .where(ChangeLog.changed_at <= up_to)
            .order_by(ChangeLog.kit_id, ChangeLog.changed_at.asc(), ChangeLog.version.asc())
        )
        result = await self._session.execute(stmt)
        grouped: dict[int, list[ChangeLog]] = {}
        for change_log in result.scalars().all():
            grouped.setdefault(change_log.kit_id, []).append(change_log)
        return grouped

    async def get_latest_version(self, kit_id: int) -> int:
        """Return the highest logged version for a kit, or 1 when it has no history."""
        latest = await self._session.scalar(
            select(func.max(ChangeLog.version)).where(ChangeLog.kit_id == kit_id)
        )
        return int(latest) if latest is not None else 1

    async def count_for_kit(self, kit_id: int) -> int:
        stmt = select(func.count()).select_from(ChangeLog).where(ChangeLog.kit_id == kit_id)
        return int(await self._session.scalar(stmt) or 0)

    async def query_changes_in_range(self, start: datetime, end: datetime) -> list[ChangeDetailView]:
        """Return every field change committed within [start, end], newest-first.

        Args:
            start: Inclusive lower bound on changed_at.
            end: Inclusive upper bound on changed_at.

        Returns:
            One ChangeDetailView per change_details row.
        """
        stmt = (
            select(ChangeLog, ChangeDetail, Kit.kit_name, Kit.part_number, User)
            .join(ChangeDetail, ChangeDetail.change_log_id == ChangeLog.id)
            .join(Kit, Kit.id == ChangeLog.kit_id)
            .outerjoin(User, User.id == ChangeLog.user_id)
            .where(ChangeLog.changed_at >= start, ChangeLog.changed_at <= end)
            .order_by(ChangeLog.changed_at.desc(), ChangeLog.id.desc(), ChangeDetail.id.asc())
        )
        result = await self._session.execute(stmt)
        return [
            ChangeDetailView(
                change_log_id=change_log.id,
                kit_id=change_log.kit_id,
                kit_name=kit_name,
                part_number=part_number,
                field=wire_name(detail.field),
                old_value=deserialize_value(detail.old_value),
                new_value=deserialize_value(detail.new_value),
                version=change_log.version,
                changed_at=change_log.changed_at,
                changed_by=actor_name(user, change_log.user_id),
            )
            for change_log, detail, kit_name, part_number, user in result.all()
        ]
