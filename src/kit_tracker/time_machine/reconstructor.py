"""Kit state reconstructor for the kit time machine.

Given a kit's immutable creation baseline and its append-only change log,
reconstructs the exact field values the kit had at any historical
timestamp. Also provides a diff of the whole kit set between two timestamps.

Replay is strictly forward: start from the baseline snapshot and apply each
change detail's new value through the typed field registry, in commit order.
Stored history that cannot be replayed is reported, never papered over.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from kit_tracker.adapters.database import KitDatabase
from kit_tracker.adapters.repositories import ChangeLogRepository, KitRepository, UserRepository
from kit_tracker.core.errors import NotFoundError, PersistenceError, ValidationError
from kit_tracker.core.fields import apply_field, deserialize_value, diff_fields, fields_to_plain, wire_name
from kit_tracker.core.models import ChangeLog, Kit, KitBaseline
from kit_tracker.core.records import FieldDelta, KitModification, KitRecord, KitStateDiff
from kit_tracker.core.snapshots import decompress_snapshot
from kit_tracker.core.timestamps import to_utc

logger = logging.getLogger(__name__)


def replay_changes(
    kit: Kit,
    baseline: KitBaseline | None,
    history: Sequence[ChangeLog],
    at: datetime,
    *,
    creator_name: str | None = None,
) -> KitRecord:
    """Fold a kit's change history forward from its baseline.

    Args:
        kit: The kit row (supplies id and created_at only).
        baseline: The kit's creation snapshot.
        history: Change logs with changed_at <= at, oldest first. Details
            must be loaded; the actor relationship is used when loaded.
        at: The reconstruction timestamp.
        creator_name: Display name of the creating user, if known.

    Returns:
        The kit state as of ``at``.

    Raises:
        PersistenceError: If the baseline is missing or the history names an
            unknown field or holds a value the field cannot take.
    """
    if baseline is None:
        raise PersistenceError(f"Kit {kit.id} has no baseline snapshot")

    state: dict[str, Any] = decompress_snapshot(baseline.snapshot)
    version = 1
    user_id = baseline.created_by
    user_name = creator_name
    updated_at = kit.created_at

    for change_log in history:
        for detail in change_log.details:
            try:
                apply_field(state, detail.field, deserialize_value(detail.new_value))
            except ValidationError as exc:
                raise PersistenceError(
                    f"Change log {change_log.id} for kit {kit.id} cannot be replayed: {exc.message}"
                ) from exc
        version = max(version, change_log.version)
        user_id = change_log.user_id
        user_name = change_log.user.name if change_log.user is not None else f"User {change_log.user_id}"
        updated_at = change_log.changed_at

    return KitRecord(
        id=kit.id,
        version=version,
        user_id=user_id,
        user=user_name,
        created_at=kit.created_at,
        updated_at=updated_at,
        as_of=at,
        **state,
    )


class KitStateReconstructor:
    """Reconstructs kit state at any historical timestamp.

    Each call opens its own read session, so results only reflect committed
    updates. Reconstruction has no side effects: repeating a query with the
    same arguments yields the same result as long as no kit is deleted.

    Args:
        database: Storage handle providing read sessions.
    """

    def __init__(self, database: KitDatabase) -> None:
        self._database = database

    async def get_kit_at(self, kit_id: int, at: datetime) -> KitRecord:
        """Reconstruct one kit as it was at ``at``.

        Args:
            kit_id: The kit to reconstruct.
            at: Point in time; naive values are taken as UTC.

        Returns:
            The kit's field values, version and last actor as of ``at``.

        Raises:
            NotFoundError: If the kit does not exist or was created after ``at``.
            PersistenceError: If the stored history cannot be replayed.
        """
        at = to_utc(at)
        async with self._database.session() as session:
            kits = KitRepository(session)
            kit = await kits.get(kit_id)
            if kit is None:
                raise NotFoundError(resource="Kit", resource_id=kit_id)
            if kit.created_at > at:
                raise NotFoundError(
                    resource="Kit",
                    resource_id=kit_id,
                    message=f"Kit {kit_id} did not exist at {at.isoformat()}",
                )

            baseline = await kits.get_baseline(kit_id)
            history = await ChangeLogRepository(session).get_replay_history(kit_id, at)
            creator_name = await self._creator_name(session, baseline)

        record = replay_changes(kit, baseline, history, at, creator_name=creator_name)
        logger.debug(
            "Reconstructed kit (kit_id=%s, at=%s, version=%s, changes_applied=%d)",
            kit_id,
            at.isoformat(),
            record.version,
            len(history),
        )
        return record

    async def get_all_at(self, at: datetime) -> list[KitRecord]:
        """Reconstruct every kit that existed at ``at``.

        Returns:
            One KitRecord per kit created at or before ``at``, ordered by
            part number then id.

        Raises:
            PersistenceError: If any kit's stored history cannot be replayed.
        """
        at = to_utc(at)
        async with self._database.session() as session:
            kits = KitRepository(session)
            live = await kits.list_created_before(at)
            baselines = await kits.get_baselines(kit.id for kit in live)
            histories = await ChangeLogRepository(session).get_replay_history_for_all(at)
            users = {user.id: user.name for user in await UserRepository(session).list_all()}

        records = [
            replay_changes(
                kit,
                baselines.get(kit.id),
                histories.get(kit.id, []),
                at,
                creator_name=self._lookup_creator(users, baselines.get(kit.id)),
            )
            for kit in live
        ]
        logger.debug("Reconstructed kit set (at=%s, kits=%d)", at.isoformat(), len(records))
        return records

    async def diff(self, from_ts: datetime, to_ts: datetime) -> KitStateDiff:
        """Return what changed across the kit set between two timestamps.

        Kits present at ``to_ts`` but not at ``from_ts`` are "added". Kits
        present at both whose tracked fields differ are "modified". Deleted
        kits leave no history, so there is no "deleted" bucket.

        Args:
            from_ts: The earlier timestamp.
            to_ts: The later timestamp.

        Raises:
            ValidationError: If ``from_ts`` is after ``to_ts``.
        """
        from_ts, to_ts = to_utc(from_ts), to_utc(to_ts)
        if from_ts > to_ts:
            raise ValidationError("from must not be after to", field="from")

        before = {record.id: record for record in await self.get_all_at(from_ts)}
        after = await self.get_all_at(to_ts)

        added: list[KitRecord] = []
        modified: list[KitModification] = []
        for record in after:
            previous = before.get(record.id)
            if previous is None:
                added.append(record)
                continue
            deltas = [
                FieldDelta(field=wire_name(change.field), from_value=change.old_value, to_value=change.new_value)
                for change in diff_fields(previous, fields_to_plain(record))
            ]
            if deltas:
                modified.append(
                    KitModification(
                        kit_id=record.id,
                        part_number=record.part_number,
                        from_version=previous.version,
                        to_version=record.version,
                        changes=deltas,
                    )
                )

        return KitStateDiff(from_timestamp=from_ts, to_timestamp=to_ts, added=added, modified=modified)

    async def _creator_name(self, session: AsyncSession, baseline: KitBaseline | None) -> str | None:
        if baseline is None or baseline.created_by is None:
            return None
        creator = await UserRepository(session).get(baseline.created_by)
        return creator.name if creator is not None else None

    @staticmethod
    def _lookup_creator(users: dict[int, str], baseline: KitBaseline | None) -> str | None:
        if baseline is None or baseline.created_by is None:
            return None
        return users.get(baseline.created_by)
