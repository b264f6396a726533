"""Tests for VersionedKitWriter.

Covers the version invariants (version = updates + 1, contiguous logged
versions), the no-changes path, diff validation, optimistic concurrency and
atomic rollback when a step of the write fails.
"""

import asyncio
from collections.abc import Sequence
from typing import Any

import pytest
from sqlalchemy.exc import OperationalError

from kit_tracker.adapters.database import KitDatabase
from kit_tracker.adapters.repositories import ChangeLogRepository
from kit_tracker.core.errors import (
    NoChangesError,
    NotFoundError,
    PersistenceError,
    UnknownFieldError,
    ValidationError,
    VersionConflictError,
)
from kit_tracker.core.fields import FieldChange, StateStatus
from kit_tracker.core.models import ChangeLog
from kit_tracker.core.records import UserRecord
from kit_tracker.core.services import KitService
from kit_tracker.time_machine.writer import VersionedKitWriter, reconcile_diffs


class FailingDetailsChangeLogRepository(ChangeLogRepository):
    """Change log repository whose detail insert fails after the header is flushed."""

    async def _add_details(self, change_log: ChangeLog, details: Sequence[FieldChange]) -> None:
        raise OperationalError("INSERT INTO change_details", {}, Exception("disk I/O error"))


def _state_change(old: str, new: str) -> list[dict[str, Any]]:
    return [{"field": "stateStatus", "oldValue": old, "newValue": new}]


class TestVersionedKitWriter:
    @pytest.mark.asyncio()
    async def test_form_17_pending_to_mcl(
        self, service: KitService, actor: UserRecord, kit_fields: dict, clock: Any
    ) -> None:
        kit = await service.create_kit(kit_fields, actor.id)
        clock.advance(days=1)

        updated = await service.update_kit(
            kit.id, {"stateStatus": "MCL"}, _state_change("Form 17 Pending", "MCL"), actor.id
        )

        assert updated.version == 2
        assert updated.state_status is StateStatus.MCL
        history = await service.get_history(kit.id)
        assert len(history) == 1
        assert history[0].version == 2
        assert history[0].changed_by == "John Doe"
        assert [(c.field, c.old_value, c.new_value) for c in history[0].changes] == [
            ("stateStatus", "Form 17 Pending", "MCL")
        ]

    @pytest.mark.asyncio()
    async def test_version_counts_updates_and_logs_are_contiguous(
        self, service: KitService, actor: UserRecord, kit_fields: dict, clock: Any
    ) -> None:
        kit = await service.create_kit(kit_fields, actor.id)
        remarks = ""
        for i in range(1, 6):
            clock.advance(minutes=5)
            new_remarks = f"revision {i}"
            await service.update_kit(
                kit.id,
                {"remarks": new_remarks},
                [{"field": "remarks", "oldValue": remarks, "newValue": new_remarks}],
                actor.id,
            )
            remarks = new_remarks

        current = await service.get_kit(kit.id)
        history = await service.get_history(kit.id)

        assert current.version == 6
        assert sorted(entry.version for entry in history) == [2, 3, 4, 5, 6]
        assert await service.get_latest_version(kit.id) == 6

    @pytest.mark.asyncio()
    async def test_empty_diffs_raise_no_changes_and_write_nothing(
        self, service: KitService, actor: UserRecord, kit_fields: dict
    ) -> None:
        kit = await service.create_kit(kit_fields, actor.id)

        with pytest.raises(NoChangesError):
            await service.update_kit(kit.id, {"stateStatus": "MCL"}, [], actor.id)

        current = await service.get_kit(kit.id)
        assert current.version == 1
        assert current.state_status is StateStatus.FORM_17_PENDING
        assert await service.get_history(kit.id) == []

    @pytest.mark.asyncio()
    async def test_unknown_kit_raises_not_found(self, service: KitService, actor: UserRecord) -> None:
        with pytest.raises(NotFoundError):
            await service.update_kit(404, {}, _state_change("Form 17 Pending", "MCL"), actor.id)

    @pytest.mark.asyncio()
    async def test_unknown_actor_raises_validation_error(
        self, service: KitService, actor: UserRecord, kit_fields: dict
    ) -> None:
        kit = await service.create_kit(kit_fields, actor.id)

        with pytest.raises(ValidationError):
            await service.update_kit(kit.id, {}, _state_change("Form 17 Pending", "MCL"), 999)

        assert (await service.get_kit(kit.id)).version == 1

    @pytest.mark.asyncio()
    async def test_unknown_field_in_diff_is_rejected(
        self, service: KitService, actor: UserRecord, kit_fields: dict
    ) -> None:
        kit = await service.create_kit(kit_fields, actor.id)

        with pytest.raises(UnknownFieldError):
            await service.update_kit(
                kit.id, {}, [{"field": "colour", "oldValue": "red", "newValue": "blue"}], actor.id
            )

    @pytest.mark.asyncio()
    async def test_diff_disagreeing_with_proposed_value_is_rejected(
        self, service: KitService, actor: UserRecord, kit_fields: dict
    ) -> None:
        kit = await service.create_kit(kit_fields, actor.id)

        with pytest.raises(ValidationError):
            await service.update_kit(
                kit.id, {"stateStatus": "Under Sourcing"}, _state_change("Form 17 Pending", "MCL"), actor.id
            )

    @pytest.mark.asyncio()
    async def test_stale_expected_version_raises_conflict(
        self, service: KitService, actor: UserRecord, kit_fields: dict, clock: Any
    ) -> None:
        kit = await service.create_kit(kit_fields, actor.id)
        clock.advance(minutes=1)
        await service.update_kit(
            kit.id, {}, _state_change("Form 17 Pending", "MCL"), actor.id, expected_version=1
        )

        with pytest.raises(VersionConflictError) as exc_info:
            await service.update_kit(
                kit.id, {}, _state_change("Form 17 Pending", "Part Under TF"), actor.id, expected_version=1
            )

        assert exc_info.value.current_version == 2
        assert (await service.get_kit(kit.id)).state_status is StateStatus.MCL

    @pytest.mark.asyncio()
    async def test_failure_inserting_details_rolls_back_everything(
        self,
        database: KitDatabase,
        service: KitService,
        actor: UserRecord,
        kit_fields: dict,
        clock: Any,
    ) -> None:
        kit = await service.create_kit(kit_fields, actor.id)
        writer = VersionedKitWriter(
            database,
            clock=clock,
            change_log_repository_factory=FailingDetailsChangeLogRepository,
        )

        with pytest.raises(PersistenceError):
            await writer.update(kit.id, {}, _state_change("Form 17 Pending", "MCL"), actor.id)

        current = await service.get_kit(kit.id)
        assert current.version == 1
        assert current.state_status is StateStatus.FORM_17_PENDING
        assert await service.get_history(kit.id) == []
        async with database.session() as session:
            assert await ChangeLogRepository(session).count_for_kit(kit.id) == 0

    @pytest.mark.asyncio()
    async def test_update_records_last_actor_and_timestamp(
        self,
        service: KitService,
        actor: UserRecord,
        other_actor: UserRecord,
        kit_fields: dict,
        clock: Any,
    ) -> None:
        kit = await service.create_kit(kit_fields, actor.id)
        changed_at = clock.advance(hours=3)

        updated = await service.update_kit(
            kit.id, {}, [{"field": "noun", "oldValue": "Component A", "newValue": "Assembly C"}], other_actor.id
        )

        assert updated.user_id == other_actor.id
        assert updated.user == "Jane Smith"
        assert updated.updated_at == changed_at
        assert updated.noun == "Assembly C"

    @pytest.mark.asyncio()
    async def test_concurrent_updates_both_commit_with_consecutive_versions(
        self,
        service: KitService,
        actor: UserRecord,
        other_actor: UserRecord,
        kit_fields: dict,
        clock: Any,
    ) -> None:
        kit = await service.create_kit(kit_fields, actor.id)
        clock.advance(minutes=5)

        results = await asyncio.gather(
            service.update_kit(
                kit.id, {}, [{"field": "remarks", "oldValue": "", "newValue": "inspected"}], actor.id
            ),
            service.update_kit(
                kit.id, {}, [{"field": "noun", "oldValue": "Component A", "newValue": "Unit F"}], other_actor.id
            ),
        )

        assert sorted(result.version for result in results) == [2, 3]
        current = await service.get_kit(kit.id)
        assert current.version == 3
        assert current.remarks == "inspected"
        assert current.noun == "Unit F"
        history = await service.get_history(kit.id)
        assert [entry.version for entry in history] == [3, 2]
        assert {entry.changes[0].field for entry in history} == {"remarks", "noun"}
        assert await service.get_latest_version(kit.id) == 3


class TestReconcileDiffs:
    def test_last_edit_of_a_field_must_match_proposal(self) -> None:
        diffs = [
            FieldChange(field="stateStatus", old_value="Form 17 Pending", new_value="Part Under TF"),
            FieldChange(field="stateStatus", old_value="Part Under TF", new_value="MCL"),
        ]
        proposed = {"state_status": StateStatus.MCL}

        canonical = reconcile_diffs(diffs, proposed)

        assert [d.field for d in canonical] == ["state_status", "state_status"]
        assert canonical[-1].new_value == "MCL"

    def test_missing_proposed_value_is_taken_from_diff(self) -> None:
        proposed: dict = {}

        reconcile_diffs([FieldChange(field="dieRequired", old_value=False, new_value=True)], proposed)

        assert proposed == {"die_required": True}

    def test_invalid_new_value_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            reconcile_diffs([FieldChange(field="manufacturer", old_value="PMC", new_value="Bakery")], {})
