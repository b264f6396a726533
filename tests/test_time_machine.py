"""Tests for the kit time machine reconstructor.

Covers: reconstruction before creation, between and after updates, the
whole-set view, idempotence, diff between timestamps, and refusal to replay
corrupt stored history.

Run with: pytest tests/test_time_machine.py -v
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

import pytest
from sqlalchemy import update

from kit_tracker.adapters.database import KitDatabase
from kit_tracker.core.errors import NotFoundError, PersistenceError, ValidationError
from kit_tracker.core.fields import StateStatus
from kit_tracker.core.models import ChangeDetail
from kit_tracker.core.records import KitRecord, UserRecord
from kit_tracker.core.services import KitService
from kit_tracker.time_machine import KitStateReconstructor

STEPS = ("Part Under TF", "Part Trial Testing", "MCL")


async def make_history(
    service: KitService,
    actor: UserRecord,
    kit_fields: dict,
    clock: Any,
) -> tuple[KitRecord, list[datetime]]:
    """Create a kit and walk it through STEPS one hour apart.

    Returns:
        The created kit and the commit time of each update, in order.
    """
    kit = await service.create_kit(kit_fields, actor.id)
    previous = kit_fields["stateStatus"]
    committed = []
    for step in STEPS:
        committed.append(clock.advance(hours=1))
        await service.update_kit(
            kit.id,
            {"stateStatus": step},
            [{"field": "stateStatus", "oldValue": previous, "newValue": step}],
            actor.id,
        )
        previous = step
    return kit, committed


class TestGetKitAt:
    @pytest.mark.asyncio()
    async def test_before_creation_raises_not_found(
        self, service: KitService, actor: UserRecord, kit_fields: dict, clock: Any
    ) -> None:
        kit = await service.create_kit(kit_fields, actor.id)

        with pytest.raises(NotFoundError):
            await service.get_kit_at(kit.id, kit.created_at - timedelta(seconds=1))

    @pytest.mark.asyncio()
    async def test_unknown_kit_raises_not_found(self, service: KitService, clock: Any) -> None:
        with pytest.raises(NotFoundError):
            await service.get_kit_at(12345, clock())

    @pytest.mark.asyncio()
    async def test_at_creation_returns_creation_values(
        self, service: KitService, actor: UserRecord, kit_fields: dict, clock: Any
    ) -> None:
        kit, committed = await make_history(service, actor, kit_fields, clock)

        state = await service.get_kit_at(kit.id, committed[0] - timedelta(minutes=1))

        assert state.version == 1
        assert state.state_status is StateStatus.FORM_17_PENDING
        assert state.user_id == actor.id
        assert state.user == "John Doe"
        assert state.updated_at == kit.created_at

    @pytest.mark.asyncio()
    async def test_between_updates_returns_state_of_last_committed_update(
        self, service: KitService, actor: UserRecord, kit_fields: dict, clock: Any
    ) -> None:
        kit, committed = await make_history(service, actor, kit_fields, clock)

        for k, committed_at in enumerate(committed, start=1):
            exactly = await service.get_kit_at(kit.id, committed_at)
            between = await service.get_kit_at(kit.id, committed_at + timedelta(minutes=30))

            assert exactly.state_status.value == STEPS[k - 1]
            assert exactly.version == k + 1
            assert between == exactly.model_copy(update={"as_of": between.as_of})

    @pytest.mark.asyncio()
    async def test_after_last_update_matches_current_state(
        self, service: KitService, actor: UserRecord, kit_fields: dict, clock: Any
    ) -> None:
        kit, committed = await make_history(service, actor, kit_fields, clock)

        state = await service.get_kit_at(kit.id, committed[-1] + timedelta(days=30))
        current = await service.get_kit(kit.id)

        assert state.tracked_fields() == current.tracked_fields()
        assert state.version == current.version == len(STEPS) + 1
        assert state.updated_at == current.updated_at

    @pytest.mark.asyncio()
    async def test_reconstruction_is_idempotent(
        self, service: KitService, actor: UserRecord, kit_fields: dict, clock: Any
    ) -> None:
        kit, committed = await make_history(service, actor, kit_fields, clock)
        at = committed[1] + timedelta(minutes=1)

        first = await service.get_kit_at(kit.id, at)
        second = await service.get_kit_at(kit.id, at)

        assert first == second

    @pytest.mark.asyncio()
    async def test_naive_timestamp_is_treated_as_utc(
        self, service: KitService, actor: UserRecord, kit_fields: dict, clock: Any
    ) -> None:
        kit, committed = await make_history(service, actor, kit_fields, clock)

        state = await service.get_kit_at(kit.id, committed[0].replace(tzinfo=None))

        assert state.version == 2

    @pytest.mark.asyncio()
    async def test_unknown_field_in_stored_history_raises_persistence_error(
        self,
        database: KitDatabase,
        service: KitService,
        actor: UserRecord,
        kit_fields: dict,
        clock: Any,
    ) -> None:
        kit, committed = await make_history(service, actor, kit_fields, clock)
        async with database.transaction() as session:
            await session.execute(update(ChangeDetail).values(field="colour"))

        with pytest.raises(PersistenceError):
            await service.get_kit_at(kit.id, committed[-1])

    @pytest.mark.asyncio()
    async def test_ill_typed_value_in_stored_history_raises_persistence_error(
        self,
        database: KitDatabase,
        service: KitService,
        actor: UserRecord,
        kit_fields: dict,
        clock: Any,
    ) -> None:
        kit, committed = await make_history(service, actor, kit_fields, clock)
        async with database.transaction() as session:
            await session.execute(update(ChangeDetail).values(new_value='"Shipped"'))

        with pytest.raises(PersistenceError):
            await service.get_kit_at(kit.id, committed[-1])


class TestGetAllAt:
    @pytest.mark.asyncio()
    async def test_only_kits_existing_at_timestamp_ordered_by_part_number(
        self, service: KitService, actor: UserRecord, kit_fields: dict, clock: Any
    ) -> None:
        await service.create_kit({**kit_fields, "partNumber": "KIT-002"}, actor.id)
        await service.create_kit({**kit_fields, "partNumber": "KIT-001"}, actor.id)
        cutoff = clock.advance(hours=1)
        clock.advance(hours=1)
        await service.create_kit({**kit_fields, "partNumber": "KIT-000"}, actor.id)

        kits = await service.list_kits_at(cutoff)

        assert [kit.part_number for kit in kits] == ["KIT-001", "KIT-002"]
        assert all(kit.as_of == cutoff for kit in kits)

    @pytest.mark.asyncio()
    async def test_whole_set_agrees_with_single_kit_reconstruction(
        self, service: KitService, actor: UserRecord, kit_fields: dict, clock: Any
    ) -> None:
        kit, committed = await make_history(service, actor, kit_fields, clock)
        other = await service.create_kit({**kit_fields, "partNumber": "KIT-002"}, actor.id)
        at = committed[1] + timedelta(minutes=10)

        kits = {record.id: record for record in await service.list_kits_at(at)}

        assert set(kits) == {kit.id}
        assert kits[kit.id] == await service.get_kit_at(kit.id, at)
        assert other.id not in kits

    @pytest.mark.asyncio()
    async def test_empty_database_returns_empty_list(self, database: KitDatabase, clock: Any) -> None:
        assert await KitStateReconstructor(database).get_all_at(clock()) == []


class TestDiff:
    @pytest.mark.asyncio()
    async def test_reports_added_and_modified_kits(
        self, service: KitService, actor: UserRecord, kit_fields: dict, clock: Any
    ) -> None:
        kit, committed = await make_history(service, actor, kit_fields, clock)
        added = await service.create_kit({**kit_fields, "partNumber": "KIT-009"}, actor.id)

        diff = await service.diff(committed[0], clock())

        assert [record.id for record in diff.added] == [added.id]
        assert len(diff.modified) == 1
        modification = diff.modified[0]
        assert modification.kit_id == kit.id
        assert (modification.from_version, modification.to_version) == (2, 4)
        assert [(d.field, d.from_value, d.to_value) for d in modification.changes] == [
            ("stateStatus", "Part Under TF", "MCL")
        ]

    @pytest.mark.asyncio()
    async def test_same_timestamp_has_no_changes(
        self, service: KitService, actor: UserRecord, kit_fields: dict, clock: Any
    ) -> None:
        await make_history(service, actor, kit_fields, clock)

        diff = await service.diff(clock(), clock())

        assert diff.added == []
        assert diff.modified == []

    @pytest.mark.asyncio()
    async def test_reversed_bounds_raise_validation_error(self, service: KitService, clock: Any) -> None:
        with pytest.raises(ValidationError):
            await service.diff(clock(), clock() - timedelta(days=1))
