"""Tests for KitService and the demo seed.

KitService composes the repositories and time machine components; these
tests exercise the facade end to end on SQLite, plus the seed helpers that
populate a fresh database.
"""

import random
from datetime import timedelta
from typing import Any

import pytest

from kit_tracker.adapters.database import KitDatabase
from kit_tracker.adapters.seed import DEFAULT_USERS, generate_kit_fields, seed_database, seed_kits, seed_users
from kit_tracker.core.errors import NotFoundError, ValidationError
from kit_tracker.core.records import UserRecord
from kit_tracker.core.services import KitService


class TestKitService:
    @pytest.mark.asyncio()
    async def test_create_kit_returns_version_one(
        self, service: KitService, actor: UserRecord, kit_fields: dict, clock: Any
    ) -> None:
        kit = await service.create_kit(kit_fields, actor.id)

        assert kit.version == 1
        assert kit.user == "John Doe"
        assert kit.created_at == clock()
        assert kit.as_of is None

    @pytest.mark.asyncio()
    async def test_create_kit_with_missing_field_raises_validation_error(
        self, service: KitService, actor: UserRecord, kit_fields: dict
    ) -> None:
        del kit_fields["manufacturer"]

        with pytest.raises(ValidationError):
            await service.create_kit(kit_fields, actor.id)

        assert await service.list_kits() == []

    @pytest.mark.asyncio()
    async def test_create_kit_with_unknown_actor_raises_validation_error(
        self, service: KitService, kit_fields: dict
    ) -> None:
        with pytest.raises(ValidationError):
            await service.create_kit(kit_fields, 77)

    @pytest.mark.asyncio()
    async def test_list_kits_orders_by_id(self, service: KitService, actor: UserRecord, kit_fields: dict) -> None:
        first = await service.create_kit({**kit_fields, "partNumber": "KIT-009"}, actor.id)
        second = await service.create_kit({**kit_fields, "partNumber": "KIT-001"}, actor.id)

        kits = await service.list_kits()

        assert [kit.id for kit in kits] == [first.id, second.id]

    @pytest.mark.asyncio()
    async def test_delete_kit_removes_kit_and_history(
        self, service: KitService, actor: UserRecord, kit_fields: dict, clock: Any
    ) -> None:
        kit = await service.create_kit(kit_fields, actor.id)
        clock.advance(hours=1)
        await service.update_kit(
            kit.id, {}, [{"field": "noun", "oldValue": "Component A", "newValue": "Unit F"}], actor.id
        )

        await service.delete_kit(kit.id)

        with pytest.raises(NotFoundError):
            await service.get_kit(kit.id)
        with pytest.raises(NotFoundError):
            await service.get_history(kit.id)
        with pytest.raises(NotFoundError):
            await service.get_kit_at(kit.id, clock())
        assert await service.get_changes_in_range(clock().date(), clock().date()) == []

    @pytest.mark.asyncio()
    async def test_delete_unknown_kit_raises_not_found(self, service: KitService) -> None:
        with pytest.raises(NotFoundError):
            await service.delete_kit(31337)

    @pytest.mark.asyncio()
    async def test_history_before_timestamp(
        self, service: KitService, actor: UserRecord, kit_fields: dict, clock: Any
    ) -> None:
        kit = await service.create_kit(kit_fields, actor.id)
        first_at = clock.advance(hours=1)
        await service.update_kit(kit.id, {}, [{"field": "remarks", "oldValue": "", "newValue": "a"}], actor.id)
        clock.advance(hours=1)
        await service.update_kit(kit.id, {}, [{"field": "remarks", "oldValue": "a", "newValue": "b"}], actor.id)

        assert [entry.version for entry in await service.get_history(kit.id)] == [3, 2]
        assert [entry.version for entry in await service.get_history(kit.id, first_at)] == [2]
        assert await service.get_history(kit.id, first_at - timedelta(seconds=1)) == []

    @pytest.mark.asyncio()
    async def test_latest_version_of_unknown_kit_raises_not_found(self, service: KitService) -> None:
        with pytest.raises(NotFoundError):
            await service.get_latest_version(5)

    @pytest.mark.asyncio()
    async def test_duplicate_email_raises_validation_error(self, service: KitService, actor: UserRecord) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await service.create_user("Another John", actor.email)

        assert exc_info.value.field == "email"


class TestSeed:
    def test_generate_kit_fields_is_deterministic_for_seeded_rng(self) -> None:
        assert generate_kit_fields(5, random.Random(7)) == generate_kit_fields(5, random.Random(7))

    def test_generated_kits_follow_numbering_rules(self) -> None:
        kits = generate_kit_fields(12, random.Random(1))

        assert [kit["part_number"] for kit in kits[:3]] == ["KIT-001", "KIT-002", "KIT-003"]
        assert kits[11]["form48_number"] == "F48-012"
        for i, kit in enumerate(kits, start=1):
            assert kit["remarks"] == f"Auto-generated kit {i}"
            if kit["die_required"]:
                assert kit["die_number"] == f"DIE-{i:03d}"
            else:
                assert kit["die_number"] == ""

    @pytest.mark.asyncio()
    async def test_seed_kits_requires_users(self, database: KitDatabase) -> None:
        with pytest.raises(ValidationError):
            await seed_kits(database, 3)

    @pytest.mark.asyncio()
    async def test_seed_database_is_idempotent(self, database: KitDatabase, service: KitService) -> None:
        created = await seed_database(database, 10, rng=random.Random(3))
        again = await seed_database(database, 10, rng=random.Random(3))

        kits = await service.list_kits()
        users = await service.list_users()
        assert created == 10
        assert again == 0
        assert len(kits) == 10
        assert all(kit.version == 1 for kit in kits)
        assert [user.email for user in users] == [email for _, email in DEFAULT_USERS]

    @pytest.mark.asyncio()
    async def test_seed_users_keeps_existing_users(self, database: KitDatabase, actor: UserRecord) -> None:
        ids = await seed_users(database)

        assert len(ids) == len(DEFAULT_USERS)
        assert ids[0] == actor.id
