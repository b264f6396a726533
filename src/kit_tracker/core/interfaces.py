"""Abstract interfaces (Protocol classes) for the kit tracker.

Defines the contracts between the time machine and the adapter layer using
typing.Protocol. The writer is typed against these protocols, so tests can
substitute repositories that fail on demand.

Protocols defined:
- IUserRepository
- IKitRepository
- IChangeLogRepository
"""

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Protocol

from kit_tracker.core.fields import FieldChange, KitFields
from kit_tracker.core.models import ChangeLog, Kit, KitBaseline, User
from kit_tracker.core.records import ChangeDetailView


class IUserRepository(Protocol):
    """Repository contract for actor identities."""

    async def create(self, name: str, email: str) -> User:
        ...

    async def get(self, user_id: int) -> User | None:
        ...

    async def list_all(self) -> list[User]:
        ...


class IKitRepository(Protocol):
    """Repository contract for the Record Store.

    Has no field update method. Kit fields change only through
    VersionedKitWriter.
    """

    async def get(self, kit_id: int) -> Kit | None:
        """Retrieve a kit by id, or None if absent."""
        ...

    async def get_for_update(self, kit_id: int) -> Kit | None:
        """Retrieve a kit by id and lock its row for the current transaction."""
        ...

    async def get_all(self) -> list[Kit]:
        ...

    async def list_created_before(self, at: datetime) -> list[Kit]:
        ...

    async def create(self, fields: KitFields, user_id: int | None, created_at: datetime) -> Kit:
        """Create a kit at version 1 and store its baseline snapshot.

        Args:
            fields: Validated kit fields.
            user_id: Creating actor.
            created_at: Creation timestamp.

        Returns:
            The persisted Kit.
        """
        ...

    async def delete(self, kit_id: int) -> bool:
        """Delete a kit with its baseline and history.

        Raises:
            NotFoundError: If the kit does not exist.
        """
        ...

    async def get_baseline(self, kit_id: int) -> KitBaseline | None:
        ...

    async def get_baselines(self, kit_ids: Iterable[int]) -> dict[int, KitBaseline]:
        ...


class IChangeLogRepository(Protocol):
    """Repository contract for the append-only Change Record Store."""

    async def append_change_log(
        self,
        kit_id: int,
        version: int,
        actor_id: int,
        details: Sequence[FieldChange],
        changed_at: datetime,
    ) -> ChangeLog:
        """Append one change log entry with its field details.

        Raises:
            ValidationError: If ``details`` is empty.
        """
        ...

    async def get_history(self, kit_id: int, up_to: datetime | None = None) -> list[ChangeLog]:
        """Return a kit's change logs, newest first."""
        ...

    async def get_replay_history(self, kit_id: int, up_to: datetime) -> list[ChangeLog]:
        """Return a kit's change logs up to ``up_to``, oldest first."""
        ...

    async def get_replay_history_for_all(self, up_to: datetime) -> dict[int, list[ChangeLog]]:
        ...

    async def get_latest_version(self, kit_id: int) -> int:
        ...

    async def query_changes_in_range(self, start: datetime, end: datetime) -> list[ChangeDetailView]:
        ...
