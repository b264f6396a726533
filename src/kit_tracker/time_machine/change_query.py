"""Date-ranged audit view over committed kit changes."""

from __future__ import annotations

import logging
from datetime import date, datetime

from kit_tracker.adapters.database import KitDatabase
from kit_tracker.adapters.repositories import ChangeLogRepository
from kit_tracker.core.errors import ValidationError
from kit_tracker.core.records import ChangeDetailView
from kit_tracker.core.timestamps import end_of_day, parse_day, start_of_day

logger = logging.getLogger(__name__)

DayBound = date | datetime | str | None


class ChangeQueryService:
    """Lists every field-level change committed within a span of calendar days.

    Args:
        database: Storage handle providing read sessions.
    """

    def __init__(self, database: KitDatabase) -> None:
        self._database = database

    async def query_changes_in_range(self, start: DayBound, end: DayBound) -> list[ChangeDetailView]:
        """Return the field changes committed from the start of ``start`` to the end of ``end``.

        Both bounds are inclusive whole UTC days. The result has one row per
        change detail, joined with its kit and actor, newest first.

        Args:
            start: First day of the window (date, datetime or ISO string).
            end: Last day of the window.

        Raises:
            ValidationError: If a bound is missing or unparsable, or start is after end.
        """
        first_day = parse_day(start, "start")
        last_day = parse_day(end, "end")
        if first_day > last_day:
            raise ValidationError(
                f"start date {first_day.isoformat()} is after end date {last_day.isoformat()}",
                field="start",
            )

        async with self._database.session() as session:
            rows = await ChangeLogRepository(session).query_changes_in_range(
                start_of_day(first_day), end_of_day(last_day)
            )
        logger.debug(
            "Queried kit changes (start=%s, end=%s, rows=%d)",
            first_day.isoformat(),
            last_day.isoformat(),
            len(rows),
        )
        return rows
