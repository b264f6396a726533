"""Demo data for a fresh kit database.

Seeds eight demo users and a configurable number of generated kits. Kits
are created through KitRepository.create, so every seeded kit gets a
version 1 row and a creation baseline like any other kit.
"""

import logging
import random
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import select

from kit_tracker.adapters.database import KitDatabase
from kit_tracker.adapters.repositories import KitRepository, UserRepository
from kit_tracker.core.errors import ValidationError
from kit_tracker.core.fields import KNOWN_KIT_NAMES, Manufacturer, StateStatus, validate_kit_fields
from kit_tracker.core.models import User
from kit_tracker.core.timestamps import utc_now

logger = logging.getLogger(__name__)

DEFAULT_USERS: tuple[tuple[str, str], ...] = (
    ("John Doe", "john.doe@example.com"),
    ("Jane Smith", "jane.smith@example.com"),
    ("Mike Johnson", "mike.johnson@example.com"),
    ("Sarah Williams", "sarah.williams@example.com"),
    ("David Brown", "david.brown@example.com"),
    ("Emily Davis", "emily.davis@example.com"),
    ("Robert Wilson", "robert.wilson@example.com"),
    ("Lisa Miller", "lisa.miller@example.com"),
)

CURRENT_STATUSES: tuple[str | None, ...] = (
    "In Progress",
    "Evaluation",
    "Testing",
    "Completed",
    "On Hold",
    "Cancelled",
    "Ready for Production",
    "Awaiting Approval",
    None,
)

NOUNS: tuple[str, ...] = ("Component", "Assembly", "Module", "Unit", "Part", "System", "Device", "Element")


def generate_kit_fields(count: int, rng: random.Random | None = None) -> list[dict[str, Any]]:
    """Generate field values for ``count`` demo kits.

    Part numbers run KIT-001, KIT-002, ...; a die number is only set when
    the kit requires a die. Passing a seeded ``rng`` makes the output
    reproducible.

    Args:
        count: Number of kits to generate.
        rng: Random source. A fresh unseeded one is used when omitted.

    Returns:
        One python-name keyed field mapping per kit.
    """
    rng = rng or random.Random()
    kits: list[dict[str, Any]] = []
    for i in range(1, count + 1):
        die_required = rng.random() > 0.5
        kits.append(
            {
                "part_number": f"KIT-{i:03d}",
                "noun": f"{rng.choice(NOUNS)} {chr(65 + rng.randrange(8))}",
                "kit_name": rng.choice(KNOWN_KIT_NAMES),
                "manufacturer": rng.choice(list(Manufacturer)).value,
                "state_status": rng.choice(list(StateStatus)).value,
                "current_status": rng.choice(CURRENT_STATUSES),
                "remarks": f"Auto-generated kit {i}",
                "form48_number": f"F48-{i:03d}",
                "die_required": die_required,
                "die_number": f"DIE-{i:03d}" if die_required else "",
            }
        )
    return kits


async def seed_users(database: KitDatabase) -> list[int]:
    """Insert the demo users that are not registered yet.

    Returns:
        Ids of all demo users, in DEFAULT_USERS order.
    """
    async with database.transaction() as session:
        result = await session.execute(select(User).where(User.email.in_([email for _, email in DEFAULT_USERS])))
        existing = {user.email: user.id for user in result.scalars().all()}
        users = UserRepository(session)
        ids: list[int] = []
        for name, email in DEFAULT_USERS:
            if email not in existing:
                existing[email] = (await users.create(name, email)).id
            ids.append(existing[email])
    logger.info("Seeded users (count=%d)", len(ids))
    return ids


async def seed_kits(
    database: KitDatabase,
    count: int,
    *,
    rng: random.Random | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> int:
    """Create ``count`` generated kits, each attributed to a random existing user.

    Returns:
        Number of kits created.

    Raises:
        ValidationError: If there are no users to attribute kits to.
    """
    rng = rng or random.Random()
    async with database.transaction() as session:
        user_ids = [user.id for user in await UserRepository(session).list_all()]
        if not user_ids:
            raise ValidationError("No users found. Seed users before kits.")
        kits = KitRepository(session)
        for fields in generate_kit_fields(count, rng):
            await kits.create(validate_kit_fields(fields), rng.choice(user_ids), clock())
    logger.info("Seeded kits (count=%d)", count)
    return count


async def seed_database(
    database: KitDatabase,
    kit_count: int,
    *,
    rng: random.Random | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> int:
    """Seed users, then kits if the kit table is empty.

    Returns:
        Number of kits created (0 when kits already existed).
    """
    await seed_users(database)
    async with database.session() as session:
        existing = await KitRepository(session).count()
    if existing:
        logger.info("Kit table not empty, skipping kit seed (kits=%d)", existing)
        return 0
    return await seed_kits(database, kit_count, rng=rng, clock=clock)
