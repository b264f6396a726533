"""Logging setup for kit-tracker.

Every module logs through ``logging.getLogger(__name__)``; this module only
configures the root handler once per process.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | int = "INFO") -> None:
    """Configure root logging to stdout.

    Args:
        level: Level name (e.g. "DEBUG") or numeric level. Unknown names fall
            back to INFO.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    # Engine echo is controlled by KIT_TRACKER_DATABASE_ECHO, not the root level.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
