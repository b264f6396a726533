"""Service settings for kit-tracker.

All settings use the KIT_TRACKER_ prefix and cover:
- Database connection (SQLAlchemy async URL and pool behaviour)
- Startup tasks (schema creation, demo seeding)
- Logging level
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for kit-tracker.

    Environment variable prefix: KIT_TRACKER_
    """

    service_name: str = "kit-tracker"

    # -------------------------------------------------------------------------
    # Database
    # -------------------------------------------------------------------------

    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/kits.sqlite",
        description="SQLAlchemy async connection URL for the kit database. "
        "Use postgresql+asyncpg://... in production.",
    )
    database_echo: bool = Field(
        default=False,
        description="Echo SQL statements to the log. Leave off outside local debugging.",
    )
    database_pool_pre_ping: bool = Field(
        default=True,
        description="Test pooled connections before use.",
    )

    # -------------------------------------------------------------------------
    # Startup tasks
    # -------------------------------------------------------------------------

    create_schema_on_startup: bool = Field(
        default=True,
        description="Create missing tables when the application starts.",
    )
    seed_on_startup: bool = Field(
        default=False,
        description="Seed demo users and kits when the kit table is empty.",
    )
    seed_kit_count: int = Field(
        default=50,
        ge=0,
        description="Number of demo kits generated by the startup seed.",
    )

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------

    log_level: str = Field(
        default="INFO",
        description="Root log level for the service (DEBUG, INFO, WARNING, ...).",
    )

    model_config = SettingsConfigDict(env_prefix="KIT_TRACKER_")
