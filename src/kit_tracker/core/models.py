"""SQLAlchemy ORM models for the kit tracker.

Models:
- User          - actor identity attached to changes (external collaborator)
- Kit           - current-state projection of one tracked kit
- KitBaseline   - IMMUTABLE original creation values of a kit
- ChangeLog     - IMMUTABLE record of one committed update, version-stamped
- ChangeDetail  - IMMUTABLE field-level old/new pair within a ChangeLog

IMPORTANT: Kit rows are mutated only by VersionedKitWriter, and ChangeLog /
ChangeDetail rows are only ever inserted by it. Deleting a kit removes its
baseline and its whole change history.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from kit_tracker.core.timestamps import to_utc


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware UTC datetime on every backend.

    SQLite drops tzinfo on storage, so values are normalized to UTC on the way
    in and re-tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        value = to_utc(value)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        return to_utc(value)


class Base(DeclarativeBase):
    """Declarative base holding the kit tracker metadata."""


class User(Base):
    """Actor identity referenced by kits and change logs.

    Attributes:
        name: Display name shown as changed_by in history views.
        email: Unique contact address.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, comment="Display name")
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, comment="Unique email")


class Kit(Base):
    """Current state of one tracked kit.

    Carries only the latest field values. Past states are derived from the
    KitBaseline plus the ordered ChangeLog history.

    Attributes:
        version: Starts at 1 and increases by exactly 1 per committed update.
        user_id: Creator, then the actor of the most recent update.
    """

    __tablename__ = "kits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    part_number: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True, comment="Natural key used for stable ordering"
    )
    noun: Mapped[str] = mapped_column(String(255), nullable=False)
    kit_name: Mapped[str] = mapped_column(String(64), nullable=False, comment="Kit B | Kit C | Kit C 125 | ...")
    state_status: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True, comment="StateStatus enum value"
    )
    current_status: Mapped[str | None] = mapped_column(String(255), nullable=True)
    remarks: Mapped[str] = mapped_column(Text, nullable=False, default="")
    manufacturer: Mapped[str] = mapped_column(String(64), nullable=False, comment="Manufacturer enum value")
    form48_number: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    user_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, comment="Last actor"
    )
    die_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    die_number: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, comment="Monotonic version, bumped only by the writer"
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    user: Mapped[User | None] = relationship(lazy="raise")


class KitBaseline(Base):
    """Original creation values of a kit, written once and never updated.

    Attributes:
        snapshot: zlib-compressed JSON of the kit fields at creation.
        created_by: Actor who created the kit.
        captured_at: Equal to the kit's created_at.
    """

    __tablename__ = "kit_baselines"

    kit_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("kits.id", ondelete="CASCADE"), primary_key=True
    )
    snapshot: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    created_by: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    captured_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class ChangeLog(Base):
    """One committed update transaction for one kit.

    Attributes:
        version: The kit version after this change was applied. For a given
            kit the logged versions are contiguous starting at 2.
        changed_at: Commit timestamp (UTC).
        user_id: Actor who made the change.
    """

    __tablename__ = "change_logs"
    __table_args__ = (
        UniqueConstraint("kit_id", "version", name="uq_change_logs_kit_version"),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kit_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("kits.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    changed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)

    details: Mapped[list["ChangeDetail"]] = relationship(
        back_populates="change_log",
        order_by="ChangeDetail.id",
        lazy="raise",
    )
    user: Mapped[User] = relationship(lazy="raise")


class ChangeDetail(Base):
    """One field-level diff inside a ChangeLog.

    Attributes:
        field: Canonical (python) kit field name.
        old_value: JSON-serialized value before the change.
        new_value: JSON-serialized value after the change.
    """

    __tablename__ = "change_details"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    change_log_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("change_logs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    field: Mapped[str] = mapped_column(String(64), nullable=False)
    old_value: Mapped[str] = mapped_column(Text, nullable=False, comment="JSON text")
    new_value: Mapped[str] = mapped_column(Text, nullable=False, comment="JSON text")

    change_log: Mapped[ChangeLog] = relationship(back_populates="details", lazy="raise")
