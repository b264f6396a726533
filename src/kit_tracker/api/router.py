"""API router for kit-tracker.

All kit tracker endpoints are registered here and included in main.py under
the /api/v1 prefix. Routes are thin: all business logic lives in KitService.

Endpoints:
- GET         /kits: Current kits, or all kits as of ?date=
- POST        /kits: Create a kit (version 1)
- GET         /kits/diff: What changed between ?from= and ?to=
- GET         /kits/{id}: Current kit, or the kit as of ?date=
- PUT         /kits/{id}: Versioned update with field diffs
- DELETE      /kits/{id}: Delete a kit and its history
- GET         /kits/{id}/history: Change log, newest first (optionally up to ?date=)
- GET         /kits/{id}/version: Latest committed version
- GET         /kit-changes: Field changes between ?start= and ?end= days
- POST/GET    /users: Register / list actors

Date parameters accept YYYY-MM-DD (meaning the end of that UTC day) or a
full ISO-8601 datetime.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from kit_tracker.adapters.database import KitDatabase
from kit_tracker.api.schemas import (
    DeleteKitResponse,
    KitCreateRequest,
    KitUpdateRequest,
    UpdateKitResponse,
    UserCreateRequest,
    VersionResponse,
)
from kit_tracker.core.errors import NoChangesError
from kit_tracker.core.records import ChangeDetailView, ChangeLogRecord, KitRecord, KitStateDiff, UserRecord
from kit_tracker.core.services import KitService
from kit_tracker.core.timestamps import parse_as_of, utc_now

logger = logging.getLogger(__name__)

router = APIRouter(tags=["kits"])


# ---------------------------------------------------------------------------
# Dependency factories
# ---------------------------------------------------------------------------


def get_database(request: Request) -> KitDatabase:
    """Return the KitDatabase opened by the application lifespan."""
    return request.app.state.database


def get_kit_service(
    request: Request,
    database: Annotated[KitDatabase, Depends(get_database)],
) -> KitService:
    """Construct KitService for the current request.

    Args:
        request: Incoming request; supplies the optional app clock.
        database: Storage handle from app state.

    Returns:
        Fully wired KitService instance.
    """
    clock = getattr(request.app.state, "clock", None) or utc_now
    return KitService(database, clock=clock)


# ---------------------------------------------------------------------------
# Kit endpoints
# ---------------------------------------------------------------------------


@router.get("/kits", response_model=list[KitRecord])
async def list_kits(
    service: Annotated[KitService, Depends(get_kit_service)],
    as_of: str | None = Query(default=None, alias="date", description="Reconstruct all kits as of this date"),
) -> list[KitRecord]:
    """List kits.

    Without ``date`` returns current state ordered by id. With ``date``
    returns every kit that existed then, reconstructed, ordered by part number.
    """
    if as_of is None:
        return await service.list_kits()
    return await service.list_kits_at(parse_as_of(as_of))


@router.post("/kits", response_model=KitRecord, status_code=201)
async def create_kit(
    request: KitCreateRequest,
    service: Annotated[KitService, Depends(get_kit_service)],
) -> KitRecord:
    """Create a kit at version 1.

    Args:
        request: Kit creation request body.
        service: Injected KitService.

    Returns:
        The created kit.
    """
    logger.info("POST /kits (part_number=%s, user_id=%s)", request.kit.part_number, request.user_id)
    return await service.create_kit(request.kit, request.user_id)


@router.get("/kits/diff", response_model=KitStateDiff)
async def diff_kits(
    service: Annotated[KitService, Depends(get_kit_service)],
    from_ts: str | None = Query(default=None, alias="from", description="Earlier date or datetime"),
    to_ts: str | None = Query(default=None, alias="to", description="Later date or datetime"),
) -> KitStateDiff:
    """Return kits added or modified between two points in time."""
    return await service.diff(parse_as_of(from_ts, "from"), parse_as_of(to_ts, "to"))


@router.get("/kits/{kit_id}", response_model=KitRecord)
async def get_kit(
    kit_id: int,
    service: Annotated[KitService, Depends(get_kit_service)],
    as_of: str | None = Query(default=None, alias="date", description="Reconstruct the kit as of this date"),
) -> KitRecord:
    """Get one kit, currently or as it was at ``date``.

    Returns 404 when the kit does not exist or did not exist yet at ``date``.
    """
    if as_of is None:
        return await service.get_kit(kit_id)
    return await service.get_kit_at(kit_id, parse_as_of(as_of))


@router.put("/kits/{kit_id}", response_model=UpdateKitResponse)
async def update_kit(
    kit_id: int,
    request: KitUpdateRequest,
    service: Annotated[KitService, Depends(get_kit_service)],
) -> UpdateKitResponse:
    """Apply a versioned update.

    An update with no changes is not an error: it returns ``saved: false``
    and leaves the kit and its history untouched.

    Args:
        kit_id: The kit to update.
        request: Proposed fields, field diffs, actor and optional expected version.
        service: Injected KitService.

    Returns:
        Whether anything was saved, and the kit's new state when it was.
    """
    logger.info("PUT /kits/%s (user_id=%s, changes=%d)", kit_id, request.user_id, len(request.changes))
    try:
        kit = await service.update_kit(
            kit_id,
            request.kit,
            request.changes,
            request.user_id,
            expected_version=request.expected_version,
        )
    except NoChangesError as exc:
        return UpdateKitResponse(saved=False, message=exc.message)
    return UpdateKitResponse(saved=True, message=f"Kit saved at version {kit.version}", kit=kit)


@router.delete("/kits/{kit_id}", response_model=DeleteKitResponse)
async def delete_kit(
    kit_id: int,
    service: Annotated[KitService, Depends(get_kit_service)],
) -> DeleteKitResponse:
    logger.info("DELETE /kits/%s", kit_id)
    await service.delete_kit(kit_id)
    return DeleteKitResponse(deleted=True, kit_id=kit_id)


@router.get("/kits/{kit_id}/history", response_model=list[ChangeLogRecord])
async def get_kit_history(
    kit_id: int,
    service: Annotated[KitService, Depends(get_kit_service)],
    as_of: str | None = Query(default=None, alias="date", description="Only entries up to this date"),
) -> list[ChangeLogRecord]:
    """Return a kit's change log entries, newest first, each with its field diffs."""
    before = parse_as_of(as_of) if as_of is not None else None
    return await service.get_history(kit_id, before)


@router.get("/kits/{kit_id}/version", response_model=VersionResponse)
async def get_kit_version(
    kit_id: int,
    service: Annotated[KitService, Depends(get_kit_service)],
) -> VersionResponse:
    return VersionResponse(kit_id=kit_id, version=await service.get_latest_version(kit_id))


@router.get("/kit-changes", response_model=list[ChangeDetailView])
async def list_kit_changes(
    service: Annotated[KitService, Depends(get_kit_service)],
    start: str | None = Query(default=None, description="First day, YYYY-MM-DD"),
    end: str | None = Query(default=None, description="Last day, YYYY-MM-DD"),
) -> list[ChangeDetailView]:
    """Return every field change committed from the start of ``start`` to the end of ``end``."""
    return await service.get_changes_in_range(start, end)


# ---------------------------------------------------------------------------
# User endpoints
# ---------------------------------------------------------------------------


@router.post("/users", response_model=UserRecord, status_code=201)
async def create_user(
    request: UserCreateRequest,
    service: Annotated[KitService, Depends(get_kit_service)],
) -> UserRecord:
    logger.info("POST /users")
    return await service.create_user(request.name, request.email)


@router.get("/users", response_model=list[UserRecord])
async def list_users(
    service: Annotated[KitService, Depends(get_kit_service)],
) -> list[UserRecord]:
    return await service.list_users()
