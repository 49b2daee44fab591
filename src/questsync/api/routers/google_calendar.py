"""Google Calendar connection, selection and sync endpoints.

Provides ``router`` at ``/api/calendar/google``:

- ``GET /`` -- connection status and whether client credentials exist
- ``GET /calendars`` -- calendars readable by the connected account
- ``PATCH /calendars`` -- update selection, import mode and target quest
- ``POST /sync`` -- run one import
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException

from questsync.api.deps import SyncServices, get_services, get_user_id
from questsync.api.models import (
    ApiResponse,
    CalendarSettingsUpdate,
    CalendarsView,
    CalendarView,
    ConnectionStatus,
    ConnectionSummary,
    SyncRequest,
)
from questsync.errors import NoConnectionError
from questsync.models import SyncResult
from questsync.store import UNSET

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calendar/google", tags=["calendar"])

Services = Annotated[SyncServices, Depends(get_services)]
UserId = Annotated[UUID, Depends(get_user_id)]


@router.get("", response_model=ApiResponse[ConnectionStatus])
async def get_connection_status(services: Services, user_id: UserId):
    provider_name = services.engine.provider.name
    connection = await services.store.get_connection(user_id, provider_name)
    status = ConnectionStatus(
        connected=connection is not None,
        connection=ConnectionSummary.from_connection(connection) if connection else None,
        is_configured=services.engine.provider.is_configured,
    )
    return ApiResponse[ConnectionStatus](data=status)


@router.get("/calendars", response_model=ApiResponse[CalendarsView])
async def list_calendars(services: Services, user_id: UserId):
    connection, calendars = await services.engine.list_calendars(user_id)
    view = CalendarsView(
        calendars=[CalendarView.from_info(info) for info in calendars],
        selected_calendars=connection.selected_calendars,
        import_as=connection.import_as,
        target_quest_id=connection.target_quest_id,
    )
    return ApiResponse[CalendarsView](data=view)


@router.patch("/calendars", response_model=ApiResponse[ConnectionSummary])
async def update_calendar_settings(
    body: CalendarSettingsUpdate,
    services: Services,
    user_id: UserId,
):
    provider_name = services.engine.provider.name
    connection = await services.store.get_connection(user_id, provider_name)
    if connection is None:
        raise NoConnectionError(user_id=user_id, provider=provider_name)

    target_quest_id = UNSET
    if "target_quest_id" in body.model_fields_set:
        target_quest_id = body.target_quest_id
        if target_quest_id is not None and not await services.store.quest_exists(
            user_id, target_quest_id
        ):
            raise HTTPException(status_code=404, detail=f"Quest not found: {target_quest_id}")

    updated = await services.store.update_settings(
        connection.id,
        selected_calendars=body.selected_calendars,
        import_as=body.import_as,
        target_quest_id=target_quest_id,
    )
    if updated is None:
        raise NoConnectionError(user_id=user_id, provider=provider_name)
    logger.info("Updated calendar settings for connection=%s", connection.id)
    return ApiResponse[ConnectionSummary](data=ConnectionSummary.from_connection(updated))


@router.post("/sync", response_model=ApiResponse[SyncResult])
async def run_sync(
    services: Services,
    user_id: UserId,
    body: Annotated[SyncRequest | None, Body()] = None,
):
    requested = body.timezone if body is not None else None
    timezone = (requested or "").strip() or services.config.sync.default_timezone
    result = await services.engine.run_sync(user_id, timezone)
    return ApiResponse[SyncResult](data=result)
