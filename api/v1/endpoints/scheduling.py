from datetime import datetime
from typing import List, Optional
import uuid
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from database.postgres import get_db
from dependencies.auth import CurrentUser, require_staff
from schemas.schedule_schema import (
    ScheduleBlockCreateRequest,
    ScheduleBlockDTO,
    ScheduleExceptionDTO,
    ScheduleExceptionUpsertRequest,
    SetWeeklyScheduleRequest,
    WeeklyScheduleDTO,
)
from services import schedule_service
from services.availability_service import ensure_aware

router = APIRouter(prefix="/scheduling", tags=["Scheduling"])


@router.get("/providers/{provider_id}/schedule", response_model=List[WeeklyScheduleDTO])
async def get_provider_schedule(
    provider_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
):
    return await schedule_service.get_weekly_schedule(db, current_user.organization_id, provider_id)


@router.put("/providers/{provider_id}/schedule", response_model=List[WeeklyScheduleDTO])
async def set_provider_schedule(
    provider_id: uuid.UUID,
    payload: SetWeeklyScheduleRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
):
    return await schedule_service.set_weekly_schedule(
        db, current_user.organization_id, provider_id, payload.schedules
    )


@router.post(
    "/providers/{provider_id}/exceptions",
    response_model=ScheduleExceptionDTO
)
async def upsert_provider_exception(
    provider_id: uuid.UUID,
    payload: ScheduleExceptionUpsertRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
):
    return await schedule_service.upsert_exception(
        db, current_user.organization_id, provider_id, payload
    )


@router.delete("/exceptions/{exception_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_provider_exception(
    exception_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
):
    await schedule_service.delete_exception(db, current_user.organization_id, exception_id)


@router.get("/blocks", response_model=List[ScheduleBlockDTO])
async def list_schedule_blocks(
    start: datetime,
    end: datetime,
    provider_id: Optional[uuid.UUID] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
):
    if ensure_aware(end) <= ensure_aware(start):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "end must be after start")

    return await schedule_service.list_blocks(
        db, current_user.organization_id, start, end, provider_id=provider_id
    )


@router.post("/blocks", response_model=ScheduleBlockDTO, status_code=status.HTTP_201_CREATED)
async def create_schedule_block(
    payload: ScheduleBlockCreateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
):
    return await schedule_service.create_block(db, current_user.organization_id, payload)


@router.delete("/blocks/{block_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_schedule_block(
    block_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
):
    await schedule_service.delete_block(db, current_user.organization_id, block_id)
