from datetime import datetime
import uuid
from typing import List, Optional

from fastapi import HTTPException, status
from loguru import logger
from sqlalchemy import delete, select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from schemas.schedule_schema import (
    ScheduleBlockCreateRequest,
    ScheduleExceptionUpsertRequest,
    WeeklyScheduleEntry,
)
from schemas.schemas import (
    Provider,
    ProviderSchedule,
    ScheduleBlock,
    ScheduleException,
)
from services.appointment_service import to_utc


async def get_org_provider(db: AsyncSession, organization_id: uuid.UUID, provider_id: uuid.UUID) -> Provider:
    provider = await db.scalar(
        select(Provider).where(
            Provider.id == provider_id,
            Provider.organization_id == organization_id,
        )
    )
    if not provider:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Provider not found")
    return provider


async def get_weekly_schedule(
    db: AsyncSession,
    organization_id: uuid.UUID,
    provider_id: uuid.UUID,
) -> List[ProviderSchedule]:
    await get_org_provider(db, organization_id, provider_id)
    stmt = (
        select(ProviderSchedule)
        .where(ProviderSchedule.provider_id == provider_id)
        .order_by(ProviderSchedule.created_at)
    )
    return list((await db.execute(stmt)).scalars().all())


async def set_weekly_schedule(
    db: AsyncSession,
    organization_id: uuid.UUID,
    provider_id: uuid.UUID,
    entries: List[WeeklyScheduleEntry],
) -> List[ProviderSchedule]:
    """Replace every weekly row of the provider in one transaction."""
    await get_org_provider(db, organization_id, provider_id)

    active_days = [e.day_of_week for e in entries if e.is_active]
    if len(active_days) != len(set(active_days)):
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST,
            "Only one active schedule per day of week is allowed",
        )

    await db.execute(delete(ProviderSchedule).where(ProviderSchedule.provider_id == provider_id))

    rows = [
        ProviderSchedule(
            provider_id=provider_id,
            day_of_week=entry.day_of_week,
            start_time=entry.start_time,
            end_time=entry.end_time,
            is_active=entry.is_active,
        )
        for entry in entries
    ]
    db.add_all(rows)
    await db.commit()

    logger.info(f"Weekly schedule of provider {provider_id} replaced with {len(rows)} rows")
    return rows


async def upsert_exception(
    db: AsyncSession,
    organization_id: uuid.UUID,
    provider_id: uuid.UUID,
    payload: ScheduleExceptionUpsertRequest,
) -> ScheduleException:
    await get_org_provider(db, organization_id, provider_id)

    stmt = select(ScheduleException).where(
        ScheduleException.provider_id == provider_id,
        ScheduleException.date == payload.date,
    )
    exception = (await db.execute(stmt)).scalar_one_or_none()

    if exception:
        for field, value in payload.model_dump().items():
            setattr(exception, field, value)
    else:
        exception = ScheduleException(
            provider_id=provider_id,
            **payload.model_dump()
        )
        db.add(exception)

    await db.commit()
    await db.refresh(exception)

    logger.info(f"Schedule exception for provider {provider_id} on {payload.date} saved")
    return exception


async def delete_exception(db: AsyncSession, organization_id: uuid.UUID, exception_id: uuid.UUID) -> None:
    exception = await db.scalar(
        select(ScheduleException)
        .join(Provider, Provider.id == ScheduleException.provider_id)
        .where(
            ScheduleException.id == exception_id,
            Provider.organization_id == organization_id,
        )
    )
    if not exception:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Exception not found")

    await db.delete(exception)
    await db.commit()


async def list_blocks(
    db: AsyncSession,
    organization_id: uuid.UUID,
    start: datetime,
    end: datetime,
    provider_id: Optional[uuid.UUID] = None,
) -> List[ScheduleBlock]:
    stmt = select(ScheduleBlock).where(
        ScheduleBlock.organization_id == organization_id,
        ScheduleBlock.start_time < to_utc(end),
        ScheduleBlock.end_time > to_utc(start),
    )
    if provider_id is not None:
        stmt = stmt.where(
            or_(ScheduleBlock.provider_id == provider_id, ScheduleBlock.provider_id.is_(None))
        )
    stmt = stmt.order_by(ScheduleBlock.start_time)
    return list((await db.execute(stmt)).scalars().all())


async def create_block(
    db: AsyncSession,
    organization_id: uuid.UUID,
    payload: ScheduleBlockCreateRequest,
) -> ScheduleBlock:
    if payload.provider_id is not None:
        await get_org_provider(db, organization_id, payload.provider_id)

    block = ScheduleBlock(
        organization_id=organization_id,
        provider_id=payload.provider_id,
        title=payload.title,
        block_type=payload.block_type,
        start_time=to_utc(payload.start_time),
        end_time=to_utc(payload.end_time),
        notes=payload.notes,
    )
    db.add(block)
    await db.commit()
    await db.refresh(block)

    scope = f"provider {payload.provider_id}" if payload.provider_id else "organization"
    logger.info(f"Schedule block {block.id} created for {scope}")
    return block


async def delete_block(db: AsyncSession, organization_id: uuid.UUID, block_id: uuid.UUID) -> None:
    block = await db.scalar(
        select(ScheduleBlock).where(
            ScheduleBlock.id == block_id,
            ScheduleBlock.organization_id == organization_id,
        )
    )
    if not block:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Block not found")

    await db.delete(block)
    await db.commit()

