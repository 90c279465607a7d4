from datetime import date, datetime, time, timedelta, timezone
import math
import uuid
from typing import List, Optional, Tuple
from urllib.parse import quote
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import HTTPException, status
from loguru import logger
from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.config import (
    CANCELLATION_NOTICE_HOURS,
    CHECK_IN_CLOSES_MINUTES,
    CHECK_IN_OPENS_MINUTES,
    DEFAULT_SLOT_DURATION,
    DEFAULT_TIMEZONE,
    EXCEPTION_FALLBACK_TO_WEEKLY,
    INCLUDE_EMPTY_DAYS,
    MIN_ADVANCE_BOOKING_MINUTES,
)
from schemas.appointment_schema import (
    ActionResponse,
    AddressDTO,
    AppointmentHistoryResponse,
    AppointmentSummaryDTO,
    AppointmentTypeDTO,
    AvailabilityResponseDTO,
    BookAppointmentRequest,
    BookAppointmentResponse,
    CheckInResponse,
    CheckInStatusDTO,
    DaySlotsDTO,
    HistoryAppointmentDTO,
    LocationDTO,
    NextAppointmentDTO,
    ProviderDTO,
    RescheduleAppointmentRequest,
    RescheduleAppointmentResponse,
    SlotDTO,
    UpcomingAppointmentDTO,
    UpcomingAppointmentsResponse,
)
from schemas.enum import (
    AppointmentStatus,
    INACTIVE_APPOINTMENT_STATUSES,
    MODIFIABLE_APPOINTMENT_STATUSES,
)
from schemas.schemas import (
    Appointment,
    AppointmentType,
    Location,
    Organization,
    Patient,
    Provider,
    ProviderSchedule,
    ScheduleBlock,
    ScheduleException,
)
from services.availability_service import (
    AvailabilityResult,
    compute_available_slots,
    ensure_aware,
    resolve_working_window,
)
from services.calendar_event import build_calendar_event

SLOT_UNAVAILABLE_MESSAGE = "This time slot is no longer available"
GOOGLE_MAPS_DIRECTIONS_URL = "https://www.google.com/maps/dir/?api=1&destination="


# ---------------------------------------------------------------------------
# time helpers
# ---------------------------------------------------------------------------

def to_utc(value: datetime) -> datetime:
    return ensure_aware(value).astimezone(timezone.utc)


def localize(value: datetime, tz) -> datetime:
    # naive request instants are wall-clock time at the practice
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value


def hours_until(start: datetime, now: datetime) -> int:
    # whole hours, truncated toward zero
    return int((to_utc(start) - to_utc(now)).total_seconds() / 3600)


def range_bounds(start_date: date, end_date: date, tz) -> Tuple[datetime, datetime]:
    """UTC instants covering every local calendar day from start_date to end_date."""
    range_start = datetime.combine(start_date, time.min, tzinfo=tz)
    range_end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=tz)
    return to_utc(range_start), to_utc(range_end)


async def get_organization_timezone(db: AsyncSession, organization_id: uuid.UUID) -> ZoneInfo:
    name = await db.scalar(
        select(Organization.timezone).where(Organization.id == organization_id)
    )
    try:
        return ZoneInfo(name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {name!r} for organization {organization_id}, using {DEFAULT_TIMEZONE}")
        return ZoneInfo(DEFAULT_TIMEZONE)


# ---------------------------------------------------------------------------
# data provider
# ---------------------------------------------------------------------------

async def get_appointment_type(
    db: AsyncSession,
    organization_id: uuid.UUID,
    appointment_type_id: uuid.UUID,
) -> AppointmentType:
    appointment_type = await db.scalar(
        select(AppointmentType).where(
            AppointmentType.id == appointment_type_id,
            AppointmentType.organization_id == organization_id,
            AppointmentType.is_active.is_(True),
        )
    )
    if not appointment_type:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Appointment type not found")
    return appointment_type


async def get_provider(
    db: AsyncSession,
    organization_id: uuid.UUID,
    provider_id: uuid.UUID,
    for_update: bool = False,
) -> Provider:
    stmt = select(Provider).where(
        Provider.id == provider_id,
        Provider.organization_id == organization_id,
        Provider.is_active.is_(True),
    )
    if for_update:
        # serializes bookings per provider on backends that support row locks
        stmt = stmt.with_for_update()

    provider = await db.scalar(stmt)
    if not provider:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Provider not found")
    return provider


def positive_duration(appointment_type: AppointmentType) -> int:
    if appointment_type.duration is None or appointment_type.duration <= 0:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Appointment type duration must be positive")
    return appointment_type.duration


async def resolve_duration(
    db: AsyncSession,
    organization_id: uuid.UUID,
    appointment_type_id: Optional[uuid.UUID],
) -> int:
    if appointment_type_id is None:
        return DEFAULT_SLOT_DURATION
    appointment_type = await get_appointment_type(db, organization_id, appointment_type_id)
    return positive_duration(appointment_type)


async def load_providers(
    db: AsyncSession,
    organization_id: uuid.UUID,
    provider_id: Optional[uuid.UUID] = None,
) -> List[Provider]:
    if provider_id is not None:
        return [await get_provider(db, organization_id, provider_id)]

    stmt = (
        select(Provider)
        .where(
            Provider.organization_id == organization_id,
            Provider.is_active.is_(True),
        )
        .order_by(Provider.sort_order, Provider.last_name)
    )
    return list((await db.execute(stmt)).scalars().all())


async def load_live_appointments(
    db: AsyncSession,
    provider_ids: List[uuid.UUID],
    range_start: datetime,
    range_end: datetime,
    exclude_appointment_id: Optional[uuid.UUID] = None,
) -> List[Appointment]:
    stmt = select(Appointment).where(
        Appointment.provider_id.in_(provider_ids),
        Appointment.start_time < range_end,
        Appointment.end_time > range_start,
        Appointment.status.notin_(INACTIVE_APPOINTMENT_STATUSES),
    )
    if exclude_appointment_id is not None:
        stmt = stmt.where(Appointment.id != exclude_appointment_id)
    return list((await db.execute(stmt)).scalars().all())


async def load_blocks(
    db: AsyncSession,
    organization_id: uuid.UUID,
    provider_ids: List[uuid.UUID],
    range_start: datetime,
    range_end: datetime,
) -> List[ScheduleBlock]:
    stmt = select(ScheduleBlock).where(
        ScheduleBlock.organization_id == organization_id,
        or_(
            ScheduleBlock.provider_id.is_(None),
            ScheduleBlock.provider_id.in_(provider_ids),
        ),
        ScheduleBlock.start_time < range_end,
        ScheduleBlock.end_time > range_start,
    ).order_by(ScheduleBlock.start_time)
    return list((await db.execute(stmt)).scalars().all())


async def load_schedules(db: AsyncSession, provider_ids: List[uuid.UUID]) -> List[ProviderSchedule]:
    stmt = (
        select(ProviderSchedule)
        .where(
            ProviderSchedule.provider_id.in_(provider_ids),
            ProviderSchedule.is_active.is_(True),
        )
        .order_by(ProviderSchedule.created_at)
    )
    return list((await db.execute(stmt)).scalars().all())


async def load_exceptions(
    db: AsyncSession,
    provider_ids: List[uuid.UUID],
    start_date: date,
    end_date: date,
) -> List[ScheduleException]:
    stmt = select(ScheduleException).where(
        ScheduleException.provider_id.in_(provider_ids),
        ScheduleException.date >= start_date,
        ScheduleException.date <= end_date,
    )
    return list((await db.execute(stmt)).scalars().all())


async def get_available_slots(
    db: AsyncSession,
    organization_id: uuid.UUID,
    start_date: date,
    end_date: date,
    now: datetime,
    provider_id: Optional[uuid.UUID] = None,
    appointment_type_id: Optional[uuid.UUID] = None,
) -> AvailabilityResult:
    duration = await resolve_duration(db, organization_id, appointment_type_id)
    providers = await load_providers(db, organization_id, provider_id)
    if not providers:
        return AvailabilityResult()

    tz = await get_organization_timezone(db, organization_id)
    range_start, range_end = range_bounds(start_date, end_date, tz)
    provider_ids = [p.id for p in providers]

    schedules = await load_schedules(db, provider_ids)
    exceptions = await load_exceptions(db, provider_ids, start_date, end_date)
    blocks = await load_blocks(db, organization_id, provider_ids, range_start, range_end)
    appointments = await load_live_appointments(db, provider_ids, range_start, range_end)

    return compute_available_slots(
        start_date,
        end_date,
        duration,
        providers,
        schedules=schedules,
        exceptions=exceptions,
        blocks=blocks,
        appointments=appointments,
        tz=tz,
        now=now,
        min_advance_minutes=MIN_ADVANCE_BOOKING_MINUTES,
        exception_fallback_to_weekly=EXCEPTION_FALLBACK_TO_WEEKLY,
        include_empty_days=INCLUDE_EMPTY_DAYS,
    )


def to_availability_response(result: AvailabilityResult, server_timestamp: datetime) -> AvailabilityResponseDTO:
    return AvailabilityResponseDTO(
        days=[
            DaySlotsDTO(
                date=day.date,
                day_name=day.day_name,
                slot_count=day.slot_count,
                slots=[
                    SlotDTO(
                        provider_id=str(slot.provider_id),
                        provider_name=slot.provider_name,
                        start_time=slot.start_time,
                        end_time=slot.end_time,
                    )
                    for slot in day.slots
                ],
            )
            for day in result.days
        ],
        total_available=result.total_available,
        server_timestamp=server_timestamp,
        warnings=result.warnings,
    )


# ---------------------------------------------------------------------------
# conflict guard
# ---------------------------------------------------------------------------

async def find_conflict(
    db: AsyncSession,
    organization_id: uuid.UUID,
    provider_id: uuid.UUID,
    start: datetime,
    end: datetime,
    exclude_appointment_id: Optional[uuid.UUID] = None,
) -> Optional[str]:
    """
    Describe what already occupies [start, end) for the provider, or None.

    Must run inside the transaction that writes the appointment.
    """
    start, end = to_utc(start), to_utc(end)

    appointments = await load_live_appointments(
        db, [provider_id], start, end, exclude_appointment_id=exclude_appointment_id
    )
    if appointments:
        return f"appointment {appointments[0].id}"

    blocks = await load_blocks(db, organization_id, [provider_id], start, end)
    if blocks:
        return f"{blocks[0].title} ({blocks[0].block_type.value})"

    return None


async def ensure_within_working_hours(
    db: AsyncSession,
    organization_id: uuid.UUID,
    provider_id: uuid.UUID,
    start: datetime,
    end: datetime,
) -> None:
    tz = await get_organization_timezone(db, organization_id)
    local_start = ensure_aware(start).astimezone(tz)
    day = local_start.date()

    schedules = await load_schedules(db, [provider_id])
    exceptions = await load_exceptions(db, [provider_id], day, day)

    warnings: List[str] = []
    window = resolve_working_window(
        provider_id,
        day,
        schedules,
        exceptions,
        tz,
        warnings,
        exception_fallback_to_weekly=EXCEPTION_FALLBACK_TO_WEEKLY,
    )
    if window is None or to_utc(start) < to_utc(window[0]) or to_utc(end) > to_utc(window[1]):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Provider is not available at this time")


def ensure_bookable_time(start: datetime, now: datetime) -> None:
    if to_utc(start) < to_utc(now) + timedelta(minutes=MIN_ADVANCE_BOOKING_MINUTES):
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST,
            f"Appointments must be booked at least {MIN_ADVANCE_BOOKING_MINUTES} minutes in advance",
        )


# ---------------------------------------------------------------------------
# appointment lifecycle
# ---------------------------------------------------------------------------

async def load_patient_appointment(
    db: AsyncSession,
    patient: Patient,
    appointment_id: uuid.UUID,
) -> Appointment:
    appointment = await db.scalar(
        select(Appointment)
        .options(
            selectinload(Appointment.appointment_type),
            selectinload(Appointment.provider),
            selectinload(Appointment.location),
        )
        .where(
            Appointment.id == appointment_id,
            Appointment.patient_id == patient.id,
        )
        .execution_options(populate_existing=True)
    )
    if not appointment:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Appointment not found")
    return appointment


def to_summary(appointment: Appointment) -> AppointmentSummaryDTO:
    return AppointmentSummaryDTO(
        id=str(appointment.id),
        start_time=ensure_aware(appointment.start_time),
        end_time=ensure_aware(appointment.end_time),
        status=appointment.status,
        appointment_type=appointment.appointment_type.name,
        provider=appointment.provider.display_name,
    )


async def book_appointment(
    db: AsyncSession,
    patient: Patient,
    payload: BookAppointmentRequest,
    now: datetime,
) -> BookAppointmentResponse:
    organization_id = patient.organization_id
    tz = await get_organization_timezone(db, organization_id)
    start = localize(payload.start_time, tz)

    provider = await get_provider(db, organization_id, payload.provider_id, for_update=True)
    appointment_type = await get_appointment_type(db, organization_id, payload.appointment_type_id)

    if payload.location_id is not None:
        location = await db.scalar(
            select(Location).where(
                Location.id == payload.location_id,
                Location.organization_id == organization_id,
                Location.is_active.is_(True),
            )
        )
        if not location:
            raise HTTPException(status.HTTP_404_NOT_FOUND, "Location not found")

    end = start + timedelta(minutes=positive_duration(appointment_type))

    ensure_bookable_time(start, now)
    await ensure_within_working_hours(db, organization_id, provider.id, start, end)

    conflict = await find_conflict(db, organization_id, provider.id, start, end)
    if conflict:
        logger.info(f"Booking rejected for provider {provider.id} at {to_utc(start).isoformat()}: {conflict}")
        await db.rollback()
        raise HTTPException(status.HTTP_409_CONFLICT, SLOT_UNAVAILABLE_MESSAGE)

    appointment = Appointment(
        organization_id=organization_id,
        patient_id=patient.id,
        provider_id=provider.id,
        appointment_type_id=appointment_type.id,
        location_id=payload.location_id,
        start_time=to_utc(start),
        end_time=to_utc(end),
        status=AppointmentStatus.SCHEDULED,
        chief_complaint=payload.chief_complaint,
        patient_notes=payload.patient_notes,
        created_by="PATIENT",
    )

    try:
        db.add(appointment)
        await db.commit()
    except IntegrityError:
        # a concurrent booking won the same provider start time
        await db.rollback()
        logger.info(f"Concurrent booking lost for provider {provider.id} at {to_utc(start).isoformat()}")
        raise HTTPException(status.HTTP_409_CONFLICT, SLOT_UNAVAILABLE_MESSAGE)

    appointment = await load_patient_appointment(db, patient, appointment.id)
    logger.info(f"Appointment {appointment.id} booked for patient {patient.id} with provider {provider.id}")

    return BookAppointmentResponse(
        success=True,
        appointment=to_summary(appointment),
        calendar_event=build_calendar_event(appointment),
        message="Appointment booked successfully",
    )


def ensure_modifiable(appointment: Appointment, action: str, now: datetime) -> None:
    if appointment.status not in MODIFIABLE_APPOINTMENT_STATUSES:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, f"This appointment cannot be {action}")

    if hours_until(appointment.start_time, now) < CANCELLATION_NOTICE_HOURS:
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST,
            f"Appointments must be {action} at least {CANCELLATION_NOTICE_HOURS} hours in advance. "
            "Please call the office.",
        )


async def reschedule_appointment(
    db: AsyncSession,
    patient: Patient,
    appointment_id: uuid.UUID,
    payload: RescheduleAppointmentRequest,
    now: datetime,
) -> RescheduleAppointmentResponse:
    appointment = await load_patient_appointment(db, patient, appointment_id)
    ensure_modifiable(appointment, "rescheduled", now)

    organization_id = patient.organization_id
    tz = await get_organization_timezone(db, organization_id)
    new_start = localize(payload.new_start_time, tz)
    new_provider_id = payload.new_provider_id or appointment.provider_id

    provider = await get_provider(db, organization_id, new_provider_id, for_update=True)
    new_end = new_start + timedelta(minutes=positive_duration(appointment.appointment_type))

    ensure_bookable_time(new_start, now)
    await ensure_within_working_hours(db, organization_id, provider.id, new_start, new_end)

    conflict = await find_conflict(
        db, organization_id, provider.id, new_start, new_end, exclude_appointment_id=appointment.id
    )
    if conflict:
        logger.info(f"Reschedule of {appointment.id} rejected: {conflict}")
        await db.rollback()
        raise HTTPException(status.HTTP_409_CONFLICT, "This time slot is not available")

    appointment.start_time = to_utc(new_start)
    appointment.end_time = to_utc(new_end)
    appointment.provider_id = provider.id
    appointment.status = AppointmentStatus.RESCHEDULED

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status.HTTP_409_CONFLICT, "This time slot is not available")

    appointment = await load_patient_appointment(db, patient, appointment_id)
    logger.info(f"Appointment {appointment.id} rescheduled to {to_utc(new_start).isoformat()}")

    return RescheduleAppointmentResponse(
        success=True,
        appointment=to_summary(appointment),
        message="Appointment rescheduled successfully",
    )


async def cancel_appointment(
    db: AsyncSession,
    patient: Patient,
    appointment_id: uuid.UUID,
    reason: Optional[str],
    now: datetime,
) -> ActionResponse:
    appointment = await load_patient_appointment(db, patient, appointment_id)
    ensure_modifiable(appointment, "cancelled", now)

    appointment.status = AppointmentStatus.CANCELLED
    appointment.cancelled_at = to_utc(now)
    appointment.cancelled_by = "PATIENT"
    appointment.cancel_reason = reason
    await db.commit()

    logger.info(f"Appointment {appointment.id} cancelled by patient {patient.id}")
    return ActionResponse(success=True, message="Appointment cancelled successfully")


# ---------------------------------------------------------------------------
# check-in
# ---------------------------------------------------------------------------

def minutes_until(start: datetime, now: datetime) -> float:
    return (to_utc(start) - to_utc(now)).total_seconds() / 60


def can_check_in(appointment: Appointment, now: datetime) -> bool:
    remaining = minutes_until(appointment.start_time, now)
    return (
        appointment.status in MODIFIABLE_APPOINTMENT_STATUSES
        and remaining <= CHECK_IN_OPENS_MINUTES
        and -remaining <= CHECK_IN_CLOSES_MINUTES
    )


async def check_in(
    db: AsyncSession,
    patient: Patient,
    appointment_id: uuid.UUID,
    now: datetime,
) -> CheckInResponse:
    appointment = await load_patient_appointment(db, patient, appointment_id)

    if appointment.status not in MODIFIABLE_APPOINTMENT_STATUSES:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "This appointment cannot be checked in")

    remaining = minutes_until(appointment.start_time, now)
    if remaining > CHECK_IN_OPENS_MINUTES:
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST,
            f"Check-in opens {CHECK_IN_OPENS_MINUTES} minutes before your appointment",
        )
    if -remaining > CHECK_IN_CLOSES_MINUTES:
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST,
            "Check-in is no longer available for this appointment. Please see the front desk.",
        )

    appointment.status = AppointmentStatus.CHECKED_IN
    appointment.checked_in_at = to_utc(now)
    appointment.checked_in_by = "PATIENT_MOBILE"
    await db.commit()

    logger.info(f"Patient {patient.id} checked in for appointment {appointment.id}")
    return CheckInResponse(
        success=True,
        message="You are checked in! Please have a seat and we will call you shortly.",
        appointment=to_summary(appointment),
    )


async def get_check_in_status(
    db: AsyncSession,
    patient: Patient,
    appointment_id: uuid.UUID,
    now: datetime,
) -> CheckInStatusDTO:
    appointment = await load_patient_appointment(db, patient, appointment_id)

    is_checked_in = appointment.status == AppointmentStatus.CHECKED_IN
    allowed = can_check_in(appointment, now)
    remaining = minutes_until(appointment.start_time, now)

    if is_checked_in:
        message = "You are already checked in"
    elif allowed:
        message = "You can check in now"
    elif remaining > CHECK_IN_OPENS_MINUTES:
        hours = math.ceil((remaining - CHECK_IN_OPENS_MINUTES) / 60)
        message = f"Check-in opens in {hours} hour(s)"
    else:
        message = "Please see the front desk"

    return CheckInStatusDTO(
        can_check_in=allowed,
        is_checked_in=is_checked_in,
        checked_in_at=ensure_aware(appointment.checked_in_at) if appointment.checked_in_at else None,
        status=appointment.status,
        message=message,
    )


async def get_calendar_event(db: AsyncSession, patient: Patient, appointment_id: uuid.UUID):
    appointment = await load_patient_appointment(db, patient, appointment_id)
    return build_calendar_event(appointment)


# ---------------------------------------------------------------------------
# listings
# ---------------------------------------------------------------------------

def directions_url(location: Location) -> str:
    return GOOGLE_MAPS_DIRECTIONS_URL + quote(location.full_address)


def to_location_dto(location: Location) -> LocationDTO:
    return LocationDTO(
        id=str(location.id),
        name=location.name,
        is_primary=bool(location.is_primary),
        address=AddressDTO(
            line1=location.address_line1,
            line2=location.address_line2,
            city=location.city,
            state=location.state,
            zip_code=location.zip_code,
        ),
        phone=location.phone,
        directions_url=directions_url(location),
    )


def to_provider_dto(provider: Provider) -> ProviderDTO:
    return ProviderDTO(
        id=str(provider.id),
        name=provider.display_name,
        title=provider.title,
        first_name=provider.first_name,
        last_name=provider.last_name,
        specialty=provider.specialty,
        color=provider.color,
    )


def to_appointment_type_dto(appointment_type: AppointmentType) -> AppointmentTypeDTO:
    return AppointmentTypeDTO(
        id=str(appointment_type.id),
        name=appointment_type.name,
        duration=appointment_type.duration,
        description=appointment_type.description,
        color=appointment_type.color,
    )


async def list_appointment_types(db: AsyncSession, organization_id: uuid.UUID) -> List[AppointmentTypeDTO]:
    stmt = (
        select(AppointmentType)
        .where(
            AppointmentType.organization_id == organization_id,
            AppointmentType.is_active.is_(True),
        )
        .order_by(AppointmentType.sort_order, AppointmentType.name)
    )
    return [to_appointment_type_dto(t) for t in (await db.execute(stmt)).scalars().all()]


async def list_providers(db: AsyncSession, organization_id: uuid.UUID) -> List[ProviderDTO]:
    return [to_provider_dto(p) for p in await load_providers(db, organization_id)]


async def list_locations(db: AsyncSession, organization_id: uuid.UUID) -> List[LocationDTO]:
    stmt = (
        select(Location)
        .where(
            Location.organization_id == organization_id,
            Location.is_active.is_(True),
        )
        .order_by(Location.is_primary.desc(), Location.name)
    )
    return [to_location_dto(loc) for loc in (await db.execute(stmt)).scalars().all()]


async def get_upcoming(
    db: AsyncSession,
    patient: Patient,
    limit: int,
    now: datetime,
) -> UpcomingAppointmentsResponse:
    stmt = (
        select(Appointment)
        .options(
            selectinload(Appointment.appointment_type),
            selectinload(Appointment.provider),
            selectinload(Appointment.location),
        )
        .where(
            Appointment.patient_id == patient.id,
            Appointment.start_time >= to_utc(now),
            Appointment.status.notin_(INACTIVE_APPOINTMENT_STATUSES),
        )
        .order_by(Appointment.start_time)
        .limit(limit)
    )
    appointments = (await db.execute(stmt)).scalars().all()

    results = []
    for a in appointments:
        hours = hours_until(a.start_time, now)
        modifiable = a.status in MODIFIABLE_APPOINTMENT_STATUSES

        results.append(
            UpcomingAppointmentDTO(
                id=str(a.id),
                start_time=ensure_aware(a.start_time),
                end_time=ensure_aware(a.end_time),
                status=a.status,
                chief_complaint=a.chief_complaint,
                patient_notes=a.patient_notes,
                hours_until=max(0, hours),
                can_cancel=modifiable and hours > CANCELLATION_NOTICE_HOURS,
                can_reschedule=modifiable and hours > CANCELLATION_NOTICE_HOURS,
                can_check_in=can_check_in(a, now),
                appointment_type=to_appointment_type_dto(a.appointment_type),
                provider=to_provider_dto(a.provider),
                location=to_location_dto(a.location) if a.location else None,
            )
        )

    next_appointment = None
    if appointments:
        first = appointments[0]
        next_appointment = NextAppointmentDTO(
            id=str(first.id),
            start_time=ensure_aware(first.start_time),
            hours_until=max(0, hours_until(first.start_time, now)),
            provider_name=first.provider.display_name,
            appointment_type=first.appointment_type.name,
        )

    return UpcomingAppointmentsResponse(
        appointments=results,
        next_appointment=next_appointment,
        total=len(results),
        server_timestamp=to_utc(now),
    )


async def get_history(
    db: AsyncSession,
    patient: Patient,
    limit: int,
    offset: int,
    now: datetime,
) -> AppointmentHistoryResponse:
    condition = or_(
        Appointment.end_time < to_utc(now),
        Appointment.status.in_([
            AppointmentStatus.COMPLETED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        ]),
    )

    stmt = (
        select(Appointment)
        .options(
            selectinload(Appointment.appointment_type),
            selectinload(Appointment.provider),
        )
        .where(Appointment.patient_id == patient.id, condition)
        .order_by(Appointment.start_time.desc())
        .offset(offset)
        .limit(limit)
    )
    appointments = (await db.execute(stmt)).scalars().all()

    total = await db.scalar(
        select(func.count())
        .select_from(Appointment)
        .where(Appointment.patient_id == patient.id, condition)
    ) or 0

    return AppointmentHistoryResponse(
        appointments=[
            HistoryAppointmentDTO(
                id=str(a.id),
                start_time=ensure_aware(a.start_time),
                end_time=ensure_aware(a.end_time),
                status=a.status,
                chief_complaint=a.chief_complaint,
                appointment_type=a.appointment_type.name,
                provider=a.provider.display_name,
            )
            for a in appointments
        ],
        total=total,
        has_more=offset + limit < total,
    )
