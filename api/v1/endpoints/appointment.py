from datetime import date, timedelta
from typing import List, Optional
import uuid
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from core.clock import Clock, get_clock
from core.config import MAX_AVAILABILITY_RANGE_DAYS
from database.postgres import get_db
from dependencies.auth import get_current_patient
from schemas.appointment_schema import (
    ActionResponse,
    AppointmentHistoryResponse,
    AppointmentTypeDTO,
    AvailabilityResponseDTO,
    BookAppointmentRequest,
    BookAppointmentResponse,
    CalendarEventDTO,
    CancelAppointmentRequest,
    CheckInResponse,
    CheckInStatusDTO,
    LocationDTO,
    ProviderDTO,
    RescheduleAppointmentRequest,
    RescheduleAppointmentResponse,
    UpcomingAppointmentsResponse,
)
from schemas.schemas import Patient
from services import appointment_service
from loguru import logger

router = APIRouter(
    prefix='/mobile/appointments',
    tags=["Patient appointments"]
    )


@router.get("/slots", response_model=AvailabilityResponseDTO)
async def get_available_slots(
    start_date: date,
    end_date: date,
    provider_id: Optional[uuid.UUID] = None,
    appointment_type_id: Optional[uuid.UUID] = None,
    location_id: Optional[uuid.UUID] = None,
    db: AsyncSession = Depends(get_db),
    patient: Patient = Depends(get_current_patient),
    clock: Clock = Depends(get_clock),
):
    if end_date < start_date:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "end_date must not be before start_date")

    if end_date - start_date > timedelta(days=MAX_AVAILABILITY_RANGE_DAYS):
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST,
            f"Date range may not exceed {MAX_AVAILABILITY_RANGE_DAYS} days"
        )

    # location_id is accepted for client compatibility; schedules carry no location
    now = clock()
    result = await appointment_service.get_available_slots(
        db,
        patient.organization_id,
        start_date,
        end_date,
        now,
        provider_id=provider_id,
        appointment_type_id=appointment_type_id,
    )

    logger.debug(
        f"Availability {start_date}..{end_date} for org {patient.organization_id}: "
        f"{result.total_available} slots"
    )
    return appointment_service.to_availability_response(result, now)


@router.post("", response_model=BookAppointmentResponse, status_code=status.HTTP_201_CREATED)
async def book_appointment(
    payload: BookAppointmentRequest,
    db: AsyncSession = Depends(get_db),
    patient: Patient = Depends(get_current_patient),
    clock: Clock = Depends(get_clock),
):
    return await appointment_service.book_appointment(db, patient, payload, clock())


@router.get("/upcoming", response_model=UpcomingAppointmentsResponse)
async def get_upcoming(
    limit: int = Query(10, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
    patient: Patient = Depends(get_current_patient),
    clock: Clock = Depends(get_clock),
):
    return await appointment_service.get_upcoming(db, patient, limit, clock())


@router.get("/history", response_model=AppointmentHistoryResponse)
async def get_history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    patient: Patient = Depends(get_current_patient),
    clock: Clock = Depends(get_clock),
):
    return await appointment_service.get_history(db, patient, limit, offset, clock())


@router.get("/types", response_model=List[AppointmentTypeDTO])
async def get_appointment_types(
    db: AsyncSession = Depends(get_db),
    patient: Patient = Depends(get_current_patient),
):
    return await appointment_service.list_appointment_types(db, patient.organization_id)


@router.get("/providers", response_model=List[ProviderDTO])
async def get_providers(
    db: AsyncSession = Depends(get_db),
    patient: Patient = Depends(get_current_patient),
):
    return await appointment_service.list_providers(db, patient.organization_id)


@router.get("/locations", response_model=List[LocationDTO])
async def get_locations(
    db: AsyncSession = Depends(get_db),
    patient: Patient = Depends(get_current_patient),
):
    return await appointment_service.list_locations(db, patient.organization_id)


@router.post("/{appointment_id}/reschedule", response_model=RescheduleAppointmentResponse)
async def reschedule_appointment(
    appointment_id: uuid.UUID,
    payload: RescheduleAppointmentRequest,
    db: AsyncSession = Depends(get_db),
    patient: Patient = Depends(get_current_patient),
    clock: Clock = Depends(get_clock),
):
    return await appointment_service.reschedule_appointment(
        db, patient, appointment_id, payload, clock()
    )


@router.post("/{appointment_id}/cancel", response_model=ActionResponse)
async def cancel_appointment(
    appointment_id: uuid.UUID,
    payload: CancelAppointmentRequest | None = None,
    db: AsyncSession = Depends(get_db),
    patient: Patient = Depends(get_current_patient),
    clock: Clock = Depends(get_clock),
):
    reason = payload.reason if payload else None
    return await appointment_service.cancel_appointment(db, patient, appointment_id, reason, clock())


@router.post("/{appointment_id}/check-in", response_model=CheckInResponse)
async def check_in(
    appointment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    patient: Patient = Depends(get_current_patient),
    clock: Clock = Depends(get_clock),
):
    return await appointment_service.check_in(db, patient, appointment_id, clock())


@router.get("/{appointment_id}/check-in", response_model=CheckInStatusDTO)
async def get_check_in_status(
    appointment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    patient: Patient = Depends(get_current_patient),
    clock: Clock = Depends(get_clock),
):
    return await appointment_service.get_check_in_status(db, patient, appointment_id, clock())


@router.get("/{appointment_id}/calendar-event", response_model=CalendarEventDTO)
async def get_calendar_event(
    appointment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    patient: Patient = Depends(get_current_patient),
):
    return await appointment_service.get_calendar_event(db, patient, appointment_id)
