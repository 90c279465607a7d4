from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import date, datetime
from typing import Optional, List
import uuid

from schemas.enum import AppointmentStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ---- availability ----

class SlotDTO(CamelModel):
    provider_id: str
    provider_name: str
    start_time: datetime
    end_time: datetime

class DaySlotsDTO(CamelModel):
    date: date
    day_name: str
    slot_count: int
    slots: List[SlotDTO]

class AvailabilityResponseDTO(CamelModel):
    days: List[DaySlotsDTO]
    total_available: int
    server_timestamp: datetime
    warnings: List[str] = []


# ---- booking ----

class BookAppointmentRequest(CamelModel):
    provider_id: uuid.UUID
    appointment_type_id: uuid.UUID
    start_time: datetime
    location_id: Optional[uuid.UUID] = None
    chief_complaint: Optional[str] = Field(default=None, max_length=2000)
    patient_notes: Optional[str] = Field(default=None, max_length=2000)

class RescheduleAppointmentRequest(CamelModel):
    new_start_time: datetime
    new_provider_id: Optional[uuid.UUID] = None

class CancelAppointmentRequest(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=1000)

class AppointmentSummaryDTO(CamelModel):
    id: str
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    appointment_type: str
    provider: str

class CalendarEventDTO(CamelModel):
    title: str
    start_time: datetime
    end_time: datetime
    location: Optional[str] = None
    description: str
    ics_url: str
    google_calendar_url: str
    outlook_calendar_url: str

class BookAppointmentResponse(CamelModel):
    success: bool
    appointment: AppointmentSummaryDTO
    calendar_event: CalendarEventDTO
    message: str

class RescheduleAppointmentResponse(CamelModel):
    success: bool
    appointment: AppointmentSummaryDTO
    message: str

class ActionResponse(CamelModel):
    success: bool
    message: str


# ---- check-in ----

class CheckInResponse(CamelModel):
    success: bool
    message: str
    appointment: AppointmentSummaryDTO

class CheckInStatusDTO(CamelModel):
    can_check_in: bool
    is_checked_in: bool
    checked_in_at: Optional[datetime] = None
    status: AppointmentStatus
    message: str


# ---- listings ----

class AppointmentTypeDTO(CamelModel):
    id: str
    name: str
    duration: int
    description: Optional[str] = None
    color: Optional[str] = None

class ProviderDTO(CamelModel):
    id: str
    name: str
    title: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    specialty: Optional[str] = None
    color: Optional[str] = None

class AddressDTO(CamelModel):
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None

class LocationDTO(CamelModel):
    id: str
    name: str
    is_primary: bool = False
    address: AddressDTO
    phone: Optional[str] = None
    directions_url: Optional[str] = None

class UpcomingAppointmentDTO(CamelModel):
    id: str
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    chief_complaint: Optional[str] = None
    patient_notes: Optional[str] = None
    hours_until: int
    can_cancel: bool
    can_reschedule: bool
    can_check_in: bool
    appointment_type: AppointmentTypeDTO
    provider: ProviderDTO
    location: Optional[LocationDTO] = None

class NextAppointmentDTO(CamelModel):
    id: str
    start_time: datetime
    hours_until: int
    provider_name: str
    appointment_type: str

class UpcomingAppointmentsResponse(CamelModel):
    appointments: List[UpcomingAppointmentDTO]
    next_appointment: Optional[NextAppointmentDTO] = None
    total: int
    server_timestamp: datetime

class HistoryAppointmentDTO(CamelModel):
    id: str
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    chief_complaint: Optional[str] = None
    appointment_type: str
    provider: str

class AppointmentHistoryResponse(CamelModel):
    appointments: List[HistoryAppointmentDTO]
    total: int
    has_more: bool
