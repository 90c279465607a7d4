from pydantic import Field, model_validator
from datetime import date, datetime
from typing import Optional, List
import uuid

from schemas.appointment_schema import CamelModel
from schemas.enum import BlockType, DayOfWeek
from services.availability_service import ensure_aware

# HH:MM, 00:00 .. 23:59
TIME_PATTERN = r"^([01]\d|2[0-3]):([0-5]\d)$"


class WeeklyScheduleEntry(CamelModel):
    day_of_week: DayOfWeek
    start_time: str = Field(pattern=TIME_PATTERN)
    end_time: str = Field(pattern=TIME_PATTERN)
    is_active: bool = True

    @model_validator(mode="after")
    def check_window(self):
        # zero-padded HH:MM strings compare like times
        if self.end_time <= self.start_time:
            raise ValueError("endTime must be after startTime")
        return self

class SetWeeklyScheduleRequest(CamelModel):
    schedules: List[WeeklyScheduleEntry]

class WeeklyScheduleDTO(CamelModel):
    id: uuid.UUID
    provider_id: uuid.UUID
    day_of_week: DayOfWeek
    start_time: str
    end_time: str
    is_active: bool

class ScheduleExceptionUpsertRequest(CamelModel):
    date: date
    is_available: bool = False
    start_time: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    end_time: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    reason: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def check_window(self):
        if (self.start_time is None) != (self.end_time is None):
            raise ValueError("startTime and endTime must be given together")
        if self.start_time and self.end_time and self.end_time <= self.start_time:
            raise ValueError("endTime must be after startTime")
        return self

class ScheduleExceptionDTO(CamelModel):
    id: uuid.UUID
    provider_id: uuid.UUID
    date: date
    is_available: bool
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    reason: Optional[str] = None

class ScheduleBlockCreateRequest(CamelModel):
    title: str = Field(min_length=1, max_length=255)
    block_type: BlockType = BlockType.OTHER
    start_time: datetime
    end_time: datetime
    provider_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_interval(self):
        if ensure_aware(self.end_time) <= ensure_aware(self.start_time):
            raise ValueError("endTime must be after startTime")
        return self

class ScheduleBlockDTO(CamelModel):
    id: uuid.UUID
    provider_id: Optional[uuid.UUID] = None
    title: str
    block_type: BlockType
    start_time: datetime
    end_time: datetime
    notes: Optional[str] = None
