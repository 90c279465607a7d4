import enum

class RoleEnum(str, enum.Enum):
    PATIENT = "patient"
    STAFF = "staff"

class DayOfWeek(str, enum.Enum):
    SUNDAY = "SUNDAY"
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"

    @classmethod
    def from_date(cls, value) -> "DayOfWeek":
        # date.weekday(): Monday == 0
        return WEEKDAY_ORDER[value.weekday()]

WEEKDAY_ORDER = [
    DayOfWeek.MONDAY,
    DayOfWeek.TUESDAY,
    DayOfWeek.WEDNESDAY,
    DayOfWeek.THURSDAY,
    DayOfWeek.FRIDAY,
    DayOfWeek.SATURDAY,
    DayOfWeek.SUNDAY,
]

class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    CHECKED_IN = "CHECKED_IN"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    RESCHEDULED = "RESCHEDULED"

# statuses that no longer occupy the provider's time
INACTIVE_APPOINTMENT_STATUSES = (AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW)

# statuses a patient may still cancel, reschedule or check in
MODIFIABLE_APPOINTMENT_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)

class BlockType(str, enum.Enum):
    MEETING = "MEETING"
    LUNCH = "LUNCH"
    HOLIDAY = "HOLIDAY"
    VACATION = "VACATION"
    TRAINING = "TRAINING"
    OTHER = "OTHER"
