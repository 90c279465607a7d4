"""
Open-slot computation for provider calendars.

Everything here is pure: the caller loads providers, weekly schedules,
date exceptions, blocks and appointments, and passes "now" in. Nothing is
read from the database or the wall clock.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable, List, Optional, Sequence, Tuple
import re

from loguru import logger

from schemas.enum import DayOfWeek, INACTIVE_APPOINTMENT_STATUSES

DEFAULT_SLOT_DURATION = 30
DEFAULT_MIN_ADVANCE_MINUTES = 60

_WALL_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


@dataclass(frozen=True)
class Slot:
    provider_id: object
    provider_name: str
    start_time: datetime
    end_time: datetime


@dataclass
class DayAvailability:
    date: date
    slots: List[Slot] = field(default_factory=list)

    @property
    def day_name(self) -> str:
        return self.date.strftime("%A")

    @property
    def slot_count(self) -> int:
        return len(self.slots)


@dataclass
class AvailabilityResult:
    days: List[DayAvailability] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def total_available(self) -> int:
        return sum(day.slot_count for day in self.days)


def parse_wall_time(value: Optional[str]) -> time:
    """Parse a "HH:MM" wall-clock string; raises ValueError when malformed."""
    if not isinstance(value, str):
        raise ValueError(f"expected HH:MM string, got {value!r}")
    match = _WALL_TIME_RE.match(value.strip())
    if not match:
        raise ValueError(f"invalid HH:MM time {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


def ensure_aware(value: datetime) -> datetime:
    # the store hands back naive values on some backends; they are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open overlap test: [start_a, end_a) intersects [start_b, end_b)."""
    return start_a < end_b and end_a > start_b


def is_live_appointment(appointment) -> bool:
    return getattr(appointment, "status", None) not in INACTIVE_APPOINTMENT_STATUSES


def block_applies_to(block, provider_id) -> bool:
    return block.provider_id is None or block.provider_id == provider_id


def iter_dates(start_date: date, end_date: date) -> Iterable[date]:
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


def _window_from_strings(start, end, day: date, tz: tzinfo) -> Tuple[datetime, datetime]:
    window_start = datetime.combine(day, parse_wall_time(start), tzinfo=tz)
    window_end = datetime.combine(day, parse_wall_time(end), tzinfo=tz)
    if window_end <= window_start:
        raise ValueError(f"window end {end!r} is not after start {start!r}")
    return window_start, window_end


def _weekly_window(provider_id, day: date, schedules, tz: tzinfo, warnings: List[str]):
    weekday = DayOfWeek.from_date(day)
    rows = [
        s for s in schedules
        if s.provider_id == provider_id
        and s.day_of_week == weekday
        and getattr(s, "is_active", True) is not False
    ]
    if not rows:
        return None
    if len(rows) > 1:
        warnings.append(
            f"provider {provider_id} has {len(rows)} active schedules for {weekday.value}; using the first"
        )
    row = rows[0]
    try:
        return _window_from_strings(row.start_time, row.end_time, day, tz)
    except ValueError as exc:
        warnings.append(f"skipped weekly schedule {getattr(row, 'id', None)} for provider {provider_id}: {exc}")
        return None


def resolve_working_window(
    provider_id,
    day: date,
    schedules: Sequence,
    exceptions: Sequence,
    tz: tzinfo,
    warnings: List[str],
    exception_fallback_to_weekly: bool = True,
) -> Optional[Tuple[datetime, datetime]]:
    """
    Working window of one provider on one date, or None when not bookable.

    A date exception wins over the weekly schedule. An unavailable exception
    closes the day; an available one supplies its own times, or falls back to
    the weekly window when it has none and the fallback is enabled. Rows with
    unparseable times are skipped and reported through ``warnings``.
    """
    exception = next(
        (e for e in exceptions if e.provider_id == provider_id and e.date == day),
        None,
    )

    if exception is not None:
        if not exception.is_available:
            return None
        if exception.start_time and exception.end_time:
            try:
                return _window_from_strings(exception.start_time, exception.end_time, day, tz)
            except ValueError as exc:
                warnings.append(
                    f"skipped schedule exception {getattr(exception, 'id', None)} "
                    f"for provider {provider_id} on {day.isoformat()}: {exc}"
                )
        elif not exception_fallback_to_weekly:
            return None

    return _weekly_window(provider_id, day, schedules, tz, warnings)


def generate_window_slots(window_start: datetime, window_end: datetime, duration_minutes: int) -> List[Tuple[datetime, datetime]]:
    # step on UTC so a DST change inside the window keeps every slot exact
    tz = window_start.tzinfo
    step = timedelta(minutes=duration_minutes)
    cursor = window_start.astimezone(timezone.utc)
    end_utc = window_end.astimezone(timezone.utc)
    slots = []

    while cursor + step <= end_utc:
        slots.append((cursor.astimezone(tz), (cursor + step).astimezone(tz)))
        cursor += step

    return slots


def compute_available_slots(
    start_date: date,
    end_date: date,
    duration_minutes: int,
    providers: Sequence,
    schedules: Sequence = (),
    exceptions: Sequence = (),
    blocks: Sequence = (),
    appointments: Sequence = (),
    tz: tzinfo = timezone.utc,
    now: Optional[datetime] = None,
    min_advance_minutes: int = DEFAULT_MIN_ADVANCE_MINUTES,
    enforce_min_advance: bool = True,
    exception_fallback_to_weekly: bool = True,
    include_empty_days: bool = False,
) -> AvailabilityResult:
    """
    Open booking slots per day for the given providers.

    Slots are ``duration_minutes`` long, aligned to the start of each
    provider's working window, and never overlap a live appointment of that
    provider or a block that applies to it. With ``enforce_min_advance`` a
    slot must start no earlier than ``now + min_advance_minutes``.

    Providers keep the order they were given in; within a day slots are
    ordered by start time.
    """
    if duration_minutes is None or duration_minutes <= 0:
        raise ValueError("duration_minutes must be a positive integer")

    result = AvailabilityResult()
    if start_date > end_date:
        return result

    cutoff = None
    if enforce_min_advance:
        if now is None:
            raise ValueError("now is required when enforcing the minimum advance")
        cutoff = ensure_aware(now) + timedelta(minutes=min_advance_minutes)

    live = [
        (a.provider_id, ensure_aware(a.start_time), ensure_aware(a.end_time))
        for a in appointments
        if is_live_appointment(a)
    ]
    closures = [
        (b, ensure_aware(b.start_time), ensure_aware(b.end_time))
        for b in blocks
    ]

    for day in iter_dates(start_date, end_date):
        day_slots: List[Slot] = []

        for provider in providers:
            window = resolve_working_window(
                provider.id,
                day,
                schedules,
                exceptions,
                tz,
                result.warnings,
                exception_fallback_to_weekly=exception_fallback_to_weekly,
            )
            if window is None:
                continue

            busy = [(s, e) for pid, s, e in live if pid == provider.id]
            busy += [(s, e) for b, s, e in closures if block_applies_to(b, provider.id)]

            for slot_start, slot_end in generate_window_slots(window[0], window[1], duration_minutes):
                if cutoff is not None and slot_start < cutoff:
                    continue
                if any(intervals_overlap(slot_start, slot_end, s, e) for s, e in busy):
                    continue
                day_slots.append(
                    Slot(
                        provider_id=provider.id,
                        provider_name=provider.display_name,
                        start_time=slot_start,
                        end_time=slot_end,
                    )
                )

        # stable sort keeps provider order for equal start times
        day_slots.sort(key=lambda s: s.start_time.astimezone(timezone.utc))

        if day_slots or include_empty_days:
            result.days.append(DayAvailability(date=day, slots=day_slots))

    # a bad row repeats once per matching day
    result.warnings = list(dict.fromkeys(result.warnings))
    for warning in result.warnings:
        logger.warning(f"Availability data issue: {warning}")

    return result
