from datetime import timezone
from urllib.parse import quote, urlencode

from schemas.appointment_schema import CalendarEventDTO
from schemas.schemas import Appointment
from services.availability_service import ensure_aware

GOOGLE_CALENDAR_URL = "https://www.google.com/calendar/render"
OUTLOOK_CALENDAR_URL = "https://outlook.live.com/calendar/0/deeplink/compose"
DEFAULT_DESCRIPTION = "Chiropractic appointment"


def event_title(appointment: Appointment) -> str:
    return f"{appointment.appointment_type.name} with {appointment.provider.display_name}".strip()


def event_description(chief_complaint: str | None) -> str:
    if chief_complaint:
        return f"Reason for visit: {chief_complaint}"
    return DEFAULT_DESCRIPTION


def event_location(appointment: Appointment) -> str | None:
    location = appointment.location
    if location is None:
        return None
    return ", ".join(part for part in (location.name, location.full_address) if part)


def ics_path(appointment_id) -> str:
    return f"/api/appointments/{appointment_id}/calendar.ics"


def build_calendar_event(appointment: Appointment) -> CalendarEventDTO:
    """Event payload for the "add to calendar" buttons on the patient app."""
    title = event_title(appointment)
    description = event_description(appointment.chief_complaint)
    location = event_location(appointment)
    start = ensure_aware(appointment.start_time).astimezone(timezone.utc)
    end = ensure_aware(appointment.end_time).astimezone(timezone.utc)

    google_params = {
        "action": "TEMPLATE",
        "text": title,
        "dates": f"{start:%Y%m%dT%H%M%SZ}/{end:%Y%m%dT%H%M%SZ}",
        "details": description,
    }
    if location:
        google_params["location"] = location

    outlook_params = {
        "subject": title,
        "startdt": start.isoformat(),
        "enddt": end.isoformat(),
        "body": description,
        "location": location or "",
    }

    return CalendarEventDTO(
        title=title,
        start_time=start,
        end_time=end,
        location=location,
        description=description,
        ics_url=ics_path(appointment.id),
        google_calendar_url=f"{GOOGLE_CALENDAR_URL}?{urlencode(google_params, quote_via=quote)}",
        outlook_calendar_url=f"{OUTLOOK_CALENDAR_URL}?{urlencode(outlook_params, quote_via=quote)}",
    )
