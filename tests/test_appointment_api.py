import asyncio
from datetime import date, timedelta
import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from schemas.enum import AppointmentStatus
from schemas.schemas import Appointment, AppointmentType, Patient
from services import appointment_service
from tests.factories import MONDAY, at

BASE = "/mobile/appointments"


def slots_params(start=MONDAY, end=MONDAY, **extra):
    return {"start_date": start.isoformat(), "end_date": end.isoformat(), **extra}


def booking(seed, start="2026-03-02T10:00:00Z", **extra):
    body = {
        "providerId": str(seed.provider_id),
        "appointmentTypeId": str(seed.appointment_type_id),
        "locationId": str(seed.location_id),
        "startTime": start,
    }
    body.update(extra)
    return body


async def slot_starts(client, headers):
    response = await client.get(f"{BASE}/slots", params=slots_params(), headers=headers)
    assert response.status_code == 200
    return [slot["startTime"][:16] for day in response.json()["days"] for slot in day["slots"]]


class TestSlots:

    async def test_free_morning(self, client, patient_headers):
        response = await client.get(f"{BASE}/slots", params=slots_params(), headers=patient_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["totalAvailable"] == 6
        assert body["warnings"] == []
        day = body["days"][0]
        assert day["date"] == "2026-03-02"
        assert day["dayName"] == "Monday"
        assert day["slotCount"] == 6
        assert day["slots"][0]["providerName"] == "Dr. Jane Smith"
        assert day["slots"][0]["startTime"].startswith("2026-03-02T09:00:00")

    async def test_live_appointment_hides_slot_but_cancelled_does_not(self, client, patient_headers, add_appointment):
        await add_appointment(at(MONDAY, 10))
        await add_appointment(at(MONDAY, 11), status=AppointmentStatus.CANCELLED)

        starts = await slot_starts(client, patient_headers)
        assert len(starts) == 5
        assert "2026-03-02T10:00" not in starts
        assert "2026-03-02T11:00" in starts

    async def test_unknown_appointment_type_is_404(self, client, patient_headers):
        response = await client.get(
            f"{BASE}/slots",
            params=slots_params(appointment_type_id=str(uuid.uuid4())),
            headers=patient_headers,
        )
        assert response.status_code == 404

    async def test_reversed_range_is_rejected(self, client, patient_headers):
        response = await client.get(
            f"{BASE}/slots", params=slots_params(start=MONDAY, end=MONDAY - timedelta(days=1)), headers=patient_headers
        )
        assert response.status_code == 400

    async def test_overlong_range_is_rejected(self, client, patient_headers):
        response = await client.get(
            f"{BASE}/slots",
            params={"start_date": "2026-03-02", "end_date": "2026-12-31"},
            headers=patient_headers,
        )
        assert response.status_code == 400


class TestBooking:

    async def test_book_free_slot(self, client, seed, patient_headers, session_factory):
        response = await client.post(BASE, json=booking(seed, chiefComplaint="Lower back pain"), headers=patient_headers)

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["appointment"]["status"] == "SCHEDULED"
        assert body["appointment"]["provider"] == "Dr. Jane Smith"
        assert body["appointment"]["startTime"].startswith("2026-03-02T10:00:00")
        assert body["appointment"]["endTime"].startswith("2026-03-02T10:30:00")

        event = body["calendarEvent"]
        assert event["title"] == "Adjustment with Dr. Jane Smith"
        assert event["description"] == "Reason for visit: Lower back pain"
        assert event["icsUrl"] == f"/api/appointments/{body['appointment']['id']}/calendar.ics"
        assert "20260302T100000Z" in event["googleCalendarUrl"]

        async with session_factory() as session:
            stored = (await session.execute(select(Appointment))).scalars().all()
        assert len(stored) == 1
        assert stored[0].created_by == "PATIENT"

        assert "2026-03-02T10:00" not in await slot_starts(client, patient_headers)

    async def test_naive_start_time_is_read_in_practice_timezone(self, client, seed, patient_headers):
        response = await client.post(BASE, json=booking(seed, start="2026-03-02T10:00:00"), headers=patient_headers)
        assert response.status_code == 201

    async def test_taken_start_time_conflicts(self, client, seed, patient_headers, add_appointment):
        await add_appointment(at(MONDAY, 10))

        response = await client.post(BASE, json=booking(seed), headers=patient_headers)

        assert response.status_code == 409
        assert response.json()["detail"] == "This time slot is no longer available"

    async def test_partial_overlap_conflicts(self, client, seed, patient_headers, add_appointment):
        await add_appointment(at(MONDAY, 10))

        response = await client.post(BASE, json=booking(seed, start="2026-03-02T10:15:00Z"), headers=patient_headers)
        assert response.status_code == 409

    async def test_cancelled_appointment_frees_its_time(self, client, seed, patient_headers, add_appointment):
        await add_appointment(at(MONDAY, 10), status=AppointmentStatus.CANCELLED)

        response = await client.post(BASE, json=booking(seed), headers=patient_headers)
        assert response.status_code == 201

    async def test_block_conflicts(self, client, seed, patient_headers, staff_headers):
        created = await client.post(
            "/scheduling/blocks",
            json={
                "title": "Lunch",
                "blockType": "LUNCH",
                "startTime": "2026-03-02T10:00:00Z",
                "endTime": "2026-03-02T11:00:00Z",
            },
            headers=staff_headers,
        )
        assert created.status_code == 201

        response = await client.post(BASE, json=booking(seed), headers=patient_headers)
        assert response.status_code == 409

    async def test_concurrent_bookings_for_one_slot(self, client, seed, patient_headers):
        responses = await asyncio.gather(
            client.post(BASE, json=booking(seed), headers=patient_headers),
            client.post(BASE, json=booking(seed), headers=patient_headers),
        )

        assert sorted(r.status_code for r in responses) == [201, 409]

    async def test_outside_working_hours_is_rejected(self, client, seed, patient_headers):
        response = await client.post(BASE, json=booking(seed, start="2026-03-02T13:00:00Z"), headers=patient_headers)

        assert response.status_code == 400
        assert response.json()["detail"] == "Provider is not available at this time"

    async def test_slot_running_past_closing_is_rejected(self, client, seed, patient_headers):
        response = await client.post(BASE, json=booking(seed, start="2026-03-02T11:45:00Z"), headers=patient_headers)
        assert response.status_code == 400

    async def test_too_short_notice_is_rejected(self, client, seed, patient_headers, set_now):
        set_now(at(MONDAY, 8, 30))

        response = await client.post(BASE, json=booking(seed, start="2026-03-02T09:00:00Z"), headers=patient_headers)
        assert response.status_code == 400

    async def test_unknown_references_are_404(self, client, seed, patient_headers):
        for field in ("providerId", "appointmentTypeId", "locationId"):
            response = await client.post(
                BASE, json=booking(seed, **{field: str(uuid.uuid4())}), headers=patient_headers
            )
            assert response.status_code == 404, field


class TestReschedule:

    async def test_move_to_free_slot(self, client, patient_headers, add_appointment):
        appointment_id = await add_appointment(at(MONDAY, 10))

        response = await client.post(
            f"{BASE}/{appointment_id}/reschedule",
            json={"newStartTime": "2026-03-02T11:00:00Z"},
            headers=patient_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["appointment"]["status"] == "RESCHEDULED"
        assert body["appointment"]["startTime"].startswith("2026-03-02T11:00:00")

        starts = await slot_starts(client, patient_headers)
        assert "2026-03-02T10:00" in starts
        assert "2026-03-02T11:00" not in starts

    async def test_move_onto_taken_slot_conflicts(self, client, patient_headers, add_appointment):
        appointment_id = await add_appointment(at(MONDAY, 10))
        await add_appointment(at(MONDAY, 11))

        response = await client.post(
            f"{BASE}/{appointment_id}/reschedule",
            json={"newStartTime": "2026-03-02T11:00:00Z"},
            headers=patient_headers,
        )

        assert response.status_code == 409
        assert response.json()["detail"] == "This time slot is not available"

    async def test_small_shift_may_overlap_its_own_old_time(self, client, patient_headers, add_appointment):
        appointment_id = await add_appointment(at(MONDAY, 10))

        response = await client.post(
            f"{BASE}/{appointment_id}/reschedule",
            json={"newStartTime": "2026-03-02T10:15:00Z"},
            headers=patient_headers,
        )
        assert response.status_code == 200

    async def test_inside_notice_period_is_rejected(self, client, patient_headers, add_appointment, set_now):
        appointment_id = await add_appointment(at(MONDAY, 10))
        set_now(at(MONDAY, 0))

        response = await client.post(
            f"{BASE}/{appointment_id}/reschedule",
            json={"newStartTime": "2026-03-02T11:00:00Z"},
            headers=patient_headers,
        )
        assert response.status_code == 400


class TestCancel:

    async def test_cancel_frees_the_slot(self, client, patient_headers, add_appointment, session_factory):
        appointment_id = await add_appointment(at(MONDAY, 10))

        response = await client.post(
            f"{BASE}/{appointment_id}/cancel", json={"reason": "Feeling better"}, headers=patient_headers
        )

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert "2026-03-02T10:00" in await slot_starts(client, patient_headers)

        async with session_factory() as session:
            stored = await session.get(Appointment, appointment_id)
        assert stored.status == AppointmentStatus.CANCELLED
        assert stored.cancel_reason == "Feeling better"
        assert stored.cancelled_by == "PATIENT"

    async def test_cancel_without_body(self, client, patient_headers, add_appointment):
        appointment_id = await add_appointment(at(MONDAY, 10))

        response = await client.post(f"{BASE}/{appointment_id}/cancel", headers=patient_headers)
        assert response.status_code == 200

    async def test_cancel_twice_is_rejected(self, client, patient_headers, add_appointment):
        appointment_id = await add_appointment(at(MONDAY, 10))
        await client.post(f"{BASE}/{appointment_id}/cancel", headers=patient_headers)

        response = await client.post(f"{BASE}/{appointment_id}/cancel", headers=patient_headers)

        assert response.status_code == 400
        assert response.json()["detail"] == "This appointment cannot be cancelled"

    async def test_cancel_inside_notice_period_is_rejected(self, client, patient_headers, add_appointment, set_now):
        appointment_id = await add_appointment(at(MONDAY, 10))
        set_now(at(MONDAY, 0))

        response = await client.post(f"{BASE}/{appointment_id}/cancel", headers=patient_headers)

        assert response.status_code == 400
        assert "24 hours" in response.json()["detail"]

    async def test_unknown_appointment_is_404(self, client, patient_headers):
        response = await client.post(f"{BASE}/{uuid.uuid4()}/cancel", headers=patient_headers)
        assert response.status_code == 404


class TestCheckIn:

    async def test_check_in_inside_window(self, client, patient_headers, add_appointment, set_now):
        appointment_id = await add_appointment(at(MONDAY, 9))
        set_now(at(MONDAY, 8, 30))

        status_before = await client.get(f"{BASE}/{appointment_id}/check-in", headers=patient_headers)
        assert status_before.json()["canCheckIn"] is True
        assert status_before.json()["message"] == "You can check in now"

        response = await client.post(f"{BASE}/{appointment_id}/check-in", headers=patient_headers)
        assert response.status_code == 200
        assert response.json()["appointment"]["status"] == "CHECKED_IN"

        status_after = await client.get(f"{BASE}/{appointment_id}/check-in", headers=patient_headers)
        body = status_after.json()
        assert body["isCheckedIn"] is True
        assert body["canCheckIn"] is False
        assert body["checkedInAt"].startswith("2026-03-02T08:30:00")
        assert body["message"] == "You are already checked in"

    async def test_check_in_too_early(self, client, patient_headers, add_appointment):
        appointment_id = await add_appointment(at(MONDAY, 9))

        status_response = await client.get(f"{BASE}/{appointment_id}/check-in", headers=patient_headers)
        assert status_response.json()["message"] == "Check-in opens in 24 hour(s)"

        response = await client.post(f"{BASE}/{appointment_id}/check-in", headers=patient_headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "Check-in opens 60 minutes before your appointment"

    async def test_check_in_too_late(self, client, patient_headers, add_appointment, set_now):
        appointment_id = await add_appointment(at(MONDAY, 9))
        set_now(at(MONDAY, 9, 20))

        response = await client.post(f"{BASE}/{appointment_id}/check-in", headers=patient_headers)
        assert response.status_code == 400

        status_response = await client.get(f"{BASE}/{appointment_id}/check-in", headers=patient_headers)
        assert status_response.json()["message"] == "Please see the front desk"


class TestPatientListings:

    async def test_upcoming(self, client, patient_headers, add_appointment):
        first = await add_appointment(at(MONDAY, 9))
        await add_appointment(at(MONDAY, 11))
        await add_appointment(at(MONDAY, 10), status=AppointmentStatus.CANCELLED)

        response = await client.get(f"{BASE}/upcoming", headers=patient_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert body["nextAppointment"]["id"] == str(first)
        assert body["nextAppointment"]["hoursUntil"] == 25
        assert body["nextAppointment"]["providerName"] == "Dr. Jane Smith"
        entry = body["appointments"][0]
        assert entry["canCancel"] is True
        assert entry["canReschedule"] is True
        assert entry["canCheckIn"] is False
        assert entry["location"]["name"] == "Downtown"

    async def test_upcoming_empty(self, client, patient_headers):
        body = (await client.get(f"{BASE}/upcoming", headers=patient_headers)).json()
        assert body["total"] == 0
        assert body["nextAppointment"] is None

    async def test_history(self, client, patient_headers, add_appointment):
        past = await add_appointment(at(date(2026, 2, 23), 9), status=AppointmentStatus.COMPLETED)
        cancelled = await add_appointment(at(MONDAY, 10), status=AppointmentStatus.CANCELLED)
        await add_appointment(at(MONDAY, 11))

        response = await client.get(f"{BASE}/history", headers=patient_headers)

        body = response.json()
        assert body["total"] == 2
        assert body["hasMore"] is False
        assert [a["id"] for a in body["appointments"]] == [str(cancelled), str(past)]

        page = (await client.get(f"{BASE}/history", params={"limit": 1}, headers=patient_headers)).json()
        assert len(page["appointments"]) == 1
        assert page["hasMore"] is True

    async def test_reference_listings(self, client, patient_headers):
        types = (await client.get(f"{BASE}/types", headers=patient_headers)).json()
        assert [(t["name"], t["duration"]) for t in types] == [("Adjustment", 30)]

        providers = (await client.get(f"{BASE}/providers", headers=patient_headers)).json()
        assert [p["name"] for p in providers] == ["Dr. Jane Smith"]

        locations = (await client.get(f"{BASE}/locations", headers=patient_headers)).json()
        assert locations[0]["isPrimary"] is True
        assert locations[0]["address"]["zipCode"] == "62701"
        assert locations[0]["directionsUrl"].startswith("https://www.google.com/maps/dir/?api=1&destination=")

    async def test_calendar_event(self, client, patient_headers, add_appointment):
        appointment_id = await add_appointment(at(MONDAY, 9))

        response = await client.get(f"{BASE}/{appointment_id}/calendar-event", headers=patient_headers)

        assert response.status_code == 200
        event = response.json()
        assert event["description"] == "Chiropractic appointment"
        assert event["location"].startswith("Downtown, 100 Main St")


class TestPatientAuth:

    async def test_missing_token(self, client):
        response = await client.get(f"{BASE}/upcoming")
        assert response.status_code == 401

    async def test_garbage_token(self, client):
        response = await client.get(f"{BASE}/upcoming", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    async def test_staff_cannot_use_patient_endpoints(self, client, staff_headers):
        response = await client.get(f"{BASE}/upcoming", headers=staff_headers)
        assert response.status_code == 403

    async def test_other_patients_appointment_is_hidden(self, client, seed, patient_headers, add_appointment, session_factory):
        async with session_factory() as session:
            other = Patient(organization_id=seed.organization_id, first_name="Kim")
            session.add(other)
            await session.commit()

        appointment_id = await add_appointment(at(MONDAY, 9), patient_id=other.id)

        response = await client.post(f"{BASE}/{appointment_id}/cancel", headers=patient_headers)
        assert response.status_code == 404


class TestAppointmentTypeDuration:

    @pytest.fixture
    def zero_length_type(self, monkeypatch):
        async def _lookup(db, organization_id, appointment_type_id):
            return AppointmentType(
                id=appointment_type_id, organization_id=organization_id, name="Broken", duration=0, is_active=True
            )

        monkeypatch.setattr(appointment_service, "get_appointment_type", _lookup)

    async def test_slots_reject_non_positive_duration(self, client, seed, patient_headers, zero_length_type):
        response = await client.get(
            f"{BASE}/slots",
            params=slots_params(appointment_type_id=str(seed.appointment_type_id)),
            headers=patient_headers,
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Appointment type duration must be positive"

    async def test_booking_rejects_non_positive_duration(self, client, seed, patient_headers, session_factory, zero_length_type):
        response = await client.post(BASE, json=booking(seed), headers=patient_headers)

        assert response.status_code == 400
        assert response.json()["detail"] == "Appointment type duration must be positive"
        async with session_factory() as session:
            assert (await session.execute(select(Appointment))).scalars().all() == []

    async def test_store_refuses_non_positive_duration(self, seed, session_factory):
        async with session_factory() as session:
            session.add(AppointmentType(organization_id=seed.organization_id, name="Zero", duration=0))
            with pytest.raises(IntegrityError):
                await session.commit()
