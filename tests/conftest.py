from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient

from core.clock import fixed_clock, get_clock
from core.security import create_access_token
from database.postgres import build_engine, build_sessionmaker, create_tables, get_db
from main import app
from schemas.enum import AppointmentStatus, DayOfWeek
from schemas.schemas import (
    Appointment,
    AppointmentType,
    Location,
    Organization,
    Patient,
    Provider,
    ProviderSchedule,
)
from tests.factories import NOW


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'scheduling.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
async def seed(session_factory):
    """One organization with a patient, a provider working Monday 09:00-12:00 and a 30 minute visit."""
    async with session_factory() as session:
        org = Organization(name="Spine & Wellness", timezone="UTC")
        session.add(org)
        await session.flush()

        patient = Patient(organization_id=org.id, first_name="Alex", last_name="Rivera", email="alex@example.com")
        provider = Provider(
            organization_id=org.id,
            title="Dr.",
            first_name="Jane",
            last_name="Smith",
            specialty="Chiropractic",
            is_active=True,
            sort_order=0,
        )
        appointment_type = AppointmentType(
            organization_id=org.id,
            name="Adjustment",
            duration=30,
            is_active=True,
            sort_order=0,
        )
        location = Location(
            organization_id=org.id,
            name="Downtown",
            address_line1="100 Main St",
            city="Springfield",
            state="IL",
            zip_code="62701",
            is_primary=True,
            is_active=True,
        )
        session.add_all([patient, provider, appointment_type, location])
        await session.flush()

        session.add(
            ProviderSchedule(
                provider_id=provider.id,
                day_of_week=DayOfWeek.MONDAY,
                start_time="09:00",
                end_time="12:00",
                is_active=True,
            )
        )
        await session.commit()

        return SimpleNamespace(
            organization_id=org.id,
            patient_id=patient.id,
            provider_id=provider.id,
            appointment_type_id=appointment_type.id,
            location_id=location.id,
        )


@pytest.fixture
def add_appointment(session_factory, seed):
    async def _add(start: datetime, status=AppointmentStatus.SCHEDULED, minutes: int = 30, **fields):
        async with session_factory() as session:
            appointment = Appointment(
                organization_id=seed.organization_id,
                patient_id=fields.pop("patient_id", seed.patient_id),
                provider_id=fields.pop("provider_id", seed.provider_id),
                appointment_type_id=seed.appointment_type_id,
                location_id=fields.pop("location_id", seed.location_id),
                start_time=start,
                end_time=start + timedelta(minutes=minutes),
                status=status,
                **fields,
            )
            session.add(appointment)
            await session.commit()
            return appointment.id

    return _add


@pytest.fixture
def set_now():
    def _set(instant: datetime):
        app.dependency_overrides[get_clock] = lambda: fixed_clock(instant)

    return _set


@pytest.fixture
async def client(session_factory, seed):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: fixed_clock(NOW)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def patient_headers(seed):
    token = create_access_token(
        seed.patient_id,
        {"org": str(seed.organization_id), "role": "patient", "patient_id": str(seed.patient_id)},
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def staff_headers(seed):
    token = create_access_token(
        "front-desk-1",
        {"org": str(seed.organization_id), "role": "staff"},
    )
    return {"Authorization": f"Bearer {token}"}
