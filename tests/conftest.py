"""
Pytest fixtures: fresh in-memory SQLite per test, a couple of doctors and
patients, and a fixed clock for service-level tests.
"""

from datetime import date, datetime, time, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from slotbook.clock import first_editable_date
from slotbook.database import init_db
from slotbook.models import Doctor, Patient
from slotbook.services import inventory

# Fixed clock for service tests (all deadlines are naive UTC)
T0 = datetime(2030, 1, 10, 10, 0, 0)
DAY = date(2030, 1, 20)


def make_engine(url: str = "sqlite://"):
    if url == "sqlite://":
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})
    init_db(bind=engine)
    return engine


@pytest.fixture
def session_factory():
    engine = make_engine()
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def doctor(db):
    doc = Doctor(name="Dr. Asha Rao", specialization="Cardiology", contact="+910000000001",
                 minimum_slot_duration=30, opd_fees=500)
    db.add(doc)
    db.commit()
    return doc


@pytest.fixture
def other_doctor(db):
    doc = Doctor(name="Dr. Vikram Shah", specialization="Dermatology", minimum_slot_duration=15, opd_fees=300)
    db.add(doc)
    db.commit()
    return doc


@pytest.fixture
def alice(db):
    p = Patient(name="Alice", contact="+910000000101")
    db.add(p)
    db.commit()
    return p


@pytest.fixture
def bob(db):
    p = Patient(name="Bob", contact="+910000000102")
    db.add(p)
    db.commit()
    return p


@pytest.fixture
def slots(db, doctor):
    """Four 30-minute FREE slots on DAY, 09:00-11:00."""
    return inventory.create_slots(db, doctor.id, DAY, time(9, 0), time(11, 0), now=T0)


@pytest.fixture
def slot(slots):
    return slots[0]


# ──────────────────────────────────────────────────────────────────────────────
# API
# ──────────────────────────────────────────────────────────────────────────────
@pytest.fixture
def client(db):
    """TestClient bound to the per-test database. Startup (scheduler) is not run."""
    from fastapi.testclient import TestClient

    from slotbook.database import get_db
    from slotbook.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def api_day():
    """A date the calendar accepts edits for, relative to the real clock."""
    return first_editable_date() + timedelta(days=3)


@pytest.fixture
def api_slots(client, doctor, api_day):
    resp = client.post(
        "/doctor/availability/date-slots/create",
        json={"date": api_day.isoformat(), "start_time": "09:00", "end_time": "10:30"},
        headers={"X-Doctor-Id": str(doctor.id)},
    )
    assert resp.status_code == 201
    return resp.json()["slots"]
