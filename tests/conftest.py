"""pytest configuration and shared fixtures."""
from __future__ import annotations

import sys
from datetime import date, time
from pathlib import Path

import pytest

# Ensure the project root is available on sys.path so tests can import the studiohub package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from studiohub import create_app  # noqa: E402
from studiohub.extensions import db  # noqa: E402
from studiohub.models import (Appointment, AppointmentType, SessionBlock,  # noqa: E402
                              Studio, User)


@pytest.fixture
def app():
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "SECRET_KEY": "test-secret",
        "AUTO_COMPLETE_ON_READ": True,
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def ctx(app):
    """Push an application context for tests that call services directly."""
    with app.app_context():
        yield
        db.session.remove()


@pytest.fixture
def seed(app):
    """Owner, studio, customer and two appointment types; returns their ids."""
    with app.app_context():
        owner = User(name="Olga Owner", email="owner@example.com", role="studio_owner")
        db.session.add(owner)
        db.session.flush()

        studio = Studio(owner_id=owner.user_id, name="Body Studio", city="Berlin", machine_count=2)
        db.session.add(studio)
        db.session.flush()

        customer = User(
            name="Carla Customer",
            email="carla@example.com",
            role="customer",
            studio_id=studio.studio_id,
        )
        session_type = AppointmentType(
            studio_id=studio.studio_id, name="Treatment", duration_minutes=60, consumes_session=True
        )
        free_type = AppointmentType(
            studio_id=studio.studio_id,
            name="Consultation",
            duration_minutes=30,
            consumes_session=False,
            is_probe=True,
        )
        db.session.add_all([customer, session_type, free_type])
        db.session.commit()

        return {
            "owner_id": owner.user_id,
            "studio_id": studio.studio_id,
            "customer_id": customer.user_id,
            "session_type_id": session_type.appointment_type_id,
            "free_type_id": free_type.appointment_type_id,
        }


@pytest.fixture
def make_appointment(app, seed):
    def _make(
        appointment_date: date,
        start: time = time(9, 0),
        end: time = time(10, 0),
        status: str = "confirmed",
        appointment_type_id: int | None = None,
        customer_id: int | None = None,
    ) -> int:
        with app.app_context():
            appointment = Appointment(
                studio_id=seed["studio_id"],
                customer_id=customer_id or seed["customer_id"],
                appointment_type_id=appointment_type_id or seed["session_type_id"],
                appointment_date=appointment_date,
                start_time=start,
                end_time=end,
                status=status,
                created_by_user_id=seed["owner_id"],
            )
            db.session.add(appointment)
            db.session.commit()
            return appointment.appointment_id

    return _make


@pytest.fixture
def make_block(app, seed):
    def _make(
        total: int,
        used: int = 0,
        status: str = "active",
        block_order: int = 1,
        customer_id: int | None = None,
    ) -> int:
        with app.app_context():
            block = SessionBlock(
                customer_id=customer_id or seed["customer_id"],
                studio_id=seed["studio_id"],
                total_sessions=total,
                used_sessions=used,
                remaining_sessions=total - used,
                status=status,
                block_order=block_order,
            )
            db.session.add(block)
            db.session.commit()
            return block.block_id

    return _make
