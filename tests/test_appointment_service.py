"""Tests for status changes, the auto-completion sweep and booking."""
from __future__ import annotations

from datetime import date, datetime, time

import pytest

from studiohub import appointments as service
from studiohub.errors import (AppointmentNotFound, ConflictError, InconsistentLedgerState,
                              InvalidTransition, ReasonCode, RecordNotFound, ValidationError)
from studiohub.extensions import db
from studiohub.models import Appointment, SessionBlock, SessionTransaction

DAY = date(2026, 3, 2)


def at(hour: int, minute: int = 0, day: date = DAY) -> datetime:
    return datetime.combine(day, time(hour, minute))


def test_no_show_scenario(ctx, make_appointment) -> None:
    appointment_id = make_appointment(DAY, time(9, 0), time(10, 0))

    with pytest.raises(InvalidTransition) as excinfo:
        service.change_status(appointment_id, "no_show", now=at(8))
    assert excinfo.value.reason_code == ReasonCode.NOT_STARTED
    assert db.session.get(Appointment, appointment_id).status == "confirmed"

    change = service.change_status(appointment_id, "no_show", now=at(9, 30))
    assert change.changed is True
    assert change.status == "no_show"
    assert db.session.get(Appointment, appointment_id).status == "no_show"


def test_completing_with_last_credit(ctx, seed, make_appointment, make_block) -> None:
    block_id = make_block(total=8, used=7)
    appointment_id = make_appointment(DAY)

    change = service.change_status(appointment_id, "completed", seed["owner_id"], now=at(10, 5))

    assert change.outcome == "DEDUCTED"
    block = db.session.get(SessionBlock, block_id)
    assert (block.remaining_sessions, block.status) == (0, "completed")
    row = SessionTransaction.query.filter_by(block_id=block_id, transaction_type="deduction").one()
    assert row.session_count == 1
    assert row.created_by_user_id == seed["owner_id"]


def test_completing_twice_deducts_once(ctx, make_appointment, make_block) -> None:
    block_id = make_block(total=5)
    appointment_id = make_appointment(DAY)

    service.change_status(appointment_id, "completed", now=at(11))
    again = service.change_status(appointment_id, "completed", now=at(11))

    assert again.changed is False
    assert again.outcome == ReasonCode.ALREADY_CONSUMED
    assert db.session.get(SessionBlock, block_id).remaining_sessions == 4


def test_completion_without_credit_still_completes(ctx, make_appointment) -> None:
    appointment_id = make_appointment(DAY)

    change = service.change_status(appointment_id, "completed", now=at(11))

    assert change.outcome == ReasonCode.NO_CREDIT_AVAILABLE
    appointment = db.session.get(Appointment, appointment_id)
    assert appointment.status == "completed"
    assert appointment.session_consumed is False


def test_ledger_failure_rolls_back_status(ctx, make_appointment, make_block) -> None:
    make_block(total=2, used=2, status="active")
    appointment_id = make_appointment(DAY)

    with pytest.raises(InconsistentLedgerState):
        service.change_status(appointment_id, "completed", now=at(11))

    appointment = db.session.get(Appointment, appointment_id)
    assert appointment.status == "confirmed"
    assert appointment.session_consumed is False
    assert SessionTransaction.query.count() == 0


def test_cancel_records_who_cancelled(ctx, seed, make_appointment) -> None:
    by_customer = make_appointment(DAY, time(9, 0), time(10, 0))
    by_studio = make_appointment(DAY, time(11, 0), time(12, 0))
    by_system = make_appointment(DAY, time(13, 0), time(14, 0))

    service.change_status(by_customer, "cancelled", seed["customer_id"], now=at(8))
    service.change_status(by_studio, "cancelled", seed["owner_id"], now=at(8))
    service.change_status(by_system, "cancelled", now=at(8))

    assert db.session.get(Appointment, by_customer).cancelled_by == "customer"
    assert db.session.get(Appointment, by_studio).cancelled_by == "studio"
    system = db.session.get(Appointment, by_system)
    assert system.cancelled_by == "system"
    assert system.cancelled_at is not None


def test_unknown_appointment(ctx) -> None:
    with pytest.raises(AppointmentNotFound):
        service.change_status(404, "cancelled", now=at(8))


def test_reverse_appointment_completion_keeps_status(ctx, make_appointment, make_block) -> None:
    block_id = make_block(total=3)
    appointment_id = make_appointment(DAY)
    service.change_status(appointment_id, "completed", now=at(11))

    appointment, result = service.reverse_appointment_completion(appointment_id, reason="Refund")

    assert result.outcome == "REFUNDED"
    assert appointment.status == "completed"
    assert appointment.session_consumed is False
    assert db.session.get(SessionBlock, block_id).remaining_sessions == 3


def test_sweep_completes_ended_confirmed_appointments(ctx, seed, make_appointment, make_block) -> None:
    block_id = make_block(total=10)
    ended_yesterday = make_appointment(date(2026, 3, 1), time(9, 0), time(10, 0))
    ended_today = make_appointment(DAY, time(8, 0), time(9, 0))
    running = make_appointment(DAY, time(9, 30), time(10, 30))
    pending = make_appointment(date(2026, 3, 1), time(11, 0), time(12, 0), status="pending")
    free = make_appointment(
        date(2026, 3, 1), time(13, 0), time(14, 0), appointment_type_id=seed["free_type_id"]
    )

    result = service.sweep_auto_completions(now=at(10))

    assert result.updated_count == 3
    assert result.failures == []
    statuses = {
        appointment_id: db.session.get(Appointment, appointment_id).status
        for appointment_id in (ended_yesterday, ended_today, running, pending, free)
    }
    assert statuses == {
        ended_yesterday: "completed",
        ended_today: "completed",
        running: "confirmed",
        pending: "pending",
        free: "completed",
    }
    assert db.session.get(SessionBlock, block_id).remaining_sessions == 8
    rows = SessionTransaction.query.filter_by(transaction_type="deduction").all()
    assert all(row.created_by_user_id is None for row in rows)


def test_sweep_is_idempotent(ctx, make_appointment, make_block) -> None:
    block_id = make_block(total=10)
    make_appointment(date(2026, 3, 1))
    make_appointment(DAY, time(7, 0), time(8, 0))

    first = service.sweep_auto_completions(now=at(12))
    second = service.sweep_auto_completions(now=at(12))

    assert first.updated_count == 2
    assert second.updated_count == 0
    assert second.failures == []
    assert db.session.get(SessionBlock, block_id).remaining_sessions == 8


def test_sweep_tolerates_partial_failure(ctx, app, seed, make_appointment, make_block) -> None:
    from studiohub.models import User

    with app.app_context():
        broken = User(name="Broken", email="broken@example.com", role="customer")
        db.session.add(broken)
        db.session.commit()
        broken_id = broken.user_id

    make_block(total=1, used=1, status="active", customer_id=broken_id)
    make_block(total=5)
    failing = make_appointment(date(2026, 3, 1), customer_id=broken_id)
    healthy = make_appointment(date(2026, 3, 1), time(11, 0), time(12, 0))

    result = service.sweep_auto_completions(now=at(12))

    assert result.updated_count == 1
    assert result.failures == [
        {"appointment_id": failing, "reason_code": ReasonCode.LEDGER_INCONSISTENT}
    ]
    assert db.session.get(Appointment, failing).status == "confirmed"
    assert db.session.get(Appointment, healthy).status == "completed"


def test_sweep_limited_to_studio(ctx, seed, make_appointment) -> None:
    make_appointment(date(2026, 3, 1))

    result = service.sweep_auto_completions(seed["studio_id"] + 1, now=at(12))

    assert result.updated_count == 0


def test_sweep_counts_completions_without_credit(ctx, make_appointment) -> None:
    make_appointment(date(2026, 3, 1))

    result = service.sweep_auto_completions(now=at(12))

    assert result.updated_count == 1
    assert result.completed_without_credit == 1


def test_create_appointment_derives_end_from_type(ctx, seed) -> None:
    appointment = service.create_appointment(
        studio_id=seed["studio_id"],
        customer_id=seed["customer_id"],
        appointment_type_id=seed["free_type_id"],
        appointment_date=DAY,
        start_time=time(9, 0),
        created_by_user_id=seed["owner_id"],
    )

    assert appointment.end_time == time(9, 30)
    assert appointment.status == "confirmed"
    assert appointment.session_consumed is False


def test_create_appointment_validation(ctx, seed) -> None:
    common = {"studio_id": seed["studio_id"], "customer_id": seed["customer_id"], "appointment_date": DAY}

    with pytest.raises(ValidationError):
        service.create_appointment(start_time=time(10, 0), end_time=time(9, 0), **common)
    with pytest.raises(ValidationError):
        service.create_appointment(start_time=time(10, 0), **common)
    with pytest.raises(ValidationError):
        service.create_appointment(
            start_time=time(10, 0), end_time=time(11, 0), status="completed", **common
        )
    with pytest.raises(RecordNotFound):
        service.create_appointment(
            start_time=time(10, 0), end_time=time(11, 0), appointment_type_id=999, **common
        )


def test_create_appointment_respects_machine_count(ctx, seed) -> None:
    booking = {
        "studio_id": seed["studio_id"],
        "customer_id": seed["customer_id"],
        "appointment_date": DAY,
        "start_time": time(9, 0),
        "end_time": time(10, 0),
    }
    service.create_appointment(**booking)
    service.create_appointment(**booking)

    with pytest.raises(ConflictError):
        service.create_appointment(**booking)

    # A slot that only touches the booked window is free.
    service.create_appointment(**{**booking, "start_time": time(10, 0), "end_time": time(11, 0)})


def test_delete_appointment_refuses_ledger_history(ctx, make_appointment, make_block) -> None:
    make_block(total=3)
    charged = make_appointment(DAY, time(9, 0), time(10, 0))
    plain = make_appointment(DAY, time(11, 0), time(12, 0))
    service.change_status(charged, "completed", now=at(12))

    with pytest.raises(ConflictError):
        service.delete_appointment(charged)

    service.delete_appointment(plain)
    assert db.session.get(Appointment, plain) is None


def test_repeat_completion_of_free_type_is_not_already_consumed(ctx, seed, make_appointment, make_block) -> None:
    block_id = make_block(total=5)
    appointment_id = make_appointment(DAY, appointment_type_id=seed["free_type_id"])

    first = service.change_status(appointment_id, "completed", now=at(11))
    again = service.change_status(appointment_id, "completed", now=at(11))

    assert first.outcome == ReasonCode.NOT_CONSUMING
    assert again.changed is False
    assert again.outcome is None
    assert again.to_dict()["outcome"] is None
    assert db.session.get(SessionBlock, block_id).remaining_sessions == 5


def test_repeat_completion_without_credit_is_not_already_consumed(ctx, make_appointment) -> None:
    appointment_id = make_appointment(DAY)

    first = service.change_status(appointment_id, "completed", now=at(11))
    again = service.change_status(appointment_id, "completed", now=at(11))

    assert first.outcome == ReasonCode.NO_CREDIT_AVAILABLE
    assert again.changed is False
    assert again.outcome is None
    assert db.session.get(Appointment, appointment_id).session_consumed is False
