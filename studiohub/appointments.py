"""Appointment booking, status changes and the auto-completion sweep.

Each status change is one database transaction: the appointment row is
locked, the transition validated, the ledger effect staged and everything
committed together, or rolled back together on any failure.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError

from .errors import (AppointmentNotFound, ConflictError, InvalidTransition, LedgerError,
                     ReasonCode, RecordNotFound, ValidationError)
from .extensions import db
from .ledger import LedgerResult, apply_completion, reverse_completion
from .lifecycle import normalize_status, validate_transition
from .models import (Appointment, AppointmentType, SessionTransaction, Studio, User,
                     utc_now)

logger = logging.getLogger(__name__)

BOOKABLE_STATUSES = ("pending", "scheduled", "confirmed")


def studio_now() -> datetime:
    """Current wall-clock time in the studio's local time."""
    return datetime.now()


@dataclass
class StatusChange:
    appointment: Appointment
    previous_status: str
    status: str
    changed: bool
    ledger: LedgerResult | None = None

    @property
    def outcome(self) -> str | None:
        if self.ledger is not None:
            return self.ledger.outcome
        if not self.changed and self.status == "completed" and self.appointment.session_consumed:
            return ReasonCode.ALREADY_CONSUMED
        return None

    def to_dict(self) -> dict[str, object]:
        return {
            "appointment": self.appointment.to_dict(),
            "previous_status": self.previous_status,
            "status": self.status,
            "changed": self.changed,
            "outcome": self.outcome,
            "ledger": self.ledger.to_dict() if self.ledger else None,
        }


@dataclass
class SweepResult:
    updated_count: int = 0
    completed_without_credit: int = 0
    failures: list[dict[str, object]] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "updated_count": self.updated_count,
            "completed_without_credit": self.completed_without_credit,
            "failures": self.failures,
        }


def _lock_appointment(appointment_id: int) -> Appointment | None:
    stmt = (
        db.select(Appointment)
        .where(Appointment.appointment_id == appointment_id)
        .with_for_update()
    )
    return db.session.execute(stmt).scalar_one_or_none()


def _cancelled_by(acting_user_id: int | None) -> str:
    if acting_user_id is None:
        return "system"
    user = db.session.get(User, acting_user_id)
    if user is None:
        return "system"
    return "customer" if user.role == "customer" else "studio"


def change_status(
    appointment_id: int,
    requested_status: str,
    acting_user_id: int | None = None,
    *,
    now: datetime | None = None,
    automatic: bool = False,
) -> StatusChange:
    """Validate and persist a status change together with its ledger effect."""
    now = now or studio_now()
    try:
        appointment = _lock_appointment(appointment_id)
        if appointment is None:
            raise AppointmentNotFound(appointment_id)

        previous = appointment.status
        new_status = validate_transition(appointment, requested_status, now, automatic=automatic)

        if new_status == previous:
            db.session.commit()
            return StatusChange(appointment, previous, new_status, changed=False)

        ledger = None
        if new_status == "completed":
            ledger = apply_completion(
                appointment,
                acting_user_id=acting_user_id,
                reason="Automatic session deduction for completed past appointment" if automatic else None,
            )
        elif new_status == "cancelled":
            appointment.cancelled_at = utc_now()
            appointment.cancelled_by = _cancelled_by(acting_user_id)

        appointment.status = new_status
        db.session.commit()
    except LedgerError as exc:
        db.session.rollback()
        logger.error(
            "Ledger failure changing appointment %s to %s: %s",
            appointment_id,
            requested_status,
            exc,
        )
        raise
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Appointment %s: %s -> %s (%s)",
        appointment_id,
        previous,
        new_status,
        ledger.outcome if ledger else "no ledger effect",
    )
    return StatusChange(appointment, previous, new_status, changed=True, ledger=ledger)


def reverse_appointment_completion(
    appointment_id: int,
    acting_user_id: int | None = None,
    reason: str | None = None,
) -> tuple[Appointment, LedgerResult]:
    """Refund the credit of a completed appointment; its status is kept."""
    try:
        appointment = _lock_appointment(appointment_id)
        if appointment is None:
            raise AppointmentNotFound(appointment_id)
        result = reverse_completion(appointment, acting_user_id=acting_user_id, reason=reason)
        db.session.commit()
    except LedgerError as exc:
        db.session.rollback()
        logger.error("Failed to reverse completion of appointment %s: %s", appointment_id, exc)
        raise
    except Exception:
        db.session.rollback()
        raise
    return appointment, result


def _due_for_completion(now: datetime):
    today = now.date()
    return and_(
        Appointment.status == "confirmed",
        or_(
            Appointment.appointment_date < today,
            and_(Appointment.appointment_date == today, Appointment.end_time <= now.time()),
        ),
    )


def sweep_auto_completions(studio_id: int | None = None, *, now: datetime | None = None) -> SweepResult:
    """Complete every confirmed appointment whose end time has passed.

    Rows are handled one transaction at a time, so one ledger failure does
    not hold back the others. Re-running is safe: completed rows no longer
    match the ``confirmed`` filter.
    """
    now = now or studio_now()
    stmt = db.select(Appointment.appointment_id).where(_due_for_completion(now))
    if studio_id is not None:
        stmt = stmt.where(Appointment.studio_id == studio_id)
    appointment_ids = db.session.execute(stmt.order_by(Appointment.appointment_id)).scalars().all()

    result = SweepResult()
    for appointment_id in appointment_ids:
        try:
            change = change_status(appointment_id, "completed", None, now=now, automatic=True)
        except InvalidTransition as exc:
            if exc.reason_code == ReasonCode.TERMINAL_STATE:
                # Changed by someone else since the candidate query ran.
                continue
            result.failures.append({"appointment_id": appointment_id, "reason_code": exc.reason_code})
        except LedgerError as exc:
            result.failures.append({"appointment_id": appointment_id, "reason_code": exc.reason_code})
        except SQLAlchemyError:
            logger.exception("Database error auto-completing appointment %s", appointment_id)
            result.failures.append(
                {"appointment_id": appointment_id, "reason_code": ReasonCode.DATABASE_ERROR}
            )
        else:
            if change.changed:
                result.updated_count += 1
                if change.outcome == ReasonCode.NO_CREDIT_AVAILABLE:
                    result.completed_without_credit += 1

    if appointment_ids:
        logger.info(
            "Auto-completion sweep%s: %s updated, %s failed",
            f" for studio {studio_id}" if studio_id is not None else "",
            result.updated_count,
            len(result.failures),
        )
    return result


# ---------------------------------------------------------------------------
# Booking and listings
# ---------------------------------------------------------------------------

def create_appointment(
    *,
    studio_id: int,
    customer_id: int,
    appointment_date: date,
    start_time: time,
    end_time: time | None = None,
    appointment_type_id: int | None = None,
    status: str = "confirmed",
    notes: str | None = None,
    created_by_user_id: int | None = None,
) -> Appointment:
    studio = db.session.get(Studio, studio_id)
    if studio is None:
        raise RecordNotFound("Studio", studio_id)

    customer = db.session.get(User, customer_id)
    if customer is None:
        raise RecordNotFound("Customer", customer_id)

    appointment_type = None
    if appointment_type_id is not None:
        appointment_type = db.session.get(AppointmentType, appointment_type_id)
        if appointment_type is None or appointment_type.studio_id != studio_id:
            raise RecordNotFound("Appointment type", appointment_type_id)

    status = normalize_status(status)
    if status not in BOOKABLE_STATUSES:
        raise ValidationError(f"New appointments must be one of: {', '.join(BOOKABLE_STATUSES)}")

    if end_time is None:
        if appointment_type is None:
            raise ValidationError("end_time is required when no appointment type is given")
        end_time = (
            datetime.combine(appointment_date, start_time)
            + timedelta(minutes=appointment_type.duration_minutes)
        ).time()

    if start_time >= end_time:
        raise ValidationError("start_time must be before end_time")

    overlapping = Appointment.query.filter(
        Appointment.studio_id == studio_id,
        Appointment.appointment_date == appointment_date,
        Appointment.status.notin_(("cancelled", "no_show")),
        Appointment.start_time < end_time,
        Appointment.end_time > start_time,
    ).count()
    if overlapping >= (studio.machine_count or 1):
        raise ConflictError("The studio is fully booked for this time slot")

    appointment = Appointment(
        studio_id=studio_id,
        customer_id=customer_id,
        appointment_type_id=appointment_type_id,
        appointment_date=appointment_date,
        start_time=start_time,
        end_time=end_time,
        status=status,
        notes=notes,
        created_by_user_id=created_by_user_id,
    )
    db.session.add(appointment)
    db.session.commit()
    logger.info("Booked appointment %s for customer %s at studio %s", appointment.appointment_id, customer_id, studio_id)
    return appointment


def delete_appointment(appointment_id: int) -> None:
    """Remove an appointment row. Rows with ledger history are kept."""
    appointment = db.session.get(Appointment, appointment_id)
    if appointment is None:
        raise AppointmentNotFound(appointment_id)

    has_ledger_rows = db.session.execute(
        db.select(SessionTransaction.transaction_id)
        .where(SessionTransaction.appointment_id == appointment_id)
        .limit(1)
    ).first()
    if appointment.session_consumed or has_ledger_rows:
        raise ConflictError("Appointment has session ledger entries and cannot be deleted")

    db.session.delete(appointment)
    db.session.commit()
    logger.info("Deleted appointment %s", appointment_id)


def list_studio_appointments(
    studio_id: int,
    *,
    status: str | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
) -> list[Appointment]:
    query = Appointment.query.filter(Appointment.studio_id == studio_id)
    if status:
        query = query.filter(Appointment.status == normalize_status(status))
    if from_date:
        query = query.filter(Appointment.appointment_date >= from_date)
    if to_date:
        query = query.filter(Appointment.appointment_date <= to_date)
    return query.order_by(Appointment.appointment_date.asc(), Appointment.start_time.asc()).all()


def list_customer_appointments(customer_id: int) -> list[Appointment]:
    return (
        Appointment.query.filter(Appointment.customer_id == customer_id)
        .order_by(Appointment.appointment_date.desc(), Appointment.start_time.desc())
        .all()
    )
