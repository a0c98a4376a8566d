"""Database models for the StudioHub backend."""
from __future__ import annotations

from datetime import date, datetime, time, timezone

from .extensions import db


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _iso(value: date | time | datetime | None) -> str | None:
    return value.isoformat() if value else None


APPOINTMENT_STATUSES = (
    "pending",
    "scheduled",
    "confirmed",
    "cancelled",
    "completed",
    "no_show",
)

# Each terminal status carries at most one ledger effect.
TERMINAL_STATUSES = frozenset({"cancelled", "completed", "no_show"})

BLOCK_STATUSES = ("active", "pending", "completed")

TRANSACTION_TYPES = ("purchase", "deduction", "refund", "manual_adjustment")


class User(db.Model):
    __tablename__ = "users"

    user_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    role = db.Column(
        db.Enum(
            "customer",
            "studio_owner",
            "manager",
            "admin",
            name="user_role",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="customer",
    )
    phone = db.Column(db.String(30))
    # Customers belong to the studio that registered them.
    studio_id = db.Column(db.Integer, db.ForeignKey("studios.studio_id", use_alter=True), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    studio = db.relationship("Studio", foreign_keys=[studio_id])

    @property
    def is_staff(self) -> bool:
        return self.role in {"studio_owner", "manager", "admin"}

    def to_dict_basic(self) -> dict[str, object]:
        return {
            "id": self.user_id,
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "phone": self.phone,
            "studio_id": self.studio_id,
        }


class Studio(db.Model):
    __tablename__ = "studios"

    studio_id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    name = db.Column(db.String(150), nullable=False)
    address = db.Column(db.String(255))
    city = db.Column(db.String(100))
    phone = db.Column(db.String(30))
    # Number of appointments the studio can run at the same time.
    machine_count = db.Column(db.Integer, nullable=False, default=1, server_default="1")
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default="1")
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    owner = db.relationship("User", foreign_keys=[owner_id])

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.studio_id,
            "name": self.name,
            "address": self.address,
            "city": self.city,
            "phone": self.phone,
            "machine_count": self.machine_count,
            "is_active": bool(self.is_active),
            "owner": self.owner.to_dict_basic() if self.owner else None,
        }


class AppointmentType(db.Model):
    """Bookable treatment offered by a studio."""

    __tablename__ = "appointment_types"

    appointment_type_id = db.Column(db.Integer, primary_key=True)
    studio_id = db.Column(db.Integer, db.ForeignKey("studios.studio_id"), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False, default=60)
    # Free consultations and trial treatments do not draw from a session block.
    consumes_session = db.Column(db.Boolean, nullable=False, default=True, server_default="1")
    is_probe = db.Column(db.Boolean, nullable=False, default=False, server_default="0")
    description = db.Column(db.Text)
    color = db.Column(db.String(7), default="#28a745")
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default="1")
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    studio = db.relationship("Studio")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.appointment_type_id,
            "studio_id": self.studio_id,
            "name": self.name,
            "duration_minutes": self.duration_minutes,
            "consumes_session": bool(self.consumes_session),
            "is_probe": bool(self.is_probe),
            "description": self.description,
            "color": self.color,
            "is_active": bool(self.is_active),
        }


class Appointment(db.Model):
    """A scheduled treatment for a customer at a studio."""

    __tablename__ = "appointments"
    __table_args__ = (
        db.CheckConstraint("start_time < end_time", name="ck_appointments_time_window"),
        db.Index("ix_appointments_studio_date", "studio_id", "appointment_date"),
        db.Index("ix_appointments_status_date", "status", "appointment_date"),
    )

    appointment_id = db.Column(db.Integer, primary_key=True)
    studio_id = db.Column(db.Integer, db.ForeignKey("studios.studio_id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    appointment_type_id = db.Column(
        db.Integer, db.ForeignKey("appointment_types.appointment_type_id"), nullable=True
    )
    appointment_date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    status = db.Column(
        db.Enum(
            *APPOINTMENT_STATUSES,
            name="appointment_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="confirmed",
        server_default="confirmed",
    )
    cancelled_by = db.Column(
        db.Enum(
            "customer",
            "studio",
            "system",
            name="cancelled_by",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=True,
    )
    cancelled_at = db.Column(db.DateTime, nullable=True)
    session_consumed = db.Column(db.Boolean, nullable=False, default=False, server_default="0")
    notes = db.Column(db.Text)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    studio = db.relationship("Studio")
    customer = db.relationship("User", foreign_keys=[customer_id])
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    appointment_type = db.relationship("AppointmentType")

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.appointment_date, self.start_time)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.appointment_date, self.end_time)

    @property
    def consumes_session(self) -> bool:
        # Appointments without a type are billed like a regular session.
        if self.appointment_type is None:
            return True
        return bool(self.appointment_type.consumes_session)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.appointment_id,
            "studio_id": self.studio_id,
            "customer_id": self.customer_id,
            "customer": self.customer.to_dict_basic() if self.customer else None,
            "appointment_type_id": self.appointment_type_id,
            "appointment_type": self.appointment_type.to_dict() if self.appointment_type else None,
            "appointment_date": _iso(self.appointment_date),
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "status": self.status,
            "cancelled_by": self.cancelled_by,
            "cancelled_at": _iso(self.cancelled_at),
            "session_consumed": bool(self.session_consumed),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class SessionBlock(db.Model):
    """A purchased package of prepaid session credits."""

    __tablename__ = "session_blocks"
    __table_args__ = (
        db.CheckConstraint("used_sessions >= 0", name="ck_session_blocks_used"),
        db.CheckConstraint("remaining_sessions >= 0", name="ck_session_blocks_remaining"),
        db.CheckConstraint(
            "remaining_sessions = total_sessions - used_sessions",
            name="ck_session_blocks_balance",
        ),
        db.UniqueConstraint("customer_id", "studio_id", "block_order", name="uq_session_blocks_order"),
        db.Index("ix_session_blocks_queue", "customer_id", "studio_id", "status", "block_order"),
    )

    block_id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    studio_id = db.Column(db.Integer, db.ForeignKey("studios.studio_id"), nullable=False)
    total_sessions = db.Column(db.Integer, nullable=False)
    used_sessions = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    remaining_sessions = db.Column(db.Integer, nullable=False)
    status = db.Column(
        db.Enum(
            *BLOCK_STATUSES,
            name="session_block_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default="pending",
        server_default="pending",
    )
    block_order = db.Column(db.Integer, nullable=False)
    block_type = db.Column(db.String(50), nullable=False, default="standard", server_default="standard")
    purchase_date = db.Column(db.DateTime, nullable=False, default=utc_now)
    activated_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    expires_at = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    customer = db.relationship("User")
    studio = db.relationship("Studio")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.block_id,
            "customer_id": self.customer_id,
            "studio_id": self.studio_id,
            "total_sessions": self.total_sessions,
            "used_sessions": self.used_sessions,
            "remaining_sessions": self.remaining_sessions,
            "status": self.status,
            "block_order": self.block_order,
            "block_type": self.block_type,
            "purchase_date": _iso(self.purchase_date),
            "activated_at": _iso(self.activated_at),
            "completed_at": _iso(self.completed_at),
            "expires_at": _iso(self.expires_at),
            "notes": self.notes,
        }


class SessionTransaction(db.Model):
    """Append-only ledger row for every credit movement on a block."""

    __tablename__ = "session_transactions"

    transaction_id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    studio_id = db.Column(db.Integer, db.ForeignKey("studios.studio_id"), nullable=False)
    block_id = db.Column(db.Integer, db.ForeignKey("session_blocks.block_id"), nullable=False)
    appointment_id = db.Column(
        db.Integer, db.ForeignKey("appointments.appointment_id"), nullable=True
    )
    transaction_type = db.Column(
        db.Enum(
            *TRANSACTION_TYPES,
            name="session_transaction_type",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
    )
    # Deductions and refunds record 1; manual adjustments are signed.
    session_count = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.Text)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    block = db.relationship("SessionBlock")
    appointment = db.relationship("Appointment")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.transaction_id,
            "customer_id": self.customer_id,
            "studio_id": self.studio_id,
            "block_id": self.block_id,
            "appointment_id": self.appointment_id,
            "transaction_type": self.transaction_type,
            "session_count": self.session_count,
            "reason": self.reason,
            "created_by_user_id": self.created_by_user_id,
            "created_at": _iso(self.created_at),
        }
