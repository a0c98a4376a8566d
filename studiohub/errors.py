"""Domain errors raised by the appointment lifecycle and the session ledger."""
from __future__ import annotations

from datetime import datetime


class ReasonCode:
    NOT_STARTED = "NOT_STARTED"
    NOT_ENDED = "NOT_ENDED"
    NOT_CONFIRMED = "NOT_CONFIRMED"
    TERMINAL_STATE = "TERMINAL_STATE"
    ALREADY_CONSUMED = "ALREADY_CONSUMED"
    NO_CREDIT_AVAILABLE = "NO_CREDIT_AVAILABLE"
    NOT_CONSUMING = "NOT_CONSUMING"
    NOT_CONSUMED = "NOT_CONSUMED"
    LEDGER_INCONSISTENT = "LEDGER_INCONSISTENT"
    DATABASE_ERROR = "DATABASE_ERROR"


class RecordNotFound(LookupError):
    """A referenced row (studio, customer, appointment type, ...) does not exist."""

    def __init__(self, entity: str, record_id: object) -> None:
        super().__init__(f"{entity} {record_id} not found")
        self.entity = entity
        self.record_id = record_id


class AppointmentNotFound(RecordNotFound):
    def __init__(self, appointment_id: int) -> None:
        super().__init__("Appointment", appointment_id)
        self.appointment_id = appointment_id


class ValidationError(ValueError):
    """Request data is missing or malformed."""


class ConflictError(Exception):
    """The request collides with existing data (capacity, ledger history)."""


class InvalidStatus(ValueError):
    """Requested status is not part of the canonical enumeration."""

    def __init__(self, value: object) -> None:
        super().__init__(f"Unknown appointment status: {value!r}")
        self.value = value


class InvalidTransition(Exception):
    """A status change was rejected by the transition rules.

    Carries the appointment's scheduled start and the time the rule was
    evaluated at so callers can explain the rejection to an end user.
    """

    def __init__(
        self,
        reason_code: str,
        message: str,
        *,
        current_status: str,
        requested_status: str,
        appointment_start: datetime,
        evaluated_at: datetime,
    ) -> None:
        super().__init__(message)
        self.reason_code = reason_code
        self.message = message
        self.current_status = current_status
        self.requested_status = requested_status
        self.appointment_start = appointment_start
        self.evaluated_at = evaluated_at

    def to_dict(self) -> dict[str, object]:
        return {
            "error": "invalid_transition",
            "reason_code": self.reason_code,
            "message": self.message,
            "current_status": self.current_status,
            "requested_status": self.requested_status,
            "appointment_start": self.appointment_start.isoformat(),
            "evaluated_at": self.evaluated_at.isoformat(),
        }


class LedgerError(Exception):
    reason_code = ReasonCode.LEDGER_INCONSISTENT


class InconsistentLedgerState(LedgerError):
    """The ledger and the session blocks disagree; needs an operator."""

    reason_code = ReasonCode.LEDGER_INCONSISTENT

    def __init__(
        self,
        message: str,
        *,
        appointment_id: int | None = None,
        block_id: int | None = None,
        delta: int | None = None,
    ) -> None:
        super().__init__(message)
        self.appointment_id = appointment_id
        self.block_id = block_id
        self.delta = delta


class NothingToReverse(LedgerError):
    reason_code = ReasonCode.NOT_CONSUMED


class LedgerInputError(ValidationError):
    """Bad manual ledger request (unknown block, invalid count, ...)."""


class SessionBlockNotFound(RecordNotFound):
    def __init__(self, block_id: int) -> None:
        super().__init__("Session block", block_id)
        self.block_id = block_id
