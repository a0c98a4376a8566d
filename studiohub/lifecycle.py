"""Status transition rules for appointments.

``validate_transition`` is a pure decision function: it never touches the
database. Persistence and ledger effects are applied by the caller once a
transition has been accepted (see ``studiohub.appointments``).

Rules
-----
* ``cancelled`` is reachable from every non-terminal status at any time.
* ``completed`` is reachable from ``confirmed`` only. Staff may complete
  early; the automatic sweep only once the appointment has ended.
* ``no_show`` requires the appointment to have started.
* ``pending``, ``scheduled`` and ``confirmed`` move freely between each other.
* Nothing leaves a terminal status (``cancelled``, ``completed``, ``no_show``).
  Requesting the current status again is a no-op, never an error.
"""
from __future__ import annotations

from datetime import datetime

from .errors import InvalidStatus, InvalidTransition, ReasonCode
from .models import APPOINTMENT_STATUSES, TERMINAL_STATUSES, Appointment

# Spellings found in older data and clients. Accepted on input, never stored.
LEGACY_STATUS_ALIASES = {
    "ausstehend": "pending",
    "geplant": "scheduled",
    "bestätigt": "confirmed",
    "bestaetigt": "confirmed",
    "storniert": "cancelled",
    "abgesagt": "cancelled",
    "abgeschlossen": "completed",
    "absolviert": "completed",
    "nicht_erschienen": "no_show",
    "nicht erschienen": "no_show",
    "no-show": "no_show",
    "booked": "confirmed",
}

STATUS_LABELS = {
    "en": {
        "pending": "Pending",
        "scheduled": "Scheduled",
        "confirmed": "Confirmed",
        "cancelled": "Cancelled",
        "completed": "Completed",
        "no_show": "No show",
    },
    "de": {
        "pending": "Ausstehend",
        "scheduled": "Geplant",
        "confirmed": "Bestätigt",
        "cancelled": "Storniert",
        "completed": "Abgeschlossen",
        "no_show": "Nicht erschienen",
    },
}


def normalize_status(value: object) -> str:
    """Map a requested status onto the canonical enumeration."""
    if not isinstance(value, str):
        raise InvalidStatus(value)
    candidate = value.strip().lower()
    candidate = LEGACY_STATUS_ALIASES.get(candidate, candidate)
    if candidate not in APPOINTMENT_STATUSES:
        raise InvalidStatus(value)
    return candidate


def status_label(status: str, locale: str = "en") -> str:
    labels = STATUS_LABELS.get(locale, STATUS_LABELS["en"])
    return labels.get(status, status)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def _fmt(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M")


def validate_transition(
    appointment: Appointment,
    requested_status: str,
    now: datetime,
    *,
    automatic: bool = False,
) -> str:
    """Return the status to persist or raise :class:`InvalidTransition`.

    ``now`` is the studio's wall-clock time, compared against the naive
    appointment window. ``automatic`` marks a completion requested by the
    sweep rather than by a member of staff.
    """
    requested = normalize_status(requested_status)
    current = appointment.status
    starts_at = appointment.starts_at

    def reject(reason_code: str, message: str) -> InvalidTransition:
        return InvalidTransition(
            reason_code,
            message,
            current_status=current,
            requested_status=requested,
            appointment_start=starts_at,
            evaluated_at=now,
        )

    if requested == current:
        return requested

    if is_terminal(current):
        raise reject(
            ReasonCode.TERMINAL_STATE,
            f"Appointment is already {current} and cannot be changed to {requested}",
        )

    if requested == "cancelled":
        return requested

    if requested == "completed":
        if current != "confirmed":
            raise reject(
                ReasonCode.NOT_CONFIRMED,
                f"Only confirmed appointments can be completed (current status: {current})",
            )
        if automatic and now < appointment.ends_at:
            raise reject(
                ReasonCode.NOT_ENDED,
                f"Appointment ends at {_fmt(appointment.ends_at)}, it is now {_fmt(now)}",
            )
        return requested

    if requested == "no_show":
        if now < starts_at:
            raise reject(
                ReasonCode.NOT_STARTED,
                f"Appointment starts at {_fmt(starts_at)}, it is now {_fmt(now)}",
            )
        return requested

    # pending / scheduled / confirmed
    return requested
