"""HTTP routes for the StudioHub backend."""
from __future__ import annotations

from datetime import date, time

from flask import Blueprint, Flask, current_app, jsonify, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from . import appointments as appointment_service
from . import ledger
from .errors import (ConflictError, InvalidStatus, InvalidTransition, LedgerError,
                     NothingToReverse, RecordNotFound, ValidationError)
from .extensions import db
from .lifecycle import status_label
from .models import Appointment, AppointmentType, Studio, User

bp = Blueprint("api", __name__)

_TRUE_STRINGS = {"true", "1"}
_FALSE_STRINGS = {"false", "0"}


def register_routes(app: Flask) -> None:
    app.register_blueprint(bp)


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------

def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt="auth-token")


def build_token(user_id: int) -> str:
    return _serializer().dumps({"user_id": user_id})


def get_token_identity() -> int | None:
    """Return the user_id carried by a valid bearer token, if any."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None

    token = auth_header[7:]
    try:
        payload = _serializer().loads(token, max_age=current_app.config["AUTH_TOKEN_MAX_AGE"])
    except (BadSignature, SignatureExpired):
        return None
    return payload.get("user_id")


def resolve_acting_user(payload: dict[str, object]) -> int | None:
    """Acting user from the bearer token, else ``acting_user_id`` in the body."""
    user_id = get_token_identity()
    if user_id is None:
        user_id = payload.get("acting_user_id")
    if user_id is None:
        return None
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        raise ValidationError("acting_user_id must be an integer")
    if db.session.get(User, user_id) is None:
        raise RecordNotFound("User", user_id)
    return user_id


def _parse_date(value: object, field: str) -> date:
    try:
        return date.fromisoformat(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a date in YYYY-MM-DD format") from None


def _parse_time(value: object, field: str) -> time:
    try:
        return time.fromisoformat(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a time in HH:MM format") from None


def _optional_int(value: object, field: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer") from None


def _parse_flag(value: object, field: str, default: bool) -> bool:
    """JSON booleans, or the strings true/false/1/0."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        candidate = value.strip().lower()
        if candidate in _TRUE_STRINGS:
            return True
        if candidate in _FALSE_STRINGS:
            return False
    raise ValidationError(f"{field} must be a boolean")


def _not_found(exc: RecordNotFound):
    return jsonify({"error": "not_found", "message": str(exc)}), 404


def _invalid(exc: Exception, error: str = "invalid_payload"):
    return jsonify({"error": error, "message": str(exc)}), 400


def _ledger_failure(exc: LedgerError):
    current_app.logger.exception("Session ledger failure", exc_info=exc)
    return (
        jsonify({
            "error": "ledger_inconsistent",
            "reason_code": exc.reason_code,
            "message": "The session ledger is inconsistent; an operator has been notified",
        }),
        500,
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@bp.get("/health")
def health_check() -> tuple[dict[str, str], int]:
    """
    Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
        schema:
          type: object
          properties:
            status:
              type: string
              example: ok
    """
    return jsonify({"status": "ok"}), 200


@bp.get("/db-health")
def database_health() -> tuple[dict[str, str], int]:
    """Check connectivity to the configured database.
    ---
    tags:
      - Health
    responses:
      200:
        description: Database connection is ok.
        schema:
          type: object
          properties:
            database:
              type: string
              example: ok
      500:
        description: Database connection failed.
    """
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        current_app.logger.exception("Database connectivity check failed", exc_info=exc)
        return jsonify({"database": "unavailable"}), 500

    return jsonify({"database": "ok"}), 200


# ---------------------------------------------------------------------------
# Appointment types
# ---------------------------------------------------------------------------

@bp.get("/studios/<int:studio_id>/appointment-types")
def list_appointment_types(studio_id: int) -> tuple[dict[str, object], int]:
    """List the active appointment types of a studio.
    ---
    tags:
      - Appointment Types
    parameters:
      - name: studio_id
        in: path
        type: integer
        required: true
    responses:
      200:
        description: Appointment types ordered by name
      404:
        description: Studio not found
      500:
        description: Database error
    """
    try:
        if db.session.get(Studio, studio_id) is None:
            return jsonify({"error": "not_found", "message": "Studio not found"}), 404

        types = (
            AppointmentType.query.filter_by(studio_id=studio_id, is_active=True)
            .order_by(AppointmentType.name.asc())
            .all()
        )
        return jsonify({"appointment_types": [item.to_dict() for item in types]}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to list appointment types", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.post("/studios/<int:studio_id>/appointment-types")
def create_appointment_type(studio_id: int) -> tuple[dict[str, object], int]:
    """Create an appointment type for a studio.

    ``consumes_session`` defaults to true; set it to false for free
    consultations that must not draw from a session block.
    ---
    tags:
      - Appointment Types
    parameters:
      - name: studio_id
        in: path
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [name]
          properties:
            name:
              type: string
              example: Treatment
            duration_minutes:
              type: integer
              example: 60
            consumes_session:
              type: boolean
              example: true
            is_probe:
              type: boolean
              example: false
            description:
              type: string
            color:
              type: string
              example: "#28a745"
    responses:
      201:
        description: Appointment type created
      400:
        description: Missing name, bad duration or non-boolean flag
      404:
        description: Studio not found
      500:
        description: Database error
    """
    payload = request.get_json(silent=True) or {}
    try:
        if db.session.get(Studio, studio_id) is None:
            return jsonify({"error": "not_found", "message": "Studio not found"}), 404

        name = (payload.get("name") or "").strip()
        if not name:
            return jsonify({"error": "invalid_payload", "message": "name is required"}), 400

        duration = _optional_int(payload.get("duration_minutes", 60), "duration_minutes")
        if duration is None or duration <= 0:
            return jsonify({"error": "invalid_payload", "message": "duration_minutes must be positive"}), 400

        appointment_type = AppointmentType(
            studio_id=studio_id,
            name=name,
            duration_minutes=duration,
            consumes_session=_parse_flag(payload.get("consumes_session"), "consumes_session", True),
            is_probe=_parse_flag(payload.get("is_probe"), "is_probe", False),
            description=payload.get("description"),
            color=payload.get("color") or "#28a745",
        )
        db.session.add(appointment_type)
        db.session.commit()
        return jsonify({"appointment_type": appointment_type.to_dict()}), 201
    except ValidationError as exc:
        return _invalid(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to create appointment type", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


# ---------------------------------------------------------------------------
# Appointments
# ---------------------------------------------------------------------------

@bp.post("/appointments")
def create_appointment() -> tuple[dict[str, object], int]:
    """Book an appointment.

    ``end_time`` defaults to start plus the type's duration.
    ---
    tags:
      - Appointments
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [studio_id, customer_id, appointment_date, start_time]
          properties:
            studio_id:
              type: integer
              example: 1
            customer_id:
              type: integer
              example: 3
            appointment_type_id:
              type: integer
              example: 2
            appointment_date:
              type: string
              format: date
              example: "2026-03-05"
            start_time:
              type: string
              example: "14:00"
            end_time:
              type: string
              example: "15:00"
            status:
              type: string
              enum: [pending, scheduled, confirmed]
              default: confirmed
            notes:
              type: string
            acting_user_id:
              type: integer
    responses:
      201:
        description: Appointment created successfully
      400:
        description: Missing or malformed fields, or a non-bookable status
      404:
        description: Studio, customer or appointment type not found
      409:
        description: Studio is fully booked for the slot
      500:
        description: Database error
    """
    payload = request.get_json(silent=True) or {}
    try:
        missing = [
            key
            for key in ("studio_id", "customer_id", "appointment_date", "start_time")
            if payload.get(key) in (None, "")
        ]
        if missing:
            return (
                jsonify({"error": "invalid_payload", "message": f"Missing fields: {', '.join(missing)}"}),
                400,
            )

        acting_user_id = resolve_acting_user(payload)
        end_time = payload.get("end_time")
        appointment = appointment_service.create_appointment(
            studio_id=_optional_int(payload["studio_id"], "studio_id"),
            customer_id=_optional_int(payload["customer_id"], "customer_id"),
            appointment_type_id=_optional_int(payload.get("appointment_type_id"), "appointment_type_id"),
            appointment_date=_parse_date(payload["appointment_date"], "appointment_date"),
            start_time=_parse_time(payload["start_time"], "start_time"),
            end_time=_parse_time(end_time, "end_time") if end_time else None,
            status=payload.get("status") or "confirmed",
            notes=(payload.get("notes") or "").strip() or None,
            created_by_user_id=acting_user_id,
        )
        return jsonify({"message": "Appointment created successfully", "appointment": appointment.to_dict()}), 201
    except RecordNotFound as exc:
        return _not_found(exc)
    except InvalidStatus as exc:
        return _invalid(exc, "invalid_status")
    except ValidationError as exc:
        return _invalid(exc)
    except ConflictError as exc:
        return jsonify({"error": "conflict", "message": str(exc)}), 409
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to create appointment", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.get("/appointments/<int:appointment_id>")
def get_appointment(appointment_id: int) -> tuple[dict[str, object], int]:
    """Fetch one appointment; ``?locale=de`` localises ``status_label``.
    ---
    tags:
      - Appointments
    parameters:
      - name: appointment_id
        in: path
        type: integer
        required: true
      - name: locale
        in: query
        type: string
        enum: [en, de]
        default: en
    responses:
      200:
        description: Appointment details with a display label for its status
      404:
        description: Appointment not found
      500:
        description: Database error
    """
    try:
        appointment = db.session.get(Appointment, appointment_id)
        if appointment is None:
            return jsonify({"error": "not_found", "message": "Appointment not found"}), 404
        data = appointment.to_dict()
        data["status_label"] = status_label(appointment.status, request.args.get("locale", "en"))
        return jsonify({"appointment": data}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch appointment", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.delete("/appointments/<int:appointment_id>")
def delete_appointment(appointment_id: int) -> tuple[dict[str, object], int]:
    """Administrative cleanup. Cancelling is a status change, not a delete.
    ---
    tags:
      - Appointments
    parameters:
      - name: appointment_id
        in: path
        type: integer
        required: true
    responses:
      200:
        description: Appointment deleted
      404:
        description: Appointment not found
      409:
        description: Appointment has session ledger entries
      500:
        description: Database error
    """
    try:
        appointment_service.delete_appointment(appointment_id)
        return jsonify({"message": "Appointment deleted"}), 200
    except RecordNotFound as exc:
        return _not_found(exc)
    except ConflictError as exc:
        return jsonify({"error": "conflict", "message": str(exc)}), 409
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to delete appointment", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.get("/studios/<int:studio_id>/appointments")
def list_studio_appointments(studio_id: int) -> tuple[dict[str, object], int]:
    """List a studio's appointments, optionally filtered by status and date range.

    Past confirmed appointments are completed first when
    ``AUTO_COMPLETE_ON_READ`` is enabled.
    ---
    tags:
      - Appointments
    parameters:
      - name: studio_id
        in: path
        type: integer
        required: true
      - name: status
        in: query
        type: string
        description: Canonical or legacy status name
      - name: from_date
        in: query
        type: string
        format: date
      - name: to_date
        in: query
        type: string
        format: date
    responses:
      200:
        description: Appointments ordered by date and start time
      400:
        description: Unknown status or malformed date
      404:
        description: Studio not found
      500:
        description: Database error
    """
    try:
        if db.session.get(Studio, studio_id) is None:
            return jsonify({"error": "not_found", "message": "Studio not found"}), 404

        from_date = request.args.get("from_date")
        to_date = request.args.get("to_date")
        filters = {
            "status": request.args.get("status") or None,
            "from_date": _parse_date(from_date, "from_date") if from_date else None,
            "to_date": _parse_date(to_date, "to_date") if to_date else None,
        }

        sweep = None
        if current_app.config.get("AUTO_COMPLETE_ON_READ", True):
            sweep = appointment_service.sweep_auto_completions(studio_id)

        items = appointment_service.list_studio_appointments(studio_id, **filters)
        payload = {"appointments": [item.to_dict() for item in items]}
        if sweep is not None:
            payload["auto_completed"] = sweep.updated_count
        return jsonify(payload), 200
    except InvalidStatus as exc:
        return _invalid(exc, "invalid_status")
    except ValidationError as exc:
        return _invalid(exc, "invalid_date")
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to fetch studio appointments", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.get("/customers/<int:customer_id>/appointments")
def list_customer_appointments(customer_id: int) -> tuple[dict[str, object], int]:
    """List a customer's appointments, newest first.
    ---
    tags:
      - Appointments
    parameters:
      - name: customer_id
        in: path
        type: integer
        required: true
    responses:
      200:
        description: The customer's appointments
      404:
        description: Customer not found
      500:
        description: Database error
    """
    try:
        if db.session.get(User, customer_id) is None:
            return jsonify({"error": "not_found", "message": "Customer not found"}), 404
        items = appointment_service.list_customer_appointments(customer_id)
        return jsonify({"appointments": [item.to_dict() for item in items]}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch customer appointments", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.route("/appointments/<int:appointment_id>/status", methods=["PUT", "PATCH"])
def update_appointment_status(appointment_id: int) -> tuple[dict[str, object], int]:
    """Change an appointment's status.

    Completing deducts one session from the customer's active block (once);
    rejected transitions name the rule and the times it was evaluated with.
    ---
    tags:
      - Appointments
    parameters:
      - name: appointment_id
        in: path
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [status]
          properties:
            status:
              type: string
              enum: [pending, scheduled, confirmed, cancelled, completed, no_show]
              example: completed
            acting_user_id:
              type: integer
              description: Used when no bearer token is sent
    responses:
      200:
        description: Status changed (or unchanged for an identity request), with the ledger outcome
      400:
        description: Missing or unknown status, or a rejected transition with its reason code
      404:
        description: Appointment or acting user not found
      500:
        description: Ledger inconsistency or database error
    """
    payload = request.get_json(silent=True) or {}
    if "status" not in payload:
        return jsonify({"error": "invalid_input", "message": "status is required"}), 400

    try:
        acting_user_id = resolve_acting_user(payload)
        change = appointment_service.change_status(appointment_id, payload["status"], acting_user_id)
        return jsonify(change.to_dict()), 200
    except RecordNotFound as exc:
        return _not_found(exc)
    except InvalidStatus as exc:
        return _invalid(exc, "invalid_status")
    except ValidationError as exc:
        return _invalid(exc)
    except InvalidTransition as exc:
        return jsonify(exc.to_dict()), 400
    except LedgerError as exc:
        return _ledger_failure(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update appointment status", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.post("/appointments/<int:appointment_id>/reverse-completion")
def reverse_completion(appointment_id: int) -> tuple[dict[str, object], int]:
    """Refund the session deducted for a completed appointment.
    ---
    tags:
      - Appointments
      - Sessions
    parameters:
      - name: appointment_id
        in: path
        type: integer
        required: true
      - in: body
        name: body
        schema:
          type: object
          properties:
            reason:
              type: string
              example: Charged by mistake
            acting_user_id:
              type: integer
    responses:
      200:
        description: Session refunded; the appointment keeps its status
      404:
        description: Appointment not found
      409:
        description: No deducted session to refund
      500:
        description: Ledger inconsistency or database error
    """
    payload = request.get_json(silent=True) or {}
    try:
        acting_user_id = resolve_acting_user(payload)
        appointment, result = appointment_service.reverse_appointment_completion(
            appointment_id,
            acting_user_id,
            (payload.get("reason") or "").strip() or None,
        )
        return jsonify({"appointment": appointment.to_dict(), "ledger": result.to_dict()}), 200
    except RecordNotFound as exc:
        return _not_found(exc)
    except ValidationError as exc:
        return _invalid(exc)
    except NothingToReverse as exc:
        return (
            jsonify({"error": "nothing_to_reverse", "reason_code": exc.reason_code, "message": str(exc)}),
            409,
        )
    except LedgerError as exc:
        return _ledger_failure(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to reverse appointment completion", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.post("/appointments/auto-complete")
def auto_complete_appointments() -> tuple[dict[str, object], int]:
    """Run the auto-completion sweep, optionally for one studio.
    ---
    tags:
      - Appointments
    parameters:
      - name: studio_id
        in: query
        type: integer
      - in: body
        name: body
        schema:
          type: object
          properties:
            studio_id:
              type: integer
    responses:
      200:
        description: Counts of completed appointments and per-appointment failures
      400:
        description: Malformed studio_id
      404:
        description: Studio not found
      500:
        description: Database error
    """
    payload = request.get_json(silent=True) or {}
    try:
        studio_id = _optional_int(payload.get("studio_id", request.args.get("studio_id")), "studio_id")
        if studio_id is not None and db.session.get(Studio, studio_id) is None:
            return jsonify({"error": "not_found", "message": "Studio not found"}), 404
        result = appointment_service.sweep_auto_completions(studio_id)
        return jsonify(result.to_dict()), 200
    except ValidationError as exc:
        return _invalid(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Auto-completion sweep failed", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


# ---------------------------------------------------------------------------
# Session blocks
# ---------------------------------------------------------------------------

@bp.get("/customers/<int:customer_id>/sessions/balance")
def get_session_balance(customer_id: int) -> tuple[dict[str, object], int]:
    """Summarise a customer's remaining session credit.
    ---
    tags:
      - Sessions
    parameters:
      - name: customer_id
        in: path
        type: integer
        required: true
      - name: studio_id
        in: query
        type: integer
    responses:
      200:
        description: Active block remaining, pending block count and total remaining
      400:
        description: Malformed studio_id
      404:
        description: Customer not found
      500:
        description: Database error
    """
    try:
        studio_id = _optional_int(request.args.get("studio_id"), "studio_id")
        if db.session.get(User, customer_id) is None:
            return jsonify({"error": "not_found", "message": "Customer not found"}), 404
        balance = ledger.get_session_balance(customer_id, studio_id)
        return jsonify(balance.to_dict()), 200
    except ValidationError as exc:
        return _invalid(exc)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch session balance", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.get("/customers/<int:customer_id>/sessions/blocks")
def list_session_blocks(customer_id: int) -> tuple[dict[str, object], int]:
    """List a customer's session blocks in purchase order.
    ---
    tags:
      - Sessions
    parameters:
      - name: customer_id
        in: path
        type: integer
        required: true
      - name: studio_id
        in: query
        type: integer
    responses:
      200:
        description: Session blocks
      400:
        description: Malformed studio_id
      404:
        description: Customer not found
      500:
        description: Database error
    """
    try:
        studio_id = _optional_int(request.args.get("studio_id"), "studio_id")
        if db.session.get(User, customer_id) is None:
            return jsonify({"error": "not_found", "message": "Customer not found"}), 404
        blocks = ledger.list_session_blocks(customer_id, studio_id)
        return jsonify({"blocks": [block.to_dict() for block in blocks]}), 200
    except ValidationError as exc:
        return _invalid(exc)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch session blocks", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.post("/customers/<int:customer_id>/sessions/topup")
def top_up_sessions(customer_id: int) -> tuple[dict[str, object], int]:
    """Add a purchased session block; it queues behind the active one.
    ---
    tags:
      - Sessions
    parameters:
      - name: customer_id
        in: path
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [total_sessions]
          properties:
            total_sessions:
              type: integer
              example: 10
            studio_id:
              type: integer
              description: Defaults to the customer's studio
            block_type:
              type: string
              default: standard
            expires_at:
              type: string
              format: date
            notes:
              type: string
            acting_user_id:
              type: integer
    responses:
      201:
        description: Block created with its purchase ledger row
      400:
        description: Invalid session count or date
      404:
        description: Customer or studio not found
      500:
        description: Database error
    """
    payload = request.get_json(silent=True) or {}
    try:
        customer = db.session.get(User, customer_id)
        if customer is None:
            return jsonify({"error": "not_found", "message": "Customer not found"}), 404

        studio_id = _optional_int(payload.get("studio_id"), "studio_id") or customer.studio_id
        if studio_id is None or db.session.get(Studio, studio_id) is None:
            return jsonify({"error": "not_found", "message": "Studio not found"}), 404

        expires_at = payload.get("expires_at")
        result = ledger.add_session_block(
            customer_id,
            studio_id,
            payload.get("total_sessions"),
            acting_user_id=resolve_acting_user(payload),
            block_type=payload.get("block_type") or "standard",
            expires_at=_parse_date(expires_at, "expires_at") if expires_at else None,
            notes=(payload.get("notes") or "").strip() or None,
        )
        db.session.commit()
        return jsonify(result.to_dict()), 201
    except RecordNotFound as exc:
        db.session.rollback()
        return _not_found(exc)
    except ValidationError as exc:
        db.session.rollback()
        return _invalid(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to add session block", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.post("/sessions/<int:block_id>/adjust")
def adjust_session_block(block_id: int) -> tuple[dict[str, object], int]:
    """Manually add (positive) or remove (negative) sessions on a block.
    ---
    tags:
      - Sessions
    parameters:
      - name: block_id
        in: path
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [sessions]
          properties:
            sessions:
              type: integer
              example: -2
            reason:
              type: string
              example: Goodwill correction
            acting_user_id:
              type: integer
    responses:
      200:
        description: Block adjusted with a manual_adjustment ledger row
      400:
        description: Zero or non-integer count, or not enough sessions left
      404:
        description: Session block not found
      500:
        description: Database error
    """
    payload = request.get_json(silent=True) or {}
    try:
        result = ledger.adjust_session_block(
            block_id,
            payload.get("sessions"),
            reason=(payload.get("reason") or "").strip() or None,
            acting_user_id=resolve_acting_user(payload),
        )
        db.session.commit()
        return jsonify(result.to_dict()), 200
    except RecordNotFound as exc:
        db.session.rollback()
        return _not_found(exc)
    except ValidationError as exc:
        db.session.rollback()
        return _invalid(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to adjust session block", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.get("/sessions/<int:block_id>/transactions")
def list_block_transactions(block_id: int) -> tuple[dict[str, object], int]:
    """List the ledger rows of a session block, oldest first.
    ---
    tags:
      - Sessions
    parameters:
      - name: block_id
        in: path
        type: integer
        required: true
    responses:
      200:
        description: Ledger rows
      404:
        description: Session block not found
      500:
        description: Database error
    """
    try:
        transactions = ledger.list_block_transactions(block_id)
        return jsonify({"transactions": [item.to_dict() for item in transactions]}), 200
    except RecordNotFound as exc:
        return _not_found(exc)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch session transactions", exc_info=exc)
        return jsonify({"error": "database_error"}), 500
