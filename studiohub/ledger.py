"""Session-credit ledger.

Applies the credit consequence of appointment completions and their
reversals, plus purchases and manual adjustments of session blocks.

Functions here only stage changes on ``db.session``; the caller owns the
transaction and commits or rolls back. Every path that can exhaust or
reopen a block keeps the "one active block per customer and studio" rule
inside that same transaction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy import func

from .errors import (InconsistentLedgerState, LedgerInputError, NothingToReverse,
                     ReasonCode, SessionBlockNotFound)
from .extensions import db
from .models import Appointment, SessionBlock, SessionTransaction, utc_now

logger = logging.getLogger(__name__)


class LedgerOutcome:
    DEDUCTED = "DEDUCTED"
    REFUNDED = "REFUNDED"
    PURCHASED = "PURCHASED"
    ADJUSTED = "ADJUSTED"
    ALREADY_CONSUMED = ReasonCode.ALREADY_CONSUMED
    NO_CREDIT_AVAILABLE = ReasonCode.NO_CREDIT_AVAILABLE
    NOT_CONSUMING = ReasonCode.NOT_CONSUMING


@dataclass
class LedgerResult:
    outcome: str
    block: SessionBlock | None = None
    transaction: SessionTransaction | None = None
    promoted_block: SessionBlock | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "outcome": self.outcome,
            "block": self.block.to_dict() if self.block else None,
            "transaction": self.transaction.to_dict() if self.transaction else None,
            "promoted_block": self.promoted_block.to_dict() if self.promoted_block else None,
        }


@dataclass
class SessionBalance:
    customer_id: int
    studio_id: int | None
    active_block_id: int | None
    active_block_remaining: int
    pending_blocks_count: int
    total_remaining: int

    def to_dict(self) -> dict[str, object]:
        return {
            "customer_id": self.customer_id,
            "studio_id": self.studio_id,
            "active_block_id": self.active_block_id,
            "active_block_remaining": self.active_block_remaining,
            "pending_blocks_count": self.pending_blocks_count,
            "total_remaining": self.total_remaining,
        }


# ---------------------------------------------------------------------------
# Block queue
# ---------------------------------------------------------------------------

def _blocks_select(customer_id: int, studio_id: int | None, *statuses: str):
    stmt = db.select(SessionBlock).where(SessionBlock.customer_id == customer_id)
    if studio_id is not None:
        stmt = stmt.where(SessionBlock.studio_id == studio_id)
    if statuses:
        stmt = stmt.where(SessionBlock.status.in_(statuses))
    return stmt.order_by(SessionBlock.block_order.asc())


def _lock_block(block_id: int) -> SessionBlock | None:
    stmt = db.select(SessionBlock).where(SessionBlock.block_id == block_id).with_for_update()
    return db.session.execute(stmt).scalar_one_or_none()


def get_active_block(customer_id: int, studio_id: int, *, lock: bool = True) -> SessionBlock | None:
    stmt = _blocks_select(customer_id, studio_id, "active")
    if lock:
        stmt = stmt.with_for_update()
    return db.session.execute(stmt).scalars().first()


def promote_next_block(customer_id: int, studio_id: int) -> SessionBlock | None:
    """Activate the oldest pending block that still has credit."""
    stmt = (
        _blocks_select(customer_id, studio_id, "pending")
        .where(SessionBlock.remaining_sessions > 0)
        .with_for_update()
    )
    block = db.session.execute(stmt).scalars().first()
    if block is None:
        return None

    block.status = "active"
    block.activated_at = utc_now()
    logger.info(
        "Promoted session block %s (order %s) to active for customer %s",
        block.block_id,
        block.block_order,
        customer_id,
    )
    return block


def current_block(customer_id: int, studio_id: int) -> SessionBlock | None:
    """Return the block credits are drawn from, activating one if needed."""
    block = get_active_block(customer_id, studio_id)
    if block is None:
        block = promote_next_block(customer_id, studio_id)
    return block


def _mark_exhausted(block: SessionBlock) -> SessionBlock | None:
    was_active = block.status == "active"
    block.status = "completed"
    block.completed_at = utc_now()
    if was_active:
        return promote_next_block(block.customer_id, block.studio_id)
    return None


def _reopen(block: SessionBlock) -> None:
    # The active pointer is never rewound: a reopened block queues behind
    # whichever block is being used now.
    active = get_active_block(block.customer_id, block.studio_id)
    block.completed_at = None
    if active is None or active.block_id == block.block_id:
        block.status = "active"
        if block.activated_at is None:
            block.activated_at = utc_now()
    else:
        block.status = "pending"


def _check_used_delta(block: SessionBlock, delta: int, appointment_id: int | None) -> None:
    used = block.used_sessions + delta
    remaining = block.remaining_sessions - delta
    if used < 0 or remaining < 0 or remaining > block.total_sessions or used + remaining != block.total_sessions:
        logger.error(
            "Ledger inconsistency: appointment=%s block=%s delta=%s used=%s remaining=%s total=%s",
            appointment_id,
            block.block_id,
            delta,
            block.used_sessions,
            block.remaining_sessions,
            block.total_sessions,
        )
        raise InconsistentLedgerState(
            f"Session block {block.block_id} cannot absorb a change of {delta} session(s)",
            appointment_id=appointment_id,
            block_id=block.block_id,
            delta=delta,
        )


def _record(
    block: SessionBlock,
    transaction_type: str,
    session_count: int,
    *,
    appointment_id: int | None = None,
    acting_user_id: int | None = None,
    reason: str | None = None,
) -> SessionTransaction:
    transaction = SessionTransaction(
        customer_id=block.customer_id,
        studio_id=block.studio_id,
        block_id=block.block_id,
        appointment_id=appointment_id,
        transaction_type=transaction_type,
        session_count=session_count,
        reason=reason,
        created_by_user_id=acting_user_id,
    )
    db.session.add(transaction)
    return transaction


# ---------------------------------------------------------------------------
# Appointment effects
# ---------------------------------------------------------------------------

def apply_completion(
    appointment: Appointment,
    active_block: SessionBlock | None = None,
    *,
    acting_user_id: int | None = None,
    reason: str | None = None,
) -> LedgerResult:
    """Deduct one session for a completed appointment, at most once.

    Returns ``ALREADY_CONSUMED`` when the appointment was charged before,
    ``NOT_CONSUMING`` for appointment types that are free, and
    ``NO_CREDIT_AVAILABLE`` when the customer has no block to draw from.
    None of those are errors: the completion itself stands.
    """
    if appointment.session_consumed:
        return LedgerResult(LedgerOutcome.ALREADY_CONSUMED)

    if not appointment.consumes_session:
        return LedgerResult(LedgerOutcome.NOT_CONSUMING)

    block = active_block
    if block is None:
        block = current_block(appointment.customer_id, appointment.studio_id)
    elif block.customer_id != appointment.customer_id or block.status != "active":
        raise InconsistentLedgerState(
            f"Session block {block.block_id} is not the active block of customer {appointment.customer_id}",
            appointment_id=appointment.appointment_id,
            block_id=block.block_id,
            delta=1,
        )

    if block is None:
        logger.info(
            "Appointment %s completed without credit: customer %s has no session block",
            appointment.appointment_id,
            appointment.customer_id,
        )
        return LedgerResult(LedgerOutcome.NO_CREDIT_AVAILABLE)

    _check_used_delta(block, 1, appointment.appointment_id)
    block.used_sessions += 1
    block.remaining_sessions -= 1
    transaction = _record(
        block,
        "deduction",
        1,
        appointment_id=appointment.appointment_id,
        acting_user_id=acting_user_id,
        reason=reason or "Session deducted for completed appointment",
    )
    appointment.session_consumed = True

    promoted = None
    if block.remaining_sessions == 0:
        promoted = _mark_exhausted(block)

    logger.info(
        "Deducted 1 session from block %s for appointment %s (%s remaining)",
        block.block_id,
        appointment.appointment_id,
        block.remaining_sessions,
    )
    return LedgerResult(LedgerOutcome.DEDUCTED, block, transaction, promoted)


def reverse_completion(
    appointment: Appointment,
    *,
    acting_user_id: int | None = None,
    reason: str | None = None,
) -> LedgerResult:
    """Refund the session deducted for ``appointment``.

    The refund goes to the block recorded on the original deduction row.
    """
    if not appointment.session_consumed:
        raise NothingToReverse(f"Appointment {appointment.appointment_id} has no deducted session")

    stmt = (
        db.select(SessionTransaction)
        .where(
            SessionTransaction.appointment_id == appointment.appointment_id,
            SessionTransaction.transaction_type == "deduction",
        )
        .order_by(SessionTransaction.transaction_id.desc())
    )
    deduction = db.session.execute(stmt).scalars().first()
    if deduction is None:
        logger.error(
            "Appointment %s is marked consumed but has no deduction row",
            appointment.appointment_id,
        )
        raise InconsistentLedgerState(
            f"No deduction recorded for appointment {appointment.appointment_id}",
            appointment_id=appointment.appointment_id,
            delta=-1,
        )

    block = _lock_block(deduction.block_id)
    if block is None:
        logger.error(
            "Session block %s referenced by appointment %s no longer exists",
            deduction.block_id,
            appointment.appointment_id,
        )
        raise InconsistentLedgerState(
            f"Session block {deduction.block_id} not found",
            appointment_id=appointment.appointment_id,
            block_id=deduction.block_id,
            delta=-1,
        )

    _check_used_delta(block, -1, appointment.appointment_id)
    block.used_sessions -= 1
    block.remaining_sessions += 1
    transaction = _record(
        block,
        "refund",
        1,
        appointment_id=appointment.appointment_id,
        acting_user_id=acting_user_id,
        reason=reason or "Session refunded for reversed completion",
    )
    appointment.session_consumed = False

    if block.status == "completed":
        _reopen(block)

    logger.info(
        "Refunded 1 session to block %s for appointment %s",
        block.block_id,
        appointment.appointment_id,
    )
    return LedgerResult(LedgerOutcome.REFUNDED, block, transaction)


# ---------------------------------------------------------------------------
# Purchases and manual adjustments
# ---------------------------------------------------------------------------

def add_session_block(
    customer_id: int,
    studio_id: int,
    total_sessions: int,
    *,
    acting_user_id: int | None = None,
    block_type: str = "standard",
    expires_at: date | None = None,
    notes: str | None = None,
) -> LedgerResult:
    """Queue a newly purchased block behind the customer's existing ones."""
    if isinstance(total_sessions, bool) or not isinstance(total_sessions, int) or total_sessions <= 0:
        raise LedgerInputError("total_sessions must be a positive integer")

    existing = db.session.execute(
        _blocks_select(customer_id, studio_id).with_for_update()
    ).scalars().all()
    next_order = max((block.block_order for block in existing), default=0) + 1

    active = current_block(customer_id, studio_id)

    block = SessionBlock(
        customer_id=customer_id,
        studio_id=studio_id,
        total_sessions=total_sessions,
        used_sessions=0,
        remaining_sessions=total_sessions,
        status="pending" if active is not None else "active",
        block_order=next_order,
        block_type=block_type or "standard",
        expires_at=expires_at,
        notes=notes or f"Session block ({total_sessions} sessions)",
    )
    if active is None:
        block.activated_at = utc_now()
    db.session.add(block)
    db.session.flush()

    transaction = _record(
        block,
        "purchase",
        total_sessions,
        acting_user_id=acting_user_id,
        reason=notes or f"Added {total_sessions} session block",
    )
    logger.info(
        "Added %s-session block %s (order %s, %s) for customer %s",
        total_sessions,
        block.block_id,
        next_order,
        block.status,
        customer_id,
    )
    return LedgerResult(LedgerOutcome.PURCHASED, block, transaction)


def adjust_session_block(
    block_id: int,
    sessions: int,
    *,
    reason: str | None = None,
    acting_user_id: int | None = None,
) -> LedgerResult:
    """Add or remove credit on a block by hand.

    Changes ``total`` and ``remaining`` together; ``used`` only ever moves
    through completions and their reversals.
    """
    if isinstance(sessions, bool) or not isinstance(sessions, int) or sessions == 0:
        raise LedgerInputError("sessions must be a non-zero integer")

    block = _lock_block(block_id)
    if block is None:
        raise SessionBlockNotFound(block_id)

    remaining = block.remaining_sessions + sessions
    if remaining < 0:
        raise LedgerInputError(
            f"Block {block_id} has {block.remaining_sessions} session(s) left; cannot remove {-sessions}"
        )

    block.total_sessions += sessions
    block.remaining_sessions = remaining
    transaction = _record(
        block,
        "manual_adjustment",
        sessions,
        acting_user_id=acting_user_id,
        reason=reason or "Manual adjustment",
    )

    promoted = None
    if block.remaining_sessions == 0 and block.status != "completed":
        promoted = _mark_exhausted(block)
    elif block.remaining_sessions > 0 and block.status == "completed":
        _reopen(block)

    logger.info("Adjusted block %s by %+d session(s)", block_id, sessions)
    return LedgerResult(LedgerOutcome.ADJUSTED, block, transaction, promoted)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def list_session_blocks(customer_id: int, studio_id: int | None = None) -> list[SessionBlock]:
    return db.session.execute(_blocks_select(customer_id, studio_id)).scalars().all()


def list_block_transactions(block_id: int) -> list[SessionTransaction]:
    if db.session.get(SessionBlock, block_id) is None:
        raise SessionBlockNotFound(block_id)
    stmt = (
        db.select(SessionTransaction)
        .where(SessionTransaction.block_id == block_id)
        .order_by(SessionTransaction.transaction_id.asc())
    )
    return db.session.execute(stmt).scalars().all()


def get_session_balance(customer_id: int, studio_id: int | None = None) -> SessionBalance:
    blocks = list_session_blocks(customer_id, studio_id)
    active = [block for block in blocks if block.status == "active"]
    pending = [block for block in blocks if block.status == "pending"]
    return SessionBalance(
        customer_id=customer_id,
        studio_id=studio_id,
        active_block_id=active[0].block_id if active else None,
        active_block_remaining=sum(block.remaining_sessions for block in active),
        pending_blocks_count=len(pending),
        total_remaining=sum(block.remaining_sessions for block in active + pending),
    )


def reconcile_block(block: SessionBlock) -> list[str]:
    """Compare a block's counters with its ledger rows."""
    rows = db.session.execute(
        db.select(
            SessionTransaction.transaction_type,
            func.coalesce(func.sum(SessionTransaction.session_count), 0),
        )
        .where(SessionTransaction.block_id == block.block_id)
        .group_by(SessionTransaction.transaction_type)
    ).all()
    totals = {transaction_type: int(total) for transaction_type, total in rows}

    problems = []
    ledger_used = totals.get("deduction", 0) - totals.get("refund", 0)
    if block.used_sessions != ledger_used:
        problems.append(f"used={block.used_sessions} but ledger shows {ledger_used}")
    if block.remaining_sessions != block.total_sessions - block.used_sessions:
        problems.append(
            f"remaining={block.remaining_sessions} but total-used={block.total_sessions - block.used_sessions}"
        )
    # Blocks imported from older data may predate purchase rows.
    if "purchase" in totals:
        ledger_total = totals["purchase"] + totals.get("manual_adjustment", 0)
        if block.total_sessions != ledger_total:
            problems.append(f"total={block.total_sessions} but ledger shows {ledger_total}")
    if block.status == "completed" and block.remaining_sessions > 0:
        problems.append(f"completed with {block.remaining_sessions} session(s) left")
    return problems


def find_duplicate_active_blocks() -> list[tuple[int, int, int]]:
    """Return ``(customer_id, studio_id, count)`` for customers with several active blocks."""
    stmt = (
        db.select(SessionBlock.customer_id, SessionBlock.studio_id, func.count(SessionBlock.block_id))
        .where(SessionBlock.status == "active")
        .group_by(SessionBlock.customer_id, SessionBlock.studio_id)
        .having(func.count(SessionBlock.block_id) > 1)
    )
    return [tuple(row) for row in db.session.execute(stmt).all()]
