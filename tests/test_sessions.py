"""Route tests for session blocks, balances and manual ledger operations."""
from __future__ import annotations

from datetime import date, datetime

import pytest

from studiohub import appointments as appointment_service
from studiohub.extensions import db
from studiohub.models import SessionBlock, SessionTransaction


@pytest.fixture
def fixed_now(monkeypatch):
    monkeypatch.setattr(appointment_service, "studio_now", lambda: datetime(2026, 3, 2, 12, 0))


def test_topup_first_block_becomes_active(client, app, seed) -> None:
    response = client.post(
        f"/customers/{seed['customer_id']}/sessions/topup",
        json={"total_sessions": 10, "acting_user_id": seed["owner_id"], "expires_at": "2027-03-01"},
    )
    data = response.get_json()

    assert response.status_code == 201
    assert data["outcome"] == "PURCHASED"
    assert data["block"]["status"] == "active"
    assert data["block"]["studio_id"] == seed["studio_id"]
    assert data["block"]["expires_at"] == "2027-03-01"
    assert data["transaction"]["transaction_type"] == "purchase"
    assert data["transaction"]["session_count"] == 10

    with app.app_context():
        assert SessionBlock.query.count() == 1


def test_topup_queues_behind_active_block(client, seed, make_block) -> None:
    make_block(total=10, used=2)

    response = client.post(f"/customers/{seed['customer_id']}/sessions/topup", json={"total_sessions": 5})

    assert response.status_code == 201
    assert response.json["block"]["status"] == "pending"
    assert response.json["block"]["block_order"] == 2


def test_topup_rejects_bad_input(client, seed) -> None:
    url = f"/customers/{seed['customer_id']}/sessions/topup"

    assert client.post(url, json={"total_sessions": 0}).status_code == 400
    assert client.post(url, json={"total_sessions": "ten"}).status_code == 400
    assert client.post(url, json={"total_sessions": 5, "studio_id": 999}).status_code == 404
    assert client.post("/customers/999/sessions/topup", json={"total_sessions": 5}).status_code == 404


def test_session_balance_and_blocks(client, seed, make_block) -> None:
    make_block(total=10, used=7)
    make_block(total=5, status="pending", block_order=2)

    balance = client.get(f"/customers/{seed['customer_id']}/sessions/balance")
    blocks = client.get(f"/customers/{seed['customer_id']}/sessions/blocks?studio_id={seed['studio_id']}")

    assert balance.status_code == 200
    assert balance.json["active_block_remaining"] == 3
    assert balance.json["pending_blocks_count"] == 1
    assert balance.json["total_remaining"] == 8
    assert [block["block_order"] for block in blocks.json["blocks"]] == [1, 2]
    assert client.get("/customers/999/sessions/balance").status_code == 404
    assert client.get(f"/customers/{seed['customer_id']}/sessions/balance?studio_id=x").status_code == 400


def test_adjust_block(client, app, seed, make_block) -> None:
    block_id = make_block(total=10, used=4)

    response = client.post(
        f"/sessions/{block_id}/adjust",
        json={"sessions": -2, "reason": "Goodwill correction", "acting_user_id": seed["owner_id"]},
    )

    assert response.status_code == 200
    assert response.json["outcome"] == "ADJUSTED"
    assert response.json["block"]["total_sessions"] == 8
    assert response.json["block"]["remaining_sessions"] == 4
    assert response.json["block"]["used_sessions"] == 4
    with app.app_context():
        row = SessionTransaction.query.filter_by(block_id=block_id).one()
        assert (row.transaction_type, row.session_count, row.reason) == (
            "manual_adjustment",
            -2,
            "Goodwill correction",
        )


def test_adjust_block_errors(client, make_block) -> None:
    block_id = make_block(total=3, used=2)

    assert client.post(f"/sessions/{block_id}/adjust", json={"sessions": -5}).status_code == 400
    assert client.post(f"/sessions/{block_id}/adjust", json={"sessions": 0}).status_code == 400
    assert client.post("/sessions/999/adjust", json={"sessions": 1}).status_code == 404


def test_block_transactions(client, seed, fixed_now, make_appointment) -> None:
    topup = client.post(f"/customers/{seed['customer_id']}/sessions/topup", json={"total_sessions": 4})
    block_id = topup.json["block"]["id"]
    appointment_id = make_appointment(date(2026, 3, 2))
    client.put(f"/appointments/{appointment_id}/status", json={"status": "completed"})

    response = client.get(f"/sessions/{block_id}/transactions")

    assert response.status_code == 200
    assert [row["transaction_type"] for row in response.json["transactions"]] == ["purchase", "deduction"]
    assert response.json["transactions"][1]["appointment_id"] == appointment_id
    assert client.get("/sessions/999/transactions").status_code == 404


def test_reverse_completion_route(client, app, seed, fixed_now, make_appointment, make_block) -> None:
    block_id = make_block(total=4)
    appointment_id = make_appointment(date(2026, 3, 2))
    client.put(f"/appointments/{appointment_id}/status", json={"status": "completed"})

    response = client.post(
        f"/appointments/{appointment_id}/reverse-completion",
        json={"reason": "Charged by mistake", "acting_user_id": seed["owner_id"]},
    )
    repeat = client.post(f"/appointments/{appointment_id}/reverse-completion", json={})

    assert response.status_code == 200
    assert response.json["ledger"]["outcome"] == "REFUNDED"
    assert response.json["appointment"]["status"] == "completed"
    assert response.json["appointment"]["session_consumed"] is False
    assert repeat.status_code == 409
    assert repeat.json["reason_code"] == "NOT_CONSUMED"
    with app.app_context():
        assert db.session.get(SessionBlock, block_id).remaining_sessions == 4
