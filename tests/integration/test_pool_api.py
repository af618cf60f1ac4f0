"""Integration tests for API endpoints"""

import pytest
from fastapi.testclient import TestClient
from tanda_ledger.domain.exceptions import ConflictError
from tanda_ledger.infrastructure.database.repositories import PoolRepository, SqlPayoutRecordRepository
from tanda_ledger.domain.settlement import SettlementLog


def _create_pool(client: TestClient, pool_id: str = "pool-1", **overrides) -> dict:
    body = {
        "pool_id": pool_id,
        "contribution_amount": 50,
        "frequency": "weekly",
        "total_rounds": 4,
        "start_date": "2026-03-01",
        "members": [
            {"member_id": f"m{i}", "position": i, "payout_destination": {"method": "venmo", "handle": f"@m{i}"}}
            for i in range(1, 5)
        ],
    }
    body.update(overrides)
    return client.post("/v1/pools", json=body)


def _act(client: TestClient, member_id: str, action: str, pool_id: str = "pool-1", **extra):
    return client.post(
        f"/v1/pools/{pool_id}/round-payments/{member_id}",
        json={"action": action, "actor_id": "admin-1", **extra},
    )


def _collect(client: TestClient, member_ids=("m1", "m2", "m3", "m4")) -> None:
    for member_id in member_ids:
        assert _act(client, member_id, "member_confirm", method="venmo").status_code == 200
        assert _act(client, member_id, "admin_verify").status_code == 200


@pytest.fixture
def active_pool(client: TestClient) -> None:
    assert _create_pool(client).status_code == 201
    assert client.post("/v1/pools/pool-1/start").status_code == 200


def test_health_endpoint(client: TestClient):
    """Test health check"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "tanda-ledger"}


def test_metrics_endpoint(client: TestClient):
    """Test metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "tanda_payout_released" in response.text


def test_request_id_is_echoed(client: TestClient):
    """Test request id header"""
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_create_pool(client: TestClient):
    """Test pool creation"""
    response = _create_pool(client)

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["contribution_amount_cents"] == 5000
    assert [m["member_id"] for m in data["members"]] == ["m1", "m2", "m3", "m4"]
    assert data["payout_status"] == "pending_collection"


def test_create_duplicate_pool_conflicts(client: TestClient):
    """Test duplicate pool id"""
    _create_pool(client)
    assert _create_pool(client).status_code == 409


@pytest.mark.parametrize(
    "overrides",
    [
        {"contribution_amount": 0},
        {"total_rounds": 25},
        {"members": []},
        {"members": [{"member_id": "a", "position": 1}, {"member_id": "b", "position": 1}]},
    ],
)
def test_create_pool_validation(client: TestClient, overrides):
    """Test pool creation with invalid input"""
    assert _create_pool(client, **overrides).status_code == 422


def test_unknown_pool_is_404(client: TestClient):
    """Test unknown pool"""
    response = client.get("/v1/pools/missing")
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_start_opens_round_and_notifies(client: TestClient, active_pool, delivered_events):
    """Test pool start with notifications"""
    response = client.get("/v1/pools/pool-1/round-payments")

    assert response.status_code == 200
    data = response.json()
    assert data["current_round"] == 1
    assert data["fully_collected"] is False
    assert data["missing_contributions"] == ["m1", "m2", "m3", "m4"]
    assert {p["due_date"] for p in data["payments"]} == {"2026-03-08"}
    assert [e["event"] for e in delivered_events] == ["pool_started", "round_opened"]


def test_payout_blocked_until_fully_collected(client: TestClient, active_pool):
    """Test payout before full collection"""
    _collect(client, ("m1", "m2", "m3"))

    decision = client.get("/v1/pools/pool-1/payout").json()
    assert decision["allowed"] is False
    assert decision["missing_contributions"] == ["m4"]
    assert decision["blockers"] == ["contributions_outstanding"]

    _collect(client, ("m4",))

    decision = client.get("/v1/pools/pool-1/payout").json()
    assert decision["allowed"] is True
    assert decision["amount_cents"] == 15000
    assert decision["early"] is False


def test_verifying_twice_conflicts(client: TestClient, active_pool):
    """Test repeated verification"""
    assert _act(client, "m1", "admin_verify").status_code == 200

    response = _act(client, "m1", "admin_verify")
    assert response.status_code == 409
    assert response.json()["error"] == "invalid_transition"


def test_stale_round_is_rejected(client: TestClient, active_pool):
    """Test action against a stale round"""
    assert _act(client, "m1", "admin_verify", round=2).status_code == 409


def test_reminder_cooldown_returns_429(client: TestClient, active_pool, clock):
    """Test reminder cooldown"""
    assert _act(client, "m2", "send_reminder").status_code == 200

    clock.advance(hours=1)
    response = _act(client, "m2", "send_reminder")
    assert response.status_code == 429
    assert response.headers["Retry-After"] == str(23 * 3600)

    clock.advance(hours=23)
    response = _act(client, "m2", "send_reminder")
    assert response.status_code == 200
    assert response.json()["payment"]["reminder_count"] == 2


def test_release_and_advance(client: TestClient, active_pool, delivered_events):
    """Test payout release and round advance"""
    _collect(client)

    response = client.post("/v1/pools/pool-1/payout", json={"initiated_by": "admin-1"})
    assert response.status_code == 200
    assert response.json()["recipient_member_id"] == "m1"
    assert response.json()["amount_cents"] == 15000

    # Second release for the same round is refused
    assert client.post("/v1/pools/pool-1/payout", json={"initiated_by": "admin-1"}).status_code == 409

    response = client.post("/v1/pools/pool-1/advance")
    assert response.status_code == 200
    assert response.json() == {"pool_id": "pool-1", "status": "active", "current_round": 2, "closed_round": 1}

    status = client.get("/v1/pools/pool-1/round-payments").json()
    assert status["current_round"] == 2
    assert {p["status"] for p in status["payments"]} == {"pending"}

    history = client.get("/v1/pools/pool-1/payouts").json()
    assert [p["round"] for p in history["payouts"]] == [1]
    assert "payout_released" in [e["event"] for e in delivered_events]


def test_advance_before_payout_conflicts(client: TestClient, active_pool):
    """Test advance before payout"""
    _collect(client)
    assert client.post("/v1/pools/pool-1/advance").status_code == 409


def test_early_payout_verification(client: TestClient, active_pool):
    """Test early payout verification and release"""
    _collect(client, ("m1",))

    response = client.get("/v1/pools/pool-1/early-payout", params={"requested_by": "admin-1", "recipient_id": "m3"})
    assert response.status_code == 200
    data = response.json()
    assert data["allowed"] is False
    assert data["early"] is True
    assert data["round"] == 1
    assert data["missing_contributions"] == ["m2", "m3", "m4"]
    assert data["blockers"] == ["contributions_outstanding", "recipient_not_in_turn"]

    _collect(client, ("m2", "m3", "m4"))
    response = client.post(
        "/v1/pools/pool-1/payout",
        json={"initiated_by": "admin-1", "early": True, "recipient_id": "m3", "reason": "rent due"},
    )
    assert response.status_code == 409

    response = client.post(
        "/v1/pools/pool-1/payout",
        json={"initiated_by": "admin-1", "early": True, "reason": "rent due"},
    )
    assert response.status_code == 200
    assert response.json()["recipient_member_id"] == "m1"
    assert response.json()["was_early_payout"] is True
    assert response.json()["early_payout_reason"] == "rent due"


def test_full_cycle_completes_pool(client: TestClient, active_pool):
    """Test full pool cycle"""
    for _ in range(4):
        _collect(client)
        assert client.post("/v1/pools/pool-1/payout", json={"initiated_by": "admin-1"}).status_code == 200
        assert client.post("/v1/pools/pool-1/advance").status_code == 200

    pool = client.get("/v1/pools/pool-1").json()
    assert pool["status"] == "completed"
    assert pool["current_round"] == 5
    assert pool["payout_status"] == "paid"
    assert all(m["payout_received"] for m in pool["members"])
    assert len(client.get("/v1/pools/pool-1/payouts").json()["payouts"]) == 4

    assert client.post("/v1/pools/pool-1/advance").status_code == 409


def test_pause_and_resume(client: TestClient, active_pool):
    """Test pause and resume"""
    assert client.post("/v1/pools/pool-1/pause").json()["status"] == "paused"
    assert _act(client, "m1", "admin_verify").status_code == 409
    assert client.post("/v1/pools/pool-1/resume").json()["status"] == "active"
    assert _act(client, "m1", "admin_verify").status_code == 200


def test_member_changes_mid_round(client: TestClient):
    """Test member add and remove mid-round"""
    _create_pool(client, total_rounds=5)
    client.post("/v1/pools/pool-1/start")

    response = client.post("/v1/pools/pool-1/members", json={"member_id": "m5", "position": 5})
    assert response.status_code == 201
    assert len(client.get("/v1/pools/pool-1/round-payments").json()["payments"]) == 5

    response = client.delete("/v1/pools/pool-1/members/m4")
    assert response.status_code == 200
    assert response.json()["status"] == "excused"
    assert "m4" not in client.get("/v1/pools/pool-1/round-payments").json()["missing_contributions"]




def test_disallowed_payment_method_is_unprocessable(client: TestClient):
    """Test disallowed payment method"""
    _create_pool(client, allowed_payment_methods=["zelle"])
    client.post("/v1/pools/pool-1/start")

    response = _act(client, "m1", "member_confirm", method="venmo")
    assert response.status_code == 422
    assert response.json()["error"] == "invalid_payment_data"
    assert _act(client, "m1", "member_confirm", method="cash").status_code == 200


def test_concurrent_release_hits_unique_constraint(client: TestClient, active_pool, session_factory, clock):
    """Two sessions evaluate the same round; the second insert trips the payout_record constraint"""
    _collect(client)
    first_db, second_db = session_factory(), session_factory()
    try:
        loaded = []
        for session in (first_db, second_db):
            repository = PoolRepository(session, SettlementLog(SqlPayoutRecordRepository(session)), clock)
            machine = repository.find_by_key("pool-1")
            loaded.append((session, repository, machine, machine.evaluate_payout()))

        (db_a, repo_a, machine_a, decision_a), (_, _, machine_b, decision_b) = loaded
        assert decision_a.allowed and decision_b.allowed

        machine_a.release_payout(decision_a, initiated_by="admin-a")
        repo_a.save(machine_a)
        db_a.commit()

        with pytest.raises(ConflictError):
            machine_b.release_payout(decision_b, initiated_by="admin-b")
    finally:
        first_db.close()
        second_db.close()

    payouts = client.get("/v1/pools/pool-1/payouts").json()["payouts"]
    assert [(p["round"], p["initiated_by"]) for p in payouts] == [(1, "admin-a")]
