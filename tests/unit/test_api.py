"""HTTP tests for the FastAPI surface over an in-memory engine."""

from __future__ import annotations

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from hourbank.api.app import create_app
from hourbank.core.config import AppSettings, NotificationConfig, SchedulerConfig
from hourbank.core.exceptions import ConcurrentModificationError, StoreUnavailableError

CLIENT_HEADERS = {"X-User-Id": "client-1", "X-User-Role": "client"}
FREELANCER_HEADERS = {"X-User-Id": "freelancer-1", "X-User-Role": "freelancer"}
ADMIN_HEADERS = {"X-User-Id": "admin-1", "X-User-Role": "admin"}


@pytest.fixture
def client():
    settings = AppSettings(
        scheduler=SchedulerConfig(enabled=False),
        notifications=NotificationConfig(backend="memory"),
    )
    app = create_app(settings)
    with TestClient(app) as test_client:
        app.state.store.put_account("client-1", Decimal("10"))
        app.state.store.put_account("freelancer-1", Decimal("0"))
        yield test_client


def _create(client, amount="5"):
    resp = client.post(
        "/escrows",
        json={"freelancer_id": "freelancer-1", "service_id": "service-42",
              "amount": amount, "terms": "Translate 5 pages"},
        headers=CLIENT_HEADERS,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def _balance(client, user_id):
    return Decimal(client.get(f"/accounts/{user_id}/balance").json()["balance"])


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_ready(self, client):
        resp = client.get("/ready")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ready"}


class TestEscrowRoutes:
    def test_create_and_release(self, client):
        record = _create(client)
        assert record["status"] == "held"
        assert record["client_id"] == "client-1"
        assert _balance(client, "client-1") == Decimal("5")

        resp = client.post(f"/escrows/{record['id']}/release", headers=CLIENT_HEADERS)
        assert resp.status_code == 200
        assert resp.json()["applied"] is True
        assert _balance(client, "freelancer-1") == Decimal("5")

        again = client.post(f"/escrows/{record['id']}/release", headers=CLIENT_HEADERS)
        assert again.status_code == 200
        assert again.json()["applied"] is False
        assert _balance(client, "freelancer-1") == Decimal("5")

    def test_get_status_and_timeline(self, client):
        record = _create(client)
        client.post(f"/escrows/{record['id']}/accept", headers=FREELANCER_HEADERS)

        status = client.get(f"/escrows/{record['id']}").json()
        assert status["accepted_at"] is not None
        assert 0 < status["seconds_until_release"] <= 72 * 3600

        timeline = client.get(f"/escrows/{record['id']}/timeline").json()
        assert [e["event_type"] for e in timeline] == ["created", "accepted"]

    def test_refund_with_note(self, client):
        record = _create(client)
        resp = client.post(
            f"/escrows/{record['id']}/refund",
            json={"note": "Cannot take this on"},
            headers=FREELANCER_HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["record"]["status"] == "refunded"
        assert resp.json()["record"]["resolution_note"] == "Cannot take this on"
        assert _balance(client, "client-1") == Decimal("10")

    def test_insufficient_funds_is_402(self, client):
        resp = client.post(
            "/escrows",
            json={"freelancer_id": "freelancer-1", "service_id": "s", "amount": "11"},
            headers=CLIENT_HEADERS,
        )
        assert resp.status_code == 402
        assert resp.json()["error"] == "InsufficientFunds"
        assert _balance(client, "client-1") == Decimal("10")

    def test_unknown_record_is_404(self, client):
        resp = client.get("/escrows/esc_nope")
        assert resp.status_code == 404
        assert resp.json()["error"] == "RecordNotFound"

    def test_invalid_transition_is_409(self, client):
        record = _create(client)
        client.post(f"/escrows/{record['id']}/release", headers=CLIENT_HEADERS)
        resp = client.post(f"/escrows/{record['id']}/refund", headers=ADMIN_HEADERS)
        assert resp.status_code == 409
        assert resp.json()["error"] == "InvalidTransition"

    def test_stranger_is_403(self, client):
        record = _create(client)
        resp = client.post(
            f"/escrows/{record['id']}/release",
            headers={"X-User-Id": "mallory", "X-User-Role": "client"},
        )
        assert resp.status_code == 403
        assert resp.json()["error"] == "Unauthorized"

    def test_self_escrow_is_422(self, client):
        resp = client.post(
            "/escrows",
            json={"freelancer_id": "client-1", "service_id": "s", "amount": "1"},
            headers=CLIENT_HEADERS,
        )
        assert resp.status_code == 422
        assert resp.json()["error"] == "InvalidRequest"

    def test_missing_headers_rejected(self, client):
        resp = client.post("/escrows", json={"freelancer_id": "f", "service_id": "s", "amount": "1"})
        assert resp.status_code == 422

    def test_unknown_role_rejected(self, client):
        resp = client.post(
            "/escrows/esc_x/release", headers={"X-User-Id": "u", "X-User-Role": "owner"},
        )
        assert resp.status_code == 400

    def test_system_role_cannot_be_claimed(self, client):
        resp = client.post(
            "/escrows/esc_x/release", headers={"X-User-Id": "u", "X-User-Role": "system"},
        )
        assert resp.status_code == 403


class TestAdminRoutes:
    def test_dispute_and_resolve(self, client):
        record = _create(client, "3")
        resp = client.post(
            f"/escrows/{record['id']}/dispute",
            json={"reason": "Only half delivered"},
            headers=CLIENT_HEADERS,
        )
        assert resp.json()["status"] == "disputed"

        stats = client.get("/admin/stats", headers=ADMIN_HEADERS).json()
        assert stats["disputes_open"] == 1
        assert Decimal(stats["disputed_amount"]) == Decimal("3")
        assert Decimal(stats["open_amount"]) == Decimal("3")

        resp = client.post(
            f"/admin/escrows/{record['id']}/resolve",
            json={"decision": "refund", "note": "Refund approved"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["record"]["status"] == "refunded"
        assert _balance(client, "client-1") == Decimal("10")

        sent = client.app.state.notifications.for_user("client-1")
        assert sent[-1][0] == "dispute_resolved"

    def test_list_open_escrows(self, client):
        first = _create(client, "1")
        second = _create(client, "2")
        client.post(f"/escrows/{first['id']}/release", headers=CLIENT_HEADERS)

        resp = client.get("/admin/escrows", headers=ADMIN_HEADERS)
        assert [r["id"] for r in resp.json()] == [second["id"]]

    def test_admin_routes_require_admin(self, client):
        assert client.get("/admin/stats", headers=CLIENT_HEADERS).status_code == 403
        assert client.post("/admin/scheduler/tick", headers=FREELANCER_HEADERS).status_code == 403

    def test_manual_tick(self, client):
        _create(client)
        resp = client.post("/admin/scheduler/tick", headers=ADMIN_HEADERS)
        assert resp.status_code == 200
        assert resp.json()["scanned"] == 0


class TestStoreFailures:
    def test_store_outage_is_503_with_retry_after(self, client, monkeypatch):
        def _down(record_id):
            raise StoreUnavailableError("dynamodb unreachable")

        monkeypatch.setattr(client.app.state.store, "get_record", _down)
        resp = client.get("/escrows/esc_any")
        assert resp.status_code == 503
        assert resp.headers["Retry-After"] == "5"
        assert resp.json()["error"] == "StoreUnavailable"

    def test_contended_create_is_503(self, client, monkeypatch):
        def _contended(record, event):
            raise ConcurrentModificationError(record.id, 0)

        monkeypatch.setattr(client.app.state.store, "insert_escrow", _contended)
        resp = client.post(
            "/escrows",
            json={"freelancer_id": "freelancer-1", "service_id": "s", "amount": "5"},
            headers=CLIENT_HEADERS,
        )
        assert resp.status_code == 503
        assert resp.headers["Retry-After"] == "5"
        assert _balance(client, "client-1") == Decimal("10")

    def test_settled_record_has_no_countdown(self, client):
        record = _create(client)
        client.post(f"/escrows/{record['id']}/release", headers=CLIENT_HEADERS)
        assert client.get(f"/escrows/{record['id']}").json()["seconds_until_release"] is None
