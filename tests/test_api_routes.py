"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Drives the public, admin and webhook routes through the TestClient against
the in-memory database.

These tests verify:
- Auth guards on user and admin endpoints
- Outcome → status code / error body mapping
- Webhook secret check and replay handling
"""

from __future__ import annotations

import pytest

from clubledger.database.models import Currency
from conftest import (
    get_reward,
    get_user,
    make_pitch,
    make_reward,
    make_token,
    make_user,
)

WEBHOOK_HEADERS = {"X-Webhook-Secret": "test-webhook-secret"}


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _as(user_id: str) -> dict:
    return _auth(make_token(user_id))


def _payment(user_id: str, payment_id: str = "pi_100", credits: int = 100, status: str = "succeeded"):
    return {
        "payment_id": payment_id,
        "user_id": user_id,
        "credits": credits,
        "status": status,
    }


# ===========================================================================
# Health endpoint
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ===========================================================================
# Auth guards
# ===========================================================================
class TestAuthGuards:
    ADMIN_GET_ENDPOINTS = [
        "/api/admin/rewards",
        "/api/admin/redemptions",
        "/api/admin/reconciliation",
        "/api/admin/users/u-1/ledger",
    ]

    USER_GET_ENDPOINTS = [
        "/api/points/me",
        "/api/badges/me",
        "/api/credits/balance",
        "/api/redemptions/me",
    ]

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS + USER_GET_ENDPOINTS)
    def test_no_token_returns_401(self, client, endpoint):
        resp = client.get(endpoint)
        assert resp.status_code == 401

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_non_admin_returns_403(self, client, endpoint):
        resp = client.get(endpoint, headers=_as("u-1"))
        assert resp.status_code == 403

    def test_invalid_token_returns_401(self, client):
        resp = client.get("/api/points/me", headers=_auth("not.a.jwt"))
        assert resp.status_code == 401

    def test_token_signed_with_other_secret(self, client):
        import jwt

        token = jwt.encode({"sub": "u-1"}, "another-secret-" + "y" * 40, algorithm="HS256")
        resp = client.get("/api/points/me", headers=_auth(token))
        assert resp.status_code == 401


# ===========================================================================
# Balances
# ===========================================================================
class TestBalanceRoutes:
    def test_points_me(self, client, db_engine):
        uid = make_user(db_engine, points=120)
        resp = client.get("/api/points/me", headers=_as(uid))
        assert resp.status_code == 200
        body = resp.json()
        assert body["points"] == 120
        assert body["reputation"] > 0
        assert body["reputation_label"]
        [entry] = body["history"]
        assert entry["type"] == "EARNED"
        assert entry["balance_after"] == 120

    def test_unknown_user_404(self, client):
        resp = client.get("/api/points/me", headers=_as("ghost"))
        assert resp.status_code == 404

    def test_credit_balance(self, client, db_engine):
        uid = make_user(db_engine, credits=300)
        resp = client.get("/api/credits/balance", headers=_as(uid))
        assert resp.status_code == 200
        assert resp.json()["credit_balance"] == 300
        assert resp.json()["transactions"][0]["type"] == "PURCHASE"

    def test_badges_me(self, client, db_engine):
        uid = make_user(db_engine)
        resp = client.get("/api/badges/me", headers=_as(uid))
        assert resp.status_code == 200
        assert resp.json()["badges"] == []
        assert resp.json()["progress"]


# ===========================================================================
# Redemption flow
# ===========================================================================
class TestRedemptionRoutes:
    def test_list_rewards(self, client, db_engine):
        make_reward(db_engine, cost=100, copies=2)
        make_reward(db_engine, name="Hidden", active=False)
        resp = client.get("/api/rewards")
        assert resp.status_code == 200
        [reward] = resp.json()["rewards"]
        assert reward["remaining_copies"] == 2

    def test_redeem_then_cancel(self, client, db_engine):
        uid = make_user(db_engine, points=250)
        rid = make_reward(db_engine, cost=100, copies=2)

        resp = client.post("/api/redemptions", json={"reward_item_id": rid}, headers=_as(uid))
        assert resp.status_code == 201
        body = resp.json()
        assert body["balance"] == 150
        assert body["redemption"]["status"] == "PENDING"
        red_id = body["redemption"]["id"]

        mine = client.get("/api/redemptions/me", headers=_as(uid)).json()["redemptions"]
        assert [r["id"] for r in mine] == [red_id]

        resp = client.post(f"/api/redemptions/{red_id}/cancel", headers=_as(uid))
        assert resp.status_code == 200
        assert resp.json()["redemption"]["status"] == "CANCELLED"
        assert get_user(db_engine, uid).points == 250
        assert get_reward(db_engine, rid).copies_redeemed == 0

        resp = client.post(f"/api/redemptions/{red_id}/cancel", headers=_as(uid))
        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "ALREADY_PROCESSED"

    def test_insufficient_points(self, client, db_engine):
        uid = make_user(db_engine, points=50)
        rid = make_reward(db_engine, cost=100)
        resp = client.post("/api/redemptions", json={"reward_item_id": rid}, headers=_as(uid))
        assert resp.status_code == 400
        detail = resp.json()["detail"]
        assert detail == {
            "code": "INSUFFICIENT_BALANCE",
            "current": 50,
            "required": 100,
            "currency": "POINTS",
        }

    def test_out_of_stock(self, client, db_engine):
        uid = make_user(db_engine, points=500)
        rid = make_reward(db_engine, cost=100, copies=1)
        client.post("/api/redemptions", json={"reward_item_id": rid}, headers=_as(uid))
        resp = client.post("/api/redemptions", json={"reward_item_id": rid}, headers=_as(uid))
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "OUT_OF_STOCK"

    def test_unknown_reward(self, client, db_engine):
        uid = make_user(db_engine, points=500)
        resp = client.post("/api/redemptions", json={"reward_item_id": "nope"}, headers=_as(uid))
        assert resp.status_code == 404
        assert resp.json()["detail"]["code"] == "NOT_FOUND"

    def test_cancel_someone_elses(self, client, db_engine):
        owner = make_user(db_engine, "Owner", points=200)
        other = make_user(db_engine, "Other")
        rid = make_reward(db_engine, cost=100)
        red_id = client.post(
            "/api/redemptions", json={"reward_item_id": rid}, headers=_as(owner),
        ).json()["redemption"]["id"]

        resp = client.post(f"/api/redemptions/{red_id}/cancel", headers=_as(other))
        assert resp.status_code == 404
        assert get_user(db_engine, owner).points == 100


# ===========================================================================
# Admin redemption review
# ===========================================================================
class TestAdminRedemptionRoutes:
    def _pending(self, client, db_engine) -> tuple[str, str]:
        uid = make_user(db_engine, points=300)
        rid = make_reward(db_engine, cost=100, copies=3)
        red_id = client.post(
            "/api/redemptions", json={"reward_item_id": rid}, headers=_as(uid),
        ).json()["redemption"]["id"]
        return uid, red_id

    def test_decline_refunds(self, client, db_engine, admin_token):
        uid, red_id = self._pending(client, db_engine)

        resp = client.patch(
            f"/api/admin/redemptions/{red_id}",
            json={"status": "DECLINED", "reason": "Out of region"},
            headers=_auth(admin_token),
        )

        assert resp.status_code == 200
        redemption = resp.json()["redemption"]
        assert redemption["status"] == "DECLINED"
        assert redemption["rejection_reason"] == "Out of region"
        assert redemption["reviewed_by"] == "99999"
        assert get_user(db_engine, uid).points == 300

        audit = client.get(
            f"/api/admin/redemptions/{red_id}/audit", headers=_auth(admin_token),
        ).json()["audit"]
        assert [a["action_type"] for a in audit] == ["CREATED", "STATUS_CHANGE"]

    def test_illegal_transition(self, client, db_engine, admin_token):
        _, red_id = self._pending(client, db_engine)
        client.patch(
            f"/api/admin/redemptions/{red_id}", json={"status": "FULFILLED"},
            headers=_auth(admin_token),
        )
        resp = client.patch(
            f"/api/admin/redemptions/{red_id}", json={"status": "APPROVED"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 400
        assert resp.json()["detail"] == {
            "code": "INVALID_TRANSITION",
            "from_status": "FULFILLED",
            "to_status": "APPROVED",
        }

    def test_list_filtered(self, client, db_engine, admin_token):
        self._pending(client, db_engine)
        resp = client.get(
            "/api/admin/redemptions", params={"status": "PENDING"}, headers=_auth(admin_token),
        )
        assert resp.status_code == 200
        assert len(resp.json()["redemptions"]) == 1
        resp = client.get(
            "/api/admin/redemptions", params={"status": "FULFILLED"}, headers=_auth(admin_token),
        )
        assert resp.json()["redemptions"] == []

    def test_manual_grant(self, client, db_engine, admin_token):
        uid = make_user(db_engine)
        rid = make_reward(db_engine, cost=100, badge_code="CLUB_COVER_PACK")
        resp = client.post(
            "/api/admin/redemptions/grant",
            json={"user_id": uid, "reward_item_id": rid, "reason": "Contest winner"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 201
        assert resp.json()["redemption"]["status"] == "FULFILLED"
        assert resp.json()["redemption"]["points_spent"] == 0
        assert resp.json()["badge_granted"] is True
        assert get_user(db_engine, uid).points == 0


# ===========================================================================
# Admin catalog
# ===========================================================================
class TestAdminRewardRoutes:
    def test_create_update_deactivate(self, client, db_engine, admin_token):
        resp = client.post(
            "/api/admin/rewards",
            json={"name": "Bookmark Set", "points_cost": 40, "copies_available": 20},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 201
        rid = resp.json()["id"]
        assert resp.json()["reward_type"] == "PLATFORM"

        resp = client.patch(
            f"/api/admin/rewards/{rid}", json={"points_cost": 60}, headers=_auth(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["points_cost"] == 60

        resp = client.delete(f"/api/admin/rewards/{rid}", headers=_auth(admin_token))
        assert resp.status_code == 200
        assert client.get("/api/rewards").json()["rewards"] == []

    def test_empty_patch(self, client, db_engine, admin_token):
        rid = make_reward(db_engine)
        resp = client.patch(f"/api/admin/rewards/{rid}", json={}, headers=_auth(admin_token))
        assert resp.status_code == 400

    def test_unknown_badge_code(self, client, admin_token):
        resp = client.post(
            "/api/admin/rewards",
            json={"name": "Mystery", "points_cost": 40, "badge_code": "NOPE"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "INVALID_REQUEST"

    def test_missing_reward(self, client, admin_token):
        resp = client.delete("/api/admin/rewards/nope", headers=_auth(admin_token))
        assert resp.status_code == 404


# ===========================================================================
# Admin balances
# ===========================================================================
class TestAdminBalanceRoutes:
    def test_adjustment(self, client, db_engine, admin_token):
        uid = make_user(db_engine, credits=100)
        resp = client.post(
            "/api/admin/adjustments",
            json={"user_id": uid, "currency": "CREDITS", "delta": -30, "reason": "Chargeback"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["balance"] == 70
        assert resp.json()["entry"]["type"] == "ADMIN_ADJUSTMENT"

        ledger = client.get(
            f"/api/admin/users/{uid}/ledger",
            params={"currency": Currency.CREDITS.value},
            headers=_auth(admin_token),
        ).json()["entries"]
        assert sorted(e["amount"] for e in ledger) == [-30, 100]

    def test_adjustment_cannot_overdraw(self, client, db_engine, admin_token):
        uid = make_user(db_engine, credits=10)
        resp = client.post(
            "/api/admin/adjustments",
            json={"user_id": uid, "currency": "CREDITS", "delta": -30, "reason": "Chargeback"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "INSUFFICIENT_BALANCE"

    def test_zero_delta(self, client, db_engine, admin_token):
        uid = make_user(db_engine)
        resp = client.post(
            "/api/admin/adjustments",
            json={"user_id": uid, "currency": "POINTS", "delta": 0, "reason": "noop"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 422

    def test_reconciliation(self, client, db_engine, admin_token):
        make_user(db_engine, points=10)
        resp = client.get("/api/admin/reconciliation", headers=_auth(admin_token))
        assert resp.status_code == 200
        assert resp.json()["mismatched"] == 0


# ===========================================================================
# Credits: boosts, sponsorships, purchase re-query
# ===========================================================================
class TestCreditRoutes:
    def test_boost(self, client, db_engine):
        uid = make_user(db_engine, credits=100)
        pid = make_pitch(db_engine, uid)
        resp = client.post(
            "/api/credits/boost",
            json={"pitch_id": pid, "amount": 20, "duration_days": 3},
            headers=_as(uid),
        )
        assert resp.status_code == 200
        assert resp.json()["credit_balance"] == 80
        assert resp.json()["boost_ends_at"]

    def test_boost_below_minimum(self, client, db_engine):
        uid = make_user(db_engine, credits=100)
        pid = make_pitch(db_engine, uid)
        resp = client.post(
            "/api/credits/boost", json={"pitch_id": pid, "amount": 5}, headers=_as(uid),
        )
        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "INVALID_REQUEST"

    def test_boost_someone_elses_pitch(self, client, db_engine):
        author = make_user(db_engine, "Author")
        uid = make_user(db_engine, credits=100)
        pid = make_pitch(db_engine, author)
        resp = client.post(
            "/api/credits/boost", json={"pitch_id": pid, "amount": 20}, headers=_as(uid),
        )
        assert resp.status_code == 403
        assert resp.json()["detail"]["code"] == "NOT_PERMITTED"

    def test_sponsor(self, client, db_engine):
        uid = make_user(db_engine, credits=500)
        pid = make_pitch(db_engine, uid)
        resp = client.post(
            f"/api/credits/sponsor/{pid}",
            json={"budget": 150, "duration_days": 10, "target_genres": ["Fantasy"]},
            headers=_as(uid),
        )
        assert resp.status_code == 201
        assert resp.json()["credit_balance"] == 350
        assert resp.json()["sponsorship"]["target_genres"] == ["Fantasy"]

    def test_purchase_requery(self, client, db_engine):
        uid = make_user(db_engine)
        other = make_user(db_engine, "Other")
        client.post("/api/webhooks/payments", json=_payment(uid, "pi_q"), headers=WEBHOOK_HEADERS)

        resp = client.get("/api/credits/purchases/pi_q", headers=_as(uid))
        assert resp.json()["credited"] is True
        assert resp.json()["entry"]["amount"] == 100

        resp = client.get("/api/credits/purchases/pi_q", headers=_as(other))
        assert resp.json() == {"payment_id": "pi_q", "credited": False}
        resp = client.get("/api/credits/purchases/pi_unknown", headers=_as(uid))
        assert resp.json()["credited"] is False


# ===========================================================================
# Payment webhook
# ===========================================================================
class TestPaymentWebhook:
    def test_wrong_secret(self, client, db_engine):
        uid = make_user(db_engine)
        resp = client.post(
            "/api/webhooks/payments", json=_payment(uid),
            headers={"X-Webhook-Secret": "guess"},
        )
        assert resp.status_code == 401
        assert get_user(db_engine, uid).credit_balance == 0

    def test_missing_secret(self, client, db_engine):
        uid = make_user(db_engine)
        resp = client.post("/api/webhooks/payments", json=_payment(uid))
        assert resp.status_code == 401

    def test_credits_once_on_redelivery(self, client, db_engine):
        uid = make_user(db_engine)

        first = client.post("/api/webhooks/payments", json=_payment(uid), headers=WEBHOOK_HEADERS)
        second = client.post("/api/webhooks/payments", json=_payment(uid), headers=WEBHOOK_HEADERS)

        assert first.status_code == 200
        assert first.json()["credited"] is True
        assert first.json()["credit_balance"] == 100
        assert second.json()["credited"] is False
        assert second.json()["replayed"] is True
        assert second.json()["entry_id"] == first.json()["entry_id"]
        assert get_user(db_engine, uid).credit_balance == 100

    def test_non_succeeded_not_credited(self, client, db_engine):
        uid = make_user(db_engine)
        resp = client.post(
            "/api/webhooks/payments", json=_payment(uid, status="failed"),
            headers=WEBHOOK_HEADERS,
        )
        assert resp.json() == {"received": True, "credited": False}
        assert get_user(db_engine, uid).credit_balance == 0

    def test_out_of_range(self, client, db_engine):
        uid = make_user(db_engine)
        resp = client.post(
            "/api/webhooks/payments", json=_payment(uid, credits=5),
            headers=WEBHOOK_HEADERS,
        )
        assert resp.status_code == 422

    def test_unknown_user(self, client):
        resp = client.post(
            "/api/webhooks/payments", json=_payment("ghost"), headers=WEBHOOK_HEADERS,
        )
        assert resp.status_code == 404
