# store_backend/tests/test_api.py

from datetime import timedelta

import pytest
from bson import ObjectId

from store_backend.shared.utils import utcnow


@pytest.fixture
def plan(make_plan):
    return make_plan()


@pytest.fixture
def store(make_store):
    return make_store()


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200


class TestStoreRoutes:
    def test_create_store_hides_secret_key(self, client, db):
        response = client.post("/api/stores/", json={
            "name": "Olive Corner",
            "domain": "olive-corner",
            "contactEmail": "owner@olive-corner.com",
            "lahzaSecretKey": "sk_live_secret",
        })

        assert response.status_code == 201
        data = response.json()["data"]
        assert "lahza_secret_key" not in data
        assert data["has_payment_credentials"] is True
        assert data["subscription_state"]["state"] == "trial_active"
        assert db.stores.find_one({"domain": "olive-corner"})["lahza_secret_key"] == "sk_live_secret"

    def test_duplicate_domain_conflicts(self, client):
        body = {"name": "Olive Corner", "domain": "olive-corner", "contactEmail": "owner@olive-corner.com"}
        assert client.post("/api/stores/", json=body).status_code == 201
        assert client.post("/api/stores/", json=body).status_code == 409

    def test_unknown_store(self, client):
        assert client.get("/api/stores/not-an-id").status_code == 404


class TestPlanRoutes:
    def test_writes_require_token(self, client):
        response = client.post("/api/plans/", json={"name": "Monthly", "type": "monthly", "duration": 30, "price": 99})
        assert response.status_code == 401

    def test_invalid_duration(self, client, auth_headers):
        response = client.post("/api/plans/", json={"name": "Broken", "type": "monthly", "duration": 0, "price": 99}, headers=auth_headers)
        assert response.status_code == 422

    def test_create_and_list(self, client, auth_headers):
        response = client.post(
            "/api/plans/",
            json={"name": "Monthly", "type": "monthly", "duration": 30, "price": 99, "currency": "ILS", "isPopular": True},
            headers=auth_headers,
        )
        assert response.status_code == 201
        created = response.json()["data"]
        assert created["duration_text"] == "1 Month"
        assert created["created_by"] == "operator-1"

        active = client.get("/api/plans/active").json()["data"]
        assert [p["_id"] for p in active] == [created["_id"]]

    def test_toggle_hides_plan_from_active_list(self, client, auth_headers, plan):
        response = client.post(f"/api/plans/{plan['_id']}/toggle", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["data"]["is_active"] is False
        assert client.get("/api/plans/active").json()["data"] == []

    def test_plan_in_use_cannot_be_deleted(self, client, auth_headers, plan, make_store):
        make_store(subscription={"plan_id": plan["_id"]})
        assert client.delete(f"/api/plans/{plan['_id']}", headers=auth_headers).status_code == 409

    def test_delete_unused_plan(self, client, auth_headers, plan, db):
        assert client.delete(f"/api/plans/{plan['_id']}", headers=auth_headers).status_code == 200
        assert db.subscription_plans.count_documents({}) == 0


class TestInitializePayment:
    def test_creates_pending_payment(self, client, db, store, plan):
        response = client.post(
            f"/api/payment/{store['_id']}/initialize",
            params={"planId": str(plan["_id"])},
            json={"amount": 99, "currency": "ILS", "email": "owner@example.com"},
        )

        assert response.status_code == 201
        assert response.json()["data"]["reference"] == "REF-NEW"
        record = db.pending_payments.find_one({"reference": "REF-NEW"})
        assert record["status"] == "pending"
        assert record["store"] == store["_id"]
        assert record["plan_id"] == plan["_id"]

    def test_plan_id_is_required(self, client, store):
        response = client.post(f"/api/payment/{store['_id']}/initialize", json={"amount": 99})
        assert response.status_code == 400

    def test_inactive_plan_is_rejected(self, client, store, make_plan):
        retired = make_plan(is_active=False)
        response = client.post(f"/api/payment/{store['_id']}/initialize", json={"amount": 99, "planId": str(retired["_id"])})
        assert response.status_code == 400

    def test_store_without_credentials(self, client, make_store, plan):
        store = make_store(lahza_secret_key=None)
        response = client.post(f"/api/payment/{store['_id']}/initialize", json={"amount": 99, "planId": str(plan["_id"])})
        assert response.status_code == 400


class TestPollPayment:
    def test_pending(self, client, lahza, store, plan, make_pending):
        make_pending(store, plan, "REF123")

        body = client.get(f"/api/payment/{store['_id']}/poll/REF123").json()

        assert body["status"] == "pending"
        assert body["shouldContinuePolling"] is True
        assert body["subscriptionActivated"] is False

    def test_success_activates_then_short_circuits(self, client, db, lahza, store, plan, make_pending):
        make_pending(store, plan, "REF123")
        lahza.statuses["REF123"] = "success"

        body = client.get(f"/api/payment/{store['_id']}/poll/REF123").json()
        assert body["status"] == "success"
        assert body["shouldContinuePolling"] is False
        assert body["subscriptionActivated"] is True
        assert db.pending_payments.find_one({"reference": "REF123"})["activation_source"] == "verify-backup"

        lahza.requests.clear()
        again = client.get(f"/api/payment/{store['_id']}/poll/REF123").json()
        assert again["alreadyActivated"] is True
        assert lahza.requests == []

    def test_gateway_error_keeps_client_polling(self, client, lahza, store, plan, make_pending):
        make_pending(store, plan, "REF123")
        lahza.failures["REF123"] = 503

        response = client.get(f"/api/payment/{store['_id']}/poll/REF123")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["status"] == "error"
        assert body["shouldContinuePolling"] is True

    def test_failed_record_stops_polling(self, client, store, plan, make_pending):
        make_pending(store, plan, "REF123", status="exhausted", last_error="No terminal gateway status after 50 checks")

        body = client.get(f"/api/payment/{store['_id']}/poll/REF123").json()

        assert body["status"] == "failed"
        assert body["shouldContinuePolling"] is False

    def test_other_store_reference(self, client, store, plan, make_store, make_pending):
        other = make_store()
        make_pending(other, plan, "REF123")

        assert client.get(f"/api/payment/{store['_id']}/poll/REF123").status_code == 404


class TestWebhook:
    def test_always_answers_200(self, client, lahza, store, plan, make_pending):
        make_pending(store, plan, "REF123")
        lahza.failures["REF123"] = 500

        response = client.post(f"/api/payment/{store['_id']}/webhook", json={"event": "charge.success", "data": {"reference": "REF123", "status": "success"}})

        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_activates_verified_payment(self, client, db, lahza, store, plan, make_pending):
        make_pending(store, plan, "REF123")
        lahza.statuses["REF123"] = "captured"

        response = client.post(f"/api/payment/{store['_id']}/webhook", json={"event": "charge.success", "data": {"reference": "REF123"}})

        assert response.status_code == 200
        assert response.json()["subscriptionActivated"] is True
        assert db.stores.find_one({"_id": store["_id"]})["subscription"]["is_subscribed"] is True


class TestPaymentFlow:
    def test_initialize_poll_and_replayed_webhook(self, client, db, lahza, auth_headers, store, plan):
        started = client.post(
            f"/api/payment/{store['_id']}/initialize",
            json={"amount": 99, "currency": "ILS", "email": "owner@example.com", "planId": str(plan["_id"])},
        )
        assert started.status_code == 201
        reference = started.json()["data"]["reference"]

        lahza.statuses[reference] = "pending"
        pending = client.get(f"/api/payment/{store['_id']}/poll/{reference}").json()
        assert pending["shouldContinuePolling"] is True

        lahza.statuses[reference] = "success"
        done = client.get(f"/api/payment/{store['_id']}/poll/{reference}").json()
        assert done["status"] == "success"
        assert done["subscriptionActivated"] is True
        stored = db.stores.find_one({"_id": store["_id"]})
        assert stored["subscription"]["is_subscribed"] is True
        assert stored["subscription"]["reference_id"] == reference

        cancelled = client.post(f"/api/subscription/stores/{store['_id']}/cancel", json={"reason": "moving"}, headers=auth_headers)
        assert cancelled.status_code == 200

        replay = client.post(f"/api/payment/{store['_id']}/webhook", json={"event": "charge.success", "data": {"reference": reference}})

        assert replay.status_code == 200
        assert replay.json()["alreadyActivated"] is True
        stored = db.stores.find_one({"_id": store["_id"]})
        assert stored["subscription"]["is_subscribed"] is False
        assert stored["status"] == "inactive"


class TestManualActivate:
    def test_requires_token(self, client, store, plan):
        response = client.post(f"/api/payment/{store['_id']}/manual-activate", json={"reference": "REF123", "planId": str(plan["_id"])})
        assert response.status_code == 401

    def test_completes_exhausted_payment(self, client, db, lahza, auth_headers, store, plan, make_pending):
        make_pending(store, plan, "REF123", status="exhausted", check_attempts=50)
        lahza.statuses["REF123"] = "success"

        response = client.post(
            f"/api/payment/{store['_id']}/manual-activate",
            json={"reference": "REF123", "planId": str(plan["_id"])},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["subscriptionActivated"] is True
        record = db.pending_payments.find_one({"reference": "REF123"})
        assert record["status"] == "completed"
        assert record["activation_source"] == "manual"

    def test_unpaid_reference_is_rejected(self, client, lahza, auth_headers, store, plan, make_pending):
        make_pending(store, plan, "REF123")
        lahza.statuses["REF123"] = "pending"

        response = client.post(
            f"/api/payment/{store['_id']}/manual-activate",
            json={"reference": "REF123", "planId": str(plan["_id"])},
            headers=auth_headers,
        )

        assert response.status_code == 400


class TestPollingStatus:
    def test_reports_mode_and_backlog(self, client, store, plan, make_pending):
        make_pending(store, plan, "REF1")
        make_pending(store, plan, "REF2", status="completed")

        body = client.get("/api/payment/polling-status").json()

        assert body["mode"] == "slow"
        assert body["intervalSeconds"] == 60
        assert body["pendingCount"] == 1


class TestSubscriptionRoutes:
    def test_requires_token(self, client):
        assert client.get("/api/subscription/stats").status_code == 401

    def test_status_report(self, client, auth_headers, store):
        response = client.get(f"/api/subscription/stores/{store['_id']}/status", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["data"]["state"] == "trial_active"

    def test_activate_by_operator(self, client, db, auth_headers, store, plan):
        response = client.post(
            f"/api/subscription/stores/{store['_id']}/activate",
            json={"planId": str(plan["_id"]), "autoRenew": True},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["state"] == "subscription_active"
        assert data["subscription"]["auto_renew"] is True
        entry = db.stores.find_one({"_id": store["_id"]})["subscription_history"][-1]
        assert entry["details"]["source"] == "admin"
        assert entry["performed_by"] == "operator-1"

    def test_extend_trial(self, client, auth_headers, store):
        response = client.post(f"/api/subscription/stores/{store['_id']}/trial/extend", json={"daysToAdd": 7}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["data"]["days_remaining"] == 21

    def test_cancel_without_subscription(self, client, auth_headers, store):
        response = client.post(f"/api/subscription/stores/{store['_id']}/cancel", json={"reason": "test"}, headers=auth_headers)
        assert response.status_code == 400

    def test_history_filter(self, client, auth_headers, store):
        client.post(f"/api/subscription/stores/{store['_id']}/trial/extend", json={"daysToAdd": 3}, headers=auth_headers)

        response = client.get(f"/api/subscription/stores/{store['_id']}/history", params={"action": "trial_extended"}, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["data"]["count"] == 1

        unknown = client.get(f"/api/subscription/stores/{store['_id']}/history", params={"action": "nope"}, headers=auth_headers)
        assert unknown.status_code == 400

    def test_trigger_check_runs_expiry_sweep(self, client, db, auth_headers, make_store):
        expired = make_store(subscription={"trial_end_date": utcnow() - timedelta(hours=1)})

        response = client.post("/api/subscription/trigger-check", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["data"]["deactivated"] == 1
        assert db.stores.find_one({"_id": expired["_id"]})["status"] == "inactive"

    def test_expiring_and_stats(self, client, auth_headers, make_store):
        make_store(subscription={"trial_end_date": utcnow() + timedelta(days=2)})

        expiring = client.get("/api/subscription/expiring", params={"days": 3}, headers=auth_headers).json()["data"]
        stats = client.get("/api/subscription/stats", headers=auth_headers).json()["data"]

        assert expiring["count"] == 1
        assert stats["total"] == 1

    def test_scheduler_status(self, client, auth_headers):
        tasks = client.get("/api/subscription/scheduler", headers=auth_headers).json()["data"]["tasks"]
        assert {t["name"] for t in tasks} == {
            "payment-reconciliation",
            "expiry-sweep",
            "auto-renewal-sweep",
            "expiring-soon-report",
            "pending-payment-cleanup",
        }

    def test_unknown_store(self, client, auth_headers):
        response = client.get(f"/api/subscription/stores/{ObjectId()}/status", headers=auth_headers)
        assert response.status_code == 404
