# store_backend/tests/test_sweeps.py

from datetime import timedelta

import pytest
from bson import ObjectId

from store_backend.config.settings import settings
from store_backend.features.subscription.sweeps import (
    run_auto_renewal_sweep,
    run_expiring_soon_report,
    run_expiry_sweep,
    run_pending_payment_cleanup,
)


@pytest.fixture
def lapsed_auto_renew_store(make_store, make_plan, now):
    quarterly = make_plan(name="Quarterly", type="quarterly", duration=90, price=250.0)
    return make_store(status="inactive", subscription={
        "is_subscribed": False,
        "plan_id": quarterly["_id"],
        "plan": "quarterly",
        "end_date": now - timedelta(days=1),
        "trial_end_date": now - timedelta(days=120),
        "auto_renew": True,
        "authorization_code": "AUTH_saved",
        "amount": 250.0,
        "currency": "ILS",
    })


class TestExpirySweep:
    async def test_expired_trial_is_deactivated(self, db, make_store, now):
        expired = make_store(subscription={"trial_end_date": now - timedelta(minutes=1)})
        running = make_store()

        summary = await run_expiry_sweep(now=now)

        assert summary == {"checked": 1, "deactivated": 1, "errors": 0}
        stored = db.stores.find_one({"_id": expired["_id"]})
        assert stored["status"] == "inactive"
        assert stored["subscription_history"][-1]["action"] == "store_deactivated"
        assert db.stores.find_one({"_id": running["_id"]})["status"] == "active"

    async def test_second_run_is_a_no_op(self, db, make_store, now):
        store = make_store(subscription={"is_subscribed": True, "end_date": now - timedelta(days=1)})

        await run_expiry_sweep(now=now)
        summary = await run_expiry_sweep(now=now + timedelta(hours=1))

        assert summary["deactivated"] == 0
        stored = db.stores.find_one({"_id": store["_id"]})
        assert len(stored["subscription_history"]) == 1


class TestAutoRenewalSweep:
    async def test_successful_charge_starts_new_period(self, db, lahza, gateway, lapsed_auto_renew_store, now):
        summary = await run_auto_renewal_sweep(gateway, now=now)

        assert summary["renewed"] == 1
        stored = db.stores.find_one({"_id": lapsed_auto_renew_store["_id"]})
        assert stored["status"] == "active"
        assert stored["subscription"]["is_subscribed"] is True
        assert stored["subscription"]["end_date"] == now + timedelta(days=90)
        assert stored["subscription"]["reference_id"] == "REF-RENEWAL"
        entry = stored["subscription_history"][-1]
        assert entry["action"] == "payment_received"
        assert entry["details"]["source"] == "auto_renewal"
        assert len(lahza.calls("/charge_authorization")) == 1

    async def test_missing_plan_uses_default_period(self, db, gateway, lapsed_auto_renew_store, now):
        db.stores.update_one({"_id": lapsed_auto_renew_store["_id"]}, {"$set": {"subscription.plan_id": ObjectId()}})

        await run_auto_renewal_sweep(gateway, now=now)

        stored = db.stores.find_one({"_id": lapsed_auto_renew_store["_id"]})
        assert stored["subscription"]["end_date"] == now + timedelta(days=settings.DEFAULT_RENEWAL_PERIOD_DAYS)

    async def test_declined_charge_is_recorded(self, db, lahza, gateway, lapsed_auto_renew_store, now):
        lahza.charge_status = "failed"

        summary = await run_auto_renewal_sweep(gateway, now=now)

        assert summary["failed"] == 1
        stored = db.stores.find_one({"_id": lapsed_auto_renew_store["_id"]})
        assert stored["status"] == "inactive"
        assert stored["subscription"]["is_subscribed"] is False
        entry = stored["subscription_history"][-1]
        assert entry["action"] == "payment_failed"
        assert entry["details"]["error"] == "Insufficient funds"

    async def test_store_without_amount_is_skipped(self, db, lahza, gateway, lapsed_auto_renew_store, now):
        db.stores.update_one({"_id": lapsed_auto_renew_store["_id"]}, {"$set": {"subscription.amount": None}})

        summary = await run_auto_renewal_sweep(gateway, now=now)

        assert summary["skipped"] == 1
        assert lahza.calls("/charge_authorization") == []

    async def test_only_opted_in_stores_are_charged(self, lahza, gateway, make_store, now):
        make_store(subscription={"trial_end_date": now - timedelta(days=1), "authorization_code": "AUTH_x", "amount": 99.0})

        summary = await run_auto_renewal_sweep(gateway, now=now)

        assert summary["checked"] == 0
        assert lahza.requests == []


class TestExpiringSoonReport:
    async def test_lists_stores_inside_window(self, make_store, now):
        soon = make_store(subscription={"trial_end_date": now + timedelta(days=1)})
        make_store(subscription={"trial_end_date": now + timedelta(days=settings.EXPIRING_SOON_WINDOW_DAYS + 5)})

        report = await run_expiring_soon_report(now=now)

        assert report["window_days"] == settings.EXPIRING_SOON_WINDOW_DAYS
        assert report["count"] == 1
        assert report["stores"][0]["store_id"] == str(soon["_id"])
        assert report["stores"][0]["days_remaining"] == 1


class TestCleanup:
    async def test_cleanup_summary(self, make_store, make_plan, make_pending, now):
        store, plan = make_store(), make_plan()
        make_pending(store, plan, "REF-OLD", status="abandoned", completed_at=now - timedelta(days=3))

        assert await run_pending_payment_cleanup(now=now) == {"deleted": 1}
