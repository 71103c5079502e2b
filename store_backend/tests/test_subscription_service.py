# store_backend/tests/test_subscription_service.py

from datetime import timedelta

import pytest

from store_backend.config.settings import settings
from store_backend.features.subscription import service
from store_backend.features.subscription.history import count_actions, filter_history
from store_backend.models.store import StoreCreateRequest
from store_backend.shared.exceptions import ActivationError, ConflictError, NotFoundError, SubscriptionTransitionError


@pytest.fixture
def plan(make_plan):
    return make_plan()


@pytest.fixture
def subscribed_store(make_store, plan, now):
    return make_store(subscription={
        "is_subscribed": True,
        "plan_id": plan["_id"],
        "plan": "monthly",
        "start_date": now - timedelta(days=10),
        "end_date": now + timedelta(days=20),
        "trial_end_date": now - timedelta(days=30),
        "reference_id": "REF-PAID",
        "amount": 99.0,
        "currency": "ILS",
    })


class TestCreateStore:
    async def test_new_store_starts_trial(self, db, now):
        request = StoreCreateRequest(name="Olive Corner", domain="Olive-Corner", contact_email="owner@olive-corner.com")

        store = await service.create_store(request, now=now)

        assert store["domain"] == "olive-corner"
        assert store["status"] == "active"
        assert store["subscription"]["is_subscribed"] is False
        assert store["subscription"]["trial_end_date"] == now + timedelta(days=settings.TRIAL_PERIOD_DAYS)
        assert [e["action"] for e in store["subscription_history"]] == ["trial_started"]
        assert db.stores.count_documents({}) == 1

    async def test_duplicate_domain(self, db, now):
        request = StoreCreateRequest(name="Olive Corner", domain="olive-corner", contact_email="owner@olive-corner.com")
        await service.create_store(request, now=now)
        with pytest.raises(ConflictError):
            await service.create_store(request, now=now)


class TestDeactivation:
    async def test_expired_trial_deactivates_once(self, db, make_store, now):
        store = make_store(subscription={"trial_end_date": now - timedelta(seconds=1)})

        assert await service.deactivate_if_expired(store["_id"], now=now) is True
        assert await service.deactivate_if_expired(store["_id"], now=now) is False

        stored = db.stores.find_one({"_id": store["_id"]})
        assert stored["status"] == "inactive"
        assert count_actions(stored, ["store_deactivated"]) == 1
        assert stored["subscription_history"][-1]["details"]["reason"] == "trial_expired"

    async def test_running_trial_is_kept(self, make_store, now):
        store = make_store()
        assert await service.deactivate_if_expired(store["_id"], now=now) is False

    async def test_expired_subscription_reason(self, db, make_store, now):
        store = make_store(subscription={"is_subscribed": True, "end_date": now - timedelta(minutes=1)})

        assert await service.deactivate_if_expired(store["_id"], now=now) is True

        stored = db.stores.find_one({"_id": store["_id"]})
        assert stored["subscription"]["is_subscribed"] is False
        assert stored["subscription_history"][-1]["details"]["reason"] == "subscription_expired"


class TestActivateSubscription:
    async def test_plan_duration_sets_end_date(self, db, make_store, plan, now):
        store = make_store(status="inactive")

        result = await service.activate_subscription(store["_id"], plan["_id"], source="admin", performed_by="operator-1", now=now)

        stored = result["store"]
        assert result["action"] == "subscription_activated"
        assert stored["status"] == "active"
        assert stored["subscription"]["start_date"] == now
        assert stored["subscription"]["end_date"] == now + timedelta(days=plan["duration"])
        assert stored["subscription"]["amount"] == plan["price"]

    async def test_custom_plan_accepts_explicit_dates(self, make_store, make_plan, now):
        store = make_store()
        custom = make_plan(type="custom", duration=45)
        end = now + timedelta(days=100)

        result = await service.activate_subscription(store["_id"], custom["_id"], start_date=now, end_date=end, now=now)

        assert result["store"]["subscription"]["end_date"] == end

    async def test_explicit_end_date_requires_custom_plan(self, make_store, plan, now):
        store = make_store()
        with pytest.raises(SubscriptionTransitionError):
            await service.activate_subscription(store["_id"], plan["_id"], end_date=now + timedelta(days=10), now=now)

    async def test_end_must_follow_start(self, make_store, make_plan, now):
        store = make_store()
        custom = make_plan(type="custom")
        with pytest.raises(SubscriptionTransitionError):
            await service.activate_subscription(store["_id"], custom["_id"], start_date=now, end_date=now, now=now)

    async def test_inactive_plan(self, make_store, make_plan, now):
        store = make_store()
        retired = make_plan(is_active=False)
        with pytest.raises(ActivationError):
            await service.activate_subscription(store["_id"], retired["_id"], now=now)

    async def test_unknown_store(self, db, plan, now):
        with pytest.raises(NotFoundError):
            await service.activate_subscription("65f2a5b1b3727d9c4a7e1a0b", plan["_id"], reference="REF1", now=now)

    async def test_auto_renew_left_unchanged_when_not_given(self, make_store, plan, now):
        store = make_store(subscription={"auto_renew": True})

        result = await service.activate_subscription(store["_id"], plan["_id"], now=now)

        assert result["store"]["subscription"]["auto_renew"] is True


class TestTrialExtension:
    async def test_extends_running_trial_from_its_end(self, make_store, now):
        store = make_store(subscription={"trial_end_date": now + timedelta(days=2)})

        updated = await service.extend_trial(store["_id"], 7, now=now)

        assert updated["subscription"]["trial_end_date"] == now + timedelta(days=9)

    async def test_expired_trial_counts_from_now_and_reactivates(self, make_store, now):
        store = make_store(status="inactive", subscription={"trial_end_date": now - timedelta(days=5)})

        updated = await service.extend_trial(store["_id"], 7, now=now)

        assert updated["subscription"]["trial_end_date"] == now + timedelta(days=7)
        assert updated["status"] == "active"
        assert updated["subscription_history"][-1]["action"] == "trial_extended"

    async def test_days_must_be_positive(self, make_store, now):
        store = make_store()
        with pytest.raises(SubscriptionTransitionError):
            await service.extend_trial(store["_id"], 0, now=now)


class TestCancellation:
    async def test_immediate_cancel_deactivates(self, subscribed_store, now):
        updated = await service.cancel_subscription(subscribed_store["_id"], reason="Closing shop", now=now)

        assert updated["subscription"]["is_subscribed"] is False
        assert updated["subscription"]["end_date"] == now
        assert updated["status"] == "inactive"
        assert updated["subscription_history"][-1]["action"] == "subscription_cancelled"

    async def test_cancel_at_period_end_only_stops_renewal(self, make_store, plan, now):
        store = make_store(subscription={"is_subscribed": True, "auto_renew": True, "end_date": now + timedelta(days=5)})

        updated = await service.cancel_subscription(store["_id"], immediate=False, now=now)

        assert updated["subscription"]["is_subscribed"] is True
        assert updated["subscription"]["auto_renew"] is False
        assert updated["status"] == "active"

    async def test_cancel_without_subscription(self, make_store, now):
        store = make_store()
        with pytest.raises(SubscriptionTransitionError):
            await service.cancel_subscription(store["_id"], now=now)


class TestAutoRenewal:
    async def test_toggle(self, subscribed_store, now):
        enabled = await service.enable_auto_renewal(subscribed_store["_id"], now=now)
        assert enabled["subscription"]["auto_renew"] is True

        with pytest.raises(SubscriptionTransitionError):
            await service.enable_auto_renewal(subscribed_store["_id"], now=now)

        disabled = await service.disable_auto_renewal(subscribed_store["_id"], now=now)
        assert disabled["subscription"]["auto_renew"] is False
        assert count_actions(disabled, ["auto_renew_changed"]) == 2

    async def test_enable_requires_active_subscription(self, make_store, now):
        store = make_store()
        with pytest.raises(SubscriptionTransitionError):
            await service.enable_auto_renewal(store["_id"], now=now)


class TestStoreStatus:
    async def test_reactivate_inactive_store(self, make_store, now):
        store = make_store(status="inactive")

        updated = await service.reactivate_store(store["_id"], now=now)

        assert updated["status"] == "active"
        assert updated["subscription_history"][-1]["action"] == "store_reactivated"

    async def test_reactivate_active_store_is_rejected(self, make_store, now):
        store = make_store()
        with pytest.raises(SubscriptionTransitionError):
            await service.reactivate_store(store["_id"], now=now)

    async def test_future_end_date_reactivates(self, make_store, now):
        store = make_store(status="inactive", subscription={
            "is_subscribed": True,
            "start_date": now - timedelta(days=40),
            "end_date": now - timedelta(days=10),
        })

        updated = await service.update_end_date(store["_id"], now + timedelta(days=30), reason="Goodwill", now=now)

        assert updated["subscription"]["end_date"] == now + timedelta(days=30)
        assert updated["status"] == "active"

    async def test_end_date_before_start(self, subscribed_store, now):
        with pytest.raises(SubscriptionTransitionError):
            await service.update_end_date(subscribed_store["_id"], now - timedelta(days=30), now=now)


class TestReporting:
    async def test_subscription_report(self, subscribed_store, now):
        report = await service.get_subscription_report(subscribed_store["_id"], now=now)

        assert report["state"] == "subscription_active"
        assert report["is_active"] is True
        assert report["days_remaining"] == 20
        assert report["subscription"]["plan_id"] == str(subscribed_store["subscription"]["plan_id"])

    async def test_expiring_stores(self, make_store, now):
        soon = make_store(subscription={"trial_end_date": now + timedelta(days=2)})
        make_store(subscription={"trial_end_date": now + timedelta(days=10)})
        make_store(status="inactive", subscription={"trial_end_date": now + timedelta(days=1)})

        reports = await service.get_expiring_stores(3, now=now)

        assert [r["store_id"] for r in reports] == [str(soon["_id"])]

    async def test_stats(self, make_store, subscribed_store, now):
        make_store(subscription={"trial_end_date": now + timedelta(days=3)})
        make_store(status="inactive", subscription={"trial_end_date": now - timedelta(days=3)})
        make_store(status="suspended")

        stats = await service.get_subscription_stats(now=now)

        assert stats["total"] == 4
        assert stats["active"] == 2
        assert stats["inactive"] == 1
        assert stats["suspended"] == 1
        assert stats["subscribed"] == 1
        assert stats["trial"] == 3
        assert stats["expiring_this_week"] == 1


class TestHistory:
    def test_filter_newest_first(self, now):
        entries = [
            {"action": "trial_started", "performed_at": now - timedelta(days=2)},
            {"action": "subscription_activated", "performed_at": now},
            {"action": "trial_extended", "performed_at": now - timedelta(days=1)},
        ]

        assert [e["action"] for e in filter_history(entries)] == ["subscription_activated", "trial_extended", "trial_started"]
        assert [e["action"] for e in filter_history(entries, actions=["trial_started"])] == ["trial_started"]
        assert len(filter_history(entries, limit=2)) == 2

    def test_unknown_action(self):
        with pytest.raises(ValueError):
            filter_history([], actions=["not_an_action"])
