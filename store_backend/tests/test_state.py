# store_backend/tests/test_state.py

from datetime import datetime, timedelta

import pytest

from store_backend.features.subscription.state import (
    SubscriptionState,
    days_remaining,
    derive_state,
    derive_store_state,
    is_subscription_active,
    should_be_deactivated,
)

NOW = datetime(2024, 10, 27, 10, 0, 0)
SECOND = timedelta(seconds=1)


def _store(is_subscribed=False, end_date=None, trial_end_date=None, status="active"):
    return {
        "status": status,
        "subscription": {"is_subscribed": is_subscribed, "end_date": end_date, "trial_end_date": trial_end_date},
    }


class TestDeriveState:
    def test_trial_active_one_second_before_end(self):
        assert derive_state(False, None, NOW + SECOND, NOW) is SubscriptionState.TRIAL_ACTIVE

    def test_trial_expired_one_second_after_end(self):
        assert derive_state(False, None, NOW - SECOND, NOW) is SubscriptionState.TRIAL_EXPIRED

    def test_trial_expired_exactly_at_end(self):
        assert derive_state(False, None, NOW, NOW) is SubscriptionState.TRIAL_EXPIRED

    def test_subscription_boundaries(self):
        assert derive_state(True, NOW + SECOND, None, NOW) is SubscriptionState.SUBSCRIPTION_ACTIVE
        assert derive_state(True, NOW - SECOND, None, NOW) is SubscriptionState.SUBSCRIPTION_EXPIRED

    def test_subscribed_store_ignores_trial_dates(self):
        state = derive_state(True, NOW - SECOND, NOW + timedelta(days=3), NOW)
        assert state is SubscriptionState.SUBSCRIPTION_EXPIRED

    def test_missing_dates_count_as_ended(self):
        assert derive_state(False, None, None, NOW) is SubscriptionState.TRIAL_EXPIRED
        assert derive_state(True, None, None, NOW) is SubscriptionState.SUBSCRIPTION_EXPIRED

    @pytest.mark.parametrize("offset_days", [-30, -1, 0, 1, 30])
    def test_exactly_one_state(self, offset_days):
        end = NOW + timedelta(days=offset_days)
        for is_subscribed in (True, False):
            state = derive_state(is_subscribed, end, end, NOW)
            assert isinstance(state, SubscriptionState)
            assert state is not SubscriptionState.INACTIVE


class TestStoreHelpers:
    def test_inactive_status_overrides_dates(self):
        store = _store(is_subscribed=True, end_date=NOW + timedelta(days=10), status="inactive")
        assert derive_store_state(store, NOW) is SubscriptionState.INACTIVE
        # The date-based answer is still available
        assert is_subscription_active(store, NOW) is True

    def test_should_be_deactivated(self):
        assert should_be_deactivated(_store(trial_end_date=NOW - SECOND), NOW) is True
        assert should_be_deactivated(_store(trial_end_date=NOW + SECOND), NOW) is False
        assert should_be_deactivated(_store(is_subscribed=True, end_date=NOW - SECOND), NOW) is True
        assert should_be_deactivated(_store(is_subscribed=True, end_date=NOW + SECOND), NOW) is False

    def test_store_without_dates_is_left_alone(self):
        assert should_be_deactivated(_store(), NOW) is False

    def test_days_remaining_rounds_up(self):
        store = _store(is_subscribed=True, end_date=NOW + timedelta(days=2, hours=1))
        assert days_remaining(store, NOW) == 3

    def test_days_remaining_never_negative(self):
        assert days_remaining(_store(trial_end_date=NOW - timedelta(days=5)), NOW) == 0
