# store_backend/features/subscription/state.py

# Derivation of a store's effective subscription state.
# Nothing here is stored: trial-active / subscription-active / expired is
# recomputed from is_subscribed, end_date and trial_end_date on every read.

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ...models.store import StoreStatus
from ...shared.utils import days_until, utcnow


class SubscriptionState(str, Enum):
    TRIAL_ACTIVE = "trial_active"
    TRIAL_EXPIRED = "trial_expired"
    SUBSCRIPTION_ACTIVE = "subscription_active"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    INACTIVE = "inactive"  # Store-level status overrides the dates


ACTIVE_STATES = (SubscriptionState.TRIAL_ACTIVE, SubscriptionState.SUBSCRIPTION_ACTIVE)


def derive_state(is_subscribed: bool, end_date: Optional[datetime], trial_end_date: Optional[datetime], now: datetime) -> SubscriptionState:
    """
    Exactly one state holds at any instant.
    A missing end date counts as already ended.
    """
    if is_subscribed:
        if end_date is not None and now < end_date:
            return SubscriptionState.SUBSCRIPTION_ACTIVE
        return SubscriptionState.SUBSCRIPTION_EXPIRED
    if trial_end_date is not None and now < trial_end_date:
        return SubscriptionState.TRIAL_ACTIVE
    return SubscriptionState.TRIAL_EXPIRED


def _subscription(store: Dict[str, Any]) -> Dict[str, Any]:
    return store.get("subscription") or {}


def derive_subscription_state(store: Dict[str, Any], now: Optional[datetime] = None) -> SubscriptionState:
    """Date-based state of a store document, ignoring the store-level status."""
    sub = _subscription(store)
    return derive_state(
        bool(sub.get("is_subscribed")),
        sub.get("end_date"),
        sub.get("trial_end_date"),
        now or utcnow(),
    )


def derive_store_state(store: Dict[str, Any], now: Optional[datetime] = None) -> SubscriptionState:
    """Like derive_subscription_state, but a non-active store is always INACTIVE."""
    if store.get("status", StoreStatus.ACTIVE.value) != StoreStatus.ACTIVE.value:
        return SubscriptionState.INACTIVE
    return derive_subscription_state(store, now)


def is_subscription_active(store: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    return derive_subscription_state(store, now) in ACTIVE_STATES


def should_be_deactivated(store: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    """
    True once the relevant end date has passed.
    Unlike is_subscription_active, a store with no end date at all is left alone.
    """
    now = now or utcnow()
    sub = _subscription(store)
    if sub.get("is_subscribed"):
        end_date = sub.get("end_date")
        return end_date is not None and now > end_date
    trial_end_date = sub.get("trial_end_date")
    return trial_end_date is not None and now > trial_end_date


def relevant_end_date(store: Dict[str, Any]) -> Optional[datetime]:
    sub = _subscription(store)
    return sub.get("end_date") if sub.get("is_subscribed") else sub.get("trial_end_date")


def days_remaining(store: Dict[str, Any], now: Optional[datetime] = None) -> int:
    return days_until(relevant_end_date(store), now or utcnow())
