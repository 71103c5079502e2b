# store_backend/features/subscription/history.py

# Helpers for the append-only 'subscription_history' array on store documents.
# Entries are only ever pushed; reporting endpoints are the only readers.

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ...db import mongo_client as database
from ...db.mongo_client import get_stores_collection, require_collection
from ...models.subscription_history import HistoryAction, SubscriptionHistoryEntry
from ...shared.utils import to_object_id, utcnow

DEFAULT_DESCRIPTIONS = {
    HistoryAction.TRIAL_STARTED: "Free trial started",
    HistoryAction.TRIAL_EXTENDED: "Trial period extended",
    HistoryAction.SUBSCRIPTION_ACTIVATED: "Subscription activated",
    HistoryAction.SUBSCRIPTION_RENEWED: "Subscription renewed",
    HistoryAction.SUBSCRIPTION_CANCELLED: "Subscription cancelled",
    HistoryAction.SUBSCRIPTION_EXPIRED: "Subscription expired",
    HistoryAction.PAYMENT_RECEIVED: "Payment received",
    HistoryAction.PAYMENT_FAILED: "Payment failed",
    HistoryAction.PLAN_CHANGED: "Subscription plan changed",
    HistoryAction.AMOUNT_CHANGED: "Subscription amount changed",
    HistoryAction.AUTO_RENEW_CHANGED: "Auto-renewal setting changed",
    HistoryAction.PAYMENT_METHOD_CHANGED: "Payment method changed",
    HistoryAction.STORE_DEACTIVATED: "Store deactivated",
    HistoryAction.STORE_REACTIVATED: "Store reactivated",
    HistoryAction.END_DATE_UPDATED: "Subscription end date updated",
}


def build_entry(
    action: HistoryAction,
    description: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    performed_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Returns a history entry ready to be $push-ed onto a store document."""
    action = HistoryAction(action)
    entry = SubscriptionHistoryEntry(
        action=action,
        description=description or DEFAULT_DESCRIPTIONS[action],
        details=details or {},
        performed_by=performed_by,
        performed_at=now or utcnow(),
    )
    return entry.model_dump()


async def append_history(
    store_id: Any,
    action: HistoryAction,
    description: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    performed_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> bool:
    """Appends one entry to a store's history. Returns False if the store does not exist."""
    entry = build_entry(action, description, details, performed_by, now)
    return await database.update_one(
        require_collection(get_stores_collection),
        {"_id": to_object_id(store_id)},
        {"$push": {"subscription_history": entry}},
    )


def filter_history(
    entries: Iterable[Dict[str, Any]],
    actions: Optional[Iterable[str]] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Newest first, optionally restricted to some actions."""
    wanted = {HistoryAction(a).value for a in actions} if actions else None
    selected = [e for e in entries if wanted is None or e.get("action") in wanted]
    selected.sort(key=lambda e: e.get("performed_at") or datetime.min, reverse=True)
    return selected[:limit] if limit else selected


def count_actions(store: Dict[str, Any], actions: Iterable[str]) -> int:
    wanted = {HistoryAction(a).value for a in actions}
    return sum(1 for e in store.get("subscription_history") or [] if e.get("action") in wanted)
