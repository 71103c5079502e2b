# store_backend/features/subscription/service.py

# Subscription state transitions on store documents.
# Each transition is a single (conditional) update with its history entry,
# and every decision reads the derived state from state.py.

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError

from ...config.settings import settings
from ...db import mongo_client as database
from ...db.mongo_client import get_stores_collection, require_collection
from ...models.store import Store, StoreContact, StoreCreateRequest, StoreStatus, StoreSubscription
from ...models.subscription_history import HistoryAction
from ...models.subscription_plan import PlanType
from ...shared.exceptions import ActivationError, ConflictError, NotFoundError, SubscriptionTransitionError
from ...shared.logger import get_logger
from ...shared.utils import serialize_document, to_naive_utc, to_object_id, utcnow
from ..plans.service import get_plan
from . import state
from .history import append_history, build_entry

logger = get_logger("subscription_service")


def _stores():
    return require_collection(get_stores_collection)


async def get_store(store_id: Any) -> Optional[Dict[str, Any]]:
    return await database.find_by_id(_stores(), store_id)


async def get_store_or_raise(store_id: Any) -> Dict[str, Any]:
    store = await get_store(store_id)
    if store is None:
        raise NotFoundError(f"Store {store_id} not found")
    return store


async def _update_store(store: Dict[str, Any], set_fields: Dict[str, Any], entry: Dict[str, Any], extra_filter: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    """$set + $push of one history entry in a single write; returns the updated store."""
    query = {"_id": store["_id"], **(extra_filter or {})}
    return await database.find_one_and_update(
        _stores(),
        query,
        {"$set": set_fields, "$push": {"subscription_history": entry}},
    )


# --- Trial ---
async def create_store(data: StoreCreateRequest, performed_by: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Registers a store and starts its free trial."""
    now = now or utcnow()
    trial_end = now + timedelta(days=settings.TRIAL_PERIOD_DAYS)
    store = Store(
        name=data.name,
        domain=data.domain.lower(),
        contact=StoreContact(email=data.contact_email, phone=data.contact_phone),
        lahza_secret_key=data.lahza_secret_key,
        subscription=StoreSubscription(trial_end_date=trial_end),
        created_at=now,
        updated_at=now,
    )
    document = store.model_dump(exclude={"id"})
    document["subscription_history"] = [
        build_entry(
            HistoryAction.TRIAL_STARTED,
            details={"trial_end_date": trial_end, "trial_days": settings.TRIAL_PERIOD_DAYS},
            performed_by=performed_by,
            now=now,
        )
    ]
    try:
        document["_id"] = await database.insert_one(_stores(), document)
    except DuplicateKeyError:
        raise ConflictError(f"A store with domain '{document['domain']}' already exists") from None

    logger.info("Store created with trial", store_id=str(document["_id"]), domain=document["domain"], trial_end_date=trial_end.isoformat())
    return document


async def start_trial(store_id: Any, performed_by: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    """(Re)starts the trial window for an existing store."""
    now = now or utcnow()
    store = await get_store_or_raise(store_id)
    trial_end = now + timedelta(days=settings.TRIAL_PERIOD_DAYS)
    entry = build_entry(
        HistoryAction.TRIAL_STARTED,
        details={"trial_end_date": trial_end, "trial_days": settings.TRIAL_PERIOD_DAYS},
        performed_by=performed_by,
        now=now,
    )
    return await _update_store(
        store,
        {"subscription.trial_end_date": trial_end, "subscription.is_subscribed": False, "updated_at": now},
        entry,
    )


async def extend_trial(store_id: Any, days: int, performed_by: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Pushes trial_end_date forward by `days` (counted from now if the trial already ended).
    The store is active again afterwards, since its trial is.
    """
    if days <= 0:
        raise SubscriptionTransitionError("Days to add must be a positive number")
    now = now or utcnow()
    store = await get_store_or_raise(store_id)

    current_end = (store.get("subscription") or {}).get("trial_end_date")
    base = current_end if current_end is not None and current_end > now else now
    new_end = base + timedelta(days=days)

    entry = build_entry(
        HistoryAction.TRIAL_EXTENDED,
        description=f"Trial extended by {days} days",
        details={"days_added": days, "previous_trial_end_date": current_end, "trial_end_date": new_end},
        performed_by=performed_by,
        now=now,
    )
    updated = await _update_store(
        store,
        {
            "subscription.trial_end_date": new_end,
            "subscription.is_subscribed": False,
            "status": StoreStatus.ACTIVE.value,
            "updated_at": now,
        },
        entry,
    )
    logger.info("Trial extended", store_id=str(store["_id"]), days=days, trial_end_date=new_end.isoformat())
    return updated


# --- Expiry ---
def _expired_filter(store: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Filter that still matches only while the store is expired and not yet inactive."""
    if (store.get("subscription") or {}).get("is_subscribed"):
        dates = {"subscription.is_subscribed": True, "subscription.end_date": {"$lt": now}}
    else:
        dates = {"subscription.is_subscribed": {"$ne": True}, "subscription.trial_end_date": {"$lt": now}}
    return {"status": {"$ne": StoreStatus.INACTIVE.value}, **dates}


async def deactivate_if_expired(store_id: Any, now: Optional[datetime] = None, store: Optional[Dict[str, Any]] = None) -> bool:
    """
    Deactivates the store if its trial or subscription has ended.
    Returns True if this call deactivated it; an already inactive store is a no-op.
    """
    now = now or utcnow()
    store = store or await get_store_or_raise(store_id)
    if not state.should_be_deactivated(store, now):
        return False

    was_subscribed = bool((store.get("subscription") or {}).get("is_subscribed"))
    reason = "subscription_expired" if was_subscribed else "trial_expired"
    entry = build_entry(
        HistoryAction.STORE_DEACTIVATED,
        description="Store deactivated: subscription expired" if was_subscribed else "Store deactivated: trial expired",
        details={"reason": reason, "end_date": state.relevant_end_date(store)},
        now=now,
    )
    updated = await _update_store(
        store,
        {"status": StoreStatus.INACTIVE.value, "subscription.is_subscribed": False, "updated_at": now},
        entry,
        extra_filter=_expired_filter(store, now),
    )
    if updated is None:
        logger.info("Store already inactive or no longer expired, skipping deactivation", store_id=str(store["_id"]))
        return False

    logger.info("Store deactivated", store_id=str(store["_id"]), reason=reason)
    return True


# --- Activation ---
def _already_activated_filter(reference: str) -> Dict[str, Any]:
    return {
        "$or": [
            {"subscription.reference_id": {"$ne": reference}},
            {"subscription.is_subscribed": {"$ne": True}},
        ]
    }


async def activate_subscription(
    store_id: Any,
    plan_id: Any,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    amount: Optional[float] = None,
    currency: Optional[str] = None,
    reference: Optional[str] = None,
    auto_renew: Optional[bool] = None,
    payment_method: Optional[str] = None,
    authorization_code: Optional[str] = None,
    source: Optional[str] = None,
    performed_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[Dict[str, Any]]:
    """
    Activates (or renews) a paid subscription on a store.

    With a reference the update is conditional: a store whose reference_id already
    equals it while subscribed is not touched again and None is returned.
    Otherwise returns {"action": subscription_activated|subscription_renewed, "store": ...}.
    auto_renew=None leaves the store's current preference unchanged.
    """
    now = now or utcnow()

    plan = await get_plan(plan_id)
    if plan is None:
        raise ActivationError(f"Subscription plan {plan_id} not found")
    if not plan.get("is_active", False):
        raise ActivationError(f"Subscription plan {plan_id} is not active")

    start = to_naive_utc(start_date) or now
    if end_date is not None and plan.get("type") != PlanType.CUSTOM.value:
        raise SubscriptionTransitionError("An explicit end date is only allowed for custom plans")
    end = to_naive_utc(end_date) or start + timedelta(days=plan["duration"])
    if end <= start:
        raise SubscriptionTransitionError("End date must be after start date")

    set_fields: Dict[str, Any] = {
        "subscription.is_subscribed": True,
        "subscription.plan_id": plan["_id"],
        "subscription.plan": plan.get("type"),
        "subscription.start_date": start,
        "subscription.end_date": end,
        "subscription.last_payment_date": start,
        "subscription.next_payment_date": end,
        "subscription.amount": amount if amount is not None else plan.get("price"),
        "subscription.currency": currency or plan.get("currency"),
        "status": StoreStatus.ACTIVE.value,
        "updated_at": now,
    }
    if reference is not None:
        set_fields["subscription.reference_id"] = reference
    if auto_renew is not None:
        set_fields["subscription.auto_renew"] = auto_renew
    if payment_method is not None:
        set_fields["subscription.payment_method"] = payment_method
    if authorization_code:
        set_fields["subscription.authorization_code"] = authorization_code

    query: Dict[str, Any] = {"_id": to_object_id(store_id)}
    if reference is not None:
        query.update(_already_activated_filter(reference))

    # Pre-image tells an activation from a renewal
    previous = await database.find_one_and_update(_stores(), query, {"$set": set_fields}, return_after=False)
    if previous is None:
        if await get_store(store_id) is None:
            raise NotFoundError(f"Store {store_id} not found")
        logger.info("Subscription already activated for reference", store_id=str(store_id), reference=reference)
        return None

    was_subscribed = bool((previous.get("subscription") or {}).get("is_subscribed"))
    action = HistoryAction.SUBSCRIPTION_RENEWED if was_subscribed else HistoryAction.SUBSCRIPTION_ACTIVATED
    await append_history(
        previous["_id"],
        action,
        description=f"Subscription {'renewed' if was_subscribed else 'activated'}: {plan.get('name')}",
        details={
            "plan_id": plan["_id"],
            "plan_type": plan.get("type"),
            "start_date": start,
            "end_date": end,
            "amount": set_fields["subscription.amount"],
            "currency": set_fields["subscription.currency"],
            "reference": reference,
            "source": source,
        },
        performed_by=performed_by,
        now=now,
    )
    logger.info(
        "Subscription activated",
        store_id=str(previous["_id"]),
        action=action.value,
        plan_type=plan.get("type"),
        reference=reference,
        source=source,
        end_date=end.isoformat(),
    )
    return {"action": action.value, "store": await get_store(previous["_id"])}


# --- Cancellation / auto-renewal ---
async def cancel_subscription(store_id: Any, reason: Optional[str] = None, immediate: bool = True, performed_by: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Immediate cancellation ends the subscription now and deactivates the store.
    Otherwise only auto-renewal is switched off and the paid period runs out.
    """
    now = now or utcnow()
    store = await get_store_or_raise(store_id)
    if not (store.get("subscription") or {}).get("is_subscribed"):
        raise SubscriptionTransitionError("Store does not have an active subscription")

    if immediate:
        entry = build_entry(
            HistoryAction.SUBSCRIPTION_CANCELLED,
            description=f"Subscription cancelled: {reason}" if reason else None,
            details={"reason": reason, "immediate": True, "previous_end_date": store["subscription"].get("end_date")},
            performed_by=performed_by,
            now=now,
        )
        set_fields = {
            "subscription.is_subscribed": False,
            "subscription.auto_renew": False,
            "subscription.end_date": now,
            "status": StoreStatus.INACTIVE.value,
            "updated_at": now,
        }
    else:
        entry = build_entry(
            HistoryAction.AUTO_RENEW_CHANGED,
            description="Subscription set to end at the current period",
            details={"reason": reason, "immediate": False, "auto_renew": False, "end_date": store["subscription"].get("end_date")},
            performed_by=performed_by,
            now=now,
        )
        set_fields = {"subscription.auto_renew": False, "updated_at": now}

    updated = await _update_store(store, set_fields, entry)
    logger.info("Subscription cancelled", store_id=str(store["_id"]), immediate=immediate, reason=reason)
    return updated


async def _set_auto_renew(store_id: Any, enabled: bool, performed_by: Optional[str], now: Optional[datetime]) -> Dict[str, Any]:
    now = now or utcnow()
    store = await get_store_or_raise(store_id)
    current = bool((store.get("subscription") or {}).get("auto_renew"))

    if enabled and current:
        raise SubscriptionTransitionError("Auto-renewal is already enabled")
    if not enabled and not current:
        raise SubscriptionTransitionError("Auto-renewal is already disabled")
    if enabled and state.derive_subscription_state(store, now) is not state.SubscriptionState.SUBSCRIPTION_ACTIVE:
        raise SubscriptionTransitionError("Auto-renewal requires an active subscription")

    entry = build_entry(
        HistoryAction.AUTO_RENEW_CHANGED,
        description="Auto-renewal enabled" if enabled else "Auto-renewal disabled",
        details={"auto_renew": enabled},
        performed_by=performed_by,
        now=now,
    )
    updated = await _update_store(
        store,
        {"subscription.auto_renew": enabled, "updated_at": now},
        entry,
        extra_filter={"subscription.auto_renew": {"$ne": True} if enabled else True},
    )
    if updated is None:
        raise SubscriptionTransitionError("Auto-renewal setting changed concurrently")
    return updated


async def enable_auto_renewal(store_id: Any, performed_by: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    return await _set_auto_renew(store_id, True, performed_by, now)


async def disable_auto_renewal(store_id: Any, performed_by: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    return await _set_auto_renew(store_id, False, performed_by, now)


# --- Store status / dates ---
async def reactivate_store(store_id: Any, performed_by: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    """inactive -> active. Subscription fields are not touched."""
    now = now or utcnow()
    store = await get_store_or_raise(store_id)
    if store.get("status") != StoreStatus.INACTIVE.value:
        raise SubscriptionTransitionError("Only inactive stores can be reactivated")

    entry = build_entry(HistoryAction.STORE_REACTIVATED, details={"previous_status": store.get("status")}, performed_by=performed_by, now=now)
    updated = await _update_store(
        store,
        {"status": StoreStatus.ACTIVE.value, "updated_at": now},
        entry,
        extra_filter={"status": StoreStatus.INACTIVE.value},
    )
    if updated is None:
        raise SubscriptionTransitionError("Only inactive stores can be reactivated")
    logger.info("Store reactivated", store_id=str(store["_id"]))
    return updated


async def update_end_date(store_id: Any, end_date: datetime, reason: Optional[str] = None, performed_by: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Moves the paid period's end. A future end date makes the store active again."""
    now = now or utcnow()
    store = await get_store_or_raise(store_id)
    sub = store.get("subscription") or {}
    if not sub.get("is_subscribed"):
        raise SubscriptionTransitionError("Store does not have an active subscription")

    new_end = to_naive_utc(end_date)
    start = sub.get("start_date")
    if start is not None and new_end <= start:
        raise SubscriptionTransitionError("End date must be after start date")

    entry = build_entry(
        HistoryAction.END_DATE_UPDATED,
        details={"previous_end_date": sub.get("end_date"), "end_date": new_end, "reason": reason},
        performed_by=performed_by,
        now=now,
    )
    set_fields: Dict[str, Any] = {
        "subscription.end_date": new_end,
        "subscription.next_payment_date": new_end,
        "updated_at": now,
    }
    if new_end > now:
        set_fields["status"] = StoreStatus.ACTIVE.value
    return await _update_store(store, set_fields, entry)


# --- Reporting ---
def build_subscription_report(store: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    return {
        "store_id": str(store["_id"]),
        "name": store.get("name"),
        "domain": store.get("domain"),
        "status": store.get("status"),
        "contact": store.get("contact") or {},
        "state": state.derive_store_state(store, now).value,
        "is_active": state.is_subscription_active(store, now),
        "should_be_deactivated": state.should_be_deactivated(store, now),
        "days_remaining": state.days_remaining(store, now),
        "subscription": serialize_document(store.get("subscription") or {}),
    }


async def get_subscription_report(store_id: Any, now: Optional[datetime] = None) -> Dict[str, Any]:
    return build_subscription_report(await get_store_or_raise(store_id), now)


def _ending_between(start: datetime, end: datetime, upper_inclusive: bool = True) -> Dict[str, Any]:
    upper = "$lte" if upper_inclusive else "$lt"
    return {
        "$or": [
            {"subscription.is_subscribed": {"$ne": True}, "subscription.trial_end_date": {"$gte": start, upper: end}},
            {"subscription.is_subscribed": True, "subscription.end_date": {"$gte": start, upper: end}},
        ]
    }


async def get_expiring_stores(days: Optional[int] = None, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Active stores whose trial or subscription ends within `days`."""
    now = now or utcnow()
    window = days if days is not None else settings.EXPIRING_SOON_WINDOW_DAYS
    query = {"status": StoreStatus.ACTIVE.value, **_ending_between(now, now + timedelta(days=window))}
    stores = await database.find_many(_stores(), query, {"sort": [("subscription.end_date", ASCENDING)]})
    return [build_subscription_report(store, now) for store in stores]


async def get_subscription_stats(now: Optional[datetime] = None) -> Dict[str, int]:
    now = now or utcnow()
    stores = _stores()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return {
        "total": await database.count_documents(stores, {}),
        "active": await database.count_documents(stores, {"status": StoreStatus.ACTIVE.value}),
        "inactive": await database.count_documents(stores, {"status": StoreStatus.INACTIVE.value}),
        "suspended": await database.count_documents(stores, {"status": StoreStatus.SUSPENDED.value}),
        "subscribed": await database.count_documents(stores, {"subscription.is_subscribed": True}),
        "trial": await database.count_documents(stores, {"subscription.is_subscribed": {"$ne": True}}),
        "expiring_today": await database.count_documents(stores, _ending_between(today, today + timedelta(days=1), upper_inclusive=False)),
        "expiring_this_week": await database.count_documents(stores, _ending_between(now, now + timedelta(days=7))),
    }


# --- Auto-renewal ---
async def renew_from_charge(store: Dict[str, Any], charge: Dict[str, Any], now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    """
    Starts a new paid period after a successful stored-authorization charge.
    The period length comes from the store's plan, or DEFAULT_RENEWAL_PERIOD_DAYS
    if that plan no longer exists. Returns None if the store was renewed meanwhile.
    """
    now = now or utcnow()
    sub = store.get("subscription") or {}
    plan = await get_plan(sub["plan_id"]) if sub.get("plan_id") else None
    duration = plan["duration"] if plan else settings.DEFAULT_RENEWAL_PERIOD_DAYS
    end = now + timedelta(days=duration)

    set_fields: Dict[str, Any] = {
        "subscription.is_subscribed": True,
        "subscription.start_date": now,
        "subscription.end_date": end,
        "subscription.last_payment_date": now,
        "subscription.next_payment_date": end,
        "status": StoreStatus.ACTIVE.value,
        "updated_at": now,
    }
    if charge.get("reference"):
        set_fields["subscription.reference_id"] = charge["reference"]
    if charge.get("authorization_code"):
        set_fields["subscription.authorization_code"] = charge["authorization_code"]

    entry = build_entry(
        HistoryAction.PAYMENT_RECEIVED,
        description="Subscription renewed automatically",
        details={
            "amount": charge.get("amount", sub.get("amount")),
            "currency": charge.get("currency", sub.get("currency")),
            "reference": charge.get("reference"),
            "transaction_id": charge.get("transaction_id"),
            "start_date": now,
            "end_date": end,
            "source": "auto_renewal",
        },
        now=now,
    )
    updated = await _update_store(store, set_fields, entry, extra_filter={"subscription.is_subscribed": {"$ne": True}})
    if updated is not None:
        logger.info("Subscription auto-renewed", store_id=str(store["_id"]), end_date=end.isoformat(), reference=charge.get("reference"))
    return updated
