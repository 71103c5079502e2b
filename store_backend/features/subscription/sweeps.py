# store_backend/features/subscription/sweeps.py

# Periodic store-level jobs run by the scheduler: expiry, auto-renewal,
# the expiring-soon report and ledger cleanup.
# Each job handles stores one by one; one bad store never stops a sweep.

from datetime import datetime
from typing import Any, Dict, List, Optional

from ...config.settings import settings
from ...db import mongo_client as database
from ...db.mongo_client import get_stores_collection, require_collection
from ...models.store import StoreStatus
from ...models.subscription_history import HistoryAction
from ...shared.exceptions import StoreBackendError
from ...shared.logger import get_logger
from ...shared.utils import utcnow
from ..payment import ledger
from ..payment.gateway import LahzaGateway
from .history import append_history
from .service import deactivate_if_expired, get_expiring_stores, renew_from_charge

logger = get_logger("subscription_sweeps")


def expired_stores_query(now: datetime) -> Dict[str, Any]:
    return {
        "status": StoreStatus.ACTIVE.value,
        "$or": [
            {"subscription.is_subscribed": True, "subscription.end_date": {"$lt": now}},
            {"subscription.is_subscribed": {"$ne": True}, "subscription.trial_end_date": {"$lt": now}},
        ],
    }


async def run_expiry_sweep(now: Optional[datetime] = None) -> Dict[str, int]:
    """Deactivates every active store whose trial or subscription has ended."""
    now = now or utcnow()
    stores = await database.find_many(require_collection(get_stores_collection), expired_stores_query(now))
    summary = {"checked": len(stores), "deactivated": 0, "errors": 0}

    for store in stores:
        try:
            if await deactivate_if_expired(store["_id"], now=now, store=store):
                summary["deactivated"] += 1
        except Exception as e:
            summary["errors"] += 1
            logger.error("Failed to deactivate expired store", store_id=str(store["_id"]), error=str(e), exc_info=True)

    if stores:
        logger.info("Expiry sweep finished", **summary)
    return summary


def auto_renewal_query(now: datetime) -> Dict[str, Any]:
    return {
        "subscription.auto_renew": True,
        "subscription.is_subscribed": {"$ne": True},
        "subscription.trial_end_date": {"$lt": now},
        "subscription.authorization_code": {"$exists": True, "$nin": [None, ""]},
        "contact.email": {"$exists": True, "$nin": [None, ""]},
    }


async def run_auto_renewal_sweep(gateway: LahzaGateway, now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Charges the stored authorization of lapsed stores that opted into auto-renewal.
    A failed charge is recorded in the store history and retried on the next sweep.
    """
    now = now or utcnow()
    stores = await database.find_many(require_collection(get_stores_collection), auto_renewal_query(now))
    summary = {"checked": len(stores), "renewed": 0, "failed": 0, "skipped": 0, "errors": 0}

    for store in stores:
        store_id = store["_id"]
        sub = store.get("subscription") or {}
        amount = sub.get("amount")
        currency = sub.get("currency") or "ILS"
        if not amount or amount <= 0:
            summary["skipped"] += 1
            continue

        try:
            charge = await gateway.charge_authorization(
                store_id,
                amount,
                store["contact"]["email"],
                sub["authorization_code"],
                currency=currency,
            )
        except StoreBackendError as e:
            summary["failed"] += 1
            logger.warning("Auto-renewal charge failed", store_id=str(store_id), error=str(e))
            await append_history(
                store_id,
                HistoryAction.PAYMENT_FAILED,
                description="Automatic renewal payment failed",
                details={"amount": amount, "currency": currency, "error": str(e), "source": "auto_renewal"},
                now=now,
            )
            continue
        except Exception as e:
            summary["errors"] += 1
            logger.error("Unexpected error during auto-renewal", store_id=str(store_id), error=str(e), exc_info=True)
            continue

        try:
            if await renew_from_charge(store, charge, now=now):
                summary["renewed"] += 1
        except Exception as e:
            summary["errors"] += 1
            # The charge went through; this needs an operator
            logger.error("Charged store could not be renewed", store_id=str(store_id), reference=charge.get("reference"), error=str(e), exc_info=True)

    if stores:
        logger.info("Auto-renewal sweep finished", **summary)
    return summary


def notify_expiring_soon(report: Dict[str, Any]) -> None:
    """Notification hook for stores about to expire. Logs only; no email/SMS integration."""
    logger.info(
        "Store subscription expiring soon",
        store_id=report["store_id"],
        state=report["state"],
        days_remaining=report["days_remaining"],
        contact_email=(report.get("contact") or {}).get("email"),
    )


async def run_expiring_soon_report(days: Optional[int] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Lists stores ending within the warning window. Never mutates anything."""
    window = days if days is not None else settings.EXPIRING_SOON_WINDOW_DAYS
    reports: List[Dict[str, Any]] = await get_expiring_stores(window, now=now)
    for report in reports:
        notify_expiring_soon(report)
    return {"window_days": window, "count": len(reports), "stores": reports}


async def run_pending_payment_cleanup(now: Optional[datetime] = None) -> Dict[str, int]:
    return {"deleted": await ledger.cleanup_old_payments(now)}
