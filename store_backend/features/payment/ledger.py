# store_backend/features/payment/ledger.py

# Data access for the 'pending_payments' collection: one record per initiated
# gateway transaction, followed until it reaches a terminal status.
# Every terminal transition is a conditional update that only matches
# non-terminal records, so concurrent reconciliation paths cannot undo each other.

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError

from ...config.settings import settings
from ...db import mongo_client as database
from ...db.mongo_client import get_pending_payments_collection, require_collection
from ...models.pending_payment import (
    NON_TERMINAL_STATUSES,
    TERMINAL_STATUSES,
    ActivationSource,
    PendingPayment,
    PendingPaymentStatus,
)
from ...shared.exceptions import DuplicateReferenceError
from ...shared.logger import get_logger
from ...shared.utils import to_object_id, utcnow

logger = get_logger("pending_payment_ledger")

# Records an operator may still complete by hand after automatic polling gave up
MANUALLY_COMPLETABLE_STATUSES = NON_TERMINAL_STATUSES + (
    PendingPaymentStatus.FAILED.value,
    PendingPaymentStatus.EXHAUSTED.value,
)


def _collection():
    return require_collection(get_pending_payments_collection)


async def create(
    store_id: Any,
    reference: str,
    plan_id: Any,
    amount: float,
    currency: str = "ILS",
    customer_email: Optional[str] = None,
    customer_name: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Inserts a new pending record for a freshly initialized transaction.
    Raises DuplicateReferenceError if the reference is already tracked.
    """
    now = now or utcnow()
    payment = PendingPayment(
        store=to_object_id(store_id),
        reference=reference,
        plan_id=to_object_id(plan_id),
        amount=amount,
        currency=currency,
        customer_email=customer_email,
        customer_name=customer_name,
        metadata=metadata or {},
        expires_at=now + timedelta(hours=settings.PENDING_PAYMENT_TTL_HOURS),
        created_at=now,
        updated_at=now,
    )
    document = payment.model_dump(exclude={"id"})

    try:
        inserted_id = await database.insert_one(_collection(), document)
    except DuplicateKeyError:
        raise DuplicateReferenceError(f"Pending payment with reference {reference} already exists") from None

    document["_id"] = inserted_id
    logger.info("Pending payment created", reference=reference, store_id=str(store_id), plan_id=str(plan_id), amount=amount, currency=currency)
    return document


async def get_by_reference(reference: str) -> Optional[Dict[str, Any]]:
    return await database.find_one(_collection(), {"reference": reference})


async def increment_check_attempts(reference: str, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    """Counts one verification attempt without claiming the record."""
    now = now or utcnow()
    return await database.find_one_and_update(
        _collection(),
        {"reference": reference},
        {"$inc": {"check_attempts": 1}, "$set": {"last_checked_at": now, "updated_at": now}},
    )


def _stale_claim_cutoff(now: datetime) -> datetime:
    return now - timedelta(seconds=settings.PROCESSING_STALE_SECONDS)


def _unclaimed(now: datetime) -> Dict[str, Any]:
    """Pending records, or processing ones whose claim went stale."""
    return {
        "$or": [
            {"status": PendingPaymentStatus.PENDING.value},
            {"status": PendingPaymentStatus.PROCESSING.value, "last_checked_at": {"$lt": _stale_claim_cutoff(now)}},
        ]
    }


async def claim_for_check(reference: str, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    """
    Atomically moves a record to 'processing' and counts the attempt.
    Returns None when another worker holds a fresh claim or the record is terminal.
    """
    now = now or utcnow()
    query = {"reference": reference, **_unclaimed(now)}
    update = {
        "$set": {"status": PendingPaymentStatus.PROCESSING.value, "last_checked_at": now, "updated_at": now},
        "$inc": {"check_attempts": 1},
    }
    return await database.find_one_and_update(_collection(), query, update)


async def release_to_pending(reference: str, now: Optional[datetime] = None) -> bool:
    """Returns a claimed record to 'pending' so the next sweep looks at it again."""
    now = now or utcnow()
    return await database.update_one(
        _collection(),
        {"reference": reference, "status": PendingPaymentStatus.PROCESSING.value},
        {"$set": {"status": PendingPaymentStatus.PENDING.value, "updated_at": now}},
    )


async def claim_activation(reference: str, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    """
    Reserves the record's single activation. Returns None when the reference
    already activated a subscription (or another path is activating it now).
    """
    now = now or utcnow()
    return await database.find_one_and_update(
        _collection(),
        {"reference": reference, "subscription_activated": {"$ne": True}},
        {"$set": {"subscription_activated": True, "activated_at": now, "updated_at": now}},
    )


async def release_activation(reference: str, now: Optional[datetime] = None) -> bool:
    """Gives back an activation claim whose store update did not go through."""
    now = now or utcnow()
    return await database.update_one(
        _collection(),
        {"reference": reference, "status": {"$ne": PendingPaymentStatus.COMPLETED.value}},
        {"$set": {"subscription_activated": False, "activated_at": None, "updated_at": now}},
    )


async def _finish(reference: str, fields: Dict[str, Any], allowed_statuses=NON_TERMINAL_STATUSES, count_error: bool = False) -> bool:
    update: Dict[str, Any] = {"$set": fields}
    if count_error:
        update["$inc"] = {"error_count": 1}
    return await database.update_one(
        _collection(),
        {"reference": reference, "status": {"$in": list(allowed_statuses)}},
        update,
    )


async def mark_as_completed(reference: str, source: ActivationSource, now: Optional[datetime] = None) -> bool:
    """
    Marks the record completed and activated by `source`.
    Manual activation may also complete records that polling gave up on (failed/exhausted).
    """
    now = now or utcnow()
    source_value = ActivationSource(source).value
    allowed = MANUALLY_COMPLETABLE_STATUSES if source_value == ActivationSource.MANUAL.value else NON_TERMINAL_STATUSES
    updated = await _finish(
        reference,
        {
            "status": PendingPaymentStatus.COMPLETED.value,
            "completed_at": now,
            "subscription_activated": True,
            "activated_at": now,
            "activation_source": source_value,
            "updated_at": now,
        },
        allowed_statuses=allowed,
    )
    if updated:
        logger.info("Pending payment completed", reference=reference, source=source_value)
    return updated


async def mark_as_failed(reference: str, error: str, now: Optional[datetime] = None, count_error: bool = True) -> bool:
    now = now or utcnow()
    updated = await _finish(
        reference,
        {"status": PendingPaymentStatus.FAILED.value, "last_error": error, "completed_at": now, "updated_at": now},
        count_error=count_error,
    )
    if updated:
        logger.info("Pending payment failed", reference=reference, error=error)
    return updated


async def mark_as_abandoned(reference: str, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return await _finish(
        reference,
        {"status": PendingPaymentStatus.ABANDONED.value, "completed_at": now, "updated_at": now},
    )


async def mark_as_exhausted(reference: str, now: Optional[datetime] = None) -> bool:
    """Terminal marker for records that hit the attempt cap without a definitive gateway answer."""
    now = now or utcnow()
    updated = await _finish(
        reference,
        {
            "status": PendingPaymentStatus.EXHAUSTED.value,
            "last_error": f"No terminal gateway status after {settings.PENDING_PAYMENT_MAX_CHECK_ATTEMPTS} checks",
            "completed_at": now,
            "updated_at": now,
        },
    )
    if updated:
        logger.warning("Pending payment exhausted its check attempts", reference=reference)
    return updated


async def record_error(reference: str, error: str, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    """
    Counts an error against the record without touching its status, so a
    claim held by another worker stays in place. Claim holders release with
    release_to_pending. At PENDING_PAYMENT_MAX_ERRORS the record is failed.
    Returns the updated record, or None when it was already terminal.
    """
    now = now or utcnow()
    record = await database.find_one_and_update(
        _collection(),
        {"reference": reference, "status": {"$in": list(NON_TERMINAL_STATUSES)}},
        {
            "$inc": {"error_count": 1},
            "$set": {"last_error": error, "updated_at": now},
        },
    )
    if record is None:
        return None

    logger.warning("Pending payment error recorded", reference=reference, error=error, error_count=record["error_count"])

    if record["error_count"] >= settings.PENDING_PAYMENT_MAX_ERRORS:
        reason = f"Too many errors ({record['error_count']}): {error}"
        await mark_as_failed(reference, reason, now=now, count_error=False)
        record = await get_by_reference(reference)
    return record


def _polling_query(now: datetime) -> Dict[str, Any]:
    return {
        **_unclaimed(now),
        "expires_at": {"$gt": now},
        "check_attempts": {"$lt": settings.PENDING_PAYMENT_MAX_CHECK_ATTEMPTS},
    }


async def get_pending_for_polling(now: Optional[datetime] = None, limit: int = 0) -> List[Dict[str, Any]]:
    """Records the background loop should verify, oldest first."""
    now = now or utcnow()
    return await database.find_many(
        _collection(),
        _polling_query(now),
        {"sort": [("created_at", ASCENDING)], "limit": limit},
    )


async def count_pending_for_polling(now: Optional[datetime] = None) -> int:
    return await database.count_documents(_collection(), _polling_query(now or utcnow()))


async def get_capped_pending(now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Unclaimed records that reached the attempt cap and still wait for a decision."""
    return await database.find_many(
        _collection(),
        {
            **_unclaimed(now or utcnow()),
            "check_attempts": {"$gte": settings.PENDING_PAYMENT_MAX_CHECK_ATTEMPTS},
        },
    )


async def cleanup_old_payments(now: Optional[datetime] = None) -> int:
    """Deletes terminal records completed more than PENDING_PAYMENT_TTL_HOURS ago. Returns the count."""
    now = now or utcnow()
    cutoff = now - timedelta(hours=settings.PENDING_PAYMENT_TTL_HOURS)
    deleted = await database.delete_many(
        _collection(),
        {"status": {"$in": list(TERMINAL_STATUSES)}, "completed_at": {"$lt": cutoff}},
    )
    if deleted:
        logger.info("Old pending payments cleaned up", deleted=deleted)
    return deleted
