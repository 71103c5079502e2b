# store_backend/features/subscription/activation.py

# The single activation routine behind every way a payment can be confirmed:
# gateway webhook, background polling, client-side poll and manual operator
# activation. A payment reference activates a subscription at most once.

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel

from ...models.pending_payment import ActivationSource
from ...shared.exceptions import ActivationError, GatewayConfigurationError, GatewayError, NotFoundError
from ...shared.logger import get_logger
from ...shared.utils import utcnow
from ..payment import ledger
from ..payment.gateway import GatewayOutcome, LahzaGateway, classify_status
from .service import activate_subscription, get_store_or_raise

logger = get_logger("activation")


class ActivationResult(BaseModel):
    reference: str
    activated: bool = False
    already_activated: bool = False
    action: Optional[str] = None  # subscription_activated | subscription_renewed
    store_id: Optional[str] = None


class ReconcileOutcome(BaseModel):
    reference: str
    status: str  # success | failed | pending
    gateway_status: Optional[str] = None
    activation: Optional[ActivationResult] = None


def _already_done(store: Dict[str, Any], reference: str) -> bool:
    sub = store.get("subscription") or {}
    return sub.get("reference_id") == reference and sub.get("is_subscribed") is True


async def activate_from_payment(
    reference: str,
    source: ActivationSource,
    store_id: Any = None,
    plan_id: Any = None,
    authorization_code: Optional[str] = None,
    performed_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ActivationResult:
    """
    Turns a confirmed payment into an active subscription.

    Store and plan default to the ones recorded on the pending payment.
    A reference whose ledger record already activated a subscription is never
    applied again, whatever happened to the store since (cancel, expiry, renewal).
    Any failure is counted on the ledger record (failed after too many) and re-raised.
    """
    now = now or utcnow()
    source = ActivationSource(source)
    record = await ledger.get_by_reference(reference)
    if record is not None:
        store_id = store_id or record.get("store")
        plan_id = plan_id or record.get("plan_id")
    if store_id is None:
        raise ActivationError(f"No pending payment found for reference {reference}")

    if record is not None and await ledger.claim_activation(reference, now=now) is None:
        logger.info("Payment reference already used for an activation", reference=reference, store_id=str(store_id), source=source.value)
        return ActivationResult(reference=reference, already_activated=True, store_id=str(store_id))

    try:
        store = await get_store_or_raise(store_id)
        if _already_done(store, reference):
            logger.info("Payment already activated, nothing to do", reference=reference, store_id=str(store["_id"]), source=source.value)
            await ledger.mark_as_completed(reference, source, now=now)
            return ActivationResult(reference=reference, already_activated=True, store_id=str(store["_id"]))

        if plan_id is None:
            raise ActivationError(f"No plan associated with payment {reference}")

        result = await activate_subscription(
            store["_id"],
            plan_id,
            reference=reference,
            authorization_code=authorization_code,
            source=source.value,
            performed_by=performed_by,
            now=now,
        )
        await ledger.mark_as_completed(reference, source, now=now)
    except Exception as e:
        logger.error("Activation failed", reference=reference, source=source.value, error=str(e))
        if record is not None:
            await ledger.release_activation(reference, now=now)
        await ledger.record_error(reference, f"Activation failed: {e}", now=now)
        raise

    if result is None:
        # Another path activated this reference between our read and our write
        return ActivationResult(reference=reference, already_activated=True, store_id=str(store["_id"]))
    return ActivationResult(reference=reference, activated=True, action=result["action"], store_id=str(store["_id"]))


async def reconcile_payment(
    gateway: LahzaGateway,
    reference: str,
    source: ActivationSource,
    store_id: Any = None,
    plan_id: Any = None,
    verify: bool = True,
    performed_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ReconcileOutcome:
    """
    Verifies a reference with the gateway and acts on the answer:
    success activates, a definitive failure fails the ledger record,
    anything else (including 'abandoned') leaves it pending.

    verify=False skips the gateway and activates directly (operator override).
    Missing store credentials fail the record at once; other gateway errors are
    counted and retried by the next check.
    """
    now = now or utcnow()
    record = await ledger.get_by_reference(reference)
    if store_id is None and record is not None:
        store_id = record.get("store")
    if store_id is None:
        raise NotFoundError(f"No pending payment found for reference {reference}")

    gateway_status = None
    authorization_code = None
    if verify:
        try:
            verification = await gateway.verify(store_id, reference)
        except (GatewayConfigurationError, NotFoundError) as e:
            await ledger.mark_as_failed(reference, str(e), now=now)
            raise
        except GatewayError as e:
            await ledger.record_error(reference, str(e), now=now)
            raise
        gateway_status = verification.get("status")
        authorization_code = verification.get("authorization_code")
        outcome = classify_status(gateway_status)
    else:
        outcome = GatewayOutcome.SUCCESS

    if outcome is GatewayOutcome.SUCCESS:
        activation = await activate_from_payment(
            reference,
            source,
            store_id=store_id,
            plan_id=plan_id,
            authorization_code=authorization_code,
            performed_by=performed_by,
            now=now,
        )
        return ReconcileOutcome(reference=reference, status="success", gateway_status=gateway_status, activation=activation)

    if outcome is GatewayOutcome.FAILURE:
        await ledger.mark_as_failed(reference, f"Gateway reported payment as {gateway_status}", now=now)
        logger.info("Payment failed at gateway", reference=reference, gateway_status=gateway_status, source=ActivationSource(source).value)
        return ReconcileOutcome(reference=reference, status="failed", gateway_status=gateway_status)

    return ReconcileOutcome(reference=reference, status="pending", gateway_status=gateway_status)
