# store_backend/features/payment/service.py

# Business logic behind the payment endpoints: starting a subscription payment,
# and the client-poll, webhook and manual-activation entry points, which all
# end in the same reconciliation routine.

from typing import Any, Dict, Optional

from ...models.payment import ManualActivateRequest, PaymentInitializeRequest, PollResponse, WebhookPayload
from ...models.pending_payment import ActivationSource, PendingPaymentStatus
from ...shared.exceptions import NotFoundError, StoreBackendError, SubscriptionTransitionError
from ...shared.logger import get_logger
from ...shared.utils import to_object_id
from ..plans.service import get_plan_or_raise
from ..subscription.activation import ReconcileOutcome, reconcile_payment
from . import ledger
from .gateway import LahzaGateway

logger = get_logger("payment_service")

# Ledger statuses the client poll reports as final without asking the gateway again
_FINAL_FAILURE_STATUSES = (
    PendingPaymentStatus.FAILED.value,
    PendingPaymentStatus.CANCELLED.value,
    PendingPaymentStatus.ABANDONED.value,
    PendingPaymentStatus.EXHAUSTED.value,
)


def resolve_plan_id(request: PaymentInitializeRequest, plan_id_param: Optional[str] = None) -> Optional[str]:
    """planId may come in the body, as a query parameter, or inside metadata."""
    return request.plan_id or plan_id_param or request.metadata.get("planId") or request.metadata.get("plan_id")


async def initialize_payment(gateway: LahzaGateway, store_id: str, request: PaymentInitializeRequest, plan_id: str) -> Dict[str, Any]:
    """Creates the gateway transaction and the pending payment that tracks it."""
    plan = await get_plan_or_raise(plan_id)
    if not plan.get("is_active", False):
        raise SubscriptionTransitionError("Subscription plan is not active")

    metadata = {**request.metadata, "planId": str(plan["_id"]), "planType": plan.get("type")}
    transaction = await gateway.initialize(
        store_id,
        request.amount,
        currency=request.currency,
        email=request.email,
        customer_name=request.customer_name,
        customer_phone=request.customer_phone,
        description=request.description or f"Subscription: {plan.get('name')}",
        metadata=metadata,
    )
    reference = transaction.get("reference")
    if not reference:
        raise StoreBackendError("Gateway did not return a payment reference")

    await ledger.create(
        store_id,
        reference,
        plan["_id"],
        request.amount,
        currency=request.currency,
        customer_email=request.email,
        customer_name=request.customer_name,
        metadata=metadata,
    )
    return transaction


async def _record_for_store(store_id: str, reference: str) -> Optional[Dict[str, Any]]:
    """The ledger record for reference, refusing records that belong to another store."""
    record = await ledger.get_by_reference(reference)
    if record is not None and record.get("store") != to_object_id(store_id):
        raise NotFoundError(f"Payment {reference} not found for this store")
    return record


def _poll_response(outcome: ReconcileOutcome) -> PollResponse:
    if outcome.status == "success":
        already = bool(outcome.activation and outcome.activation.already_activated)
        return PollResponse(
            status="success",
            should_continue_polling=False,
            subscription_activated=True,
            already_activated=already,
            gateway_status=outcome.gateway_status,
            message="Subscription already active" if already else "Subscription activated",
        )
    if outcome.status == "failed":
        return PollResponse(status="failed", should_continue_polling=False, gateway_status=outcome.gateway_status, message="Payment failed")
    return PollResponse(status="pending", should_continue_polling=True, gateway_status=outcome.gateway_status, message="Payment is still pending")


async def poll_payment(gateway: LahzaGateway, store_id: str, reference: str, plan_id: Optional[str] = None) -> PollResponse:
    """
    Client-driven check of a payment, activating inline on success.
    Errors are reported in the response; the client keeps polling.
    """
    record = await _record_for_store(store_id, reference)
    if record is not None:
        if record.get("status") == PendingPaymentStatus.COMPLETED.value:
            return PollResponse(status="success", should_continue_polling=False, subscription_activated=True, already_activated=True, message="Subscription already active")
        if record.get("status") in _FINAL_FAILURE_STATUSES:
            return PollResponse(status="failed", should_continue_polling=False, message=record.get("last_error") or "Payment failed")

    try:
        outcome = await reconcile_payment(gateway, reference, ActivationSource.VERIFY_BACKUP, store_id=store_id, plan_id=plan_id)
    except StoreBackendError as e:
        logger.warning("Client poll could not reconcile payment", reference=reference, store_id=store_id, error=str(e))
        return PollResponse(success=False, status="error", should_continue_polling=True, message=str(e))
    return _poll_response(outcome)


async def handle_webhook(gateway: LahzaGateway, store_id: str, payload: WebhookPayload) -> Dict[str, Any]:
    """
    Gateway callback. The payload status is not trusted: the reference is verified
    with the gateway before anything is activated. Never raises.
    """
    extra = payload.model_extra or {}
    reference = payload.data.reference or extra.get("reference")
    if not reference:
        logger.warning("Webhook without payment reference", store_id=store_id, webhook_event=payload.event)
        return {"success": False, "message": "No payment reference found in webhook data", "event": payload.event}

    logger.info("Webhook received", store_id=store_id, reference=reference, webhook_event=payload.event, reported_status=payload.data.status)
    try:
        await _record_for_store(store_id, reference)
        outcome = await reconcile_payment(gateway, reference, ActivationSource.WEBHOOK, store_id=store_id)
    except Exception as e:
        logger.error("Webhook processing failed", store_id=store_id, reference=reference, error=str(e), exc_info=True)
        return {"success": False, "message": "Error processing webhook", "event": payload.event, "reference": reference}

    return {
        "success": True,
        "event": payload.event,
        "reference": reference,
        "status": outcome.status,
        "gatewayStatus": outcome.gateway_status,
        "subscriptionActivated": outcome.status == "success",
        "alreadyActivated": bool(outcome.activation and outcome.activation.already_activated),
    }


async def manual_activate(gateway: LahzaGateway, store_id: str, request: ManualActivateRequest, performed_by: Optional[str] = None) -> ReconcileOutcome:
    """Operator fallback for payments the automatic paths missed (exhausted, failed on errors...)."""
    await _record_for_store(store_id, request.reference)
    await get_plan_or_raise(request.plan_id)
    logger.info("Manual activation requested", store_id=store_id, reference=request.reference, verify=request.verify_with_gateway, performed_by=performed_by)
    return await reconcile_payment(
        gateway,
        request.reference,
        ActivationSource.MANUAL,
        store_id=store_id,
        plan_id=request.plan_id,
        verify=request.verify_with_gateway,
        performed_by=performed_by,
    )
