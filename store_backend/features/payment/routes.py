# store_backend/features/payment/routes.py

# This file defines FastAPI API endpoints for subscription payments:
# initialize, verify, status, client poll, gateway webhook, manual activation
# and the background polling status.

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ...db.mongo_client import get_pending_payments_collection, get_stores_collection
from ...models.auth import TokenData
from ...models.payment import ManualActivateRequest, PaymentInitializeRequest, PaymentVerifyRequest, WebhookPayload
from ...shared.exceptions import StoreBackendError
from ...shared.http_errors import get_app_component, get_collection_or_raise_503, to_http_exception
from ...shared.logger import get_logger
from ..auth.dependencies import get_current_user
from . import ledger
from . import service as payment_service
from .gateway import LahzaGateway

logger = get_logger("payment_routes")

# --- Define API Router for this feature ---
router = APIRouter(
    prefix="/api/payment",
    tags=["payment"]
)


def get_gateway(request: Request) -> LahzaGateway:
    return get_app_component(request, "gateway")


# --- Background polling status ---
# Declared before the /{store_id}/... routes so 'polling-status' is never read as a store id.
@router.get("/polling-status")
async def get_polling_status(request: Request):
    """Current mode of the background reconciliation loop."""
    reconciler = get_app_component(request, "reconciler")
    get_collection_or_raise_503(get_pending_payments_collection)
    info = reconciler.status()
    return {
        "success": True,
        "mode": info["mode"],
        "intervalSeconds": info["interval_seconds"],
        "hasPendingPayments": info["has_pending_payments"],
        "pendingCount": await ledger.count_pending_for_polling(),
        "lastSweepAt": info["last_sweep_at"],
        "lastSummary": info["last_summary"],
    }


# --- Initialize payment ---
@router.post("/{store_id}/initialize", status_code=status.HTTP_201_CREATED)
async def initialize_payment(
    store_id: str,
    request_data: PaymentInitializeRequest,
    plan_id: Optional[str] = Query(default=None, alias="planId"),
    gateway: LahzaGateway = Depends(get_gateway),
):
    get_collection_or_raise_503(get_stores_collection)
    get_collection_or_raise_503(get_pending_payments_collection)

    resolved_plan_id = payment_service.resolve_plan_id(request_data, plan_id)
    if not resolved_plan_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="planId is required to start a subscription payment.")

    try:
        transaction = await payment_service.initialize_payment(gateway, store_id, request_data, resolved_plan_id)
    except StoreBackendError as e:
        logger.warning("Payment initialization failed", store_id=store_id, error=str(e))
        raise to_http_exception(e)

    return {"success": True, "message": "Payment initialized successfully", "data": transaction}


# --- One-shot verify (no activation) ---
@router.post("/{store_id}/verify")
async def verify_payment(store_id: str, request_data: PaymentVerifyRequest, gateway: LahzaGateway = Depends(get_gateway)):
    get_collection_or_raise_503(get_stores_collection)
    try:
        verification = await gateway.verify(store_id, request_data.reference)
    except StoreBackendError as e:
        raise to_http_exception(e)
    return {"success": True, "data": verification}


# --- Gateway status passthrough ---
@router.get("/{store_id}/status/{reference}")
async def get_payment_status(store_id: str, reference: str, gateway: LahzaGateway = Depends(get_gateway)):
    get_collection_or_raise_503(get_stores_collection)
    try:
        payment_status = await gateway.get_status(store_id, reference)
    except StoreBackendError as e:
        raise to_http_exception(e)
    return {"success": True, "data": payment_status}


# --- Client poll ---
@router.get("/{store_id}/poll/{reference}")
async def poll_payment(
    store_id: str,
    reference: str,
    plan_id: Optional[str] = Query(default=None, alias="planId"),
    gateway: LahzaGateway = Depends(get_gateway),
) -> Dict[str, Any]:
    """
    Checks the payment and activates the subscription inline once it succeeded.
    Clients stop polling when shouldContinuePolling is false.
    """
    get_collection_or_raise_503(get_stores_collection)
    get_collection_or_raise_503(get_pending_payments_collection)
    try:
        result = await payment_service.poll_payment(gateway, store_id, reference, plan_id)
    except StoreBackendError as e:
        raise to_http_exception(e)
    return result.model_dump(by_alias=True)


# --- Gateway webhook ---
@router.post("/{store_id}/webhook", status_code=status.HTTP_200_OK)
async def payment_webhook(store_id: str, payload: WebhookPayload, request: Request):
    """Always answers 200 so the gateway does not keep redelivering; failures are logged."""
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        logger.error("Webhook received before the gateway client was initialized", store_id=store_id)
        return {"success": False, "message": "Payment service not ready"}
    return await payment_service.handle_webhook(gateway, store_id, payload)


# --- Manual activation (operator) ---
@router.post("/{store_id}/manual-activate")
async def manual_activate(
    store_id: str,
    request_data: ManualActivateRequest,
    current_user: TokenData = Depends(get_current_user),
    gateway: LahzaGateway = Depends(get_gateway),
):
    get_collection_or_raise_503(get_stores_collection)
    get_collection_or_raise_503(get_pending_payments_collection)
    try:
        outcome = await payment_service.manual_activate(gateway, store_id, request_data, performed_by=current_user.user_id)
    except StoreBackendError as e:
        raise to_http_exception(e)

    if outcome.status != "success":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Payment is not successful at the gateway (status: {outcome.gateway_status}).",
        )

    activation = outcome.activation
    return {
        "success": True,
        "message": "Subscription already active" if activation.already_activated else "Subscription activated",
        "reference": outcome.reference,
        "gatewayStatus": outcome.gateway_status,
        "subscriptionActivated": True,
        "alreadyActivated": activation.already_activated,
        "action": activation.action,
    }
