# store_backend/features/subscription/routes.py

# This file defines FastAPI API endpoints for administering store subscriptions:
# status reports, manual activation, trial extension, cancellation, auto-renewal,
# reactivation, end-date changes, history, expiring stores, stats and
# on-demand runs of the scheduled sweeps.

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ...db.mongo_client import get_stores_collection, get_subscription_plans_collection
from ...models.auth import TokenData
from ...models.subscription import (
    ActivateSubscriptionRequest,
    CancelSubscriptionRequest,
    ExtendTrialRequest,
    UpdateEndDateRequest,
)
from ...shared.exceptions import StoreBackendError
from ...shared.http_errors import get_app_component, get_collection_or_raise_503, to_http_exception
from ...shared.logger import get_logger
from ...shared.utils import serialize_document
from ..auth.dependencies import get_current_user
from . import service as subscription_service
from .history import filter_history

logger = get_logger("subscription_routes")

# --- Define API Router for this feature ---
# Every endpoint here requires a valid bearer token
router = APIRouter(
    prefix="/api/subscription",
    tags=["subscription"],
    dependencies=[Depends(get_current_user)],
)

# Scheduler task names triggered by the /trigger-* endpoints
EXPIRY_SWEEP_TASK = "expiry-sweep"
AUTO_RENEWAL_SWEEP_TASK = "auto-renewal-sweep"


def _store_response(message: str, store: dict) -> dict:
    return {
        "success": True,
        "message": message,
        "data": subscription_service.build_subscription_report(store),
    }


@router.get("/stats")
async def get_subscription_stats():
    get_collection_or_raise_503(get_stores_collection)
    return {"success": True, "data": await subscription_service.get_subscription_stats()}


@router.get("/expiring")
async def get_expiring_stores(days: int = Query(default=7, ge=1, le=365)):
    get_collection_or_raise_503(get_stores_collection)
    stores = await subscription_service.get_expiring_stores(days)
    return {"success": True, "data": {"days": days, "count": len(stores), "stores": stores}}


@router.get("/stores/{store_id}/status")
async def get_store_subscription_status(store_id: str):
    get_collection_or_raise_503(get_stores_collection)
    try:
        report = await subscription_service.get_subscription_report(store_id)
    except StoreBackendError as e:
        raise to_http_exception(e)
    return {"success": True, "data": report}


@router.post("/stores/{store_id}/activate")
async def activate_store_subscription(store_id: str, request_data: ActivateSubscriptionRequest, current_user: TokenData = Depends(get_current_user)):
    get_collection_or_raise_503(get_stores_collection)
    get_collection_or_raise_503(get_subscription_plans_collection)
    try:
        result = await subscription_service.activate_subscription(
            store_id,
            request_data.plan_id,
            start_date=request_data.start_date,
            end_date=request_data.end_date,
            amount=request_data.amount,
            currency=request_data.currency,
            auto_renew=request_data.auto_renew,
            payment_method=request_data.payment_method,
            source="admin",
            performed_by=current_user.user_id,
        )
    except StoreBackendError as e:
        raise to_http_exception(e)
    return _store_response("Subscription activated successfully", result["store"])


@router.post("/stores/{store_id}/trial/extend")
async def extend_store_trial(store_id: str, request_data: ExtendTrialRequest, current_user: TokenData = Depends(get_current_user)):
    get_collection_or_raise_503(get_stores_collection)
    try:
        store = await subscription_service.extend_trial(store_id, request_data.days, performed_by=current_user.user_id)
    except StoreBackendError as e:
        raise to_http_exception(e)
    return _store_response(f"Trial extended by {request_data.days} days", store)


@router.post("/stores/{store_id}/cancel")
async def cancel_store_subscription(store_id: str, request_data: CancelSubscriptionRequest, current_user: TokenData = Depends(get_current_user)):
    get_collection_or_raise_503(get_stores_collection)
    try:
        store = await subscription_service.cancel_subscription(
            store_id,
            reason=request_data.reason,
            immediate=request_data.immediate,
            performed_by=current_user.user_id,
        )
    except StoreBackendError as e:
        raise to_http_exception(e)
    message = "Subscription cancelled" if request_data.immediate else "Subscription will end at the current period"
    return _store_response(message, store)


@router.patch("/stores/{store_id}/auto-renewal/enable")
async def enable_store_auto_renewal(store_id: str, current_user: TokenData = Depends(get_current_user)):
    get_collection_or_raise_503(get_stores_collection)
    try:
        store = await subscription_service.enable_auto_renewal(store_id, performed_by=current_user.user_id)
    except StoreBackendError as e:
        raise to_http_exception(e)
    return _store_response("Auto-renewal enabled", store)


@router.patch("/stores/{store_id}/auto-renewal/disable")
async def disable_store_auto_renewal(store_id: str, current_user: TokenData = Depends(get_current_user)):
    get_collection_or_raise_503(get_stores_collection)
    try:
        store = await subscription_service.disable_auto_renewal(store_id, performed_by=current_user.user_id)
    except StoreBackendError as e:
        raise to_http_exception(e)
    return _store_response("Auto-renewal disabled", store)


@router.patch("/stores/{store_id}/reactivate")
async def reactivate_store(store_id: str, current_user: TokenData = Depends(get_current_user)):
    get_collection_or_raise_503(get_stores_collection)
    try:
        store = await subscription_service.reactivate_store(store_id, performed_by=current_user.user_id)
    except StoreBackendError as e:
        raise to_http_exception(e)
    return _store_response("Store reactivated", store)


@router.patch("/stores/{store_id}/end-date")
async def update_store_end_date(store_id: str, request_data: UpdateEndDateRequest, current_user: TokenData = Depends(get_current_user)):
    get_collection_or_raise_503(get_stores_collection)
    try:
        store = await subscription_service.update_end_date(
            store_id,
            request_data.end_date,
            reason=request_data.reason,
            performed_by=current_user.user_id,
        )
    except StoreBackendError as e:
        raise to_http_exception(e)
    return _store_response("Subscription end date updated", store)


@router.get("/stores/{store_id}/history")
async def get_store_subscription_history(
    store_id: str,
    action: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
):
    get_collection_or_raise_503(get_stores_collection)
    try:
        store = await subscription_service.get_store_or_raise(store_id)
        entries = filter_history(store.get("subscription_history") or [], actions=[action] if action else None, limit=limit)
    except StoreBackendError as e:
        raise to_http_exception(e)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown history action '{action}'")
    return {"success": True, "data": {"store_id": store_id, "count": len(entries), "history": serialize_document(entries)}}


# --- Sweep triggers / scheduler ---
@router.post("/trigger-check")
async def trigger_expiry_check(request: Request):
    """Runs the expiry sweep now instead of waiting for the scheduler."""
    scheduler = get_app_component(request, "scheduler")
    summary = await scheduler.run_now(EXPIRY_SWEEP_TASK)
    return {"success": True, "message": "Expiry check completed", "data": summary}


@router.post("/trigger-renewals")
async def trigger_auto_renewals(request: Request):
    scheduler = get_app_component(request, "scheduler")
    summary = await scheduler.run_now(AUTO_RENEWAL_SWEEP_TASK)
    return {"success": True, "message": "Auto-renewal check completed", "data": summary}


@router.get("/scheduler")
async def get_scheduler_status(request: Request):
    scheduler = get_app_component(request, "scheduler")
    return {"success": True, "data": scheduler.status()}
