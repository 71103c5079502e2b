# store_backend/features/plans/routes.py

# This file defines FastAPI API endpoints for subscription plans.
# Reads are public (the pricing page uses them); writes need a bearer token.

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ...db.mongo_client import get_subscription_plans_collection
from ...models.auth import TokenData
from ...models.subscription_plan import PlanType, SubscriptionPlanCreate, SubscriptionPlanUpdate, duration_text
from ...shared.exceptions import StoreBackendError
from ...shared.http_errors import get_collection_or_raise_503, to_http_exception
from ...shared.utils import serialize_document
from ..auth.dependencies import get_current_user
from . import service as plan_service

# --- Define API Router for this feature ---
router = APIRouter(
    prefix="/api/plans",
    tags=["plans"]
)


def _plan_response(plan: dict) -> dict:
    data = serialize_document(plan)
    data["duration_text"] = duration_text(plan.get("duration", 0))
    return data


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_plan(request_data: SubscriptionPlanCreate, current_user: TokenData = Depends(get_current_user)):
    get_collection_or_raise_503(get_subscription_plans_collection)
    plan = await plan_service.create_plan(request_data, created_by=current_user.user_id)
    return {"success": True, "message": "Subscription plan created successfully", "data": _plan_response(plan)}


@router.get("/")
async def list_plans(
    is_active: Optional[bool] = Query(default=None, alias="isActive"),
    plan_type: Optional[PlanType] = Query(default=None, alias="type"),
):
    get_collection_or_raise_503(get_subscription_plans_collection)
    plans = await plan_service.list_plans(active_only=bool(is_active), plan_type=plan_type.value if plan_type else None)
    return {"success": True, "data": [_plan_response(plan) for plan in plans]}


@router.get("/active")
async def list_active_plans():
    get_collection_or_raise_503(get_subscription_plans_collection)
    plans = await plan_service.list_plans(active_only=True)
    return {"success": True, "data": [_plan_response(plan) for plan in plans]}


@router.get("/{plan_id}")
async def get_plan(plan_id: str):
    get_collection_or_raise_503(get_subscription_plans_collection)
    try:
        plan = await plan_service.get_plan_or_raise(plan_id)
    except StoreBackendError as e:
        raise to_http_exception(e)
    return {"success": True, "data": _plan_response(plan)}


@router.put("/{plan_id}")
async def update_plan(plan_id: str, request_data: SubscriptionPlanUpdate, current_user: TokenData = Depends(get_current_user)):
    get_collection_or_raise_503(get_subscription_plans_collection)
    try:
        plan = await plan_service.update_plan(plan_id, request_data, updated_by=current_user.user_id)
    except StoreBackendError as e:
        raise to_http_exception(e)
    return {"success": True, "message": "Subscription plan updated successfully", "data": _plan_response(plan)}


@router.post("/{plan_id}/toggle")
async def toggle_plan_status(plan_id: str, current_user: TokenData = Depends(get_current_user)):
    get_collection_or_raise_503(get_subscription_plans_collection)
    try:
        plan = await plan_service.toggle_plan_status(plan_id, updated_by=current_user.user_id)
    except StoreBackendError as e:
        raise to_http_exception(e)
    state = "activated" if plan["is_active"] else "deactivated"
    return {"success": True, "message": f"Subscription plan {state} successfully", "data": _plan_response(plan)}


@router.post("/{plan_id}/popular")
async def toggle_plan_popular(plan_id: str, current_user: TokenData = Depends(get_current_user)):
    get_collection_or_raise_503(get_subscription_plans_collection)
    try:
        plan = await plan_service.toggle_plan_popular(plan_id, updated_by=current_user.user_id)
    except StoreBackendError as e:
        raise to_http_exception(e)
    return {"success": True, "message": "Subscription plan popularity updated", "data": _plan_response(plan)}


@router.delete("/{plan_id}")
async def delete_plan(plan_id: str, current_user: TokenData = Depends(get_current_user)):
    get_collection_or_raise_503(get_subscription_plans_collection)
    try:
        await plan_service.delete_plan(plan_id)
    except StoreBackendError as e:
        raise to_http_exception(e)
    return {"success": True, "message": "Subscription plan deleted successfully"}
