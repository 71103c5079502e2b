# store_backend/features/plans/service.py

# Business logic for subscription plan management.

from typing import Any, Dict, List, Optional

from pymongo import ASCENDING

from ...db import mongo_client as database
from ...db.mongo_client import get_stores_collection, get_subscription_plans_collection, require_collection
from ...models.subscription_plan import SubscriptionPlan, SubscriptionPlanCreate, SubscriptionPlanUpdate
from ...shared.exceptions import ConflictError, NotFoundError
from ...shared.logger import get_logger
from ...shared.utils import to_object_id, utcnow

logger = get_logger("plans")


def _plans():
    return require_collection(get_subscription_plans_collection)


async def get_plan(plan_id: Any) -> Optional[Dict[str, Any]]:
    """Returns the plan document, or None for unknown/invalid ids."""
    return await database.find_by_id(_plans(), plan_id)


async def get_plan_or_raise(plan_id: Any) -> Dict[str, Any]:
    plan = await get_plan(plan_id)
    if plan is None:
        raise NotFoundError(f"Subscription plan {plan_id} not found")
    return plan


async def list_plans(active_only: bool = False, plan_type: Optional[str] = None) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if active_only:
        query["is_active"] = True
    if plan_type:
        query["type"] = plan_type
    return await database.find_many(_plans(), query, {"sort": [("sort_order", ASCENDING), ("price", ASCENDING)]})


async def create_plan(data: SubscriptionPlanCreate, created_by: Optional[str] = None) -> Dict[str, Any]:
    now = utcnow()
    plan = SubscriptionPlan(**data.model_dump(), created_by=created_by, updated_by=created_by, created_at=now, updated_at=now)
    document = plan.model_dump(exclude={"id"})
    document["_id"] = await database.insert_one(_plans(), document)
    logger.info("Subscription plan created", plan_id=str(document["_id"]), name=document["name"], type=document["type"])
    return document


async def update_plan(plan_id: Any, data: SubscriptionPlanUpdate, updated_by: Optional[str] = None) -> Dict[str, Any]:
    """Applies the fields that were sent; unknown plans raise NotFoundError."""
    changes = data.model_dump(exclude_unset=True)
    changes.update({"updated_by": updated_by, "updated_at": utcnow()})
    updated = await database.find_one_and_update(_plans(), {"_id": to_object_id(plan_id)}, {"$set": changes})
    if updated is None:
        raise NotFoundError(f"Subscription plan {plan_id} not found")
    logger.info("Subscription plan updated", plan_id=str(plan_id), fields=sorted(changes))
    return updated


async def _toggle(plan_id: Any, field: str, updated_by: Optional[str]) -> Dict[str, Any]:
    plan = await get_plan_or_raise(plan_id)
    return await database.find_one_and_update(
        _plans(),
        {"_id": plan["_id"]},
        {"$set": {field: not plan.get(field, False), "updated_by": updated_by, "updated_at": utcnow()}},
    )


async def toggle_plan_status(plan_id: Any, updated_by: Optional[str] = None) -> Dict[str, Any]:
    return await _toggle(plan_id, "is_active", updated_by)


async def toggle_plan_popular(plan_id: Any, updated_by: Optional[str] = None) -> Dict[str, Any]:
    return await _toggle(plan_id, "is_popular", updated_by)


async def delete_plan(plan_id: Any) -> None:
    """Deletes a plan unless a store subscription still points at it."""
    plan = await get_plan_or_raise(plan_id)
    in_use = await database.count_documents(require_collection(get_stores_collection), {"subscription.plan_id": plan["_id"]})
    if in_use:
        raise ConflictError(f"Plan is used by {in_use} store(s) and cannot be deleted; deactivate it instead")
    await database.delete_one(_plans(), {"_id": plan["_id"]})
    logger.info("Subscription plan deleted", plan_id=str(plan_id))
