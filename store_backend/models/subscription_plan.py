# store_backend/models/subscription_plan.py

# This file defines the Pydantic models for subscription plans stored in the
# 'subscription_plans' collection, plus the request models for managing them.

import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from ..shared.utils import utcnow
from .common import DOCUMENT_MODEL_CONFIG, PyObjectId


class PlanType(str, Enum):
    FREE = "free"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUAL = "semi_annual"
    ANNUAL = "annual"
    CUSTOM = "custom"


class PlanCurrency(str, Enum):
    USD = "USD"
    EUR = "EUR"
    ILS = "ILS"
    SAR = "SAR"
    AED = "AED"
    EGP = "EGP"
    JOD = "JOD"


class PlanFeature(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    included: bool = True


# --- SubscriptionPlan Model ---
class SubscriptionPlan(BaseModel):
    """
    Represents a plan a store can subscribe to.
    Usage caps use -1 for unlimited.
    """
    id: Optional[PyObjectId] = Field(alias="_id", default=None)

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    type: PlanType = Field(...)
    duration: int = Field(..., ge=1)  # Duration in days
    price: float = Field(..., ge=0)
    currency: PlanCurrency = Field(default=PlanCurrency.USD)
    features: List[PlanFeature] = Field(default_factory=list)
    is_active: bool = Field(default=True)
    is_popular: bool = Field(default=False)
    sort_order: int = Field(default=0)
    max_products: int = Field(default=-1)
    max_orders: int = Field(default=-1)
    max_users: int = Field(default=-1)
    storage_limit: int = Field(default=-1)  # in MB

    created_by: Optional[str] = Field(default=None)
    updated_by: Optional[str] = Field(default=None)
    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(default_factory=utcnow)

    model_config = {
        **DOCUMENT_MODEL_CONFIG,
        "json_schema_extra": {
            "example": {
                "_id": "65f2a5b1b3727d9c4a7e1a20",
                "name": "Monthly",
                "type": "monthly",
                "duration": 30,
                "price": 99,
                "currency": "ILS",
                "features": [{"name": "Unlimited products", "included": True}],
                "is_active": True,
                "is_popular": True,
                "max_products": -1
            }
        }
    }


def duration_text(duration: int) -> str:
    """Human readable plan length."""
    labels = {30: "1 Month", 90: "3 Months", 180: "6 Months", 365: "1 Year"}
    return labels.get(duration, f"{duration} Days")


# --- Request Models ---
class SubscriptionPlanCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    type: PlanType
    duration: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    currency: PlanCurrency = PlanCurrency.USD
    features: List[PlanFeature] = Field(default_factory=list)
    is_active: bool = Field(default=True, alias="isActive")
    is_popular: bool = Field(default=False, alias="isPopular")
    sort_order: int = Field(default=0, alias="sortOrder")
    max_products: int = Field(default=-1, ge=-1, alias="maxProducts")
    max_orders: int = Field(default=-1, ge=-1, alias="maxOrders")
    max_users: int = Field(default=-1, ge=-1, alias="maxUsers")
    storage_limit: int = Field(default=-1, ge=-1, alias="storageLimit")

    model_config = {"populate_by_name": True, "use_enum_values": True}


class SubscriptionPlanUpdate(BaseModel):
    """Partial update; only the fields sent are changed."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    type: Optional[PlanType] = None
    duration: Optional[int] = Field(default=None, ge=1)
    price: Optional[float] = Field(default=None, ge=0)
    currency: Optional[PlanCurrency] = None
    features: Optional[List[PlanFeature]] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")
    is_popular: Optional[bool] = Field(default=None, alias="isPopular")
    sort_order: Optional[int] = Field(default=None, alias="sortOrder")
    max_products: Optional[int] = Field(default=None, ge=-1, alias="maxProducts")
    max_orders: Optional[int] = Field(default=None, ge=-1, alias="maxOrders")
    max_users: Optional[int] = Field(default=None, ge=-1, alias="maxUsers")
    storage_limit: Optional[int] = Field(default=None, ge=-1, alias="storageLimit")

    model_config = {"populate_by_name": True, "use_enum_values": True}
