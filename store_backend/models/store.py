# store_backend/models/store.py

# This file defines the Pydantic model for the Store document in the 'stores'
# collection, including the embedded subscription state.

import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from ..shared.utils import utcnow
from .common import DOCUMENT_MODEL_CONFIG, PyObjectId
from .subscription_history import SubscriptionHistoryEntry


class StoreStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class StoreContact(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None


# --- Embedded subscription state ---
class StoreSubscription(BaseModel):
    """
    Subscription/trial state embedded in the store document.
    The effective state (trial active, subscription active, expired) is never
    stored; it is derived from these dates every time it is needed.
    """
    is_subscribed: bool = Field(default=False)
    plan_id: Optional[PyObjectId] = Field(default=None)
    plan: Optional[str] = Field(default=None)  # Plan type snapshot (monthly, annual, ...)
    start_date: Optional[datetime.datetime] = Field(default=None)
    end_date: Optional[datetime.datetime] = Field(default=None)
    last_payment_date: Optional[datetime.datetime] = Field(default=None)
    next_payment_date: Optional[datetime.datetime] = Field(default=None)
    trial_end_date: Optional[datetime.datetime] = Field(default=None)  # Set once at store creation
    auto_renew: bool = Field(default=False)
    reference_id: Optional[str] = Field(default=None)  # Last gateway reference used for activation
    authorization_code: Optional[str] = Field(default=None)  # Reusable gateway authorization for renewals
    amount: Optional[float] = Field(default=None)
    currency: Optional[str] = Field(default=None)
    payment_method: Optional[str] = Field(default=None)

    model_config = DOCUMENT_MODEL_CONFIG


# --- Store Model ---
class Store(BaseModel):
    """Represents a store document in the MongoDB 'stores' collection."""
    id: Optional[PyObjectId] = Field(alias="_id", default=None)

    name: str = Field(..., min_length=1, max_length=100)
    domain: str = Field(..., min_length=1)
    status: StoreStatus = Field(default=StoreStatus.ACTIVE)
    contact: StoreContact = Field(default_factory=StoreContact)
    lahza_secret_key: Optional[str] = Field(default=None)  # Per-store payment gateway credential

    subscription: StoreSubscription = Field(default_factory=StoreSubscription)
    subscription_history: List[SubscriptionHistoryEntry] = Field(default_factory=list)

    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(default_factory=utcnow)

    model_config = {
        **DOCUMENT_MODEL_CONFIG,
        "json_schema_extra": {
            "example": {
                "_id": "65f2a5b1b3727d9c4a7e1a0b",
                "name": "Olive Corner",
                "domain": "olive-corner",
                "status": "active",
                "contact": {"email": "owner@olive-corner.com", "phone": "+970599000000"},
                "subscription": {
                    "is_subscribed": False,
                    "trial_end_date": "2024-11-10T10:00:00.000Z",
                    "auto_renew": False
                },
                "subscription_history": []
            }
        }
    }


# --- Request Model for store registration ---
class StoreCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    domain: str = Field(..., min_length=1, max_length=100)
    contact_email: EmailStr = Field(..., alias="contactEmail")
    contact_phone: Optional[str] = Field(default=None, alias="contactPhone")
    lahza_secret_key: Optional[str] = Field(default=None, alias="lahzaSecretKey")

    model_config = {"populate_by_name": True}
