# store_backend/models/subscription_history.py

# This file defines the Pydantic model for the entries of the append-only
# 'subscription_history' array embedded in every store document.

import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..shared.utils import utcnow
from .common import DOCUMENT_MODEL_CONFIG


class HistoryAction(str, Enum):
    TRIAL_STARTED = "trial_started"
    TRIAL_EXTENDED = "trial_extended"
    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    SUBSCRIPTION_RENEWED = "subscription_renewed"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_FAILED = "payment_failed"
    PLAN_CHANGED = "plan_changed"
    AMOUNT_CHANGED = "amount_changed"
    AUTO_RENEW_CHANGED = "auto_renew_changed"
    PAYMENT_METHOD_CHANGED = "payment_method_changed"
    STORE_DEACTIVATED = "store_deactivated"
    STORE_REACTIVATED = "store_reactivated"
    END_DATE_UPDATED = "end_date_updated"


# Actions produced by a plan activation; used when counting activations.
ACTIVATION_ACTIONS = (HistoryAction.SUBSCRIPTION_ACTIVATED.value, HistoryAction.SUBSCRIPTION_RENEWED.value)


# --- SubscriptionHistoryEntry Model ---
class SubscriptionHistoryEntry(BaseModel):
    """
    A single audit record of a subscription state transition.
    Pure audit trail: decision logic never reads it.
    """
    action: HistoryAction = Field(...)

    description: str = Field(default="")

    details: Dict[str, Any] = Field(default_factory=dict)  # Free-form context (source, reference, dates...)

    performed_by: Optional[str] = Field(default=None)  # None means system-initiated

    performed_at: datetime.datetime = Field(default_factory=utcnow)

    model_config = {
        **DOCUMENT_MODEL_CONFIG,
        "json_schema_extra": {
            "example": {
                "action": "subscription_activated",
                "description": "Subscription activated",
                "details": {"source": "polling", "reference": "REF123", "plan_type": "monthly"},
                "performed_by": None,
                "performed_at": "2024-10-27T10:00:00.000Z"
            }
        }
    }
