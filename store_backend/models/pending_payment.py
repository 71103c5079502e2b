# store_backend/models/pending_payment.py

# This file defines the Pydantic model for the PendingPayment document stored
# in the 'pending_payments' collection: one record per initiated gateway
# transaction, independent of the store document, removed by a TTL index.

import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..shared.utils import utcnow
from .common import DOCUMENT_MODEL_CONFIG, PyObjectId


class PendingPaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"
    CANCELLED = "cancelled"
    EXHAUSTED = "exhausted"  # Attempt cap reached without a terminal gateway status


class ActivationSource(str, Enum):
    WEBHOOK = "webhook"
    POLLING = "polling"
    VERIFY_BACKUP = "verify-backup"
    MANUAL = "manual"


NON_TERMINAL_STATUSES = (PendingPaymentStatus.PENDING.value, PendingPaymentStatus.PROCESSING.value)

TERMINAL_STATUSES = (
    PendingPaymentStatus.COMPLETED.value,
    PendingPaymentStatus.FAILED.value,
    PendingPaymentStatus.ABANDONED.value,
    PendingPaymentStatus.CANCELLED.value,
    PendingPaymentStatus.EXHAUSTED.value,
)


# --- PendingPayment Model ---
class PendingPayment(BaseModel):
    """
    Tracks a payment transaction that is waiting to be confirmed.
    'reference' is unique and is the idempotency key for activation.
    """
    id: Optional[PyObjectId] = Field(alias="_id", default=None)

    store: PyObjectId = Field(...)
    reference: str = Field(..., min_length=1)
    plan_id: PyObjectId = Field(...)
    amount: float = Field(..., ge=0)
    currency: str = Field(default="ILS")

    customer_email: Optional[str] = Field(default=None)
    customer_name: Optional[str] = Field(default=None)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    status: PendingPaymentStatus = Field(default=PendingPaymentStatus.PENDING)

    check_attempts: int = Field(default=0)
    last_checked_at: Optional[datetime.datetime] = Field(default=None)
    completed_at: Optional[datetime.datetime] = Field(default=None)

    subscription_activated: bool = Field(default=False)
    activated_at: Optional[datetime.datetime] = Field(default=None)
    activation_source: Optional[ActivationSource] = Field(default=None)

    last_error: Optional[str] = Field(default=None)
    error_count: int = Field(default=0)

    expires_at: datetime.datetime = Field(...)  # TTL index field
    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(default_factory=utcnow)

    model_config = {
        **DOCUMENT_MODEL_CONFIG,
        "json_schema_extra": {
            "example": {
                "store": "65f2a5b1b3727d9c4a7e1a0b",
                "reference": "REF123",
                "plan_id": "65f2a5b1b3727d9c4a7e1a20",
                "amount": 99,
                "currency": "ILS",
                "status": "pending",
                "check_attempts": 0,
                "expires_at": "2024-10-28T10:00:00.000Z"
            }
        }
    }
