# store_backend/models/payment.py

# Request and response models for the payment endpoints.

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class PaymentInitializeRequest(BaseModel):
    amount: float = Field(..., gt=0)
    currency: str = Field(default="ILS", min_length=3, max_length=3)
    email: Optional[str] = None
    customer_name: Optional[str] = Field(default=None, alias="customerName")
    customer_phone: Optional[str] = Field(default=None, alias="customerPhone")
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    plan_id: Optional[str] = Field(default=None, alias="planId")

    model_config = {"populate_by_name": True}


class PaymentVerifyRequest(BaseModel):
    reference: str = Field(..., min_length=1)


class WebhookData(BaseModel):
    reference: Optional[str] = None
    status: Optional[str] = None

    model_config = {"extra": "allow"}


class WebhookPayload(BaseModel):
    """Gateway callback body: {event, data: {reference, status, ...}}."""
    event: Optional[str] = None
    data: WebhookData = Field(default_factory=WebhookData)

    model_config = {"extra": "allow"}


class ManualActivateRequest(BaseModel):
    reference: str = Field(..., min_length=1)
    plan_id: str = Field(..., alias="planId")
    verify_with_gateway: bool = Field(default=True, alias="verifyWithGateway")

    model_config = {"populate_by_name": True}


class PollResponse(BaseModel):
    """Contract for frontends polling a payment: stop once shouldContinuePolling is false."""
    success: bool = True
    status: str  # pending | success | failed | error
    should_continue_polling: bool = Field(..., serialization_alias="shouldContinuePolling")
    subscription_activated: bool = Field(default=False, serialization_alias="subscriptionActivated")
    already_activated: bool = Field(default=False, serialization_alias="alreadyActivated")
    gateway_status: Optional[str] = Field(default=None, serialization_alias="gatewayStatus")
    message: Optional[str] = None
