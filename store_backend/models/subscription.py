# store_backend/models/subscription.py

# Request models for the admin subscription endpoints.

import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ActivateSubscriptionRequest(BaseModel):
    plan_id: str = Field(..., alias="planId")
    # Custom plans may pin explicit dates; end must be strictly after start
    start_date: Optional[datetime.datetime] = Field(default=None, alias="startDate")
    end_date: Optional[datetime.datetime] = Field(default=None, alias="endDate")
    amount: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = None
    auto_renew: Optional[bool] = Field(default=None, alias="autoRenew")
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")

    model_config = {"populate_by_name": True}


class ExtendTrialRequest(BaseModel):
    days: int = Field(..., gt=0, alias="daysToAdd")

    model_config = {"populate_by_name": True}


class CancelSubscriptionRequest(BaseModel):
    reason: Optional[str] = None
    immediate: bool = True


class UpdateEndDateRequest(BaseModel):
    end_date: datetime.datetime = Field(..., alias="endDate")
    reason: Optional[str] = None

    model_config = {"populate_by_name": True}
