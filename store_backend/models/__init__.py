# store_backend/models/__init__.py

# This file makes the 'models' directory a Python package
# and is used to manage imports from this package.

from .store import Store, StoreContact, StoreStatus, StoreSubscription
from .subscription_history import HistoryAction, SubscriptionHistoryEntry
from .subscription_plan import PlanType, SubscriptionPlan
from .pending_payment import ActivationSource, PendingPayment, PendingPaymentStatus

__all__ = [
    "Store",
    "StoreContact",
    "StoreStatus",
    "StoreSubscription",
    "HistoryAction",
    "SubscriptionHistoryEntry",
    "PlanType",
    "SubscriptionPlan",
    "ActivationSource",
    "PendingPayment",
    "PendingPaymentStatus",
]
