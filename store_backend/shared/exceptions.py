# store_backend/shared/exceptions.py

# Exception types raised by the service layer and translated into HTTP
# responses by the feature routers.


class StoreBackendError(Exception):
    """Base class for errors raised by the store backend services."""


class NotFoundError(StoreBackendError):
    """A store, plan or pending payment could not be found."""


class GatewayConfigurationError(StoreBackendError):
    """The store is missing its payment gateway credentials. Never retried."""


class GatewayError(StoreBackendError):
    """The payment gateway call failed (network error, non-2xx, or status=false)."""

    def __init__(self, message: str, status_code: int | None = None, details=None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class ActivationError(StoreBackendError):
    """A confirmed payment could not be turned into an active subscription."""


class SubscriptionTransitionError(StoreBackendError):
    """A subscription transition was rejected (e.g. enabling auto-renew twice)."""


class ConflictError(StoreBackendError):
    """The write conflicts with existing data (duplicate domain, plan still in use...)."""


class DuplicateReferenceError(ConflictError):
    """A pending payment with this gateway reference already exists."""
