# store_backend/shared/http_errors.py

# Helpers used by the feature routers to turn service-layer failures into
# HTTP responses.

from fastapi import HTTPException, Request, status
from pymongo.collection import Collection

from .exceptions import (
    ActivationError,
    ConflictError,
    GatewayConfigurationError,
    GatewayError,
    NotFoundError,
    StoreBackendError,
    SubscriptionTransitionError,
)
from .logger import get_logger

logger = get_logger("http")

# Checked in order, so subclasses come before their bases
_STATUS_BY_ERROR = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (GatewayConfigurationError, status.HTTP_400_BAD_REQUEST),
    (GatewayError, status.HTTP_502_BAD_GATEWAY),
    (ActivationError, status.HTTP_400_BAD_REQUEST),
    (SubscriptionTransitionError, status.HTTP_400_BAD_REQUEST),
)


def to_http_exception(exc: StoreBackendError) -> HTTPException:
    """Maps a service error onto the HTTPException the routers raise."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# --- Helper function to get collections (handles None case) ---
def get_collection_or_raise_503(collection_getter) -> Collection:
    """Calls a collection getter function and raises 503 if the collection is None."""
    collection = collection_getter()
    if collection is None:
        logger.error("Database collection not accessible", getter=collection_getter.__name__)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database service is not available."
        )
    return collection


def get_app_component(request: Request, name: str):
    """Returns a component stored on app.state at startup, or raises 503."""
    component = getattr(request.app.state, name, None)
    if component is None:
        logger.error("Application component not initialized", component=name)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Service component '{name}' is not available."
        )
    return component
