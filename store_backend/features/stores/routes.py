# store_backend/features/stores/routes.py

# This file defines the minimal store endpoints the subscription system needs:
# registering a store (which starts its trial) and reading it back.

from fastapi import APIRouter, status

from ...db.mongo_client import get_stores_collection
from ...models.store import StoreCreateRequest
from ...shared.exceptions import StoreBackendError
from ...shared.http_errors import get_collection_or_raise_503, to_http_exception
from ...shared.utils import serialize_document
from ..subscription import service as subscription_service

# --- Define API Router for this feature ---
router = APIRouter(
    prefix="/api/stores",
    tags=["stores"]
)

# Never returned to clients
PRIVATE_FIELDS = ("lahza_secret_key",)


def _public_store(store: dict) -> dict:
    data = {key: value for key, value in store.items() if key not in PRIVATE_FIELDS}
    data["has_payment_credentials"] = bool(store.get("lahza_secret_key"))
    data["subscription_state"] = subscription_service.build_subscription_report(store)
    return serialize_document(data)


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_store(request_data: StoreCreateRequest):
    """Registers a store; every new store starts on a free trial."""
    get_collection_or_raise_503(get_stores_collection)
    try:
        store = await subscription_service.create_store(request_data)
    except StoreBackendError as e:
        raise to_http_exception(e)
    return {"success": True, "message": "Store created successfully", "data": _public_store(store)}


@router.get("/{store_id}")
async def get_store(store_id: str):
    get_collection_or_raise_503(get_stores_collection)
    try:
        store = await subscription_service.get_store_or_raise(store_id)
    except StoreBackendError as e:
        raise to_http_exception(e)
    return {"success": True, "data": _public_store(store)}
