# store_backend/features/payment/gateway.py

# Client for the Lahza payment gateway: initialize, verify, status and
# charge-authorization calls, authenticated with each store's own secret key.
# Amounts travel in the currency's smallest unit (agorot, cents, qirsh...).

from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from ...db import mongo_client as database
from ...db.mongo_client import get_stores_collection, require_collection
from ...shared.exceptions import GatewayConfigurationError, GatewayError, NotFoundError
from ...shared.logger import get_logger

logger = get_logger("payment_gateway")

# Multiplier between the display amount and the gateway's smallest unit
SMALLEST_UNIT_FACTORS = {
    "ILS": 100,   # agorot
    "USD": 100,   # cents
    "EUR": 100,   # cents
    "SAR": 100,   # halala
    "AED": 100,   # fils
    "EGP": 100,   # piastres
    "JOD": 1000,  # qirsh/fils
}
DEFAULT_UNIT_FACTOR = 100

SUCCESS_STATUSES = frozenset({"captured", "success", "successful", "paid"})
FAILURE_STATUSES = frozenset({"failed", "cancelled", "canceled", "declined", "reversed"})


class GatewayOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"


def classify_status(status: Optional[str]) -> GatewayOutcome:
    """
    Maps a raw gateway status onto success / failure / still pending.
    Matching is case-insensitive. 'abandoned' and unknown values count as
    pending: the customer may still come back and pay.
    """
    normalized = (status or "").strip().lower()
    if normalized in SUCCESS_STATUSES:
        return GatewayOutcome.SUCCESS
    if normalized in FAILURE_STATUSES:
        return GatewayOutcome.FAILURE
    return GatewayOutcome.PENDING


def _unit_factor(currency: Optional[str]) -> int:
    return SMALLEST_UNIT_FACTORS.get((currency or "ILS").upper(), DEFAULT_UNIT_FACTOR)


def convert_to_smallest_unit(amount: float, currency: str = "ILS") -> int:
    """19.99 ILS -> 1999 agorot. Rounds half up."""
    scaled = Decimal(str(amount)) * _unit_factor(currency)
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def convert_from_smallest_unit(amount: Optional[float], currency: str = "ILS") -> Optional[float]:
    """1999 agorot -> 19.99 ILS."""
    if amount is None:
        return None
    return float(amount) / _unit_factor(currency)


def _customer(data: Dict[str, Any]) -> Dict[str, Any]:
    customer = data.get("customer") or {}
    return {
        "name": customer.get("name"),
        "email": customer.get("email"),
        "phone": customer.get("phone"),
    }


class LahzaGateway:
    """Async client for the Lahza transaction API."""

    def __init__(self, base_url: str, callback_url: str, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.callback_url = callback_url
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    # --- Credentials ---
    async def get_store_secret_key(self, store_id: Any) -> str:
        """Returns the store's secret key or raises GatewayConfigurationError."""
        stores = require_collection(get_stores_collection)
        store = await database.find_by_id(stores, store_id)
        if store is None:
            raise NotFoundError(f"Store {store_id} not found")
        secret_key = store.get("lahza_secret_key")
        if not secret_key:
            raise GatewayConfigurationError("Store does not have Lahza secret key configured")
        return secret_key

    # --- Transport ---
    async def _request(self, method: str, path: str, secret_key: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {secret_key}",
            "Content-Type": "application/json",
        }
        try:
            response = await self._client.request(method, path, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("Gateway request failed", method=method, path=path, error=str(e))
            raise GatewayError(f"Gateway request failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= 400 or not isinstance(body, dict) or body.get("status") is not True:
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning("Gateway returned an error", method=method, path=path, status_code=response.status_code, message=message)
            raise GatewayError(message or f"Gateway responded with HTTP {response.status_code}", status_code=response.status_code, details=body)

        return body.get("data") or {}

    # --- Operations ---
    async def initialize(
        self,
        store_id: Any,
        amount: float,
        currency: str = "ILS",
        email: Optional[str] = None,
        customer_name: Optional[str] = None,
        customer_phone: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Creates a gateway transaction and returns its reference and payment URL."""
        secret_key = await self.get_store_secret_key(store_id)

        name_parts = customer_name.strip().split(" ") if customer_name else []
        payload = {
            "amount": str(convert_to_smallest_unit(amount, currency)),
            "email": email,
            "currency": currency,
            "first_name": name_parts[0] if name_parts else "",
            "last_name": " ".join(name_parts[1:]),
            "mobile": customer_phone,
            "callback_url": self.callback_url,
            "metadata": {"storeId": str(store_id), "description": description, **(metadata or {})},
        }
        logger.info("Initializing payment", store_id=str(store_id), amount=amount, currency=currency)
        data = await self._request("POST", "/initialize", secret_key, payload)

        return {
            "transaction_id": data.get("id"),
            "reference": data.get("reference"),
            "amount": convert_from_smallest_unit(data.get("amount"), data.get("currency") or currency),
            "currency": data.get("currency") or currency,
            "status": data.get("status"),
            "payment_url": data.get("payment_url") or data.get("authorization_url"),
            "authorization_url": data.get("authorization_url"),
            "customer": _customer(data),
            "metadata": data.get("metadata"),
            "created_at": data.get("created_at"),
            "expires_at": data.get("expires_at"),
        }

    async def verify(self, store_id: Any, reference: str) -> Dict[str, Any]:
        """Verifies a transaction by reference."""
        secret_key = await self.get_store_secret_key(store_id)
        data = await self._request("GET", f"/verify/{reference}", secret_key)
        currency = data.get("currency") or "ILS"
        authorization = data.get("authorization") or {}

        return {
            "transaction_id": data.get("id"),
            "reference": data.get("reference") or reference,
            "amount": convert_from_smallest_unit(data.get("amount"), currency),
            "currency": currency,
            "status": data.get("status"),
            "gateway_response": data.get("gateway_response"),
            "customer": _customer(data),
            "metadata": data.get("metadata"),
            "paid_at": data.get("paid_at"),
            "authorization_code": authorization.get("authorization_code"),
        }

    async def get_status(self, store_id: Any, reference: str) -> Dict[str, Any]:
        """Reads the transaction status without verification side effects."""
        secret_key = await self.get_store_secret_key(store_id)
        data = await self._request("GET", f"/status/{reference}", secret_key)
        currency = data.get("currency") or "ILS"

        return {
            "transaction_id": data.get("id"),
            "reference": data.get("reference") or reference,
            "amount": convert_from_smallest_unit(data.get("amount"), currency),
            "currency": currency,
            "status": data.get("status"),
            "gateway_response": data.get("gateway_response"),
            "customer": _customer(data),
            "paid_at": data.get("paid_at"),
            "expires_at": data.get("expires_at"),
        }

    async def charge_authorization(self, store_id: Any, amount: float, email: str, authorization_code: str, currency: str = "ILS") -> Dict[str, Any]:
        """
        Charges a stored authorization (subscription renewals).
        Raises GatewayError unless the gateway reports the charge as successful.
        """
        secret_key = await self.get_store_secret_key(store_id)
        payload = {
            "amount": str(convert_to_smallest_unit(amount, currency)),
            "email": email,
            "currency": currency,
            "authorization_code": authorization_code,
        }
        data = await self._request("POST", "/charge_authorization", secret_key, payload)

        if classify_status(data.get("status")) is not GatewayOutcome.SUCCESS:
            raise GatewayError(data.get("gateway_response") or "Transaction failed", details=data)

        charged_currency = data.get("currency") or currency
        return {
            "status": data.get("status"),
            "transaction_id": data.get("id"),
            "reference": data.get("reference"),
            "authorization_code": (data.get("authorization") or {}).get("authorization_code") or authorization_code,
            "amount": convert_from_smallest_unit(data.get("amount"), charged_currency),
            "currency": charged_currency,
            "gateway_response": data.get("gateway_response"),
        }
