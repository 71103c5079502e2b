# store_backend/tests/conftest.py

# Shared fixtures: an in-memory MongoDB (mongomock) patched in as the
# application database, a fake Lahza gateway served through httpx.MockTransport,
# document factories and an API client with app.state prepared by hand.

import json
from datetime import timedelta

import httpx
import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from store_backend.config.settings import settings
from store_backend.db import mongo_client
from store_backend.features.auth.security import create_access_token
from store_backend.features.payment.gateway import LahzaGateway
from store_backend.features.subscription.reconciliation import PaymentReconciler
from store_backend.shared.utils import utcnow

GATEWAY_BASE_URL = "https://api.lahza.test/transaction"
STORE_SECRET_KEY = "sk_test_store"


@pytest.fixture
def now():
    # Whole seconds: MongoDB keeps datetimes at millisecond precision
    return utcnow().replace(microsecond=0)


@pytest.fixture
def db(monkeypatch):
    client = mongomock.MongoClient()
    database = client["store_backend_test"]
    database.stores.create_index("domain", unique=True)
    database.pending_payments.create_index("reference", unique=True)
    monkeypatch.setattr(mongo_client, "mongo_db", database)
    return database


@pytest.fixture(autouse=True)
def no_polling_delay(monkeypatch):
    monkeypatch.setattr(settings, "POLLING_ITEM_DELAY_SECONDS", 0)


# --- Fake payment gateway ---
class FakeLahza:
    """
    Minimal stand-in for the Lahza transaction API.
    statuses maps reference -> status returned by verify/status;
    failures maps reference -> HTTP status code to fail verify with.
    """

    def __init__(self):
        self.statuses = {}
        self.failures = {}
        self.amounts = {}
        self.charge_status = "success"
        self.next_reference = "REF-NEW"
        self.requests = []

    def calls(self, fragment: str):
        return [r for r in self.requests if fragment in r.url.path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/initialize"):
            body = json.loads(request.content)
            return httpx.Response(200, json={
                "status": True,
                "message": "Authorization URL created",
                "data": {
                    "id": 1001,
                    "reference": self.next_reference,
                    "authorization_url": f"https://pay.lahza.test/{self.next_reference}",
                    "amount": int(body["amount"]),
                    "currency": body["currency"],
                    "status": "pending",
                },
            })

        if "/verify/" in path or "/status/" in path:
            reference = path.rsplit("/", 1)[-1]
            if reference in self.failures:
                return httpx.Response(self.failures[reference], json={"status": False, "message": "Gateway unavailable"})
            return httpx.Response(200, json={
                "status": True,
                "message": "Verification successful",
                "data": {
                    "id": 2002,
                    "reference": reference,
                    "status": self.statuses.get(reference, "pending"),
                    "amount": self.amounts.get(reference, 9900),
                    "currency": "ILS",
                    "gateway_response": "Approved",
                    "customer": {"email": "owner@example.com"},
                    "authorization": {"authorization_code": f"AUTH_{reference}"},
                },
            })

        if path.endswith("/charge_authorization"):
            body = json.loads(request.content)
            return httpx.Response(200, json={
                "status": True,
                "message": "Charge attempted",
                "data": {
                    "id": 3003,
                    "reference": "REF-RENEWAL",
                    "status": self.charge_status,
                    "amount": int(body["amount"]),
                    "currency": body["currency"],
                    "gateway_response": "Approved" if self.charge_status == "success" else "Insufficient funds",
                    "authorization": {"authorization_code": body["authorization_code"]},
                },
            })

        return httpx.Response(404, json={"status": False, "message": "Not found"})

    def gateway(self) -> LahzaGateway:
        return LahzaGateway(GATEWAY_BASE_URL, "http://localhost:5173/", timeout=5, transport=httpx.MockTransport(self.handler))


@pytest.fixture
def lahza():
    return FakeLahza()


@pytest.fixture
def gateway(lahza):
    return lahza.gateway()


@pytest.fixture
def reconciler(gateway):
    return PaymentReconciler(gateway, fast_interval=10, slow_interval=60, item_delay=0)


# --- Document factories ---
@pytest.fixture
def make_plan(db, now):
    def _make(**overrides):
        plan = {
            "name": "Monthly",
            "description": "Monthly plan",
            "type": "monthly",
            "duration": 30,
            "price": 99.0,
            "currency": "ILS",
            "features": [],
            "is_active": True,
            "is_popular": False,
            "sort_order": 0,
            "max_products": -1,
            "max_orders": -1,
            "max_users": -1,
            "storage_limit": -1,
            "created_at": now,
            "updated_at": now,
        }
        plan.update(overrides)
        plan["_id"] = db.subscription_plans.insert_one(plan).inserted_id
        return plan
    return _make


@pytest.fixture
def make_store(db, now):
    def _make(subscription=None, **overrides):
        sub = {
            "is_subscribed": False,
            "plan_id": None,
            "plan": None,
            "start_date": None,
            "end_date": None,
            "last_payment_date": None,
            "next_payment_date": None,
            "trial_end_date": now + timedelta(days=14),
            "auto_renew": False,
            "reference_id": None,
            "authorization_code": None,
            "amount": None,
            "currency": None,
            "payment_method": None,
        }
        sub.update(subscription or {})
        store = {
            "name": "Olive Corner",
            "domain": f"store-{ObjectId()}",
            "status": "active",
            "contact": {"email": "owner@example.com", "phone": None},
            "lahza_secret_key": STORE_SECRET_KEY,
            "subscription": sub,
            "subscription_history": [],
            "created_at": now,
            "updated_at": now,
        }
        store.update(overrides)
        store["_id"] = db.stores.insert_one(store).inserted_id
        return store
    return _make


@pytest.fixture
def make_pending(db, now):
    def _make(store, plan, reference="REF123", **overrides):
        record = {
            "store": store["_id"],
            "reference": reference,
            "plan_id": plan["_id"],
            "amount": plan["price"],
            "currency": plan["currency"],
            "customer_email": "owner@example.com",
            "customer_name": None,
            "metadata": {},
            "status": "pending",
            "check_attempts": 0,
            "last_checked_at": None,
            "completed_at": None,
            "subscription_activated": False,
            "activated_at": None,
            "activation_source": None,
            "last_error": None,
            "error_count": 0,
            "expires_at": now + timedelta(hours=24),
            "created_at": now,
            "updated_at": now,
        }
        record.update(overrides)
        record["_id"] = db.pending_payments.insert_one(record).inserted_id
        return record
    return _make


# --- API ---
@pytest.fixture
def client(db, gateway, reconciler):
    from store_backend.api.main import app, build_scheduler

    app.state.gateway = gateway
    app.state.reconciler = reconciler
    app.state.scheduler = build_scheduler(gateway, reconciler)
    yield TestClient(app)
    app.state.gateway = None
    app.state.reconciler = None
    app.state.scheduler = None


@pytest.fixture
def auth_headers():
    token = create_access_token({"sub": "operator-1", "user_id": "operator-1", "role": "admin"})
    return {"Authorization": f"Bearer {token}"}
