# store_backend/tests/test_models.py

from datetime import datetime
from typing import Optional

import pytest
from bson import ObjectId
from pydantic import BaseModel, ConfigDict, ValidationError

from store_backend.models.common import PyObjectId
from store_backend.models.pending_payment import PendingPayment


class _Reference(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    target: Optional[PyObjectId] = None


class TestPyObjectId:
    def test_accepts_hex_string_and_object_id(self):
        oid = ObjectId()

        assert _Reference(target=str(oid)).target == oid
        assert _Reference(target=oid).target == oid
        assert _Reference().target is None

    def test_rejects_malformed_id(self):
        with pytest.raises(ValidationError):
            _Reference(target="not-an-id")

    def test_dumps_object_id_for_mongo_and_string_for_json(self):
        oid = ObjectId()
        model = _Reference(target=oid)

        assert model.model_dump()["target"] == oid
        assert model.model_dump(mode="json")["target"] == str(oid)

    def test_pending_payment_takes_string_ids(self):
        store_id, plan_id = ObjectId(), ObjectId()
        now = datetime(2026, 1, 1)

        payment = PendingPayment(
            store=str(store_id),
            reference="REF1",
            plan_id=str(plan_id),
            amount=99.0,
            expires_at=now,
            created_at=now,
            updated_at=now,
        )

        assert payment.store == store_id
        assert payment.plan_id == plan_id
