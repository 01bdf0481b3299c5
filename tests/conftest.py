"""
Shared test fixtures.

``InMemoryBillingStore`` mirrors the PostgreSQL store: unique keys on
subscription code and payment reference, the canceled guard on upsert and
commit/rollback of staged writes.
"""

import base64
import copy
import hashlib
import hmac
import json
import time
from dataclasses import asdict
from typing import Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.core.rate_limit import checkout_rate_limit, webhook_rate_limit
from app.dependencies import get_billing_store, get_transaction_verifier
from app.main import app
from app.models.subscription import SubscriptionStatus
from app.services.billing_store import (
    LIVE_STATUSES,
    PaymentRecord,
    SubscriptionRecord,
    SubscriptionUpsert,
)
from app.services.credentials import get_credential_resolver

PAYSTACK_SECRET = "sk_test_paystack_secret"
FLW_HASH = "flw-webhook-hash"
STRIPE_SECRET = "whsec_test_secret"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class InMemoryBillingStore:
    """BillingStore with the same key and guard semantics as the SQL store."""

    def __init__(self, users: Optional[dict[str, str]] = None, fail_payments: bool = False):
        self.subscriptions: dict[str, dict] = {}
        self.payments: dict[str, PaymentRecord] = {}
        self.users: dict[str, str] = dict(users or {})
        self.fail_payments = fail_payments
        self.commits = 0
        self.rollbacks = 0
        self._writes = 0
        self._snapshot = self._state()

    def _state(self):
        return copy.deepcopy((self.subscriptions, self.payments, self.users))

    def _touch(self, row: dict) -> None:
        # stands in for updated_at ordering
        self._writes += 1
        row["_version"] = self._writes

    @staticmethod
    def _record(row: dict) -> SubscriptionRecord:
        return SubscriptionRecord(
            user_id=row["user_id"],
            plan=row["plan"],
            status=row["status"],
            provider_subscription_code=row["provider_subscription_code"],
            cancel_at_period_end=row["cancel_at_period_end"],
            current_period_end=row["current_period_end"],
        )

    async def upsert_subscription(self, values: SubscriptionUpsert) -> Optional[SubscriptionRecord]:
        code = values.provider_subscription_code
        existing = self.subscriptions.get(code)
        new = asdict(values)

        if existing is None:
            self.subscriptions[code] = new
            self._touch(new)
            return self._record(new)

        if existing["status"] == SubscriptionStatus.CANCELED.value:
            return None

        for key in ("provider_customer_code", "provider_authorization_code"):
            if new[key] is None:
                new[key] = existing[key]
        existing.update(new)
        self._touch(existing)
        return self._record(existing)

    async def record_payment(self, payment: PaymentRecord) -> bool:
        if self.fail_payments:
            return False
        if payment.provider_reference in self.payments:
            return False
        self.payments[payment.provider_reference] = payment
        return True

    async def set_user_tier(self, user_id: str, tier: str, customer_code: Optional[str] = None) -> bool:
        if user_id not in self.users:
            return False
        self.users[user_id] = tier
        return True

    async def cancel_subscription(self, code: str) -> Optional[SubscriptionRecord]:
        row = self.subscriptions.get(code)
        if row is None or row["status"] == SubscriptionStatus.CANCELED.value:
            return None
        row["status"] = SubscriptionStatus.CANCELED.value
        self._touch(row)
        return self._record(row)

    async def get_subscription(self, code: str) -> Optional[SubscriptionRecord]:
        row = self.subscriptions.get(code)
        return self._record(row) if row is not None else None

    async def live_plan_for_user(self, user_id: str) -> Optional[str]:
        live = [
            row for row in self.subscriptions.values()
            if row["user_id"] == user_id and row["status"] in LIVE_STATUSES
        ]
        if not live:
            return None
        return max(live, key=lambda row: row["_version"])["plan"]

    async def mark_not_renewing(self, code: str) -> Optional[SubscriptionRecord]:
        row = self.subscriptions.get(code)
        if row is None:
            return None
        row["cancel_at_period_end"] = True
        self._touch(row)
        return self._record(row)

    async def mark_past_due(self, code: str) -> Optional[SubscriptionRecord]:
        row = self.subscriptions.get(code)
        if row is None or row["status"] == SubscriptionStatus.CANCELED.value:
            return None
        row["status"] = SubscriptionStatus.PAST_DUE.value
        self._touch(row)
        return self._record(row)

    async def commit(self) -> None:
        self.commits += 1
        self._snapshot = self._state()

    async def rollback(self) -> None:
        self.rollbacks += 1
        self.subscriptions, self.payments, self.users = copy.deepcopy(self._snapshot)


class FakeCredentials:
    """CredentialResolver backed by a dict."""

    def __init__(self, values: dict[str, str]):
        self.values = values

    async def get(self, name: str) -> Optional[str]:
        return self.values.get(name) or None


# ---------------------------------------------------------------------------
# Signing helpers
# ---------------------------------------------------------------------------

def encode(payload: dict) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def paystack_signature(body: bytes, secret: str = PAYSTACK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()


def flutterwave_signature(body: bytes, secret: str = FLW_HASH) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


def stripe_signature(body: bytes, secret: str = STRIPE_SECRET, timestamp: Optional[int] = None) -> str:
    ts = str(timestamp if timestamp is not None else int(time.time()))
    digest = hmac.new(secret.encode(), ts.encode() + b"." + body, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def store() -> InMemoryBillingStore:
    return InMemoryBillingStore(users={"user-1": "free", "user-2": "free"})


@pytest.fixture
def credentials() -> FakeCredentials:
    return FakeCredentials({
        "PAYSTACK_SECRET_KEY": PAYSTACK_SECRET,
        "PAYSTACK_PLAN_CODE_PRO": "PLN_pro",
        "PAYSTACK_PLAN_CODE_BUSINESS": "PLN_business",
        "FLUTTERWAVE_CLIENT_ID": "flw-client-id",
        "FLUTTERWAVE_CLIENT_SECRET": "FLWSECK_TEST-secret",
        "FLUTTERWAVE_PLAN_ID_PRO": "12345",
        "FLUTTERWAVE_PLAN_ID_BUSINESS": "12346",
        "FLW_SECRET_HASH": FLW_HASH,
        "STRIPE_WEBHOOK_SECRET": STRIPE_SECRET,
    })


@pytest.fixture
def verifier() -> AsyncMock:
    """Transaction verifier that confirms every event unchanged."""
    mock = AsyncMock()
    mock.verify.side_effect = lambda event: event
    return mock


async def _no_rate_limit() -> None:
    return None


@pytest_asyncio.fixture
async def client(store, credentials, verifier):
    app.dependency_overrides[get_billing_store] = lambda: store
    app.dependency_overrides[get_credential_resolver] = lambda: credentials
    app.dependency_overrides[get_transaction_verifier] = lambda: verifier
    app.dependency_overrides[webhook_rate_limit] = _no_rate_limit
    app.dependency_overrides[checkout_rate_limit] = _no_rate_limit

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
