import json
from datetime import datetime
from typing import Any, Dict, Optional

import pytest
from fastapi.testclient import TestClient

from budget_tracker.config import Settings
from budget_tracker.core.errors import InvalidAmount, NotFound
from budget_tracker.core.security import SignatureVerifier, compute_signature, payment_message
from budget_tracker.database import build_engine, init_db
from budget_tracker.main import create_app
from budget_tracker.services.gateway import GatewayClient, OrderHandle, PaymentRecord
from budget_tracker.services.ledger import SqlLedger
from budget_tracker.services.pipeline import PaymentPipeline


KEY_SECRET = "s3cret"
WEBHOOK_SECRET = "whsec_test"


class FakeGateway(GatewayClient):
    """In-memory stand-in for the payment provider."""

    def __init__(self):
        self.orders: list[tuple[OrderHandle, Dict[str, Any]]] = []
        self.payments: Dict[str, PaymentRecord] = {}
        self.error: Optional[Exception] = None
        self.closed = False

    async def create_order(self, amount, currency, receipt, notes=None):
        if self.error is not None:
            raise self.error
        if amount <= 0:
            raise InvalidAmount()
        order = OrderHandle(
            id=f"order_{len(self.orders) + 1}",
            amount=amount,
            currency=currency,
            receipt=receipt,
            created_at=datetime.utcnow(),
        )
        self.orders.append((order, notes or {}))
        return order

    async def fetch_payment(self, payment_id):
        if self.error is not None:
            raise self.error
        if payment_id not in self.payments:
            raise NotFound(f"Payment not found: {payment_id}")
        return self.payments[payment_id]

    async def aclose(self):
        self.closed = True


def sign_payment(order_id: str, payment_id: str, secret: str = KEY_SECRET) -> str:
    return compute_signature(payment_message(order_id, payment_id), secret)


def webhook_body(event: str, payment: Optional[Dict[str, Any]] = None) -> bytes:
    body: Dict[str, Any] = {"event": event, "payload": {}}
    if payment is not None:
        body["payload"]["payment"] = {"entity": payment}
    return json.dumps(body).encode("utf-8")


def sign_webhook(raw_body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return compute_signature(raw_body, secret)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        environment="test",
        database_url=f"sqlite:///{tmp_path / 'budget_tracker.db'}",
        razorpay_key_id="rzp_test_key",
        razorpay_key_secret=KEY_SECRET,
        razorpay_webhook_secret=WEBHOOK_SECRET,
        reconcile_payments=False,
        default_monthly_budget=10000.0,
        default_currency="INR",
        allowed_origins="*",
        log_level="WARNING",
    )


@pytest.fixture
def ledger(settings):
    engine = build_engine(settings)
    init_db(engine)
    yield SqlLedger(engine, settings.default_monthly_budget)
    engine.dispose()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def pipeline(ledger, gateway, settings):
    verifier = SignatureVerifier(settings.razorpay_key_secret, settings.razorpay_webhook_secret)
    return PaymentPipeline(ledger, gateway, verifier, settings)


@pytest.fixture
def client(settings, ledger, gateway):
    app = create_app(settings=settings, ledger=ledger, gateway=gateway)
    with TestClient(app) as c:
        yield c
