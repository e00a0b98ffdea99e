"""
Payment pipeline: order creation, confirmation verification, webhook intake.

Per payment the flow is

    created -> awaiting_confirmation -> verified -> recorded
                                     \\-> rejected

Only ``recorded`` touches the ledger. A rejected confirmation leaves no trace
in the ledger; a later valid confirmation for the same order starts a fresh
attempt. Webhook deliveries of ``payment.captured`` go through the same
ledger path, so a payment confirmed by the client and then by the gateway is
counted once.
"""

import asyncio
import json
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from pydantic import BaseModel, Field

from ..config import Settings
from ..core.errors import (
    BudgetTrackerError,
    GatewayUnavailable,
    InternalError,
    InvalidAmount,
    InvalidRequest,
    SignatureMismatch,
)
from ..core.logging import get_logger
from ..core.security import SignatureVerifier
from ..models.transaction import Transaction, TransactionChannel, TransactionStatus
from ..models.user import User
from ..schemas import Analysis
from . import analyzer
from .gateway import GatewayClient, OrderHandle, build_receipt, from_minor_units
from .ledger import Ledger


T = TypeVar("T")

MAX_TRACKED_ATTEMPTS = 1024


class PaymentState(str, Enum):
    CREATED = "created"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    VERIFIED = "verified"
    RECORDED = "recorded"
    REJECTED = "rejected"


ALLOWED_TRANSITIONS = {
    PaymentState.CREATED: {PaymentState.AWAITING_CONFIRMATION},
    PaymentState.AWAITING_CONFIRMATION: {PaymentState.VERIFIED, PaymentState.REJECTED},
    PaymentState.VERIFIED: {PaymentState.RECORDED},
    PaymentState.RECORDED: set(),
    PaymentState.REJECTED: set(),
}


class PaymentAttempt(BaseModel):
    order_id: str
    user_id: str
    payment_id: Optional[str] = None
    state: PaymentState = PaymentState.CREATED
    previous_state: Optional[PaymentState] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def transition_to(self, new_state: PaymentState) -> "PaymentAttempt":
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InternalError(f"Illegal payment transition {self.state.value} -> {new_state.value}")
        return self.model_copy(update={
            "previous_state": self.state,
            "state": new_state,
            "updated_at": datetime.utcnow(),
        })


class WebhookEventType(str, Enum):
    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
    ORDER_PAID = "order.paid"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "WebhookEventType":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass
class OrderCreated:
    order: OrderHandle
    user_id: str
    amount: float
    currency: str
    category: str
    description: str


@dataclass
class VerificationResult:
    transaction: Transaction
    user: User
    applied: bool
    analysis: Analysis
    state: PaymentState


@dataclass
class WebhookOutcome:
    event: str
    handled: bool
    applied: bool = False
    transaction_id: Optional[str] = None
    reason: Optional[str] = None


class PaymentPipeline:
    """
    Composes the gateway, the signature verifier and the ledger.

    Example:
        pipeline = PaymentPipeline(ledger, gateway, verifier, settings)
        created = await pipeline.create_order("user-1", 500.0)
        # payer completes checkout with the gateway
        result = await pipeline.verify_and_record(order_id, payment_id, signature, "user-1", 500.0)
    """

    def __init__(
        self,
        ledger: Ledger,
        gateway: GatewayClient,
        verifier: SignatureVerifier,
        settings: Settings,
    ):
        self.ledger = ledger
        self.gateway = gateway
        self.verifier = verifier
        self.settings = settings
        self._attempts: "OrderedDict[str, PaymentAttempt]" = OrderedDict()
        self._logger = get_logger("payment_pipeline")

        self._webhook_handlers: Dict[WebhookEventType, Callable[[dict], Awaitable[WebhookOutcome]]] = {
            WebhookEventType.PAYMENT_CAPTURED: self._on_payment_captured,
            WebhookEventType.PAYMENT_FAILED: self._on_payment_failed,
            WebhookEventType.ORDER_PAID: self._on_order_paid,
            WebhookEventType.UNKNOWN: self._on_unknown_event,
        }

    # ─────────────────────────────
    #   HELPERS
    # ─────────────────────────────

    def _remember(self, attempt: PaymentAttempt) -> PaymentAttempt:
        self._attempts[attempt.order_id] = attempt
        self._attempts.move_to_end(attempt.order_id)
        while len(self._attempts) > MAX_TRACKED_ATTEMPTS:
            self._attempts.popitem(last=False)
        return attempt

    def get_attempt(self, order_id: str) -> Optional[PaymentAttempt]:
        return self._attempts.get(order_id)

    async def _gateway_call(self, call: Awaitable[T], operation: str) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.settings.gateway_timeout_seconds)
        except asyncio.TimeoutError:
            self._logger.error("gateway_unavailable", operation=operation, reason="timeout")
            raise GatewayUnavailable("Payment gateway timed out")
        except BudgetTrackerError:
            raise
        except Exception as e:
            self._logger.error("gateway_unavailable", operation=operation, error=str(e))
            raise GatewayUnavailable("Payment gateway error") from e

    async def analysis_for(self, user_id: str, now: Optional[datetime] = None) -> Analysis:
        user = await self.ledger.get_user(user_id)
        budget = await self.ledger.get_budget(user_id)
        transactions = await self.ledger.list_transactions(user_id)
        return analyzer.analyze(user, budget, transactions, now)

    # ─────────────────────────────
    #   ORDER CREATION
    # ─────────────────────────────

    async def create_order(
        self,
        user_id: str,
        amount: float,
        category: Optional[str] = None,
        description: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> OrderCreated:
        if amount is None or amount <= 0:
            raise InvalidAmount()
        if not user_id:
            raise InvalidRequest("UserId is required")

        currency = currency or self.settings.default_currency
        category = category or "Other"
        description = description or "Budget payment"

        # Order creation silently creates unknown users
        await self.ledger.ensure_user(user_id)

        notes = {
            "userId": user_id,
            "category": category,
            "description": description,
            "createdBy": "budget_tracker_api",
        }
        order = await self._gateway_call(
            self.gateway.create_order(amount, currency, build_receipt(user_id), notes),
            "create_order",
        )

        attempt = PaymentAttempt(order_id=order.id, user_id=user_id)
        self._remember(attempt.transition_to(PaymentState.AWAITING_CONFIRMATION))

        self._logger.info(
            "order_created",
            order_id=order.id,
            user_id=user_id,
            amount=amount,
            currency=currency,
            category=category,
        )
        return OrderCreated(
            order=order,
            user_id=user_id,
            amount=amount,
            currency=currency,
            category=category,
            description=description,
        )

    # ─────────────────────────────
    #   CLIENT CONFIRMATION
    # ─────────────────────────────

    async def verify_and_record(
        self,
        order_id: str,
        payment_id: str,
        signature: str,
        user_id: str,
        amount: float,
        category: Optional[str] = None,
        description: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> VerificationResult:
        if not order_id or not payment_id or not signature or not user_id or amount is None:
            raise InvalidRequest("Missing required payment verification data")
        if amount <= 0:
            raise InvalidAmount()

        log = self._logger.bind(order_id=order_id, payment_id=payment_id, user_id=user_id)

        attempt = self._attempts.get(order_id)
        if attempt is None or attempt.state not in (
            PaymentState.AWAITING_CONFIRMATION,
            PaymentState.RECORDED,
        ):
            attempt = PaymentAttempt(
                order_id=order_id,
                user_id=user_id,
                state=PaymentState.AWAITING_CONFIRMATION,
            )
        replay = attempt.state == PaymentState.RECORDED

        if not self.verifier.verify_payment(order_id, payment_id, signature):
            log.warning("signature_mismatch", channel=TransactionChannel.CLIENT.value)
            if not replay:
                self._remember(attempt.transition_to(PaymentState.REJECTED))
            raise SignatureMismatch()

        if not replay:
            attempt = attempt.transition_to(PaymentState.VERIFIED)
            attempt.payment_id = payment_id
            self._remember(attempt)

        amount = float(amount)
        if self.settings.reconcile_payments:
            record = await self._gateway_call(self.gateway.fetch_payment(payment_id), "fetch_payment")
            if abs(record.amount - amount) >= 0.01:
                log.warning("amount_mismatch", claimed=amount, recorded=record.amount)
                amount = record.amount
            currency = currency or record.currency or None

        await self.ledger.ensure_user(user_id)
        transaction = Transaction(
            id=payment_id,
            user_id=user_id,
            order_id=order_id,
            amount=amount,
            currency=currency or self.settings.default_currency,
            category=category or "Other",
            description=description or "Payment",
            status=TransactionStatus.SUCCESS,
            verified=True,
            channel=TransactionChannel.CLIENT,
            method="razorpay",
            timestamp=datetime.utcnow(),
        )
        result = await self.ledger.record_transaction(user_id, transaction)

        if not replay:
            attempt = self._remember(attempt.transition_to(PaymentState.RECORDED))

        if result.applied:
            log.info("payment_recorded", amount=amount, total_spent=result.user.total_spent)
        else:
            log.info("payment_replayed", total_spent=result.user.total_spent)

        analysis = await self.analysis_for(user_id)
        return VerificationResult(
            transaction=result.transaction,
            user=result.user,
            applied=result.applied,
            analysis=analysis,
            state=PaymentState.RECORDED,
        )

    # ─────────────────────────────
    #   WEBHOOKS
    # ─────────────────────────────

    async def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> WebhookOutcome:
        """Authenticate a raw webhook body, then dispatch on its event type."""
        delivery_id = str(uuid.uuid4())
        log = self._logger.bind(delivery_id=delivery_id)

        if not self.verifier.verify_webhook(raw_body, signature):
            log.warning("signature_mismatch", channel=TransactionChannel.WEBHOOK.value)
            raise SignatureMismatch("Invalid webhook signature")

        try:
            body = json.loads(raw_body)
        except ValueError:
            raise InvalidRequest("Malformed webhook body")
        if not isinstance(body, dict):
            raise InvalidRequest("Malformed webhook body")

        raw_event = body.get("event")
        event = WebhookEventType.parse(raw_event)
        payload = body.get("payload") if isinstance(body.get("payload"), dict) else {}

        log.info("webhook_received", webhook_event=raw_event)
        outcome = await self._webhook_handlers[event](payload)
        if raw_event is not None:
            outcome.event = str(raw_event)
        return outcome

    @staticmethod
    def _entity(payload: dict, key: str) -> dict:
        value = payload.get(key)
        entity = value.get("entity") if isinstance(value, dict) else None
        return entity if isinstance(entity, dict) else {}

    async def _on_payment_captured(self, payload: dict) -> WebhookOutcome:
        event = WebhookEventType.PAYMENT_CAPTURED.value
        payment = self._entity(payload, "payment")
        payment_id = payment.get("id")
        if not payment_id:
            self._logger.warning("webhook_missing_payment", webhook_event=event)
            return WebhookOutcome(event=event, handled=True, reason="missing payment entity")

        notes = payment.get("notes") if isinstance(payment.get("notes"), dict) else {}
        user_id = notes.get("userId")
        if not user_id:
            # nobody to attribute the payment to
            self._logger.info("webhook_payment_without_user", payment_id=payment_id)
            return WebhookOutcome(event=event, handled=True, transaction_id=payment_id, reason="no userId")

        amount_minor = payment.get("amount")
        if not isinstance(amount_minor, (int, float)) or amount_minor <= 0:
            self._logger.warning("webhook_invalid_amount", payment_id=payment_id, amount=amount_minor)
            return WebhookOutcome(event=event, handled=True, transaction_id=payment_id, reason="invalid amount")

        created_at = payment.get("created_at")
        timestamp = (
            datetime.utcfromtimestamp(created_at)
            if isinstance(created_at, (int, float))
            else datetime.utcnow()
        )

        await self.ledger.ensure_user(user_id)
        transaction = Transaction(
            id=payment_id,
            user_id=user_id,
            order_id=payment.get("order_id"),
            amount=from_minor_units(amount_minor),
            currency=payment.get("currency") or self.settings.default_currency,
            category=notes.get("category") or "Other",
            description=notes.get("description") or "Webhook payment",
            status=TransactionStatus.CAPTURED,
            verified=True,
            channel=TransactionChannel.WEBHOOK,
            method=payment.get("method") or "razorpay",
            timestamp=timestamp,
        )
        result = await self.ledger.record_transaction(user_id, transaction)

        self._logger.info(
            "payment_recorded" if result.applied else "payment_replayed",
            payment_id=payment_id,
            user_id=user_id,
            channel=TransactionChannel.WEBHOOK.value,
            total_spent=result.user.total_spent,
        )
        return WebhookOutcome(
            event=event,
            handled=True,
            applied=result.applied,
            transaction_id=payment_id,
        )

    async def _on_payment_failed(self, payload: dict) -> WebhookOutcome:
        payment = self._entity(payload, "payment")
        self._logger.warning(
            "payment_failed",
            payment_id=payment.get("id"),
            error_code=payment.get("error_code"),
            error_description=payment.get("error_description"),
        )
        return WebhookOutcome(
            event=WebhookEventType.PAYMENT_FAILED.value,
            handled=True,
            transaction_id=payment.get("id"),
        )

    async def _on_order_paid(self, payload: dict) -> WebhookOutcome:
        order = self._entity(payload, "order")
        self._logger.info("order_paid", order_id=order.get("id"))
        return WebhookOutcome(event=WebhookEventType.ORDER_PAID.value, handled=True)

    async def _on_unknown_event(self, payload: dict) -> WebhookOutcome:
        # Documented no-op: acknowledged so the gateway stops redelivering
        self._logger.info("webhook_unhandled_event")
        return WebhookOutcome(event=WebhookEventType.UNKNOWN.value, handled=False, reason="unhandled event")
