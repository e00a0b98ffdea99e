"""
Payment gateway client.

The gateway is a black box offering two capabilities: mint an order for a
given amount, and fetch what it recorded about a payment. Amounts cross this
boundary in major units; conversion to the provider's minor units (paise,
cents) happens here and nowhere else.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, Field

from ..core.errors import GatewayUnavailable, InvalidAmount, NotFound
from ..core.logging import get_logger


RECEIPT_MAX_LENGTH = 40


class OrderHandle(BaseModel):
    id: str
    amount: float
    currency: str
    receipt: str
    created_at: datetime


class PaymentRecord(BaseModel):
    id: str
    order_id: Optional[str] = None
    amount: float
    currency: str
    status: str
    method: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


def from_minor_units(amount: int) -> float:
    return amount / 100


def build_receipt(user_id: str, now: Optional[float] = None) -> str:
    """rcpt_<last 10 chars of user id>_<last 8 digits of epoch millis>."""
    millis = str(int((now if now is not None else time.time()) * 1000))
    receipt = f"rcpt_{user_id[-10:]}_{millis[-8:]}"
    return receipt[:RECEIPT_MAX_LENGTH]


class GatewayClient(ABC):

    @abstractmethod
    async def create_order(
        self,
        amount: float,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> OrderHandle:
        pass

    @abstractmethod
    async def fetch_payment(self, payment_id: str) -> PaymentRecord:
        pass

    async def aclose(self) -> None:
        return None


class RazorpayGatewayClient(GatewayClient):
    """Razorpay REST API over httpx.AsyncClient with basic auth."""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id
        self._client = httpx.AsyncClient(
            base_url=base_url,
            auth=(key_id, key_secret),
            timeout=timeout,
            transport=transport,
        )
        self._logger = get_logger("gateway")

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            self._logger.error("gateway_timeout", url=url, error=str(e))
            raise GatewayUnavailable("Payment gateway timed out")
        except httpx.HTTPError as e:
            self._logger.error("gateway_unreachable", url=url, error=str(e))
            raise GatewayUnavailable("Payment gateway unreachable")

        if response.status_code == 401 or response.status_code >= 500:
            self._logger.error("gateway_error", url=url, status_code=response.status_code)
            raise GatewayUnavailable(f"Payment gateway error ({response.status_code})")
        return response

    @staticmethod
    def _error_description(response: httpx.Response) -> str:
        try:
            return response.json().get("error", {}).get("description") or response.text
        except ValueError:
            return response.text

    async def create_order(
        self,
        amount: float,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> OrderHandle:
        if amount is None or amount <= 0:
            raise InvalidAmount()

        payload = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": receipt[:RECEIPT_MAX_LENGTH],
            "payment_capture": 1,
            "notes": notes or {},
        }
        response = await self._request("POST", "/orders", json=payload)
        if response.status_code == 400:
            raise InvalidAmount(self._error_description(response))
        if response.status_code >= 300:
            raise GatewayUnavailable(f"Payment gateway error ({response.status_code})")

        data = response.json()
        created = data.get("created_at")
        return OrderHandle(
            id=data["id"],
            amount=from_minor_units(data.get("amount", payload["amount"])),
            currency=data.get("currency", currency),
            receipt=data.get("receipt") or payload["receipt"],
            created_at=datetime.utcfromtimestamp(created) if created else datetime.utcnow(),
        )

    async def fetch_payment(self, payment_id: str) -> PaymentRecord:
        response = await self._request("GET", f"/payments/{payment_id}")
        # Razorpay answers 400 BAD_REQUEST_ERROR for ids it does not know
        if response.status_code in (400, 404):
            raise NotFound(f"Payment not found: {payment_id}")
        if response.status_code >= 300:
            raise GatewayUnavailable(f"Payment gateway error ({response.status_code})")

        data = response.json()
        return PaymentRecord(
            id=data["id"],
            order_id=data.get("order_id"),
            amount=from_minor_units(data.get("amount", 0)),
            currency=data.get("currency", ""),
            status=data.get("status", "unknown"),
            method=data.get("method"),
            metadata=data.get("notes") or {},
        )

    async def aclose(self) -> None:
        await self._client.aclose()
