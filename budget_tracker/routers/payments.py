from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, status
from pydantic import AliasChoices, Field

from ..config import Settings
from ..dependencies import get_pipeline, get_settings
from ..schemas import Analysis, ApiModel, RequestModel, TransactionRead, UserRead
from ..services.pipeline import PaymentPipeline


router = APIRouter(
    prefix="/api",
    tags=["payments"],
)


# ─────────────────────────────
#   SCHEMAS
# ─────────────────────────────

class CreateOrderIn(RequestModel):
    amount: float = Field(gt=0)
    user_id: str = Field(min_length=1, max_length=128)
    category: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=255)
    currency: Optional[str] = Field(default=None, pattern="^[A-Z]{3}$")


class CreateOrderOut(ApiModel):
    success: bool = True
    order_id: str
    amount: float
    currency: str
    gateway_public_key: str
    receipt: str
    user_id: str
    category: str
    description: str
    created_at: datetime


class VerifyPaymentIn(RequestModel):
    # Checkout hands back razorpay_* names; accept them alongside ours
    order_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("orderId", "order_id", "razorpay_order_id"),
    )
    payment_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("paymentId", "payment_id", "razorpay_payment_id"),
    )
    signature: str = Field(
        min_length=1,
        validation_alias=AliasChoices("signature", "razorpay_signature"),
    )
    user_id: str = Field(min_length=1, max_length=128)
    amount: float = Field(gt=0)
    category: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=255)
    currency: Optional[str] = Field(default=None, pattern="^[A-Z]{3}$")


class VerifyPaymentOut(ApiModel):
    success: bool = True
    message: str
    applied: bool
    transaction: TransactionRead
    analysis: Analysis
    user: UserRead
    timestamp: datetime


class WebhookAck(ApiModel):
    received: bool = True
    event: str
    handled: bool
    applied: bool


# ─────────────────────────────
#   ENDPOINTS
# ─────────────────────────────

@router.post(
    "/create-order",
    response_model=CreateOrderOut,
    status_code=status.HTTP_200_OK,
)
async def create_order(
    payload: CreateOrderIn,
    pipeline: PaymentPipeline = Depends(get_pipeline),
    settings: Settings = Depends(get_settings),
):
    created = await pipeline.create_order(
        payload.user_id,
        payload.amount,
        category=payload.category,
        description=payload.description,
        currency=payload.currency,
    )
    return CreateOrderOut(
        order_id=created.order.id,
        amount=created.amount,
        currency=created.currency,
        gateway_public_key=settings.razorpay_key_id,
        receipt=created.order.receipt,
        user_id=created.user_id,
        category=created.category,
        description=created.description,
        created_at=created.order.created_at,
    )


@router.post(
    "/verify-payment",
    response_model=VerifyPaymentOut,
    status_code=status.HTTP_200_OK,
)
async def verify_payment(
    payload: VerifyPaymentIn,
    pipeline: PaymentPipeline = Depends(get_pipeline),
):
    result = await pipeline.verify_and_record(
        payload.order_id,
        payload.payment_id,
        payload.signature,
        payload.user_id,
        payload.amount,
        category=payload.category,
        description=payload.description,
        currency=payload.currency,
    )
    return VerifyPaymentOut(
        message=(
            "Payment verified and budget updated successfully"
            if result.applied
            else "Payment already recorded"
        ),
        applied=result.applied,
        transaction=TransactionRead.model_validate(result.transaction),
        analysis=result.analysis,
        user=UserRead.model_validate(result.user),
        timestamp=datetime.utcnow(),
    )


@router.post(
    "/webhook",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
)
async def webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(default=None),
    pipeline: PaymentPipeline = Depends(get_pipeline),
):
    """Gateway notifications. The signature covers the exact raw body bytes."""
    raw_body = await request.body()
    outcome = await pipeline.handle_webhook(raw_body, x_razorpay_signature)
    return WebhookAck(event=outcome.event, handled=outcome.handled, applied=outcome.applied)
