from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    CAPTURED = "captured"
    FAILED = "failed"


class TransactionChannel(str, Enum):
    CLIENT = "client"
    WEBHOOK = "webhook"


# Statuses that count toward users.total_spent
COUNTED_STATUSES = frozenset({TransactionStatus.SUCCESS, TransactionStatus.CAPTURED})


class Transaction(SQLModel, table=True):
    __tablename__ = "transactions"

    # Gateway payment id; also the idempotency key
    id: str = Field(primary_key=True, max_length=64)

    user_id: str = Field(foreign_key="users.id", index=True, max_length=128)
    order_id: Optional[str] = Field(default=None, max_length=64)

    amount: float = Field(gt=0)
    currency: str = Field(default="INR", max_length=3)
    category: str = Field(default="Other", max_length=50)
    description: str = Field(default="Payment", max_length=255)

    status: TransactionStatus = Field(default=TransactionStatus.SUCCESS)
    verified: bool = Field(default=False)
    channel: TransactionChannel = Field(default=TransactionChannel.CLIENT)
    method: str = Field(default="razorpay", max_length=32)

    timestamp: datetime = Field(default_factory=datetime.utcnow, index=True)

    # Per-user insertion index
    position: int = Field(default=0)

    @property
    def counts_toward_spend(self) -> bool:
        return TransactionStatus(self.status) in COUNTED_STATUSES
