from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .models.transaction import TransactionChannel, TransactionStatus


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class RequestModel(ApiModel):
    model_config = ConfigDict(extra="forbid")


# ─────────────────────────────
#   LEDGER READ MODELS
# ─────────────────────────────

class UserRead(ApiModel):
    id: str
    name: str
    email: str
    total_spent: float
    transaction_count: int
    created_at: datetime
    last_active: datetime


class BudgetRead(ApiModel):
    user_id: str
    monthly_limit: float
    categories: Dict[str, float] = {}
    alerts: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TransactionRead(ApiModel):
    id: str
    order_id: Optional[str] = None
    user_id: str
    amount: float
    currency: str
    category: str
    description: str
    status: TransactionStatus
    verified: bool
    channel: TransactionChannel
    method: str
    timestamp: datetime


class Pagination(ApiModel):
    total: int
    limit: int
    offset: int
    has_more: bool


# ─────────────────────────────
#   ANALYTICS
# ─────────────────────────────

class CategoryShare(ApiModel):
    amount: float
    percentage: float


class CategoryAlert(ApiModel):
    category: str
    limit: float
    spent: float
    percentage: float
    level: str


class CategoryStat(ApiModel):
    category: str
    amount: float
    percentage: float
    transaction_count: int


class SavingsOpportunity(ApiModel):
    category: str
    current_spend: float
    potential_saving: float
    suggestion: str


class MonthlyProjection(ApiModel):
    spent_this_month: float
    daily_average: float
    projected_monthly: float
    remaining_days: int
    transaction_count: int


class SpendingTrends(ApiModel):
    period: str
    total_transactions: int
    total_amount: float
    average_transaction: float
    daily_spending: Dict[str, float]
    recent_transactions: List[TransactionRead]


class Analysis(ApiModel):
    user_id: str
    current_spent: float
    budget_limit: float
    remaining_budget: float
    spending_percentage: float
    status: str
    risk_level: str
    recommendation: str
    category_breakdown: Dict[str, CategoryShare]
    category_alerts: List[CategoryAlert] = []
    savings_opportunities: List[SavingsOpportunity] = []
    monthly_projection: MonthlyProjection
    last_updated: datetime
