from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import Field

from ..core.errors import NotFound
from ..dependencies import get_ledger, get_pipeline
from ..schemas import (
    Analysis,
    ApiModel,
    BudgetRead,
    CategoryStat,
    RequestModel,
    SpendingTrends,
    TransactionRead,
)
from ..services import analyzer
from ..services.ledger import Ledger
from ..services.pipeline import PaymentPipeline


router = APIRouter(
    prefix="/api",
    tags=["budgets"],
)


# ─────────────────────────────
#   SCHEMAS
# ─────────────────────────────

class BudgetSet(RequestModel):
    user_id: str = Field(min_length=1, max_length=128)
    monthly_limit: float = Field(gt=0)
    categories: Optional[Dict[str, float]] = None
    alerts: bool = True


class BudgetSetOut(ApiModel):
    success: bool = True
    message: str
    budget: BudgetRead
    analysis: Analysis


class BudgetOut(ApiModel):
    success: bool = True
    budget: BudgetRead
    last_updated: datetime


class DashboardUser(ApiModel):
    id: str
    name: str
    total_spent: float
    transaction_count: int
    recent_transactions: List[TransactionRead]
    last_active: datetime


class DashboardOut(ApiModel):
    success: bool = True
    user: DashboardUser
    analysis: Analysis
    spending_trends: SpendingTrends
    last_updated: datetime


class AnalyticsOverview(ApiModel):
    total_spent: float
    total_transactions: int
    average_transaction: float
    budget_utilization: str
    risk_level: str


class AnalyticsOut(ApiModel):
    success: bool = True
    user_id: str
    period: str
    overview: AnalyticsOverview
    analysis: Analysis
    spending_trends: SpendingTrends
    category_stats: List[CategoryStat]
    monthly_stats: Dict[str, float]
    generated_at: datetime


# ─────────────────────────────
#   ENDPOINTS
# ─────────────────────────────

@router.post(
    "/set-budget",
    response_model=BudgetSetOut,
    status_code=status.HTTP_200_OK,
)
async def set_budget(
    payload: BudgetSet,
    ledger: Ledger = Depends(get_ledger),
    pipeline: PaymentPipeline = Depends(get_pipeline),
):
    budget = await ledger.set_budget(
        payload.user_id,
        payload.monthly_limit,
        categories=payload.categories,
        alerts=payload.alerts,
    )
    analysis = await pipeline.analysis_for(payload.user_id)
    return BudgetSetOut(
        message="Budget limits updated successfully",
        budget=BudgetRead.model_validate(budget),
        analysis=analysis,
    )


@router.get(
    "/budget/{user_id}",
    response_model=BudgetOut,
)
async def get_budget(
    user_id: str,
    ledger: Ledger = Depends(get_ledger),
):
    budget = await ledger.find_budget(user_id)
    if budget is None:
        raise NotFound("Budget not found")
    return BudgetOut(budget=BudgetRead.model_validate(budget), last_updated=datetime.utcnow())


@router.get(
    "/dashboard/{user_id}",
    response_model=DashboardOut,
)
async def dashboard(
    user_id: str,
    days: int = Query(default=30, ge=1, le=3650),
    ledger: Ledger = Depends(get_ledger),
):
    now = datetime.utcnow()
    user = await ledger.get_user(user_id)
    budget = await ledger.get_budget(user_id)
    transactions = await ledger.list_transactions(user_id)

    # newest first; equal timestamps keep insertion order
    recent = sorted(transactions, key=lambda t: t.timestamp, reverse=True)[:analyzer.RECENT_TRANSACTIONS]
    return DashboardOut(
        user=DashboardUser(
            id=user.id,
            name=user.name,
            total_spent=user.total_spent,
            transaction_count=user.transaction_count,
            recent_transactions=[TransactionRead.model_validate(t) for t in recent],
            last_active=user.last_active,
        ),
        analysis=analyzer.analyze(user, budget, transactions, now),
        spending_trends=analyzer.spending_trends(analyzer.counted(transactions), days, now),
        last_updated=now,
    )


@router.get(
    "/analytics/{user_id}",
    response_model=AnalyticsOut,
)
async def analytics(
    user_id: str,
    period: int = Query(default=30, ge=1, le=3650),
    ledger: Ledger = Depends(get_ledger),
):
    now = datetime.utcnow()
    user = await ledger.get_user(user_id)
    budget = await ledger.get_budget(user_id)
    transactions = await ledger.list_transactions(user_id)
    spend = analyzer.counted(transactions)

    analysis = analyzer.analyze(user, budget, transactions, now)
    return AnalyticsOut(
        user_id=user_id,
        period=f"{period} days",
        overview=AnalyticsOverview(
            total_spent=round(user.total_spent, 2),
            total_transactions=len(spend),
            average_transaction=round(user.total_spent / len(spend), 2) if spend else 0.0,
            budget_utilization=f"{analysis.spending_percentage}%",
            risk_level=analysis.risk_level,
        ),
        analysis=analysis,
        spending_trends=analyzer.spending_trends(spend, period, now),
        category_stats=analyzer.category_stats(spend),
        monthly_stats=analyzer.monthly_totals(spend),
        generated_at=now,
    )
