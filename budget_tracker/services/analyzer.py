"""
Budget analytics.

Pure functions over a user's ledger and budget configuration; no I/O and no
mutation. Only counted transactions (success/captured) feed the numbers so
that every figure agrees with ``User.total_spent``. The "AI recommendation"
is a fixed threshold classifier.
"""

import calendar
from collections import Counter
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

from ..models.budget import Budget
from ..models.transaction import Transaction
from ..models.user import User
from ..schemas import (
    Analysis,
    CategoryAlert,
    CategoryShare,
    CategoryStat,
    MonthlyProjection,
    SavingsOpportunity,
    SpendingTrends,
    TransactionRead,
)


class BudgetStatus(str, Enum):
    OVER_BUDGET = "over_budget"
    CRITICAL = "critical"
    WARNING = "warning"
    MODERATE = "moderate"
    EXCELLENT = "excellent"


class RiskLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    VERY_LOW = "very_low"


# First match wins, highest threshold first
THRESHOLDS = (
    (100.0, BudgetStatus.OVER_BUDGET, RiskLevel.CRITICAL),
    (90.0, BudgetStatus.CRITICAL, RiskLevel.HIGH),
    (75.0, BudgetStatus.WARNING, RiskLevel.MEDIUM),
    (50.0, BudgetStatus.MODERATE, RiskLevel.LOW),
)

RECOMMENDATIONS = {
    BudgetStatus.OVER_BUDGET: "CRITICAL: Budget exceeded! Immediate action required. Consider emergency savings or expense cuts.",
    BudgetStatus.CRITICAL: "HIGH RISK: 90%+ budget used. Stop discretionary spending immediately.",
    BudgetStatus.WARNING: "MEDIUM RISK: 75% budget used. Start reducing expenses and track daily.",
    BudgetStatus.MODERATE: "ON TRACK: Good spending pace. Continue monitoring regularly.",
    BudgetStatus.EXCELLENT: "EXCELLENT: Well within budget. Consider increasing savings or investments.",
}

CATEGORY_WARNING_PCT = 80.0
CATEGORY_EXCEEDED_PCT = 100.0
RECENT_TRANSACTIONS = 10

# A category above this share of the monthly limit gets a suggestion
SAVINGS_SHARE_OF_LIMIT = 0.3
SAVINGS_REDUCTION = 0.2


def counted(transactions: Iterable[Transaction]) -> List[Transaction]:
    return [t for t in transactions if t.counts_toward_spend]


def spending_percentage(spent: float, limit: float) -> float:
    if limit is None or limit <= 0:
        return 0.0
    return 100.0 * spent / limit


def classify(percentage: float) -> tuple[BudgetStatus, RiskLevel]:
    for threshold, budget_status, risk in THRESHOLDS:
        if percentage >= threshold:
            return budget_status, risk
    return BudgetStatus.EXCELLENT, RiskLevel.VERY_LOW


def _category_totals(transactions: Iterable[Transaction]) -> Dict[str, float]:
    totals: Dict[str, float] = {}
    for t in transactions:
        category = t.category or "Other"
        totals[category] = totals.get(category, 0.0) + t.amount
    return totals


def category_breakdown(transactions: Iterable[Transaction]) -> Dict[str, CategoryShare]:
    """category -> amount and share of the listed total, largest first."""
    totals = _category_totals(transactions)
    grand_total = sum(totals.values())
    ordered = sorted(totals.items(), key=lambda kv: kv[1], reverse=True)
    return {
        category: CategoryShare(
            amount=round(amount, 2),
            percentage=round(100.0 * amount / grand_total, 2) if grand_total else 0.0,
        )
        for category, amount in ordered
    }


def category_stats(transactions: Sequence[Transaction]) -> List[CategoryStat]:
    counts = Counter(t.category or "Other" for t in transactions)
    return [
        CategoryStat(
            category=category,
            amount=share.amount,
            percentage=share.percentage,
            transaction_count=counts[category],
        )
        for category, share in category_breakdown(transactions).items()
    ]


def category_alerts(transactions: Iterable[Transaction], budget: Budget) -> List[CategoryAlert]:
    if not budget.alerts or not budget.categories:
        return []
    totals = _category_totals(transactions)
    alerts = []
    for category, limit in budget.categories.items():
        if not limit or limit <= 0:
            continue
        spent = totals.get(category, 0.0)
        pct = 100.0 * spent / limit
        if pct >= CATEGORY_EXCEEDED_PCT:
            level = "exceeded"
        elif pct >= CATEGORY_WARNING_PCT:
            level = "warning"
        else:
            continue
        alerts.append(
            CategoryAlert(
                category=category,
                limit=limit,
                spent=round(spent, 2),
                percentage=round(pct, 2),
                level=level,
            )
        )
    return alerts


def savings_opportunities(transactions: Iterable[Transaction], budget: Budget) -> List[SavingsOpportunity]:
    """Categories whose spend exceeds 30% of the monthly limit, largest first."""
    if budget.monthly_limit is None or budget.monthly_limit <= 0:
        return []
    threshold = budget.monthly_limit * SAVINGS_SHARE_OF_LIMIT
    opportunities = []
    for category, share in category_breakdown(transactions).items():
        if share.amount <= threshold:
            continue
        saving = round(share.amount * SAVINGS_REDUCTION, 2)
        opportunities.append(
            SavingsOpportunity(
                category=category,
                current_spend=share.amount,
                potential_saving=saving,
                suggestion=f"Consider reducing {category} expenses by 20% to save {saving:.2f}",
            )
        )
    return opportunities


def monthly_projection(transactions: Iterable[Transaction], today: date) -> MonthlyProjection:
    days_in_month = calendar.monthrange(today.year, today.month)[1]
    this_month = [
        t for t in transactions
        if t.timestamp.year == today.year and t.timestamp.month == today.month
    ]
    spent = sum(t.amount for t in this_month)
    daily_average = spent / today.day
    return MonthlyProjection(
        spent_this_month=round(spent, 2),
        daily_average=round(daily_average, 2),
        projected_monthly=round(daily_average * days_in_month, 2),
        remaining_days=days_in_month - today.day,
        transaction_count=len(this_month),
    )


def monthly_totals(transactions: Iterable[Transaction]) -> Dict[str, float]:
    totals: Dict[str, float] = {}
    for t in transactions:
        month = t.timestamp.strftime("%Y-%m")
        totals[month] = totals.get(month, 0.0) + t.amount
    return {month: round(amount, 2) for month, amount in sorted(totals.items())}


def spending_trends(
    transactions: Iterable[Transaction],
    window_days: int,
    now: datetime,
    recent: int = RECENT_TRANSACTIONS,
) -> SpendingTrends:
    cutoff = now - timedelta(days=window_days)
    window = [t for t in transactions if t.timestamp >= cutoff]

    daily: Dict[str, float] = {}
    for t in window:
        day = t.timestamp.date().isoformat()
        daily[day] = daily.get(day, 0.0) + t.amount

    total = sum(t.amount for t in window)
    in_order = sorted(window, key=lambda t: t.position)
    newest_first = sorted(in_order, key=lambda t: t.timestamp, reverse=True)

    return SpendingTrends(
        period=f"{window_days} days",
        total_transactions=len(window),
        total_amount=round(total, 2),
        average_transaction=round(total / len(window), 2) if window else 0.0,
        daily_spending={day: round(amount, 2) for day, amount in sorted(daily.items())},
        recent_transactions=[TransactionRead.model_validate(t) for t in newest_first[:recent]],
    )


def analyze(
    user: User,
    budget: Budget,
    transactions: Sequence[Transaction],
    now: Optional[datetime] = None,
) -> Analysis:
    now = now or datetime.utcnow()
    spent = user.total_spent
    limit = budget.monthly_limit
    pct = spending_percentage(spent, limit)
    budget_status, risk = classify(pct)
    spend = counted(transactions)

    return Analysis(
        user_id=user.id,
        current_spent=round(spent, 2),
        budget_limit=limit,
        remaining_budget=round(limit - spent, 2),
        spending_percentage=round(pct, 2),
        status=budget_status.value,
        risk_level=risk.value,
        recommendation=RECOMMENDATIONS[budget_status],
        category_breakdown=category_breakdown(spend),
        category_alerts=category_alerts(spend, budget),
        savings_opportunities=savings_opportunities(spend, budget),
        monthly_projection=monthly_projection(spend, now.date()),
        last_updated=now,
    )
