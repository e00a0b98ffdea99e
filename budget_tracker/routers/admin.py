from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..schemas import ApiModel
from ..dependencies import get_ledger
from ..services.ledger import Ledger


router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
)


class AdminStats(ApiModel):
    total_users: int
    active_users: int
    total_transactions: int
    total_amount: float
    average_transaction_amount: float
    average_user_spending: float


class AdminStatsOut(ApiModel):
    success: bool = True
    stats: AdminStats
    timestamp: datetime


@router.get(
    "/stats",
    response_model=AdminStatsOut,
)
async def stats(ledger: Ledger = Depends(get_ledger)):
    """Métricas globales. Usuarios activos = actividad en los últimos 7 días."""
    now = datetime.utcnow()
    result = await ledger.stats(now)
    return AdminStatsOut(
        stats=AdminStats(
            total_users=result.total_users,
            active_users=result.active_users,
            total_transactions=result.total_transactions,
            total_amount=round(result.total_amount, 2),
            average_transaction_amount=result.average_transaction_amount,
            average_user_spending=result.average_user_spending,
        ),
        timestamp=now,
    )


@router.get("/export")
async def export(ledger: Ledger = Depends(get_ledger)) -> Dict[str, Any]:
    return await ledger.export_snapshot()
