from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_ledger
from ..schemas import ApiModel, Pagination, TransactionRead
from ..services.ledger import Ledger


router = APIRouter(
    prefix="/api/transactions",
    tags=["transactions"],
)


class TransactionList(ApiModel):
    success: bool = True
    transactions: List[TransactionRead]
    pagination: Pagination


@router.get(
    "/{user_id}",
    response_model=TransactionList,
)
async def list_transactions(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    category: Optional[str] = None,
    status: Optional[str] = None,
    ledger: Ledger = Depends(get_ledger),
):
    """
    Historial de transacciones del usuario.

    - Más recientes primero; empates en orden de inserción.
    - category/status = "all" equivale a no filtrar.
    """
    page = await ledger.get_transactions(
        user_id,
        category=category,
        status=status,
        limit=limit,
        offset=offset,
    )
    return TransactionList(
        transactions=[TransactionRead.model_validate(t) for t in page.items],
        pagination=Pagination(
            total=page.total,
            limit=page.limit,
            offset=page.offset,
            has_more=page.has_more,
        ),
    )
