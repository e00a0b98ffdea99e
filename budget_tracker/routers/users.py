from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import EmailStr, Field

from ..dependencies import get_ledger
from ..schemas import ApiModel, BudgetRead, RequestModel, UserRead
from ..services.ledger import Ledger


router = APIRouter(
    prefix="/api/users",
    tags=["users"],
)


class UserCreate(RequestModel):
    user_id: str = Field(min_length=1, max_length=128)
    name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[EmailStr] = None
    initial_budget: Optional[float] = Field(default=None, gt=0)


class UserWithBudget(ApiModel):
    success: bool = True
    message: Optional[str] = None
    user: UserRead
    budget: BudgetRead
    last_updated: datetime


@router.post(
    "",
    response_model=UserWithBudget,
    status_code=status.HTTP_201_CREATED,
)
async def create_user(
    payload: UserCreate,
    ledger: Ledger = Depends(get_ledger),
):
    user, budget = await ledger.create_user(
        payload.user_id,
        name=payload.name,
        email=payload.email,
        monthly_limit=payload.initial_budget,
    )
    return UserWithBudget(
        message="User created successfully",
        user=UserRead.model_validate(user),
        budget=BudgetRead.model_validate(budget),
        last_updated=datetime.utcnow(),
    )


@router.get(
    "/{user_id}",
    response_model=UserWithBudget,
)
async def get_user(
    user_id: str,
    ledger: Ledger = Depends(get_ledger),
):
    user = await ledger.get_user(user_id)
    budget = await ledger.get_budget(user_id)
    return UserWithBudget(
        user=UserRead.model_validate(user),
        budget=BudgetRead.model_validate(budget),
        last_updated=datetime.utcnow(),
    )
