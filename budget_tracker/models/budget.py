from datetime import datetime
from typing import Dict

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field


class Budget(SQLModel, table=True):
    __tablename__ = "budgets"

    # One budget per user
    user_id: str = Field(foreign_key="users.id", primary_key=True, max_length=128)

    monthly_limit: float = Field(gt=0)

    # category -> sub-limit
    categories: Dict[str, float] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    alerts: bool = Field(default=True)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
