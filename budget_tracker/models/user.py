from datetime import datetime
from sqlmodel import SQLModel, Field


class User(SQLModel, table=True):
    __tablename__ = "users"

    # Caller-supplied identifier
    id: str = Field(primary_key=True, index=True, max_length=128)

    name: str = Field(default="Anonymous User", max_length=255)
    email: str = Field(default="", max_length=255)

    # Sum of counted transaction amounts; updated in the same commit as each insert.
    total_spent: float = Field(default=0.0)
    transaction_count: int = Field(default=0)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    last_active: datetime = Field(default_factory=datetime.utcnow)
