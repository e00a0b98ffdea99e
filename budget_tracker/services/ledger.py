"""
Per-user transaction ledger.

Users own an append-only list of transactions and a running ``total_spent``.
The transaction id (the gateway payment id) is unique across the whole store,
and recording an id twice is a successful no-op so that redelivered webhooks
and repeated client confirmations never double count.

Mutations for one user are serialized behind an ``asyncio.Lock`` keyed by the
user id; different users never wait on each other. The blocking SQL work is
pushed to the threadpool so the event loop keeps serving other requests.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select
from starlette.concurrency import run_in_threadpool

from ..core.errors import Conflict, InvalidRequest, NotFound
from ..core.logging import get_logger
from ..models.budget import Budget
from ..models.transaction import COUNTED_STATUSES, Transaction, TransactionStatus
from ..models.user import User
from ..schemas import BudgetRead, TransactionRead, UserRead


ACTIVE_WINDOW_DAYS = 7


@dataclass
class RecordResult:
    applied: bool
    user: User
    transaction: Transaction


@dataclass
class TransactionPage:
    items: List[Transaction]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


@dataclass
class LedgerStats:
    total_users: int = 0
    active_users: int = 0
    total_transactions: int = 0
    total_amount: float = 0.0

    @property
    def average_transaction_amount(self) -> float:
        return round(self.total_amount / self.total_transactions, 2) if self.total_transactions else 0.0

    @property
    def average_user_spending(self) -> float:
        return round(self.total_amount / self.total_users, 2) if self.total_users else 0.0


def _normalize_filter(value: Optional[str]) -> Optional[str]:
    if value is None or value == "" or value == "all":
        return None
    return value


class Ledger(ABC):
    """Store interface the payment pipeline and the HTTP layer depend on."""

    @abstractmethod
    async def ensure_user(
        self,
        user_id: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> User:
        pass

    @abstractmethod
    async def create_user(
        self,
        user_id: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
        monthly_limit: Optional[float] = None,
    ) -> tuple[User, Budget]:
        pass

    @abstractmethod
    async def get_user(self, user_id: str) -> User:
        pass

    @abstractmethod
    async def find_budget(self, user_id: str) -> Optional[Budget]:
        pass

    @abstractmethod
    async def get_budget(self, user_id: str) -> Budget:
        pass

    @abstractmethod
    async def set_budget(
        self,
        user_id: str,
        monthly_limit: float,
        categories: Optional[Dict[str, float]] = None,
        alerts: bool = True,
    ) -> Budget:
        pass

    @abstractmethod
    async def record_transaction(self, user_id: str, transaction: Transaction) -> RecordResult:
        pass

    @abstractmethod
    async def get_transactions(
        self,
        user_id: str,
        category: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> TransactionPage:
        pass

    @abstractmethod
    async def list_transactions(self, user_id: str) -> List[Transaction]:
        pass

    @abstractmethod
    async def stats(self, now: Optional[datetime] = None) -> LedgerStats:
        pass

    @abstractmethod
    async def export_snapshot(self) -> Dict[str, Any]:
        pass


class SqlLedger(Ledger):
    """Ledger persisted through SQLModel tables; every mutation is one commit."""

    def __init__(self, engine: Engine, default_monthly_budget: float = 10000.0):
        self.engine = engine
        self.default_monthly_budget = default_monthly_budget
        self._locks: dict[str, asyncio.Lock] = {}
        self._locks_mutex = asyncio.Lock()
        self._logger = get_logger("ledger")

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    async def _user_lock(self, user_id: str) -> asyncio.Lock:
        async with self._locks_mutex:
            if user_id not in self._locks:
                self._locks[user_id] = asyncio.Lock()
            return self._locks[user_id]

    def _default_budget(self, user_id: str) -> Budget:
        return Budget(
            user_id=user_id,
            monthly_limit=self.default_monthly_budget,
            categories={},
            alerts=True,
        )

    # ─────────────────────────────
    #   USERS
    # ─────────────────────────────

    async def ensure_user(self, user_id, name=None, email=None):
        if not user_id:
            raise InvalidRequest("UserId is required")
        lock = await self._user_lock(user_id)
        async with lock:
            return await run_in_threadpool(self._ensure_user_sync, user_id, name, email)

    def _ensure_user_sync(self, user_id: str, name: Optional[str], email: Optional[str]) -> User:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is not None:
                return user
            now = datetime.utcnow()
            user = User(
                id=user_id,
                name=name or "Anonymous User",
                email=email or "",
                total_spent=0.0,
                transaction_count=0,
                created_at=now,
                last_active=now,
            )
            session.add(user)
            session.commit()
            self._logger.info("user_created", user_id=user_id, implicit=True)
            return user

    async def create_user(self, user_id, name=None, email=None, monthly_limit=None):
        if not user_id:
            raise InvalidRequest("UserId is required")
        limit = self.default_monthly_budget if monthly_limit is None else monthly_limit
        if limit <= 0:
            raise InvalidRequest("Valid initial budget is required")
        lock = await self._user_lock(user_id)
        async with lock:
            return await run_in_threadpool(self._create_user_sync, user_id, name, email, limit)

    def _create_user_sync(self, user_id, name, email, monthly_limit) -> tuple[User, Budget]:
        with self._session() as session:
            if session.get(User, user_id) is not None:
                raise Conflict("User already exists")
            now = datetime.utcnow()
            user = User(
                id=user_id,
                name=name or "Anonymous User",
                email=email or "",
                total_spent=0.0,
                transaction_count=0,
                created_at=now,
                last_active=now,
            )
            budget = session.get(Budget, user_id)
            if budget is None:
                budget = Budget(
                    user_id=user_id,
                    monthly_limit=monthly_limit,
                    categories={},
                    alerts=True,
                    created_at=now,
                    updated_at=now,
                )
            session.add(user)
            session.add(budget)
            session.commit()
            self._logger.info("user_created", user_id=user_id, implicit=False)
            return user, budget

    async def get_user(self, user_id):
        return await run_in_threadpool(self._get_user_sync, user_id)

    def _get_user_sync(self, user_id: str) -> User:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFound("User not found")
            return user

    # ─────────────────────────────
    #   BUDGETS
    # ─────────────────────────────

    async def find_budget(self, user_id):
        return await run_in_threadpool(self._find_budget_sync, user_id)

    def _find_budget_sync(self, user_id: str) -> Optional[Budget]:
        with self._session() as session:
            return session.get(Budget, user_id)

    async def get_budget(self, user_id):
        budget = await self.find_budget(user_id)
        return budget if budget is not None else self._default_budget(user_id)

    async def set_budget(self, user_id, monthly_limit, categories=None, alerts=True):
        if not user_id:
            raise InvalidRequest("UserId is required")
        if monthly_limit is None or monthly_limit <= 0:
            raise InvalidRequest("Valid monthly limit is required")
        if categories and any(v is None or v < 0 for v in categories.values()):
            raise InvalidRequest("Category limits must be non-negative")

        await self.ensure_user(user_id)
        lock = await self._user_lock(user_id)
        async with lock:
            return await run_in_threadpool(
                self._set_budget_sync, user_id, monthly_limit, dict(categories or {}), alerts
            )

    def _set_budget_sync(self, user_id, monthly_limit, categories, alerts) -> Budget:
        now = datetime.utcnow()
        with self._session() as session:
            budget = session.get(Budget, user_id)
            if budget is None:
                budget = Budget(user_id=user_id, created_at=now, monthly_limit=monthly_limit)
            budget.monthly_limit = monthly_limit
            budget.categories = categories
            budget.alerts = alerts
            budget.updated_at = now
            session.add(budget)
            session.commit()
            self._logger.info("budget_updated", user_id=user_id, monthly_limit=monthly_limit)
            return budget

    # ─────────────────────────────
    #   TRANSACTIONS
    # ─────────────────────────────

    async def record_transaction(self, user_id, transaction):
        if not user_id:
            raise InvalidRequest("UserId is required")
        lock = await self._user_lock(user_id)
        async with lock:
            return await run_in_threadpool(self._record_sync, user_id, transaction)

    def _record_sync(self, user_id: str, transaction: Transaction) -> RecordResult:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFound("User not found")

            existing = session.get(Transaction, transaction.id)
            if existing is not None:
                self._logger.info(
                    "transaction_replayed",
                    user_id=user_id,
                    transaction_id=transaction.id,
                    owner=existing.user_id,
                )
                return RecordResult(applied=False, user=user, transaction=existing)

            transaction.user_id = user_id
            transaction.position = user.transaction_count
            session.add(transaction)

            if transaction.counts_toward_spend:
                user.total_spent = user.total_spent + transaction.amount
            user.transaction_count += 1
            user.last_active = datetime.utcnow()
            session.add(user)

            try:
                session.commit()
            except IntegrityError:
                # Same payment id committed concurrently under another user
                session.rollback()
                existing = session.get(Transaction, transaction.id)
                user = session.get(User, user_id)
                if existing is None:
                    raise
                self._logger.info("transaction_replayed", user_id=user_id, transaction_id=transaction.id)
                return RecordResult(applied=False, user=user, transaction=existing)

            self._logger.info(
                "transaction_recorded",
                user_id=user_id,
                transaction_id=transaction.id,
                amount=transaction.amount,
                total_spent=user.total_spent,
            )
            return RecordResult(applied=True, user=user, transaction=transaction)

    async def get_transactions(self, user_id, category=None, status=None, limit=50, offset=0):
        if limit is None or limit < 1:
            raise InvalidRequest("limit must be a positive integer")
        if offset is None or offset < 0:
            raise InvalidRequest("offset must be zero or positive")

        status = _normalize_filter(status)
        status_enum = None
        if status is not None:
            try:
                status_enum = TransactionStatus(status)
            except ValueError:
                raise InvalidRequest(f"Unknown transaction status: {status}")

        return await run_in_threadpool(
            self._get_transactions_sync,
            user_id,
            _normalize_filter(category),
            status_enum,
            limit,
            offset,
        )

    def _get_transactions_sync(self, user_id, category, status, limit, offset) -> TransactionPage:
        with self._session() as session:
            if session.get(User, user_id) is None:
                raise NotFound("User not found")

            conditions = [Transaction.user_id == user_id]
            if category is not None:
                conditions.append(Transaction.category == category)
            if status is not None:
                conditions.append(Transaction.status == status)

            total = session.exec(
                select(func.count()).select_from(Transaction).where(*conditions)
            ).one()

            # newest first; equal timestamps keep insertion order
            statement = (
                select(Transaction)
                .where(*conditions)
                .order_by(Transaction.timestamp.desc(), Transaction.position.asc())
                .offset(offset)
                .limit(limit)
            )
            items = list(session.exec(statement).all())
            return TransactionPage(items=items, total=total, limit=limit, offset=offset)

    async def list_transactions(self, user_id):
        return await run_in_threadpool(self._list_transactions_sync, user_id)

    def _list_transactions_sync(self, user_id: str) -> List[Transaction]:
        with self._session() as session:
            statement = (
                select(Transaction)
                .where(Transaction.user_id == user_id)
                .order_by(Transaction.position.asc())
            )
            return list(session.exec(statement).all())

    # ─────────────────────────────
    #   REPORTING
    # ─────────────────────────────

    async def stats(self, now=None):
        return await run_in_threadpool(self._stats_sync, now or datetime.utcnow())

    def _stats_sync(self, now: datetime) -> LedgerStats:
        cutoff = now - timedelta(days=ACTIVE_WINDOW_DAYS)
        with self._session() as session:
            total_users = session.exec(select(func.count()).select_from(User)).one()
            active_users = session.exec(
                select(func.count()).select_from(User).where(User.last_active >= cutoff)
            ).one()
            counted = Transaction.status.in_(list(COUNTED_STATUSES))
            total_transactions = session.exec(
                select(func.count()).select_from(Transaction).where(counted)
            ).one()
            total_amount = session.exec(
                select(func.coalesce(func.sum(Transaction.amount), 0.0)).where(counted)
            ).one()
        return LedgerStats(
            total_users=total_users,
            active_users=active_users,
            total_transactions=total_transactions,
            total_amount=float(total_amount),
        )

    async def export_snapshot(self):
        return await run_in_threadpool(self._export_sync)

    def _export_sync(self) -> Dict[str, Any]:
        with self._session() as session:
            users = list(session.exec(select(User)).all())
            budgets = list(session.exec(select(Budget)).all())
            transactions = list(
                session.exec(
                    select(Transaction).order_by(Transaction.user_id, Transaction.position)
                ).all()
            )

        by_user: Dict[str, List[Dict[str, Any]]] = {u.id: [] for u in users}
        payments = []
        for t in transactions:
            dumped = TransactionRead.model_validate(t).model_dump(mode="json", by_alias=True)
            by_user.setdefault(t.user_id, []).append(dumped)
            payments.append(dumped)

        counted = [t for t in transactions if t.counts_toward_spend]
        return {
            "users": {
                u.id: {
                    **UserRead.model_validate(u).model_dump(mode="json", by_alias=True),
                    "transactions": by_user.get(u.id, []),
                }
                for u in users
            },
            "budgets": {
                b.user_id: BudgetRead.model_validate(b).model_dump(mode="json", by_alias=True)
                for b in budgets
            },
            "payments": payments,
            "analytics": {
                "totalUsers": len(users),
                "totalTransactions": len(counted),
                "totalAmount": round(sum(t.amount for t in counted), 2),
            },
        }
