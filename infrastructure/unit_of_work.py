"""SQLAlchemy Unit of Work 实现

一个 UoW 对应一个数据库事务；支付入账与投递记录的条件更新都在其中完成。
readonly=True 时不开启显式事务、不提交，用于条件写之前的读取。
"""
from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.payment_repository import (
    SQLAlchemyBalanceAccountRepository,
    SQLAlchemyTransactionRepository,
)
from infrastructure.repositories.webhook_repository import (
    SQLAlchemyProcessedEventRepository,
    SQLAlchemyWebhookDeliveryRepository,
)


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._owns_session = session is None
        self.session: Optional[AsyncSession] = session
        self._transaction: Optional[AsyncSessionTransaction] = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self.transactions = SQLAlchemyTransactionRepository(self.session)
        self.accounts = SQLAlchemyBalanceAccountRepository(self.session)
        self.webhook_deliveries = SQLAlchemyWebhookDeliveryRepository(self.session)
        self.processed_events = SQLAlchemyProcessedEventRepository(self.session)
        if not self._readonly:
            self._transaction = await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            if self._transaction is not None and self._transaction.is_active:
                await self._transaction.rollback()
            self._transaction = None
            if self._owns_session and self.session is not None:
                await self.session.close()
                self.session = None
            self.transactions = None  # type: ignore[assignment]
            self.accounts = None  # type: ignore[assignment]
            self.webhook_deliveries = None  # type: ignore[assignment]
            self.processed_events = None  # type: ignore[assignment]

    async def commit(self) -> None:
        if self._readonly:
            self._committed = True
            return
        if self.session is not None and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session is not None and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False
