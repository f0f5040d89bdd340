"""Unit of Work 抽象定义

支付与 Webhook 服务只依赖这里的接口；仓储在进入上下文时由实现类装配。
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.payment.repository import BalanceAccountRepository, TransactionRepository
from domain.webhook.repository import ProcessedEventRepository, WebhookDeliveryRepository


class AbstractUnitOfWork(ABC):
    """事务边界：正常退出自动提交，异常退出回滚"""

    transactions: TransactionRepository
    accounts: BalanceAccountRepository
    webhook_deliveries: WebhookDeliveryRepository
    processed_events: ProcessedEventRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._readonly = readonly
        self._committed = False

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc is not None:
            await self.rollback()
        elif not (self._readonly or self._committed):
            await self.commit()

    @abstractmethod
    async def commit(self) -> None: ...

    @abstractmethod
    async def rollback(self) -> None: ...
