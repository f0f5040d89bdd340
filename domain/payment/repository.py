"""
支付仓储接口 - 定义交易与余额账户数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from .entity import BalanceAccount, PaymentStatus, Transaction


class TransactionRepository(ABC):
    """交易仓储抽象接口"""

    @abstractmethod
    async def create(self, transaction: Transaction) -> Transaction:
        """创建交易记录（pending）"""
        pass

    @abstractmethod
    async def get_by_id(self, transaction_id: str) -> Optional[Transaction]:
        """根据ID获取交易"""
        pass

    @abstractmethod
    async def attach_gateway_reference(self, transaction: Transaction) -> bool:
        """保存网关引用信息，仅当交易仍为 pending 时生效"""
        pass

    @abstractmethod
    async def settle_success(
        self,
        transaction_id: str,
        *,
        payment_reference: str,
        channel: Optional[str],
        paid_at: datetime,
    ) -> bool:
        """
        条件更新：pending -> success，并在同一事务内为账户增加 credit_amount。

        返回 False 表示交易已不是 pending（重复回调或并发回调），此时不做任何修改。
        """
        pass

    @abstractmethod
    async def mark_terminal(
        self,
        transaction_id: str,
        status: PaymentStatus,
        *,
        payment_reference: str,
    ) -> bool:
        """条件更新：pending -> failed/expired/cancelled"""
        pass


class BalanceAccountRepository(ABC):
    """余额账户仓储抽象接口"""

    @abstractmethod
    async def get(self, account_id: int) -> Optional[BalanceAccount]:
        pass

    @abstractmethod
    async def create(self, account: BalanceAccount) -> BalanceAccount:
        pass
