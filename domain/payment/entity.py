"""
支付领域实体 - 充值交易聚合根与余额账户
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException


class PaymentStatus(str, Enum):
    """交易状态枚举"""
    PENDING = "pending"        # 待支付
    SUCCESS = "success"        # 支付成功（已入账）
    FAILED = "failed"          # 支付失败
    EXPIRED = "expired"        # 已过期
    CANCELLED = "cancelled"    # 已取消

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Transaction:
    """
    充值交易聚合根

    业务规则：
    1. 金额与入账额度必须大于0
    2. 只有 pending 状态可以流转，终态不可再变更
    3. 交易不会因 expires_at 到期而自动过期，只有回调或显式取消才能改变状态
    """

    id: str
    account_id: int
    amount: int
    credit_amount: int
    status: PaymentStatus = PaymentStatus.PENDING
    method_type: Optional[str] = None
    provider: Optional[str] = None

    # 网关引用
    gateway_transaction_id: Optional[str] = None
    payment_reference: Optional[str] = None
    channel: Optional[str] = None
    virtual_account_number: Optional[str] = None
    payment_url: Optional[str] = None

    expires_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.amount <= 0:
            raise DomainValidationException(f"交易金额必须大于0: {self.amount}", field="amount")
        if self.credit_amount <= 0:
            raise DomainValidationException(
                f"入账额度必须大于0: {self.credit_amount}", field="credit_amount"
            )
        if isinstance(self.status, str):
            self.status = PaymentStatus(self.status)
        self.expires_at = _ensure_utc(self.expires_at)
        self.paid_at = _ensure_utc(self.paid_at)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        if self.metadata is None:
            self.metadata = {}

    @property
    def is_pending(self) -> bool:
        return self.status is PaymentStatus.PENDING

    def attach_gateway(
        self,
        *,
        provider: str,
        gateway_transaction_id: Optional[str],
        virtual_account_number: Optional[str] = None,
        channel: Optional[str] = None,
        payment_url: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> None:
        """记录网关返回的引用信息（仅 pending 状态）"""
        if not self.is_pending:
            raise DomainValidationException(
                f"无法为状态为 {self.status.value} 的交易绑定网关引用", field="status"
            )
        self.provider = provider
        self.gateway_transaction_id = gateway_transaction_id
        if virtual_account_number:
            self.virtual_account_number = virtual_account_number
        if channel:
            self.channel = channel
        if payment_url:
            self.payment_url = payment_url
        if expires_at:
            self.expires_at = _ensure_utc(expires_at)
        self.updated_at = datetime.now(timezone.utc)


@dataclass
class BalanceAccount:
    """余额账户 - 充值成功后累加 credit_amount"""

    id: Optional[int]
    balance: int = 0
    owner_reference: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.balance < 0:
            raise DomainValidationException("余额不能为负数", field="balance")
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
