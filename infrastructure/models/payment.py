"""
支付数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    BigInteger, Column, DateTime, ForeignKey, Index, Integer, JSON, String
)
from datetime import datetime, timezone

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BalanceAccountModel(Base):
    """余额账户表"""
    __tablename__ = "balance_accounts"

    id = Column(Integer, primary_key=True, index=True)
    owner_reference = Column(String(100), nullable=True, index=True, comment="外部账户标识")
    balance = Column(BigInteger, nullable=False, default=0, comment="余额（最小单位）")

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, comment="创建时间")
    updated_at = Column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False, comment="更新时间"
    )

    def __repr__(self):
        return f"<BalanceAccountModel(id={self.id}, balance={self.balance})>"


class TransactionModel(Base):
    """
    充值交易表

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.payment.entity.Transaction 中
    """
    __tablename__ = "transactions"

    id = Column(String(64), primary_key=True, comment="交易ID")
    account_id = Column(
        Integer, ForeignKey("balance_accounts.id"), nullable=False, index=True, comment="余额账户ID"
    )

    amount = Column(BigInteger, nullable=False, comment="支付金额（IDR）")
    credit_amount = Column(BigInteger, nullable=False, comment="成功后入账额度")
    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="状态: pending/success/failed/expired/cancelled",
    )
    method_type = Column(String(30), nullable=True, comment="支付方式")
    provider = Column(String(30), nullable=True, index=True, comment="支付网关: winpay/xendit/midtrans/manual")

    gateway_transaction_id = Column(String(200), nullable=True, index=True, comment="网关交易ID")
    payment_reference = Column(String(200), nullable=True, comment="入账/终态引用")
    channel = Column(String(50), nullable=True, comment="支付渠道")
    virtual_account_number = Column(String(64), nullable=True, comment="虚拟账号")
    payment_url = Column(String(1000), nullable=True, comment="支付跳转地址")

    expires_at = Column(DateTime(timezone=True), nullable=True, comment="过期时间（仅展示，不自动过期）")
    paid_at = Column(DateTime(timezone=True), nullable=True, comment="支付完成时间")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True, comment="创建时间")
    updated_at = Column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False, comment="更新时间"
    )

    # 元数据（JSON 格式，attribute 名避免与 Declarative 的 metadata 冲突）
    extra_metadata = Column("metadata", JSON, nullable=True, comment="扩展元数据")

    __table_args__ = (
        Index("idx_transactions_account_status", "account_id", "status"),
    )

    def __repr__(self):
        return f"<TransactionModel(id={self.id}, status={self.status}, amount={self.amount})>"
