"""
支付仓储实现 - 使用SQLAlchemy实现数据访问

状态变更全部使用条件 UPDATE（WHERE status = 'pending'），以 rowcount 判断是否生效，
从而保证重复或并发回调最多入账一次。
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.exceptions import BalanceAccountNotFoundException, TransactionAlreadyExistsException
from domain.payment.entity import BalanceAccount, PaymentStatus, Transaction
from domain.payment.repository import BalanceAccountRepository, TransactionRepository
from infrastructure.models.payment import BalanceAccountModel, TransactionModel
from core.logging_config import get_logger


logger = get_logger(__name__)

_PENDING = PaymentStatus.PENDING.value


class SQLAlchemyTransactionRepository(TransactionRepository):
    """交易仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: TransactionModel) -> Transaction:
        """将数据库模型转换为领域实体"""
        return Transaction(
            id=model.id,
            account_id=model.account_id,
            amount=int(model.amount),
            credit_amount=int(model.credit_amount),
            status=PaymentStatus(model.status),
            method_type=model.method_type,
            provider=model.provider,
            gateway_transaction_id=model.gateway_transaction_id,
            payment_reference=model.payment_reference,
            channel=model.channel,
            virtual_account_number=model.virtual_account_number,
            payment_url=model.payment_url,
            expires_at=model.expires_at,
            paid_at=model.paid_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
            metadata=model.extra_metadata or {},
        )

    def _to_model(self, entity: Transaction) -> TransactionModel:
        """将领域实体转换为数据库模型"""
        now = datetime.now(timezone.utc)
        return TransactionModel(
            id=entity.id,
            account_id=entity.account_id,
            amount=entity.amount,
            credit_amount=entity.credit_amount,
            status=entity.status.value,
            method_type=entity.method_type,
            provider=entity.provider,
            gateway_transaction_id=entity.gateway_transaction_id,
            payment_reference=entity.payment_reference,
            channel=entity.channel,
            virtual_account_number=entity.virtual_account_number,
            payment_url=entity.payment_url,
            expires_at=entity.expires_at,
            paid_at=entity.paid_at,
            created_at=entity.created_at or now,
            updated_at=entity.updated_at or now,
            extra_metadata=entity.metadata,
        )

    async def create(self, transaction: Transaction) -> Transaction:
        """创建交易记录"""
        try:
            db_txn = self._to_model(transaction)
            self.session.add(db_txn)
            await self.session.flush()
            await self.session.refresh(db_txn)
            logger.info(
                "transaction_created",
                transaction_id=db_txn.id,
                account_id=db_txn.account_id,
                amount=db_txn.amount,
            )
            return self._to_entity(db_txn)
        except IntegrityError as e:
            await self.session.rollback()
            msg = str(e).lower()
            if "unique" in msg or "duplicate" in msg or "primary" in msg:
                logger.warning("transaction_create_conflict", transaction_id=transaction.id)
                raise TransactionAlreadyExistsException(transaction.id)
            if "foreign" in msg:
                raise BalanceAccountNotFoundException(transaction.account_id)
            raise

    async def get_by_id(self, transaction_id: str) -> Optional[Transaction]:
        """根据ID获取交易"""
        result = await self.session.execute(
            select(TransactionModel).where(TransactionModel.id == transaction_id)
        )
        db_txn = result.scalar_one_or_none()
        return self._to_entity(db_txn) if db_txn else None

    async def attach_gateway_reference(self, transaction: Transaction) -> bool:
        result = await self.session.execute(
            update(TransactionModel)
            .where(
                TransactionModel.id == transaction.id,
                TransactionModel.status == _PENDING,
            )
            .values(
                provider=transaction.provider,
                gateway_transaction_id=transaction.gateway_transaction_id,
                virtual_account_number=transaction.virtual_account_number,
                channel=transaction.channel,
                payment_url=transaction.payment_url,
                expires_at=transaction.expires_at,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def settle_success(
        self,
        transaction_id: str,
        *,
        payment_reference: str,
        channel: Optional[str],
        paid_at: datetime,
    ) -> bool:
        now = datetime.now(timezone.utc)
        values = {
            "status": PaymentStatus.SUCCESS.value,
            "payment_reference": payment_reference,
            "paid_at": paid_at,
            "updated_at": now,
        }
        if channel:
            values["channel"] = channel

        # 首条语句即为写操作：SQLite 下直接获取写锁，避免读后升级导致的 busy 死锁
        result = await self.session.execute(
            update(TransactionModel)
            .where(
                TransactionModel.id == transaction_id,
                TransactionModel.status == _PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        row = (
            await self.session.execute(
                select(TransactionModel.account_id, TransactionModel.credit_amount).where(
                    TransactionModel.id == transaction_id
                )
            )
        ).one()
        credited = await self.session.execute(
            update(BalanceAccountModel)
            .where(BalanceAccountModel.id == row.account_id)
            .values(balance=BalanceAccountModel.balance + row.credit_amount, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if credited.rowcount != 1:
            raise BalanceAccountNotFoundException(row.account_id)
        logger.info(
            "transaction_settled",
            transaction_id=transaction_id,
            account_id=row.account_id,
            credit_amount=row.credit_amount,
            payment_reference=payment_reference,
        )
        return True

    async def mark_terminal(
        self,
        transaction_id: str,
        status: PaymentStatus,
        *,
        payment_reference: str,
    ) -> bool:
        if status is PaymentStatus.PENDING or status is PaymentStatus.SUCCESS:
            raise ValueError(f"mark_terminal does not handle status {status.value}")
        result = await self.session.execute(
            update(TransactionModel)
            .where(
                TransactionModel.id == transaction_id,
                TransactionModel.status == _PENDING,
            )
            .values(
                status=status.value,
                payment_reference=payment_reference,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class SQLAlchemyBalanceAccountRepository(BalanceAccountRepository):
    """余额账户仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: BalanceAccountModel) -> BalanceAccount:
        return BalanceAccount(
            id=model.id,
            balance=int(model.balance or 0),
            owner_reference=model.owner_reference,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def get(self, account_id: int) -> Optional[BalanceAccount]:
        result = await self.session.execute(
            select(BalanceAccountModel).where(BalanceAccountModel.id == account_id)
        )
        db_account = result.scalar_one_or_none()
        return self._to_entity(db_account) if db_account else None

    async def create(self, account: BalanceAccount) -> BalanceAccount:
        now = datetime.now(timezone.utc)
        db_account = BalanceAccountModel(
            id=account.id,
            balance=account.balance,
            owner_reference=account.owner_reference,
            created_at=account.created_at or now,
            updated_at=account.updated_at or now,
        )
        self.session.add(db_account)
        await self.session.flush()
        await self.session.refresh(db_account)
        logger.info("balance_account_created", account_id=db_account.id)
        return self._to_entity(db_account)
