"""
Applies canonical callback events to transaction state exactly once.

The only write is a conditional update guarded by ``status = 'pending'``;
losing that race is reported as ``already_terminal`` and never credits.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from application.dtos.payments import CanonicalCallbackEvent
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import PaymentStatus, Transaction
from domain.payment.events import (
    PaymentCancelled,
    PaymentEvent,
    PaymentExpired,
    PaymentFailed,
    PaymentSucceeded,
)


logger = get_logger(__name__)

_TERMINAL_EVENTS = {
    PaymentStatus.FAILED: PaymentFailed,
    PaymentStatus.EXPIRED: PaymentExpired,
    PaymentStatus.CANCELLED: PaymentCancelled,
}


class ReconcileStatus(str, Enum):
    APPLIED = "applied"
    ALREADY_TERMINAL = "already_terminal"
    NOT_FOUND = "not_found"
    IGNORED = "ignored"


@dataclass
class ReconcileOutcome:
    status: ReconcileStatus
    transaction_id: str
    transaction_status: Optional[PaymentStatus] = None
    domain_event: Optional[PaymentEvent] = None
    balance: Optional[int] = None

    @property
    def applied(self) -> bool:
        return self.status is ReconcileStatus.APPLIED


def payment_reference(event: CanonicalCallbackEvent) -> str:
    ref = event.gateway_transaction_id or event.transaction_id
    if event.status is PaymentStatus.SUCCESS:
        return f"{event.provider.upper()}-{ref}"
    return f"{event.status.value.upper()}-{ref}"


class TransactionReconciler:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        settings: Optional[PaymentSettings] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self.settings = settings or payment_settings

    async def apply(self, event: CanonicalCallbackEvent) -> ReconcileOutcome:
        if event.status is PaymentStatus.PENDING:
            logger.info("payment_callback_pending", transaction_id=event.transaction_id, provider=event.provider)
            return ReconcileOutcome(ReconcileStatus.IGNORED, event.transaction_id, PaymentStatus.PENDING)

        async with self._uow_factory(readonly=True) as uow:
            txn = await uow.transactions.get_by_id(event.transaction_id)
        if txn is None:
            logger.warning("payment_callback_unknown_transaction", transaction_id=event.transaction_id, provider=event.provider)
            return ReconcileOutcome(ReconcileStatus.NOT_FOUND, event.transaction_id)
        if not txn.is_pending:
            logger.info(
                "payment_callback_replayed",
                transaction_id=txn.id,
                current_status=txn.status.value,
                incoming_status=event.status.value,
            )
            return ReconcileOutcome(ReconcileStatus.ALREADY_TERMINAL, txn.id, txn.status)

        if event.status is PaymentStatus.SUCCESS:
            return await self._settle(txn, event)
        return await self._terminate(txn, event)

    def _check_amount(self, txn: Transaction, event: CanonicalCallbackEvent) -> None:
        if event.paid_amount is None:
            return
        if abs(event.paid_amount - txn.amount) > self.settings.amount_tolerance:
            logger.warning(
                "payment_amount_mismatch",
                transaction_id=txn.id,
                expected=txn.amount,
                paid=event.paid_amount,
                tolerance=self.settings.amount_tolerance,
            )

    async def _settle(self, txn: Transaction, event: CanonicalCallbackEvent) -> ReconcileOutcome:
        self._check_amount(txn, event)
        reference = payment_reference(event)
        async with self._uow_factory() as uow:
            settled = await uow.transactions.settle_success(
                txn.id,
                payment_reference=reference,
                channel=event.channel,
                paid_at=event.paid_at or datetime.now(timezone.utc),
            )
            account = await uow.accounts.get(txn.account_id) if settled else None
        if not settled:
            logger.info("payment_callback_race_lost", transaction_id=txn.id, provider=event.provider)
            return ReconcileOutcome(ReconcileStatus.ALREADY_TERMINAL, txn.id)

        logger.info(
            "payment_settled",
            transaction_id=txn.id,
            provider=event.provider,
            payment_reference=reference,
            credit_amount=txn.credit_amount,
        )
        return ReconcileOutcome(
            ReconcileStatus.APPLIED,
            txn.id,
            PaymentStatus.SUCCESS,
            domain_event=PaymentSucceeded(
                transaction_id=txn.id,
                account_id=txn.account_id,
                provider=event.provider,
                payment_reference=reference,
                credit_amount=txn.credit_amount,
                paid_amount=event.paid_amount,
            ),
            balance=account.balance if account else None,
        )

    async def _terminate(self, txn: Transaction, event: CanonicalCallbackEvent) -> ReconcileOutcome:
        reference = payment_reference(event)
        async with self._uow_factory() as uow:
            changed = await uow.transactions.mark_terminal(txn.id, event.status, payment_reference=reference)
        if not changed:
            logger.info("payment_callback_race_lost", transaction_id=txn.id, provider=event.provider)
            return ReconcileOutcome(ReconcileStatus.ALREADY_TERMINAL, txn.id)

        logger.info(
            "payment_terminated",
            transaction_id=txn.id,
            provider=event.provider,
            status=event.status.value,
            payment_reference=reference,
        )
        return ReconcileOutcome(
            ReconcileStatus.APPLIED,
            txn.id,
            event.status,
            domain_event=_TERMINAL_EVENTS[event.status](
                transaction_id=txn.id,
                account_id=txn.account_id,
                provider=event.provider,
                payment_reference=reference,
            ),
        )
