"""
Application services orchestrating payment use-cases.

``PaymentFacade`` depends only on the application ports and DTOs. The
concrete selector is provided by infrastructure and injected from the
composition root (API/tasks), keeping dependencies one-way.
"""
from __future__ import annotations

import uuid
from typing import Callable, Optional

from application.dtos.payments import (
    CancelPayment,
    CancelResult,
    CreatePayment,
    PaymentMethodInfo,
    PaymentMethodType,
    PaymentQuery,
    PaymentResult,
    PaymentStatusResult,
    TopUpRequest,
    TopUpResponse,
    TransactionDTO,
)
from application.ports.payment_gateway import GatewayResolver
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import (
    BalanceAccountNotFoundException,
    PaymentFailedException,
    TransactionNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import Transaction


logger = get_logger(__name__)


class PaymentFacade:
    """Single entry point for request-initiating code."""

    def __init__(self, selector: GatewayResolver, settings: Optional[PaymentSettings] = None) -> None:
        self.selector = selector
        self.settings = settings or payment_settings

    def active_provider(self, provider: Optional[str] = None) -> str:
        return self.selector.active_provider(provider)

    def list_available_methods(self, provider: Optional[str] = None) -> list[PaymentMethodInfo]:
        return self.selector.resolve(provider).list_available_methods()

    def with_defaults(self, req: CreatePayment) -> CreatePayment:
        updates = {}
        if req.expiry_minutes is None:
            if req.method_type == PaymentMethodType.CHECKOUT_PAGE:
                updates["expiry_minutes"] = self.settings.checkout_expiry_minutes
            else:
                updates["expiry_minutes"] = self.settings.va_expiry_minutes
        if not req.redirect_url:
            updates["redirect_url"] = self.settings.success_redirect_url
        return req.model_copy(update=updates) if updates else req

    async def create_payment(self, req: CreatePayment, provider: Optional[str] = None) -> PaymentResult:
        gateway = self.selector.resolve(provider)
        return await gateway.create_payment(self.with_defaults(req))

    async def check_status(self, query: PaymentQuery, provider: Optional[str] = None) -> PaymentStatusResult:
        return await self.selector.resolve(provider).check_status(query)

    async def cancel(self, req: CancelPayment, provider: Optional[str] = None) -> CancelResult:
        return await self.selector.resolve(provider).cancel(req)


def new_transaction_id() -> str:
    return str(uuid.uuid4())


def _gateway_context(txn: Transaction) -> dict:
    """Provider-side identifiers some adapters need for status/cancel calls."""
    data = {
        "virtualAccountNo": txn.virtual_account_number,
        "contractId": txn.gateway_transaction_id,
        "channel": txn.channel,
        "is_checkout": txn.method_type == PaymentMethodType.CHECKOUT_PAGE.value,
    }
    return {k: v for k, v in data.items() if v not in (None, "")}


class PaymentApplicationService:
    """Top-up flow: pending transaction, gateway call, stored gateway references."""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        facade: PaymentFacade,
    ) -> None:
        self._uow_factory = uow_factory
        self.facade = facade

    async def create_top_up(self, req: TopUpRequest) -> TopUpResponse:
        provider = self.facade.active_provider(req.provider)
        txn = Transaction(
            id=new_transaction_id(),
            account_id=req.account_id,
            amount=req.amount,
            credit_amount=req.credit_amount or req.amount,
            method_type=req.method_type.value,
            provider=provider,
            metadata=dict(req.metadata),
        )
        async with self._uow_factory() as uow:
            if await uow.accounts.get(req.account_id) is None:
                raise BalanceAccountNotFoundException(req.account_id)
            txn = await uow.transactions.create(txn)
        logger.info(
            "transaction_created",
            transaction_id=txn.id,
            account_id=txn.account_id,
            amount=txn.amount,
            provider=provider,
            method_type=txn.method_type,
        )

        result = await self.facade.create_payment(
            CreatePayment(
                transaction_id=txn.id,
                amount=req.amount,
                method_type=req.method_type,
                bank=req.bank,
                ewallet=req.ewallet,
                customer=req.customer,
                items=req.items,
                expiry_minutes=req.expiry_minutes,
                redirect_url=req.redirect_url,
                metadata=req.metadata,
            ),
            provider=provider,
        )
        if not result.success:
            # Transaction stays pending; the caller may retry with a new request
            logger.warning(
                "payment_creation_failed",
                transaction_id=txn.id,
                provider=provider,
                error_kind=result.error_kind.value,
                error=result.error,
            )
            raise PaymentFailedException(
                result.error or "Payment creation failed",
                kind=result.error_kind,
                provider=provider,
                transaction_id=txn.id,
            )

        txn.attach_gateway(
            provider=result.provider,
            gateway_transaction_id=result.gateway_transaction_id,
            virtual_account_number=result.virtual_account.number if result.virtual_account else None,
            channel=_channel_of(req, result),
            payment_url=result.redirect_url or (result.ewallet.deeplink_url if result.ewallet else None),
            expires_at=result.expires_at,
        )
        async with self._uow_factory() as uow:
            await uow.transactions.attach_gateway_reference(txn)
        logger.info(
            "payment_created",
            transaction_id=txn.id,
            provider=result.provider,
            gateway_transaction_id=result.gateway_transaction_id,
            instrument=result.instrument,
        )
        return TopUpResponse(transaction=TransactionDTO.model_validate(txn), payment=result)

    async def get_transaction(self, transaction_id: str) -> TransactionDTO:
        return TransactionDTO.model_validate(await self._load(transaction_id))

    async def _load(self, transaction_id: str) -> Transaction:
        async with self._uow_factory(readonly=True) as uow:
            txn = await uow.transactions.get_by_id(transaction_id)
        if txn is None:
            raise TransactionNotFoundException(transaction_id)
        return txn

    async def check_status(self, transaction_id: str) -> PaymentStatusResult:
        """Ask the provider; stored state changes only through callbacks."""
        txn = await self._load(transaction_id)
        return await self.facade.check_status(
            PaymentQuery(
                transaction_id=txn.id,
                gateway_transaction_id=txn.gateway_transaction_id,
                additional_data=_gateway_context(txn),
            ),
            provider=txn.provider,
        )

    async def cancel(self, transaction_id: str) -> CancelResult:
        txn = await self._load(transaction_id)
        result = await self.facade.cancel(
            CancelPayment(
                transaction_id=txn.id,
                gateway_transaction_id=txn.gateway_transaction_id,
                additional_data=_gateway_context(txn),
            ),
            provider=txn.provider,
        )
        logger.info(
            "payment_cancel_requested",
            transaction_id=txn.id,
            provider=txn.provider,
            success=result.success,
            error_kind=result.error_kind.value if result.error_kind else None,
        )
        return result


def _channel_of(req: TopUpRequest, result: PaymentResult) -> Optional[str]:
    if result.virtual_account:
        return result.virtual_account.bank_code
    if req.bank:
        return req.bank.value
    if req.ewallet:
        return req.ewallet.value
    return None
