"""
API依赖项 - 组装应用服务（composition root）

测试中可通过 app.dependency_overrides 替换 get_uow_factory / get_gateway_resolver /
get_webhook_transport_dep / get_event_publisher。
"""
from typing import Callable

from fastapi import Depends

from application.ports.event_publisher import EventPublisher
from application.ports.payment_gateway import GatewayResolver
from application.ports.webhook_transport import WebhookTransport
from application.services.callback_normalizer import CallbackNormalizer
from application.services.payment_callback_service import PaymentCallbackService
from application.services.payment_service import PaymentApplicationService, PaymentFacade
from application.services.transaction_reconciler import TransactionReconciler
from application.services.webhook_dispatcher import WebhookDispatcher
from application.services.webhook_receiver import WebhookReceiver
from core.config import settings
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.external.payments import get_gateway_selector
from infrastructure.external.webhooks import get_webhook_transport
from infrastructure.tasks.utils.dispatcher import TaskDispatcher
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


def get_uow_factory() -> Callable[..., AbstractUnitOfWork]:
    return SQLAlchemyUnitOfWork


def get_gateway_resolver() -> GatewayResolver:
    return get_gateway_selector()


def get_webhook_transport_dep() -> WebhookTransport:
    return get_webhook_transport()


def get_payment_facade(resolver: GatewayResolver = Depends(get_gateway_resolver)) -> PaymentFacade:
    return PaymentFacade(selector=resolver)


def get_payment_service(
    uow_factory=Depends(get_uow_factory),
    facade: PaymentFacade = Depends(get_payment_facade),
) -> PaymentApplicationService:
    return PaymentApplicationService(uow_factory=uow_factory, facade=facade)


def get_webhook_dispatcher(
    uow_factory=Depends(get_uow_factory),
    transport: WebhookTransport = Depends(get_webhook_transport_dep),
) -> WebhookDispatcher:
    return WebhookDispatcher(uow_factory=uow_factory, transport=transport)


def get_event_publisher(dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher)) -> EventPublisher:
    # 有 Redis 时交给 Celery worker 投递，否则在进程内直接投递
    if settings.redis.url:
        return TaskDispatcher()
    return dispatcher


def get_callback_service(
    uow_factory=Depends(get_uow_factory),
    resolver: GatewayResolver = Depends(get_gateway_resolver),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> PaymentCallbackService:
    return PaymentCallbackService(
        normalizer=CallbackNormalizer(resolver),
        reconciler=TransactionReconciler(uow_factory),
        publisher=publisher,
    )


def get_webhook_receiver(uow_factory=Depends(get_uow_factory)) -> WebhookReceiver:
    return WebhookReceiver(uow_factory=uow_factory)
