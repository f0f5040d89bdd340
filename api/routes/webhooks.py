"""
Webhook API routes.

Provider callbacks always answer with the provider's acknowledgement
(JSON or plain text), never with the envelope: a provider that sees an
error keeps retrying. Signed inbound events and delivery bookkeeping use
the regular envelope.
"""
from __future__ import annotations

import json
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from api.dependencies import get_callback_service, get_webhook_dispatcher, get_webhook_receiver
from api.middleware import get_client_ip
from application.dtos.payments import CallbackAck, InboundCallback
from application.services.payment_callback_service import PaymentCallbackService
from application.services.webhook_dispatcher import WebhookDispatcher
from application.services.webhook_receiver import WebhookReceiver
from core.exceptions import UnauthorizedException
from core.response import success_response
from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode
from shared.codes.payment_codes import ErrorKind


router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

CHECKOUT_ACK = CallbackAck.of_text("ACCEPTED")


def _parse_body(raw_body: bytes) -> Any:
    if not raw_body:
        return None
    try:
        return json.loads(raw_body)
    except ValueError:
        return None


async def _inbound(request: Request) -> InboundCallback:
    raw_body = await request.body()
    return InboundCallback(
        headers=dict(request.headers),
        raw_body=raw_body,
        body=_parse_body(raw_body),
        path=request.url.path,
    )


def _render(ack: CallbackAck) -> Response:
    if ack.media_type == "text/plain":
        return PlainTextResponse(str(ack.body))
    return JSONResponse(ack.body)


async def _handle(
    request: Request,
    service: PaymentCallbackService,
    provider: Optional[str] = None,
    fallback_ack: Optional[CallbackAck] = None,
) -> Response:
    callback = await _inbound(request)
    ack = await service.handle(callback, provider, fallback_ack=fallback_ack)
    return _render(ack)


@router.post("/payment/callback", summary="Universal payment callback")
async def payment_callback(request: Request, service: PaymentCallbackService = Depends(get_callback_service)):
    return await _handle(request, service)


@router.post("/winpay/va", summary="Winpay virtual account callback")
async def winpay_va_callback(request: Request, service: PaymentCallbackService = Depends(get_callback_service)):
    return await _handle(request, service, "winpay")


@router.post("/winpay/checkout", summary="Winpay checkout page callback")
async def winpay_checkout_callback(request: Request, service: PaymentCallbackService = Depends(get_callback_service)):
    return await _handle(request, service, "winpay", fallback_ack=CHECKOUT_ACK)


@router.post("/payment/{provider}", summary="Provider-specific payment callback")
async def provider_callback(
    provider: str,
    request: Request,
    service: PaymentCallbackService = Depends(get_callback_service),
):
    return await _handle(request, service, provider.lower())


@router.post("/events", summary="Receive a signed event")
async def receive_event(request: Request, receiver: WebhookReceiver = Depends(get_webhook_receiver)):
    raw_body = await request.body()
    result = await receiver.receive(dict(request.headers), raw_body, source=get_client_ip())
    if not result.accepted:
        details = {"error_kind": result.error_kind.value if result.error_kind else None, "event_id": result.event_id}
        if result.error_kind in (ErrorKind.SIGNATURE_INVALID, ErrorKind.TIMESTAMP_STALE):
            raise UnauthorizedException(result.reason or "Invalid signature", details=details)
        raise BusinessException(
            code=BusinessCode.PARAM_ERROR,
            message=result.reason or "Invalid event",
            error_type="ValidationError",
            details=details,
        )
    message = "Duplicate event ignored" if result.duplicate else "Event accepted"
    return success_response(data=result.model_dump(mode="json"), message=message)


@router.get("/deliveries/{event_id}", summary="Delivery status of an emitted event")
async def delivery_status(event_id: str, dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher)):
    deliveries = await dispatcher.get_delivery_status(event_id)
    if not deliveries:
        raise BusinessException(
            code=BusinessCode.NOT_FOUND,
            message=f"No deliveries for event {event_id}",
            error_type="NotFound",
        )
    return success_response(data=[d.model_dump(mode="json") for d in deliveries])


@router.post("/deliveries/retry", summary="Run a retry sweep now")
async def retry_deliveries(dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher)):
    result = await dispatcher.retry_pending()
    return success_response(data=result.model_dump(mode="json"), message="Retry sweep completed")
