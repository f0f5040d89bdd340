"""
Payments API routes.

Thin layer over ``PaymentApplicationService``: create a top-up, list the
active provider's methods, read a stored transaction, and ask the provider
for status or cancellation. Stored state only moves through callbacks.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from api.dependencies import get_payment_facade, get_payment_service
from application.dtos.payments import TopUpRequest
from application.services.payment_service import PaymentApplicationService, PaymentFacade
from core.response import success_response


router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("", summary="Create payment", status_code=status.HTTP_201_CREATED)
async def create_payment(
    payload: TopUpRequest,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    result = await service.create_top_up(payload)
    return success_response(data=result.model_dump(mode="json"), message="Payment created")


@router.get("/methods", summary="List payment methods")
async def list_methods(
    provider: Optional[str] = Query(default=None),
    facade: PaymentFacade = Depends(get_payment_facade),
):
    name = facade.active_provider(provider)
    methods = facade.list_available_methods(name)
    return success_response(
        data={"provider": name, "methods": [m.model_dump(mode="json") for m in methods]},
    )


@router.get("/{transaction_id}", summary="Get transaction")
async def get_transaction(
    transaction_id: str,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    txn = await service.get_transaction(transaction_id)
    return success_response(data=txn.model_dump(mode="json"))


@router.get("/{transaction_id}/status", summary="Check payment status with the provider")
async def check_status(
    transaction_id: str,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    result = await service.check_status(transaction_id)
    return success_response(data=result.model_dump(mode="json", exclude={"raw"}))


@router.post("/{transaction_id}/cancel", summary="Cancel payment with the provider")
async def cancel_payment(
    transaction_id: str,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    result = await service.cancel(transaction_id)
    message = "Cancellation requested" if result.success else "Cancellation rejected"
    return success_response(data=result.model_dump(mode="json", exclude={"raw"}), message=message)
