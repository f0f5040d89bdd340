"""
Webhook DTOs (Pydantic v2): outbound delivery status and inbound events.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from domain.webhook.entity import DeliveryStatus
from shared.codes.payment_codes import ErrorKind


class WebhookDeliveryDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_type: str
    event_id: str
    target_url: str
    status: DeliveryStatus
    attempt_count: int
    max_attempts: int
    response_status_code: Optional[int] = None
    last_error: Optional[str] = None
    delivered_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class EmitResult(BaseModel):
    event_id: str
    event_type: str
    deliveries: list[WebhookDeliveryDTO] = Field(default_factory=list)


class RetrySweepResult(BaseModel):
    due: int = 0
    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    skipped: int = 0


class EmitEventRequest(BaseModel):
    event_type: str
    data: dict[str, Any] = Field(default_factory=dict)


class InboundEventResult(BaseModel):
    accepted: bool
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    duplicate: bool = False
    error_kind: Optional[ErrorKind] = None
    reason: Optional[str] = None
