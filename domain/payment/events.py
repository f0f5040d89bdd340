"""
Payment domain events.

Dataclass events record terminal transitions of a transaction so the
application layer can fan them out (e.g. as ``token.balance_updated``
webhooks). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class PaymentEvent:
    transaction_id: str
    account_id: int
    provider: str
    payment_reference: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PaymentSucceeded(PaymentEvent):
    credit_amount: int = 0
    paid_amount: Optional[int] = None


@dataclass
class PaymentFailed(PaymentEvent):
    pass


@dataclass
class PaymentExpired(PaymentEvent):
    pass


@dataclass
class PaymentCancelled(PaymentEvent):
    pass
