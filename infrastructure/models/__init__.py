"""ORM models for payments and webhook delivery."""
from .base import Base
from .payment import BalanceAccountModel, TransactionModel
from .webhook import ProcessedEventModel, WebhookDeliveryModel

__all__ = [
    "Base",
    "BalanceAccountModel",
    "TransactionModel",
    "WebhookDeliveryModel",
    "ProcessedEventModel",
]
