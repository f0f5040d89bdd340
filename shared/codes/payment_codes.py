"""
Payment specific codes, error kinds and provider status mapping.
"""
from __future__ import annotations

from enum import Enum, IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    GATEWAY_UNAVAILABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    TIMESTAMP_STALE = 60004
    CONFIGURATION_ERROR = 60005
    UNSUPPORTED_METHOD = 60006

    # Transaction / delivery errors (61xxx)
    TRANSACTION_NOT_FOUND = 61000
    ACCOUNT_NOT_FOUND = 61001
    TRANSACTION_ALREADY_EXISTS = 61002
    DELIVERY_FAILED = 61100
    DUPLICATE_EVENT = 61101


class ErrorKind(str, Enum):
    """Tag carried by failed results so callers can tell retryable from terminal."""

    CONFIGURATION_ERROR = "configuration_error"
    VALIDATION_ERROR = "validation_error"
    SIGNATURE_INVALID = "signature_invalid"
    TIMESTAMP_STALE = "timestamp_stale"
    GATEWAY_UNAVAILABLE = "gateway_unavailable"
    GATEWAY_REJECTED = "gateway_rejected"
    UNSUPPORTED_METHOD = "unsupported_method"
    DELIVERY_FAILED = "delivery_failed"
    DUPLICATE_EVENT = "duplicate_event"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.GATEWAY_UNAVAILABLE, ErrorKind.DELIVERY_FAILED)


# Provider -> canonical status (pending/success/failed/expired/cancelled).
# Anything not listed maps to "pending".
PROVIDER_STATUS_TO_INTERNAL = {
    "xendit": {
        "PAID": "success",
        "SETTLED": "success",
        "SUCCEEDED": "success",
        "EXPIRED": "expired",
        "FAILED": "failed",
        "PENDING": "pending",
    },
    "midtrans": {
        "capture": "success",
        "settlement": "success",
        "expire": "expired",
        "cancel": "cancelled",
        "deny": "cancelled",
        "failure": "failed",
        "pending": "pending",
    },
    "manual": {
        "success": "success",
        "paid": "success",
        "confirmed": "success",
        "expired": "expired",
        "cancelled": "cancelled",
        "failed": "failed",
        "pending": "pending",
    },
    "winpay": {
        # SNAP paymentFlagStatus
        "00": "success",
    },
}
