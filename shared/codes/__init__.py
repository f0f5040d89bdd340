"""
Business codes carried in the ``code`` field of every JSON envelope.

Generic codes live here; payment and webhook codes (6xxxx) are in
``shared.codes.payment_codes``.
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    SUCCESS = 0

    # Request errors (1xxxx)
    PARAM_ERROR = 10000
    PARAM_VALIDATION_ERROR = 10003

    # Resource errors (2xxxx)
    NOT_FOUND = 20006

    # Caller identity (3xxxx)
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002

    # Server side (4xxxx)
    SYSTEM_ERROR = 40000
    SERVICE_UNAVAILABLE = 40003

    # Throttling (5xxxx)
    TOO_MANY_REQUESTS = 50001


__all__ = ["BusinessCode"]
