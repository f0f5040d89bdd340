"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode, ErrorKind


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class PaymentException(BusinessException):
    """Business error that maps onto an ErrorKind tag at the adapter boundary."""

    kind: ErrorKind = ErrorKind.GATEWAY_REJECTED


class PaymentConfigurationError(PaymentException):
    """Missing or malformed credentials / provider selection. Fatal at startup."""

    kind = ErrorKind.CONFIGURATION_ERROR

    def __init__(self, message: str, *, provider: Optional[str] = None, setting: Optional[str] = None):
        details = {k: v for k, v in {"provider": provider, "setting": setting}.items() if v}
        super().__init__(
            code=PaymentCode.CONFIGURATION_ERROR,
            message=message,
            error_type="ConfigurationError",
            details=details or None,
        )


class UnsupportedPaymentMethodError(PaymentException):
    kind = ErrorKind.UNSUPPORTED_METHOD

    def __init__(self, provider: str, method: str):
        super().__init__(
            code=PaymentCode.UNSUPPORTED_METHOD,
            message=f"Payment method '{method}' is not supported by provider '{provider}'",
            error_type="UnsupportedPaymentMethod",
            details={"provider": provider, "method": method},
            field="method_type",
        )


class TransactionNotFoundException(BusinessException):
    def __init__(self, transaction_id: str):
        super().__init__(
            code=PaymentCode.TRANSACTION_NOT_FOUND,
            message="Transaction not found",
            error_type="TransactionNotFound",
            details={"transaction_id": transaction_id},
        )


class TransactionAlreadyExistsException(BusinessException):
    def __init__(self, transaction_id: str):
        super().__init__(
            code=PaymentCode.TRANSACTION_ALREADY_EXISTS,
            message=f"Transaction {transaction_id} already exists",
            error_type="TransactionAlreadyExists",
            details={"transaction_id": transaction_id},
            field="transaction_id",
        )


class BalanceAccountNotFoundException(BusinessException):
    def __init__(self, account_id: int):
        super().__init__(
            code=PaymentCode.ACCOUNT_NOT_FOUND,
            message="Balance account not found",
            error_type="BalanceAccountNotFound",
            details={"account_id": account_id},
            field="account_id",
        )


class WebhookDeliveryFailedError(PaymentException):
    """A single outbound webhook attempt failed (transport error, timeout)."""

    kind = ErrorKind.DELIVERY_FAILED

    def __init__(self, message: str, *, url: str, status_code: Optional[int] = None):
        super().__init__(
            code=PaymentCode.DELIVERY_FAILED,
            message=message,
            error_type="DeliveryFailed",
            details={"url": url, "status_code": status_code},
        )


_KIND_CODES = {
    ErrorKind.CONFIGURATION_ERROR: PaymentCode.CONFIGURATION_ERROR,
    ErrorKind.GATEWAY_UNAVAILABLE: PaymentCode.GATEWAY_UNAVAILABLE,
    ErrorKind.UNSUPPORTED_METHOD: PaymentCode.UNSUPPORTED_METHOD,
    ErrorKind.VALIDATION_ERROR: BusinessCode.PARAM_VALIDATION_ERROR,
}


class PaymentFailedException(PaymentException):
    """A gateway operation came back as a tagged failure; the transaction stays pending."""

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind,
        provider: str,
        transaction_id: Optional[str] = None,
    ):
        super().__init__(
            code=_KIND_CODES.get(kind, PaymentCode.PROVIDER_ERROR),
            message=message,
            error_type="PaymentFailed",
            details={"provider": provider, "transaction_id": transaction_id, "error_kind": kind.value},
        )
        self.kind = kind
