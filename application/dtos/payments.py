"""
Payment DTOs (Pydantic v2) used at application boundaries.

Amounts are integer minor units of IDR; there is no currency field because
every provider behind the facade settles in IDR.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from domain.payment.entity import PaymentStatus
from shared.codes.payment_codes import ErrorKind


class PaymentMethodType(str, Enum):
    CHECKOUT_PAGE = "checkout_page"
    VIRTUAL_ACCOUNT = "virtual_account"
    EWALLET = "ewallet"
    QRIS = "qris"
    MANUAL = "manual"


class VirtualAccountBank(str, Enum):
    BRI = "bri"
    BNI = "bni"
    BCA = "bca"
    MANDIRI = "mandiri"
    PERMATA = "permata"
    BSI = "bsi"
    CIMB = "cimb"
    SINARMAS = "sinarmas"
    MUAMALAT = "muamalat"
    INDOMARET = "indomaret"
    ALFAMART = "alfamart"


class EWalletType(str, Enum):
    OVO = "ovo"
    DANA = "dana"
    GOPAY = "gopay"
    SHOPEEPAY = "shopeepay"
    LINKAJA = "linkaja"


class PaymentCustomer(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None


class PaymentItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    name: str
    price: int = Field(ge=0)
    quantity: int = Field(default=1, gt=0)


class CreatePayment(BaseModel):
    """Provider-agnostic create request. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    transaction_id: str = Field(min_length=1)
    amount: int = Field(gt=0)
    method_type: PaymentMethodType
    bank: Optional[VirtualAccountBank] = None
    ewallet: Optional[EWalletType] = None
    customer: PaymentCustomer
    items: list[PaymentItem] = Field(default_factory=list)
    expiry_minutes: Optional[int] = Field(default=None, gt=0)
    redirect_url: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _require_channel(self):
        if self.method_type == PaymentMethodType.VIRTUAL_ACCOUNT and self.bank is None:
            raise ValueError("bank is required for virtual_account payments")
        if self.method_type == PaymentMethodType.EWALLET and self.ewallet is None:
            raise ValueError("ewallet is required for ewallet payments")
        return self


class VirtualAccountInfo(BaseModel):
    number: str
    holder_name: str
    bank_code: str


class QrPayment(BaseModel):
    qr_string: str
    qr_image_url: Optional[str] = None


class EWalletPayment(BaseModel):
    type: EWalletType
    deeplink_url: Optional[str] = None
    qr_string: Optional[str] = None


class ManualInstructions(BaseModel):
    bank_name: str
    account_number: str
    account_name: str
    amount: int
    reference_code: str
    instructions: str


_INSTRUMENT_FIELDS = ("redirect_url", "virtual_account", "qr", "ewallet", "manual_instructions")


class PaymentResult(BaseModel):
    success: bool
    provider: str
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    gateway_transaction_id: Optional[str] = None

    redirect_url: Optional[str] = None
    virtual_account: Optional[VirtualAccountInfo] = None
    qr: Optional[QrPayment] = None
    ewallet: Optional[EWalletPayment] = None
    manual_instructions: Optional[ManualInstructions] = None

    expires_at: Optional[datetime] = None
    raw: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def _one_instrument(self):
        if self.success:
            present = [f for f in _INSTRUMENT_FIELDS if getattr(self, f) is not None]
            if len(present) != 1:
                raise ValueError(f"successful result must carry exactly one instrument, got {present}")
        elif self.error_kind is None:
            self.error_kind = ErrorKind.GATEWAY_REJECTED
        return self

    @classmethod
    def failure(
        cls,
        provider: str,
        error: str,
        kind: ErrorKind = ErrorKind.GATEWAY_REJECTED,
        raw: Optional[dict[str, Any]] = None,
    ) -> "PaymentResult":
        return cls(success=False, provider=provider, error=error, error_kind=kind, raw=raw)

    @property
    def instrument(self) -> Optional[str]:
        for name in _INSTRUMENT_FIELDS:
            if getattr(self, name) is not None:
                return name
        return None


class PaymentQuery(BaseModel):
    transaction_id: str
    gateway_transaction_id: Optional[str] = None
    additional_data: dict[str, Any] = Field(default_factory=dict)


class PaymentStatusResult(BaseModel):
    success: bool
    status: PaymentStatus = PaymentStatus.PENDING
    paid_amount: Optional[int] = None
    paid_at: Optional[datetime] = None
    reference_number: Optional[str] = None
    payment_method: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    raw: Optional[dict[str, Any]] = None

    @classmethod
    def failure(cls, error: str, kind: ErrorKind = ErrorKind.GATEWAY_REJECTED, raw: Optional[dict] = None):
        return cls(success=False, error=error, error_kind=kind, raw=raw)


class CancelPayment(BaseModel):
    transaction_id: str
    gateway_transaction_id: Optional[str] = None
    additional_data: dict[str, Any] = Field(default_factory=dict)


class CancelResult(BaseModel):
    success: bool
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    raw: Optional[dict[str, Any]] = None

    @classmethod
    def failure(cls, error: str, kind: ErrorKind = ErrorKind.GATEWAY_REJECTED, raw: Optional[dict] = None):
        return cls(success=False, error=error, error_kind=kind, raw=raw)


class PaymentMethodInfo(BaseModel):
    id: str
    name: str
    description: str
    type: PaymentMethodType
    bank: Optional[VirtualAccountBank] = None
    ewallet: Optional[EWalletType] = None
    enabled: bool = True


class InboundCallback(BaseModel):
    """Raw provider notification as received over HTTP."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    headers: dict[str, str] = Field(default_factory=dict)
    raw_body: bytes = b""
    body: Any = None
    path: str = "/"

    @field_validator("headers", mode="before")
    @classmethod
    def _lower_headers(cls, v):
        return {str(k).lower(): str(val) for k, val in dict(v or {}).items()}

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    @property
    def data(self) -> dict[str, Any]:
        return self.body if isinstance(self.body, dict) else {}


class CanonicalCallbackEvent(BaseModel):
    transaction_id: str
    provider: str
    gateway_transaction_id: Optional[str] = None
    status: PaymentStatus
    paid_amount: Optional[int] = None
    channel: Optional[str] = None
    reference_number: Optional[str] = None
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    fee: Optional[int] = None
    net_amount: Optional[int] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class CallbackAck(BaseModel):
    body: Union[dict[str, Any], str]
    media_type: Literal["application/json", "text/plain"] = "application/json"

    @classmethod
    def of_json(cls, body: dict[str, Any]) -> "CallbackAck":
        return cls(body=body, media_type="application/json")

    @classmethod
    def of_text(cls, body: str) -> "CallbackAck":
        return cls(body=body, media_type="text/plain")


# --------------------------------------------------------------------------- #
# Top-up use case (API <-> application service)
# --------------------------------------------------------------------------- #
class TopUpRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: int
    amount: int = Field(gt=0, description="Amount charged, IDR")
    credit_amount: Optional[int] = Field(default=None, gt=0, description="Balance credited on success; defaults to amount")
    method_type: PaymentMethodType
    bank: Optional[VirtualAccountBank] = None
    ewallet: Optional[EWalletType] = None
    customer: PaymentCustomer
    items: list[PaymentItem] = Field(default_factory=list)
    provider: Optional[str] = None
    expiry_minutes: Optional[int] = Field(default=None, gt=0)
    redirect_url: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _require_channel(self):
        if self.method_type == PaymentMethodType.VIRTUAL_ACCOUNT and self.bank is None:
            raise ValueError("bank is required for virtual_account payments")
        if self.method_type == PaymentMethodType.EWALLET and self.ewallet is None:
            raise ValueError("ewallet is required for ewallet payments")
        return self


class TransactionDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: int
    amount: int
    credit_amount: int
    status: PaymentStatus
    method_type: Optional[str] = None
    provider: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    payment_reference: Optional[str] = None
    channel: Optional[str] = None
    virtual_account_number: Optional[str] = None
    payment_url: Optional[str] = None
    expires_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TopUpResponse(BaseModel):
    transaction: TransactionDTO
    payment: PaymentResult
