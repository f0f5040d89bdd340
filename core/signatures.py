"""
Signature engine: pure helpers for request signing and callback verification.

Two families are supported:

* asymmetric SNAP-style signing: ``METHOD:path:sha256hex(minified body):timestamp``
  signed with RSA-SHA256 (PKCS#1 v1.5) and base64 encoded;
* symmetric payload signing: HMAC-SHA256 hex over ``timestamp + "." + body``,
  used for outbound webhooks and for signed inbound callbacks.

Verification helpers never raise on bad input; they return a
``VerificationResult`` tagged with the failure kind. Freshness is always
checked before the signature.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Union

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from domain.common.exceptions import PaymentConfigurationError
from shared.codes.payment_codes import ErrorKind


DEFAULT_TOLERANCE_SECONDS = 300

BytesLike = Union[str, bytes]


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    error_kind: Optional[ErrorKind] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "VerificationResult":
        return cls(valid=True)

    @classmethod
    def invalid(cls, reason: str) -> "VerificationResult":
        return cls(valid=False, error_kind=ErrorKind.SIGNATURE_INVALID, reason=reason)

    @classmethod
    def stale(cls, reason: str = "timestamp outside tolerance") -> "VerificationResult":
        return cls(valid=False, error_kind=ErrorKind.TIMESTAMP_STALE, reason=reason)

    def __bool__(self) -> bool:
        return self.valid


def _to_bytes(value: BytesLike) -> bytes:
    return value if isinstance(value, bytes) else value.encode("utf-8")


# --------------------------------------------------------------------------- #
# Digests
# --------------------------------------------------------------------------- #

def minify_json(body: Any) -> str:
    """Compact JSON as produced by ``JSON.stringify`` (no spaces, UTF-8 kept)."""
    if body is None:
        return ""
    if isinstance(body, (bytes, str)):
        return body.decode("utf-8") if isinstance(body, bytes) else body
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)


def sha256_hex(data: BytesLike) -> str:
    return hashlib.sha256(_to_bytes(data)).hexdigest().lower()


def sha512_hex(data: BytesLike) -> str:
    return hashlib.sha512(_to_bytes(data)).hexdigest()


def hmac_sha256_hex(message: BytesLike, secret: BytesLike) -> str:
    return hmac.new(_to_bytes(secret), _to_bytes(message), hashlib.sha256).hexdigest()


def constant_time_equals(a: Optional[BytesLike], b: Optional[BytesLike]) -> bool:
    if a is None or b is None:
        return False
    return hmac.compare_digest(_to_bytes(a), _to_bytes(b))


# --------------------------------------------------------------------------- #
# Asymmetric (SNAP) signing
# --------------------------------------------------------------------------- #

def build_string_to_sign(method: str, path: str, body: Any, timestamp: str) -> str:
    return f"{method.upper()}:{path}:{sha256_hex(minify_json(body))}:{timestamp}"


def _normalize_pem(pem: BytesLike) -> bytes:
    # keys from env vars usually carry literal "\n"
    text = pem.decode("utf-8") if isinstance(pem, bytes) else pem
    return text.replace("\\n", "\n").strip().encode("utf-8")


def load_private_key(pem: BytesLike) -> rsa.RSAPrivateKey:
    try:
        key = serialization.load_pem_private_key(_normalize_pem(pem), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise PaymentConfigurationError(f"Invalid RSA private key: {exc}") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise PaymentConfigurationError("Private key is not an RSA key")
    return key


def load_public_key(pem: BytesLike) -> rsa.RSAPublicKey:
    try:
        key = serialization.load_pem_public_key(_normalize_pem(pem))
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise PaymentConfigurationError(f"Invalid RSA public key: {exc}") from exc
    if not isinstance(key, rsa.RSAPublicKey):
        raise PaymentConfigurationError("Public key is not an RSA key")
    return key


def rsa_sign(string_to_sign: str, private_key: rsa.RSAPrivateKey) -> str:
    signature = private_key.sign(_to_bytes(string_to_sign), padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(signature).decode("ascii")


def rsa_verify(string_to_sign: str, signature_b64: str, public_key: rsa.RSAPublicKey) -> bool:
    try:
        signature = base64.b64decode(signature_b64, validate=True)
    except (ValueError, TypeError):
        return False
    try:
        public_key.verify(signature, _to_bytes(string_to_sign), padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature:
        return False
    return True


def sign_snap_request(
    method: str,
    path: str,
    body: Any,
    timestamp: str,
    private_key: rsa.RSAPrivateKey,
) -> str:
    return rsa_sign(build_string_to_sign(method, path, body, timestamp), private_key)


def verify_snap_signature(
    method: str,
    path: str,
    body: Any,
    timestamp: Optional[str],
    signature: Optional[str],
    public_key: rsa.RSAPublicKey,
    *,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[datetime] = None,
) -> VerificationResult:
    if not timestamp or not signature:
        return VerificationResult.invalid("missing signature headers")
    if not is_timestamp_fresh(timestamp, tolerance_seconds, now=now):
        return VerificationResult.stale()
    if not rsa_verify(build_string_to_sign(method, path, body, timestamp), signature, public_key):
        return VerificationResult.invalid("signature mismatch")
    return VerificationResult.ok()


# --------------------------------------------------------------------------- #
# Symmetric (HMAC) payload signing
# --------------------------------------------------------------------------- #

def hmac_sign(payload: BytesLike, secret: BytesLike, timestamp: str) -> str:
    message = _to_bytes(f"{timestamp}.") + _to_bytes(payload)
    return hmac.new(_to_bytes(secret), message, hashlib.sha256).hexdigest()


def hmac_verify(payload: BytesLike, signature: Optional[str], secret: BytesLike, timestamp: str) -> bool:
    if not signature:
        return False
    return constant_time_equals(signature, hmac_sign(payload, secret, timestamp))


def verify_signed_payload(
    payload: BytesLike,
    signature: Optional[str],
    secret: Optional[BytesLike],
    timestamp: Optional[str],
    *,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[datetime] = None,
) -> VerificationResult:
    if not secret:
        return VerificationResult.invalid("no shared secret configured")
    if not timestamp or not signature:
        return VerificationResult.invalid("missing signature headers")
    if not is_timestamp_fresh(timestamp, tolerance_seconds, now=now):
        return VerificationResult.stale()
    if not hmac_verify(payload, signature, secret, timestamp):
        return VerificationResult.invalid("signature mismatch")
    return VerificationResult.ok()


# --------------------------------------------------------------------------- #
# Timestamps
# --------------------------------------------------------------------------- #

def parse_timestamp(value: Union[str, int, float, datetime, None]) -> Optional[datetime]:
    """ISO-8601 (``Z`` or offset) or epoch seconds/milliseconds -> aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) or str(value).replace(".", "", 1).isdigit():
        seconds = float(value)
        if seconds > 1e12:
            seconds /= 1000.0
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def is_timestamp_fresh(
    timestamp: Union[str, int, float, datetime, None],
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    *,
    now: Optional[datetime] = None,
) -> bool:
    ts = parse_timestamp(timestamp)
    if ts is None:
        return False
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return abs((current - ts).total_seconds()) <= tolerance_seconds


def utc_isoformat(dt: Optional[datetime] = None) -> str:
    """``2024-01-01T00:00:00.000Z`` - the timestamp format used on outbound webhooks."""
    current = (dt or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return current.strftime("%Y-%m-%dT%H:%M:%S.") + f"{current.microsecond // 1000:03d}Z"
