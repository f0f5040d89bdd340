"""
访问日志中间件

回调与入站事件都带签名：签名头只记录名称，请求体中的凭据字段替换为 ***。
"""
import json
import time
from typing import Any
from urllib.parse import parse_qs

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import settings
from core.logging_config import REDACTED_KEYS, get_logger
from core.settings import webhook_settings


logger = get_logger(__name__)

QUIET_PATHS = frozenset({"/health", "/docs", "/redoc", "/openapi.json"})

MASKED_FIELDS = REDACTED_KEYS | {"webhook_token", "callback_token", "admin_token", "password"}

_TRUTHY = {"true", "1", "yes"}
_FALSY = {"false", "0", "no"}


def mask_fields(data: Any) -> Any:
    """递归替换凭据字段的值"""
    if isinstance(data, dict):
        return {k: "***" if str(k).lower() in MASKED_FIELDS else mask_fields(v) for k, v in data.items()}
    if isinstance(data, list):
        return [mask_fields(item) for item in data]
    return data


def _decode_body(raw: bytes, content_type: str) -> Any:
    text = raw.decode("utf-8", errors="ignore")
    if "application/json" in content_type:
        try:
            return mask_fields(json.loads(text))
        except ValueError:
            # 被截断的 JSON
            return text
    if "application/x-www-form-urlencoded" in content_type:
        return mask_fields({k: v[0] if len(v) == 1 else v for k, v in parse_qs(text).items()})
    if "multipart/form-data" in content_type:
        return {"multipart": True}
    return text


class LoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.body_logging_default = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT and settings.DEBUG
        self.body_limit = settings.LOG_REQUEST_BODY_MAX_BYTES
        self.signature_headers = frozenset({
            "x-signature",
            "x-winpay-signature",
            "x-callback-token",
            "x-admin-token",
            webhook_settings.signature_header.lower(),
        })

    async def dispatch(self, request: Request, call_next):
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        fields = await self._describe(request)
        logger.info("request_started", **fields)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=time.perf_counter() - started,
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=True,
                **fields,
            )
            raise

        duration = time.perf_counter() - started
        self._log_completion(response, duration, fields)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    async def _describe(self, request: Request) -> dict:
        fields: dict[str, Any] = {"method": request.method, "path": request.url.path}
        if request.query_params:
            fields["query_params"] = mask_fields(dict(request.query_params))

        present = sorted(name for name in self.signature_headers if name in request.headers)
        if present:
            fields["signed_headers"] = present

        if request.method in ("POST", "PUT", "PATCH") and self._wants_body(request):
            raw = await request.body()
            if raw:
                fields["body"] = _decode_body(raw[: self.body_limit], request.headers.get("content-type", "").lower())

        user_agent = request.headers.get("User-Agent")
        if user_agent:
            fields["user_agent"] = user_agent
        return fields

    def _wants_body(self, request: Request) -> bool:
        # X-Log-Body 请求头可覆盖默认值
        flag = (request.headers.get("X-Log-Body") or "").lower()
        if flag in _TRUTHY:
            return True
        if flag in _FALSY:
            return False
        return self.body_logging_default

    @staticmethod
    def _log_completion(response: Response, duration: float, fields: dict) -> None:
        status_code = response.status_code
        if status_code >= 500:
            log = logger.error
            event = "request_server_error"
        elif status_code >= 400:
            log = logger.warning
            event = "request_client_error"
        else:
            log = logger.info
            event = "request_completed"
        log(event, status_code=status_code, duration=duration, **fields)
