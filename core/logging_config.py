"""
structlog 日志配置

structlog 与标准库 logging（uvicorn / celery / httpx）共用一条处理链；
凭据类字段在渲染前统一脱敏。
"""
import json
import logging
from typing import Any, List

import structlog
from structlog.contextvars import merge_contextvars
from structlog.dev import ConsoleRenderer
from structlog.processors import JSONRenderer, TimeStamper, add_log_level
from structlog.stdlib import ProcessorFormatter

from core.config import settings


REDACTED_KEYS = frozenset({
    "secret",
    "secret_key",
    "server_key",
    "private_key",
    "checkout_secret",
    "signature",
    "signature_key",
    "x-signature",
    "x-winpay-signature",
    "x-callback-token",
    "x-admin-token",
    "authorization",
    "token",
})


def redact_secrets(_logger: Any, _method: str, event_dict: dict) -> dict:
    """替换凭据字段的值（顶层及一层嵌套 dict）"""
    for key, value in list(event_dict.items()):
        if key.lower() in REDACTED_KEYS:
            event_dict[key] = "***"
        elif isinstance(value, dict):
            event_dict[key] = {k: "***" if str(k).lower() in REDACTED_KEYS else v for k, v in value.items()}
    return event_dict


def _json_dumps(obj, default=None, **kwargs):
    return json.dumps(obj, ensure_ascii=False, default=default, **kwargs)


def get_renderer() -> Any:
    """DEBUG 输出彩色控制台格式，其余环境输出 JSON"""
    if settings.DEBUG:
        return ConsoleRenderer(colors=True)
    return JSONRenderer(serializer=_json_dumps)


def _pre_chain() -> List[Any]:
    return [
        merge_contextvars,
        add_log_level,
        TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def configure_logging() -> None:
    pre_chain = _pre_chain()
    structlog.configure(
        processors=[*pre_chain, ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[ProcessorFormatter.remove_processors_meta, get_renderer()],
        )
    )

    level = logging.DEBUG if settings.DEBUG else logging.INFO
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    # httpx 每个请求都打 INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if settings.DEBUG else logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


configure_logging()
