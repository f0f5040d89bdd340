"""
Webhook 领域实体 - 出站事件投递记录
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional, Sequence

from domain.common.exceptions import DomainValidationException
from domain.payment.entity import _ensure_utc


RESPONSE_BODY_LIMIT = 5000


class WebhookEventType(str, Enum):
    USER_VERIFIED = "user.verified"
    USER_DELETED = "user.deleted"
    LICENSE_ASSIGNED = "license.assigned"
    TOKEN_BALANCE_UPDATED = "token.balance_updated"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


def retry_delay_for(attempt_count: int, delays: Sequence[int]) -> int:
    """第 N 次失败后的等待秒数：delays[N-1]，超出部分复用最后一项"""
    if not delays:
        raise DomainValidationException("重试间隔配置不能为空", field="retry_delays")
    index = min(max(attempt_count, 1), len(delays)) - 1
    return int(delays[index])


@dataclass
class WebhookDelivery:
    """
    单个 (事件, 目标地址) 的投递记录

    业务规则：
    1. attempt_count 单调递增，且不超过 max_attempts
    2. delivered / failed 为终态
    3. pending 且 attempt_count > 0 时必须有 next_retry_at
    """

    id: Optional[int]
    event_type: str
    event_id: str
    payload: dict[str, Any]
    target_url: str
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempt_count: int = 0
    max_attempts: int = 5
    response_status_code: Optional[int] = None
    response_body: Optional[str] = None
    last_error: Optional[str] = None
    delivered_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.max_attempts <= 0:
            raise DomainValidationException("max_attempts 必须大于0", field="max_attempts")
        if isinstance(self.status, str):
            self.status = DeliveryStatus(self.status)
        self.delivered_at = _ensure_utc(self.delivered_at)
        self.next_retry_at = _ensure_utc(self.next_retry_at)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    @property
    def is_terminal(self) -> bool:
        return self.status is not DeliveryStatus.PENDING

    @property
    def attempts_remaining(self) -> int:
        return max(self.max_attempts - self.attempt_count, 0)

    def _begin_attempt(self) -> None:
        if self.is_terminal:
            raise DomainValidationException(
                f"投递记录已处于终态 {self.status.value}", field="status"
            )
        if self.attempt_count >= self.max_attempts:
            raise DomainValidationException("已达到最大投递次数", field="attempt_count")
        self.attempt_count += 1

    def record_success(self, status_code: int, body: Optional[str], now: datetime) -> None:
        self._begin_attempt()
        self.status = DeliveryStatus.DELIVERED
        self.response_status_code = status_code
        self.response_body = (body or "")[:RESPONSE_BODY_LIMIT]
        self.last_error = None
        self.delivered_at = _ensure_utc(now)
        self.next_retry_at = None
        self.updated_at = self.delivered_at

    def record_failure(
        self,
        error: str,
        now: datetime,
        delays: Sequence[int],
        *,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        """记录一次失败；未达上限则按退避表安排下一次重试，否则进入 failed 终态"""
        self._begin_attempt()
        now = _ensure_utc(now)
        self.response_status_code = status_code
        if body is not None:
            self.response_body = body[:RESPONSE_BODY_LIMIT]
        self.last_error = error
        self.updated_at = now
        if self.attempt_count >= self.max_attempts:
            self.status = DeliveryStatus.FAILED
            self.next_retry_at = None
        else:
            self.status = DeliveryStatus.PENDING
            self.next_retry_at = now + timedelta(seconds=retry_delay_for(self.attempt_count, delays))

    def record_permanent_failure(self, error: str, now: datetime) -> None:
        """不可恢复的失败（例如目标配置已删除），不消耗重试次数"""
        self.status = DeliveryStatus.FAILED
        self.last_error = error
        self.next_retry_at = None
        self.updated_at = _ensure_utc(now)

    def is_due(self, now: datetime) -> bool:
        return (
            self.status is DeliveryStatus.PENDING
            and self.attempt_count < self.max_attempts
            and self.next_retry_at is not None
            and self.next_retry_at < _ensure_utc(now)
        )


@dataclass
class ProcessedEvent:
    """已处理的入站事件（去重用）"""

    event_id: str
    event_type: Optional[str] = None
    source: Optional[str] = None
    processed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        self.processed_at = _ensure_utc(self.processed_at)
