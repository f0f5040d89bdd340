"""
Webhook 仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import ProcessedEvent, WebhookDelivery


class WebhookDeliveryRepository(ABC):
    """出站投递记录仓储"""

    @abstractmethod
    async def create(self, delivery: WebhookDelivery) -> WebhookDelivery:
        pass

    @abstractmethod
    async def get(self, delivery_id: int) -> Optional[WebhookDelivery]:
        pass

    @abstractmethod
    async def list_due(self, now: datetime, limit: int = 100) -> List[WebhookDelivery]:
        """pending 且 next_retry_at < now 且 attempt_count < max_attempts，按 next_retry_at 升序"""
        pass

    @abstractmethod
    async def list_by_event_id(self, event_id: str) -> List[WebhookDelivery]:
        pass

    @abstractmethod
    async def claim(
        self, delivery_id: int, expected_attempt_count: int, now: datetime, lease_until: datetime
    ) -> bool:
        """
        条件更新抢占一次投递：仅当记录仍为 pending、attempt_count 未变化且
        没有未过期的租约（next_retry_at 为空或早于 now）时，
        把 next_retry_at 推到 lease_until。返回 False 表示已被其他执行者抢占。
        """
        pass

    @abstractmethod
    async def save_attempt(self, delivery: WebhookDelivery, attempt_no: int) -> bool:
        """
        持久化一次投递结果。条件：数据库中的 attempt_count == attempt_no - 1，
        保证同一记录的尝试串行化且 attempt_count 单调递增。
        """
        pass

    @abstractmethod
    async def mark_failed(self, delivery: WebhookDelivery) -> bool:
        """持久化永久失败（不增加 attempt_count）"""
        pass


class ProcessedEventRepository(ABC):
    """入站事件去重仓储"""

    @abstractmethod
    async def mark_processed(self, event: ProcessedEvent) -> bool:
        """首次记录返回 True；event_id 已存在返回 False"""
        pass

    @abstractmethod
    async def exists(self, event_id: str) -> bool:
        pass

    @abstractmethod
    async def purge_older_than(self, cutoff: datetime) -> int:
        pass
