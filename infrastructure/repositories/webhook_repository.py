"""
Webhook 仓储实现 - 出站投递记录与入站事件去重
"""
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.webhook.entity import DeliveryStatus, ProcessedEvent, WebhookDelivery
from domain.webhook.repository import ProcessedEventRepository, WebhookDeliveryRepository
from infrastructure.models.webhook import ProcessedEventModel, WebhookDeliveryModel
from core.logging_config import get_logger


logger = get_logger(__name__)

_PENDING = DeliveryStatus.PENDING.value


class SQLAlchemyWebhookDeliveryRepository(WebhookDeliveryRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: WebhookDeliveryModel) -> WebhookDelivery:
        return WebhookDelivery(
            id=model.id,
            event_type=model.event_type,
            event_id=model.event_id,
            payload=model.payload or {},
            target_url=model.target_url,
            status=DeliveryStatus(model.status),
            attempt_count=model.attempt_count,
            max_attempts=model.max_attempts,
            response_status_code=model.response_status_code,
            response_body=model.response_body,
            last_error=model.last_error,
            delivered_at=model.delivered_at,
            next_retry_at=model.next_retry_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
            metadata=model.extra_metadata or {},
        )

    async def create(self, delivery: WebhookDelivery) -> WebhookDelivery:
        now = datetime.now(timezone.utc)
        db_delivery = WebhookDeliveryModel(
            event_type=delivery.event_type,
            event_id=delivery.event_id,
            payload=delivery.payload,
            target_url=delivery.target_url,
            status=delivery.status.value,
            attempt_count=delivery.attempt_count,
            max_attempts=delivery.max_attempts,
            next_retry_at=delivery.next_retry_at,
            created_at=delivery.created_at or now,
            updated_at=delivery.updated_at or now,
            extra_metadata=delivery.metadata,
        )
        self.session.add(db_delivery)
        await self.session.flush()
        await self.session.refresh(db_delivery)
        return self._to_entity(db_delivery)

    async def get(self, delivery_id: int) -> Optional[WebhookDelivery]:
        result = await self.session.execute(
            select(WebhookDeliveryModel).where(WebhookDeliveryModel.id == delivery_id)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def list_due(self, now: datetime, limit: int = 100) -> List[WebhookDelivery]:
        result = await self.session.execute(
            select(WebhookDeliveryModel)
            .where(
                WebhookDeliveryModel.status == _PENDING,
                WebhookDeliveryModel.next_retry_at.is_not(None),
                WebhookDeliveryModel.next_retry_at < now,
                WebhookDeliveryModel.attempt_count < WebhookDeliveryModel.max_attempts,
            )
            .order_by(WebhookDeliveryModel.next_retry_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_by_event_id(self, event_id: str) -> List[WebhookDelivery]:
        result = await self.session.execute(
            select(WebhookDeliveryModel)
            .where(WebhookDeliveryModel.event_id == event_id)
            .order_by(WebhookDeliveryModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def claim(
        self, delivery_id: int, expected_attempt_count: int, now: datetime, lease_until: datetime
    ) -> bool:
        result = await self.session.execute(
            update(WebhookDeliveryModel)
            .where(
                WebhookDeliveryModel.id == delivery_id,
                WebhookDeliveryModel.status == _PENDING,
                WebhookDeliveryModel.attempt_count == expected_attempt_count,
                or_(
                    WebhookDeliveryModel.next_retry_at.is_(None),
                    WebhookDeliveryModel.next_retry_at < now,
                ),
            )
            .values(next_retry_at=lease_until, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def save_attempt(self, delivery: WebhookDelivery, attempt_no: int) -> bool:
        result = await self.session.execute(
            update(WebhookDeliveryModel)
            .where(
                WebhookDeliveryModel.id == delivery.id,
                WebhookDeliveryModel.status == _PENDING,
                WebhookDeliveryModel.attempt_count == attempt_no - 1,
            )
            .values(
                status=delivery.status.value,
                attempt_count=delivery.attempt_count,
                response_status_code=delivery.response_status_code,
                response_body=delivery.response_body,
                last_error=delivery.last_error,
                delivered_at=delivery.delivered_at,
                next_retry_at=delivery.next_retry_at,
                updated_at=delivery.updated_at or datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "webhook_attempt_conflict",
                delivery_id=delivery.id,
                attempt_no=attempt_no,
            )
            return False
        return True

    async def mark_failed(self, delivery: WebhookDelivery) -> bool:
        result = await self.session.execute(
            update(WebhookDeliveryModel)
            .where(
                WebhookDeliveryModel.id == delivery.id,
                WebhookDeliveryModel.status == _PENDING,
            )
            .values(
                status=DeliveryStatus.FAILED.value,
                last_error=delivery.last_error,
                next_retry_at=None,
                updated_at=delivery.updated_at or datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class SQLAlchemyProcessedEventRepository(ProcessedEventRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def mark_processed(self, event: ProcessedEvent) -> bool:
        values = {
            "event_id": event.event_id,
            "event_type": event.event_type,
            "source": event.source,
            "processed_at": event.processed_at,
        }
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = pg_insert(ProcessedEventModel).values(**values).on_conflict_do_nothing(
                index_elements=["event_id"]
            )
        elif dialect == "sqlite":
            stmt = sqlite_insert(ProcessedEventModel).values(**values).on_conflict_do_nothing(
                index_elements=["event_id"]
            )
        else:
            if await self.exists(event.event_id):
                return False
            self.session.add(ProcessedEventModel(**values))
            try:
                await self.session.flush()
            except IntegrityError:
                await self.session.rollback()
                return False
            return True
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def exists(self, event_id: str) -> bool:
        result = await self.session.execute(
            select(ProcessedEventModel.id).where(ProcessedEventModel.event_id == event_id)
        )
        return result.first() is not None

    async def purge_older_than(self, cutoff: datetime) -> int:
        result = await self.session.execute(
            delete(ProcessedEventModel)
            .where(ProcessedEventModel.processed_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
