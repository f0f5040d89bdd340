"""
Webhook 数据库模型 - 出站投递记录与入站事件去重表
"""
from sqlalchemy import Column, DateTime, Index, Integer, JSON, String, Text, UniqueConstraint
from datetime import datetime, timezone

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebhookDeliveryModel(Base):
    __tablename__ = "webhook_deliveries"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String(100), nullable=False, index=True, comment="事件类型")
    event_id = Column(String(64), nullable=False, index=True, comment="事件ID")
    payload = Column(JSON, nullable=False, comment="投递内容")
    target_url = Column(String(1000), nullable=False, comment="目标地址")

    status = Column(String(20), nullable=False, default="pending", index=True, comment="pending/delivered/failed")
    attempt_count = Column(Integer, nullable=False, default=0, comment="已尝试次数")
    max_attempts = Column(Integer, nullable=False, default=5, comment="最大尝试次数")

    response_status_code = Column(Integer, nullable=True, comment="最近一次响应码")
    response_body = Column(Text, nullable=True, comment="最近一次响应体（截断至5000字符）")
    last_error = Column(Text, nullable=True, comment="最近一次错误")

    delivered_at = Column(DateTime(timezone=True), nullable=True, comment="投递成功时间")
    next_retry_at = Column(DateTime(timezone=True), nullable=True, index=True, comment="下次重试时间")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, comment="创建时间")
    updated_at = Column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False, comment="更新时间"
    )

    extra_metadata = Column("metadata", JSON, nullable=True, comment="扩展元数据")

    __table_args__ = (
        UniqueConstraint("event_id", "target_url", name="uq_webhook_deliveries_event_target"),
        Index("idx_webhook_deliveries_due", "status", "next_retry_at"),
    )

    def __repr__(self):
        return (
            f"<WebhookDeliveryModel(id={self.id}, event_id={self.event_id}, "
            f"status={self.status}, attempts={self.attempt_count})>"
        )


class ProcessedEventModel(Base):
    __tablename__ = "processed_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(128), nullable=False, unique=True, comment="入站事件ID")
    event_type = Column(String(100), nullable=True, comment="事件类型")
    source = Column(String(100), nullable=True, comment="来源")
    processed_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True, comment="处理时间")
