"""
通知模型
"""
from sqlalchemy import (
    Column, String, Text, Boolean, TIMESTAMP, ForeignKey, UniqueConstraint, Index
)
from engagement.db.database import Base, BigIntegerType
from engagement.utils.clock import utc_now

NOTIFICATION_KINDS = ("like", "comment", "follow", "reply", "mention", "share")


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        # 同一事件对同一接收者最多一条通知
        UniqueConstraint("event_id", "recipient_id", name="uq_notifications_event_recipient"),
        Index("ix_notifications_recipient_read", "recipient_id", "is_read", "created_at"),
    )

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    recipient_id = Column(BigIntegerType, ForeignKey("users.id"), nullable=False)
    sender_id = Column(BigIntegerType, ForeignKey("users.id"), nullable=False)
    kind = Column(String(16), nullable=False)
    video_id = Column(BigIntegerType, nullable=True)
    comment_id = Column(BigIntegerType, nullable=True)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(TIMESTAMP, nullable=True)
    event_id = Column(String(36), nullable=False)
    created_at = Column(TIMESTAMP, nullable=False, default=utc_now)
    expires_at = Column(TIMESTAMP, nullable=False, index=True)
