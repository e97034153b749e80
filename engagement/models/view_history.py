"""
观看记录模型（只追加，超过保留期后清理）
"""
from sqlalchemy import Column, String, Float, TIMESTAMP, ForeignKey
from engagement.db.database import Base, BigIntegerType
from engagement.utils.clock import utc_now


class ViewHistory(Base):
    __tablename__ = "view_history"

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    user_id = Column(BigIntegerType, ForeignKey("users.id"), nullable=True, index=True)  # 匿名观看为空
    video_id = Column(BigIntegerType, ForeignKey("videos.id"), nullable=False, index=True)
    watch_duration = Column(Float, nullable=False)
    completion_percentage = Column(Float, nullable=False)
    session_id = Column(String(64), nullable=True)
    device_type = Column(String(16), nullable=False, default="unknown")
    platform = Column(String(16), nullable=False, default="unknown")
    created_at = Column(TIMESTAMP, nullable=False, default=utc_now, index=True)
