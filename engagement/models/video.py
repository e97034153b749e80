"""
视频模型
"""
from sqlalchemy import (
    Column, BigInteger, String, Text, Boolean, Float, Integer, TIMESTAMP, ForeignKey, Index
)
from engagement.db.database import Base, BigIntegerType
from engagement.utils.clock import utc_now

VIDEO_CATEGORIES = ("short", "long")
MODERATION_STATUSES = ("pending", "approved", "rejected", "flagged")


class Video(Base):
    __tablename__ = "videos"
    __table_args__ = (
        Index("ix_videos_category_published", "category", "published_at"),
        Index("ix_videos_popularity", "views", "likes"),
        Index("ix_videos_recommendation", "recommendation_score"),
    )

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    creator_id = Column(BigIntegerType, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False, default="")
    video_url = Column(String, nullable=False)
    thumbnail_url = Column(String, nullable=False)
    duration = Column(Integer, nullable=False)  # 秒
    category = Column(String(16), nullable=False, index=True)  # short / long

    # 互动计数，只能通过 CounterStore 修改
    views = Column(BigInteger, nullable=False, default=0)
    likes = Column(BigInteger, nullable=False, default=0)
    comments_count = Column(BigInteger, nullable=False, default=0)
    shares = Column(BigInteger, nullable=False, default=0)
    completed_views = Column(BigInteger, nullable=False, default=0)  # 完播次数

    # 观看分析
    total_watch_time = Column(Float, nullable=False, default=0.0)
    average_watch_time = Column(Float, nullable=False, default=0.0)
    completion_rate = Column(Float, nullable=False, default=0.0)

    # 派生字段（缓存），由 RankingCalculator 计算
    engagement_rate = Column(Float, nullable=False, default=0.0)
    recommendation_score = Column(Float, nullable=False, default=0.0)
    score_updated_at = Column(TIMESTAMP, nullable=True)

    # 可见性与审核
    is_public = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    moderation_status = Column(String(16), nullable=False, default="approved")
    allow_comments = Column(Boolean, nullable=False, default=True)

    published_at = Column(TIMESTAMP, nullable=False, default=utc_now, index=True)
    created_at = Column(TIMESTAMP, nullable=False, default=utc_now)
    updated_at = Column(TIMESTAMP, nullable=False, default=utc_now, onupdate=utc_now)
