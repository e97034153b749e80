"""
点赞模型（关系账本中的点赞事实）
"""
from sqlalchemy import Column, String, TIMESTAMP, ForeignKey, UniqueConstraint, Index
from engagement.db.database import Base, BigIntegerType
from engagement.utils.clock import utc_now

LIKE_TARGET_VIDEO = "video"
LIKE_TARGET_COMMENT = "comment"
LIKE_TARGET_TYPES = (LIKE_TARGET_VIDEO, LIKE_TARGET_COMMENT)


class Like(Base):
    __tablename__ = "likes"
    __table_args__ = (
        UniqueConstraint("user_id", "target_type", "target_id", name="uq_likes_actor_target"),
        Index("ix_likes_target", "target_type", "target_id"),
    )

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    user_id = Column(BigIntegerType, ForeignKey("users.id"), nullable=False, index=True)
    target_type = Column(String(16), nullable=False)
    target_id = Column(BigIntegerType, nullable=False)
    # 点赞评论时也记录所属视频，便于删除视频时级联清理
    video_id = Column(BigIntegerType, ForeignKey("videos.id"), nullable=True, index=True)
    created_at = Column(TIMESTAMP, nullable=False, default=utc_now)
