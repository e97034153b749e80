"""
关注关系模型（关系账本中的关注事实）
"""
from sqlalchemy import Column, TIMESTAMP, ForeignKey, UniqueConstraint, CheckConstraint, Index
from engagement.db.database import Base, BigIntegerType
from engagement.utils.clock import utc_now


class Follow(Base):
    __tablename__ = "follows"
    __table_args__ = (
        UniqueConstraint("follower_id", "followee_id", name="uq_follows_pair"),
        CheckConstraint("follower_id <> followee_id", name="ck_follows_no_self"),
        Index("ix_follows_followee_created", "followee_id", "created_at"),
    )

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    follower_id = Column(BigIntegerType, ForeignKey("users.id"), nullable=False, index=True)
    followee_id = Column(BigIntegerType, ForeignKey("users.id"), nullable=False)
    created_at = Column(TIMESTAMP, nullable=False, default=utc_now)
