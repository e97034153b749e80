"""
评论模型
"""
from sqlalchemy import Column, BigInteger, Text, Boolean, TIMESTAMP, ForeignKey
from engagement.db.database import Base, BigIntegerType
from engagement.utils.clock import utc_now


class Comment(Base):
    __tablename__ = "comments"

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    video_id = Column(BigIntegerType, ForeignKey("videos.id"), nullable=False, index=True)
    author_id = Column(BigIntegerType, ForeignKey("users.id"), nullable=False)
    parent_id = Column(BigIntegerType, ForeignKey("comments.id"), nullable=True)
    content = Column(Text, nullable=False)
    likes = Column(BigInteger, nullable=False, default=0)
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP, nullable=False, default=utc_now)
    is_edited = Column(Boolean, nullable=False, default=False)
    edited_at = Column(TIMESTAMP, nullable=True)
    updated_at = Column(TIMESTAMP, nullable=False, default=utc_now, onupdate=utc_now)
