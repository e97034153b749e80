"""
用户模型
"""
from sqlalchemy import Column, BigInteger, String, Boolean, TIMESTAMP
from engagement.db.database import Base, BigIntegerType
from engagement.utils.clock import utc_now


class User(Base):
    __tablename__ = "users"

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    username = Column(String(64), unique=True, nullable=True)
    display_name = Column(String(50), nullable=False, default="")
    email = Column(String(255), unique=True, nullable=True)
    avatar_url = Column(String, nullable=True)
    created_at = Column(TIMESTAMP, nullable=False, default=utc_now)
    updated_at = Column(TIMESTAMP, nullable=False, default=utc_now, onupdate=utc_now)
    is_active = Column(Boolean, nullable=False, default=True)
    is_deleted = Column(Boolean, nullable=False, default=False)

    # 聚合计数，只能通过 CounterStore 修改，由对账任务与关系账本保持一致
    followers_count = Column(BigInteger, nullable=False, default=0)
    following_count = Column(BigInteger, nullable=False, default=0)
    videos_count = Column(BigInteger, nullable=False, default=0)
    total_views = Column(BigInteger, nullable=False, default=0)
    total_likes = Column(BigInteger, nullable=False, default=0)

    # 通知偏好
    notify_likes = Column(Boolean, nullable=False, default=True)
    notify_comments = Column(Boolean, nullable=False, default=True)
    notify_follows = Column(Boolean, nullable=False, default=True)
    notify_mentions = Column(Boolean, nullable=False, default=True)
