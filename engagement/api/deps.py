"""
路由公共依赖
"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from engagement.db.database import get_session_factory
from engagement.services.engagement_service import EngagementService


def get_engagement_service(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> EngagementService:
    return EngagementService(session_factory)
