"""
用户统计服务
"""
from typing import Dict, List, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from engagement.core.config import settings
from engagement.core.exceptions import NotFoundError, ValidationError
from engagement.models.user import User
from engagement.models.video import Video
from engagement.services.maintenance import reconcile_actor

LEADERBOARD_SORTS = {
    "followers": User.followers_count,
    "views": User.total_views,
    "likes": User.total_likes,
}


class UserStatsService:
    """用户统计服务"""

    def __init__(self, session: AsyncSession, session_factory: Optional[async_sessionmaker] = None):
        self.session = session
        self.session_factory = session_factory

    async def get_user(self, user_id: int) -> User:
        user = (await self.session.execute(
            select(User).where(and_(User.id == user_id, User.is_deleted == False))  # noqa: E712
        )).scalar_one_or_none()
        if not user:
            raise NotFoundError("用户不存在")
        return user

    async def get_stats(self, user_id: int) -> User:
        """
        获取用户聚合计数

        开启 RECONCILE_ON_READ 时先与关系账本对账
        """
        if settings.RECONCILE_ON_READ and self.session_factory is not None:
            await self.get_user(user_id)
            await reconcile_actor(self.session_factory, user_id)
            self.session.expire_all()
        return await self.get_user(user_id)

    async def leaderboard(self, sort_by: str = "followers", limit: int = 50) -> List[User]:
        """排行榜"""
        if sort_by not in LEADERBOARD_SORTS:
            raise ValidationError(f"不支持的排序字段: {sort_by}")
        result = await self.session.execute(
            select(User)
            .where(and_(User.is_active == True, User.is_deleted == False))  # noqa: E712
            .order_by(LEADERBOARD_SORTS[sort_by].desc(), User.id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def creator_analytics(self, user_id: int) -> Dict:
        """创作者数据分析：账户计数、视频汇总、播放量前五的视频"""
        user = await self.get_user(user_id)
        totals = (await self.session.execute(
            select(
                func.count(Video.id),
                func.coalesce(func.sum(Video.views), 0),
                func.coalesce(func.sum(Video.likes), 0),
                func.coalesce(func.sum(Video.comments_count), 0),
                func.coalesce(func.sum(Video.shares), 0),
            ).where(Video.creator_id == user.id)
        )).one()
        count, views, likes, comments, shares = (int(value or 0) for value in totals)

        top = (await self.session.execute(
            select(Video)
            .where(Video.creator_id == user.id)
            .order_by(Video.views.desc(), Video.id.asc())
            .limit(5)
        )).scalars().all()

        return {
            "profile": {
                "followersCount": user.followers_count,
                "followingCount": user.following_count,
                "videosCount": user.videos_count,
                "totalViews": user.total_views,
                "totalLikes": user.total_likes,
            },
            "videos": {
                "total": count,
                "totalViews": views,
                "totalLikes": likes,
                "totalComments": comments,
                "totalShares": shares,
                "averageViews": round(views / count) if count else 0,
                "averageLikes": round(likes / count) if count else 0,
            },
            "topVideos": [
                {
                    "id": video.id,
                    "title": video.title,
                    "views": video.views,
                    "likes": video.likes,
                    "comments": video.comments_count,
                    "thumbnailUrl": video.thumbnail_url,
                }
                for video in top
            ],
        }
