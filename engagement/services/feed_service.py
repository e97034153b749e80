"""
Feed组装服务

所有Feed都是纯读操作：
- 匿名或冷启动用户：按 (播放 desc, 点赞 desc, 发布时间 desc) 排序
- 有观看历史的登录用户：按 (推荐分 desc, 发布时间 desc) 排序
- 热门：最近 TRENDING_WINDOW_DAYS 天发布的视频，按 (播放 desc, 点赞 desc) 排序
- 关注Feed：关注用户发布的视频，按发布时间倒序；未关注任何人时返回空页

只有公开、未删除、审核通过的视频会出现在Feed中。
总数与当前页在同一条SQL中计算（即使请求的页超出范围），保证两者基于同一快照。
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import and_, func, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from engagement.core.config import settings
from engagement.core.exceptions import ValidationError
from engagement.models.follow import Follow
from engagement.models.video import Video, VIDEO_CATEGORIES
from engagement.models.view_history import ViewHistory
from engagement.utils.clock import utc_now

logger = logging.getLogger(__name__)

FEED_MODE_POPULAR = "popular"
FEED_MODE_PERSONALIZED = "personalized"
FEED_MODE_FOLLOWING = "following"
FEED_MODE_TRENDING = "trending"


@dataclass
class FeedPage:
    """一页Feed结果"""
    items: List[Video]
    total: int
    page: int
    page_size: int
    mode: str

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size


def eligible_conditions(category: Optional[str] = None) -> list:
    """Feed候选视频的公共过滤条件"""
    conditions = [
        Video.is_public == True,  # noqa: E712
        Video.is_active == True,  # noqa: E712
        Video.moderation_status == "approved",
    ]
    if category:
        if category not in VIDEO_CATEGORIES:
            raise ValidationError(f"不支持的视频分类: {category}")
        conditions.append(Video.category == category)
    return conditions


class FeedService:
    """Feed服务"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _page_args(self, page: int, page_size: Optional[int]):
        page_size = page_size or settings.FEED_DEFAULT_PAGE_SIZE
        if page < 1 or page_size < 1:
            raise ValidationError("分页参数必须为正整数")
        return page, min(page_size, settings.FEED_MAX_PAGE_SIZE)

    async def _paginate(self, conditions: list, order_by: list, page: int, page_size: int, mode: str) -> FeedPage:
        """
        执行分页查询

        单行的总数子查询左连接当前页：页超出范围时仍返回一行（视频列为NULL），
        所以总数与当前页永远来自同一条语句
        """
        totals = (
            select(func.count(Video.id).label("total_count"))
            .where(and_(*conditions))
            .subquery("totals")
        )
        page_ids = (
            select(Video.id.label("video_id"), func.row_number().over(order_by=order_by).label("position"))
            .where(and_(*conditions))
            .order_by(*order_by)
            .offset((page - 1) * page_size)
            .limit(page_size)
            .subquery("page_ids")
        )
        result = await self.session.execute(
            select(totals.c.total_count, Video)
            .select_from(totals)
            .outerjoin(page_ids, true())
            .outerjoin(Video, Video.id == page_ids.c.video_id)
            .order_by(page_ids.c.position)
        )
        rows = result.all()
        return FeedPage(
            items=[row[1] for row in rows if row[1] is not None],
            total=rows[0].total_count if rows else 0,
            page=page,
            page_size=page_size,
            mode=mode,
        )

    async def has_watch_history(self, viewer_id: int) -> bool:
        found = await self.session.scalar(
            select(ViewHistory.id).where(ViewHistory.user_id == viewer_id).limit(1)
        )
        return found is not None

    async def get_feed(
        self,
        viewer_id: Optional[int] = None,
        category: Optional[str] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> FeedPage:
        """
        首页Feed

        Args:
            viewer_id: 观看者ID，匿名为None
            category: 视频分类 short / long，None表示不限
        """
        page, page_size = self._page_args(page, page_size)
        conditions = eligible_conditions(category)

        if viewer_id is not None and await self.has_watch_history(viewer_id):
            order_by = [Video.recommendation_score.desc(), Video.published_at.desc(), Video.id.desc()]
            mode = FEED_MODE_PERSONALIZED
        else:
            order_by = [Video.views.desc(), Video.likes.desc(), Video.published_at.desc(), Video.id.desc()]
            mode = FEED_MODE_POPULAR

        return await self._paginate(conditions, order_by, page, page_size, mode)

    async def get_following_feed(
        self,
        viewer_id: int,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> FeedPage:
        """关注用户的视频Feed"""
        page, page_size = self._page_args(page, page_size)
        followees = select(Follow.followee_id).where(Follow.follower_id == viewer_id)

        conditions = eligible_conditions()
        conditions.append(Video.creator_id.in_(followees))
        order_by = [Video.published_at.desc(), Video.id.desc()]
        return await self._paginate(conditions, order_by, page, page_size, FEED_MODE_FOLLOWING)

    async def get_trending(
        self,
        category: Optional[str] = None,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[Video]:
        """热门视频"""
        limit = limit or settings.TRENDING_DEFAULT_LIMIT
        if limit < 1:
            raise ValidationError("limit 必须为正整数")
        limit = min(limit, settings.FEED_MAX_PAGE_SIZE)
        since = (now or utc_now()) - timedelta(days=settings.TRENDING_WINDOW_DAYS)

        conditions = eligible_conditions(category)
        conditions.append(Video.published_at >= since)
        result = await self.session.execute(
            select(Video)
            .where(and_(*conditions))
            .order_by(Video.views.desc(), Video.likes.desc(), Video.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_user_videos(
        self,
        creator_id: int,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> FeedPage:
        """某个创作者的公开视频（最新在前）"""
        page, page_size = self._page_args(page, page_size)
        conditions = eligible_conditions()
        conditions.append(Video.creator_id == creator_id)
        return await self._paginate(
            conditions, [Video.published_at.desc(), Video.id.desc()], page, page_size, "creator"
        )
