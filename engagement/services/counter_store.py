"""
计数存储服务

所有聚合计数（粉丝数、关注数、点赞数、评论数、播放数、分享数）只能通过这里修改：
- 增减在数据库端原子执行，减到0为止，不会出现负数
- 同一事件的多个增量在调用方的同一事务中执行，要么全部生效要么全部回滚
- 视频计数变化后立即重新计算推荐分（写穿缓存）
"""
import logging
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from engagement.core.config import settings
from engagement.core.exceptions import NotFoundError
from engagement.models.comment import Comment
from engagement.models.like import LIKE_TARGET_COMMENT, LIKE_TARGET_VIDEO
from engagement.models.user import User
from engagement.models.video import Video
from engagement.services import ranking
from engagement.services.events import (
    RelationshipChanged, VERB_FOLLOW, VERB_UNFOLLOW, VERB_LIKE, VERB_UNLIKE,
)
from engagement.utils.clock import utc_now

logger = logging.getLogger(__name__)

# 每类实体允许修改的计数字段
COUNTER_FIELDS = {
    "user": (User, ("followers_count", "following_count", "videos_count", "total_views", "total_likes")),
    "video": (Video, ("views", "likes", "comments_count", "shares", "completed_views")),
    "comment": (Comment, ("likes",)),
}


class CounterStore:
    """计数存储"""

    def __init__(self, session: AsyncSession, weights: Optional[ranking.RankingWeights] = None):
        self.session = session
        self.weights = weights

    @staticmethod
    def _resolve(entity: str, fields):
        if entity not in COUNTER_FIELDS:
            raise ValueError(f"未知的计数实体: {entity}")
        model, allowed = COUNTER_FIELDS[entity]
        for name in fields:
            if name not in allowed:
                raise ValueError(f"{entity} 不支持计数字段: {name}")
        return model

    async def apply_delta(self, entity: str, entity_id: int, field: str, delta: int, now: datetime = None):
        """原子增减单个计数字段（下限为0）"""
        await self.apply_deltas(entity, entity_id, {field: delta}, now=now)

    async def apply_deltas(self, entity: str, entity_id: int, deltas: Dict[str, int], now: datetime = None):
        """
        在一条UPDATE语句中原子增减同一实体的多个计数字段

        Raises:
            NotFoundError: 实体不存在
        """
        deltas = {name: value for name, value in deltas.items() if value}
        if not deltas:
            return
        model = self._resolve(entity, deltas)

        values = {}
        for name, delta in deltas.items():
            column = getattr(model, name)
            values[name] = case((column + delta < 0, 0), else_=column + delta)

        result = await self.session.execute(
            update(model)
            .where(model.id == entity_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"{entity} {entity_id} 不存在")

        if entity == "video":
            await self.rescore_video(entity_id, now or utc_now())

    async def set_value(self, entity: str, entity_id: int, field: str, value: int, now: datetime = None):
        """把计数重置为真实值（对账使用）"""
        model = self._resolve(entity, (field,))
        await self.session.execute(
            update(model)
            .where(model.id == entity_id)
            .values(**{field: max(0, int(value))})
            .execution_options(synchronize_session=False)
        )
        if entity == "video":
            await self.rescore_video(entity_id, now or utc_now())

    async def rescore_video(self, video_id: int, now: datetime) -> Optional[Video]:
        """重新读取视频计数并写回推荐分、互动率、完播率"""
        result = await self.session.execute(
            select(Video).where(Video.id == video_id).execution_options(populate_existing=True)
        )
        video = result.scalar_one_or_none()
        if video is None:
            return None
        ranking.apply_score(video, now, self.weights)
        await self.session.flush()
        return video

    async def apply_relationship(self, event: RelationshipChanged):
        """
        消费关系变更事件

        关注：关注者的 following_count 与被关注者的 followers_count 同号增减
        点赞视频：视频 likes 与作者 total_likes 同号增减
        点赞评论：只修改评论 likes
        """
        if event.verb in (VERB_FOLLOW, VERB_UNFOLLOW):
            await self.apply_delta("user", event.actor_id, "following_count", event.delta)
            await self.apply_delta("user", event.target_id, "followers_count", event.delta)
        elif event.verb in (VERB_LIKE, VERB_UNLIKE):
            if event.target_type == LIKE_TARGET_VIDEO:
                await self.apply_delta("video", event.target_id, "likes", event.delta, now=event.occurred_at)
                await self.apply_delta("user", event.target_owner_id, "total_likes", event.delta)
            elif event.target_type == LIKE_TARGET_COMMENT:
                await self.apply_delta("comment", event.target_id, "likes", event.delta)
        else:
            raise ValueError(f"不支持的关系事件: {event.verb}")

    async def apply_view(self, video: Video, watch_duration: float, completion_percentage: float, now: datetime):
        """
        记录一次观看：视频 views 与作者 total_views 各加1，
        完播时 completed_views 加1，并更新观看时长统计
        """
        completed = 1 if completion_percentage >= settings.RANKING_COMPLETION_THRESHOLD else 0
        await self.session.execute(
            update(Video)
            .where(Video.id == video.id)
            .values(total_watch_time=Video.total_watch_time + max(0.0, watch_duration))
            .execution_options(synchronize_session=False)
        )
        await self.apply_deltas("video", video.id, {"views": 1, "completed_views": completed}, now=now)
        await self.apply_delta("user", video.creator_id, "total_views", 1)

        refreshed = await self.session.get(Video, video.id)
        refreshed.average_watch_time = (
            refreshed.total_watch_time / refreshed.views if refreshed.views else 0.0
        )
        await self.session.flush()
        return refreshed
