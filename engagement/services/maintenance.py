"""
后台维护服务

- 计数对账：锁定被对账的行后，以关系账本中的事实为准重新计算聚合计数，发现漂移时记录日志并修正
- 保留期清理：删除过期通知与超过保留期的观看记录
- 推荐分刷新：新鲜度随时间衰减，定期重算超过缓存时间的推荐分
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from engagement.core.config import settings
from engagement.core.exceptions import NotFoundError
from engagement.db.database import AsyncSessionLocal
from engagement.db.transaction import run_in_transaction
from engagement.models.comment import Comment
from engagement.models.like import LIKE_TARGET_COMMENT, LIKE_TARGET_VIDEO
from engagement.models.user import User
from engagement.models.video import Video
from engagement.models.view_history import ViewHistory
from engagement.services import ranking
from engagement.services.counter_store import CounterStore
from engagement.services.notification_service import NotificationService
from engagement.services.relationship_ledger import (
    RelationshipLedger, user_lock_statement, video_lock_statement,
)
from engagement.utils.clock import utc_now

logger = logging.getLogger(__name__)


@dataclass
class Drift:
    """一次计数漂移"""
    entity: str
    entity_id: int
    field: str
    stored: int
    actual: int


@dataclass
class ReconcileReport:
    """对账结果"""
    checked_users: int = 0
    checked_videos: int = 0
    drifts: List[Drift] = field(default_factory=list)

    def merge(self, other: "ReconcileReport") -> "ReconcileReport":
        self.checked_users += other.checked_users
        self.checked_videos += other.checked_videos
        self.drifts.extend(other.drifts)
        return self


class CounterReconciler:
    """计数对账器"""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.ledger = RelationshipLedger(session)
        self.counters = CounterStore(session)

    async def _heal(self, report: ReconcileReport, entity: str, entity_id: int, name: str, stored: int, actual: int):
        if stored == actual:
            return
        logger.warning(
            "counter drift on %s %s.%s: stored=%s actual=%s, resetting",
            entity, entity_id, name, stored, actual,
        )
        report.drifts.append(Drift(entity, entity_id, name, stored, actual))
        await self.counters.set_value(entity, entity_id, name, actual)

    async def reconcile_video(self, video_id: int) -> ReconcileReport:
        """
        对账单个视频：likes 与点赞事实数、comments_count 与未删除评论数，
        以及该视频下每条评论的 likes
        """
        report = ReconcileReport(checked_videos=1)
        owner_id = await self.session.scalar(select(Video.creator_id).where(Video.id == video_id))
        if owner_id is None:
            raise NotFoundError("视频不存在")
        # 与点赞、观看相同的加锁顺序：作者行、视频行、评论行
        await self.ledger.lock_users(owner_id)
        video = (await self.session.execute(video_lock_statement(video_id))).scalar_one()

        likes = await self.ledger.count_likes(LIKE_TARGET_VIDEO, video.id)
        await self._heal(report, "video", video.id, "likes", video.likes, likes)

        comments = await self.session.scalar(
            select(func.count(Comment.id)).where(
                and_(Comment.video_id == video.id, Comment.is_deleted == False)  # noqa: E712
            )
        ) or 0
        await self._heal(report, "video", video.id, "comments_count", video.comments_count, comments)

        comment_rows = (await self.session.execute(
            select(Comment.id, Comment.likes)
            .where(Comment.video_id == video.id)
            .order_by(Comment.id)
            .with_for_update(key_share=True)
        )).all()
        for comment_id, stored in comment_rows:
            actual = await self.ledger.count_likes(LIKE_TARGET_COMMENT, comment_id)
            await self._heal(report, "comment", comment_id, "likes", stored, actual)
        return report

    async def reconcile_actor(self, user_id: int) -> ReconcileReport:
        """
        对账单个用户：粉丝数、关注数、视频数、获赞总数、总播放数

        总播放数以视频 views 之和为准（观看记录会过期，不能作为事实来源）
        """
        report = ReconcileReport(checked_users=1)
        user = (await self.session.execute(user_lock_statement(user_id))).scalar_one_or_none()
        if not user:
            raise NotFoundError("用户不存在")

        await self._heal(report, "user", user.id, "followers_count",
                         user.followers_count, await self.ledger.count_followers(user.id))
        await self._heal(report, "user", user.id, "following_count",
                         user.following_count, await self.ledger.count_following(user.id))
        await self._heal(report, "user", user.id, "total_likes",
                         user.total_likes, await self.ledger.count_likes_received(user.id))

        videos, views = (await self.session.execute(
            select(func.count(Video.id), func.coalesce(func.sum(Video.views), 0))
            .where(Video.creator_id == user.id)
        )).one()
        await self._heal(report, "user", user.id, "videos_count", user.videos_count, videos or 0)
        await self._heal(report, "user", user.id, "total_views", user.total_views, int(views or 0))
        return report


async def reconcile_actor(session_factory: async_sessionmaker, user_id: int) -> ReconcileReport:
    """在独立事务中对账单个用户"""
    return await run_in_transaction(
        session_factory,
        lambda session: CounterReconciler(session).reconcile_actor(user_id),
        label=f"reconcile_actor({user_id})",
    )


async def reconcile_all(session_factory: async_sessionmaker, batch_size: Optional[int] = None) -> ReconcileReport:
    """
    全量对账

    按批次处理，每批一个事务，避免长事务阻塞写入
    """
    batch_size = batch_size or settings.RECONCILE_BATCH_SIZE
    report = ReconcileReport()

    async def scan(model, after_id: int) -> List[int]:
        async with session_factory() as session:
            result = await session.execute(
                select(model.id).where(model.id > after_id).order_by(model.id).limit(batch_size)
            )
            return list(result.scalars().all())

    for model, method in ((Video, "reconcile_video"), (User, "reconcile_actor")):
        last_id = 0
        while True:
            ids = await scan(model, last_id)
            if not ids:
                break

            async def work(session: AsyncSession, batch=ids, name=method) -> ReconcileReport:
                reconciler = CounterReconciler(session)
                batch_report = ReconcileReport()
                for entity_id in batch:
                    try:
                        batch_report.merge(await getattr(reconciler, name)(entity_id))
                    except NotFoundError:
                        # 扫描之后被删除
                        continue
                return batch_report

            report.merge(await run_in_transaction(session_factory, work, label=f"{method} batch"))
            last_id = ids[-1]

    if report.drifts:
        logger.warning("reconciliation healed %d drifted counter(s)", len(report.drifts))
    else:
        logger.info(
            "reconciliation found no drift (%d users, %d videos)",
            report.checked_users, report.checked_videos,
        )
    return report


@dataclass
class PurgeReport:
    notifications: int = 0
    views: int = 0


async def purge_expired(session_factory: async_sessionmaker, now: Optional[datetime] = None) -> PurgeReport:
    """删除过期通知与超过保留期的观看记录"""
    now = now or utc_now()

    async def work(session: AsyncSession) -> PurgeReport:
        notifications = await NotificationService(session).purge_expired(now)
        result = await session.execute(
            delete(ViewHistory).where(
                ViewHistory.created_at < now - timedelta(days=settings.VIEW_RETENTION_DAYS)
            )
        )
        return PurgeReport(notifications=notifications, views=result.rowcount or 0)

    report = await run_in_transaction(session_factory, work, label="purge_expired")
    if report.notifications or report.views:
        logger.info(
            "purged %d expired notification(s) and %d view record(s)",
            report.notifications, report.views,
        )
    return report


async def refresh_stale_scores(
    session_factory: async_sessionmaker,
    now: Optional[datetime] = None,
    batch_size: Optional[int] = None,
) -> int:
    """重算超过缓存时间的推荐分，返回刷新数量"""
    now = now or utc_now()
    batch_size = batch_size or settings.RECONCILE_BATCH_SIZE
    threshold = now - timedelta(seconds=settings.RANKING_STALENESS_SECONDS)
    weights = ranking.RankingWeights.from_settings()

    async def work(session: AsyncSession) -> int:
        result = await session.execute(
            select(Video)
            .where(
                and_(
                    Video.is_active == True,  # noqa: E712
                    or_(Video.score_updated_at.is_(None), Video.score_updated_at < threshold),
                )
            )
            .order_by(Video.id)
            .limit(batch_size)
        )
        videos = list(result.scalars().all())
        for video in videos:
            ranking.apply_score(video, now, weights)
        await session.flush()
        return len(videos)

    total = 0
    while True:
        refreshed = await run_in_transaction(session_factory, work, label="refresh_stale_scores")
        total += refreshed
        if refreshed < batch_size:
            break
    if total:
        logger.info("refreshed %d stale recommendation score(s)", total)
    return total


async def run_maintenance_once(session_factory: Optional[async_sessionmaker] = None):
    """执行一轮维护：对账、清理、刷新推荐分"""
    session_factory = session_factory or AsyncSessionLocal
    await reconcile_all(session_factory)
    await purge_expired(session_factory)
    await refresh_stale_scores(session_factory)


async def run_maintenance_worker(session_factory: Optional[async_sessionmaker] = None):
    """
    维护工作进程（后台运行）
    每 MAINTENANCE_INTERVAL_SECONDS 秒执行一次，失败只记录日志，不会退出
    """
    while True:
        try:
            await run_maintenance_once(session_factory)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("maintenance pass failed")

        await asyncio.sleep(settings.MAINTENANCE_INTERVAL_SECONDS)
