"""
互动引擎服务

所有会修改关系事实或聚合计数的操作都必须经过这里：
关系账本切换 -> 计数存储增减 -> 推荐分重算 -> 通知分发，在同一个数据库事务中完成；
同一 (actor, target) 键上的请求在进程内串行执行。事务提交后再把新通知推送给事件总线。
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from engagement.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from engagement.db.database import AsyncSessionLocal
from engagement.db.transaction import run_in_transaction
from engagement.models.comment import Comment
from engagement.models.like import Like, LIKE_TARGET_COMMENT, LIKE_TARGET_VIDEO
from engagement.models.notification import Notification
from engagement.models.user import User
from engagement.models.video import Video, VIDEO_CATEGORIES, MODERATION_STATUSES
from engagement.models.view_history import ViewHistory
from engagement.services import ranking
from engagement.services.counter_store import CounterStore
from engagement.services.events import (
    EngagementEventBus, RelationshipChanged, VERB_COMMENT, VERB_SHARE, event_bus,
)
from engagement.services.notification_service import NotificationService
from engagement.services.relationship_ledger import RelationshipLedger, video_lock_statement
from engagement.utils.clock import utc_now
from engagement.utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)

# 进程内按键串行化切换操作
toggle_locks = KeyedLock()

DEVICE_TYPES = ("mobile", "tablet", "desktop", "unknown")
PLATFORMS = ("web", "ios", "android", "unknown")


@dataclass
class FollowToggleResult:
    following: bool
    followers_count: int
    event_id: Optional[str]


@dataclass
class LikeToggleResult:
    liked: bool
    likes: int
    event_id: Optional[str]


@dataclass
class ViewResult:
    views: int
    completion_rate: float
    average_watch_time: float


@dataclass
class DeleteVideoResult:
    video_id: int
    removed_likes: int
    removed_views: int
    removed_comments: int


class EngagementService:
    """互动引擎"""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        bus: Optional[EngagementEventBus] = None,
        weights: Optional[ranking.RankingWeights] = None,
        locks: Optional[KeyedLock] = None,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.bus = bus or event_bus
        self.weights = weights
        self.locks = locks or toggle_locks

    async def _publish(self, notifications: List[Notification]):
        """事务提交后推送新通知"""
        for notification in notifications:
            await self.bus.publish(notification.recipient_id, {
                "type": "notification_created",
                "data": {
                    "id": notification.id,
                    "kind": notification.kind,
                    "senderId": notification.sender_id,
                    "videoId": notification.video_id,
                    "commentId": notification.comment_id,
                    "message": notification.message,
                    "createdAt": notification.created_at.isoformat(),
                },
            })

    async def _consume(self, session: AsyncSession, event: RelationshipChanged) -> List[Notification]:
        """计数存储与通知分发消费同一个事件"""
        await CounterStore(session, self.weights).apply_relationship(event)
        return await NotificationService(session).notify(event)

    # ------------------------------------------------------------------
    # 关注 / 点赞
    # ------------------------------------------------------------------

    async def _follow(self, actor_id: int, target_id: int, desired: Optional[bool], label: str) -> FollowToggleResult:

        async def work(session: AsyncSession) -> Tuple[FollowToggleResult, List[Notification]]:
            event = await RelationshipLedger(session).set_follow(actor_id, target_id, desired)
            notifications = await self._consume(session, event) if event else []
            followers = await session.scalar(select(User.followers_count).where(User.id == target_id))
            return FollowToggleResult(
                following=event.delta > 0 if event else bool(desired),
                followers_count=followers or 0,
                event_id=event.event_id if event else None,
            ), notifications

        async with self.locks.hold(("follow", actor_id, target_id)):
            result, notifications = await run_in_transaction(self.session_factory, work, label=label)
        await self._publish(notifications)
        return result

    async def toggle_follow(self, actor_id: int, target_id: int) -> FollowToggleResult:
        """
        切换关注状态

        Raises:
            SelfReferenceError, NotFoundError, ConflictError, StorageTimeoutError
        """
        return await self._follow(actor_id, target_id, None, f"toggle_follow({actor_id},{target_id})")

    async def unfollow(self, actor_id: int, target_id: int) -> FollowToggleResult:
        """取消关注，重复调用结果不变"""
        return await self._follow(actor_id, target_id, False, f"unfollow({actor_id},{target_id})")

    async def _like(
        self, actor_id: int, target_type: str, target_id: int, desired: Optional[bool], label: str
    ) -> LikeToggleResult:

        async def work(session: AsyncSession) -> Tuple[LikeToggleResult, List[Notification]]:
            event = await RelationshipLedger(session).set_like(actor_id, target_type, target_id, desired)
            notifications = await self._consume(session, event) if event else []
            model = Video if target_type == LIKE_TARGET_VIDEO else Comment
            likes = await session.scalar(select(model.likes).where(model.id == target_id))
            return LikeToggleResult(
                liked=event.delta > 0 if event else bool(desired),
                likes=likes or 0,
                event_id=event.event_id if event else None,
            ), notifications

        async with self.locks.hold(("like", actor_id, target_type, target_id)):
            result, notifications = await run_in_transaction(self.session_factory, work, label=label)
        await self._publish(notifications)
        return result

    async def toggle_like(self, actor_id: int, target_type: str, target_id: int) -> LikeToggleResult:
        """
        切换点赞状态（视频或评论）

        Raises:
            ValidationError, NotFoundError, ConflictError, StorageTimeoutError
        """
        return await self._like(
            actor_id, target_type, target_id, None, f"toggle_like({actor_id},{target_type},{target_id})"
        )

    async def unlike(self, actor_id: int, target_type: str, target_id: int) -> LikeToggleResult:
        """取消点赞，重复调用结果不变"""
        return await self._like(
            actor_id, target_type, target_id, False, f"unlike({actor_id},{target_type},{target_id})"
        )

    # ------------------------------------------------------------------
    # 观看 / 分享
    # ------------------------------------------------------------------

    async def record_view(
        self,
        video_id: int,
        actor_id: Optional[int] = None,
        watch_duration: float = 0.0,
        completion_percentage: float = 0.0,
        session_id: Optional[str] = None,
        device_type: str = "unknown",
        platform: str = "unknown",
        now: Optional[datetime] = None,
    ) -> ViewResult:
        """
        记录一次观看

        追加观看记录，视频播放数与作者总播放数各加1，并更新完播率与平均观看时长
        """
        if watch_duration < 0:
            raise ValidationError("观看时长不能为负数")
        if not 0 <= completion_percentage <= 100:
            raise ValidationError("完播百分比必须在0到100之间")
        if device_type not in DEVICE_TYPES:
            device_type = "unknown"
        if platform not in PLATFORMS:
            platform = "unknown"

        async def work(session: AsyncSession) -> ViewResult:
            ledger = RelationshipLedger(session)
            video = await ledger.get_active_video(video_id)
            if actor_id is not None:
                await ledger.get_active_user(actor_id)
            # 作者行先于视频行加锁，与关注、点赞的加锁顺序一致
            await ledger.lock_users(video.creator_id)
            timestamp = now or utc_now()
            session.add(ViewHistory(
                user_id=actor_id,
                video_id=video.id,
                watch_duration=watch_duration,
                completion_percentage=completion_percentage,
                session_id=session_id,
                device_type=device_type,
                platform=platform,
                created_at=timestamp,
            ))
            refreshed = await CounterStore(session, self.weights).apply_view(
                video, watch_duration, completion_percentage, timestamp
            )
            return ViewResult(
                views=refreshed.views,
                completion_rate=refreshed.completion_rate,
                average_watch_time=refreshed.average_watch_time,
            )

        return await run_in_transaction(self.session_factory, work, label=f"record_view({video_id})")

    async def record_share(self, actor_id: int, video_id: int) -> int:
        """记录分享，返回视频分享数"""

        async def work(session: AsyncSession) -> Tuple[int, List[Notification]]:
            ledger = RelationshipLedger(session)
            await ledger.get_active_user(actor_id)
            video = await ledger.get_active_video(video_id)
            event = RelationshipChanged(
                verb=VERB_SHARE,
                actor_id=actor_id,
                target_type=LIKE_TARGET_VIDEO,
                target_id=video.id,
                target_owner_id=video.creator_id,
                video_id=video.id,
            )
            await CounterStore(session, self.weights).apply_delta(
                "video", video.id, "shares", 1, now=event.occurred_at
            )
            notifications = await NotificationService(session).notify(event)
            shares = await session.scalar(select(Video.shares).where(Video.id == video.id))
            return shares or 0, notifications

        shares, notifications = await run_in_transaction(
            self.session_factory, work, label=f"record_share({actor_id},{video_id})"
        )
        await self._publish(notifications)
        return shares

    # ------------------------------------------------------------------
    # 评论
    # ------------------------------------------------------------------

    async def add_comment(
        self,
        actor_id: int,
        video_id: int,
        text: str,
        parent_id: Optional[int] = None,
    ) -> Comment:
        """
        发表评论或回复

        Raises:
            NotFoundError: 视频、用户或父评论不存在
            ValidationError: 视频关闭了评论、内容为空或父评论属于其他视频
        """
        text = (text or "").strip()
        if not text:
            raise ValidationError("评论内容不能为空")

        async def work(session: AsyncSession) -> Tuple[Comment, List[Notification]]:
            ledger = RelationshipLedger(session)
            await ledger.get_active_user(actor_id)
            video = await ledger.get_active_video(video_id)
            if not video.allow_comments:
                raise ValidationError("该视频已关闭评论")

            parent_author_id = None
            if parent_id is not None:
                parent = await ledger.get_live_comment(parent_id)
                if parent.video_id != video.id:
                    raise ValidationError("父评论不属于该视频")
                parent_author_id = parent.author_id

            comment = Comment(
                video_id=video.id,
                author_id=actor_id,
                parent_id=parent_id,
                content=text,
            )
            session.add(comment)
            await session.flush()

            event = RelationshipChanged(
                verb=VERB_COMMENT,
                actor_id=actor_id,
                target_type=LIKE_TARGET_VIDEO,
                target_id=video.id,
                target_owner_id=video.creator_id,
                video_id=video.id,
                comment_id=comment.id,
                parent_author_id=parent_author_id,
            )
            await CounterStore(session, self.weights).apply_delta(
                "video", video.id, "comments_count", 1, now=event.occurred_at
            )
            notifications = await NotificationService(session).notify(event)
            return comment, notifications

        comment, notifications = await run_in_transaction(
            self.session_factory, work, label=f"add_comment({actor_id},{video_id})"
        )
        await self._publish(notifications)
        return comment

    async def delete_comment(self, actor_id: int, comment_id: int) -> Comment:
        """删除自己的评论（软删除），视频评论数减1"""

        async def work(session: AsyncSession) -> Comment:
            comment = await RelationshipLedger(session).get_live_comment(comment_id)
            if comment.author_id != actor_id:
                raise PermissionDeniedError("无权删除该评论")
            comment.is_deleted = True
            comment.content = "[deleted]"
            await session.flush()
            await CounterStore(session, self.weights).apply_delta(
                "video", comment.video_id, "comments_count", -1
            )
            return comment

        return await run_in_transaction(self.session_factory, work, label=f"delete_comment({comment_id})")

    async def edit_comment(self, actor_id: int, comment_id: int, text: str) -> Comment:
        """
        编辑自己的评论

        Raises:
            ValidationError: 内容为空
            NotFoundError: 评论不存在或已删除
            PermissionDeniedError: 不是评论作者
        """
        text = (text or "").strip()
        if not text:
            raise ValidationError("评论内容不能为空")

        async def work(session: AsyncSession) -> Comment:
            comment = await RelationshipLedger(session).get_live_comment(comment_id)
            if comment.author_id != actor_id:
                raise PermissionDeniedError("无权编辑该评论")
            comment.content = text
            comment.is_edited = True
            comment.edited_at = utc_now()
            await session.flush()
            return comment

        return await run_in_transaction(self.session_factory, work, label=f"edit_comment({comment_id})")

    # ------------------------------------------------------------------
    # 视频生命周期
    # ------------------------------------------------------------------

    async def register_video(
        self,
        owner_id: int,
        title: str,
        video_url: str,
        thumbnail_url: str,
        duration: int,
        category: str,
        description: str = "",
        is_public: bool = True,
        allow_comments: bool = True,
        moderation_status: str = "approved",
        published_at: Optional[datetime] = None,
    ) -> Video:
        """
        登记一个已完成上传的视频

        作者视频数加1，并计算初始推荐分
        """
        if category not in VIDEO_CATEGORIES:
            raise ValidationError(f"不支持的视频分类: {category}")
        if moderation_status not in MODERATION_STATUSES:
            raise ValidationError(f"不支持的审核状态: {moderation_status}")
        if duration < 1:
            raise ValidationError("视频时长至少为1秒")

        async def work(session: AsyncSession) -> Video:
            await RelationshipLedger(session).get_active_user(owner_id)
            now = utc_now()
            video = Video(
                creator_id=owner_id,
                title=title,
                description=description,
                video_url=video_url,
                thumbnail_url=thumbnail_url,
                duration=duration,
                category=category,
                is_public=is_public,
                allow_comments=allow_comments,
                moderation_status=moderation_status,
                published_at=published_at or now,
                views=0,
                likes=0,
                comments_count=0,
                shares=0,
                completed_views=0,
            )
            session.add(video)
            await session.flush()
            ranking.apply_score(video, now, self.weights)
            await CounterStore(session, self.weights).apply_delta("user", owner_id, "videos_count", 1)
            return video

        video = await run_in_transaction(self.session_factory, work, label=f"register_video({owner_id})")
        logger.info("video %s registered by user %s", video.id, owner_id)
        return video

    async def delete_video(self, actor_id: int, video_id: int) -> DeleteVideoResult:
        """
        删除视频并撤销它对作者聚合计数的贡献

        级联删除：视频与其评论上的点赞事实、评论、观看记录、相关通知
        """

        async def work(session: AsyncSession) -> DeleteVideoResult:
            video = await session.get(Video, video_id)
            if not video:
                raise NotFoundError("视频不存在")
            if video.creator_id != actor_id:
                raise PermissionDeniedError("无权删除该视频")
            await RelationshipLedger(session).lock_users(video.creator_id)
            video = (await session.execute(video_lock_statement(video_id))).scalar_one()

            video_like_facts = await session.scalar(
                select(func.count(Like.id)).where(
                    and_(Like.target_type == LIKE_TARGET_VIDEO, Like.target_id == video.id)
                )
            ) or 0
            removed_views = video.views
            comment_ids = select(Comment.id).where(Comment.video_id == video.id)
            removed_comments = await session.scalar(
                select(func.count(Comment.id)).where(
                    and_(Comment.video_id == video.id, Comment.is_deleted == False)  # noqa: E712
                )
            ) or 0

            await session.execute(
                delete(Like).where(
                    or_(
                        and_(Like.target_type == LIKE_TARGET_VIDEO, Like.target_id == video.id),
                        and_(Like.target_type == LIKE_TARGET_COMMENT, Like.target_id.in_(comment_ids)),
                        Like.video_id == video.id,
                    )
                ).execution_options(synchronize_session=False)
            )
            await session.execute(
                delete(Notification).where(Notification.video_id == video.id)
                .execution_options(synchronize_session=False)
            )
            await session.execute(
                delete(ViewHistory).where(ViewHistory.video_id == video.id)
                .execution_options(synchronize_session=False)
            )
            await session.execute(
                delete(Comment).where(Comment.video_id == video.id)
                .execution_options(synchronize_session=False)
            )
            owner_id = video.creator_id
            await session.delete(video)
            await session.flush()

            await CounterStore(session, self.weights).apply_deltas("user", owner_id, {
                "total_views": -removed_views,
                "total_likes": -video_like_facts,
                "videos_count": -1,
            })
            return DeleteVideoResult(
                video_id=video_id,
                removed_likes=video_like_facts,
                removed_views=removed_views,
                removed_comments=removed_comments,
            )

        result = await run_in_transaction(self.session_factory, work, label=f"delete_video({video_id})")
        logger.info(
            "video %s deleted by user %s (likes=%d views=%d comments=%d)",
            video_id, actor_id, result.removed_likes, result.removed_views, result.removed_comments,
        )
        return result

    # ------------------------------------------------------------------
    # 通知状态
    # ------------------------------------------------------------------

    async def mark_notification_read(self, recipient_id: int, notification_id: int) -> Notification:
        async def work(session: AsyncSession) -> Notification:
            return await NotificationService(session).mark_read(recipient_id, notification_id)

        return await run_in_transaction(
            self.session_factory, work, label=f"mark_notification_read({notification_id})"
        )

    async def mark_all_notifications_read(self, recipient_id: int) -> int:
        async def work(session: AsyncSession) -> int:
            return await NotificationService(session).mark_all_read(recipient_id)

        return await run_in_transaction(
            self.session_factory, work, label=f"mark_all_notifications_read({recipient_id})"
        )

    async def delete_notification(self, recipient_id: int, notification_id: int):
        async def work(session: AsyncSession):
            await NotificationService(session).delete_notification(recipient_id, notification_id)

        await run_in_transaction(self.session_factory, work, label=f"delete_notification({notification_id})")

    async def delete_all_notifications(self, recipient_id: int) -> int:
        async def work(session: AsyncSession) -> int:
            return await NotificationService(session).delete_all(recipient_id)

        return await run_in_transaction(
            self.session_factory, work, label=f"delete_all_notifications({recipient_id})"
        )

    async def update_notification_preferences(self, user_id: int, **switches: Optional[bool]) -> User:
        """更新通知偏好（likes / comments / follows / mentions），未传入的开关保持不变"""

        async def work(session: AsyncSession) -> User:
            return await NotificationService(session).update_preferences(user_id, **switches)

        return await run_in_transaction(
            self.session_factory, work, label=f"update_notification_preferences({user_id})"
        )
