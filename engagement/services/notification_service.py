"""
通知分发服务

根据互动事件决定是否需要通知，并且每个事件对每个接收者最多创建一条通知：
- 自己对自己的操作不通知
- 取消关注、取消点赞、观看不通知
- 回复评论时通知父评论作者（reply），视频作者与评论者、父评论作者都不同时另外通知视频作者（comment）
- 接收者关闭了对应类型的通知时不创建
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from engagement.core.config import settings
from engagement.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from engagement.models.notification import Notification, NOTIFICATION_KINDS
from engagement.models.user import User
from engagement.services.events import (
    RelationshipChanged, VERB_COMMENT, VERB_FOLLOW, VERB_LIKE, VERB_SHARE,
)
from engagement.utils.clock import utc_now

logger = logging.getLogger(__name__)

# 通知类型对应的用户偏好开关
PREFERENCE_FIELDS = {
    "like": "notify_likes",
    "share": "notify_likes",
    "comment": "notify_comments",
    "reply": "notify_comments",
    "follow": "notify_follows",
    "mention": "notify_mentions",
}

MESSAGES = {
    ("follow", None): "{name}关注了你",
    ("like", "video"): "{name}赞了你的视频",
    ("like", "comment"): "{name}赞了你的评论",
    ("comment", None): "{name}评论了你的视频",
    ("reply", None): "{name}回复了你的评论",
    ("share", None): "{name}分享了你的视频",
}


def plan_notifications(event: RelationshipChanged) -> List[Tuple[int, str, str]]:
    """
    计算事件应产生的通知

    Returns:
        [(接收者ID, 通知类型, 消息模板)]，已去除自己通知自己和重复接收者
    """
    planned: List[Tuple[int, str, str]] = []

    if event.delta <= 0:
        return planned

    if event.verb == VERB_FOLLOW:
        planned.append((event.target_owner_id, "follow", MESSAGES[("follow", None)]))
    elif event.verb == VERB_LIKE:
        planned.append((event.target_owner_id, "like", MESSAGES[("like", event.target_type)]))
    elif event.verb == VERB_SHARE:
        planned.append((event.target_owner_id, "share", MESSAGES[("share", None)]))
    elif event.verb == VERB_COMMENT:
        parent_author = event.parent_author_id
        if parent_author is not None:
            planned.append((parent_author, "reply", MESSAGES[("reply", None)]))
        if event.target_owner_id != parent_author:
            planned.append((event.target_owner_id, "comment", MESSAGES[("comment", None)]))

    seen = set()
    result = []
    for recipient_id, kind, template in planned:
        if recipient_id is None or recipient_id == event.actor_id or recipient_id in seen:
            continue
        seen.add(recipient_id)
        result.append((recipient_id, kind, template))
    return result


class NotificationService:
    """通知服务"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def notify(self, event: RelationshipChanged) -> List[Notification]:
        """
        为事件创建通知（与触发事件处于同一事务）

        同一 event_id 重复投递时不会重复创建
        """
        planned = plan_notifications(event)
        if not planned:
            return []

        recipient_ids = [recipient_id for recipient_id, _, _ in planned]
        users: Dict[int, User] = {
            user.id: user
            for user in (await self.session.execute(
                select(User).where(User.id.in_(recipient_ids + [event.actor_id]))
            )).scalars().all()
        }
        already = set((await self.session.execute(
            select(Notification.recipient_id).where(
                and_(
                    Notification.event_id == event.event_id,
                    Notification.recipient_id.in_(recipient_ids),
                )
            )
        )).scalars().all())

        sender = users.get(event.actor_id)
        sender_name = (sender.display_name or sender.username or f"用户{sender.id}") if sender else "有人"

        created = []
        for recipient_id, kind, template in planned:
            recipient = users.get(recipient_id)
            if recipient is None or recipient_id in already:
                continue
            if not getattr(recipient, PREFERENCE_FIELDS[kind]):
                continue
            notification = Notification(
                recipient_id=recipient_id,
                sender_id=event.actor_id,
                kind=kind,
                video_id=event.video_id,
                comment_id=event.comment_id,
                message=template.format(name=sender_name),
                is_read=False,
                event_id=event.event_id,
                created_at=event.occurred_at,
                expires_at=event.occurred_at + timedelta(days=settings.NOTIFICATION_RETENTION_DAYS),
            )
            self.session.add(notification)
            created.append(notification)

        if created:
            await self.session.flush()
            logger.info(
                "event %s (%s) fanned out %d notification(s)",
                event.event_id, event.verb, len(created),
            )
        return created

    # ------------------------------------------------------------------
    # 读取与已读状态
    # ------------------------------------------------------------------

    async def list_notifications(
        self,
        recipient_id: int,
        page: int = 1,
        limit: int = 20,
        kind: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[List[Notification], int, int]:
        """
        获取通知列表

        Returns:
            (通知列表, 总数, 未读数)，已过期但尚未清理的通知不返回
        """
        if kind is not None and kind not in NOTIFICATION_KINDS:
            raise ValidationError(f"不支持的通知类型: {kind}")
        now = now or utc_now()

        conditions = [Notification.recipient_id == recipient_id, Notification.expires_at > now]
        if kind:
            conditions.append(Notification.kind == kind)

        total = await self.session.scalar(
            select(func.count(Notification.id)).where(and_(*conditions))
        ) or 0
        result = await self.session.execute(
            select(Notification)
            .where(and_(*conditions))
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        unread = await self.unread_count(recipient_id, now=now)
        return list(result.scalars().all()), total, unread

    async def unread_count(self, recipient_id: int, now: Optional[datetime] = None) -> int:
        now = now or utc_now()
        return await self.session.scalar(
            select(func.count(Notification.id)).where(
                and_(
                    Notification.recipient_id == recipient_id,
                    Notification.is_read == False,  # noqa: E712
                    Notification.expires_at > now,
                )
            )
        ) or 0

    async def _get_owned(self, recipient_id: int, notification_id: int) -> Notification:
        notification = await self.session.get(Notification, notification_id)
        if not notification:
            raise NotFoundError("通知不存在")
        if notification.recipient_id != recipient_id:
            raise PermissionDeniedError()
        return notification

    async def mark_read(self, recipient_id: int, notification_id: int) -> Notification:
        """标记为已读，已读时不做任何修改"""
        notification = await self._get_owned(recipient_id, notification_id)
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = utc_now()
            await self.session.flush()
        return notification

    async def mark_all_read(self, recipient_id: int) -> int:
        """全部标记为已读，返回本次被修改的数量"""
        result = await self.session.execute(
            update(Notification)
            .where(and_(Notification.recipient_id == recipient_id, Notification.is_read == False))  # noqa: E712
            .values(is_read=True, read_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return result.rowcount or 0

    async def delete_notification(self, recipient_id: int, notification_id: int):
        notification = await self._get_owned(recipient_id, notification_id)
        await self.session.delete(notification)
        await self.session.flush()

    async def delete_all(self, recipient_id: int) -> int:
        result = await self.session.execute(
            delete(Notification).where(Notification.recipient_id == recipient_id)
        )
        await self.session.flush()
        return result.rowcount or 0

    async def update_preferences(
        self,
        user_id: int,
        likes: Optional[bool] = None,
        comments: Optional[bool] = None,
        follows: Optional[bool] = None,
        mentions: Optional[bool] = None,
    ) -> User:
        """更新通知偏好，未传入的开关保持不变"""
        user = await self.session.get(User, user_id)
        if not user or user.is_deleted:
            raise NotFoundError("用户不存在")
        if likes is not None:
            user.notify_likes = likes
        if comments is not None:
            user.notify_comments = comments
        if follows is not None:
            user.notify_follows = follows
        if mentions is not None:
            user.notify_mentions = mentions
        await self.session.flush()
        return user

    # ------------------------------------------------------------------
    # 保留期清理
    # ------------------------------------------------------------------

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """删除超过保留期的通知（不论是否已读）"""
        now = now or utc_now()
        result = await self.session.execute(
            delete(Notification).where(Notification.expires_at <= now)
        )
        return result.rowcount or 0
