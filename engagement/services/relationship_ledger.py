"""
关系账本服务

关注事实与点赞事实的唯一事实来源。切换操作“先查询再修改”在调用方的同一事务中完成。
会修改用户计数的事务都先按ID升序锁定涉及的用户行（操作者与被关注者/作者），
所有事务以相同顺序加锁，既串行化同一键上的并发切换，也不会互相死锁。
"""
import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from engagement.core.exceptions import (
    ConflictError, NotFoundError, SelfReferenceError, ValidationError,
)
from engagement.models.comment import Comment
from engagement.models.follow import Follow
from engagement.models.like import Like, LIKE_TARGET_TYPES, LIKE_TARGET_VIDEO
from engagement.models.user import User
from engagement.models.video import Video
from engagement.services.events import (
    RelationshipChanged, VERB_FOLLOW, VERB_LIKE, VERB_UNFOLLOW, VERB_UNLIKE,
)

logger = logging.getLogger(__name__)


def user_lock_statement(user_id: int):
    """
    锁定用户行

    FOR NO KEY UPDATE 不会阻塞其他事务插入引用该用户的外键行（关注、点赞、通知）
    """
    return (
        select(User)
        .where(User.id == user_id)
        .with_for_update(key_share=True)
        .execution_options(populate_existing=True)
    )


def video_lock_statement(video_id: int):
    return (
        select(Video)
        .where(Video.id == video_id)
        .with_for_update(key_share=True)
        .execution_options(populate_existing=True)
    )


def is_active_user(user: User) -> bool:
    return bool(user.is_active) and not user.is_deleted


class RelationshipLedger:
    """关系账本"""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------
    # 校验
    # ------------------------------------------------------------------

    async def get_active_user(self, user_id: int) -> User:
        user = (await self.session.execute(
            select(User).where(
                and_(User.id == user_id, User.is_deleted == False, User.is_active == True)  # noqa: E712
            )
        )).scalar_one_or_none()
        if not user:
            raise NotFoundError(f"用户 {user_id} 不存在")
        return user

    async def lock_users(self, *user_ids: Optional[int]) -> Dict[int, User]:
        """
        按ID升序锁定用户行

        Raises:
            NotFoundError: 用户不存在
        """
        locked: Dict[int, User] = {}
        for user_id in sorted({user_id for user_id in user_ids if user_id is not None}):
            user = (await self.session.execute(user_lock_statement(user_id))).scalar_one_or_none()
            if user is None:
                raise NotFoundError(f"用户 {user_id} 不存在")
            locked[user_id] = user
        return locked

    async def get_active_video(self, video_id: int) -> Video:
        video = (await self.session.execute(
            select(Video).where(and_(Video.id == video_id, Video.is_active == True))  # noqa: E712
        )).scalar_one_or_none()
        if not video:
            raise NotFoundError(f"视频 {video_id} 不存在")
        return video

    async def get_live_comment(self, comment_id: int) -> Comment:
        comment = (await self.session.execute(
            select(Comment).where(and_(Comment.id == comment_id, Comment.is_deleted == False))  # noqa: E712
        )).scalar_one_or_none()
        if not comment:
            raise NotFoundError(f"评论 {comment_id} 不存在")
        return comment

    # ------------------------------------------------------------------
    # 关注
    # ------------------------------------------------------------------

    async def set_follow(self, actor_id: int, target_id: int, desired: Optional[bool] = None) -> Optional[RelationshipChanged]:
        """
        修改关注状态

        Args:
            desired: True 关注，False 取消关注，None 切换

        Returns:
            状态改变时返回事件；已经是目标状态时返回None

        Raises:
            SelfReferenceError: 关注自己
            NotFoundError: 操作者或目标用户不存在
            ConflictError: 并发请求已删除该事实
        """
        if actor_id == target_id:
            raise SelfReferenceError()

        users = await self.lock_users(actor_id, target_id)
        for user_id in (actor_id, target_id):
            if not is_active_user(users[user_id]):
                raise NotFoundError(f"用户 {user_id} 不存在")

        existing = (await self.session.execute(
            select(Follow).where(
                and_(Follow.follower_id == actor_id, Follow.followee_id == target_id)
            )
        )).scalar_one_or_none()

        following = existing is not None
        if desired is None:
            desired = not following
        if desired == following:
            return None

        if existing:
            result = await self.session.execute(
                delete(Follow).where(Follow.id == existing.id).execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError()
            verb, delta = VERB_UNFOLLOW, -1
        else:
            self.session.add(Follow(follower_id=actor_id, followee_id=target_id))
            await self.session.flush()
            verb, delta = VERB_FOLLOW, 1

        logger.info("user %s %s user %s", actor_id, verb, target_id)
        return RelationshipChanged(
            verb=verb,
            actor_id=actor_id,
            target_type="user",
            target_id=target_id,
            target_owner_id=target_id,
            delta=delta,
        )

    async def toggle_follow(self, actor_id: int, target_id: int) -> RelationshipChanged:
        """切换关注状态：已关注则取消关注，未关注则关注"""
        return await self.set_follow(actor_id, target_id)

    async def remove_follow(self, actor_id: int, target_id: int) -> Optional[RelationshipChanged]:
        """取消关注，未关注时不做任何修改"""
        return await self.set_follow(actor_id, target_id, desired=False)

    # ------------------------------------------------------------------
    # 点赞
    # ------------------------------------------------------------------

    async def set_like(
        self,
        actor_id: int,
        target_type: str,
        target_id: int,
        desired: Optional[bool] = None,
    ) -> Optional[RelationshipChanged]:
        """
        修改点赞状态（desired 含义同 set_follow）

        Raises:
            ValidationError: 不支持的点赞目标类型
            NotFoundError: 操作者或目标不存在
            ConflictError: 并发请求已删除该事实
        """
        if target_type not in LIKE_TARGET_TYPES:
            raise ValidationError(f"不支持的点赞目标类型: {target_type}")

        if target_type == LIKE_TARGET_VIDEO:
            video = await self.get_active_video(target_id)
            owner_id, video_id, comment_id = video.creator_id, video.id, None
        else:
            comment = await self.get_live_comment(target_id)
            owner_id, video_id, comment_id = comment.author_id, comment.video_id, comment.id

        users = await self.lock_users(actor_id, owner_id)
        if not is_active_user(users[actor_id]):
            raise NotFoundError(f"用户 {actor_id} 不存在")

        existing = (await self.session.execute(
            select(Like).where(
                and_(
                    Like.user_id == actor_id,
                    Like.target_type == target_type,
                    Like.target_id == target_id,
                )
            )
        )).scalar_one_or_none()

        liked = existing is not None
        if desired is None:
            desired = not liked
        if desired == liked:
            return None

        if existing:
            result = await self.session.execute(
                delete(Like).where(Like.id == existing.id).execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError()
            verb, delta = VERB_UNLIKE, -1
        else:
            self.session.add(Like(
                user_id=actor_id,
                target_type=target_type,
                target_id=target_id,
                video_id=video_id,
            ))
            await self.session.flush()
            verb, delta = VERB_LIKE, 1

        logger.info("user %s %s %s %s", actor_id, verb, target_type, target_id)
        return RelationshipChanged(
            verb=verb,
            actor_id=actor_id,
            target_type=target_type,
            target_id=target_id,
            target_owner_id=owner_id,
            video_id=video_id,
            comment_id=comment_id,
            delta=delta,
        )

    async def toggle_like(self, actor_id: int, target_type: str, target_id: int) -> RelationshipChanged:
        """切换点赞状态"""
        return await self.set_like(actor_id, target_type, target_id)

    async def remove_like(self, actor_id: int, target_type: str, target_id: int) -> Optional[RelationshipChanged]:
        """取消点赞，未点赞时不做任何修改"""
        return await self.set_like(actor_id, target_type, target_id, desired=False)

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    async def is_following(self, actor_id: int, target_id: int) -> bool:
        found = await self.session.scalar(
            select(Follow.id).where(
                and_(Follow.follower_id == actor_id, Follow.followee_id == target_id)
            )
        )
        return found is not None

    async def is_liked(self, actor_id: int, target_type: str, target_id: int) -> bool:
        found = await self.session.scalar(
            select(Like.id).where(
                and_(
                    Like.user_id == actor_id,
                    Like.target_type == target_type,
                    Like.target_id == target_id,
                )
            )
        )
        return found is not None

    def followee_ids_subquery(self, actor_id: int):
        """操作者关注的用户ID子查询"""
        return select(Follow.followee_id).where(Follow.follower_id == actor_id)

    async def count_following(self, actor_id: int) -> int:
        return await self.session.scalar(
            select(func.count(Follow.id)).where(Follow.follower_id == actor_id)
        ) or 0

    async def count_followers(self, actor_id: int) -> int:
        return await self.session.scalar(
            select(func.count(Follow.id)).where(Follow.followee_id == actor_id)
        ) or 0

    async def count_likes(self, target_type: str, target_id: int) -> int:
        return await self.session.scalar(
            select(func.count(Like.id)).where(
                and_(Like.target_type == target_type, Like.target_id == target_id)
            )
        ) or 0

    async def count_likes_received(self, owner_id: int) -> int:
        """作者所有视频收到的点赞事实总数"""
        return await self.session.scalar(
            select(func.count(Like.id))
            .join(Video, and_(Like.target_type == LIKE_TARGET_VIDEO, Like.target_id == Video.id))
            .where(Video.creator_id == owner_id)
        ) or 0

    async def list_followers(self, user_id: int, page: int, limit: int) -> Tuple[List[User], int]:
        """粉丝列表（按关注时间倒序）"""
        return await self._list_users(Follow.follower_id, Follow.followee_id == user_id, page, limit)

    async def list_following(self, user_id: int, page: int, limit: int) -> Tuple[List[User], int]:
        """关注列表（按关注时间倒序）"""
        return await self._list_users(Follow.followee_id, Follow.follower_id == user_id, page, limit)

    async def _list_users(self, join_column, condition, page: int, limit: int) -> Tuple[List[User], int]:
        total = await self.session.scalar(select(func.count(Follow.id)).where(condition)) or 0
        result = await self.session.execute(
            select(User)
            .join(Follow, join_column == User.id)
            .where(condition)
            .order_by(Follow.created_at.desc(), Follow.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def suggest_follows(self, actor_id: int, limit: int) -> List[User]:
        """推荐关注：未关注的活跃用户，按粉丝数、播放量排序"""
        result = await self.session.execute(
            select(User)
            .where(
                and_(
                    User.id != actor_id,
                    User.id.not_in(self.followee_ids_subquery(actor_id)),
                    User.is_active == True,  # noqa: E712
                    User.is_deleted == False,  # noqa: E712
                )
            )
            .order_by(User.followers_count.desc(), User.total_views.desc(), User.id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_liked_videos(self, actor_id: int, page: int, limit: int) -> Tuple[List[Video], int]:
        """点赞过的视频（最近点赞在前，已删除视频不返回）"""
        condition = and_(
            Like.user_id == actor_id,
            Like.target_type == LIKE_TARGET_VIDEO,
            Video.is_active == True,  # noqa: E712
        )
        base = select(Video).join(Like, Like.target_id == Video.id).where(condition)
        total = await self.session.scalar(
            select(func.count()).select_from(base.subquery())
        ) or 0
        result = await self.session.execute(
            base.order_by(Like.created_at.desc(), Like.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total
