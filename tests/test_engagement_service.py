"""
互动引擎测试：关注、点赞、观看、分享、评论与视频生命周期
"""
import asyncio

import pytest
from sqlalchemy import func, select

from engagement.core.exceptions import (
    NotFoundError, PermissionDeniedError, SelfReferenceError, ValidationError,
)
from engagement.models.comment import Comment
from engagement.models.follow import Follow
from engagement.models.like import Like
from engagement.models.notification import Notification
from engagement.models.user import User
from engagement.models.video import Video
from engagement.models.view_history import ViewHistory


async def count_rows(session_factory, model, *conditions) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count(model.id)).where(*conditions)) or 0


async def test_follow_toggles_on_and_off(service, make_user, fetch, session_factory):
    alice = await make_user()
    bob = await make_user()

    first = await service.toggle_follow(alice.id, bob.id)
    assert first.following is True
    assert first.followers_count == 1
    assert (await fetch(User, alice.id)).following_count == 1

    second = await service.toggle_follow(alice.id, bob.id)
    assert second.following is False
    assert second.followers_count == 0
    assert (await fetch(User, alice.id)).following_count == 0
    assert await count_rows(session_factory, Follow) == 0


async def test_counters_match_facts_after_many_toggles(service, make_user, fetch, session_factory):
    alice = await make_user()
    bob = await make_user()

    for _ in range(5):
        await service.toggle_follow(alice.id, bob.id)

    facts = await count_rows(session_factory, Follow, Follow.followee_id == bob.id)
    assert facts == 1
    assert (await fetch(User, bob.id)).followers_count == facts


async def test_self_follow_is_rejected(service, make_user, fetch, session_factory):
    alice = await make_user()

    with pytest.raises(SelfReferenceError):
        await service.toggle_follow(alice.id, alice.id)

    assert await count_rows(session_factory, Follow) == 0
    assert (await fetch(User, alice.id)).followers_count == 0


async def test_follow_missing_user(service, make_user):
    alice = await make_user()
    with pytest.raises(NotFoundError):
        await service.toggle_follow(alice.id, 9999)


@pytest.fixture()
def locked_user_ids(monkeypatch):
    """记录加锁的用户ID顺序"""
    from engagement.services import relationship_ledger

    locked = []
    original = relationship_ledger.user_lock_statement

    def recording(user_id):
        locked.append(user_id)
        return original(user_id)

    monkeypatch.setattr(relationship_ledger, "user_lock_statement", recording)
    return locked


async def test_follow_locks_both_users_in_id_order(service, make_user, locked_user_ids):
    low = await make_user()
    high = await make_user()

    await service.toggle_follow(high.id, low.id)
    assert locked_user_ids == [low.id, high.id]

    locked_user_ids.clear()
    await service.toggle_follow(low.id, high.id)
    assert locked_user_ids == [low.id, high.id]


async def test_like_locks_actor_and_owner_in_id_order(service, make_user, make_video, locked_user_ids):
    fan = await make_user()
    owner = await make_user()
    video = await make_video(owner)

    await service.toggle_like(owner.id, "video", video.id)
    await service.toggle_like(fan.id, "video", video.id)

    assert locked_user_ids == [owner.id, fan.id, owner.id]


async def test_view_locks_owner_row(service, make_user, make_video, locked_user_ids):
    owner = await make_user()
    video = await make_video(owner)

    await service.record_view(video.id, watch_duration=5, completion_percentage=20)

    assert locked_user_ids == [owner.id]


def test_user_lock_does_not_block_foreign_keys():
    from sqlalchemy.dialects import postgresql
    from engagement.services.relationship_ledger import user_lock_statement

    sql = str(user_lock_statement(1).compile(dialect=postgresql.dialect()))
    assert "FOR NO KEY UPDATE" in sql


async def test_unfollow_is_idempotent(service, make_user, fetch, session_factory):
    alice = await make_user()
    bob = await make_user()
    await service.toggle_follow(alice.id, bob.id)

    first = await service.unfollow(alice.id, bob.id)
    second = await service.unfollow(alice.id, bob.id)

    assert first.following is False and first.event_id is not None
    assert second.following is False and second.event_id is None
    assert second.followers_count == 0
    assert (await fetch(User, alice.id)).following_count == 0
    assert await count_rows(session_factory, Follow) == 0


async def test_unfollow_without_follow_changes_nothing(service, make_user, fetch, session_factory):
    alice = await make_user()
    bob = await make_user()

    result = await service.unfollow(alice.id, bob.id)

    assert result.following is False
    assert result.followers_count == 0
    assert (await fetch(User, alice.id)).following_count == 0
    assert await count_rows(session_factory, Notification) == 0
    with pytest.raises(SelfReferenceError):
        await service.unfollow(alice.id, alice.id)


async def test_unlike_is_idempotent(service, make_user, make_video, fetch, session_factory):
    owner = await make_user()
    fan = await make_user()
    video = await make_video(owner)
    await service.toggle_like(fan.id, "video", video.id)

    first = await service.unlike(fan.id, "video", video.id)
    second = await service.unlike(fan.id, "video", video.id)

    assert first.liked is False and second.liked is False
    assert second.likes == 0
    assert second.event_id is None
    assert (await fetch(User, owner.id)).total_likes == 0
    assert await count_rows(session_factory, Like) == 0


async def test_concurrent_follow_toggles_change_state_at_most_once(service, make_user, fetch, session_factory):
    alice = await make_user()
    bob = await make_user()

    await asyncio.gather(
        service.toggle_follow(alice.id, bob.id),
        service.toggle_follow(alice.id, bob.id),
    )

    facts = await count_rows(session_factory, Follow, Follow.followee_id == bob.id)
    bob_row = await fetch(User, bob.id)
    assert facts in (0, 1)
    assert bob_row.followers_count == facts
    assert (await fetch(User, alice.id)).following_count == facts


async def test_concurrent_likes_from_different_users(service, make_user, make_video, fetch):
    owner = await make_user()
    fans = [await make_user() for _ in range(5)]
    video = await make_video(owner)

    await asyncio.gather(*(service.toggle_like(fan.id, "video", video.id) for fan in fans))

    assert (await fetch(Video, video.id)).likes == 5
    assert (await fetch(User, owner.id)).total_likes == 5


async def test_like_video_updates_video_and_owner(service, make_user, make_video, fetch):
    owner = await make_user()
    fan = await make_user()
    video = await make_video(owner)

    liked = await service.toggle_like(fan.id, "video", video.id)
    assert liked.liked is True
    assert liked.likes == 1
    assert (await fetch(User, owner.id)).total_likes == 1

    unliked = await service.toggle_like(fan.id, "video", video.id)
    assert unliked.liked is False
    assert unliked.likes == 0
    assert (await fetch(User, owner.id)).total_likes == 0


async def test_like_comment_only_touches_comment(service, make_user, make_video, fetch):
    owner = await make_user()
    fan = await make_user()
    video = await make_video(owner)
    comment = await service.add_comment(owner.id, video.id, "第一条评论")

    result = await service.toggle_like(fan.id, "comment", comment.id)

    assert result.likes == 1
    assert (await fetch(Comment, comment.id)).likes == 1
    assert (await fetch(Video, video.id)).likes == 0
    assert (await fetch(User, owner.id)).total_likes == 0


async def test_like_rejects_unknown_target_type(service, make_user):
    fan = await make_user()
    with pytest.raises(ValidationError):
        await service.toggle_like(fan.id, "playlist", 1)


async def test_like_rescores_video(service, make_user, make_video, fetch):
    owner = await make_user()
    fan = await make_user()
    video = await make_video(owner)
    await service.record_view(video.id, actor_id=fan.id, watch_duration=10, completion_percentage=40)
    before = (await fetch(Video, video.id)).recommendation_score

    await service.toggle_like(fan.id, "video", video.id)

    after = await fetch(Video, video.id)
    assert after.recommendation_score > before
    assert after.engagement_rate == 100.0
    assert after.score_updated_at is not None


async def test_record_view_updates_analytics(service, make_user, make_video, fetch, session_factory):
    owner = await make_user()
    viewer = await make_user()
    video = await make_video(owner)

    await service.record_view(video.id, actor_id=viewer.id, watch_duration=30, completion_percentage=95)
    result = await service.record_view(video.id, watch_duration=10, completion_percentage=50)

    assert result.views == 2
    assert result.completion_rate == 50.0
    assert result.average_watch_time == 20.0
    assert (await fetch(User, owner.id)).total_views == 2
    assert await count_rows(session_factory, ViewHistory, ViewHistory.video_id == video.id) == 2


async def test_record_view_validates_input(service, make_user, make_video):
    owner = await make_user()
    video = await make_video(owner)
    with pytest.raises(ValidationError):
        await service.record_view(video.id, completion_percentage=120)
    with pytest.raises(ValidationError):
        await service.record_view(video.id, watch_duration=-1)
    with pytest.raises(NotFoundError):
        await service.record_view(9999)


async def test_view_does_not_notify(service, make_user, make_video, session_factory):
    owner = await make_user()
    viewer = await make_user()
    video = await make_video(owner)

    await service.record_view(video.id, actor_id=viewer.id, watch_duration=5, completion_percentage=10)

    assert await count_rows(session_factory, Notification) == 0


async def test_share_counts_and_notifies(service, make_user, make_video, session_factory):
    owner = await make_user()
    fan = await make_user()
    video = await make_video(owner)

    assert await service.record_share(fan.id, video.id) == 1
    assert await service.record_share(fan.id, video.id) == 2
    assert await count_rows(session_factory, Notification, Notification.kind == "share") == 2


async def test_comment_lifecycle(service, make_user, make_video, fetch):
    owner = await make_user()
    fan = await make_user()
    video = await make_video(owner)

    comment = await service.add_comment(fan.id, video.id, "  很棒  ")
    assert comment.content == "很棒"
    assert (await fetch(Video, video.id)).comments_count == 1

    with pytest.raises(PermissionDeniedError):
        await service.delete_comment(owner.id, comment.id)

    await service.delete_comment(fan.id, comment.id)
    assert (await fetch(Video, video.id)).comments_count == 0
    assert (await fetch(Comment, comment.id)).is_deleted is True

    with pytest.raises(NotFoundError):
        await service.delete_comment(fan.id, comment.id)


async def test_comment_rules(service, make_user, make_video):
    owner = await make_user()
    fan = await make_user()
    closed = await make_video(owner, allow_comments=False)
    video = await make_video(owner)
    other = await make_video(owner)
    parent = await service.add_comment(owner.id, other.id, "别的视频")

    with pytest.raises(ValidationError):
        await service.add_comment(fan.id, closed.id, "你好")
    with pytest.raises(ValidationError):
        await service.add_comment(fan.id, video.id, "   ")
    with pytest.raises(ValidationError):
        await service.add_comment(fan.id, video.id, "回复", parent_id=parent.id)


async def test_edit_comment(service, make_user, make_video, fetch):
    owner = await make_user()
    fan = await make_user()
    video = await make_video(owner)
    comment = await service.add_comment(fan.id, video.id, "初稿")

    with pytest.raises(PermissionDeniedError):
        await service.edit_comment(owner.id, comment.id, "改写")
    with pytest.raises(ValidationError):
        await service.edit_comment(fan.id, comment.id, "  ")

    edited = await service.edit_comment(fan.id, comment.id, " 定稿 ")
    assert edited.content == "定稿"

    row = await fetch(Comment, comment.id)
    assert row.is_edited is True
    assert row.edited_at is not None
    assert (await fetch(Video, video.id)).comments_count == 1

    await service.delete_comment(fan.id, comment.id)
    with pytest.raises(NotFoundError):
        await service.edit_comment(fan.id, comment.id, "复活")


async def test_register_video_counts_for_owner(service, make_user, make_video, fetch):
    owner = await make_user()
    await make_video(owner)
    await make_video(owner, category="long", duration=240)

    assert (await fetch(User, owner.id)).videos_count == 2
    with pytest.raises(ValidationError):
        await make_video(owner, category="movie")
    with pytest.raises(NotFoundError):
        await service.register_video(9999, "t", "u", "t", 10, "short")


async def test_delete_video_cascades_and_compensates_owner(service, make_user, make_video, fetch, session_factory):
    owner = await make_user()
    fan = await make_user()
    keep = await make_video(owner)
    doomed = await make_video(owner)

    await service.toggle_like(fan.id, "video", keep.id)
    await service.toggle_like(fan.id, "video", doomed.id)
    comment = await service.add_comment(fan.id, doomed.id, "评论")
    await service.toggle_like(owner.id, "comment", comment.id)
    await service.record_view(doomed.id, actor_id=fan.id, watch_duration=5, completion_percentage=20)
    await service.record_view(doomed.id, watch_duration=5, completion_percentage=20)
    await service.record_view(keep.id, watch_duration=5, completion_percentage=20)

    with pytest.raises(PermissionDeniedError):
        await service.delete_video(fan.id, doomed.id)

    result = await service.delete_video(owner.id, doomed.id)
    assert result.removed_likes == 1
    assert result.removed_views == 2
    assert result.removed_comments == 1

    owner_row = await fetch(User, owner.id)
    assert owner_row.videos_count == 1
    assert owner_row.total_likes == 1
    assert owner_row.total_views == 1
    assert await fetch(Video, doomed.id) is None
    assert await count_rows(session_factory, Like) == 1
    assert await count_rows(session_factory, Comment) == 0
    assert await count_rows(session_factory, ViewHistory) == 1
    assert await count_rows(session_factory, Notification, Notification.video_id == doomed.id) == 0


async def test_notifications_are_published_after_commit(service, bus, make_user, make_video):
    owner = await make_user()
    fan = await make_user()
    video = await make_video(owner)
    queue = await bus.register(owner.id)

    await service.toggle_like(fan.id, "video", video.id)

    event = queue.get_nowait()
    assert event["type"] == "notification_created"
    assert event["data"]["kind"] == "like"
    assert event["data"]["senderId"] == fan.id
    await bus.unregister(owner.id, queue)


async def test_closing_bus_signals_listeners(bus):
    queue = await bus.register(1)

    await bus.close(1)
    await bus.publish(1, {"type": "notification_created", "data": {}})

    assert queue.get_nowait()["type"] == "stream_closed"
    assert queue.empty()
