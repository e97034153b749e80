"""
后台维护测试：计数对账、保留期清理、推荐分刷新
"""
from datetime import timedelta

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from engagement.core.config import settings
from engagement.models.comment import Comment
from engagement.models.notification import Notification
from engagement.models.user import User
from engagement.models.video import Video
from engagement.models.view_history import ViewHistory
from engagement.services.maintenance import (
    CounterReconciler, purge_expired, reconcile_actor, reconcile_all, refresh_stale_scores,
)
from engagement.services.user_service import UserStatsService
from engagement.utils.clock import utc_now


async def corrupt(session_factory, model, entity_id, **values):
    async with session_factory() as session:
        await session.execute(update(model).where(model.id == entity_id).values(**values))
        await session.commit()


async def test_reconcile_all_heals_drifted_counters(service, make_user, make_video, fetch, session_factory):
    owner = await make_user()
    fan = await make_user()
    video = await make_video(owner)
    await service.toggle_follow(fan.id, owner.id)
    await service.toggle_like(fan.id, "video", video.id)
    comment = await service.add_comment(fan.id, video.id, "评论")
    await service.toggle_like(owner.id, "comment", comment.id)
    await service.record_view(video.id, watch_duration=4, completion_percentage=100)

    await corrupt(session_factory, User, owner.id, followers_count=7, total_likes=0, total_views=42, videos_count=3)
    await corrupt(session_factory, User, fan.id, following_count=0)
    await corrupt(session_factory, Video, video.id, likes=9, comments_count=0)
    await corrupt(session_factory, Comment, comment.id, likes=5)

    report = await reconcile_all(session_factory)

    healed = {(drift.entity, drift.entity_id, drift.field): (drift.stored, drift.actual) for drift in report.drifts}
    assert healed[("user", owner.id, "followers_count")] == (7, 1)
    assert healed[("video", video.id, "likes")] == (9, 1)
    assert healed[("comment", comment.id, "likes")] == (5, 1)
    assert report.checked_users == 2
    assert report.checked_videos == 1

    owner_row = await fetch(User, owner.id)
    assert owner_row.followers_count == 1
    assert owner_row.total_likes == 1
    assert owner_row.total_views == 1
    assert owner_row.videos_count == 1
    assert (await fetch(User, fan.id)).following_count == 1
    video_row = await fetch(Video, video.id)
    assert video_row.likes == 1
    assert video_row.comments_count == 1
    assert (await fetch(Comment, comment.id)).likes == 1

    again = await reconcile_all(session_factory)
    assert again.drifts == []


async def test_reconcile_in_small_batches(make_user, make_video, session_factory):
    users = [await make_user() for _ in range(5)]
    for user in users:
        await make_video(user)

    report = await reconcile_all(session_factory, batch_size=2)

    assert report.checked_users == 5
    assert report.checked_videos == 5


async def test_reconcile_locks_rows_before_counting(monkeypatch, service, make_user, make_video, session_factory):
    owner = await make_user()
    fan = await make_user()
    video = await make_video(owner)
    await service.add_comment(fan.id, video.id, "评论")

    locked = []
    original = AsyncSession.execute

    async def recording(self, statement, *args, **kwargs):
        lock = getattr(statement, "_for_update_arg", None)
        if lock is not None:
            locked.append((statement.get_final_froms()[0].name, lock.key_share))
        return await original(self, statement, *args, **kwargs)

    monkeypatch.setattr(AsyncSession, "execute", recording)

    async with session_factory() as session:
        async with session.begin():
            await CounterReconciler(session).reconcile_video(video.id)
    assert locked == [("users", True), ("videos", True), ("comments", True)]

    locked.clear()
    await reconcile_actor(session_factory, fan.id)
    assert locked == [("users", True)]


async def test_total_views_survive_view_history_purge(service, make_user, make_video, fetch, session_factory):
    owner = await make_user()
    video = await make_video(owner)
    await service.record_view(video.id, watch_duration=10, completion_percentage=95)
    await service.record_view(video.id, watch_duration=10, completion_percentage=10)

    later = utc_now() + timedelta(days=settings.VIEW_RETENTION_DAYS + 1)
    report = await purge_expired(session_factory, now=later)
    assert report.views == 2

    await reconcile_actor(session_factory, owner.id)
    assert (await fetch(User, owner.id)).total_views == 2
    video_row = await fetch(Video, video.id)
    assert video_row.views == 2
    assert video_row.completion_rate == 50.0


async def test_purge_removes_expired_notifications_only(service, make_user, make_video, session_factory):
    owner = await make_user()
    fan = await make_user()
    video = await make_video(owner)
    await service.toggle_like(fan.id, "video", video.id)
    await service.record_view(video.id, actor_id=fan.id, watch_duration=1, completion_percentage=5)

    early = await purge_expired(session_factory, now=utc_now() + timedelta(days=1))
    assert early.notifications == 0
    assert early.views == 0

    late = await purge_expired(session_factory, now=utc_now() + timedelta(days=31))
    assert late.notifications == 1
    assert late.views == 0

    async with session_factory() as session:
        assert await session.scalar(select(func.count(Notification.id))) == 0
        assert await session.scalar(select(func.count(ViewHistory.id))) == 1


async def test_refresh_stale_scores(service, make_user, make_video, fetch, session_factory):
    owner = await make_user()
    fresh = await make_video(owner)
    stale = await make_video(owner, published_at=utc_now() - timedelta(days=40))
    await service.record_view(stale.id, watch_duration=1, completion_percentage=5)
    long_ago = utc_now() - timedelta(seconds=settings.RANKING_STALENESS_SECONDS * 2)
    await corrupt(session_factory, Video, stale.id, recommendation_score=99.0, score_updated_at=long_ago)

    refreshed = await refresh_stale_scores(session_factory, batch_size=1)

    assert refreshed == 1
    stale_row = await fetch(Video, stale.id)
    assert stale_row.recommendation_score < 99.0
    assert stale_row.score_updated_at > long_ago
    assert (await fetch(Video, fresh.id)).recommendation_score == 0.0


async def test_stats_reconcile_on_read(monkeypatch, service, make_user, session_factory):
    alice = await make_user()
    bob = await make_user()
    await service.toggle_follow(alice.id, bob.id)
    await corrupt(session_factory, User, bob.id, followers_count=11)

    async with session_factory() as session:
        assert (await UserStatsService(session, session_factory).get_stats(bob.id)).followers_count == 11

    monkeypatch.setattr(settings, "RECONCILE_ON_READ", True)
    async with session_factory() as session:
        assert (await UserStatsService(session, session_factory).get_stats(bob.id)).followers_count == 1
