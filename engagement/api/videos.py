"""
视频API：Feed、热门、观看、分享、登记与删除
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from engagement.api.deps import get_engagement_service
from engagement.core.exceptions import NotFoundError
from engagement.db.database import get_db
from engagement.schemas.common import ResponseModel, PaginationModel
from engagement.schemas.engagement import ShareResponse
from engagement.schemas.video import (
    FeedResponse, VideoCreate, VideoResponse, ViewCreate, ViewResponse,
)
from engagement.services.engagement_service import EngagementService
from engagement.services.feed_service import FeedPage, FeedService
from engagement.services.relationship_ledger import RelationshipLedger
from engagement.utils.auth import get_current_user_id, get_optional_user_id

router = APIRouter(prefix="/api/videos", tags=["视频"])


def _feed_response(result: FeedPage) -> FeedResponse:
    return FeedResponse(
        videos=[VideoResponse.from_model(video) for video in result.items],
        mode=result.mode,
        pagination=PaginationModel.build(result.page, result.page_size, result.total),
    )


@router.get("/feed", response_model=ResponseModel)
async def get_feed(
    category: Optional[str] = Query(None, description="视频分类：short / long"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user_id: Optional[int] = Depends(get_optional_user_id),
):
    """
    首页Feed

    匿名或没有观看历史时按热度排序，否则按推荐分排序
    """
    result = await FeedService(db).get_feed(current_user_id, category, page, limit)
    return ResponseModel(code=200, message="获取成功", data=_feed_response(result))


@router.get("/trending", response_model=ResponseModel)
async def get_trending(
    category: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """热门视频"""
    videos = await FeedService(db).get_trending(category, limit)
    return ResponseModel(
        code=200,
        message="获取成功",
        data=[VideoResponse.from_model(video) for video in videos],
    )


@router.get("/user/{user_id}", response_model=ResponseModel)
async def get_user_videos(
    user_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """创作者的公开视频"""
    await RelationshipLedger(db).get_active_user(user_id)
    result = await FeedService(db).get_user_videos(user_id, page, limit)
    return ResponseModel(code=200, data=_feed_response(result))


@router.post("", response_model=ResponseModel)
async def register_video(
    video_data: VideoCreate,
    current_user_id: int = Depends(get_current_user_id),
    service: EngagementService = Depends(get_engagement_service),
):
    """登记已上传完成的视频"""
    video = await service.register_video(
        owner_id=current_user_id,
        title=video_data.title,
        video_url=video_data.videoUrl,
        thumbnail_url=video_data.thumbnailUrl,
        duration=video_data.duration,
        category=video_data.category,
        description=video_data.description,
        is_public=video_data.isPublic,
        allow_comments=video_data.allowComments,
    )
    return ResponseModel(code=200, message="视频发布成功", data=VideoResponse.from_model(video))


@router.get("/{video_id}", response_model=ResponseModel)
async def get_video(
    video_id: int,
    db: AsyncSession = Depends(get_db),
    current_user_id: Optional[int] = Depends(get_optional_user_id),
):
    """视频详情（非公开或未审核通过的视频只有作者可见）"""
    video = await RelationshipLedger(db).get_active_video(video_id)
    visible = video.is_public and video.moderation_status == "approved"
    if not visible and video.creator_id != current_user_id:
        raise NotFoundError("视频不存在")
    return ResponseModel(code=200, data=VideoResponse.from_model(video))


@router.post("/{video_id}/view", response_model=ResponseModel)
async def record_view(
    video_id: int,
    view_data: ViewCreate,
    current_user_id: Optional[int] = Depends(get_optional_user_id),
    service: EngagementService = Depends(get_engagement_service),
):
    """记录一次观看（允许匿名）"""
    result = await service.record_view(
        video_id,
        actor_id=current_user_id,
        watch_duration=view_data.watchDuration,
        completion_percentage=view_data.completionPercentage,
        session_id=view_data.sessionId,
        device_type=view_data.deviceType,
        platform=view_data.platform,
    )
    return ResponseModel(
        code=200,
        data=ViewResponse(
            views=result.views,
            completionRate=result.completion_rate,
            averageWatchTime=result.average_watch_time,
        ),
    )


@router.post("/{video_id}/share", response_model=ResponseModel)
async def record_share(
    video_id: int,
    current_user_id: int = Depends(get_current_user_id),
    service: EngagementService = Depends(get_engagement_service),
):
    shares = await service.record_share(current_user_id, video_id)
    return ResponseModel(code=200, data=ShareResponse(shares=shares))


@router.delete("/{video_id}", response_model=ResponseModel)
async def delete_video(
    video_id: int,
    current_user_id: int = Depends(get_current_user_id),
    service: EngagementService = Depends(get_engagement_service),
):
    """删除视频（仅作者本人）"""
    result = await service.delete_video(current_user_id, video_id)
    return ResponseModel(
        code=200,
        message="视频已删除",
        data={
            "videoId": result.video_id,
            "removedLikes": result.removed_likes,
            "removedViews": result.removed_views,
            "removedComments": result.removed_comments,
        },
    )
