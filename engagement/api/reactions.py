"""
点赞API
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from engagement.api.deps import get_engagement_service
from engagement.db.database import get_db
from engagement.models.like import LIKE_TARGET_COMMENT, LIKE_TARGET_VIDEO
from engagement.schemas.common import ResponseModel, PaginationModel
from engagement.schemas.engagement import LikeStatusResponse, LikeToggleResponse
from engagement.schemas.video import FeedResponse, VideoResponse
from engagement.services.engagement_service import EngagementService
from engagement.services.relationship_ledger import RelationshipLedger
from engagement.utils.auth import get_current_user_id

router = APIRouter(prefix="/api/reactions", tags=["点赞"])


@router.get("/user/liked-videos", response_model=ResponseModel)
async def get_liked_videos(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id),
):
    """当前用户点赞过的视频"""
    videos, total = await RelationshipLedger(db).list_liked_videos(current_user_id, page, limit)
    return ResponseModel(
        code=200,
        data=FeedResponse(
            videos=[VideoResponse.from_model(video) for video in videos],
            pagination=PaginationModel.build(page, limit, total),
        ),
    )


@router.get("/video/{video_id}/status", response_model=ResponseModel)
async def get_video_like_status(
    video_id: int,
    db: AsyncSession = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id),
):
    liked = await RelationshipLedger(db).is_liked(current_user_id, LIKE_TARGET_VIDEO, video_id)
    return ResponseModel(code=200, data=LikeStatusResponse(liked=liked))


@router.post("/comment/{comment_id}", response_model=ResponseModel)
async def toggle_comment_like(
    comment_id: int,
    current_user_id: int = Depends(get_current_user_id),
    service: EngagementService = Depends(get_engagement_service),
):
    """切换评论点赞"""
    result = await service.toggle_like(current_user_id, LIKE_TARGET_COMMENT, comment_id)
    return ResponseModel(
        code=200,
        message="点赞成功" if result.liked else "已取消点赞",
        data=LikeToggleResponse(liked=result.liked, likes=result.likes),
    )


@router.post("/{video_id}", response_model=ResponseModel)
async def toggle_video_like(
    video_id: int,
    current_user_id: int = Depends(get_current_user_id),
    service: EngagementService = Depends(get_engagement_service),
):
    """切换视频点赞"""
    result = await service.toggle_like(current_user_id, LIKE_TARGET_VIDEO, video_id)
    return ResponseModel(
        code=200,
        message="点赞成功" if result.liked else "已取消点赞",
        data=LikeToggleResponse(liked=result.liked, likes=result.likes),
    )


@router.delete("/{video_id}", response_model=ResponseModel)
async def unlike_video(
    video_id: int,
    current_user_id: int = Depends(get_current_user_id),
    service: EngagementService = Depends(get_engagement_service),
):
    """取消视频点赞（未点赞时直接返回当前状态）"""
    result = await service.unlike(current_user_id, LIKE_TARGET_VIDEO, video_id)
    return ResponseModel(
        code=200,
        message="已取消点赞",
        data=LikeToggleResponse(liked=result.liked, likes=result.likes),
    )
