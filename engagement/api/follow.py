"""
关注API
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from engagement.api.deps import get_engagement_service
from engagement.db.database import get_db
from engagement.schemas.common import ResponseModel, PaginationModel
from engagement.schemas.engagement import FollowStatusResponse, FollowToggleResponse
from engagement.schemas.user import UserBrief, UserListResponse
from engagement.schemas.video import FeedResponse, VideoResponse
from engagement.services.engagement_service import EngagementService
from engagement.services.feed_service import FeedService
from engagement.services.relationship_ledger import RelationshipLedger
from engagement.utils.auth import get_current_user_id

router = APIRouter(prefix="/api/follow", tags=["关注"])


@router.get("/feed/following", response_model=ResponseModel)
async def get_following_feed(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id),
):
    """关注用户的视频Feed（未关注任何人时为空）"""
    result = await FeedService(db).get_following_feed(current_user_id, page, limit)
    return ResponseModel(
        code=200,
        message="获取成功",
        data=FeedResponse(
            videos=[VideoResponse.from_model(video) for video in result.items],
            mode=result.mode,
            pagination=PaginationModel.build(result.page, result.page_size, result.total),
        ),
    )


@router.get("/suggestions/users", response_model=ResponseModel)
async def get_suggestions(
    limit: int = Query(10, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id),
):
    """推荐关注"""
    users = await RelationshipLedger(db).suggest_follows(current_user_id, limit)
    return ResponseModel(
        code=200,
        message="获取成功",
        data=[UserBrief.from_model(user) for user in users],
    )


@router.post("/{creator_id}", response_model=ResponseModel)
async def toggle_follow(
    creator_id: int,
    current_user_id: int = Depends(get_current_user_id),
    service: EngagementService = Depends(get_engagement_service),
):
    """
    切换关注状态
    """
    result = await service.toggle_follow(current_user_id, creator_id)
    return ResponseModel(
        code=200,
        message="关注成功" if result.following else "已取消关注",
        data=FollowToggleResponse(following=result.following, followersCount=result.followers_count),
    )


@router.delete("/{creator_id}", response_model=ResponseModel)
async def unfollow(
    creator_id: int,
    current_user_id: int = Depends(get_current_user_id),
    service: EngagementService = Depends(get_engagement_service),
):
    """取消关注（未关注时直接返回当前状态）"""
    result = await service.unfollow(current_user_id, creator_id)
    return ResponseModel(
        code=200,
        message="已取消关注",
        data=FollowToggleResponse(following=result.following, followersCount=result.followers_count),
    )


@router.get("/{user_id}/status", response_model=ResponseModel)
async def get_follow_status(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id),
):
    following = await RelationshipLedger(db).is_following(current_user_id, user_id)
    return ResponseModel(code=200, data=FollowStatusResponse(following=following))


@router.get("/{user_id}/followers", response_model=ResponseModel)
async def get_followers(
    user_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """粉丝列表"""
    ledger = RelationshipLedger(db)
    await ledger.get_active_user(user_id)
    users, total = await ledger.list_followers(user_id, page, limit)
    return ResponseModel(
        code=200,
        data=UserListResponse(
            users=[UserBrief.from_model(user) for user in users],
            pagination=PaginationModel.build(page, limit, total),
        ),
    )


@router.get("/{user_id}/following", response_model=ResponseModel)
async def get_following(
    user_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """关注列表"""
    ledger = RelationshipLedger(db)
    await ledger.get_active_user(user_id)
    users, total = await ledger.list_following(user_id, page, limit)
    return ResponseModel(
        code=200,
        data=UserListResponse(
            users=[UserBrief.from_model(user) for user in users],
            pagination=PaginationModel.build(page, limit, total),
        ),
    )
