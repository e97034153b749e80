"""
评论API
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from engagement.api.deps import get_engagement_service
from engagement.db.database import get_db
from engagement.models.comment import Comment
from engagement.models.like import LIKE_TARGET_COMMENT
from engagement.schemas.common import ResponseModel, PaginationModel
from engagement.schemas.engagement import (
    CommentCreate, CommentResponse, CommentUpdate, LikeToggleResponse,
)
from engagement.services.engagement_service import EngagementService
from engagement.services.relationship_ledger import RelationshipLedger
from engagement.utils.auth import get_current_user_id

router = APIRouter(prefix="/api/comments", tags=["评论"])


async def _paged_comments(db: AsyncSession, condition, page: int, limit: int, newest_first: bool):
    total = await db.scalar(select(func.count(Comment.id)).where(condition)) or 0
    order = Comment.created_at.desc() if newest_first else Comment.created_at.asc()
    result = await db.execute(
        select(Comment)
        .where(condition)
        .order_by(order, Comment.id.desc() if newest_first else Comment.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {
        "comments": [CommentResponse.from_model(comment) for comment in result.scalars().all()],
        "pagination": PaginationModel.build(page, limit, total),
    }


@router.get("/{video_id}", response_model=ResponseModel)
async def get_comments(
    video_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """视频的顶层评论（最新在前）"""
    await RelationshipLedger(db).get_active_video(video_id)
    condition = and_(
        Comment.video_id == video_id,
        Comment.parent_id.is_(None),
        Comment.is_deleted == False,  # noqa: E712
    )
    return ResponseModel(code=200, data=await _paged_comments(db, condition, page, limit, True))


@router.get("/{comment_id}/replies", response_model=ResponseModel)
async def get_replies(
    comment_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """评论的回复（按时间正序）"""
    await RelationshipLedger(db).get_live_comment(comment_id)
    condition = and_(Comment.parent_id == comment_id, Comment.is_deleted == False)  # noqa: E712
    return ResponseModel(code=200, data=await _paged_comments(db, condition, page, limit, False))


@router.post("/{video_id}", response_model=ResponseModel)
async def create_comment(
    video_id: int,
    comment_data: CommentCreate,
    current_user_id: int = Depends(get_current_user_id),
    service: EngagementService = Depends(get_engagement_service),
):
    """发表评论或回复"""
    comment = await service.add_comment(
        current_user_id, video_id, comment_data.text, comment_data.parentComment
    )
    return ResponseModel(code=200, message="评论成功", data=CommentResponse.from_model(comment))


@router.put("/{comment_id}", response_model=ResponseModel)
async def update_comment(
    comment_id: int,
    comment_data: CommentUpdate,
    current_user_id: int = Depends(get_current_user_id),
    service: EngagementService = Depends(get_engagement_service),
):
    """编辑自己的评论"""
    comment = await service.edit_comment(current_user_id, comment_id, comment_data.text)
    return ResponseModel(code=200, message="评论已更新", data=CommentResponse.from_model(comment))


@router.delete("/{comment_id}", response_model=ResponseModel)
async def delete_comment(
    comment_id: int,
    current_user_id: int = Depends(get_current_user_id),
    service: EngagementService = Depends(get_engagement_service),
):
    await service.delete_comment(current_user_id, comment_id)
    return ResponseModel(code=200, message="评论已删除")


@router.post("/{comment_id}/like", response_model=ResponseModel)
async def like_comment(
    comment_id: int,
    current_user_id: int = Depends(get_current_user_id),
    service: EngagementService = Depends(get_engagement_service),
):
    result = await service.toggle_like(current_user_id, LIKE_TARGET_COMMENT, comment_id)
    return ResponseModel(code=200, data=LikeToggleResponse(liked=result.liked, likes=result.likes))
