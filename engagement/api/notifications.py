"""
通知API
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from engagement.api.deps import get_engagement_service
from engagement.db.database import get_db
from engagement.schemas.common import ResponseModel, PaginationModel
from engagement.schemas.notification import (
    NotificationListResponse, NotificationPreferencesResponse,
    NotificationPreferencesUpdate, NotificationResponse,
)
from engagement.services.engagement_service import EngagementService
from engagement.services.notification_service import NotificationService
from engagement.utils.auth import get_current_user_id

router = APIRouter(prefix="/api/notifications", tags=["通知"])


@router.get("", response_model=ResponseModel)
async def get_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    kind: Optional[str] = Query(None, description="通知类型过滤"),
    db: AsyncSession = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id),
):
    """
    获取通知列表（最新在前）
    """
    items, total, unread = await NotificationService(db).list_notifications(
        current_user_id, page, limit, kind
    )
    return ResponseModel(
        code=200,
        data=NotificationListResponse(
            notifications=[NotificationResponse.from_model(item) for item in items],
            unreadCount=unread,
            pagination=PaginationModel.build(page, limit, total),
        ),
    )


@router.get("/unread-count", response_model=ResponseModel)
async def get_unread_count(
    db: AsyncSession = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id),
):
    count = await NotificationService(db).unread_count(current_user_id)
    return ResponseModel(code=200, data={"unreadCount": count})


@router.put("/read-all", response_model=ResponseModel)
async def mark_all_as_read(
    service: EngagementService = Depends(get_engagement_service),
    current_user_id: int = Depends(get_current_user_id),
):
    updated = await service.mark_all_notifications_read(current_user_id)
    return ResponseModel(code=200, message="全部已读", data={"updated": updated})


@router.put("/settings", response_model=ResponseModel)
async def update_settings(
    settings_data: NotificationPreferencesUpdate,
    service: EngagementService = Depends(get_engagement_service),
    current_user_id: int = Depends(get_current_user_id),
):
    """更新通知偏好"""
    user = await service.update_notification_preferences(
        current_user_id,
        likes=settings_data.likes,
        comments=settings_data.comments,
        follows=settings_data.follows,
        mentions=settings_data.mentions,
    )
    return ResponseModel(
        code=200,
        message="设置已更新",
        data=NotificationPreferencesResponse(
            likes=user.notify_likes,
            comments=user.notify_comments,
            follows=user.notify_follows,
            mentions=user.notify_mentions,
        ),
    )


@router.put("/{notification_id}/read", response_model=ResponseModel)
async def mark_as_read(
    notification_id: int,
    service: EngagementService = Depends(get_engagement_service),
    current_user_id: int = Depends(get_current_user_id),
):
    """标记单条通知为已读（重复调用无副作用）"""
    notification = await service.mark_notification_read(current_user_id, notification_id)
    return ResponseModel(code=200, data=NotificationResponse.from_model(notification))


@router.delete("/{notification_id}", response_model=ResponseModel)
async def delete_notification(
    notification_id: int,
    service: EngagementService = Depends(get_engagement_service),
    current_user_id: int = Depends(get_current_user_id),
):
    await service.delete_notification(current_user_id, notification_id)
    return ResponseModel(code=200, message="通知已删除")


@router.delete("", response_model=ResponseModel)
async def delete_all_notifications(
    service: EngagementService = Depends(get_engagement_service),
    current_user_id: int = Depends(get_current_user_id),
):
    deleted = await service.delete_all_notifications(current_user_id)
    return ResponseModel(code=200, message="通知已清空", data={"deleted": deleted})
