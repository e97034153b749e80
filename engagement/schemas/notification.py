"""
通知Schema模型
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from engagement.schemas.common import PaginationModel


class NotificationResponse(BaseModel):
    """通知响应模型"""
    id: int
    kind: str
    senderId: int
    videoId: Optional[int] = None
    commentId: Optional[int] = None
    message: str
    isRead: bool
    createdAt: datetime
    expiresAt: datetime

    @classmethod
    def from_model(cls, notification) -> "NotificationResponse":
        return cls(
            id=notification.id,
            kind=notification.kind,
            senderId=notification.sender_id,
            videoId=notification.video_id,
            commentId=notification.comment_id,
            message=notification.message,
            isRead=notification.is_read,
            createdAt=notification.created_at,
            expiresAt=notification.expires_at,
        )


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse] = Field(default_factory=list)
    unreadCount: int = 0
    pagination: PaginationModel


class NotificationPreferencesUpdate(BaseModel):
    """通知偏好更新请求模型"""
    likes: Optional[bool] = Field(None, description="点赞/分享通知")
    comments: Optional[bool] = Field(None, description="评论/回复通知")
    follows: Optional[bool] = Field(None, description="关注通知")
    mentions: Optional[bool] = Field(None, description="提及通知")


class NotificationPreferencesResponse(BaseModel):
    likes: bool
    comments: bool
    follows: bool
    mentions: bool
