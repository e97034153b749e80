"""
用户Schema模型
"""
from pydantic import BaseModel, Field
from typing import List, Optional

from engagement.schemas.common import PaginationModel


class UserBrief(BaseModel):
    """用户简要信息"""
    id: int
    username: Optional[str] = None
    displayName: str = ""
    avatar: Optional[str] = None
    followersCount: int = 0

    @classmethod
    def from_model(cls, user) -> "UserBrief":
        return cls(
            id=user.id,
            username=user.username,
            displayName=user.display_name or "",
            avatar=user.avatar_url,
            followersCount=user.followers_count,
        )


class UserStatsResponse(BaseModel):
    """用户聚合计数"""
    id: int
    followersCount: int = 0
    followingCount: int = 0
    videosCount: int = 0
    totalViews: int = 0
    totalLikes: int = 0

    @classmethod
    def from_model(cls, user) -> "UserStatsResponse":
        return cls(
            id=user.id,
            followersCount=user.followers_count,
            followingCount=user.following_count,
            videosCount=user.videos_count,
            totalViews=user.total_views,
            totalLikes=user.total_likes,
        )


class UserListResponse(BaseModel):
    """用户分页列表"""
    users: List[UserBrief] = Field(default_factory=list)
    pagination: PaginationModel
