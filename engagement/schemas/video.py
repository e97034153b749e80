"""
视频Schema模型
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from engagement.schemas.common import PaginationModel


class VideoCreate(BaseModel):
    """登记视频请求模型（媒体文件已上传完成）"""
    title: str = Field(..., min_length=1, max_length=100, description="视频标题")
    description: str = Field("", max_length=500, description="视频描述")
    videoUrl: str = Field(..., description="视频地址")
    thumbnailUrl: str = Field(..., description="封面地址")
    duration: int = Field(..., ge=1, le=300, description="时长（秒）")
    category: str = Field(..., pattern="^(short|long)$", description="分类：short / long")
    isPublic: bool = Field(True, description="是否公开")
    allowComments: bool = Field(True, description="是否允许评论")


class VideoStatsResponse(BaseModel):
    """视频统计响应模型"""
    views: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    engagementRate: float = 0.0
    completionRate: float = 0.0
    averageWatchTime: float = 0.0
    recommendationScore: float = 0.0


class VideoResponse(BaseModel):
    """视频响应模型"""
    id: int
    creatorId: int
    title: str
    description: str = ""
    videoUrl: str
    thumbnailUrl: str
    duration: int
    category: str
    isPublic: bool
    allowComments: bool
    publishedAt: datetime
    stats: VideoStatsResponse

    @classmethod
    def from_model(cls, video) -> "VideoResponse":
        return cls(
            id=video.id,
            creatorId=video.creator_id,
            title=video.title,
            description=video.description or "",
            videoUrl=video.video_url,
            thumbnailUrl=video.thumbnail_url,
            duration=video.duration,
            category=video.category,
            isPublic=video.is_public,
            allowComments=video.allow_comments,
            publishedAt=video.published_at,
            stats=VideoStatsResponse(
                views=video.views,
                likes=video.likes,
                comments=video.comments_count,
                shares=video.shares,
                engagementRate=video.engagement_rate,
                completionRate=video.completion_rate,
                averageWatchTime=video.average_watch_time,
                recommendationScore=video.recommendation_score,
            ),
        )


class FeedResponse(BaseModel):
    """Feed分页响应"""
    videos: List[VideoResponse] = Field(default_factory=list)
    mode: Optional[str] = None
    pagination: PaginationModel


class ViewCreate(BaseModel):
    """记录观看请求模型"""
    watchDuration: float = Field(..., ge=0, description="观看时长（秒）")
    completionPercentage: float = Field(..., ge=0, le=100, description="观看完成百分比")
    sessionId: Optional[str] = Field(None, max_length=64, description="会话ID")
    deviceType: str = Field("unknown", description="设备类型")
    platform: str = Field("unknown", description="平台")


class ViewResponse(BaseModel):
    views: int
    completionRate: float
    averageWatchTime: float
