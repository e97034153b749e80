"""
互动Schema模型
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class FollowToggleResponse(BaseModel):
    following: bool
    followersCount: int


class FollowStatusResponse(BaseModel):
    following: bool


class LikeToggleResponse(BaseModel):
    liked: bool
    likes: int


class LikeStatusResponse(BaseModel):
    liked: bool


class ShareResponse(BaseModel):
    shares: int


class CommentCreate(BaseModel):
    """发表评论请求模型"""
    text: str = Field(..., min_length=1, max_length=500, description="评论内容")
    parentComment: Optional[int] = Field(None, description="父评论ID（回复时填写）")


class CommentUpdate(BaseModel):
    """编辑评论请求模型"""
    text: str = Field(..., min_length=1, max_length=500, description="评论内容")


class CommentResponse(BaseModel):
    """评论响应模型"""
    id: int
    videoId: int
    authorId: int
    parentId: Optional[int] = None
    text: str
    likes: int = 0
    isDeleted: bool = False
    isEdited: bool = False
    createdAt: datetime

    @classmethod
    def from_model(cls, comment) -> "CommentResponse":
        return cls(
            id=comment.id,
            videoId=comment.video_id,
            authorId=comment.author_id,
            parentId=comment.parent_id,
            text=comment.content,
            likes=comment.likes or 0,
            isDeleted=comment.is_deleted,
            isEdited=bool(comment.is_edited),
            createdAt=comment.created_at,
        )
