"""
用户统计API
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from engagement.core.exceptions import PermissionDeniedError
from engagement.db.database import get_db, get_session_factory
from engagement.schemas.common import ResponseModel
from engagement.schemas.user import UserBrief, UserStatsResponse
from engagement.services.user_service import UserStatsService
from engagement.utils.auth import get_current_user_id

router = APIRouter(prefix="/api/users", tags=["用户"])


@router.get("/leaderboard", response_model=ResponseModel)
async def get_leaderboard(
    sort_by: str = Query("followers", alias="sortBy", description="followers / views / likes"),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """排行榜"""
    users = await UserStatsService(db).leaderboard(sort_by, limit)
    return ResponseModel(
        code=200,
        data=[
            {**UserStatsResponse.from_model(user).model_dump(), "rank": index + 1,
             "user": UserBrief.from_model(user).model_dump()}
            for index, user in enumerate(users)
        ],
    )


@router.get("/{user_id}", response_model=ResponseModel)
async def get_user_stats(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """用户聚合计数"""
    user = await UserStatsService(db, session_factory).get_stats(user_id)
    return ResponseModel(code=200, data=UserStatsResponse.from_model(user))


@router.get("/{user_id}/analytics", response_model=ResponseModel)
async def get_user_analytics(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user_id: int = Depends(get_current_user_id),
):
    """创作者数据分析（仅本人可见）"""
    if user_id != current_user_id:
        raise PermissionDeniedError("只能查看自己的数据分析")
    analytics = await UserStatsService(db).creator_analytics(user_id)
    return ResponseModel(code=200, data=analytics)
