"""
通用Schema模型
"""
from pydantic import BaseModel
from typing import Any, Optional


class ResponseModel(BaseModel):
    """标准响应模型"""
    code: int = 200
    message: Optional[str] = None
    data: Optional[Any] = None


class PaginationModel(BaseModel):
    """分页模型"""
    page: int
    limit: int
    total: int
    totalPages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PaginationModel":
        return cls(
            page=page,
            limit=limit,
            total=total,
            totalPages=(total + limit - 1) // limit if limit else 0,
        )
