"""
认证工具函数
"""
from datetime import timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from fastapi import Header, HTTPException, status
from engagement.core.config import settings
from engagement.utils.clock import utc_now


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    创建JWT访问token

    Args:
        data: 要编码到token中的数据，用户ID放在 sub 中
        expires_delta: token过期时间增量，默认使用配置中的时间

    Returns:
        str: JWT token字符串
    """
    to_encode = data.copy()
    if "sub" in to_encode:
        to_encode["sub"] = str(to_encode["sub"])

    if expires_delta:
        expire = utc_now() + expires_delta
    else:
        expire = utc_now() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_token(token: str, raise_on_error: bool = True) -> Optional[Dict[str, Any]]:
    """
    验证JWT token

    Args:
        token: JWT token字符串
        raise_on_error: 验证失败时是否抛出异常，False时返回None

    Raises:
        HTTPException: token无效或过期（如果raise_on_error=True）
    """
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        if raise_on_error:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token无效或已过期",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _user_id_from_header(authorization: str) -> int:
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _unauthorized("认证格式错误，应为: Bearer {token}")

    payload = verify_token(parts[1], raise_on_error=True)
    user_id = payload.get("sub")
    if user_id is None:
        raise _unauthorized("Token中未找到用户ID")
    try:
        return int(user_id)
    except (TypeError, ValueError):
        raise _unauthorized("Token中的用户ID无效")


async def get_current_user_id(authorization: Optional[str] = Header(None)) -> int:
    """
    从请求头获取当前用户ID（通过JWT token）

    Args:
        authorization: Authorization请求头，格式为 "Bearer {token}"

    Raises:
        HTTPException: 未提供token、格式错误或token无效
    """
    if not authorization or not authorization.strip():
        raise _unauthorized("未提供认证信息")
    return _user_id_from_header(authorization)


async def get_optional_user_id(authorization: Optional[str] = Header(None)) -> Optional[int]:
    """匿名可访问的接口使用：未提供token时返回None，提供了无效token仍然返回401"""
    if not authorization or not authorization.strip():
        return None
    return _user_id_from_header(authorization)
