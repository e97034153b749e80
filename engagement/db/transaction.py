"""
事务执行器

每次尝试都在独立会话和事务中执行，并受超时约束：
- 任何异常（包括取消）都会回滚，不会留下部分写入
- ConflictError 按配置的次数重试
- 超时转换为 StorageTimeoutError
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from engagement.core.config import settings
from engagement.core.exceptions import ConflictError, StorageTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL: 40P01 死锁，40001 序列化失败
RETRYABLE_SQLSTATES = {"40P01", "40001"}
RETRYABLE_MESSAGES = ("is locked", "deadlock detected", "could not serialize")


def is_retryable(error: DBAPIError) -> bool:
    """数据库因并发冲突中止了语句，整个事务可以安全重试"""
    sqlstate = getattr(error.orig, "sqlstate", None) or getattr(error.orig, "pgcode", None)
    if sqlstate in RETRYABLE_SQLSTATES:
        return True
    message = str(error.orig if error.orig is not None else error).lower()
    return any(text in message for text in RETRYABLE_MESSAGES)


async def run_in_transaction(
    session_factory: async_sessionmaker,
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    label: str = "transaction",
    max_retries: Optional[int] = None,
    timeout: Optional[float] = None,
) -> T:
    """
    在事务中执行 work(session)

    Args:
        session_factory: 会话工厂
        work: 接收会话的协程函数，返回值会作为结果返回
        label: 日志中的操作名称
        max_retries: ConflictError 最大重试次数，默认使用配置
        timeout: 单次尝试的超时时间（秒），默认使用配置

    Raises:
        ConflictError: 重试耗尽
        StorageTimeoutError: 存储调用超时
    """
    max_retries = settings.TOGGLE_MAX_RETRIES if max_retries is None else max_retries
    timeout = settings.STORAGE_TIMEOUT_SECONDS if timeout is None else timeout

    attempt = 0
    while True:
        try:
            return await asyncio.wait_for(_attempt(session_factory, work), timeout)
        except asyncio.TimeoutError as e:
            logger.warning("%s timed out after %.2fs", label, timeout)
            raise StorageTimeoutError() from e
        except ConflictError:
            attempt += 1
            if attempt > max_retries:
                logger.warning("%s conflict persisted after %d retries", label, max_retries)
                raise
            logger.warning("%s conflict, retrying (%d/%d)", label, attempt, max_retries)
            await asyncio.sleep(settings.TOGGLE_RETRY_BACKOFF_SECONDS * attempt)


async def _attempt(session_factory: async_sessionmaker, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
    async with session_factory() as session:
        try:
            async with session.begin():
                return await work(session)
        except IntegrityError as e:
            # 唯一约束冲突说明并发请求已经改变了状态
            raise ConflictError() from e
        except DBAPIError as e:
            # 数据库锁冲突（SQLite: database is locked；PostgreSQL: 死锁或序列化失败）
            if is_retryable(e):
                raise ConflictError() from e
            raise
