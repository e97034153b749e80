"""
数据库连接和会话管理
"""
from sqlalchemy import BigInteger, Integer
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from engagement.core.config import settings

# SQLite 只有 INTEGER PRIMARY KEY 才会自增
BigIntegerType = BigInteger().with_variant(Integer(), "sqlite")


def build_engine(url: str, echo: bool = False):
    """
    根据URL创建异步引擎

    SQLite（测试环境）不支持连接池参数，只有PostgreSQL配置连接池
    """
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)
    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


def build_session_factory(bind) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


# 创建异步引擎
engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

# 创建会话工厂
AsyncSessionLocal = build_session_factory(engine)

# 创建Base类
Base = declarative_base()


async def init_db(bind=None):
    """创建所有数据表"""
    # 导入模型以注册到 Base.metadata
    import engagement.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncSession:
    """
    获取数据库会话依赖
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker:
    """
    获取会话工厂依赖

    写操作需要按事务重试，每次重试使用独立会话
    """
    return AsyncSessionLocal
