"""
应用配置文件
"""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """应用配置"""

    # 应用基本配置
    APP_NAME: str = "Dorphin Engagement Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # 数据库配置
    DB_USERNAME: str = "postgres"
    DB_PASSWORD: str = "postgres"
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "dorphin"
    DATABASE_URL_OVERRIDE: Optional[str] = None  # 例如测试时使用 sqlite+aiosqlite

    # JWT配置
    SECRET_KEY: str = "your-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # CORS配置
    CORS_ORIGINS: list = ["*"]

    # 排序权重配置（推荐分 = 加权对数计数 * (1 + 新鲜度加成 * 新鲜度)）
    RANKING_WEIGHT_VIEWS: float = 0.3
    RANKING_WEIGHT_LIKES: float = 0.4
    RANKING_WEIGHT_COMMENTS: float = 0.2
    RANKING_WEIGHT_SHARES: float = 0.1
    RANKING_RECENCY_BOOST: float = 0.5
    RANKING_DECAY_DAYS: float = 30.0  # 新鲜度线性衰减窗口（天）
    RANKING_COMPLETION_THRESHOLD: float = 90.0  # 完播判定（百分比）
    RANKING_STALENESS_SECONDS: int = 3600  # 推荐分最长缓存时间

    # Feed配置
    FEED_DEFAULT_PAGE_SIZE: int = 20
    FEED_MAX_PAGE_SIZE: int = 100
    TRENDING_WINDOW_DAYS: int = 7  # 与 RANKING_DECAY_DAYS 相互独立
    TRENDING_DEFAULT_LIMIT: int = 20

    # 数据保留配置
    NOTIFICATION_RETENTION_DAYS: int = 30
    VIEW_RETENTION_DAYS: int = 90

    # 存储调用超时与重试
    STORAGE_TIMEOUT_SECONDS: float = 5.0
    TOGGLE_MAX_RETRIES: int = 3
    TOGGLE_RETRY_BACKOFF_SECONDS: float = 0.05

    # 后台维护任务（计数对账、过期清理、推荐分刷新）
    MAINTENANCE_WORKER_ENABLED: bool = True
    MAINTENANCE_INTERVAL_SECONDS: int = 300
    RECONCILE_BATCH_SIZE: int = 200
    RECONCILE_ON_READ: bool = False

    @property
    def DATABASE_URL(self) -> str:
        """获取数据库连接URL"""
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return f"postgresql+asyncpg://{self.DB_USERNAME}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    class Config:
        case_sensitive = True
        env_file = ".env"


settings = Settings()
