from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import List, Any, Union
from pathlib import Path

import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """应用配置 (pydantic v2)，从环境变量和 .env 加载"""

    # === 基础配置 ===
    APP_ENV: str = Field(
        default="development",
        description="development, testing, production"
    )
    DEBUG: bool = Field(default=False)

    # === 路径配置 ===
    BASE_DIR: Path = Field(
        default_factory=lambda: Path(__file__).resolve().parent.parent.parent,
        description="项目根目录"
    )
    LOG_DIR: Path = Field(
        default_factory=lambda: Path(__file__).resolve().parent.parent.parent / "logs",
        description="滚动日志文件目录"
    )
    DB_DIR: Path = Field(
        default_factory=lambda: Path(__file__).resolve().parent.parent.parent / "db",
        description="SQLite 数据库目录"
    )

    # === 日志配置 ===
    LOG_LEVEL: str = Field(
        default="INFO",
        description="DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )
    LOG_FORMAT: str = Field(default="text")
    LOG_INCLUDE_TRACEBACK: bool = Field(default=False)
    LOG_COLOR: bool = Field(default=True)
    LOG_TO_FILE: bool = Field(default=True)
    LOG_MAX_BYTES: int = Field(default=10 * 1024 * 1024)
    LOG_BACKUP_COUNT: int = Field(default=5)
    LOG_MUTE_LOGGERS: Union[List[str], str] = Field(default=[])
    LOG_LEVEL_OVERRIDES: str = Field(
        default="",
        description="逗号分隔的 logger=LEVEL，例如 sqlalchemy.engine=WARNING"
    )

    # === 数据库配置 ===
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///db/foxsource.db",
        description="SQLAlchemy 异步数据库 URL"
    )
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=30)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)
    DB_ECHO: bool = Field(default=False)
    DB_BUSY_TIMEOUT_MS: int = Field(
        default=5000,
        description="每个连接设置的 SQLite busy_timeout"
    )
    DB_LOCK_RETRIES: int = Field(
        default=5,
        description="瞬时存储错误的调用方重试次数"
    )

    # === 身份映射 ===
    IDENTITY_AUTO_MIGRATE: bool = Field(
        default=True,
        description="检测到迁移候选时自动合并会话"
    )

    # === 来源通知 ===
    NOTIFY_MATCH_DISTANCE: int = Field(
        default=3,
        description="新内容与待通知搜索匹配时使用的汉明半径"
    )
    NOTIFY_GOOD_MATCH_DISTANCE: int = Field(
        default=2,
        description="距离不超过此值标记为 good，超过为 weak"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        frozen=False,
    )

    @field_validator("LOG_MUTE_LOGGERS", mode="before")
    @classmethod
    def parse_list_fields(cls, v: Any) -> List[Any]:
        if isinstance(v, str):
            import json
            try:
                return list(json.loads(v))
            except json.JSONDecodeError:
                # 退回逗号分隔
                return [t.strip() for t in v.split(",") if t.strip()]
        return list(v)

    @field_validator("NOTIFY_MATCH_DISTANCE", "NOTIFY_GOOD_MATCH_DISTANCE")
    @classmethod
    def check_distance(cls, v: int) -> int:
        if not 0 <= v <= 64:
            raise ValueError("hash distance must be between 0 and 64")
        return v


@lru_cache()
def get_settings() -> Settings:
    """带缓存的配置单例"""
    return Settings()


settings = get_settings()
