from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
import logging
import os

logger = logging.getLogger(__name__)


class Database:
    def __init__(self, db_url: Optional[str] = None, engine: Optional[AsyncEngine] = None) -> None:
        if engine:
            # 共享引擎模式
            self.engine = engine
            logger.info(f"[Database] 使用共享引擎: {engine.url}")
        elif db_url:
            if db_url.startswith('sqlite://') and 'aiosqlite' not in db_url:
                db_url = db_url.replace('sqlite://', 'sqlite+aiosqlite://')

            from core.config import settings

            connect_args = {"timeout": 30}
            engine_kwargs = {}
            if 'sqlite' in db_url:
                connect_args["check_same_thread"] = False
                self._ensure_sqlite_dir(db_url)
            if ':memory:' not in db_url:
                engine_kwargs = {
                    "pool_size": settings.DB_POOL_SIZE,
                    "max_overflow": settings.DB_MAX_OVERFLOW,
                    "pool_timeout": settings.DB_POOL_TIMEOUT,
                    "pool_recycle": settings.DB_POOL_RECYCLE,
                }

            self.engine = create_async_engine(
                db_url,
                echo=settings.DB_ECHO,
                connect_args=connect_args,
                **engine_kwargs,
            )

            if 'sqlite' in db_url:
                busy_timeout = settings.DB_BUSY_TIMEOUT_MS

                def set_sqlite_pragma(dbapi_connection, connection_record):
                    cursor = dbapi_connection.cursor()
                    try:
                        cursor.execute("PRAGMA journal_mode=WAL")
                        cursor.execute("PRAGMA synchronous=NORMAL")
                        cursor.execute("PRAGMA foreign_keys=ON")
                        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout)}")
                    finally:
                        cursor.close()

                # AsyncEngine 的事件挂在 sync_engine 上
                event.listen(self.engine.sync_engine, "connect", set_sqlite_pragma)

            logger.info(f"[Database] 已创建引擎: {db_url}")
        else:
            raise ValueError("Must provide either db_url or engine")

        self.session_factory = async_sessionmaker(
            self.engine, expire_on_commit=False, class_=AsyncSession
        )

    @staticmethod
    def _ensure_sqlite_dir(db_url: str) -> None:
        db_path = db_url.split(':///', 1)[-1].split('?', 1)[0]
        if not db_path or db_path == ':memory:' or db_path.startswith('file:'):
            return
        db_dir = os.path.dirname(os.path.abspath(db_path))
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)
            logger.info(f"[Database] 已创建数据库目录: {db_dir}")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        session = self.session_factory()
        try:
            yield session
            if session.in_transaction():
                await session.commit()
        except Exception as e:
            if session.in_transaction():
                await session.rollback()
                logger.debug(f"[Database] 会话 {id(session)} 已回滚: {e!r}")
            raise
        finally:
            await session.close()

    async def close(self) -> None:
        logger.info("[Database] 正在释放引擎")
        await self.engine.dispose()
