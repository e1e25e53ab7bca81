from typing import Optional
import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from core.config import settings
from core.constants import EVENT_CONTENT_INDEXED
from core.database import Database
from core.db_init import init_db
from core.event_bus import EventBus
from repositories.config_repo import ConfigRepository
from repositories.identity_repo import IdentityRepository
from repositories.media_repo import CachedPostRepository, FileHashRepository
from repositories.notification_repo import PendingNotificationRepository
from repositories.snapshot_repo import SnapshotRepository
from repositories.video_repo import VideoJobRepository
from services.event_router import EventRouter
from services.identity_service import IdentityDirectory
from services.media_cache_service import MediaCacheService
from services.notification_service import NotificationMatcher
from services.video_service import JobFanoutTracker

logger = logging.getLogger(__name__)


class Container:
    """构建并装配数据库、事件总线、仓库与服务"""

    def __init__(self, db_url: Optional[str] = None, engine: Optional[AsyncEngine] = None):
        if engine is not None:
            self.db = Database(engine=engine)
        else:
            self.db = Database(db_url or settings.DATABASE_URL)

        self.bus = EventBus()
        logger.info("EventBus 初始化完成")

        # 所有仓库共用一个 db
        self.identity_repo = IdentityRepository(self.db)
        self.snapshot_repo = SnapshotRepository(self.db)
        self.config_repo = ConfigRepository(self.db)
        self.post_repo = CachedPostRepository(self.db)
        self.file_hash_repo = FileHashRepository(self.db)
        self.pending_repo = PendingNotificationRepository(self.db)
        self.video_repo = VideoJobRepository(self.db)
        logger.info("仓库层初始化完成")

        self.identity = IdentityDirectory(self.identity_repo, self.bus)
        self.media = MediaCacheService(self.post_repo, self.file_hash_repo, self.bus)
        self.matcher = NotificationMatcher(self.pending_repo, self.bus)
        self.videos = JobFanoutTracker(self.video_repo)
        self.router = EventRouter(
            identity=self.identity,
            snapshots=self.snapshot_repo,
            media=self.media,
            matcher=self.matcher,
            videos=self.videos,
            bus=self.bus,
        )
        logger.info("服务层初始化完成")

        # 缓存内容只经由总线到达匹配器
        self.bus.subscribe(EVENT_CONTENT_INDEXED, self.matcher.on_content_indexed)
        logger.info("事件监听器注册完成")

    async def start(self) -> None:
        await init_db(self.db)
        posts = await self.media.load()
        pending = await self.matcher.load()
        logger.info(f"容器启动完成: 已索引 {posts} 条缓存内容, {pending} 条待通知")

    async def close(self) -> None:
        await self.bus.drain()
        await self.db.close()
        logger.info("容器已关闭")
