"""
平台入站事件

每个处理器先经身份目录翻译外部 id，再只和一个组件交互。
处理器运行在 trace 上下文中，瞬时存储失败会重试（见 retry_on_db_lock），
永久错误抛给调用方。解析出的会话若在写入前被并发合并删除，外键失败按
瞬时错误处理，重试时会重新解析到合并后的会话。
"""

import functools
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from core.config import settings
from core.constants import EVENT_VIDEO_MESSAGES_UPDATE, IdentityKind
from core.context import trace_id_var
from core.helpers.db_utils import retry_on_db_lock
from core.logging import trace_context
from schemas.media import CachedPostDTO, PendingNotificationDTO
from schemas.video import OutwardMessage, VideoJobDTO, VideoMessagesUpdate

logger = logging.getLogger(__name__)


def inbound(func):
    """为一次入站事件加上 trace id 与调用方重试"""
    retried = retry_on_db_lock()(func)

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        current = trace_id_var.get()
        with trace_context(None if current == "-" else current):
            return await retried(*args, **kwargs)
    return wrapper


class EventRouter:
    def __init__(self, identity, snapshots, media, matcher, videos, bus):
        self.identity = identity
        self.snapshots = snapshots
        self.media = media
        self.matcher = matcher
        self.videos = videos
        self.bus = bus

    @inbound
    async def on_chat_message(
        self,
        chat_external_id: int,
        sender_external_id: Optional[int] = None,
        migrate_from_chat_id: Optional[int] = None,
        migrate_to_chat_id: Optional[int] = None,
    ) -> int:
        """
        会话中出现一条消息。平台的 migrate_from/migrate_to 字段（若有）
        把同一会话迁移前后的 id 归为一组。返回会话的内部 id。
        """
        chat_id = await self.identity.resolve_or_create(IdentityKind.CHAT, chat_external_id)
        if sender_external_id is not None:
            await self.identity.resolve_or_create(IdentityKind.ACCOUNT, sender_external_id)

        sighted = [x for x in (migrate_from_chat_id, migrate_to_chat_id) if x is not None]
        if not sighted:
            return chat_id

        group = [chat_external_id] + sighted
        newest = max(group, key=abs)
        older = [x for x in group if x != newest]
        candidate = await self.identity.detect_migration_candidate(newest, older)
        if candidate is None:
            return chat_id

        if not settings.IDENTITY_AUTO_MIGRATE:
            logger.warning(
                f"会话 {candidate} 疑似已迁移到 {newest}，自动迁移已关闭"
            )
            return chat_id

        for old_external_id in older:
            await self.identity.migrate(old_external_id, newest)
        return await self.identity.lookup(IdentityKind.CHAT, chat_external_id)

    @inbound
    async def on_admin_change(
        self, chat_external_id: int, user_external_id: int, is_admin: bool, at: Optional[datetime] = None
    ) -> None:
        chat_id = await self.identity.resolve_or_create(IdentityKind.CHAT, chat_external_id)
        account_id = await self.identity.resolve_or_create(IdentityKind.ACCOUNT, user_external_id)
        await self.snapshots.record_admin(account_id, chat_id, is_admin, at=at)

    @inbound
    async def on_permissions_change(
        self, chat_external_id: int, permissions: Dict[str, Any], at: Optional[datetime] = None
    ) -> None:
        chat_id = await self.identity.resolve_or_create(IdentityKind.CHAT, chat_external_id)
        await self.snapshots.record_permissions(chat_id, permissions, at=at)

    @inbound
    async def on_photo_searched(
        self,
        user_external_id: int,
        message_id: int,
        photo_id: str,
        hash: int,
        found: bool,
    ) -> Optional[PendingNotificationDTO]:
        """
        用户搜索了一张图。记住它的哈希；没找到结果时登记该搜索，
        之后的新内容可以回应它。
        """
        account_id = await self.identity.resolve_or_create(IdentityKind.ACCOUNT, user_external_id)
        await self.media.set_file_hash(photo_id, hash)
        if found:
            return None
        entry, _ = await self.matcher.register_pending(account_id, hash, message_id, photo_id)
        return entry

    @inbound
    async def on_content_fetched(
        self,
        post_url: str,
        thumb: bool,
        cdn_url: str,
        width: int,
        height: int,
        hash: Optional[int] = None,
    ) -> CachedPostDTO:
        post, _ = await self.media.cache_post(post_url, thumb, cdn_url, width, height, hash=hash)
        return post

    @inbound
    async def on_video_requested(
        self, source_key: str, display_name: str, chat_external_id: int, message_id: int
    ) -> VideoJobDTO:
        chat_id = await self.identity.resolve_or_create(IdentityKind.CHAT, chat_external_id)
        job = await self.videos.submit(source_key, display_name)
        await self.videos.link_message(job.id, chat_id, message_id)
        return job

    @inbound
    async def on_video_completed(self, job_id: int, mp4_url: str, thumb_url: str) -> VideoMessagesUpdate:
        links = await self.videos.complete(job_id, mp4_url, thumb_url)
        job = await self.videos.get_job_by_id(job_id)

        # 按会话当前的 id 投递，而不是关联时的 id
        addresses: Dict[int, int] = {}
        messages = []
        for link in links:
            if link.chat_id not in addresses:
                addresses[link.chat_id] = await self.identity.current_external_id(link.chat_id)
            messages.append(OutwardMessage(telegram_chat_id=addresses[link.chat_id], message_id=link.message_id))

        update = VideoMessagesUpdate(job=job, messages=messages)
        await self.bus.publish(EVENT_VIDEO_MESSAGES_UPDATE, update, wait=True)
        return update
