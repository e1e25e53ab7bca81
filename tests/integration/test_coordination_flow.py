"""
通过装配好的容器跑端到端流程：身份解析、内容入库触发来源通知、
跨会话迁移的视频分发。
"""
import asyncio

import pytest
from sqlalchemy import select, func

from core.constants import EVENT_SOURCE_NOTIFICATION, IdentityKind
from models.models import (
    Account, ChatAdministrator, ChatPermission, ChatTelegramId, PendingNotification, VideoJobMessage,
)

H = 0x0F0F_0F0F_0F0F_0F0F


@pytest.mark.asyncio
class TestCoordinationFlow:
    async def test_concurrent_resolve_creates_single_row(self, container):
        ids = await asyncio.gather(
            container.identity.resolve_or_create(IdentityKind.ACCOUNT, 42),
            container.identity.resolve_or_create(IdentityKind.ACCOUNT, 42),
        )
        assert ids[0] == ids[1]
        async with container.db.session() as s:
            assert (await s.execute(select(func.count(Account.id)))).scalar() == 1

    async def test_pending_lookup_resolved_once(self, container):
        delivered = []
        container.bus.subscribe(EVENT_SOURCE_NOTIFICATION, delivered.append)

        account = await container.identity.resolve_or_create(IdentityKind.ACCOUNT, 42)
        await container.matcher.register_pending(account, H, 1, "photo")
        await container.matcher.register_pending(account, H, 1, "photo")
        async with container.db.session() as s:
            assert (await s.execute(select(func.count(PendingNotification.id)))).scalar() == 1

        near = H ^ 0b11
        post, _ = await container.media.cache_post("https://site/1", False, "https://cdn/1", 1, 1, hash=near)

        assert len(delivered) == 1
        assert delivered[0].account_id == account
        assert delivered[0].matched_hash == near
        assert delivered[0].content.id == post.id
        assert await container.matcher.pending_for(account) == []

        # another close hit finds nothing left to notify
        await container.media.cache_post("https://site/2", False, "https://cdn/2", 1, 1, hash=H ^ 0b1100)
        assert len(delivered) == 1

    async def test_pending_survives_restart(self, db_url):
        from core.container import Container

        first = Container(db_url=db_url)
        await first.start()
        account = await first.identity.resolve_or_create(IdentityKind.ACCOUNT, 42)
        await first.matcher.register_pending(account, H, 1, "photo")
        await first.close()

        second = Container(db_url=db_url)
        await second.start()
        try:
            delivered = []
            second.bus.subscribe(EVENT_SOURCE_NOTIFICATION, delivered.append)
            await second.router.on_content_fetched("https://site/1", False, "c", 1, 1, hash=H ^ 1)
            assert [e.account_id for e in delivered] == [account]
        finally:
            await second.close()

    async def test_complete_returns_every_link_once(self, container):
        chat_a = await container.identity.resolve_or_create(IdentityKind.CHAT, -1)
        chat_b = await container.identity.resolve_or_create(IdentityKind.CHAT, -2)
        job = await container.videos.submit("fa:12345", "pic.mp4")
        again = await container.videos.submit("fa:12345", "other.mp4")
        assert again.display_name == "pic.mp4"

        for chat, message in [(chat_a, 1), (chat_b, 2), (chat_a, 3)]:
            await container.videos.link_message(job.id, chat, message)

        expected = {(chat_a, 1), (chat_b, 2), (chat_a, 3)}
        first = await container.videos.complete(job.id, "u.mp4", "u.jpg")
        second = await container.videos.complete(job.id, "u.mp4", "u.jpg")
        assert {(l_.chat_id, l_.message_id) for l_ in first} == expected
        assert len(second) == 3
        assert first == second

    async def test_merge_leaves_nothing_keyed_by_old_chat(self, container):
        router = container.router
        old = await router.on_chat_message(-123, sender_external_id=9)
        await router.on_admin_change(-123, 9, True)
        await router.on_permissions_change(-123, {"can_delete_messages": True})
        job = await router.on_video_requested("src", "clip", -123, 77)

        new = await router.on_chat_message(-123, migrate_to_chat_id=-100123)

        assert await container.identity.lookup(IdentityKind.CHAT, -123) == new
        async with container.db.session() as s:
            for model in (ChatTelegramId, ChatAdministrator, ChatPermission, VideoJobMessage):
                count = (await s.execute(
                    select(func.count()).select_from(model).where(model.chat_id == old)
                )).scalar()
                assert count == 0, model.__tablename__
        links = await container.videos.complete(job.id, "a.mp4", "a.jpg")
        assert [(link.chat_id, link.message_id) for link in links] == [(new, 77)]

    async def test_workers_sharing_one_store_match_each_other(self, db_url):
        """两个 worker 进程共享同一个 SQLite 库"""
        from core.container import Container

        worker_a = Container(db_url=db_url)
        worker_b = Container(db_url=db_url)
        await worker_a.start()
        await worker_b.start()
        try:
            delivered = []
            worker_b.bus.subscribe(EVENT_SOURCE_NOTIFICATION, delivered.append)

            entry = await worker_a.router.on_photo_searched(42, 1, "photo", H, found=False)
            await worker_b.router.on_content_fetched("https://site/1", False, "c", 1, 1, hash=H ^ 0b11)

            assert [(e.account_id, e.searched_hash) for e in delivered] == [(entry.account_id, H)]
            assert await worker_a.matcher.pending_for(entry.account_id) == []
        finally:
            await worker_a.close()
            await worker_b.close()

    async def test_refetch_after_failed_delivery_notifies(self, container):
        delivered = []
        attempts = []

        def deliver(event):
            attempts.append(event)
            if len(attempts) == 1:
                raise RuntimeError("delivery down")
            delivered.append(event)

        container.bus.subscribe(EVENT_SOURCE_NOTIFICATION, deliver)
        account = await container.identity.resolve_or_create(IdentityKind.ACCOUNT, 42)
        await container.matcher.register_pending(account, H, 1, "photo")

        with pytest.raises(RuntimeError):
            await container.router.on_content_fetched("https://site/1", False, "c", 1, 1, hash=H ^ 1)
        assert len(await container.matcher.pending_for(account)) == 1

        await container.router.on_content_fetched("https://site/1", False, "c", 1, 1, hash=H ^ 1)
        assert [e.account_id for e in delivered] == [account]
        assert await container.matcher.pending_for(account) == []

    async def test_admin_change_racing_a_merge(self, container):
        """解析出旧 chat id 后、写入前，该 chat 被合并删除"""
        router = container.router
        await router.on_chat_message(-123)
        record_admin = container.snapshot_repo.record_admin
        merged = []

        async def merge_then_record(account_id, chat_id, is_admin, at=None):
            if not merged:
                merged.append(await container.identity.migrate(-123, -100123))
            return await record_admin(account_id, chat_id, is_admin, at=at)

        container.snapshot_repo.record_admin = merge_then_record
        await router.on_admin_change(-123, 9, True)

        assert merged[0] is not None
        new = await container.identity.lookup(IdentityKind.CHAT, -100123)
        account = await container.identity.lookup(IdentityKind.ACCOUNT, 9)
        assert await container.snapshot_repo.is_admin(account, new) is True
