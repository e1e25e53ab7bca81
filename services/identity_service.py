"""
身份目录

把平台的外部账号/会话 id 映射为稳定的内部代理 id。账号 id 不会变。
会话被平台迁移（普通群 -> 超级群）时外部 id 会变，此时合并新旧会话行，
旧 id 下记录的一切都随会话迁移。
"""

import asyncio
import logging
from typing import Iterable, Optional

from core.constants import EVENT_CHAT_MIGRATED, IdentityKind
from core.exceptions import InvariantViolation, NotFoundError
from repositories.identity_repo import IdentityRepository
from schemas.chat import AccountDTO, MigrationResult

logger = logging.getLogger(__name__)


class IdentityDirectory:
    def __init__(self, repo: IdentityRepository, bus=None):
        self.repo = repo
        self.bus = bus
        # 创建、合并、迁移共用一把粗粒度锁；asyncio.Lock 不可重入，
        # 持锁代码调用 *_locked 辅助方法
        self._lock = asyncio.Lock()

    async def find(self, kind: IdentityKind, external_id: int) -> Optional[int]:
        kind = IdentityKind(kind)
        if kind is IdentityKind.ACCOUNT:
            return await self.repo.find_account(external_id)
        return await self.repo.find_chat(external_id)

    async def lookup(self, kind: IdentityKind, external_id: int) -> int:
        internal_id = await self.find(kind, external_id)
        if internal_id is None:
            raise NotFoundError(
                f"no {IdentityKind(kind).value} for external id {external_id}",
                context={"kind": IdentityKind(kind).value, "external_id": external_id},
            )
        return internal_id

    async def resolve_or_create(self, kind: IdentityKind, external_id: int) -> int:
        """
        幂等的查询或插入，并发调用方最终得到同一个内部 id。
        快速路径不持锁，返回的会话 id 可能随即被合并删除；随后的写入会因
        外键失败得到 TransientError，由调用方重试重新解析。
        """
        internal_id = await self.find(kind, external_id)
        if internal_id is not None:
            return internal_id
        async with self._lock:
            return await self._resolve_or_create_locked(kind, external_id)

    async def _resolve_or_create_locked(self, kind: IdentityKind, external_id: int) -> int:
        kind = IdentityKind(kind)
        if kind is IdentityKind.ACCOUNT:
            internal_id, created = await self.repo.insert_account(external_id)
        else:
            internal_id, created = await self.repo.insert_chat(external_id)
        if created:
            logger.info(f"[Identity] 新建 {kind.value} {internal_id} (外部 id {external_id})")
        return internal_id

    # ---- 账号 ----

    async def create_account(self) -> int:
        """创建尚无外部 id 的账号（之后再关联）"""
        account_id = await self.repo.create_unlinked_account()
        logger.info(f"[Identity] 新建未关联账号 {account_id}")
        return account_id

    async def link_account(self, account_id: int, external_id: int) -> AccountDTO:
        async with self._lock:
            account = await self.repo.link_account(account_id, external_id)
        logger.info(f"[Identity] 账号 {account_id} 已关联外部 id {external_id}")
        return account

    async def get_account(self, account_id: int) -> Optional[AccountDTO]:
        return await self.repo.get_account(account_id)

    # ---- 会话 ----

    async def current_external_id(self, chat_id: int) -> int:
        """会话当前用于投递的外部 id：其拥有的绝对值最大的 id"""
        ids = await self.repo.chat_telegram_ids(chat_id)
        if not ids:
            raise NotFoundError(f"chat {chat_id} has no external ids", context={"chat_id": chat_id})
        return max(ids, key=abs)

    async def detect_migration_candidate(
        self, new_external_id: int, sighted_with: Iterable[int] = ()
    ) -> Optional[int]:
        """
        仅作建议。在与 new_external_id 一同出现的外部 id 所属的会话中，
        返回外部 id 绝对值全部更小的那个（迁移后的会话 id 总是更长）。
        没有疑似前身时返回 None。
        """
        related = [x for x in sighted_with if x is not None and x != new_external_id]
        if not related:
            return None

        new_owner = await self.repo.find_chat(new_external_id)
        owners = await self.repo.chats_for_telegram_ids(related)
        for chat_id in sorted(set(owners.values())):
            if chat_id == new_owner:
                continue
            known = await self.repo.chat_telegram_ids(chat_id)
            if known and abs(new_external_id) > max(abs(x) for x in known):
                logger.debug(
                    f"[Identity] 会话 {chat_id} {known} 疑似已迁移到外部 id {new_external_id}"
                )
                return chat_id
        return None

    async def merge(self, old_chat_id: int, new_chat_id: int) -> MigrationResult:
        async with self._lock:
            result = await self._merge_locked(old_chat_id, new_chat_id)
        await self._announce(result)
        return result

    async def _merge_locked(self, old_chat_id: int, new_chat_id: int) -> MigrationResult:
        if old_chat_id == new_chat_id:
            logger.error(f"[Identity] 拒绝把会话 {old_chat_id} 合并到自身")
            raise InvariantViolation(
                "cannot merge a chat into itself",
                context={"chat_id": old_chat_id},
            )
        result = await self.repo.merge_chats(old_chat_id, new_chat_id)
        logger.info(
            f"[Identity] 已合并会话 {old_chat_id} -> {new_chat_id}: "
            f"ids={result.moved_telegram_ids} admins={result.moved_admin_rows} "
            f"perms={result.moved_permission_rows} configs={result.moved_config_rows} "
            f"links={result.moved_job_links} dropped_links={result.dropped_job_links}"
        )
        return result

    async def migrate(
        self, old_external_id: int, new_external_id: int, force: bool = False
    ) -> Optional[MigrationResult]:
        """
        把 old_external_id 对应的会话合并进 new_external_id 对应的会话
        （必要时创建）。不带 force 时需通过 id 大小的启发式判断。
        无需合并时返回 None。
        """
        async with self._lock:
            new_chat_id = await self._resolve_or_create_locked(IdentityKind.CHAT, new_external_id)
            old_chat_id = await self.repo.find_chat(old_external_id)
            if old_chat_id is None or old_chat_id == new_chat_id:
                return None
            if not force:
                known = await self.repo.chat_telegram_ids(old_chat_id)
                if abs(new_external_id) <= max(abs(x) for x in known):
                    logger.warning(
                        f"[Identity] 不迁移 {old_external_id} -> {new_external_id}: "
                        f"新 id 的绝对值不大于 {known}"
                    )
                    return None
            result = await self._merge_locked(old_chat_id, new_chat_id)
        await self._announce(result)
        return result

    async def _announce(self, result: MigrationResult) -> None:
        if self.bus is not None:
            await self.bus.publish(EVENT_CHAT_MIGRATED, result)
