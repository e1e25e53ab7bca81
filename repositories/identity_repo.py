from typing import Dict, Iterable, List, Optional, Tuple
import logging

from sqlalchemy import select, insert, update, delete

from core.exceptions import ConflictError, NotFoundError
from core.helpers.db_utils import translate_db_errors
from models.models import (
    Account, Chat, ChatTelegramId, ChatAdministrator, ChatPermission,
    ChatConfig, VideoJobMessage, utcnow,
)
from schemas.chat import AccountDTO, MigrationResult

logger = logging.getLogger(__name__)


class IdentityRepository:
    """账号与会话的 外部 id <-> 代理 id 存储"""

    def __init__(self, db):
        self.db = db

    # ---- 账号 ----

    @translate_db_errors
    async def find_account(self, telegram_id: int) -> Optional[int]:
        async with self.db.session() as session:
            stmt = select(Account.id).where(Account.telegram_id == telegram_id)
            return (await session.execute(stmt)).scalar_one_or_none()

    @translate_db_errors
    async def get_account(self, account_id: int) -> Optional[AccountDTO]:
        async with self.db.session() as session:
            obj = await session.get(Account, account_id)
            return AccountDTO.model_validate(obj) if obj else None

    @translate_db_errors
    async def insert_account(self, telegram_id: int) -> Tuple[int, bool]:
        """查询或插入，返回 (account_id, created)"""
        async with self.db.session() as session:
            stmt = insert(Account).values(
                telegram_id=telegram_id,
                created_at=utcnow(),
            ).prefix_with('OR IGNORE')
            result = await session.execute(stmt)
            created = result.rowcount > 0
            account_id = (await session.execute(
                select(Account.id).where(Account.telegram_id == telegram_id)
            )).scalar_one()
            return account_id, created

    @translate_db_errors
    async def create_unlinked_account(self) -> int:
        async with self.db.session() as session:
            account = Account(telegram_id=None)
            session.add(account)
            await session.flush()
            return account.id

    @translate_db_errors
    async def link_account(self, account_id: int, telegram_id: int) -> AccountDTO:
        """给尚无外部 id 的账号关联外部 id，只能关联一次"""
        async with self.db.session() as session:
            account = await session.get(Account, account_id)
            if account is None:
                raise NotFoundError(f"account {account_id} does not exist")
            if account.telegram_id == telegram_id:
                return AccountDTO.model_validate(account)
            if account.telegram_id is not None:
                raise ConflictError(
                    f"account {account_id} is already linked",
                    context={"account_id": account_id, "telegram_id": account.telegram_id},
                )
            owner = (await session.execute(
                select(Account.id).where(Account.telegram_id == telegram_id)
            )).scalar_one_or_none()
            if owner is not None:
                raise ConflictError(
                    f"telegram id {telegram_id} already belongs to account {owner}",
                    context={"account_id": owner, "telegram_id": telegram_id},
                )
            account.telegram_id = telegram_id
            await session.flush()
            return AccountDTO.model_validate(account)

    # ---- 会话 ----

    @staticmethod
    async def _chat_id_for(session, telegram_id: int) -> Optional[int]:
        stmt = select(ChatTelegramId.chat_id).where(ChatTelegramId.telegram_id == telegram_id)
        return (await session.execute(stmt)).scalar_one_or_none()

    @translate_db_errors
    async def find_chat(self, telegram_id: int) -> Optional[int]:
        async with self.db.session() as session:
            return await self._chat_id_for(session, telegram_id)

    @translate_db_errors
    async def insert_chat(self, telegram_id: int) -> Tuple[int, bool]:
        """
        按外部 id 查询或创建会话，返回 (chat_id, created)。
        外部 id 行用 OR IGNORE 插入；若被其他写入方抢先，回滚刚建的会话行。
        """
        async with self.db.session() as session:
            existing = await self._chat_id_for(session, telegram_id)
            if existing is not None:
                return existing, False

            chat = Chat(created_at=utcnow())
            session.add(chat)
            await session.flush()

            stmt = insert(ChatTelegramId).values(
                chat_id=chat.id,
                telegram_id=telegram_id,
                created_at=utcnow(),
            ).prefix_with('OR IGNORE')
            result = await session.execute(stmt)
            if result.rowcount > 0:
                return chat.id, True

            await session.rollback()
            logger.debug(f"外部 id {telegram_id} 的会话已被并发创建")
            return await self._chat_id_for(session, telegram_id), False

    @translate_db_errors
    async def chat_exists(self, chat_id: int) -> bool:
        async with self.db.session() as session:
            return (await session.get(Chat, chat_id)) is not None

    @translate_db_errors
    async def chat_telegram_ids(self, chat_id: int) -> List[int]:
        async with self.db.session() as session:
            stmt = (
                select(ChatTelegramId.telegram_id)
                .where(ChatTelegramId.chat_id == chat_id)
                .order_by(ChatTelegramId.id)
            )
            return list((await session.execute(stmt)).scalars().all())

    @translate_db_errors
    async def chats_for_telegram_ids(self, telegram_ids: Iterable[int]) -> Dict[int, int]:
        ids = list(telegram_ids)
        if not ids:
            return {}
        async with self.db.session() as session:
            stmt = select(ChatTelegramId.telegram_id, ChatTelegramId.chat_id).where(
                ChatTelegramId.telegram_id.in_(ids)
            )
            return {row.telegram_id: row.chat_id for row in (await session.execute(stmt)).all()}

    @translate_db_errors
    async def merge_chats(self, old_chat_id: int, new_chat_id: int) -> MigrationResult:
        """
        在同一个事务中把所有指向旧会话的外键改到新会话，并删除旧会话行
        """
        async with self.db.session() as session:
            for chat_id in (old_chat_id, new_chat_id):
                if await session.get(Chat, chat_id) is None:
                    raise NotFoundError(f"chat {chat_id} does not exist", context={"chat_id": chat_id})

            result = MigrationResult(old_chat_id=old_chat_id, new_chat_id=new_chat_id)

            async def _move(model) -> int:
                stmt = (
                    update(model)
                    .where(model.chat_id == old_chat_id)
                    .values(chat_id=new_chat_id)
                    .execution_options(synchronize_session=False)
                )
                return (await session.execute(stmt)).rowcount

            result.moved_telegram_ids = await _move(ChatTelegramId)
            result.moved_admin_rows = await _move(ChatAdministrator)
            result.moved_permission_rows = await _move(ChatPermission)
            result.moved_config_rows = await _move(ChatConfig)

            # 目标会话上已存在的关联直接丢弃，不重复
            link_stmt = (
                update(VideoJobMessage)
                .where(VideoJobMessage.chat_id == old_chat_id)
                .values(chat_id=new_chat_id)
                .prefix_with('OR IGNORE')
                .execution_options(synchronize_session=False)
            )
            result.moved_job_links = (await session.execute(link_stmt)).rowcount
            dropped = await session.execute(
                delete(VideoJobMessage)
                .where(VideoJobMessage.chat_id == old_chat_id)
                .execution_options(synchronize_session=False)
            )
            result.dropped_job_links = dropped.rowcount

            await session.execute(
                delete(Chat).where(Chat.id == old_chat_id).execution_options(synchronize_session=False)
            )
            return result
