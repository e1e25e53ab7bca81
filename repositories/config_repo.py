from typing import Any, Optional
import json
import logging

from sqlalchemy import select

from core.helpers.db_utils import translate_db_errors
from models.models import AccountConfig, ChatConfig, utcnow

logger = logging.getLogger(__name__)


class ConfigRepository:
    """按账号 / 会话的版本化配置。每次写入追加一行，读取取最新。"""

    def __init__(self, db):
        self.db = db

    async def _set(self, model, owner_column: str, owner_id: int, name: str, value: Any) -> None:
        async with self.db.session() as session:
            session.add(model(**{
                owner_column: owner_id,
                'name': name,
                'value': json.dumps(value),
                'created_at': utcnow(),
            }))
            await session.flush()

    async def _get(self, model, owner_column: str, owner_id: int, name: str, default: Any) -> Any:
        async with self.db.session() as session:
            stmt = (
                select(model.value)
                .where(getattr(model, owner_column) == owner_id, model.name == name)
                .order_by(model.created_at.desc(), model.id.desc())
                .limit(1)
            )
            raw = (await session.execute(stmt)).scalars().first()
            if raw is None:
                return default
            try:
                return json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"无法解析的配置值 {model.__tablename__}.{name} (owner={owner_id})")
                return default

    @translate_db_errors
    async def set_chat_config(self, chat_id: int, name: str, value: Any) -> None:
        await self._set(ChatConfig, 'chat_id', chat_id, name, value)

    @translate_db_errors
    async def get_chat_config(self, chat_id: int, name: str, default: Optional[Any] = None) -> Any:
        return await self._get(ChatConfig, 'chat_id', chat_id, name, default)

    @translate_db_errors
    async def set_account_config(self, account_id: int, name: str, value: Any) -> None:
        await self._set(AccountConfig, 'account_id', account_id, name, value)

    @translate_db_errors
    async def get_account_config(self, account_id: int, name: str, default: Optional[Any] = None) -> Any:
        return await self._get(AccountConfig, 'account_id', account_id, name, default)
