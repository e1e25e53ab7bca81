from datetime import datetime
from typing import Any, Dict, List, Optional
import json
import logging

from sqlalchemy import select

from core.helpers.db_utils import translate_db_errors
from models.models import ChatAdministrator, ChatPermission, utcnow
from schemas.chat import AdminSnapshotDTO, PermissionSnapshotDTO

logger = logging.getLogger(__name__)


class SnapshotRepository:
    """
    只追加的状态历史，从不原地更新；当前值是同一键下最新的一行
    (先按 updated_at，再按 id)。
    """

    def __init__(self, db):
        self.db = db

    @translate_db_errors
    async def record_admin(
        self, account_id: int, chat_id: int, is_admin: bool, at: Optional[datetime] = None
    ) -> AdminSnapshotDTO:
        async with self.db.session() as session:
            row = ChatAdministrator(
                account_id=account_id,
                chat_id=chat_id,
                is_admin=is_admin,
                updated_at=at or utcnow(),
            )
            session.add(row)
            await session.flush()
            return AdminSnapshotDTO.model_validate(row)

    @translate_db_errors
    async def latest_admin(self, account_id: int, chat_id: int) -> Optional[AdminSnapshotDTO]:
        async with self.db.session() as session:
            stmt = (
                select(ChatAdministrator)
                .where(
                    ChatAdministrator.account_id == account_id,
                    ChatAdministrator.chat_id == chat_id,
                )
                .order_by(ChatAdministrator.updated_at.desc(), ChatAdministrator.id.desc())
                .limit(1)
            )
            obj = (await session.execute(stmt)).scalar_one_or_none()
            return AdminSnapshotDTO.model_validate(obj) if obj else None

    async def is_admin(self, account_id: int, chat_id: int) -> bool:
        snapshot = await self.latest_admin(account_id, chat_id)
        return bool(snapshot and snapshot.is_admin)

    @translate_db_errors
    async def current_admins(self, chat_id: int) -> List[int]:
        """在该会话中最新快照为管理员的账号"""
        async with self.db.session() as session:
            accounts = (await session.execute(
                select(ChatAdministrator.account_id)
                .where(ChatAdministrator.chat_id == chat_id)
                .distinct()
            )).scalars().all()

            admins = []
            for account_id in accounts:
                stmt = (
                    select(ChatAdministrator.is_admin)
                    .where(
                        ChatAdministrator.chat_id == chat_id,
                        ChatAdministrator.account_id == account_id,
                    )
                    .order_by(ChatAdministrator.updated_at.desc(), ChatAdministrator.id.desc())
                    .limit(1)
                )
                if (await session.execute(stmt)).scalar_one():
                    admins.append(account_id)
            return sorted(admins)

    @translate_db_errors
    async def record_permissions(
        self, chat_id: int, permissions: Dict[str, Any], at: Optional[datetime] = None
    ) -> PermissionSnapshotDTO:
        updated_at = at or utcnow()
        async with self.db.session() as session:
            session.add(ChatPermission(
                chat_id=chat_id,
                updated_at=updated_at,
                permissions=json.dumps(permissions, sort_keys=True),
            ))
            await session.flush()
        return PermissionSnapshotDTO(chat_id=chat_id, updated_at=updated_at, permissions=permissions)

    @translate_db_errors
    async def current_permissions(self, chat_id: int) -> Optional[PermissionSnapshotDTO]:
        async with self.db.session() as session:
            stmt = (
                select(ChatPermission)
                .where(ChatPermission.chat_id == chat_id)
                .order_by(ChatPermission.updated_at.desc(), ChatPermission.id.desc())
                .limit(1)
            )
            obj = (await session.execute(stmt)).scalar_one_or_none()
            if obj is None:
                return None
            return PermissionSnapshotDTO(
                chat_id=obj.chat_id,
                updated_at=obj.updated_at,
                permissions=json.loads(obj.permissions),
            )
