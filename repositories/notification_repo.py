from typing import Iterable, List, Optional, Tuple
import logging

from sqlalchemy import select, insert, delete

from core.algorithms.bk_tree import to_signed64
from core.helpers.db_utils import translate_db_errors
from models.models import PendingNotification, utcnow
from schemas.media import PendingNotificationDTO

logger = logging.getLogger(__name__)


class PendingNotificationRepository:
    """没有结果的搜索，等待匹配内容出现"""

    def __init__(self, db):
        self.db = db

    @translate_db_errors
    async def list_hashed(self) -> List[PendingNotificationDTO]:
        async with self.db.session() as session:
            stmt = select(PendingNotification).order_by(PendingNotification.id)
            rows = (await session.execute(stmt)).scalars().all()
            return [PendingNotificationDTO.model_validate(r) for r in rows]

    @translate_db_errors
    async def list_hashed_since(self, last_id: int) -> List[PendingNotificationDTO]:
        async with self.db.session() as session:
            stmt = (
                select(PendingNotification)
                .where(PendingNotification.id > last_id)
                .order_by(PendingNotification.id)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [PendingNotificationDTO.model_validate(r) for r in rows]

    @translate_db_errors
    async def list_for_account(self, account_id: int) -> List[PendingNotificationDTO]:
        async with self.db.session() as session:
            stmt = (
                select(PendingNotification)
                .where(PendingNotification.account_id == account_id)
                .order_by(PendingNotification.id)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [PendingNotificationDTO.model_validate(r) for r in rows]

    @staticmethod
    def _natural_key(account_id: int, hash: int, message_id: int, photo_id: str):
        return (
            PendingNotification.account_id == account_id,
            PendingNotification.hash == to_signed64(hash),
            PendingNotification.message_id == message_id,
            PendingNotification.photo_id == photo_id,
        )

    @translate_db_errors
    async def find_exact(self, account_id: int, variant: Tuple[int, int, str]) -> Optional[PendingNotificationDTO]:
        hash, message_id, photo_id = variant
        async with self.db.session() as session:
            stmt = select(PendingNotification).where(
                *self._natural_key(account_id, hash, message_id, photo_id)
            )
            obj = (await session.execute(stmt)).scalar_one_or_none()
            return PendingNotificationDTO.model_validate(obj) if obj else None

    @translate_db_errors
    async def get_or_create(
        self,
        hash: int,
        account_id: int,
        message_id: int,
        photo_id: str,
    ) -> Tuple[PendingNotificationDTO, bool]:
        async with self.db.session() as session:
            stmt = insert(PendingNotification).values(
                account_id=account_id,
                hash=to_signed64(hash),
                message_id=message_id,
                photo_id=photo_id,
                created_at=utcnow(),
            ).prefix_with('OR IGNORE')
            result = await session.execute(stmt)
            created = result.rowcount > 0

            obj = (await session.execute(
                select(PendingNotification).where(
                    *self._natural_key(account_id, hash, message_id, photo_id)
                )
            )).scalar_one()
            return PendingNotificationDTO.model_validate(obj), created

    @translate_db_errors
    async def delete_exact(self, account_id: int, hash: int) -> List[PendingNotificationDTO]:
        """删除某账号在某个精确哈希上的全部条目 (走 ix_pending_owner_hash 索引)"""
        async with self.db.session() as session:
            stmt = select(PendingNotification).where(
                PendingNotification.account_id == account_id,
                PendingNotification.hash == to_signed64(hash),
            ).order_by(PendingNotification.id)
            rows = (await session.execute(stmt)).scalars().all()
            if not rows:
                return []
            deleted = []
            for row in rows:
                dto = PendingNotificationDTO.model_validate(row)
                result = await session.execute(
                    delete(PendingNotification)
                    .where(PendingNotification.id == dto.id)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount > 0:
                    deleted.append(dto)
            return deleted

    @translate_db_errors
    async def delete_by_ids(self, ids: Iterable[int]) -> List[int]:
        """逐行删除，返回本次调用实际删掉的 id"""
        removed: List[int] = []
        async with self.db.session() as session:
            for entry_id in ids:
                result = await session.execute(
                    delete(PendingNotification)
                    .where(PendingNotification.id == entry_id)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount > 0:
                    removed.append(entry_id)
        return removed
