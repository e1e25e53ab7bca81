from typing import List, Optional, Tuple
import logging

from sqlalchemy import select, insert

from core.algorithms.bk_tree import to_signed64
from core.helpers.db_utils import translate_db_errors
from models.models import CachedPost, FileHash, utcnow
from schemas.media import CachedPostDTO

logger = logging.getLogger(__name__)


class CachedPostRepository:
    """
    抓取结果缓存，键为 (post_url, thumb)。
    行只写一次，保留第一个写入方的值。
    """

    def __init__(self, db):
        self.db = db

    @translate_db_errors
    async def list_hashed(self) -> List[CachedPostDTO]:
        async with self.db.session() as session:
            stmt = select(CachedPost).where(CachedPost.hash.isnot(None)).order_by(CachedPost.id)
            rows = (await session.execute(stmt)).scalars().all()
            return [CachedPostDTO.model_validate(r) for r in rows]

    @translate_db_errors
    async def list_hashed_since(self, last_id: int) -> List[CachedPostDTO]:
        async with self.db.session() as session:
            stmt = (
                select(CachedPost)
                .where(CachedPost.hash.isnot(None), CachedPost.id > last_id)
                .order_by(CachedPost.id)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [CachedPostDTO.model_validate(r) for r in rows]

    @translate_db_errors
    async def find_exact(self, post_url: str, thumb: bool) -> Optional[CachedPostDTO]:
        async with self.db.session() as session:
            stmt = select(CachedPost).where(
                CachedPost.post_url == post_url,
                CachedPost.thumb == bool(thumb),
            )
            obj = (await session.execute(stmt)).scalar_one_or_none()
            return CachedPostDTO.model_validate(obj) if obj else None

    @translate_db_errors
    async def get_or_create(
        self,
        hash: Optional[int],
        post_url: str,
        thumb: bool,
        cdn_url: str,
        width: int,
        height: int,
    ) -> Tuple[CachedPostDTO, bool]:
        async with self.db.session() as session:
            stmt = insert(CachedPost).values(
                post_url=post_url,
                thumb=bool(thumb),
                cdn_url=cdn_url,
                width=width,
                height=height,
                hash=None if hash is None else to_signed64(hash),
                created_at=utcnow(),
            ).prefix_with('OR IGNORE')
            result = await session.execute(stmt)
            created = result.rowcount > 0

            obj = (await session.execute(
                select(CachedPost).where(
                    CachedPost.post_url == post_url,
                    CachedPost.thumb == bool(thumb),
                )
            )).scalar_one()
            return CachedPostDTO.model_validate(obj), created


class FileHashRepository:
    """上传文件引用 -> 感知哈希，同一张图只计算一次"""

    def __init__(self, db):
        self.db = db

    @translate_db_errors
    async def get(self, file_id: str) -> Optional[int]:
        async with self.db.session() as session:
            stmt = select(FileHash.hash).where(FileHash.file_id == file_id)
            return (await session.execute(stmt)).scalar_one_or_none()

    @translate_db_errors
    async def set(self, file_id: str, hash: int) -> bool:
        """新插入返回 True，已存在返回 False"""
        async with self.db.session() as session:
            stmt = insert(FileHash).values(file_id=file_id, hash=to_signed64(hash)).prefix_with('OR IGNORE')
            result = await session.execute(stmt)
            return result.rowcount > 0
