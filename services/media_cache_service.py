import logging
from typing import List, Optional, Tuple

from core.constants import EVENT_CONTENT_INDEXED
from repositories.media_repo import CachedPostRepository, FileHashRepository
from schemas.media import CachedPostDTO
from services.hash_index import HashIndex

logger = logging.getLogger(__name__)


class MediaCacheService:
    """
    远程资源抓取结果缓存，并支持按哈希检索。
    每次经过 cache_post 的带哈希内容都会以 CONTENT_INDEXED 广播，
    包括已缓存过的行：上次投递失败后的重试需要再次触发匹配。
    """

    def __init__(self, posts: CachedPostRepository, file_hashes: FileHashRepository, bus=None):
        self.index = HashIndex(posts, name="cached_posts")
        self.file_hashes = file_hashes
        self.bus = bus

    async def load(self) -> int:
        return await self.index.load()

    async def get_cached_post(self, post_url: str, thumb: bool = False) -> Optional[CachedPostDTO]:
        return await self.index.lookup_exact(post_url, thumb)

    async def cache_post(
        self,
        post_url: str,
        thumb: bool,
        cdn_url: str,
        width: int,
        height: int,
        hash: Optional[int] = None,
    ) -> Tuple[CachedPostDTO, bool]:
        post, created = await self.index.insert(
            hash,
            post_url=post_url,
            thumb=thumb,
            cdn_url=cdn_url,
            width=width,
            height=height,
        )
        if created:
            logger.debug(f"已缓存 {post_url} thumb={thumb} hash={post.hash}")
        # 匹配是幂等的：已认领的待通知行不会再次命中
        if post.hash is not None and self.bus is not None:
            await self.bus.publish(EVENT_CONTENT_INDEXED, post, wait=True)
        return post, created

    async def similar_posts(self, hash: int, radius: int) -> List[Tuple[int, CachedPostDTO]]:
        """半径内的 (distance, post)，由近到远"""
        await self.index.refresh()
        return [(distance, post) for _, distance, post in self.index.range_query(hash, radius)]

    async def get_file_hash(self, file_id: str) -> Optional[int]:
        return await self.file_hashes.get(file_id)

    async def set_file_hash(self, file_id: str, hash: int) -> None:
        await self.file_hashes.set(file_id, hash)
