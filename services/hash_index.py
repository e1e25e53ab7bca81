"""
哈希索引：一张带哈希的持久化表在进程内的 BK 树镜像。

数据库行是唯一事实来源，树只是加速结构。`load()` 在启动时全量重建，
之后每次查询/认领前通过 `refresh()` 增量拉取 id 大于同步水位的新行，
因此其他进程（其他 worker）写入的行也能被本进程匹配到。
写操作先落库再镜像进树，每个索引一把 asyncio 锁串行化。

store 需要提供:

    list_hashed()                      -> [entry]
    list_hashed_since(last_id)         -> [entry]  按 id 升序
    get_or_create(hash, **fields)      -> (entry, created)
    find_exact(key, variant)           -> entry | None
    delete_exact(owner_key, hash)      -> [被删除的 entry]   (可删除的 store)
    delete_by_ids(ids)                 -> [被删除的 id]      (可删除的 store)

entry 需要暴露 `id`、`hash`、`owner_key`。
"""

import asyncio
import logging
from typing import Any, Iterator, List, Optional, Tuple

from core.algorithms.bk_tree import BKTree, to_signed64

logger = logging.getLogger(__name__)


class HashIndex:
    def __init__(self, store, name: Optional[str] = None):
        self.store = store
        self.name = name or type(store).__name__
        self.tree = BKTree()
        self._write_lock = asyncio.Lock()
        self._ids = set()
        # 已从 store 拉取过的最大行 id
        self._synced_id = 0

    def __len__(self) -> int:
        return len(self.tree)

    def _track(self, entry) -> None:
        if entry.hash is None or entry.id in self._ids:
            return
        self.tree.add(entry.hash, entry)
        self._ids.add(entry.id)

    async def load(self) -> int:
        """从 store 全量重建树，返回已索引条目数"""
        async with self._write_lock:
            entries = await self.store.list_hashed()
            self.tree.clear()
            self._ids.clear()
            self._synced_id = 0
            for entry in entries:
                self._track(entry)
                self._synced_id = max(self._synced_id, entry.id)
            logger.info(f"[HashIndex:{self.name}] 已加载 {len(self.tree)} 条")
            return len(self.tree)

    async def _sync_locked(self) -> int:
        # 行 id 单调递增且不复用 (sqlite_autoincrement)，水位之后即全部新行
        entries = await self.store.list_hashed_since(self._synced_id)
        for entry in entries:
            self._track(entry)
            self._synced_id = max(self._synced_id, entry.id)
        if entries:
            logger.debug(f"[HashIndex:{self.name}] 增量同步 {len(entries)} 条 (水位 {self._synced_id})")
        return len(entries)

    async def refresh(self) -> int:
        """拉取其他进程在上次同步后写入的行，返回新拉取的条数"""
        async with self._write_lock:
            return await self._sync_locked()

    async def insert(self, hash: Optional[int], **fields) -> Tuple[Any, bool]:
        """
        按 store 的自然键幂等写入，返回 (entry, created)。
        已存在的行原样返回，不会重复。
        """
        async with self._write_lock:
            entry, created = await self.store.get_or_create(
                None if hash is None else to_signed64(hash), **fields
            )
            if not created and entry.hash is not None and entry.id not in self._ids:
                logger.debug(f"[HashIndex:{self.name}] 补齐树中缺失的条目 id={entry.id}")
            self._track(entry)
            return entry, created

    async def lookup_exact(self, key, variant) -> Optional[Any]:
        return await self.store.find_exact(key, variant)

    def range_query(self, hash: int, radius: int) -> Iterator[Tuple[int, int, Any]]:
        """
        半径内的 (stored_hash, distance, entry) 惰性迭代器，按距离升序。
        stored_hash 以有符号形式返回；只能遍历一次。
        需要看到其他进程的写入时先 await refresh()。
        """
        if radius < 0:
            raise ValueError("radius must be >= 0")
        return (
            (to_signed64(value), distance, entry)
            for value, distance, entry in self.tree.find(hash, radius)
        )

    async def delete_within_radius(self, owner_key, hash: int, radius: int) -> List[Any]:
        """
        从 store 和树中删除 owner_key 名下距 hash 不超过 radius 的全部条目。
        返回本次调用实际删除的条目；并发调用者不会拿到同一条。
        """
        if radius < 0:
            raise ValueError("radius must be >= 0")
        hash = to_signed64(hash)

        async with self._write_lock:
            await self._sync_locked()
            if radius == 0:
                deleted = await self.store.delete_exact(owner_key, hash)
                # 该 owner 在此哈希上已无存活行
                gone = self.tree.remove(hash, 0, lambda e: e.owner_key == owner_key)
                self._ids.difference_update(e.id for e in gone)
            else:
                candidates = [
                    entry for _, _, entry in self.tree.find(hash, radius)
                    if entry.owner_key == owner_key
                ]
                if not candidates:
                    return []
                candidate_ids = {e.id for e in candidates}
                removed_ids = set(await self.store.delete_by_ids([e.id for e in candidates]))
                # 未在此处删除的 id 已被别处删掉
                self.tree.remove(hash, radius, lambda e: e.id in candidate_ids)
                self._ids.difference_update(candidate_ids)
                deleted = [e for e in candidates if e.id in removed_ids]

            if deleted:
                logger.debug(
                    f"[HashIndex:{self.name}] 删除 {len(deleted)} 条 "
                    f"owner={owner_key} radius={radius}"
                )
            return deleted
