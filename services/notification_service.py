import logging
from typing import Dict, List, Optional, Tuple

from core.config import settings
from core.constants import EVENT_SOURCE_NOTIFICATION, MatchQuality
from repositories.notification_repo import PendingNotificationRepository
from schemas.media import CachedPostDTO, MessageRef, PendingNotificationDTO, SourceNotification
from services.hash_index import HashIndex

logger = logging.getLogger(__name__)


class NotificationMatcher:
    """
    把“暂无结果”的搜索转成之后的来源通知。

    没搜到结果的请求登记为待通知。有新内容入索引时，距离其哈希不超过
    NOTIFY_MATCH_DISTANCE 的待通知条目先被认领（删除），每个被搜索的哈希
    给所属账号发一条 SOURCE_NOTIFICATION。先认领后发布，并发入索引时同一
    条目不会被通知两次；投递失败会把已认领的条目放回。
    """

    def __init__(
        self,
        repo: PendingNotificationRepository,
        bus,
        match_distance: Optional[int] = None,
        good_distance: Optional[int] = None,
    ):
        self.index = HashIndex(repo, name="pending_notifications")
        self.repo = repo
        self.bus = bus
        self.match_distance = settings.NOTIFY_MATCH_DISTANCE if match_distance is None else match_distance
        self.good_distance = settings.NOTIFY_GOOD_MATCH_DISTANCE if good_distance is None else good_distance

    async def load(self) -> int:
        return await self.index.load()

    async def register_pending(
        self, account_id: int, hash: int, message_id: int, photo_id: str
    ) -> Tuple[PendingNotificationDTO, bool]:
        """幂等：同一请求重复登记只保留一条"""
        entry, created = await self.index.insert(
            hash, account_id=account_id, message_id=message_id, photo_id=photo_id
        )
        if created:
            logger.debug(f"登记待通知: account={account_id} hash={entry.hash} message={message_id}")
        return entry, created

    async def pending_for(self, account_id: int) -> List[PendingNotificationDTO]:
        return await self.repo.list_for_account(account_id)

    def _quality(self, distance: int) -> MatchQuality:
        return MatchQuality.GOOD if distance <= self.good_distance else MatchQuality.WEAK

    async def on_content_indexed(self, content: CachedPostDTO) -> List[SourceNotification]:
        if content.hash is None:
            return []

        # 其他 worker 登记的条目也要参与匹配
        await self.index.refresh()

        # 每个 (账号, 被搜索哈希) 一组，保留最近距离
        groups: Dict[Tuple[int, int], int] = {}
        for stored_hash, distance, entry in self.index.range_query(content.hash, self.match_distance):
            groups.setdefault((entry.account_id, stored_hash), distance)

        events: List[SourceNotification] = []
        for (account_id, stored_hash), distance in groups.items():
            claimed = await self.index.delete_within_radius(account_id, stored_hash, 0)
            if not claimed:
                # 已被其他 worker 认领
                continue

            seen = set()
            refs = []
            for entry in claimed:
                if (entry.message_id, entry.photo_id) not in seen:
                    seen.add((entry.message_id, entry.photo_id))
                    refs.append(MessageRef(message_id=entry.message_id, photo_id=entry.photo_id))

            event = SourceNotification(
                account_id=account_id,
                searched_hash=stored_hash,
                matched_hash=content.hash,
                distance=distance,
                quality=self._quality(distance),
                content=content,
                messages=refs,
            )
            try:
                await self.bus.publish(EVENT_SOURCE_NOTIFICATION, event, wait=True)
            except Exception as e:
                logger.error(
                    f"账号 {account_id} 的来源通知投递失败，放回 {len(claimed)} 条待通知: {e}"
                )
                for entry in claimed:
                    await self.index.insert(
                        entry.hash,
                        account_id=entry.account_id,
                        message_id=entry.message_id,
                        photo_id=entry.photo_id,
                    )
                raise

            logger.info(
                f"✅ 账号 {account_id} 找到来源: hash={stored_hash} "
                f"distance={distance} ({event.quality.value}) post={content.post_url}"
            )
            events.append(event)
        return events
