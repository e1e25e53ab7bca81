import logging
from typing import List, Optional

from core.exceptions import InvariantViolation, NotFoundError
from core.states import VideoJobStatus, validate_transition
from repositories.video_repo import VideoJobRepository
from schemas.video import JobMessageLink, VideoJobDTO

logger = logging.getLogger(__name__)


class JobFanoutTracker:
    """
    每个来源一个转码任务，可被任意多条外发消息引用。
    完成时交回所有需要更新的消息。
    """

    def __init__(self, repo: VideoJobRepository):
        self.repo = repo

    async def submit(
        self,
        source_key: str,
        display_name: str,
        mp4_url: Optional[str] = None,
        thumb_url: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> VideoJobDTO:
        job, created = await self.repo.get_or_create(
            source_key, display_name, mp4_url=mp4_url, thumb_url=thumb_url, job_id=job_id
        )
        if created:
            logger.info(f"[Video] 已为 {source_key} 创建任务 {job.id}")
        return job

    async def get_job(self, source_key: str) -> Optional[VideoJobDTO]:
        return await self.repo.get_by_key(source_key)

    async def get_job_by_id(self, job_id: int) -> VideoJobDTO:
        return await self._require(job_id)

    async def _require(self, job_id: int) -> VideoJobDTO:
        job = await self.repo.get(job_id)
        if job is None:
            raise NotFoundError(f"video job {job_id} does not exist", context={"job_id": job_id})
        return job

    async def start(self, job_id: int, external_job_id: str) -> VideoJobDTO:
        """Created -> Processing。处理中再次调用会替换执行方 id。"""
        job = await self._require(job_id)
        if not validate_transition(job.status, VideoJobStatus.PROCESSING):
            logger.error(f"[Video] 任务 {job_id} 无法从 {job.status.value} 开始")
            raise InvariantViolation(
                f"video job {job_id} is {job.status.value}",
                context={"job_id": job_id, "status": job.status.value},
            )
        if not await self.repo.set_external_job(job_id, external_job_id):
            # 读取与更新之间已完成
            raise InvariantViolation(
                f"video job {job_id} completed before it could start",
                context={"job_id": job_id},
            )
        logger.info(f"[Video] 任务 {job_id} 处理中 (外部任务 {external_job_id})")
        return await self._require(job_id)

    async def link_message(self, job_id: int, chat_id: int, message_id: int) -> bool:
        """幂等；本次调用新增了关联时返回 True"""
        return await self.repo.add_link(job_id, chat_id, message_id)

    async def complete(self, job_id: int, mp4_url: str, thumb_url: str) -> List[JobMessageLink]:
        """
        标记任务完成（第一次调用生效，之后的结果 url 被忽略），
        并返回所有关联消息。崩溃后可安全重复调用。
        """
        await self._require(job_id)
        if await self.repo.mark_processed(job_id, mp4_url, thumb_url):
            logger.info(f"[Video] 任务 {job_id} 已完成")
        else:
            logger.debug(f"[Video] 任务 {job_id} 此前已完成")
        return await self.repo.links(job_id)
