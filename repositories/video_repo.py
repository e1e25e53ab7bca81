from typing import List, Optional, Tuple
import logging

from sqlalchemy import select, insert, update

from core.exceptions import InvariantViolation
from core.helpers.db_utils import translate_db_errors
from models.models import VideoJob, VideoJobMessage, utcnow
from schemas.video import VideoJobDTO, JobMessageLink

logger = logging.getLogger(__name__)


class VideoJobRepository:
    def __init__(self, db):
        self.db = db

    @translate_db_errors
    async def get(self, job_id: int) -> Optional[VideoJobDTO]:
        async with self.db.session() as session:
            obj = await session.get(VideoJob, job_id)
            return VideoJobDTO.model_validate(obj) if obj else None

    @translate_db_errors
    async def get_by_key(self, source_key: str) -> Optional[VideoJobDTO]:
        async with self.db.session() as session:
            stmt = select(VideoJob).where(VideoJob.source_key == source_key)
            obj = (await session.execute(stmt)).scalar_one_or_none()
            return VideoJobDTO.model_validate(obj) if obj else None

    @translate_db_errors
    async def get_or_create(
        self,
        source_key: str,
        display_name: str,
        mp4_url: Optional[str] = None,
        thumb_url: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> Tuple[VideoJobDTO, bool]:
        """先写者胜：同一键的再次提交原样返回已存的行"""
        now = utcnow()
        async with self.db.session() as session:
            stmt = insert(VideoJob).values(
                source_key=source_key,
                display_name=display_name,
                processed=False,
                mp4_url=mp4_url,
                thumb_url=thumb_url,
                job_id=job_id,
                created_at=now,
                updated_at=now,
            ).prefix_with('OR IGNORE')
            result = await session.execute(stmt)
            created = result.rowcount > 0

            obj = (await session.execute(
                select(VideoJob).where(VideoJob.source_key == source_key)
            )).scalar_one()
            return VideoJobDTO.model_validate(obj), created

    @translate_db_errors
    async def set_external_job(self, job_id: int, external_job_id: str) -> bool:
        """记录执行方的任务 id，只有未完成的任务接受"""
        async with self.db.session() as session:
            stmt = (
                update(VideoJob)
                .where(VideoJob.id == job_id, VideoJob.processed == False)  # noqa: E712
                .values(job_id=external_job_id, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            return (await session.execute(stmt)).rowcount > 0

    @translate_db_errors
    async def add_link(self, job_id: int, chat_id: int, message_id: int) -> bool:
        async with self.db.session() as session:
            if await session.get(VideoJob, job_id) is None:
                logger.error(f"拒绝把消息 {chat_id}/{message_id} 关联到不存在的视频任务 {job_id}")
                raise InvariantViolation(
                    f"video job {job_id} does not exist",
                    context={"job_id": job_id, "chat_id": chat_id, "message_id": message_id},
                )
            stmt = insert(VideoJobMessage).values(
                video_job_id=job_id,
                chat_id=chat_id,
                message_id=message_id,
                created_at=utcnow(),
            ).prefix_with('OR IGNORE')
            return (await session.execute(stmt)).rowcount > 0

    @translate_db_errors
    async def mark_processed(self, job_id: int, mp4_url: str, thumb_url: str) -> bool:
        """条件更新，只有第一次完成会修改该行"""
        async with self.db.session() as session:
            stmt = (
                update(VideoJob)
                .where(VideoJob.id == job_id, VideoJob.processed == False)  # noqa: E712
                .values(processed=True, mp4_url=mp4_url, thumb_url=thumb_url, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            return (await session.execute(stmt)).rowcount > 0

    @translate_db_errors
    async def links(self, job_id: int) -> List[JobMessageLink]:
        async with self.db.session() as session:
            stmt = (
                select(VideoJobMessage)
                .where(VideoJobMessage.video_job_id == job_id)
                .order_by(VideoJobMessage.id)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [JobMessageLink.model_validate(r) for r in rows]
