from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from core.states import VideoJobStatus
from .common import TimestampMixin


class VideoJobDTO(TimestampMixin):
    id: int
    source_key: str
    processed: bool = False
    display_name: str
    mp4_url: Optional[str] = None
    thumb_url: Optional[str] = None
    job_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def status(self) -> VideoJobStatus:
        if self.processed:
            return VideoJobStatus.COMPLETED
        if self.job_id:
            return VideoJobStatus.PROCESSING
        return VideoJobStatus.CREATED


class JobMessageLink(BaseModel):
    chat_id: int
    message_id: int

    model_config = ConfigDict(from_attributes=True, frozen=True)


class OutwardMessage(BaseModel):
    telegram_chat_id: int
    message_id: int


class VideoMessagesUpdate(BaseModel):
    """任务完成后交给投递方的一批消息"""
    job: VideoJobDTO
    messages: List[OutwardMessage] = Field(default_factory=list)
