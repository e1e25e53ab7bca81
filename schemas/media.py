from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from core.constants import MatchQuality
from .common import TimestampMixin


class CachedPostDTO(TimestampMixin):
    id: Optional[int] = None
    post_url: str
    thumb: bool = False
    cdn_url: str
    width: int
    height: int
    hash: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def owner_key(self) -> str:
        return self.post_url


class PendingNotificationDTO(TimestampMixin):
    id: Optional[int] = None
    account_id: int
    hash: int
    message_id: int
    photo_id: str

    model_config = ConfigDict(from_attributes=True)

    @property
    def owner_key(self) -> int:
        return self.account_id


class MessageRef(BaseModel):
    message_id: int
    photo_id: str


class SourceNotification(BaseModel):
    """之前未找到结果的搜索现在有了匹配"""
    account_id: int
    searched_hash: int
    matched_hash: int
    distance: int
    quality: MatchQuality
    content: CachedPostDTO
    messages: List[MessageRef] = Field(default_factory=list)
