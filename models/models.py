from models.base import Base, utcnow
from models.identity import Account, Chat, ChatTelegramId
from models.chat import ChatAdministrator, ChatPermission
from models.config import AccountConfig, ChatConfig
from models.media import CachedPost, FileHash, PendingNotification
from models.video import VideoJob, VideoJobMessage
