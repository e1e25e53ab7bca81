from models.models import (
    Base, utcnow,
    Account, Chat, ChatTelegramId,
    ChatAdministrator, ChatPermission,
    AccountConfig, ChatConfig,
    CachedPost, FileHash, PendingNotification,
    VideoJob, VideoJobMessage,
)

__all__ = [
    'Base', 'utcnow',
    'Account', 'Chat', 'ChatTelegramId',
    'ChatAdministrator', 'ChatPermission',
    'AccountConfig', 'ChatConfig',
    'CachedPost', 'FileHash', 'PendingNotification',
    'VideoJob', 'VideoJobMessage',
]
