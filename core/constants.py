from enum import Enum

# 事件总线主题
EVENT_CONTENT_INDEXED = "CONTENT_INDEXED"
EVENT_SOURCE_NOTIFICATION = "SOURCE_NOTIFICATION"
EVENT_VIDEO_MESSAGES_UPDATE = "VIDEO_MESSAGES_UPDATE"
EVENT_CHAT_MIGRATED = "CHAT_MIGRATED"

# 感知哈希位宽
HASH_BITS = 64


class IdentityKind(str, Enum):
    ACCOUNT = "account"
    CHAT = "chat"


class MatchQuality(str, Enum):
    GOOD = "good"
    WEAK = "weak"
