from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index
from models.base import Base, utcnow


class ChatAdministrator(Base):
    """只追加的管理员状态历史；当前状态取每个 (账号, 会话) 的最新一行"""
    __tablename__ = 'chat_administrators'
    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey('accounts.id'), nullable=False)
    chat_id = Column(Integer, ForeignKey('chats.id'), nullable=False)
    is_admin = Column(Boolean, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index('ix_chat_admin_lookup', 'chat_id', 'account_id', 'updated_at'),
    )


class ChatPermission(Base):
    """每个会话只追加的机器人权限历史"""
    __tablename__ = 'chat_permissions'
    id = Column(Integer, primary_key=True)
    chat_id = Column(Integer, ForeignKey('chats.id'), nullable=False)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    permissions = Column(String, nullable=False)  # JSON 对象

    __table_args__ = (
        Index('ix_chat_permission_lookup', 'chat_id', 'updated_at'),
    )
