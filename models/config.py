from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from models.base import Base, utcnow


class AccountConfig(Base):
    """按账号的版本化配置，最新一行生效"""
    __tablename__ = 'account_configs'
    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey('accounts.id'), nullable=False)
    name = Column(String, nullable=False)
    value = Column(String, nullable=True)  # JSON
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index('ix_account_config_lookup', 'account_id', 'name', 'created_at'),
    )


class ChatConfig(Base):
    """按会话的版本化配置，最新一行生效"""
    __tablename__ = 'chat_configs'
    id = Column(Integer, primary_key=True)
    chat_id = Column(Integer, ForeignKey('chats.id'), nullable=False)
    name = Column(String, nullable=False)
    value = Column(String, nullable=True)  # JSON
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index('ix_chat_config_lookup', 'chat_id', 'name', 'created_at'),
    )
