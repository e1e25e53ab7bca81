from sqlalchemy import Column, Integer, BigInteger, DateTime, ForeignKey
from models.base import Base, utcnow


class Account(Base):
    """平台用户的稳定代理 id"""
    __tablename__ = 'accounts'
    id = Column(Integer, primary_key=True)
    # 关联前为空，一旦设置不再改变
    telegram_id = Column(BigInteger, unique=True, nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<Account(id={self.id}, tg_id={self.telegram_id})>"


class Chat(Base):
    """平台会话的稳定代理 id；外部 id 存在 chat_telegram_ids 中"""
    __tablename__ = 'chats'
    id = Column(Integer, primary_key=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<Chat(id={self.id})>"


class ChatTelegramId(Base):
    """外部会话 id -> 代理 id。每个外部 id 只属于一个会话；迁移后一个会话可拥有多个外部 id"""
    __tablename__ = 'chat_telegram_ids'
    id = Column(Integer, primary_key=True)
    chat_id = Column(Integer, ForeignKey('chats.id'), nullable=False, index=True)
    telegram_id = Column(BigInteger, unique=True, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<ChatTelegramId(chat_id={self.chat_id}, tg_id={self.telegram_id})>"
