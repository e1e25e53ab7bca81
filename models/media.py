from sqlalchemy import Column, Integer, BigInteger, String, Boolean, DateTime, ForeignKey, UniqueConstraint, Index
from models.base import Base, utcnow


class CachedPost(Base):
    """远程资源某个变体的抓取缓存，写入后不再修改"""
    __tablename__ = 'cached_posts'
    id = Column(Integer, primary_key=True)
    post_url = Column(String, nullable=False)
    thumb = Column(Boolean, nullable=False, default=False)
    cdn_url = Column(String, nullable=False)
    width = Column(Integer, nullable=False)
    height = Column(Integer, nullable=False)
    hash = Column(BigInteger, nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('post_url', 'thumb', name='unique_post_variant'),
        {'sqlite_autoincrement': True},
    )


class FileHash(Base):
    """上传文件引用 -> 已计算过的感知哈希"""
    __tablename__ = 'file_hashes'
    id = Column(Integer, primary_key=True)
    file_id = Column(String, nullable=False, unique=True, index=True)
    hash = Column(BigInteger, nullable=False)


class PendingNotification(Base):
    """账号搜索过该哈希，但暂时没有结果"""
    __tablename__ = 'pending_notifications'
    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey('accounts.id'), nullable=False)
    hash = Column(BigInteger, nullable=False)
    message_id = Column(Integer, nullable=False)
    photo_id = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('account_id', 'hash', 'message_id', 'photo_id', name='unique_pending_lookup'),
        Index('ix_pending_owner_hash', 'account_id', 'hash'),
        {'sqlite_autoincrement': True},
    )
