from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from models.base import Base, utcnow


class VideoJob(Base):
    """转码任务，以 source_key 作为内容地址"""
    __tablename__ = 'video_jobs'
    id = Column(Integer, primary_key=True)
    source_key = Column(String, nullable=False, unique=True, index=True)
    processed = Column(Boolean, nullable=False, default=False)
    display_name = Column(String, nullable=False)
    mp4_url = Column(String, nullable=True)
    thumb_url = Column(String, nullable=True)
    job_id = Column(String, nullable=True)  # 外部执行方的任务 id
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class VideoJobMessage(Base):
    """任务完成时需要更新的外发消息"""
    __tablename__ = 'video_job_messages'
    id = Column(Integer, primary_key=True)
    video_job_id = Column(Integer, ForeignKey('video_jobs.id'), nullable=False, index=True)
    chat_id = Column(Integer, ForeignKey('chats.id'), nullable=False, index=True)
    message_id = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('video_job_id', 'chat_id', 'message_id', name='unique_job_message'),
    )
