from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """无时区的 UTC 时间，SQLite DateTime 列可原样往返"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
