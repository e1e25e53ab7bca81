from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Any, Dict, Optional


class AccountDTO(BaseModel):
    id: int
    telegram_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class AdminSnapshotDTO(BaseModel):
    account_id: int
    chat_id: int
    is_admin: bool
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PermissionSnapshotDTO(BaseModel):
    chat_id: int
    updated_at: datetime
    permissions: Dict[str, Any]


class MigrationResult(BaseModel):
    """一次会话身份合并的结果"""
    old_chat_id: int
    new_chat_id: int
    moved_telegram_ids: int = 0
    moved_admin_rows: int = 0
    moved_permission_rows: int = 0
    moved_config_rows: int = 0
    moved_job_links: int = 0
    dropped_job_links: int = 0
