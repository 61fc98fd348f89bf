# task_mirror/models/task.py
from typing import Optional
from datetime import datetime

from datetime_utils import utc_now
from sqlmodel import SQLModel, Field

from core.settings import DEFAULT_TASKLIST_ID


class Task(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    task_type: str = ""
    due_date: Optional[datetime] = None
    priority: str = "medium"       # low / medium / high
    status: str = "pending"        # pending / in-progress / completed
    status_updated_at: Optional[datetime] = None
    completed_approval: bool = False
    assigned_to: Optional[str] = Field(default=None, index=True)
    assigned_by: Optional[str] = Field(default=None, index=True)
    brand: str = ""
    brand_id: Optional[str] = None
    company_name: str = ""
    is_deleted: bool = Field(default=False, index=True)
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None

    # Google Tasks mirror; mirror_external_id is None until the task is pushed.
    mirror_external_id: Optional[str] = Field(default=None, index=True)
    mirror_tasklist_id: str = DEFAULT_TASKLIST_ID
    mirror_owner_email: Optional[str] = Field(default=None, index=True)
    mirror_synced_at: Optional[datetime] = None
    mirror_external_updated_at: Optional[datetime] = None
    mirror_last_error: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
