"""SQLModel table for user accounts that can hold a Google Tasks connection."""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from datetime_utils import utc_now


class Account(SQLModel, table=True):
    """Subset of the user record the sync engine reads and writes."""

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    name: str = ""
    google_connected: bool = Field(default=False, index=True)
    google_refresh_token: Optional[str] = None
    google_scope: str = Field(default="", description="Space separated OAuth scopes")
    google_connected_at: Optional[datetime] = None
    tasks_last_pulled_at: Optional[datetime] = Field(
        default=None,
        description="Import watermark: Google tasks updated since this instant are pulled",
    )
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


__all__ = ["Account"]
