# starlingpost/models/post.py
from sqlmodel import SQLModel, Field, Column
from typing import Optional
import uuid
from datetime import datetime
from sqlalchemy import String, JSON

from starlingpost.schemas.platform_schema import utc_now

class Post(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: str = Field(sa_column=Column(String, index=True, nullable=False))
    platform: str = Field(sa_column=Column(String, index=True, nullable=False))
    account_id: str  # platform account the post was published from
    platform_post_id: str
    title: Optional[str] = Field(default=None)
    metrics: Optional[dict] = Field(sa_column=Column(JSON), default_factory=dict)
    metrics_stale: bool = Field(default=False)  # deleted upstream
    last_synced_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)
