# starlingpost/schemas/post_schema.py
from pydantic import BaseModel
from typing import Optional, Dict
import uuid
from datetime import datetime

from starlingpost.schemas.platform_schema import Platform

class PostCreate(BaseModel):
    platform: Platform
    account_id: str
    platform_post_id: str
    title: Optional[str] = None

class PostRead(BaseModel):
    id: uuid.UUID
    platform: str
    account_id: str
    platform_post_id: str
    title: Optional[str]
    metrics: Dict[str, int]
    metrics_stale: bool
    last_synced_at: Optional[datetime]
    created_at: datetime
