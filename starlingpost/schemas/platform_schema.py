# starlingpost/schemas/platform_schema.py
from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
import uuid
from datetime import datetime, timezone

from starlingpost.platforms.errors import UnknownPlatformError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Platform(str, Enum):
    YOUTUBE = "youtube"
    INSTAGRAM = "instagram"
    TWITTER = "twitter"
    TIKTOK = "tiktok"
    PINTEREST = "pinterest"
    FACEBOOK = "facebook"

    @classmethod
    def parse(cls, value: str) -> "Platform":
        try:
            return cls((value or "").lower())
        except ValueError:
            raise UnknownPlatformError(f"unknown platform: {value!r}")


class LinkStatus(str, Enum):
    PENDING = "pending"
    EXCHANGING = "exchanging"
    LINKED = "linked"
    FAILED = "failed"


class TokenSet(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scopes: List[str] = Field(default_factory=list)
    # filled in by adapters that look the account up during exchange
    account_id: Optional[str] = None
    account_name: Optional[str] = None

    def __repr__(self) -> str:
        return f"TokenSet(account_id={self.account_id!r}, expires_at={self.expires_at!r}, scopes={self.scopes!r})"

    __str__ = __repr__


class PostMetrics(BaseModel):
    """Engagement snapshot. None means the platform did not report the field."""
    reach: Optional[int] = None
    impressions: Optional[int] = None
    views: Optional[int] = None
    likes: Optional[int] = None
    comments: Optional[int] = None
    saves: Optional[int] = None
    shares: Optional[int] = None

    def reported(self) -> Dict[str, int]:
        return self.model_dump(exclude_none=True)


class OAuthState(BaseModel):
    state: str
    user_id: str
    platform: Platform
    created_at: datetime
    flow: Dict[str, Any] = Field(default_factory=dict)


class LinkedAccountRead(BaseModel):
    id: uuid.UUID
    platform: str
    account_id: str
    account_name: Optional[str]
    scopes: List[str]
    expires_at: Optional[datetime]
    needs_relink: bool
    created_at: datetime
    updated_at: datetime


class AuthUrlResponse(BaseModel):
    platform: Platform
    auth_url: str


class IdentityClaims(BaseModel):
    user_id: str
    email: Optional[str] = None
    is_admin: bool = False


class AdminSetupRequest(BaseModel):
    uid: Optional[str] = None
    isAdmin: bool = False
