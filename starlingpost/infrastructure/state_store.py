# starlingpost/infrastructure/state_store.py
import json
import secrets
from datetime import timedelta, timezone
from typing import Any, Dict, Optional

import structlog
import redis.asyncio as aioredis

from starlingpost.schemas.platform_schema import OAuthState, Platform, utc_now

logger = structlog.get_logger(__name__)

OAUTH_STATE_TTL = 600
_KEY_PREFIX = "oauth_state:"


class OAuthStateStore:
    """
    Single-use OAuth state values kept in Redis.

    consume() relies on GETDEL so that two concurrent callbacks carrying the
    same state cannot both receive the payload.
    """

    def __init__(self, client: aioredis.Redis, ttl: int = OAUTH_STATE_TTL):
        self.client = client
        self.ttl = ttl

    async def create(self, user_id: str, platform: Platform, flow: Optional[Dict[str, Any]] = None) -> str:
        state = secrets.token_urlsafe(32)
        payload = {
            "user_id": str(user_id),
            "platform": platform.value,
            "created_at": utc_now().isoformat(),
            "flow": flow or {},
        }
        await self.client.set(_KEY_PREFIX + state, json.dumps(payload), ex=self.ttl, nx=True)
        logger.debug("oauth_state_created", user_id=user_id, platform=platform.value, ttl=self.ttl)
        return state

    async def consume(self, state: str) -> Optional[OAuthState]:
        if not state:
            return None
        raw = await self.client.getdel(_KEY_PREFIX + state)
        if not raw:
            return None
        try:
            payload = json.loads(raw)
            record = OAuthState(state=state, **payload)
        except (ValueError, TypeError):
            logger.warning("oauth_state_corrupt")
            return None
        created_at = record.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        # redis expiry is the primary guard; this covers keys restored without TTL
        if utc_now() - created_at > timedelta(seconds=self.ttl):
            logger.info("oauth_state_expired", platform=record.platform.value)
            return None
        return record
