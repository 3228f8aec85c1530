# starlingpost/platforms/youtube.py
from typing import Any, Dict

import structlog

from starlingpost.models.linked_account import LinkedAccount
from starlingpost.platforms.base import (
    EXCHANGE_TIMEOUT,
    METRICS_TIMEOUT,
    ClientCredentials,
    PlatformAdapter,
    int_or_none,
    retry_after_seconds,
    safe_json,
)
from starlingpost.platforms.errors import NotFoundError, RateLimitedError
from starlingpost.schemas.platform_schema import Platform, PostMetrics, TokenSet

logger = structlog.get_logger(__name__)

YT_API_BASE = "https://www.googleapis.com/youtube/v3"

# 403 reasons google uses for quota exhaustion
_QUOTA_REASONS = {"quotaExceeded", "rateLimitExceeded", "userRateLimitExceeded", "dailyLimitExceeded"}


class YouTubeAdapter(PlatformAdapter):
    platform = Platform.YOUTUBE

    def extra_auth_params(self, flow: Dict[str, Any]) -> Dict[str, str]:
        # offline + consent so google hands out a refresh token on every link
        return {"access_type": "offline", "include_granted_scopes": "true", "prompt": "consent"}

    async def _exchange(self, code: str, redirect_uri: str, creds: ClientCredentials,
                        flow: Dict[str, Any]) -> TokenSet:
        resp = await self._send("POST", self.config.token_endpoint, EXCHANGE_TIMEOUT, data={
            "code": code,
            "client_id": creds.client_id,
            "client_secret": creds.client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        })
        if resp.status_code != 200:
            raise self._exchange_failed(resp)
        tokens = self._token_set(safe_json(resp))

        me = await self._send("GET", f"{YT_API_BASE}/channels", EXCHANGE_TIMEOUT,
                              params={"part": "snippet", "mine": "true"},
                              headers={"Authorization": f"Bearer {tokens.access_token}"})
        if me.status_code != 200:
            raise self._exchange_failed(me, "channel lookup")
        items = safe_json(me).get("items") or []
        if items:
            channel = items[0]
            tokens.account_id = channel.get("id")
            tokens.account_name = (channel.get("snippet") or {}).get("title") or "YouTube Channel"
        logger.info("youtube_tokens_received", has_refresh=bool(tokens.refresh_token),
                    channel_found=bool(items))
        return tokens

    async def _refresh(self, existing: TokenSet, creds: ClientCredentials) -> TokenSet:
        resp = await self._send("POST", self.config.token_endpoint, EXCHANGE_TIMEOUT, data={
            "client_id": creds.client_id,
            "client_secret": creds.client_secret,
            "refresh_token": existing.refresh_token,
            "grant_type": "refresh_token",
        })
        if resp.status_code != 200:
            raise self._refresh_failed(resp)
        return self._token_set(safe_json(resp), fallback=existing)

    async def fetch_metrics(self, account: LinkedAccount, platform_post_id: str) -> PostMetrics:
        tokens = account.token_set()
        resp = await self._send("GET", f"{YT_API_BASE}/videos", METRICS_TIMEOUT,
                                params={"part": "statistics", "id": platform_post_id},
                                headers={"Authorization": f"Bearer {tokens.access_token}"})
        if resp.status_code == 403:
            errors = (safe_json(resp).get("error") or {}).get("errors") or []
            if any(e.get("reason") in _QUOTA_REASONS for e in errors):
                raise RateLimitedError("youtube quota exhausted", self.platform.value, retry_after_seconds(resp))
        if resp.status_code != 200:
            raise self._metrics_failed(resp)

        items = safe_json(resp).get("items") or []
        if not items:
            raise NotFoundError(f"video {platform_post_id} not found", self.platform.value)
        stats = items[0].get("statistics") or {}
        return PostMetrics(
            views=int_or_none(stats.get("viewCount")),
            likes=int_or_none(stats.get("likeCount")),
            comments=int_or_none(stats.get("commentCount")),
        )
