# starlingpost/platforms/twitter.py
import base64
import hashlib
import secrets
import time
from typing import Any, Dict, Optional

import httpx
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
from starlingpost.platforms.errors import (
    ExchangeFailedError,
    InvalidGrantError,
    NotFoundError,
    RateLimitedError,
)
from starlingpost.schemas.platform_schema import Platform, PostMetrics, TokenSet

logger = structlog.get_logger(__name__)

TWITTER_API_BASE = "https://api.twitter.com/2"


def pkce_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def _rate_limit_reset(response: httpx.Response) -> Optional[float]:
    reset = response.headers.get("x-rate-limit-reset")
    if reset:
        try:
            return max(0.0, float(reset) - time.time())
        except ValueError:
            pass
    return retry_after_seconds(response)


class TwitterAdapter(PlatformAdapter):
    """X API v2, OAuth 2.0 authorization code flow with PKCE."""
    platform = Platform.TWITTER

    def new_flow(self) -> Dict[str, Any]:
        return {"code_verifier": secrets.token_urlsafe(64)}

    def extra_auth_params(self, flow: Dict[str, Any]) -> Dict[str, str]:
        verifier = flow.get("code_verifier")
        if not verifier:
            return {}
        return {"code_challenge": pkce_challenge(verifier), "code_challenge_method": "S256"}

    async def _exchange(self, code: str, redirect_uri: str, creds: ClientCredentials,
                        flow: Dict[str, Any]) -> TokenSet:
        verifier = flow.get("code_verifier")
        if not verifier:
            raise ExchangeFailedError("missing PKCE verifier for twitter flow", self.platform.value)
        resp = await self._send("POST", self.config.token_endpoint, EXCHANGE_TIMEOUT,
                                auth=(creds.client_id, creds.client_secret),
                                data={
                                    "code": code,
                                    "grant_type": "authorization_code",
                                    "redirect_uri": redirect_uri,
                                    "code_verifier": verifier,
                                    "client_id": creds.client_id,
                                })
        if resp.status_code != 200:
            raise self._exchange_failed(resp)
        tokens = self._token_set(safe_json(resp))

        me = await self._send("GET", f"{TWITTER_API_BASE}/users/me", EXCHANGE_TIMEOUT,
                              headers={"Authorization": f"Bearer {tokens.access_token}"})
        if me.status_code != 200:
            raise self._exchange_failed(me, "profile lookup")
        user = safe_json(me).get("data") or {}
        tokens.account_id = user.get("id")
        tokens.account_name = user.get("username")
        return tokens

    async def _refresh(self, existing: TokenSet, creds: ClientCredentials) -> TokenSet:
        resp = await self._send("POST", self.config.token_endpoint, EXCHANGE_TIMEOUT,
                                auth=(creds.client_id, creds.client_secret),
                                data={
                                    "grant_type": "refresh_token",
                                    "refresh_token": existing.refresh_token,
                                    "client_id": creds.client_id,
                                })
        if resp.status_code != 200:
            # X reports a revoked refresh token as invalid_request
            if resp.status_code in (400, 401) and safe_json(resp).get("error") in ("invalid_request", "invalid_grant"):
                raise InvalidGrantError("twitter refresh token revoked", self.platform.value)
            raise self._refresh_failed(resp)
        return self._token_set(safe_json(resp), fallback=existing)

    async def fetch_metrics(self, account: LinkedAccount, platform_post_id: str) -> PostMetrics:
        tokens = account.token_set()
        resp = await self._send("GET", f"{TWITTER_API_BASE}/tweets/{platform_post_id}", METRICS_TIMEOUT,
                                params={"tweet.fields": "public_metrics"},
                                headers={"Authorization": f"Bearer {tokens.access_token}"})
        if resp.status_code == 429:
            raise RateLimitedError("twitter rate limited", self.platform.value, _rate_limit_reset(resp))
        if resp.status_code != 200:
            raise self._metrics_failed(resp)

        body = safe_json(resp)
        tweet = body.get("data")
        if not tweet:
            # deleted tweets come back as 200 with an errors list
            logger.info("twitter_tweet_missing", tweet_id=platform_post_id,
                        errors=[e.get("type") for e in body.get("errors") or []])
            raise NotFoundError(f"tweet {platform_post_id} not found", self.platform.value)
        pm = tweet.get("public_metrics") or {}
        return PostMetrics(
            likes=int_or_none(pm.get("like_count")),
            comments=int_or_none(pm.get("reply_count")),
            shares=int_or_none(pm.get("retweet_count")),
            saves=int_or_none(pm.get("bookmark_count")),
            impressions=int_or_none(pm.get("impression_count")),
        )
