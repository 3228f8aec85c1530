# starlingpost/platforms/instagram.py
"""Instagram API with Instagram Login: professional accounts, media insights."""
from datetime import timedelta
from typing import Any, Dict

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
from starlingpost.platforms.errors import InvalidGrantError, NotFoundError, RateLimitedError
from starlingpost.schemas.platform_schema import Platform, PostMetrics, TokenSet, utc_now

logger = structlog.get_logger(__name__)

IG_GRAPH_BASE = "https://graph.instagram.com"
IG_GRAPH_VERSION = "v22.0"

INSIGHT_METRICS = ["reach", "views", "saved", "shares", "likes", "comments"]
_INSIGHT_FIELDS = {"reach": "reach", "views": "views", "saved": "saves", "shares": "shares",
                   "likes": "likes", "comments": "comments"}

# graph api error codes
_EXPIRED_TOKEN_CODES = {190}
_THROTTLE_CODES = {4, 17, 32, 613}
_MISSING_OBJECT_SUBCODE = 33


def _graph_error(response: httpx.Response) -> Dict[str, Any]:
    error = safe_json(response).get("error")
    return error if isinstance(error, dict) else {}


class InstagramAdapter(PlatformAdapter):
    platform = Platform.INSTAGRAM

    def can_refresh(self, existing: TokenSet) -> bool:
        # long-lived tokens refresh themselves; a token without expiry has nothing to extend
        return bool(existing.access_token) and existing.expires_at is not None

    async def _exchange(self, code: str, redirect_uri: str, creds: ClientCredentials,
                        flow: Dict[str, Any]) -> TokenSet:
        # 1) code -> short-lived token
        resp = await self._send("POST", self.config.token_endpoint, EXCHANGE_TIMEOUT, data={
            "client_id": creds.client_id,
            "client_secret": creds.client_secret,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri,
            "code": code,
        })
        if resp.status_code != 200:
            raise self._exchange_failed(resp)
        data = safe_json(resp)
        # newer responses wrap the grant in a data list
        if isinstance(data.get("data"), list) and data["data"]:
            data = data["data"][0]
        permissions = data.get("permissions")
        if isinstance(permissions, list):
            data["scope"] = ",".join(permissions)
        elif isinstance(permissions, str):
            data["scope"] = permissions
        tokens = self._token_set(data)
        if data.get("user_id") is not None:
            tokens.account_id = str(data["user_id"])
        if tokens.expires_at is None:
            tokens.expires_at = utc_now() + timedelta(hours=1)

        # 2) short-lived -> long-lived (60 days), best effort
        long_lived = await self._send("GET", f"{IG_GRAPH_BASE}/access_token", EXCHANGE_TIMEOUT, params={
            "grant_type": "ig_exchange_token",
            "client_secret": creds.client_secret,
            "access_token": tokens.access_token,
        })
        if long_lived.status_code == 200:
            tokens = self._token_set(safe_json(long_lived), fallback=tokens)
        else:
            logger.warning("instagram_long_lived_exchange_failed", status=long_lived.status_code,
                           error=_graph_error(long_lived).get("message"))

        # 3) profile for the account label
        me = await self._send("GET", f"{IG_GRAPH_BASE}/{IG_GRAPH_VERSION}/me", EXCHANGE_TIMEOUT,
                              params={"fields": "user_id,username", "access_token": tokens.access_token})
        if me.status_code == 200:
            profile = safe_json(me)
            tokens.account_id = tokens.account_id or (str(profile["user_id"]) if profile.get("user_id") else None)
            tokens.account_name = profile.get("username")
        else:
            logger.warning("instagram_profile_lookup_failed", status=me.status_code)
        return tokens

    async def _refresh(self, existing: TokenSet, creds: ClientCredentials) -> TokenSet:
        resp = await self._send("GET", f"{IG_GRAPH_BASE}/refresh_access_token", EXCHANGE_TIMEOUT, params={
            "grant_type": "ig_refresh_token",
            "access_token": existing.access_token,
        })
        if resp.status_code != 200:
            if _graph_error(resp).get("code") in _EXPIRED_TOKEN_CODES:
                raise InvalidGrantError("instagram token expired or revoked", self.platform.value)
            raise self._refresh_failed(resp)
        return self._token_set(safe_json(resp), fallback=existing)

    def _classify(self, response: httpx.Response) -> Exception:
        error = _graph_error(response)
        code = error.get("code")
        if code in _EXPIRED_TOKEN_CODES:
            return InvalidGrantError("instagram token expired or revoked", self.platform.value)
        if code in _THROTTLE_CODES:
            return RateLimitedError("instagram rate limited", self.platform.value, retry_after_seconds(response))
        if code == 100 and error.get("error_subcode") == _MISSING_OBJECT_SUBCODE:
            return NotFoundError("instagram media not found", self.platform.value)
        return self._metrics_failed(response)

    async def fetch_metrics(self, account: LinkedAccount, platform_post_id: str) -> PostMetrics:
        tokens = account.token_set()
        metrics = PostMetrics()

        media = await self._send("GET", f"{IG_GRAPH_BASE}/{IG_GRAPH_VERSION}/{platform_post_id}",
                                 METRICS_TIMEOUT,
                                 params={"fields": "like_count,comments_count", "access_token": tokens.access_token})
        if media.status_code != 200:
            raise self._classify(media)
        node = safe_json(media)
        metrics.likes = int_or_none(node.get("like_count"))
        metrics.comments = int_or_none(node.get("comments_count"))

        insights = await self._send("GET", f"{IG_GRAPH_BASE}/{IG_GRAPH_VERSION}/{platform_post_id}/insights",
                                    METRICS_TIMEOUT,
                                    params={"metric": ",".join(INSIGHT_METRICS), "access_token": tokens.access_token})
        if insights.status_code != 200:
            error = _graph_error(insights)
            # code 100 here means a metric is unsupported for this media type; keep the counts we have
            if error.get("code") == 100 and error.get("error_subcode") != _MISSING_OBJECT_SUBCODE:
                logger.info("instagram_insights_unavailable", media_id=platform_post_id,
                            message=error.get("message"))
                return metrics
            raise self._classify(insights)

        for entry in safe_json(insights).get("data") or []:
            field = _INSIGHT_FIELDS.get(entry.get("name"))
            if not field:
                continue
            values = entry.get("values") or []
            value = values[0].get("value") if values else (entry.get("total_value") or {}).get("value")
            value = int_or_none(value)
            if value is not None:
                setattr(metrics, field, value)
        return metrics
