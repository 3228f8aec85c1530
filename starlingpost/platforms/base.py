# starlingpost/platforms/base.py
"""
Common capability interface shared by every platform adapter.

Adapters hold no per-user state: credentials are read from the environment
on each call and every HTTP call opens its own client, so one instance can
serve concurrent requests.
"""
import os
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Dict, NamedTuple, Optional, Tuple

import httpx
import structlog

from starlingpost.models.linked_account import LinkedAccount
from starlingpost.platforms.errors import (
    ConfigurationError,
    ExchangeFailedError,
    InvalidGrantError,
    NetworkError,
    NotFoundError,
    PlatformNotImplementedError,
    ProviderTimeoutError,
    RateLimitedError,
    RefreshNotSupportedError,
)
from starlingpost.schemas.platform_schema import Platform, PostMetrics, TokenSet, utc_now

logger = structlog.get_logger(__name__)

EXCHANGE_TIMEOUT = 10.0
METRICS_TIMEOUT = 5.0


class PlatformConfig(NamedTuple):
    client_id_env: str
    client_secret_env: str
    redirect_uri_env: str
    scopes: Tuple[str, ...]
    auth_endpoint: str
    token_endpoint: str
    scope_separator: str = " "


class ClientCredentials(NamedTuple):
    client_id: str
    client_secret: str
    redirect_uri: str


def safe_json(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def int_or_none(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def retry_after_seconds(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class PlatformAdapter(ABC):
    platform: Platform
    implemented = True
    supports_refresh = True

    def __init__(self, config: PlatformConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        # tests inject httpx.MockTransport here
        self.transport = transport

    # --- configuration ---
    def credentials(self) -> ClientCredentials:
        env_names = (self.config.client_id_env, self.config.client_secret_env, self.config.redirect_uri_env)
        values = [os.getenv(name, "") for name in env_names]
        missing = [name for name, value in zip(env_names, values) if not value]
        if missing:
            raise ConfigurationError(f"missing configuration: {', '.join(missing)}", self.platform.value)
        return ClientCredentials(*values)

    def redirect_uri(self) -> str:
        return self.credentials().redirect_uri

    # --- authorization url ---
    def new_flow(self) -> Dict[str, Any]:
        """Extras stored alongside the OAuth state for this flow (PKCE verifier etc)."""
        return {}

    def extra_auth_params(self, flow: Dict[str, Any]) -> Dict[str, str]:
        return {}

    def build_auth_url(self, state: str, flow: Optional[Dict[str, Any]] = None) -> str:
        creds = self.credentials()
        params = {
            "client_id": creds.client_id,
            "redirect_uri": creds.redirect_uri,
            "response_type": "code",
            "scope": self.config.scope_separator.join(self.config.scopes),
        }
        params.update(self.extra_auth_params(flow or {}))
        params["state"] = state
        return str(httpx.URL(self.config.auth_endpoint).copy_merge_params(params))

    # --- token lifecycle ---
    async def exchange_code(self, code: str, redirect_uri: Optional[str] = None,
                            flow: Optional[Dict[str, Any]] = None) -> TokenSet:
        creds = self.credentials()
        return await self._exchange(code, redirect_uri or creds.redirect_uri, creds, flow or {})

    async def refresh_token(self, existing: TokenSet) -> TokenSet:
        if not self.supports_refresh or not self.can_refresh(existing):
            raise RefreshNotSupportedError(f"{self.platform.value} token cannot be refreshed", self.platform.value)
        return await self._refresh(existing, self.credentials())

    def can_refresh(self, existing: TokenSet) -> bool:
        return bool(existing.refresh_token)

    @abstractmethod
    async def _exchange(self, code: str, redirect_uri: str, creds: ClientCredentials,
                        flow: Dict[str, Any]) -> TokenSet:
        raise NotImplementedError

    @abstractmethod
    async def _refresh(self, existing: TokenSet, creds: ClientCredentials) -> TokenSet:
        raise NotImplementedError

    # --- metrics ---
    @abstractmethod
    async def fetch_metrics(self, account: LinkedAccount, platform_post_id: str) -> PostMetrics:
        raise NotImplementedError

    # --- http helpers ---
    async def _send(self, method: str, url: str, timeout: float, **kwargs) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
                return await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("provider_timeout", platform=self.platform.value, url=url, timeout=timeout)
            raise ProviderTimeoutError(f"{self.platform.value} request timed out", self.platform.value) from exc
        except httpx.TransportError as exc:
            logger.warning("provider_transport_error", platform=self.platform.value, url=url, error=type(exc).__name__)
            raise NetworkError(f"{self.platform.value} unreachable", self.platform.value) from exc

    def _token_set(self, data: Dict[str, Any], fallback: Optional[TokenSet] = None) -> TokenSet:
        access_token = data.get("access_token")
        if not access_token:
            raise ExchangeFailedError("no access token returned from provider", self.platform.value, payload=data)
        expires_at = None
        expires_in = data.get("expires_in")
        if expires_in:
            try:
                expires_at = utc_now() + timedelta(seconds=int(expires_in))
            except (TypeError, ValueError, OverflowError):
                raise ExchangeFailedError(f"unusable expires_in from {self.platform.value}", self.platform.value,
                                          payload=data)
        scope = data.get("scope")
        if isinstance(scope, str) and scope:
            scopes = [s for s in scope.replace(",", " ").split() if s]
        elif fallback is not None:
            scopes = list(fallback.scopes)
        else:
            scopes = list(self.config.scopes)
        return TokenSet(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            expires_at=expires_at,
            scopes=scopes,
            account_id=fallback.account_id if fallback else None,
            account_name=fallback.account_name if fallback else None,
        )

    def _exchange_failed(self, response: httpx.Response, what: str = "token exchange") -> ExchangeFailedError:
        payload = safe_json(response)
        logger.warning("provider_exchange_failed", platform=self.platform.value, what=what,
                       status=response.status_code, error=payload.get("error"))
        return ExchangeFailedError(f"{self.platform.value} {what} failed", self.platform.value,
                                   status=response.status_code, payload=payload)

    def _refresh_failed(self, response: httpx.Response) -> Exception:
        payload = safe_json(response)
        if payload.get("error") == "invalid_grant":
            return InvalidGrantError(f"{self.platform.value} refresh token revoked", self.platform.value)
        if response.status_code == 429:
            return RateLimitedError("refresh rate limited", self.platform.value, retry_after_seconds(response))
        return self._exchange_failed(response, "token refresh")

    def _metrics_failed(self, response: httpx.Response) -> Exception:
        status = response.status_code
        if status == 401:
            return InvalidGrantError(f"{self.platform.value} access token rejected", self.platform.value)
        if status == 404:
            return NotFoundError(f"{self.platform.value} post not found", self.platform.value)
        if status == 429:
            return RateLimitedError(f"{self.platform.value} rate limited", self.platform.value,
                                    retry_after_seconds(response))
        if status >= 500:
            return NetworkError(f"{self.platform.value} unavailable ({status})", self.platform.value)
        return self._exchange_failed(response, "metrics read")


class UnfinishedAdapter(PlatformAdapter):
    """Placeholder for platforms without an integration. Every operation fails the same way."""
    implemented = False
    supports_refresh = False

    def __init__(self, platform: Platform):
        self.platform = platform
        self.config = None
        self.transport = None

    def _unavailable(self) -> PlatformNotImplementedError:
        return PlatformNotImplementedError(f"{self.platform.value} integration is not available yet",
                                           self.platform.value)

    def credentials(self) -> ClientCredentials:
        raise self._unavailable()

    def build_auth_url(self, state: str, flow: Optional[Dict[str, Any]] = None) -> str:
        raise self._unavailable()

    async def exchange_code(self, code: str, redirect_uri: Optional[str] = None,
                            flow: Optional[Dict[str, Any]] = None) -> TokenSet:
        raise self._unavailable()

    async def refresh_token(self, existing: TokenSet) -> TokenSet:
        raise self._unavailable()

    async def _exchange(self, code, redirect_uri, creds, flow) -> TokenSet:
        raise self._unavailable()

    async def _refresh(self, existing, creds) -> TokenSet:
        raise self._unavailable()

    async def fetch_metrics(self, account: LinkedAccount, platform_post_id: str) -> PostMetrics:
        raise self._unavailable()
