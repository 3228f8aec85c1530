# starlingpost/platforms/errors.py
from typing import Any, Dict, Optional

# keys that must never travel inside an error payload
_SECRET_KEYS = {"access_token", "refresh_token", "id_token", "client_secret", "code", "code_verifier"}


def sanitize_payload(payload: Any) -> Any:
    if isinstance(payload, dict):
        return {k: sanitize_payload(v) for k, v in payload.items() if k not in _SECRET_KEYS}
    if isinstance(payload, list):
        return [sanitize_payload(v) for v in payload]
    return payload


class LinkingError(Exception):
    """
    Base for every failure raised by adapters, the orchestrator and metrics sync.
    `code` is the machine-readable value handed to clients, `status_code` the HTTP mapping.
    """
    code = "linking_error"
    status_code = 500

    def __init__(self, message: str = "", platform: Optional[str] = None):
        super().__init__(message or self.code)
        self.platform = platform


class ConfigurationError(LinkingError):
    code = "configuration_error"
    status_code = 500


class UnknownPlatformError(LinkingError):
    code = "unknown_platform"
    status_code = 404


class StateNotFoundError(LinkingError):
    code = "state_not_found"
    status_code = 400


class ExchangeFailedError(LinkingError):
    code = "exchange_failed"
    status_code = 502

    def __init__(self, message: str = "", platform: Optional[str] = None,
                 status: Optional[int] = None, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message, platform)
        self.status = status
        self.payload = sanitize_payload(payload or {})


class NetworkError(LinkingError):
    code = "network_error"
    status_code = 502


class InvalidGrantError(LinkingError):
    """The stored credential is revoked or unusable; the user has to relink."""
    code = "invalid_grant"
    status_code = 409


class RateLimitedError(LinkingError):
    code = "rate_limited"
    status_code = 429

    def __init__(self, message: str = "", platform: Optional[str] = None, retry_after: Optional[float] = None):
        super().__init__(message, platform)
        self.retry_after = retry_after


class NotFoundError(LinkingError):
    code = "not_found"
    status_code = 404


class PlatformNotImplementedError(LinkingError):
    code = "not_implemented"
    status_code = 501


class ProviderTimeoutError(LinkingError):
    code = "timeout"
    status_code = 504


class RefreshNotSupportedError(LinkingError):
    code = "refresh_not_supported"
    status_code = 409
