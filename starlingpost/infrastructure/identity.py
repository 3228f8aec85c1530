# starlingpost/infrastructure/identity.py
"""
Firebase Admin handle for the process.

init_identity() runs once at startup (repeat calls return the same app) and
shutdown_identity() tears it down. Request code never initialises the SDK.
"""
import os
from typing import Any, Optional

import firebase_admin
import structlog
from firebase_admin import auth, credentials
from starlette.concurrency import run_in_threadpool

from starlingpost.platforms.errors import ConfigurationError
from starlingpost.schemas.platform_schema import IdentityClaims

logger = structlog.get_logger(__name__)

_APP_NAME = "starlingpost"
_app: Optional[firebase_admin.App] = None


def init_identity() -> firebase_admin.App:
    global _app
    if _app is not None:
        return _app

    project_id = os.getenv("FIREBASE_PROJECT_ID")
    client_email = os.getenv("FIREBASE_CLIENT_EMAIL")
    private_key = (os.getenv("FIREBASE_PRIVATE_KEY") or "").replace("\\n", "\n")
    if not project_id or not client_email or not private_key:
        raise ConfigurationError("missing Firebase admin environment variables")

    cred = credentials.Certificate({
        "type": "service_account",
        "project_id": project_id,
        "client_email": client_email,
        "private_key": private_key,
        "token_uri": "https://oauth2.googleapis.com/token",
    })
    _app = firebase_admin.initialize_app(cred, {"projectId": project_id}, name=_APP_NAME)
    logger.info("identity_initialized", project_id=project_id)
    return _app


def shutdown_identity() -> None:
    global _app
    if _app is None:
        return
    firebase_admin.delete_app(_app)
    _app = None
    logger.info("identity_shutdown")


class IdentityError(Exception):
    pass


class FirebaseIdentity:
    """verify_token / set_custom_claim over the Firebase Admin SDK."""

    def __init__(self, app: Optional[firebase_admin.App] = None):
        if app is None and _app is None:
            raise ConfigurationError("identity provider used before init_identity()")
        self.app = app or _app

    async def verify_token(self, bearer_token: str) -> IdentityClaims:
        try:
            decoded = await run_in_threadpool(auth.verify_id_token, bearer_token, self.app)
        except (ValueError, auth.InvalidIdTokenError, auth.ExpiredIdTokenError,
                auth.RevokedIdTokenError, auth.CertificateFetchError) as exc:
            logger.info("id_token_rejected", error=type(exc).__name__)
            raise IdentityError("invalid token") from exc
        return IdentityClaims(
            user_id=decoded["uid"],
            email=decoded.get("email"),
            is_admin=bool(decoded.get("isAdmin")),
        )

    async def set_custom_claim(self, user_id: str, key: str, value: Any) -> None:
        user = await run_in_threadpool(auth.get_user, user_id, self.app)
        claims = dict(user.custom_claims or {})
        claims[key] = value
        await run_in_threadpool(auth.set_custom_user_claims, user_id, claims, self.app)
        logger.info("custom_claim_set", user_id=user_id, key=key)
