# starlingpost/services/admin_claims.py
import os
import secrets
from typing import Optional

import structlog

from starlingpost.platforms.errors import ConfigurationError

logger = structlog.get_logger(__name__)

ADMIN_CLAIM = "isAdmin"


class SetupUnauthorized(Exception):
    pass


class AdminClaimsManager:
    def __init__(self, identity):
        self.identity = identity

    @staticmethod
    def check_setup_secret(presented: Optional[str]) -> None:
        # read per call so rotating the secret needs no restart
        expected = os.getenv("ADMIN_SETUP_SECRET")
        if not expected:
            raise ConfigurationError("ADMIN_SETUP_SECRET not configured")
        if not presented or not secrets.compare_digest(presented, expected):
            logger.warning("admin_setup_secret_rejected")
            raise SetupUnauthorized("invalid setup secret")

    async def set_role(self, user_id: str, is_admin: bool) -> None:
        await self.identity.set_custom_claim(user_id, ADMIN_CLAIM, bool(is_admin))
        logger.info("admin_role_set", user_id=user_id, is_admin=bool(is_admin))
