# starlingpost/routers/admin_router.py
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from firebase_admin import auth as firebase_auth
from sqlmodel.ext.asyncio.session import AsyncSession

from starlingpost.dependencies.auth import get_admin_user, get_identity
from starlingpost.dependencies.db import get_session_dep
from starlingpost.infrastructure.accounts_repo import LinkedAccountRepository
from starlingpost.infrastructure.posts_repo import PostRepository
from starlingpost.platforms.errors import ConfigurationError
from starlingpost.schemas.platform_schema import AdminSetupRequest, IdentityClaims, LinkedAccountRead
from starlingpost.services.admin_claims import AdminClaimsManager, SetupUnauthorized
from starlingpost.services.admin_metrics import Timeframe, UsageMetrics, UsageReport

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/setup")
async def admin_setup(payload: AdminSetupRequest,
                      x_admin_setup_secret: Optional[str] = Header(default=None),
                      identity=Depends(get_identity)):
    """
    Grant or revoke the isAdmin claim. Protected by the shared secret in
    ADMIN_SETUP_SECRET, sent as the x-admin-setup-secret header.
    """
    try:
        AdminClaimsManager.check_setup_secret(x_admin_setup_secret)
    except ConfigurationError:
        logger.error("admin_setup_not_configured")
        return JSONResponse({"success": False, "error": "ADMIN_SETUP_SECRET not configured"}, status_code=500)
    except SetupUnauthorized:
        return JSONResponse({"success": False, "error": "Unauthorized"}, status_code=401)

    if not payload.uid:
        return JSONResponse({"success": False, "error": "Missing uid"}, status_code=400)

    try:
        await AdminClaimsManager(identity).set_role(payload.uid, payload.isAdmin)
    except firebase_auth.UserNotFoundError:
        return JSONResponse({"success": False, "error": "User not found"}, status_code=404)
    except Exception as e:
        logger.exception("admin_setup_failed", error=str(e))
        return JSONResponse({"success": False, "error": "Internal server error"}, status_code=500)
    return {"success": True}


@router.get("/users/{uid}/accounts", response_model=List[LinkedAccountRead])
async def user_accounts(uid: str, session: AsyncSession = Depends(get_session_dep),
                        admin: IdentityClaims = Depends(get_admin_user)):
    return await LinkedAccountRepository(session).list_by_user(uid)


@router.get("/metrics", response_model=UsageReport)
async def usage_metrics(timeframe: Timeframe = "7d", session: AsyncSession = Depends(get_session_dep),
                        admin: IdentityClaims = Depends(get_admin_user)):
    metrics = UsageMetrics(LinkedAccountRepository(session), PostRepository(session))
    return await metrics.report(timeframe)
