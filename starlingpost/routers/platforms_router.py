# starlingpost/routers/platforms_router.py
import math
import os
from typing import List, Optional
from urllib.parse import urlencode

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import RedirectResponse

from starlingpost.dependencies.auth import get_current_user
from starlingpost.dependencies.services import get_link_service
from starlingpost.platforms.errors import LinkingError
from starlingpost.schemas.platform_schema import AuthUrlResponse, IdentityClaims, LinkedAccountRead, Platform
from starlingpost.services.link_service import LinkService

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/platforms", tags=["platforms"])


def dashboard_url() -> str:
    return os.getenv("DASHBOARD_URL", "http://localhost:3000/dashboard")


def _dashboard_redirect(**params) -> RedirectResponse:
    return RedirectResponse(f"{dashboard_url()}?{urlencode(params)}", status_code=status.HTTP_303_SEE_OTHER)


def http_error(exc: LinkingError) -> HTTPException:
    headers = None
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        headers = {"Retry-After": str(math.ceil(retry_after))}
    return HTTPException(status_code=exc.status_code, detail={"error": exc.code, "platform": exc.platform},
                         headers=headers)


@router.get("", response_model=List[LinkedAccountRead])
async def list_linked_accounts(user: IdentityClaims = Depends(get_current_user),
                               svc: LinkService = Depends(get_link_service)):
    return await svc.list_accounts(user.user_id)


@router.get("/{platform}/connect", response_model=AuthUrlResponse)
async def connect_start(platform: str, user: IdentityClaims = Depends(get_current_user),
                        svc: LinkService = Depends(get_link_service)):
    try:
        url = await svc.start_link(user.user_id, platform)
    except LinkingError as exc:
        logger.warning("connect_start_failed", platform=platform, error=exc.code)
        raise http_error(exc)
    return {"platform": Platform.parse(platform), "auth_url": url}


@router.get("/{platform}/callback")
async def connect_callback(platform: str, code: Optional[str] = None, state: Optional[str] = None,
                           error: Optional[str] = None, svc: LinkService = Depends(get_link_service)):
    if error:
        # user denied consent or provider refused; provider text is not forwarded
        logger.info("oauth_provider_error", platform=platform, provider_error=error)
        await svc.fail_link(state)
        return _dashboard_redirect(error="oauth_denied", platform=platform)
    if not code or not state:
        await svc.fail_link(state)
        return _dashboard_redirect(error="missing_params", platform=platform)

    try:
        account = await svc.complete_link(platform, code, state)
    except LinkingError as exc:
        logger.warning("connect_callback_failed", platform=platform, error=exc.code)
        return _dashboard_redirect(error=exc.code, platform=platform)

    return _dashboard_redirect(success=f"{account.platform}_connected", platform=account.platform)


@router.delete("/{platform}/{account_id}")
async def disconnect(platform: str, account_id: str, user: IdentityClaims = Depends(get_current_user),
                     svc: LinkService = Depends(get_link_service)):
    try:
        removed = await svc.unlink(user.user_id, platform, account_id)
    except LinkingError as exc:
        raise http_error(exc)
    if not removed:
        raise HTTPException(status_code=404, detail="account not connected")
    return {"success": True}
