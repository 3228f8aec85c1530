# starlingpost/routers/post_router.py
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel.ext.asyncio.session import AsyncSession

from starlingpost.dependencies.auth import get_current_user
from starlingpost.dependencies.db import get_session_dep
from starlingpost.dependencies.services import get_metrics_sync
from starlingpost.infrastructure.accounts_repo import LinkedAccountRepository
from starlingpost.infrastructure.posts_repo import PostRepository
from starlingpost.models.post import Post
from starlingpost.platforms.errors import LinkingError
from starlingpost.routers.platforms_router import http_error
from starlingpost.schemas.platform_schema import IdentityClaims
from starlingpost.schemas.post_schema import PostCreate, PostRead
from starlingpost.services.metrics_sync import MetricsSync, SyncSummary

router = APIRouter(prefix="/posts", tags=["posts"])


@router.post("", response_model=PostRead, status_code=201)
async def register_post(payload: PostCreate, session: AsyncSession = Depends(get_session_dep),
                        user: IdentityClaims = Depends(get_current_user)):
    account = await LinkedAccountRepository(session).get(user.user_id, payload.platform.value, payload.account_id)
    if not account:
        raise HTTPException(status_code=404, detail="account not connected")
    post = Post(user_id=user.user_id, platform=payload.platform.value, account_id=payload.account_id,
                platform_post_id=payload.platform_post_id, title=payload.title)
    return await PostRepository(session).create(post)


@router.post("/sync", response_model=SyncSummary)
async def sync_all(limit: int = 50, user: IdentityClaims = Depends(get_current_user),
                   sync: MetricsSync = Depends(get_metrics_sync)):
    return await sync.sync_user_posts(user.user_id, limit=min(max(limit, 1), 50))


@router.post("/{post_id}/sync", response_model=PostRead)
async def sync_one(post_id: uuid.UUID, session: AsyncSession = Depends(get_session_dep),
                   user: IdentityClaims = Depends(get_current_user),
                   sync: MetricsSync = Depends(get_metrics_sync)):
    post = await PostRepository(session).get_for_user(user.user_id, post_id)
    if not post:
        raise HTTPException(status_code=404, detail="post not found")
    try:
        return await sync.sync_post(post)
    except LinkingError as exc:
        raise http_error(exc)
