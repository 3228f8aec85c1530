# starlingpost/services/metrics_sync.py
from typing import Dict, List, Optional

import structlog
from pydantic import BaseModel, Field

from starlingpost.infrastructure.accounts_repo import LinkedAccountRepository
from starlingpost.infrastructure.posts_repo import PostRepository
from starlingpost.models.linked_account import LinkedAccount
from starlingpost.models.post import Post
from starlingpost.platforms.base import PlatformAdapter
from starlingpost.platforms.errors import (
    InvalidGrantError,
    LinkingError,
    NotFoundError,
    PlatformNotImplementedError,
    RateLimitedError,
    RefreshNotSupportedError,
)
from starlingpost.platforms.registry import default_adapters
from starlingpost.schemas.platform_schema import Platform, PostMetrics

logger = structlog.get_logger(__name__)


class PostSyncFailure(BaseModel):
    post_id: str
    platform: str
    code: str
    retry_after: Optional[float] = None


class SyncSummary(BaseModel):
    updated: List[str] = Field(default_factory=list)
    stale: List[str] = Field(default_factory=list)
    rate_limited: List[PostSyncFailure] = Field(default_factory=list)
    failed: List[PostSyncFailure] = Field(default_factory=list)


class MetricsSync:
    """
    Pulls post metrics through the platform adapters.

    An InvalidGrant on fetch gets exactly one refresh and one retry. If that
    does not recover the credential the account is flagged needs_relink and
    the error propagates. RateLimited is never retried here; scheduling the
    next attempt belongs to the caller.
    """

    def __init__(self, accounts: LinkedAccountRepository, posts: Optional[PostRepository] = None,
                 adapters: Optional[Dict[Platform, PlatformAdapter]] = None):
        self.accounts = accounts
        self.posts = posts
        self.adapters = adapters if adapters is not None else default_adapters

    def _adapter(self, platform: str) -> PlatformAdapter:
        target = Platform.parse(platform)
        adapter = self.adapters.get(target)
        if adapter is None:
            raise PlatformNotImplementedError(f"{target.value} integration is not available yet", target.value)
        return adapter

    async def sync_metrics(self, account: LinkedAccount, platform_post_id: str) -> PostMetrics:
        adapter = self._adapter(account.platform)
        log = logger.bind(platform=account.platform, account_id=account.account_id, post_id=platform_post_id)
        try:
            return await adapter.fetch_metrics(account, platform_post_id)
        except InvalidGrantError:
            log.info("metrics_token_rejected_refreshing")

        try:
            tokens = await adapter.refresh_token(account.token_set())
        except (InvalidGrantError, RefreshNotSupportedError) as exc:
            log.warning("metrics_refresh_failed", error=exc.code)
            await self.accounts.mark_needs_relink(account)
            raise InvalidGrantError("credential needs relinking", account.platform) from exc
        account = await self.accounts.update_tokens(account, tokens)

        try:
            return await adapter.fetch_metrics(account, platform_post_id)
        except InvalidGrantError:
            log.warning("metrics_token_rejected_after_refresh")
            await self.accounts.mark_needs_relink(account)
            raise

    async def sync_post(self, post: Post) -> Post:
        if self.posts is None:
            raise RuntimeError("sync_post needs a PostRepository")
        account = await self.accounts.get(post.user_id, post.platform, post.account_id)
        if account is None:
            raise NotFoundError(f"no linked {post.platform} account {post.account_id}", post.platform)
        if account.needs_relink:
            raise InvalidGrantError("credential needs relinking", post.platform)
        try:
            metrics = await self.sync_metrics(account, post.platform_post_id)
        except NotFoundError:
            logger.info("post_marked_stale", post_id=str(post.id), platform=post.platform)
            await self.posts.mark_stale(post)
            raise
        return await self.posts.update_metrics(post, metrics)

    async def sync_user_posts(self, user_id: str, limit: int = 50) -> SyncSummary:
        if self.posts is None:
            raise RuntimeError("sync_user_posts needs a PostRepository")
        summary = SyncSummary()
        posts = await self.posts.list_syncable(user_id, limit=limit)
        logger.info("metrics_sync_started", user_id=user_id, posts=len(posts))
        for post in posts:
            post_id = str(post.id)
            try:
                await self.sync_post(post)
                summary.updated.append(post_id)
            except NotFoundError as exc:
                if post.metrics_stale:
                    summary.stale.append(post_id)
                else:
                    summary.failed.append(PostSyncFailure(post_id=post_id, platform=post.platform, code=exc.code))
            except RateLimitedError as exc:
                summary.rate_limited.append(PostSyncFailure(post_id=post_id, platform=post.platform,
                                                            code=exc.code, retry_after=exc.retry_after))
            except LinkingError as exc:
                summary.failed.append(PostSyncFailure(post_id=post_id, platform=post.platform, code=exc.code))
        logger.info("metrics_sync_finished", user_id=user_id, updated=len(summary.updated),
                    stale=len(summary.stale), rate_limited=len(summary.rate_limited), failed=len(summary.failed))
        return summary
