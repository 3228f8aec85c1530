# starlingpost/infrastructure/posts_repo.py
from typing import Optional, List, Dict, Tuple
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlmodel import select
from sqlalchemy import case, func, literal
from datetime import datetime
import uuid

from starlingpost.models.post import Post
from starlingpost.schemas.platform_schema import PostMetrics, utc_now


class PostRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, post: Post) -> Post:
        self.session.add(post)
        await self.session.commit()
        await self.session.refresh(post)
        return post

    async def get_for_user(self, user_id: str, post_id: uuid.UUID) -> Optional[Post]:
        q = select(Post).where(Post.id == post_id, Post.user_id == user_id)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list_syncable(self, user_id: str, limit: int = 50) -> List[Post]:
        q = (
            select(Post)
            .where(Post.user_id == user_id, Post.metrics_stale == False)  # noqa: E712
            .order_by(Post.created_at.desc())
            .limit(limit)
        )
        res = await self.session.execute(q)
        return list(res.scalars().all())

    async def update_metrics(self, post: Post, metrics: PostMetrics) -> Post:
        # keep previously reported fields the platform left out this time
        merged = dict(post.metrics or {})
        merged.update(metrics.reported())
        post.metrics = merged
        post.last_synced_at = utc_now()
        self.session.add(post)
        await self.session.commit()
        await self.session.refresh(post)
        return post

    async def mark_stale(self, post: Post) -> Post:
        post.metrics_stale = True
        post.last_synced_at = utc_now()
        self.session.add(post)
        await self.session.commit()
        await self.session.refresh(post)
        return post

    async def counts_by_user(self, since: Optional[datetime] = None) -> Dict[str, Tuple[int, int]]:
        """user_id -> (all posts, posts created at or after `since`); no `since` counts everything."""
        if since is None:
            in_window = func.count(Post.id)
        else:
            in_window = func.sum(case((Post.created_at >= since, 1), else_=literal(0)))
        q = select(Post.user_id, func.count(Post.id), in_window).group_by(Post.user_id)
        res = await self.session.execute(q)
        return {user_id: (int(total), int(recent or 0)) for user_id, total, recent in res.all()}
