# starlingpost/services/admin_metrics.py
from datetime import datetime, timedelta
from typing import Dict, Literal, Optional

import structlog
from pydantic import BaseModel, Field

from starlingpost.infrastructure.accounts_repo import LinkedAccountRepository
from starlingpost.infrastructure.posts_repo import PostRepository
from starlingpost.schemas.platform_schema import utc_now

logger = structlog.get_logger(__name__)

Timeframe = Literal["24h", "7d", "30d", "all"]

TIMEFRAME_WINDOWS: Dict[str, Optional[timedelta]] = {
    "24h": timedelta(days=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "all": None,
}


class UserUsage(BaseModel):
    total_posts: int = 0
    posts_in_timeframe: int = 0


class UsageTotals(BaseModel):
    total_users: int = 0
    new_users: int = 0
    total_posts: int = 0
    posts_in_timeframe: int = 0


class UsageReport(BaseModel):
    timeframe: str
    since: Optional[datetime] = None
    totals: UsageTotals = Field(default_factory=UsageTotals)
    per_user: Dict[str, UserUsage] = Field(default_factory=dict)


class UsageMetrics:
    """
    Admin usage figures. A user counts from the first linked account; "new"
    means that first link falls inside the timeframe. "all" has no window, so
    every user and post is inside it.
    """

    def __init__(self, accounts: LinkedAccountRepository, posts: PostRepository):
        self.accounts = accounts
        self.posts = posts

    async def report(self, timeframe: str = "7d", now: Optional[datetime] = None) -> UsageReport:
        window = TIMEFRAME_WINDOWS[timeframe]
        since = (now or utc_now()) - window if window is not None else None

        users = await self.accounts.users_by_first_link(since)
        post_counts = await self.posts.counts_by_user(since)

        report = UsageReport(timeframe=timeframe, since=since)
        for user_id, is_new in users:
            report.per_user[user_id] = UserUsage()
            if is_new:
                report.totals.new_users += 1
        for user_id, (total, recent) in post_counts.items():
            usage = report.per_user.setdefault(user_id, UserUsage())
            usage.total_posts = total
            usage.posts_in_timeframe = recent
            report.totals.total_posts += total
            report.totals.posts_in_timeframe += recent
        report.totals.total_users = len(report.per_user)
        logger.info("admin_usage_report", timeframe=timeframe, users=report.totals.total_users,
                    posts=report.totals.total_posts)
        return report
