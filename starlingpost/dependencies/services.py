# starlingpost/dependencies/services.py
from typing import Dict

from fastapi import Depends
from sqlmodel.ext.asyncio.session import AsyncSession

from starlingpost.dependencies.db import get_session_dep
from starlingpost.infrastructure.accounts_repo import LinkedAccountRepository
from starlingpost.infrastructure.posts_repo import PostRepository
from starlingpost.infrastructure.redis_cache import redis_client
from starlingpost.infrastructure.state_store import OAuthStateStore
from starlingpost.platforms.base import PlatformAdapter
from starlingpost.platforms.registry import default_adapters
from starlingpost.schemas.platform_schema import Platform
from starlingpost.services.link_service import LinkService
from starlingpost.services.metrics_sync import MetricsSync


def get_state_store() -> OAuthStateStore:
    return OAuthStateStore(redis_client)


def get_adapters() -> Dict[Platform, PlatformAdapter]:
    return default_adapters


def get_link_service(
    session: AsyncSession = Depends(get_session_dep),
    states: OAuthStateStore = Depends(get_state_store),
    adapters: Dict[Platform, PlatformAdapter] = Depends(get_adapters),
) -> LinkService:
    return LinkService(states, LinkedAccountRepository(session), adapters)


def get_metrics_sync(
    session: AsyncSession = Depends(get_session_dep),
    adapters: Dict[Platform, PlatformAdapter] = Depends(get_adapters),
) -> MetricsSync:
    return MetricsSync(LinkedAccountRepository(session), PostRepository(session), adapters)
