# starlingpost/services/link_service.py
"""
Linking orchestration: start a provider authorization, validate the callback,
exchange the code and persist the linked account.

Each attempt moves PENDING -> EXCHANGING -> LINKED | FAILED. The state value
is consumed before any token exchange, and the credential store is written
once per successful completion and never on failure.
"""
from typing import Dict, List, Optional

import structlog

from starlingpost.infrastructure.accounts_repo import LinkedAccountRepository
from starlingpost.infrastructure.state_store import OAuthStateStore
from starlingpost.models.linked_account import LinkedAccount
from starlingpost.platforms.base import PlatformAdapter
from starlingpost.platforms.errors import (
    LinkingError,
    PlatformNotImplementedError,
    StateNotFoundError,
)
from starlingpost.platforms.registry import default_adapters
from starlingpost.schemas.platform_schema import LinkStatus, Platform

logger = structlog.get_logger(__name__)


class LinkAttempt:
    def __init__(self, platform: Platform, user_id: Optional[str] = None):
        self.platform = platform
        self.user_id = user_id
        self.status = LinkStatus.PENDING

    def transition(self, status: LinkStatus, **kw) -> None:
        logger.info("link_attempt_transition", platform=self.platform.value, user_id=self.user_id,
                    from_status=self.status.value, to_status=status.value, **kw)
        self.status = status


class LinkService:
    def __init__(self, states: OAuthStateStore, accounts: LinkedAccountRepository,
                 adapters: Optional[Dict[Platform, PlatformAdapter]] = None):
        self.states = states
        self.accounts = accounts
        self.adapters = adapters if adapters is not None else default_adapters

    def adapter_for(self, platform: Platform) -> PlatformAdapter:
        adapter = self.adapters.get(platform)
        if adapter is None or not adapter.implemented:
            raise PlatformNotImplementedError(f"{platform.value} integration is not available yet", platform.value)
        return adapter

    async def start_link(self, user_id: str, platform: str) -> str:
        target = Platform.parse(platform)
        adapter = self.adapter_for(target)
        # fail on missing client config before a state is issued
        adapter.credentials()

        flow = adapter.new_flow()
        state = await self.states.create(user_id, target, flow)
        url = adapter.build_auth_url(state, flow)
        LinkAttempt(target, user_id).transition(LinkStatus.PENDING)
        return url

    async def complete_link(self, platform: str, code: str, state: str) -> LinkedAccount:
        target = Platform.parse(platform)
        adapter = self.adapter_for(target)

        record = await self.states.consume(state)
        if record is None:
            logger.warning("oauth_state_rejected", platform=target.value, reason="missing_or_used")
            raise StateNotFoundError("unknown, expired or already used state", target.value)
        if record.platform != target:
            logger.warning("oauth_state_rejected", platform=target.value, reason="platform_mismatch",
                           state_platform=record.platform.value)
            raise StateNotFoundError("state was issued for another platform", target.value)

        attempt = LinkAttempt(target, record.user_id)
        attempt.transition(LinkStatus.EXCHANGING)
        try:
            tokens = await adapter.exchange_code(code, adapter.redirect_uri(), record.flow)
        except LinkingError as exc:
            attempt.transition(LinkStatus.FAILED, error=exc.code)
            raise

        if not tokens.account_id:
            # provider gave no account id; one account per platform for this user
            tokens.account_id = target.value
        account = await self.accounts.put(record.user_id, target.value, tokens)
        attempt.transition(LinkStatus.LINKED, account_id=account.account_id)
        return account

    async def fail_link(self, state: Optional[str]) -> None:
        """The provider reported an error (user cancelled); burn the state so it cannot be replayed."""
        if state:
            await self.states.consume(state)

    async def list_accounts(self, user_id: str) -> List[LinkedAccount]:
        return await self.accounts.list_by_user(user_id)

    async def unlink(self, user_id: str, platform: str, account_id: str) -> bool:
        target = Platform.parse(platform)
        return await self.accounts.delete(user_id, target.value, account_id)
