# starlingpost/infrastructure/accounts_repo.py
from typing import Optional, List, Tuple
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlmodel import select
from sqlalchemy import case, func, literal
from sqlalchemy.exc import IntegrityError
from datetime import datetime
import structlog

from starlingpost.models.linked_account import LinkedAccount
from starlingpost.schemas.platform_schema import TokenSet, utc_now

logger = structlog.get_logger(__name__)


class LinkedAccountRepository:
    """
    Credential store for LinkedAccount rows.
    All methods are async and expect an AsyncSession to be injected from the outside.
    Each mutating method commits once; `put` commits again only after losing an insert race.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: str, platform: str, account_id: str) -> Optional[LinkedAccount]:
        q = select(LinkedAccount).where(
            LinkedAccount.user_id == user_id,
            LinkedAccount.platform == platform,
            LinkedAccount.account_id == account_id,
        )
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list_by_user(self, user_id: str) -> List[LinkedAccount]:
        q = select(LinkedAccount).where(LinkedAccount.user_id == user_id).order_by(LinkedAccount.created_at)
        res = await self.session.execute(q)
        return list(res.scalars().all())

    @staticmethod
    def _apply(account: LinkedAccount, tokens: TokenSet, meta: Optional[dict]) -> None:
        if meta is not None:
            account.meta = meta
        account.apply_tokens(tokens)
        if tokens.account_name:
            account.account_name = tokens.account_name
        account.needs_relink = False

    async def put(self, user_id: str, platform: str, tokens: TokenSet, meta: Optional[dict] = None) -> LinkedAccount:
        """
        Upsert keyed on (user_id, platform, account_id). Relinking an existing
        account replaces its tokens and clears needs_relink.
        """
        account = await self.get(user_id, platform, tokens.account_id)
        if account is None:
            account = LinkedAccount(
                user_id=user_id,
                platform=platform,
                account_id=tokens.account_id,
                access_token_enc="",
                meta={},
            )
        self._apply(account, tokens, meta)
        self.session.add(account)
        try:
            await self.session.commit()
        except IntegrityError:
            # a concurrent callback inserted the same account after our lookup
            await self.session.rollback()
            account = await self.get(user_id, platform, tokens.account_id)
            if account is None:
                raise
            logger.info("linked_account_insert_conflict", user_id=user_id, platform=platform,
                        account_id=account.account_id)
            self._apply(account, tokens, meta)
            self.session.add(account)
            await self.session.commit()
        await self.session.refresh(account)
        logger.info("linked_account_saved", user_id=user_id, platform=platform, account_id=account.account_id)
        return account

    async def update_tokens(self, account: LinkedAccount, tokens: TokenSet) -> LinkedAccount:
        account.apply_tokens(tokens)
        self.session.add(account)
        await self.session.commit()
        await self.session.refresh(account)
        return account

    async def mark_needs_relink(self, account: LinkedAccount) -> LinkedAccount:
        account.needs_relink = True
        account.updated_at = utc_now()
        self.session.add(account)
        await self.session.commit()
        await self.session.refresh(account)
        logger.warning("linked_account_needs_relink", user_id=account.user_id,
                       platform=account.platform, account_id=account.account_id)
        return account

    async def delete(self, user_id: str, platform: str, account_id: str) -> bool:
        account = await self.get(user_id, platform, account_id)
        if not account:
            return False
        await self.session.delete(account)
        await self.session.commit()
        logger.info("linked_account_deleted", user_id=user_id, platform=platform, account_id=account_id)
        return True

    async def users_by_first_link(self, since: Optional[datetime] = None) -> List[Tuple[str, bool]]:
        """(user_id, first account linked at or after `since`) for every user with a linked account."""
        first_linked = func.min(LinkedAccount.created_at)
        if since is None:
            is_new = literal(1)
        else:
            is_new = case((first_linked >= since, 1), else_=literal(0))
        q = select(LinkedAccount.user_id, is_new).group_by(LinkedAccount.user_id).order_by(LinkedAccount.user_id)
        res = await self.session.execute(q)
        return [(user_id, bool(new)) for user_id, new in res.all()]
