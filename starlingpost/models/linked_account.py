# starlingpost/models/linked_account.py
from sqlmodel import SQLModel, Field, Column
from typing import Optional, List
from datetime import datetime
import uuid
from sqlalchemy import String, JSON, UniqueConstraint

from starlingpost.infrastructure.crypto import encrypt_token, decrypt_token
from starlingpost.schemas.platform_schema import TokenSet, utc_now


class LinkedAccount(SQLModel, table=True):
    __tablename__ = "linked_account"
    __table_args__ = (UniqueConstraint("user_id", "platform", "account_id", name="uq_linked_account_owner"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: str = Field(sa_column=Column(String, index=True, nullable=False))
    platform: str = Field(sa_column=Column(String, index=True, nullable=False))
    account_id: str = Field(sa_column=Column(String, nullable=False))
    account_name: Optional[str] = None
    access_token_enc: str
    refresh_token_enc: Optional[str] = None
    expires_at: Optional[datetime] = None
    scopes: List[str] = Field(sa_column=Column(JSON), default_factory=list)
    needs_relink: bool = Field(default=False)
    meta: Optional[dict] = Field(sa_column=Column(JSON), default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def token_set(self) -> TokenSet:
        """Decrypted view of the stored credential, for adapter calls only."""
        return TokenSet(
            access_token=decrypt_token(self.access_token_enc) or "",
            refresh_token=decrypt_token(self.refresh_token_enc),
            expires_at=self.expires_at,
            scopes=list(self.scopes or []),
            account_id=self.account_id,
            account_name=self.account_name,
        )

    def apply_tokens(self, tokens: TokenSet) -> None:
        self.access_token_enc = encrypt_token(tokens.access_token)
        # providers that do not rotate refresh tokens omit them on refresh
        if tokens.refresh_token is not None:
            self.refresh_token_enc = encrypt_token(tokens.refresh_token)
        self.expires_at = tokens.expires_at
        if tokens.scopes:
            self.scopes = list(tokens.scopes)
        self.updated_at = utc_now()

    def __repr__(self) -> str:
        return f"<LinkedAccount {self.platform}:{self.account_id} user={self.user_id}>"
