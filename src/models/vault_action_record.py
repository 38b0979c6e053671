from enum import Enum
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class VaultAction(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAW_REQUEST = "withdraw_request"
    CANCEL_WITHDRAW_REQUEST = "cancel_withdraw_request"
    WITHDRAW = "withdraw"
    ASSETS_REPORTED = "assets_reported"


class VaultActionRecord(SQLModel, table=True):
    __tablename__ = "vault_action_records"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    vault_id: UUID = Field(foreign_key="vaults.id", index=True)
    principal_address: str = Field(index=True)
    action: VaultAction
    amount: int = Field(sa_type=sa.BigInteger)
    vault_assets_before: int = Field(sa_type=sa.BigInteger)
    principal_shares_before: int = Field(sa_type=sa.BigInteger)
    principal_shares_after: int = Field(sa_type=sa.BigInteger)
    total_shares_before: int = Field(sa_type=sa.BigInteger)
    total_shares_after: int = Field(sa_type=sa.BigInteger)
    timestamp: int = Field(index=True)
