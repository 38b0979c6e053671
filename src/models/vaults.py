import uuid

import sqlalchemy as sa
import sqlmodel


class VaultBase(sqlmodel.SQLModel):
    id: uuid.UUID = sqlmodel.Field(default_factory=uuid.uuid4, primary_key=True)
    name: str
    contract_address: str = sqlmodel.Field(index=True, unique=True)
    manager_address: str
    vault_currency: str | None = None
    # base units; total_shares always equals the sum of principal balances
    total_shares: int = sqlmodel.Field(default=0, sa_type=sa.BigInteger)
    total_assets: int = sqlmodel.Field(default=0, sa_type=sa.BigInteger)
    initial_price_per_share: int = sqlmodel.Field(sa_type=sa.BigInteger)
    # number of times shares were divided by ten to keep the price per share representable
    shares_base: int = 0
    # seconds between a withdrawal request and its earliest settlement
    redeem_period: int = 0
    # seconds a redeemable request stays open before it expires
    withdrawal_expiry: int | None = None
    is_active: bool = True
    created_at: int
    last_updated_at: int


# Database model, database table inferred from class name
class Vault(VaultBase, table=True):
    __tablename__ = "vaults"
