import uuid

from pydantic import BaseModel, ConfigDict


class VaultBase(BaseModel):
    name: str
    contract_address: str
    manager_address: str
    vault_currency: str | None = None
    redeem_period: int | None = None
    withdrawal_expiry: int | None = None
    initial_price_per_share: int | None = None


# Properties to receive on vault creation
class VaultCreate(VaultBase):
    now: int | None = None


# Properties shared by models stored in DB
class VaultInDBBase(VaultBase):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    total_shares: int
    total_assets: int
    shares_base: int
    is_active: bool
    created_at: int
    last_updated_at: int


# Properties to return to client
class Vault(VaultInDBBase):
    price_per_share: int | None = None
