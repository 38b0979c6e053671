import uuid

from pydantic import BaseModel, ConfigDict, Field

from models import WithdrawalStatus, WithdrawUnit


class WithdrawalRequest(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    principal_address: str
    unit: WithdrawUnit
    requested_amount: int
    share_amount: int
    price_per_share: int
    requested_value: int
    created_at: int
    redeemable_at: int
    expires_at: int | None = None
    status: WithdrawalStatus
    settled_at: int | None = None
    settled_amount: int | None = None
    cancelled_at: int | None = None
    shares_forfeited: int = 0


class WithdrawalResult(BaseModel):
    request: WithdrawalRequest
    settled: bool
    asset_amount: int | None = None


class DepositIn(BaseModel):
    principal: str
    amount: int = Field(description="Asset amount in base units")
    now: int | None = None


class DepositResult(BaseModel):
    principal_address: str
    share_amount: int


class WithdrawIn(BaseModel):
    principal: str
    amount: int
    unit: WithdrawUnit = WithdrawUnit.SHARES
    now: int | None = None


class PrincipalActionIn(BaseModel):
    principal: str
    now: int | None = None


class ReportAssetsIn(BaseModel):
    manager: str
    total_assets: int
    now: int | None = None


class ReportAssetsResult(BaseModel):
    total_assets: int
    price_per_share: int
