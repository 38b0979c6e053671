from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class WithdrawUnit(str, Enum):
    SHARES = "shares"
    TOKEN = "token"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    REDEEMABLE = "redeemable"
    SETTLED = "settled"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


TERMINAL_STATUSES = (
    WithdrawalStatus.SETTLED,
    WithdrawalStatus.CANCELLED,
    WithdrawalStatus.EXPIRED,
)


class WithdrawalRequest(SQLModel, table=True):
    __tablename__ = "withdrawal_requests"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    vault_id: UUID = Field(foreign_key="vaults.id", index=True)
    principal_address: str = Field(index=True)
    unit: WithdrawUnit
    requested_amount: int = Field(sa_type=sa.BigInteger)
    # snapshot taken at request time, never re-evaluated
    share_amount: int = Field(sa_type=sa.BigInteger)
    price_per_share: int = Field(sa_type=sa.BigInteger)
    requested_value: int = Field(sa_type=sa.BigInteger)
    created_at: int
    redeemable_at: int
    expires_at: int | None = None
    # only PENDING and the terminal statuses are ever stored
    status: WithdrawalStatus = Field(default=WithdrawalStatus.PENDING, index=True)
    settled_at: int | None = None
    settled_amount: Optional[int] = Field(default=None, sa_type=sa.BigInteger)
    cancelled_at: int | None = None
    shares_forfeited: int = Field(default=0, sa_type=sa.BigInteger)


def effective_status(request: WithdrawalRequest, now: int) -> WithdrawalStatus:
    """Status of ``request`` as seen at ``now``.

    PENDING is promoted to REDEEMABLE once ``now`` reaches ``redeemable_at``
    (inclusive) and to EXPIRED once it reaches ``expires_at``. Terminal
    statuses are returned as stored.
    """
    if request.status in TERMINAL_STATUSES:
        return request.status
    if request.expires_at is not None and now >= request.expires_at:
        return WithdrawalStatus.EXPIRED
    if now >= request.redeemable_at:
        return WithdrawalStatus.REDEEMABLE
    return WithdrawalStatus.PENDING
