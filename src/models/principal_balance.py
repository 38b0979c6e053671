from typing import Optional
from uuid import UUID

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class PrincipalBalance(SQLModel, table=True):
    __tablename__ = "principal_balances"
    __table_args__ = (
        sa.UniqueConstraint("vault_id", "principal_address", name="uq_principal_balance"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    vault_id: UUID = Field(foreign_key="vaults.id", index=True)
    principal_address: str = Field(index=True)
    shares: int = Field(default=0, sa_type=sa.BigInteger)
    # lifetime net deposits
    cost_basis: int = Field(default=0, sa_type=sa.BigInteger)
    created_at: int
    last_updated_at: int
