from sqlmodel import SQLModel, Field
import sqlalchemy as sa
import uuid


class PricePerShareHistoryBase(SQLModel):
    timestamp: int = Field(index=True)
    price_per_share: int = Field(sa_type=sa.BigInteger)


class PricePerShareHistory(PricePerShareHistoryBase, table=True):
    __tablename__ = "pps_history"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    vault_id: uuid.UUID = Field(foreign_key="vaults.id")
