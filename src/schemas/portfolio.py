from pydantic import BaseModel


class Position(BaseModel):
    vault_address: str
    principal_address: str
    shares: int
    cost_basis: int
    asset_value: int
