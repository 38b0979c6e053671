from typing import Any, Optional

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings

from pydantic import PostgresDsn


class Settings(BaseSettings):

    ENVIRONMENT_NAME: str = "Development"

    @property
    def is_production(self):
        return self.ENVIRONMENT_NAME == "Production"

    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Vault Accounting"

    POSTGRES_SERVER: Optional[str] = None
    POSTGRES_USER: Optional[str] = None
    POSTGRES_PASSWORD: Optional[str] = None
    POSTGRES_DB: Optional[str] = None
    # Either a full URI or assembled from the POSTGRES_* parts above
    SQLALCHEMY_DATABASE_URI: str | None = Field(default=None, validate_default=True)

    # ledger | pps_history | onchain
    PRICING_ORACLE: str = "ledger"
    # settlement_price | lower_of_request_and_settlement
    SETTLEMENT_PRICE_POLICY: str = "settlement_price"

    # seconds
    DEFAULT_REDEEM_PERIOD: int = 0
    DEFAULT_WITHDRAWAL_EXPIRY: int | None = None
    # scaled by PRICE_PRECISION, 10**9 == 1.0
    DEFAULT_INITIAL_PRICE_PER_SHARE: int = 1_000_000_000

    VAULT_RPC_URL: str | None = None
    ONCHAIN_PRICE_DECIMALS: int = 6
    ABI_DIR: str | None = None

    # Seq log
    SEQ_SERVER_URL: Optional[str] = None
    SEQ_SERVER_API_KEY: Optional[str] = None

    LOG_DIR: str = "~/logs"

    @field_validator("SQLALCHEMY_DATABASE_URI", mode="before")
    def assemble_db_connection(cls, v: str | None, info: ValidationInfo) -> Any:
        if isinstance(v, str):
            return v
        if not info.data.get("POSTGRES_SERVER"):
            return "sqlite:///./vaults.db"
        return str(
            PostgresDsn.build(
                scheme="postgresql+psycopg",
                username=info.data.get("POSTGRES_USER"),
                password=info.data.get("POSTGRES_PASSWORD"),
                host=info.data.get("POSTGRES_SERVER"),
                path=f"{info.data.get('POSTGRES_DB') or ''}",
            )
        )

    class Config:

        case_sensitive = True
        env_file = ".env"
        extra = "allow"


settings = Settings()
