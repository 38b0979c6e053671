import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import models  # noqa: F401
from core import constants
from core.constants import PRICE_PRECISION
from core.exceptions import OracleUnavailable
from services.pricing_oracle import PricingOracle
from services.vault_accounting import VaultAccountingService

VAULT_ADDRESS = "0x55c4c840f9ac2e62efa3f12baba1b57a1208b6f5"
MANAGER_ADDRESS = "0x20f89ba1b0fc1e83f9aef0a134095cd63f7e8cc7"
DEPOSITOR_ADDRESS = "0xbc05da14287317fe12b1a2b5a0e1d756ff1801aa"
OTHER_DEPOSITOR_ADDRESS = "0xbc05da14287317fe12b1a2b5a0e1d756ff1802aa"

T = 1_700_000_000
ONE_DAY = 86400


class FixedPriceOracle(PricingOracle):
    marks_to_market = True

    def __init__(self, price_per_share: int = PRICE_PRECISION):
        self.price_per_share = price_per_share
        self.available = True
        self.calls = 0

    def current_price_per_share(self, vault) -> int:
        self.calls += 1
        if not self.available:
            raise OracleUnavailable("price feed down")
        return self.price_per_share


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def db_session(db_engine):
    with Session(db_engine) as session:
        yield session


@pytest.fixture
def service(db_session: Session):
    return VaultAccountingService(db_session, settlement_policy=constants.SETTLEMENT_PRICE)


@pytest.fixture
def make_vault(service: VaultAccountingService):
    def _make_vault(redeem_period: int = 0, withdrawal_expiry: int | None = None, **kwargs):
        return service.create_vault(
            name="Delta Neutral Vault",
            vault_address=kwargs.pop("vault_address", VAULT_ADDRESS),
            manager=kwargs.pop("manager", MANAGER_ADDRESS),
            now=kwargs.pop("now", T),
            vault_currency="USDC",
            redeem_period=redeem_period,
            withdrawal_expiry=withdrawal_expiry,
            **kwargs,
        )

    return _make_vault
