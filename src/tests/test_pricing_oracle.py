from unittest.mock import MagicMock, patch

import pytest
from sqlmodel import Session

from core import constants
from core.constants import PRICE_PRECISION
from core.exceptions import OracleUnavailable
from models import PricePerShareHistory, Vault
from services.pricing_oracle import (
    LedgerPricingOracle,
    PricePerShareHistoryOracle,
    Web3PricingOracle,
    build_pricing_oracle,
)

from conftest import DEPOSITOR_ADDRESS, MANAGER_ADDRESS, T, VAULT_ADDRESS


def test_ledger_oracle_follows_reported_assets(make_vault, service, db_session: Session):
    vault = make_vault()
    oracle = LedgerPricingOracle(db_session)
    assert oracle.current_price_per_share(vault) == PRICE_PRECISION

    service.deposit(VAULT_ADDRESS, DEPOSITOR_ADDRESS, 1000, T)
    service.report_assets(VAULT_ADDRESS, MANAGER_ADDRESS, 1250, T + 1)

    assert oracle.current_price_per_share(service.get_vault(VAULT_ADDRESS)) == 1_250_000_000


def test_pps_history_oracle_returns_latest_price(make_vault, db_session: Session):
    vault = make_vault()
    db_session.add(PricePerShareHistory(vault_id=vault.id, timestamp=T + 20, price_per_share=1_020_000_000))
    db_session.add(PricePerShareHistory(vault_id=vault.id, timestamp=T + 10, price_per_share=1_010_000_000))
    db_session.commit()

    oracle = PricePerShareHistoryOracle(db_session)

    assert oracle.current_price_per_share(vault) == 1_020_000_000


def test_pps_history_oracle_without_history_is_unavailable(db_session: Session):
    vault = Vault(
        name="Empty Vault",
        contract_address=VAULT_ADDRESS,
        manager_address=MANAGER_ADDRESS,
        initial_price_per_share=PRICE_PRECISION,
        created_at=T,
        last_updated_at=T,
    )
    db_session.add(vault)
    db_session.commit()

    with pytest.raises(OracleUnavailable):
        PricePerShareHistoryOracle(db_session).current_price_per_share(vault)


def make_web3_oracle(price_decimals: int = 6) -> Web3PricingOracle:
    oracle = Web3PricingOracle("http://localhost:8545", price_decimals=price_decimals)
    oracle.w3 = MagicMock()
    return oracle


def test_web3_oracle_rescales_contract_price(make_vault):
    vault = make_vault()
    oracle = make_web3_oracle()
    contract = oracle.w3.eth.contract.return_value
    contract.functions.pricePerShare.return_value.call.return_value = 1_250_000

    assert oracle.current_price_per_share(vault) == 1_250_000_000

    _, kwargs = oracle.w3.eth.contract.call_args
    assert kwargs["address"].lower() == VAULT_ADDRESS
    assert kwargs["abi"][0]["name"] == "pricePerShare"


def test_web3_oracle_scales_price_to_rebased_shares(make_vault):
    vault = make_vault()
    vault.shares_base = 2
    oracle = make_web3_oracle()
    contract = oracle.w3.eth.contract.return_value
    contract.functions.pricePerShare.return_value.call.return_value = 1_250_000

    assert oracle.current_price_per_share(vault) == 125_000_000_000


def test_web3_oracle_error_is_unavailable(make_vault):
    vault = make_vault()
    oracle = make_web3_oracle()
    contract = oracle.w3.eth.contract.return_value
    contract.functions.pricePerShare.return_value.call.side_effect = ConnectionError("rpc down")

    with pytest.raises(OracleUnavailable) as exc_info:
        oracle.current_price_per_share(vault)
    assert exc_info.value.retryable


def test_build_pricing_oracle(db_session: Session):
    assert isinstance(build_pricing_oracle(constants.LEDGER_ORACLE, db_session), LedgerPricingOracle)
    assert isinstance(
        build_pricing_oracle(constants.PPS_HISTORY_ORACLE, db_session), PricePerShareHistoryOracle
    )

    with pytest.raises(ValueError):
        build_pricing_oracle("chainlink", db_session)


def test_build_onchain_oracle_requires_rpc_url(db_session: Session):
    with patch("services.pricing_oracle.settings") as mock_settings:
        mock_settings.VAULT_RPC_URL = None
        with pytest.raises(ValueError):
            build_pricing_oracle(constants.ONCHAIN_ORACLE, db_session)

        mock_settings.VAULT_RPC_URL = "http://localhost:8545"
        mock_settings.ONCHAIN_PRICE_DECIMALS = 18
        oracle = build_pricing_oracle(constants.ONCHAIN_ORACLE, db_session)

    assert isinstance(oracle, Web3PricingOracle)
    assert oracle.price_decimals == 18
