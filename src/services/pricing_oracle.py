import logging

from sqlmodel import Session, select
from web3 import Web3

from core import constants
from core.abi_reader import read_abi
from core.config import settings
from core.exceptions import OracleUnavailable
from models import PricePerShareHistory, Vault
from services.share_ledger import ShareLedger

logger = logging.getLogger(__name__)


class PricingOracle:
    """Source of the current price per share of a vault.

    Prices are integers scaled by ``PRICE_PRECISION``. Callers snapshot the
    value once per operation; two reads are not guaranteed to agree.

    Only oracles that value the vault independently of the ledger set
    ``marks_to_market``; their price is written back into the vault's assets.
    """

    marks_to_market = False

    def current_price_per_share(self, vault: Vault) -> int:
        raise NotImplementedError


class LedgerPricingOracle(PricingOracle):
    def __init__(self, session: Session):
        self.ledger = ShareLedger(session)

    def current_price_per_share(self, vault: Vault) -> int:
        return self.ledger.price_per_share(vault)


class PricePerShareHistoryOracle(PricingOracle):
    def __init__(self, session: Session):
        self.session = session

    def current_price_per_share(self, vault: Vault) -> int:
        # Get the latest pps from pps_history table
        latest_pps = self.session.exec(
            select(PricePerShareHistory)
            .where(PricePerShareHistory.vault_id == vault.id)
            .order_by(PricePerShareHistory.timestamp.desc())
        ).first()
        if latest_pps is None:
            raise OracleUnavailable(f"No price per share history for vault {vault.contract_address}")
        return latest_pps.price_per_share


class Web3PricingOracle(PricingOracle):
    marks_to_market = True

    def __init__(self, rpc_url: str, price_decimals: int = 6):
        self.w3 = Web3(Web3.HTTPProvider(rpc_url))
        self.price_decimals = price_decimals
        self.abi = read_abi(constants.VAULT_CONTRACT_ABI)

    def current_price_per_share(self, vault: Vault) -> int:
        try:
            contract = self.w3.eth.contract(
                address=Web3.to_checksum_address(vault.contract_address), abi=self.abi
            )
            price_per_share = contract.functions.pricePerShare().call()
        except Exception as e:
            logger.error(f"Error reading pricePerShare for {vault.contract_address}: {e}")
            raise OracleUnavailable(
                f"pricePerShare unavailable for vault {vault.contract_address}"
            ) from e

        # the contract quotes per original share, the ledger may have rebased since
        return (
            int(price_per_share) * constants.PRICE_PRECISION * 10**vault.shares_base
            // 10**self.price_decimals
        )


def build_pricing_oracle(name: str, session: Session) -> PricingOracle:
    if name == constants.LEDGER_ORACLE:
        return LedgerPricingOracle(session)
    if name == constants.PPS_HISTORY_ORACLE:
        return PricePerShareHistoryOracle(session)
    if name == constants.ONCHAIN_ORACLE:
        if not settings.VAULT_RPC_URL:
            raise ValueError("VAULT_RPC_URL must be set to use the onchain pricing oracle")
        return Web3PricingOracle(settings.VAULT_RPC_URL, settings.ONCHAIN_PRICE_DECIMALS)
    raise ValueError(f"Unsupported pricing oracle: {name}")
