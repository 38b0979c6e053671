"""
Share bookkeeping for pooled vaults.

All amounts are integers in base units. Conversions always round toward the
vault: minting rounds the shares down (existing holders are never diluted by a
rounding error) and burning rounds the assets paid out down (the vault can
never become insolvent through rounding).
"""

import logging

from sqlalchemy import func
from sqlmodel import Session, select

from core.constants import PRICE_PRECISION
from core.exceptions import (
    InsufficientAssetAmount,
    InsufficientShareBalance,
    InvalidWithdrawalAmount,
    VaultEquityDepleted,
    VaultNotFound,
)
from models import PrincipalBalance, Vault

logger = logging.getLogger(__name__)


def normalize_address(address: str) -> str:
    return address.strip().lower()


class ShareLedger:
    def __init__(self, session: Session):
        self.session = session

    def get_vault(self, vault_address: str, for_update: bool = False) -> Vault:
        statement = select(Vault).where(
            Vault.contract_address == normalize_address(vault_address)
        )
        if for_update:
            statement = statement.with_for_update()
        vault = self.session.exec(statement).first()
        if vault is None:
            raise VaultNotFound(f"Vault {vault_address} not found")
        return vault

    def _get_balance(self, vault: Vault, principal: str) -> PrincipalBalance | None:
        return self.session.exec(
            select(PrincipalBalance)
            .where(PrincipalBalance.vault_id == vault.id)
            .where(PrincipalBalance.principal_address == normalize_address(principal))
        ).first()

    def balance_of(self, vault: Vault, principal: str) -> int:
        balance = self._get_balance(vault, principal)
        return balance.shares if balance is not None else 0

    def cost_basis_of(self, vault: Vault, principal: str) -> int:
        balance = self._get_balance(vault, principal)
        return balance.cost_basis if balance is not None else 0

    def sum_principal_shares(self, vault: Vault) -> int:
        total = self.session.exec(
            select(func.coalesce(func.sum(PrincipalBalance.shares), 0)).where(
                PrincipalBalance.vault_id == vault.id
            )
        ).one()
        return int(total)

    def price_per_share(self, vault: Vault) -> int:
        if vault.total_shares == 0:
            return vault.initial_price_per_share
        return vault.total_assets * PRICE_PRECISION // vault.total_shares

    def shares_to_assets(self, vault: Vault, share_amount: int) -> int:
        if vault.total_shares == 0:
            return share_amount * vault.initial_price_per_share // PRICE_PRECISION
        return share_amount * vault.total_assets // vault.total_shares

    def assets_to_shares(self, vault: Vault, asset_amount: int) -> int:
        if vault.total_shares == 0:
            return asset_amount * PRICE_PRECISION // vault.initial_price_per_share
        if vault.total_assets == 0:
            raise VaultEquityDepleted(
                f"Vault {vault.contract_address} has {vault.total_shares} shares outstanding and no assets"
            )
        return asset_amount * vault.total_shares // vault.total_assets

    def mint(self, vault: Vault, principal: str, asset_amount: int, now: int) -> int:
        if asset_amount <= 0:
            raise InsufficientAssetAmount(f"Deposit amount must be positive, got {asset_amount}")

        share_amount = self.assets_to_shares(vault, asset_amount)
        if share_amount <= 0:
            raise InsufficientAssetAmount(
                f"Deposit of {asset_amount} is worth less than one share unit"
            )

        balance = self._get_balance(vault, principal)
        if balance is None:
            balance = PrincipalBalance(
                vault_id=vault.id,
                principal_address=normalize_address(principal),
                shares=0,
                cost_basis=0,
                created_at=now,
                last_updated_at=now,
            )

        # cost basis restarts when a principal re-enters from a zero balance
        if balance.shares == 0:
            balance.cost_basis = asset_amount
        else:
            balance.cost_basis += asset_amount
        balance.shares += share_amount
        balance.last_updated_at = now

        vault.total_shares += share_amount
        vault.total_assets += asset_amount
        vault.last_updated_at = now

        self.session.add(balance)
        self.session.add(vault)
        logger.info(
            f"Minted {share_amount} shares for {asset_amount} assets to {balance.principal_address} "
            f"in vault {vault.contract_address}"
        )
        return share_amount

    def _debit_shares(self, vault: Vault, principal: str, share_amount: int, now: int) -> PrincipalBalance:
        if share_amount <= 0:
            raise InvalidWithdrawalAmount(f"Share amount must be positive, got {share_amount}")

        balance = self._get_balance(vault, principal)
        available = balance.shares if balance is not None else 0
        if share_amount > available:
            raise InsufficientShareBalance(
                f"{principal} holds {available} shares, cannot remove {share_amount}"
            )

        balance.shares -= share_amount
        balance.last_updated_at = now
        vault.total_shares -= share_amount
        vault.last_updated_at = now
        return balance

    def burn(
        self,
        vault: Vault,
        principal: str,
        share_amount: int,
        now: int,
        max_assets: int | None = None,
    ) -> int:
        asset_amount = self.shares_to_assets(vault, share_amount)
        if max_assets is not None:
            asset_amount = min(asset_amount, max_assets)

        balance = self._debit_shares(vault, principal, share_amount, now)
        balance.cost_basis -= asset_amount
        vault.total_assets -= asset_amount

        self.session.add(balance)
        self.session.add(vault)
        logger.info(
            f"Burned {share_amount} shares for {asset_amount} assets from {balance.principal_address} "
            f"in vault {vault.contract_address}"
        )
        return asset_amount

    def forfeit(self, vault: Vault, principal: str, share_amount: int, now: int) -> None:
        """Remove shares without paying anything out; the vault keeps their value."""
        balance = self._debit_shares(vault, principal, share_amount, now)
        self.session.add(balance)
        self.session.add(vault)
        logger.info(
            f"Forfeited {share_amount} shares of {balance.principal_address} in vault {vault.contract_address}"
        )

    def revalue(self, vault: Vault, price_per_share: int, now: int) -> None:
        if vault.total_shares == 0 or price_per_share == self.price_per_share(vault):
            return
        total_assets = vault.total_shares * price_per_share // PRICE_PRECISION
        logger.info(
            f"Revaluing vault {vault.contract_address}: assets {vault.total_assets} -> {total_assets}"
        )
        self.set_total_assets(vault, total_assets, now)

    def rebase(self, vault: Vault, now: int) -> int:
        """Divide every balance by a power of ten once shares vastly outnumber assets.

        Keeps the price per share from truncating to zero after a large loss.
        Returns the divisor applied, 1 when nothing changed.
        """
        if vault.total_assets == 0 or vault.total_shares <= vault.total_assets:
            return 1
        rebase_divisor_full = vault.total_shares // 10 // vault.total_assets
        if rebase_divisor_full < 10:
            return 1
        expo_diff = len(str(rebase_divisor_full)) - 1
        rebase_divisor = 10**expo_diff

        balances = self.session.exec(
            select(PrincipalBalance).where(PrincipalBalance.vault_id == vault.id)
        ).all()
        total_shares = 0
        for balance in balances:
            balance.shares //= rebase_divisor
            balance.last_updated_at = now
            total_shares += balance.shares
            self.session.add(balance)

        logger.info(
            f"Rebasing vault {vault.contract_address}: expo_diff={expo_diff}, "
            f"shares {vault.total_shares} -> {total_shares}"
        )
        vault.total_shares = total_shares
        vault.shares_base += expo_diff
        vault.last_updated_at = now
        self.session.add(vault)
        return rebase_divisor

    def set_total_assets(self, vault: Vault, total_assets: int, now: int) -> None:
        if total_assets < 0:
            raise InsufficientAssetAmount(f"Total assets cannot be negative, got {total_assets}")
        vault.total_assets = total_assets
        vault.last_updated_at = now
        self.session.add(vault)
