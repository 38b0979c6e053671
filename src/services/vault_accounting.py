import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from sqlmodel import Session, select

from core.config import settings
from core.exceptions import (
    InvalidVaultConfiguration,
    OracleUnavailable,
    RequestNotFound,
    Unauthorized,
    VaultAlreadyExists,
)
from core.locks import KeyedLock, vault_locks
from models import (
    PricePerShareHistory,
    Vault,
    VaultAction,
    VaultActionRecord,
    WithdrawalRequest,
    WithdrawalStatus,
    WithdrawUnit,
    effective_status,
)
from services.pricing_oracle import PricingOracle, build_pricing_oracle
from services.share_ledger import ShareLedger, normalize_address
from services.withdrawal_requests import ACTIVE_STATUSES, WithdrawalRequestManager

logger = logging.getLogger(__name__)


@dataclass
class WithdrawalOutcome:
    request: WithdrawalRequest
    # None until the request has been settled
    asset_amount: int | None = None

    @property
    def settled(self) -> bool:
        return self.asset_amount is not None


class VaultAccountingService:
    """Entry point for every vault mutation.

    Each mutation runs in a per-vault exclusive section: the vault's keyed lock
    is held and the vault row is selected for update for the whole operation,
    the oracle price is snapshotted once, and the session is committed at the
    end or rolled back on any error.
    """

    def __init__(
        self,
        session: Session,
        oracle: PricingOracle | None = None,
        settlement_policy: str | None = None,
        locks: KeyedLock = vault_locks,
    ):
        self.session = session
        self.ledger = ShareLedger(session)
        self.oracle = oracle or build_pricing_oracle(settings.PRICING_ORACLE, session)
        self.withdrawals = WithdrawalRequestManager(
            session,
            self.ledger,
            settlement_policy or settings.SETTLEMENT_PRICE_POLICY,
        )
        self.locks = locks

    @contextmanager
    def _exclusive(self, vault_address: str) -> Iterator[Vault]:
        with self.locks.lock_for(normalize_address(vault_address)):
            try:
                vault = self.ledger.get_vault(vault_address, for_update=True)
                yield vault
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

    def _snapshot_price(self, vault: Vault, now: int) -> int:
        price_per_share = self.oracle.current_price_per_share(vault)
        # a zero ledger price is a real, depleted vault; a zero market price is a broken feed
        if price_per_share < 0 or (price_per_share == 0 and self.oracle.marks_to_market):
            raise OracleUnavailable(
                f"Oracle returned non-positive price {price_per_share} for vault {vault.contract_address}"
            )
        if self.oracle.marks_to_market:
            self.ledger.revalue(vault, price_per_share, now)

        rebase_divisor = self._rebase(vault, now)
        if rebase_divisor > 1:
            self.session.add(
                PricePerShareHistory(
                    vault_id=vault.id,
                    timestamp=now,
                    price_per_share=self.ledger.price_per_share(vault),
                )
            )
        return price_per_share * rebase_divisor

    def _rebase(self, vault: Vault, now: int) -> int:
        rebase_divisor = self.ledger.rebase(vault, now)
        if rebase_divisor > 1:
            self.withdrawals.rebase_pending(vault, rebase_divisor, now)
        return rebase_divisor

    def _record(
        self,
        vault: Vault,
        principal: str,
        action: VaultAction,
        amount: int,
        vault_assets_before: int,
        principal_shares_before: int,
        total_shares_before: int,
        now: int,
    ) -> None:
        self.session.add(
            VaultActionRecord(
                vault_id=vault.id,
                principal_address=normalize_address(principal),
                action=action,
                amount=amount,
                vault_assets_before=vault_assets_before,
                principal_shares_before=principal_shares_before,
                principal_shares_after=self.ledger.balance_of(vault, principal),
                total_shares_before=total_shares_before,
                total_shares_after=vault.total_shares,
                timestamp=now,
            )
        )

    def _authorize_manager(self, vault: Vault, manager: str) -> None:
        if normalize_address(manager) != vault.manager_address:
            raise Unauthorized(
                f"{manager} is not the manager of vault {vault.contract_address}"
            )

    def create_vault(
        self,
        name: str,
        vault_address: str,
        manager: str,
        now: int,
        vault_currency: str | None = None,
        redeem_period: int | None = None,
        withdrawal_expiry: int | None = None,
        initial_price_per_share: int | None = None,
    ) -> Vault:
        address = normalize_address(vault_address)
        existing = self.session.exec(
            select(Vault).where(Vault.contract_address == address)
        ).first()
        if existing is not None:
            raise VaultAlreadyExists(f"Vault {vault_address} already exists")

        redeem_period = settings.DEFAULT_REDEEM_PERIOD if redeem_period is None else redeem_period
        if withdrawal_expiry is None:
            withdrawal_expiry = settings.DEFAULT_WITHDRAWAL_EXPIRY
        if initial_price_per_share is None:
            initial_price_per_share = settings.DEFAULT_INITIAL_PRICE_PER_SHARE
        if redeem_period < 0:
            raise InvalidVaultConfiguration("redeem_period cannot be negative")
        if withdrawal_expiry is not None and withdrawal_expiry <= 0:
            raise InvalidVaultConfiguration("withdrawal_expiry must be positive when set")
        if initial_price_per_share <= 0:
            raise InvalidVaultConfiguration("initial_price_per_share must be positive")

        vault = Vault(
            name=name,
            contract_address=address,
            manager_address=normalize_address(manager),
            vault_currency=vault_currency,
            initial_price_per_share=initial_price_per_share,
            redeem_period=redeem_period,
            withdrawal_expiry=withdrawal_expiry,
            created_at=now,
            last_updated_at=now,
        )
        self.session.add(vault)
        self.session.add(
            PricePerShareHistory(
                vault_id=vault.id, timestamp=now, price_per_share=initial_price_per_share
            )
        )
        self.session.commit()
        self.session.refresh(vault)
        logger.info(f"Vault {vault.name} created at {vault.contract_address}")
        return vault

    def deposit(self, vault_address: str, principal: str, asset_amount: int, now: int) -> int:
        with self._exclusive(vault_address) as vault:
            self._snapshot_price(vault, now)
            assets_before = vault.total_assets
            total_shares_before = vault.total_shares
            shares_before = self.ledger.balance_of(vault, principal)

            share_amount = self.ledger.mint(vault, principal, asset_amount, now)
            self._record(
                vault, principal, VaultAction.DEPOSIT, asset_amount,
                assets_before, shares_before, total_shares_before, now,
            )
        return share_amount

    def _withdraw(
        self, vault: Vault, principal: str, amount: int, unit: WithdrawUnit, now: int
    ) -> WithdrawalOutcome:
        request = self.withdrawals.get_active(vault, principal, now)
        if request is not None:
            logger.info(
                f"{principal} already has withdrawal request {request.id} "
                f"({effective_status(request, now).value}), settle it explicitly"
            )
            return WithdrawalOutcome(request=request)

        price_per_share = self._snapshot_price(vault, now)
        assets_before = vault.total_assets
        total_shares_before = vault.total_shares
        shares_before = self.ledger.balance_of(vault, principal)

        request = self.withdrawals.initiate(vault, principal, unit, amount, price_per_share, now)
        self._record(
            vault, principal, VaultAction.WITHDRAW_REQUEST, request.requested_value,
            assets_before, shares_before, total_shares_before, now,
        )
        if vault.redeem_period > 0:
            return WithdrawalOutcome(request=request)

        asset_amount = self.withdrawals.settle(vault, request, now)
        self._record(
            vault, principal, VaultAction.WITHDRAW, asset_amount,
            assets_before, shares_before, total_shares_before, now,
        )
        return WithdrawalOutcome(request=request, asset_amount=asset_amount)

    def manager_withdraw(
        self, vault_address: str, manager: str, amount: int, unit: WithdrawUnit, now: int
    ) -> WithdrawalOutcome:
        with self._exclusive(vault_address) as vault:
            self._authorize_manager(vault, manager)
            outcome = self._withdraw(vault, manager, amount, unit, now)
        return outcome

    def depositor_withdraw(
        self, vault_address: str, principal: str, amount: int, unit: WithdrawUnit, now: int
    ) -> WithdrawalOutcome:
        with self._exclusive(vault_address) as vault:
            outcome = self._withdraw(vault, principal, amount, unit, now)
        return outcome

    def settle_withdrawal(self, vault_address: str, principal: str, now: int) -> WithdrawalOutcome:
        with self._exclusive(vault_address) as vault:
            self._snapshot_price(vault, now)
            request = self._require_request(vault, principal, now)
            assets_before = vault.total_assets
            total_shares_before = vault.total_shares
            shares_before = self.ledger.balance_of(vault, principal)

            asset_amount = self.withdrawals.settle(vault, request, now)
            self._record(
                vault, principal, VaultAction.WITHDRAW, asset_amount,
                assets_before, shares_before, total_shares_before, now,
            )
        return WithdrawalOutcome(request=request, asset_amount=asset_amount)

    def cancel_withdrawal(self, vault_address: str, principal: str, now: int) -> WithdrawalRequest:
        with self._exclusive(vault_address) as vault:
            self._snapshot_price(vault, now)
            request = self._require_request(vault, principal, now)
            assets_before = vault.total_assets
            total_shares_before = vault.total_shares
            shares_before = self.ledger.balance_of(vault, principal)

            self.withdrawals.cancel(vault, request, now)
            self._record(
                vault, principal, VaultAction.CANCEL_WITHDRAW_REQUEST, request.shares_forfeited,
                assets_before, shares_before, total_shares_before, now,
            )
        return request

    def report_assets(self, vault_address: str, manager: str, total_assets: int, now: int) -> int:
        with self._exclusive(vault_address) as vault:
            self._authorize_manager(vault, manager)
            assets_before = vault.total_assets
            shares_before = self.ledger.balance_of(vault, manager)

            self.ledger.set_total_assets(vault, total_assets, now)
            self._rebase(vault, now)
            price_per_share = self.ledger.price_per_share(vault)
            self.session.add(
                PricePerShareHistory(
                    vault_id=vault.id, timestamp=now, price_per_share=price_per_share
                )
            )
            self._record(
                vault, manager, VaultAction.ASSETS_REPORTED, total_assets,
                assets_before, shares_before, vault.total_shares, now,
            )
        logger.info(f"Vault {vault_address} reported {total_assets} assets, price per share {price_per_share}")
        return price_per_share

    def _require_request(self, vault: Vault, principal: str, now: int) -> WithdrawalRequest:
        request = self.withdrawals.get_active(vault, principal, now)
        if request is None:
            # a terminal request only serves to report why nothing can be settled or cancelled
            request = self.withdrawals.get_latest(vault, principal)
        if request is None:
            raise RequestNotFound(
                f"No withdrawal request for {principal} in vault {vault.contract_address}"
            )
        return request

    def get_vault(self, vault_address: str) -> Vault:
        return self.ledger.get_vault(vault_address)

    def balance_of(self, vault_address: str, principal: str) -> int:
        return self.ledger.balance_of(self.ledger.get_vault(vault_address), principal)

    def cost_basis_of(self, vault_address: str, principal: str) -> int:
        return self.ledger.cost_basis_of(self.ledger.get_vault(vault_address), principal)

    def sum_principal_shares(self, vault_address: str) -> int:
        return self.ledger.sum_principal_shares(self.ledger.get_vault(vault_address))

    def get_active_request(self, vault_address: str, principal: str, now: int) -> WithdrawalRequest | None:
        request = self.withdrawals.get_pending(self.ledger.get_vault(vault_address), principal)
        if request is None or effective_status(request, now) not in ACTIVE_STATUSES:
            return None
        return request

    def withdrawal_status(self, request: WithdrawalRequest, now: int) -> WithdrawalStatus:
        return effective_status(request, now)
