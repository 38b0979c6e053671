"""
Withdrawal request lifecycle.

    (none) --initiate--> PENDING --redeem period elapses--> REDEEMABLE --settle--> SETTLED
    PENDING/REDEEMABLE --cancel--> CANCELLED
    REDEEMABLE --expiry elapses--> EXPIRED

REDEEMABLE and EXPIRED are never scheduled. They are derived from ``now`` each
time a request is read (see ``models.withdrawal_request.effective_status``).
"""

import logging

from sqlmodel import Session, select

from core import constants
from core.constants import PRICE_PRECISION
from core.exceptions import (
    InsufficientShareBalance,
    InvalidWithdrawalAmount,
    RequestAlreadyPending,
    RequestNotCancellable,
    RequestNotRedeemable,
    VaultEquityDepleted,
)
from models import (
    Vault,
    WithdrawalRequest,
    WithdrawalStatus,
    WithdrawUnit,
    effective_status,
)
from services.share_ledger import ShareLedger, normalize_address

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (WithdrawalStatus.PENDING, WithdrawalStatus.REDEEMABLE)


def resolve_share_amount(unit: WithdrawUnit, amount: int, price_per_share: int) -> int:
    if unit == WithdrawUnit.SHARES:
        return amount
    if price_per_share <= 0:
        raise VaultEquityDepleted(f"Cannot convert {amount} token units at price {price_per_share}")
    return amount * PRICE_PRECISION // price_per_share


def calculate_shares_lost(
    request: WithdrawalRequest, total_shares: int, total_assets: int
) -> int:
    """Shares given up when cancelling a request whose value has grown.

    The principal keeps only as many shares as ``requested_value`` buys back
    at the current price, so cancelling never captures gains made while the
    request was waiting.
    """
    n_shares = request.share_amount
    if total_shares == 0:
        return 0
    amount = n_shares * total_assets // total_shares
    if amount <= request.requested_value:
        return 0

    remaining_shares = total_shares - n_shares
    remaining_assets = total_assets - request.requested_value
    if remaining_shares == 0 or remaining_assets <= 0:
        return 0
    new_n_shares = request.requested_value * remaining_shares // remaining_assets
    return max(n_shares - new_n_shares, 0)


class WithdrawalRequestManager:
    def __init__(self, session: Session, ledger: ShareLedger, settlement_policy: str):
        self.session = session
        self.ledger = ledger
        self.settlement_policy = settlement_policy

    def get_latest(self, vault: Vault, principal: str) -> WithdrawalRequest | None:
        # a stored PENDING row wins over terminal rows created in the same second
        return self.session.exec(
            select(WithdrawalRequest)
            .where(WithdrawalRequest.vault_id == vault.id)
            .where(WithdrawalRequest.principal_address == normalize_address(principal))
            .order_by(
                WithdrawalRequest.created_at.desc(),
                (WithdrawalRequest.status == WithdrawalStatus.PENDING).desc(),
            )
        ).first()

    def get_pending(self, vault: Vault, principal: str) -> WithdrawalRequest | None:
        """The stored PENDING request, if any, without applying expiry."""
        return self.session.exec(
            select(WithdrawalRequest)
            .where(WithdrawalRequest.vault_id == vault.id)
            .where(WithdrawalRequest.principal_address == normalize_address(principal))
            .where(WithdrawalRequest.status == WithdrawalStatus.PENDING)
        ).first()

    def get_active(self, vault: Vault, principal: str, now: int) -> WithdrawalRequest | None:
        request = self.get_pending(vault, principal)
        if request is None:
            return None

        if effective_status(request, now) == WithdrawalStatus.EXPIRED:
            request.status = WithdrawalStatus.EXPIRED
            self.session.add(request)
            logger.info(f"Withdrawal request {request.id} of {request.principal_address} expired")
            return None
        return request

    def initiate(
        self,
        vault: Vault,
        principal: str,
        unit: WithdrawUnit,
        amount: int,
        price_per_share: int,
        now: int,
    ) -> WithdrawalRequest:
        if self.get_active(vault, principal, now) is not None:
            raise RequestAlreadyPending(
                f"{principal} already has a withdrawal request in progress for vault {vault.contract_address}"
            )
        if amount <= 0:
            raise InvalidWithdrawalAmount(f"Withdrawal amount must be positive, got {amount}")

        share_amount = resolve_share_amount(unit, amount, price_per_share)
        if share_amount <= 0:
            raise InvalidWithdrawalAmount(
                f"Withdrawal of {amount} {unit.value} resolves to zero shares"
            )

        balance = self.ledger.balance_of(vault, principal)
        if share_amount > balance:
            raise InsufficientShareBalance(
                f"Requested {share_amount} shares exceeds balance of {balance}"
            )

        redeemable_at = now + vault.redeem_period
        request = WithdrawalRequest(
            vault_id=vault.id,
            principal_address=normalize_address(principal),
            unit=unit,
            requested_amount=amount,
            share_amount=share_amount,
            price_per_share=price_per_share,
            requested_value=share_amount * price_per_share // PRICE_PRECISION,
            created_at=now,
            redeemable_at=redeemable_at,
            expires_at=(
                redeemable_at + vault.withdrawal_expiry
                if vault.withdrawal_expiry is not None
                else None
            ),
            status=WithdrawalStatus.PENDING,
        )
        self.session.add(request)
        logger.info(
            f"Withdrawal request of {share_amount} shares by {request.principal_address} "
            f"in vault {vault.contract_address}, redeemable at {redeemable_at}"
        )
        return request

    def settle(self, vault: Vault, request: WithdrawalRequest, now: int) -> int:
        status = effective_status(request, now)
        if status != WithdrawalStatus.REDEEMABLE:
            raise RequestNotRedeemable(
                f"Withdrawal request {request.id} is {status.value} at {now}, "
                f"redeemable from {request.redeemable_at}"
            )

        max_assets = None
        if self.settlement_policy == constants.LOWER_OF_REQUEST_AND_SETTLEMENT:
            max_assets = request.requested_value

        asset_amount = self.ledger.burn(
            vault, request.principal_address, request.share_amount, now, max_assets=max_assets
        )
        request.status = WithdrawalStatus.SETTLED
        request.settled_at = now
        request.settled_amount = asset_amount
        self.session.add(request)
        logger.info(f"Withdrawal request {request.id} settled for {asset_amount}")
        return asset_amount

    def rebase_pending(self, vault: Vault, rebase_divisor: int, now: int) -> None:
        requests = self.session.exec(
            select(WithdrawalRequest)
            .where(WithdrawalRequest.vault_id == vault.id)
            .where(WithdrawalRequest.status == WithdrawalStatus.PENDING)
        ).all()
        for request in requests:
            request.share_amount //= rebase_divisor
            if request.share_amount == 0:
                request.status = WithdrawalStatus.CANCELLED
                request.cancelled_at = now
                logger.info(f"Withdrawal request {request.id} rounded to zero shares by rebase, cancelled")
            self.session.add(request)

    def cancel(self, vault: Vault, request: WithdrawalRequest, now: int) -> WithdrawalRequest:
        status = effective_status(request, now)
        if status not in ACTIVE_STATUSES:
            raise RequestNotCancellable(f"Withdrawal request {request.id} is {status.value}")

        if self.settlement_policy == constants.LOWER_OF_REQUEST_AND_SETTLEMENT:
            shares_lost = calculate_shares_lost(request, vault.total_shares, vault.total_assets)
            if shares_lost > 0:
                self.ledger.forfeit(vault, request.principal_address, shares_lost, now)
                request.shares_forfeited = shares_lost

        request.status = WithdrawalStatus.CANCELLED
        request.cancelled_at = now
        self.session.add(request)
        logger.info(f"Withdrawal request {request.id} cancelled")
        return request
