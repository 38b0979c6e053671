import random

import pytest
from sqlmodel import Session

from core.constants import PRICE_PRECISION
from core.exceptions import (
    InsufficientAssetAmount,
    InsufficientShareBalance,
    InvalidWithdrawalAmount,
    VaultEquityDepleted,
    VaultNotFound,
)
from models import Vault
from services.share_ledger import ShareLedger

from conftest import DEPOSITOR_ADDRESS, MANAGER_ADDRESS, OTHER_DEPOSITOR_ADDRESS, T, VAULT_ADDRESS


@pytest.fixture
def vault(db_session: Session) -> Vault:
    vault = Vault(
        name="Options Wheel Vault",
        contract_address=VAULT_ADDRESS,
        manager_address=MANAGER_ADDRESS,
        vault_currency="USDC",
        initial_price_per_share=PRICE_PRECISION,
        created_at=T,
        last_updated_at=T,
    )
    db_session.add(vault)
    db_session.commit()
    return vault


@pytest.fixture
def ledger(db_session: Session) -> ShareLedger:
    return ShareLedger(db_session)


def test_get_vault_is_case_insensitive(ledger: ShareLedger, vault: Vault):
    assert ledger.get_vault(VAULT_ADDRESS.upper().replace("0X", "0x")).id == vault.id

    with pytest.raises(VaultNotFound):
        ledger.get_vault("0x0000000000000000000000000000000000000001")


def test_mint_into_empty_vault_uses_initial_price(ledger: ShareLedger, vault: Vault):
    shares = ledger.mint(vault, DEPOSITOR_ADDRESS, 1000, T)

    assert shares == 1000
    assert vault.total_shares == 1000
    assert vault.total_assets == 1000
    assert ledger.balance_of(vault, DEPOSITOR_ADDRESS) == 1000
    assert ledger.price_per_share(vault) == PRICE_PRECISION


def test_mint_with_non_unit_initial_price_rounds_down(ledger: ShareLedger, vault: Vault):
    vault.initial_price_per_share = 2 * PRICE_PRECISION

    shares = ledger.mint(vault, DEPOSITOR_ADDRESS, 1001, T)

    assert shares == 500
    assert vault.total_assets == 1001


def test_mint_after_gain_rounds_shares_down(ledger: ShareLedger, vault: Vault):
    ledger.mint(vault, DEPOSITOR_ADDRESS, 1000, T)
    ledger.mint(vault, OTHER_DEPOSITOR_ADDRESS, 500, T)
    ledger.set_total_assets(vault, 1800, T)
    assert ledger.price_per_share(vault) == 1_200_000_000

    shares = ledger.mint(vault, OTHER_DEPOSITOR_ADDRESS, 100, T)

    # 100 * 1500 / 1800 = 83.33
    assert shares == 83
    assert vault.total_shares == 1583
    assert vault.total_assets == 1900


def test_burn_rounds_assets_down(ledger: ShareLedger, vault: Vault):
    ledger.mint(vault, DEPOSITOR_ADDRESS, 1000, T)
    ledger.mint(vault, OTHER_DEPOSITOR_ADDRESS, 500, T)
    ledger.set_total_assets(vault, 1800, T)
    shares = ledger.mint(vault, OTHER_DEPOSITOR_ADDRESS, 100, T)

    assets = ledger.burn(vault, OTHER_DEPOSITOR_ADDRESS, shares, T)

    # 83 * 1900 / 1583 = 99.62
    assert assets == 99
    assert vault.total_shares == 1500
    assert vault.total_assets == 1801


def test_burn_with_cap_leaves_difference_in_vault(ledger: ShareLedger, vault: Vault):
    ledger.mint(vault, DEPOSITOR_ADDRESS, 1000, T)
    ledger.mint(vault, OTHER_DEPOSITOR_ADDRESS, 1000, T)
    ledger.set_total_assets(vault, 3000, T)

    assets = ledger.burn(vault, DEPOSITOR_ADDRESS, 1000, T, max_assets=1200)

    assert assets == 1200
    assert vault.total_assets == 1800
    assert ledger.price_per_share(vault) == 1_800_000_000


@pytest.mark.parametrize("amount", [0, -5])
def test_mint_rejects_non_positive_amount(ledger: ShareLedger, vault: Vault, amount):
    with pytest.raises(InsufficientAssetAmount):
        ledger.mint(vault, DEPOSITOR_ADDRESS, amount, T)
    assert vault.total_shares == 0


def test_mint_rejects_deposit_worth_less_than_one_share(ledger: ShareLedger, vault: Vault):
    ledger.mint(vault, DEPOSITOR_ADDRESS, 1000, T)
    ledger.set_total_assets(vault, 3000, T)

    with pytest.raises(InsufficientAssetAmount):
        ledger.mint(vault, OTHER_DEPOSITOR_ADDRESS, 2, T)
    assert vault.total_assets == 3000


def test_mint_rejects_vault_without_equity(ledger: ShareLedger, vault: Vault):
    ledger.mint(vault, DEPOSITOR_ADDRESS, 1000, T)
    ledger.set_total_assets(vault, 0, T)

    with pytest.raises(VaultEquityDepleted):
        ledger.mint(vault, OTHER_DEPOSITOR_ADDRESS, 100, T)


def test_burn_more_than_balance_fails(ledger: ShareLedger, vault: Vault):
    ledger.mint(vault, DEPOSITOR_ADDRESS, 1000, T)

    with pytest.raises(InsufficientShareBalance):
        ledger.burn(vault, DEPOSITOR_ADDRESS, 1001, T)
    with pytest.raises(InsufficientShareBalance):
        ledger.burn(vault, OTHER_DEPOSITOR_ADDRESS, 1, T)
    with pytest.raises(InvalidWithdrawalAmount):
        ledger.burn(vault, DEPOSITOR_ADDRESS, 0, T)

    assert ledger.balance_of(vault, DEPOSITOR_ADDRESS) == 1000
    assert vault.total_shares == 1000


def test_balance_of_unknown_principal_is_zero(ledger: ShareLedger, vault: Vault):
    assert ledger.balance_of(vault, DEPOSITOR_ADDRESS) == 0
    assert ledger.cost_basis_of(vault, DEPOSITOR_ADDRESS) == 0
    assert ledger.sum_principal_shares(vault) == 0


def test_cost_basis_tracks_net_deposits(ledger: ShareLedger, vault: Vault):
    ledger.mint(vault, DEPOSITOR_ADDRESS, 1000, T)
    ledger.mint(vault, DEPOSITOR_ADDRESS, 500, T)
    assert ledger.cost_basis_of(vault, DEPOSITOR_ADDRESS) == 1500

    ledger.burn(vault, DEPOSITOR_ADDRESS, 1500, T)
    assert ledger.balance_of(vault, DEPOSITOR_ADDRESS) == 0
    assert ledger.cost_basis_of(vault, DEPOSITOR_ADDRESS) == 0

    # re-entering from a zero balance restarts the cost basis
    ledger.mint(vault, DEPOSITOR_ADDRESS, 200, T)
    assert ledger.cost_basis_of(vault, DEPOSITOR_ADDRESS) == 200


def test_revalue_marks_assets_to_price(ledger: ShareLedger, vault: Vault):
    ledger.mint(vault, DEPOSITOR_ADDRESS, 1000, T)

    ledger.revalue(vault, 1_100_000_000, T + 1)

    assert vault.total_assets == 1100
    assert vault.last_updated_at == T + 1


def test_revalue_is_noop_at_ledger_price(ledger: ShareLedger, vault: Vault):
    ledger.mint(vault, DEPOSITOR_ADDRESS, 1000, T)
    ledger.set_total_assets(vault, 1337, T)

    ledger.revalue(vault, ledger.price_per_share(vault), T)

    assert vault.total_assets == 1337


def test_forfeit_removes_shares_without_payout(ledger: ShareLedger, vault: Vault):
    ledger.mint(vault, DEPOSITOR_ADDRESS, 1000, T)
    ledger.mint(vault, OTHER_DEPOSITOR_ADDRESS, 1000, T)

    ledger.forfeit(vault, DEPOSITOR_ADDRESS, 100, T)

    assert ledger.balance_of(vault, DEPOSITOR_ADDRESS) == 900
    assert vault.total_shares == 1900
    assert vault.total_assets == 2000


def test_total_shares_equals_sum_of_balances(ledger: ShareLedger, vault: Vault):
    rng = random.Random(42)
    principals = [DEPOSITOR_ADDRESS, OTHER_DEPOSITOR_ADDRESS, MANAGER_ADDRESS]

    for step in range(200):
        principal = rng.choice(principals)
        balance = ledger.balance_of(vault, principal)
        if balance > 0 and rng.random() < 0.4:
            ledger.burn(vault, principal, rng.randint(1, balance), T + step)
        elif rng.random() < 0.1 and vault.total_shares > 0:
            ledger.set_total_assets(vault, vault.total_assets + rng.randint(1, 500), T + step)
        else:
            try:
                ledger.mint(vault, principal, rng.randint(1, 10_000), T + step)
            except InsufficientAssetAmount:
                pass

        assert vault.total_shares == ledger.sum_principal_shares(vault)
        assert vault.total_shares >= 0
        assert vault.total_assets >= 0


def test_rebase_after_large_loss(ledger: ShareLedger, vault: Vault):
    ledger.mint(vault, DEPOSITOR_ADDRESS, 10**12, T)
    ledger.set_total_assets(vault, 1000, T + 1)

    assert ledger.rebase(vault, T + 1) == 10**8
    assert vault.shares_base == 8
    assert vault.total_shares == 10_000
    assert ledger.balance_of(vault, DEPOSITOR_ADDRESS) == 10_000
    assert ledger.price_per_share(vault) == 100_000_000


def test_rebase_rounds_every_balance_down(ledger: ShareLedger, vault: Vault):
    ledger.mint(vault, DEPOSITOR_ADDRESS, 10**12, T)
    ledger.mint(vault, OTHER_DEPOSITOR_ADDRESS, 300_000_000_007, T)
    ledger.set_total_assets(vault, 1000, T + 1)

    ledger.rebase(vault, T + 1)

    assert ledger.balance_of(vault, DEPOSITOR_ADDRESS) == 10_000
    assert ledger.balance_of(vault, OTHER_DEPOSITOR_ADDRESS) == 3_000
    assert vault.total_shares == 13_000
    assert ledger.sum_principal_shares(vault) == vault.total_shares


@pytest.mark.parametrize("total_assets", [900, 0])
def test_rebase_is_noop_for_small_losses(ledger: ShareLedger, vault: Vault, total_assets):
    ledger.mint(vault, DEPOSITOR_ADDRESS, 1000, T)
    ledger.set_total_assets(vault, total_assets, T + 1)

    assert ledger.rebase(vault, T + 1) == 1
    assert vault.total_shares == 1000
    assert vault.shares_base == 0
