import logging
import time
from functools import wraps

import click
import pendulum
from sqlmodel import Session

from core.config import settings
from core.db import build_engine, init_db
from core.exceptions import OracleUnavailable, VaultAccountingError
from log import setup_logging_to_console, setup_logging_to_file, setup_logging_to_seq
from models import WithdrawUnit
from services.pricing_oracle import build_pricing_oracle
from services.vault_accounting import VaultAccountingService, WithdrawalOutcome
from utils.api import is_valid_wallet_address

logger = logging.getLogger(__name__)

UNIT_CHOICES = click.Choice([unit.value for unit in WithdrawUnit], case_sensitive=False)


def retry_on_oracle_unavailable(func, retries: int, backoff: float):
    for attempt in range(retries + 1):
        try:
            return func()
        except OracleUnavailable as e:
            if attempt >= retries:
                raise
            delay = backoff * 2**attempt
            logger.warning(f"{e.message}, retrying in {delay:.1f}s ({attempt + 1}/{retries})")
            time.sleep(delay)


def accounting_command(func):
    """Run a command against a fresh service and turn accounting errors into exit code 1."""

    @click.pass_context
    @wraps(func)
    def wrapper(ctx: click.Context, *args, **kwargs):
        with Session(ctx.obj["engine"]) as session:
            service = VaultAccountingService(
                session,
                oracle=build_pricing_oracle(ctx.obj["oracle"], session),
                settlement_policy=ctx.obj["settlement_policy"],
            )
            try:
                return retry_on_oracle_unavailable(
                    lambda: func(service, *args, **kwargs),
                    ctx.obj["oracle_retries"],
                    ctx.obj["oracle_backoff"],
                )
            except VaultAccountingError as e:
                logger.error(f"{e.error_code}: {e.message}")
                raise click.ClickException(f"{e.error_code}: {e.message}") from e

    return wrapper


def validate_address(ctx, param, value):
    if value is not None and not is_valid_wallet_address(value):
        label = param.name.replace("_", " ")
        raise click.ClickException(f"Invalid {label}")
    return value


def resolve_now(now: int | None) -> int:
    return now if now is not None else pendulum.now("UTC").int_timestamp


def echo_outcome(outcome: WithdrawalOutcome, label: str):
    request = outcome.request
    if outcome.settled:
        click.echo(
            f"Withdrew {request.share_amount} shares {label}: {outcome.asset_amount} assets"
        )
    else:
        click.echo(
            f"Withdrawal request {request.id} for {request.share_amount} shares {label} "
            f"redeemable at {request.redeemable_at}"
        )


vault_address_option = click.option(
    "--vault-address", required=True, callback=validate_address, help="Vault address"
)
now_option = click.option(
    "--now", type=int, default=None, help="Unix timestamp to use instead of the current time"
)


@click.group()
@click.option("--database-url", default=None, help="Database URL, defaults to SQLALCHEMY_DATABASE_URI")
@click.option("--oracle", default=None, help="Pricing oracle: ledger, pps_history or onchain")
@click.option("--settlement-policy", default=None, help="settlement_price or lower_of_request_and_settlement")
@click.option("--oracle-retries", default=3, show_default=True, help="Retries when the oracle is unavailable")
@click.option("--oracle-backoff", default=1.0, show_default=True, help="Initial retry delay in seconds")
@click.option("--log-level", default="INFO", show_default=True)
@click.option("--log-file", is_flag=True, help="Also write logs to a timestamped file")
@click.pass_context
def cli(ctx, database_url, oracle, settlement_policy, oracle_retries, oracle_backoff, log_level, log_file):
    level = logging.getLevelName(log_level.upper())
    setup_logging_to_console(level=level)
    setup_logging_to_seq(level=level)
    if log_file:
        setup_logging_to_file(app="vault_cli", level=level)

    ctx.ensure_object(dict)
    ctx.obj["engine"] = build_engine(database_url or str(settings.SQLALCHEMY_DATABASE_URI))
    ctx.obj["oracle"] = oracle or settings.PRICING_ORACLE
    ctx.obj["settlement_policy"] = settlement_policy or settings.SETTLEMENT_PRICE_POLICY
    ctx.obj["oracle_retries"] = oracle_retries
    ctx.obj["oracle_backoff"] = oracle_backoff


@cli.command("init-db")
@click.pass_context
def init_db_command(ctx):
    init_db(ctx.obj["engine"])
    click.echo("Database initialized")


@cli.command("create-vault")
@click.option("--name", required=True)
@vault_address_option
@click.option("--manager", required=True, callback=validate_address)
@click.option("--currency", default=None)
@click.option("--redeem-period", type=int, default=None, help="Cooldown in seconds")
@click.option("--withdrawal-expiry", type=int, default=None, help="Seconds a redeemable request stays open")
@click.option("--initial-price-per-share", type=int, default=None)
@now_option
@accounting_command
def create_vault(service, name, vault_address, manager, currency, redeem_period,
                 withdrawal_expiry, initial_price_per_share, now):
    vault = service.create_vault(
        name=name,
        vault_address=vault_address,
        manager=manager,
        now=resolve_now(now),
        vault_currency=currency,
        redeem_period=redeem_period,
        withdrawal_expiry=withdrawal_expiry,
        initial_price_per_share=initial_price_per_share,
    )
    click.echo(f"Created vault {vault.name} at {vault.contract_address}")


@cli.command()
@vault_address_option
@click.option("--principal", required=True, callback=validate_address)
@click.option("--amount", type=int, required=True, help="Asset amount in base units")
@now_option
@accounting_command
def deposit(service, vault_address, principal, amount, now):
    share_amount = service.deposit(vault_address, principal, amount, resolve_now(now))
    click.echo(f"Deposited {amount} for {share_amount} shares")


@cli.command("manager-withdraw")
@vault_address_option
@click.option("--manager", required=True, callback=validate_address)
@click.option("--shares", type=int, default=None, help="Number of shares to withdraw")
@click.option("--amount", type=int, default=None, help="Amount in --unit, alternative to --shares")
@click.option("--unit", type=UNIT_CHOICES, default=None, help="Unit of --amount, defaults to shares")
@now_option
@accounting_command
def manager_withdraw(service, vault_address, manager, shares, amount, unit, now):
    if (shares is None) == (amount is None):
        raise click.UsageError("Provide exactly one of --shares or --amount")
    if shares is not None:
        if unit is not None:
            raise click.UsageError("--unit only applies to --amount")
        amount = shares
    unit = unit or WithdrawUnit.SHARES.value

    outcome = service.manager_withdraw(
        vault_address, manager, amount, WithdrawUnit(unit.lower()), resolve_now(now)
    )
    echo_outcome(outcome, "as vault manager")
    click.echo("Done!")


@cli.command()
@vault_address_option
@click.option("--principal", required=True, callback=validate_address)
@click.option("--amount", type=int, required=True)
@click.option("--unit", type=UNIT_CHOICES, default=WithdrawUnit.SHARES.value, show_default=True)
@now_option
@accounting_command
def withdraw(service, vault_address, principal, amount, unit, now):
    outcome = service.depositor_withdraw(
        vault_address, principal, amount, WithdrawUnit(unit.lower()), resolve_now(now)
    )
    echo_outcome(outcome, f"for {principal}")


@cli.command()
@vault_address_option
@click.option("--principal", required=True, callback=validate_address)
@now_option
@accounting_command
def settle(service, vault_address, principal, now):
    outcome = service.settle_withdrawal(vault_address, principal, resolve_now(now))
    echo_outcome(outcome, f"for {principal}")


@cli.command()
@vault_address_option
@click.option("--principal", required=True, callback=validate_address)
@now_option
@accounting_command
def cancel(service, vault_address, principal, now):
    request = service.cancel_withdrawal(vault_address, principal, resolve_now(now))
    click.echo(
        f"Cancelled withdrawal request {request.id}, {request.shares_forfeited} shares forfeited"
    )


@cli.command("report-assets")
@vault_address_option
@click.option("--manager", required=True, callback=validate_address)
@click.option("--total-assets", type=int, required=True)
@now_option
@accounting_command
def report_assets(service, vault_address, manager, total_assets, now):
    price_per_share = service.report_assets(vault_address, manager, total_assets, resolve_now(now))
    click.echo(f"Reported {total_assets} assets, price per share {price_per_share}")


@cli.command()
@vault_address_option
@click.option("--principal", required=True, callback=validate_address)
@accounting_command
def balance(service, vault_address, principal):
    shares = service.balance_of(vault_address, principal)
    cost_basis = service.cost_basis_of(vault_address, principal)
    click.echo(f"{principal.lower()}: {shares} shares, cost basis {cost_basis}")


@cli.command("vault")
@vault_address_option
@accounting_command
def show_vault(service, vault_address):
    vault = service.get_vault(vault_address)
    click.echo(f"Vault {vault.name} ({vault.contract_address})")
    click.echo(f"  manager: {vault.manager_address}")
    click.echo(f"  total shares: {vault.total_shares}")
    click.echo(f"  total assets: {vault.total_assets}")
    click.echo(f"  price per share: {service.ledger.price_per_share(vault)}")
    click.echo(f"  principal shares: {service.sum_principal_shares(vault_address)}")
    click.echo(f"  redeem period: {vault.redeem_period}s")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
