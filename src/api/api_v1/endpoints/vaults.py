import pendulum
from fastapi import APIRouter, HTTPException

import schemas
from api.api_v1.deps import AccountingServiceDep
from services.vault_accounting import WithdrawalOutcome
from utils.api import is_valid_wallet_address

router = APIRouter()


def _now(now: int | None) -> int:
    return now if now is not None else pendulum.now("UTC").int_timestamp


def _check_address(address: str, label: str = "address"):
    if not is_valid_wallet_address(address):
        raise HTTPException(status_code=400, detail=f"Invalid {label}: {address}")


def _to_result(outcome: WithdrawalOutcome) -> schemas.WithdrawalResult:
    return schemas.WithdrawalResult(
        request=schemas.WithdrawalRequest.model_validate(outcome.request),
        settled=outcome.settled,
        asset_amount=outcome.asset_amount,
    )


def _to_schema_vault(service: AccountingServiceDep, vault_address: str) -> schemas.Vault:
    vault = service.get_vault(vault_address)
    schema_vault = schemas.Vault.model_validate(vault)
    schema_vault.price_per_share = service.ledger.price_per_share(vault)
    return schema_vault


# mutating routes are sync and run in the threadpool
@router.post("/", response_model=schemas.Vault)
def create_vault(service: AccountingServiceDep, vault_in: schemas.VaultCreate):
    _check_address(vault_in.contract_address, "vault address")
    _check_address(vault_in.manager_address, "manager address")
    vault = service.create_vault(
        name=vault_in.name,
        vault_address=vault_in.contract_address,
        manager=vault_in.manager_address,
        now=_now(vault_in.now),
        vault_currency=vault_in.vault_currency,
        redeem_period=vault_in.redeem_period,
        withdrawal_expiry=vault_in.withdrawal_expiry,
        initial_price_per_share=vault_in.initial_price_per_share,
    )
    return _to_schema_vault(service, vault.contract_address)


@router.get("/{vault_address}", response_model=schemas.Vault)
async def get_vault_info(service: AccountingServiceDep, vault_address: str):
    return _to_schema_vault(service, vault_address)


@router.get("/{vault_address}/balances/{principal}", response_model=schemas.Position)
async def get_position(service: AccountingServiceDep, vault_address: str, principal: str):
    vault = service.get_vault(vault_address)
    shares = service.balance_of(vault_address, principal)
    return schemas.Position(
        vault_address=vault.contract_address,
        principal_address=principal.lower(),
        shares=shares,
        cost_basis=service.cost_basis_of(vault_address, principal),
        asset_value=service.ledger.shares_to_assets(vault, shares),
    )


@router.get(
    "/{vault_address}/withdrawals/{principal}",
    response_model=schemas.WithdrawalRequest | None,
)
async def get_active_withdrawal(
    service: AccountingServiceDep, vault_address: str, principal: str, now: int | None = None
):
    now = _now(now)
    request = service.get_active_request(vault_address, principal, now)
    if request is None:
        return None
    schema_request = schemas.WithdrawalRequest.model_validate(request)
    schema_request.status = service.withdrawal_status(request, now)
    return schema_request


@router.post("/{vault_address}/deposit", response_model=schemas.DepositResult)
def deposit(service: AccountingServiceDep, vault_address: str, deposit_in: schemas.DepositIn):
    _check_address(deposit_in.principal, "principal")
    share_amount = service.deposit(
        vault_address, deposit_in.principal, deposit_in.amount, _now(deposit_in.now)
    )
    return schemas.DepositResult(
        principal_address=deposit_in.principal.lower(), share_amount=share_amount
    )


@router.post("/{vault_address}/withdraw", response_model=schemas.WithdrawalResult)
def depositor_withdraw(
    service: AccountingServiceDep, vault_address: str, withdraw_in: schemas.WithdrawIn
):
    _check_address(withdraw_in.principal, "principal")
    outcome = service.depositor_withdraw(
        vault_address,
        withdraw_in.principal,
        withdraw_in.amount,
        withdraw_in.unit,
        _now(withdraw_in.now),
    )
    return _to_result(outcome)


@router.post("/{vault_address}/manager-withdraw", response_model=schemas.WithdrawalResult)
def manager_withdraw(
    service: AccountingServiceDep, vault_address: str, withdraw_in: schemas.WithdrawIn
):
    _check_address(withdraw_in.principal, "manager")
    outcome = service.manager_withdraw(
        vault_address,
        withdraw_in.principal,
        withdraw_in.amount,
        withdraw_in.unit,
        _now(withdraw_in.now),
    )
    return _to_result(outcome)


@router.post("/{vault_address}/settle", response_model=schemas.WithdrawalResult)
def settle_withdrawal(
    service: AccountingServiceDep, vault_address: str, action_in: schemas.PrincipalActionIn
):
    outcome = service.settle_withdrawal(vault_address, action_in.principal, _now(action_in.now))
    return _to_result(outcome)


@router.post("/{vault_address}/cancel", response_model=schemas.WithdrawalRequest)
def cancel_withdrawal(
    service: AccountingServiceDep, vault_address: str, action_in: schemas.PrincipalActionIn
):
    request = service.cancel_withdrawal(vault_address, action_in.principal, _now(action_in.now))
    return schemas.WithdrawalRequest.model_validate(request)


@router.post("/{vault_address}/report-assets", response_model=schemas.ReportAssetsResult)
def report_assets(
    service: AccountingServiceDep, vault_address: str, report_in: schemas.ReportAssetsIn
):
    price_per_share = service.report_assets(
        vault_address, report_in.manager, report_in.total_assets, _now(report_in.now)
    )
    return schemas.ReportAssetsResult(
        total_assets=report_in.total_assets, price_per_share=price_per_share
    )
