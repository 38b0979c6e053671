from .vault import Vault, VaultCreate
from .portfolio import Position
from .withdrawal import (
    DepositIn,
    DepositResult,
    PrincipalActionIn,
    ReportAssetsIn,
    ReportAssetsResult,
    WithdrawalRequest,
    WithdrawalResult,
    WithdrawIn,
)
