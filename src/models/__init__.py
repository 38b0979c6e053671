from sqlmodel import SQLModel
from .vaults import Vault, VaultBase
from .principal_balance import PrincipalBalance
from .pps_history import PricePerShareHistory, PricePerShareHistoryBase
from .withdrawal_request import (
    WithdrawalRequest,
    WithdrawalStatus,
    WithdrawUnit,
    effective_status,
)
from .vault_action_record import VaultAction, VaultActionRecord
