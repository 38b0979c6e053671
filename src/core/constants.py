# prices per share are integers scaled by this factor, 10**9 == 1.0
PRICE_PRECISION = 10**9

LEDGER_ORACLE = "ledger"
PPS_HISTORY_ORACLE = "pps_history"
ONCHAIN_ORACLE = "onchain"

SETTLEMENT_PRICE = "settlement_price"
LOWER_OF_REQUEST_AND_SETTLEMENT = "lower_of_request_and_settlement"

VAULT_CONTRACT_ABI = "VaultPricePerShare"
