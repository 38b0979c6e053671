from eth_utils import is_address


def is_valid_wallet_address(wallet_address: str) -> bool:
    return bool(wallet_address) and is_address(wallet_address)
