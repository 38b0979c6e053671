class VaultAccountingError(Exception):
    """Base class for every accounting failure surfaced to callers.

    None of these are fatal to the process. Only ``OracleUnavailable`` is
    expected to be transient; all the others mean the request (or the state it
    targets) must change before trying again.
    """

    retryable = False

    def __init__(self, message: str | None = None):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)

    @property
    def error_code(self) -> str:
        return self.__class__.__name__


class InsufficientAssetAmount(VaultAccountingError):
    pass


class InsufficientShareBalance(VaultAccountingError):
    pass


class InvalidWithdrawalAmount(VaultAccountingError):
    pass


class RequestAlreadyPending(VaultAccountingError):
    pass


class RequestNotRedeemable(VaultAccountingError):
    pass


class RequestNotCancellable(VaultAccountingError):
    pass


class RequestNotFound(VaultAccountingError):
    pass


class Unauthorized(VaultAccountingError):
    pass


class OracleUnavailable(VaultAccountingError):
    retryable = True


class VaultNotFound(VaultAccountingError):
    pass


class VaultAlreadyExists(VaultAccountingError):
    pass


class VaultEquityDepleted(VaultAccountingError):
    """Shares are outstanding but the vault holds no assets."""


class InvalidVaultConfiguration(VaultAccountingError):
    pass
