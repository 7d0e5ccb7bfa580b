"""Error taxonomy for wallet provisioning and deposit reconciliation.

Every error carries a stable ``code`` and the HTTP status the API layer
reports it with.
"""


class WalletError(Exception):
    """Base class for all wallet core errors."""

    code = "wallet_error"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code


class InvalidKeyMaterial(WalletError):
    """The configured extended public key cannot be parsed."""

    code = "invalid_key_material"
    status_code = 500


class DerivationError(WalletError):
    """A child key could not be derived for the requested index."""

    code = "derivation_error"
    status_code = 500


class MasterKeyUnavailable(WalletError):
    """Wallet is not configured on the server (XPUB_KEY missing)."""

    code = "master_key_unavailable"
    status_code = 503


class UserNotFound(WalletError):
    """User not found."""

    code = "user_not_found"
    status_code = 404


class WalletNotFound(WalletError):
    """Wallet not found. Please create a wallet first."""

    code = "wallet_not_found"
    status_code = 404


class AddressNotFound(WalletError):
    """Unknown deposit address."""

    code = "address_not_found"
    status_code = 404


class PersistenceConflict(WalletError):
    """A concurrent writer claimed the same user, index or address."""

    code = "persistence_conflict"
    status_code = 409


class PersistenceFailure(WalletError):
    """The wallet record could not be stored."""

    code = "persistence_failure"
    status_code = 500


class ScannerError(WalletError):
    """Failed to fetch blockchain data. Please try again later."""

    code = "scanner_error"
    status_code = 502
