"""Error taxonomy for bank synchronization."""


class BankSyncError(Exception):
    """Base exception for bank sync errors.

    ``user_message`` is the actionable text shown to operators; ``str(exc)`` keeps
    the technical detail.
    """

    user_message = "Bank synchronization failed"

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class AuthenticationFailedError(BankSyncError):
    """Bad credentials, expired certificate or refused consent. Not retried."""

    user_message = "Authentication failed: check the API credentials"


class AccountNotFoundError(BankSyncError):
    """The IBAN is not among the accounts the provider exposes."""

    user_message = "IBAN not recognized by provider"


class TransactionFetchFailedError(BankSyncError):
    """Transient provider or network fault. Safe to retry on the next run."""

    user_message = "Connection OK but transactions could not be retrieved"


class IngestionFailedError(BankSyncError):
    """Storage fault while persisting a single transaction."""

    user_message = "Transaction could not be stored"


class UnsupportedProviderError(BankSyncError):
    """No adapter is registered for the configured provider name."""

    user_message = "Unsupported provider"


class IbanNotFoundError(BankSyncError):
    """No account row exists for the requested id."""

    user_message = "IBAN not found"


class SyncConfigurationError(BankSyncError):
    """The account is inactive, has auto-sync disabled or lacks a provider."""

    user_message = "IBAN not configured for automatic synchronization"
