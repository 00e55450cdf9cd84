"""Bank provider adapters."""

from bankrecon.services.banking.base import (
    BankProviderAdapter,
    ProviderSession,
    derive_transaction_id,
    map_berlin_group_transaction,
    normalize_iban,
)
from bankrecon.services.banking.cbi_globe import CbiGlobeAdapter
from bankrecon.services.banking.errors import (
    AccountNotFoundError,
    AuthenticationFailedError,
    BankSyncError,
    IbanNotFoundError,
    IngestionFailedError,
    SyncConfigurationError,
    TransactionFetchFailedError,
    UnsupportedProviderError,
)
from bankrecon.services.banking.intesa import IntesaAdapter
from bankrecon.services.banking.nexi import NexiAdapter
from bankrecon.services.banking.registry import PROVIDER_ADAPTERS, get_adapter, supported_providers
from bankrecon.services.banking.resilience import (
    CircuitState,
    PolicyConfig,
    ProviderCallPolicy,
    get_provider_policy,
    reset_provider_policies,
)
from bankrecon.services.banking.unicredit import UniCreditAdapter

__all__ = [
    "PROVIDER_ADAPTERS",
    "AccountNotFoundError",
    "AuthenticationFailedError",
    "BankProviderAdapter",
    "BankSyncError",
    "CbiGlobeAdapter",
    "CircuitState",
    "IbanNotFoundError",
    "IngestionFailedError",
    "IntesaAdapter",
    "NexiAdapter",
    "PolicyConfig",
    "ProviderCallPolicy",
    "ProviderSession",
    "SyncConfigurationError",
    "TransactionFetchFailedError",
    "UniCreditAdapter",
    "UnsupportedProviderError",
    "derive_transaction_id",
    "get_adapter",
    "get_provider_policy",
    "map_berlin_group_transaction",
    "normalize_iban",
    "reset_provider_policies",
    "supported_providers",
]
