"""Service layer package."""

from bankrecon.services.bank_sync import (
    AccountSyncResult,
    SyncRunResult,
    run_bank_sync_scheduler,
    sync_account,
    sync_all_enabled_accounts,
)
from bankrecon.services.connection_check import (
    CertificateValidationResult,
    ConnectionTestResult,
    validate_certificates,
)
from bankrecon.services.matching import (
    MatchingConfig,
    MatchOutcome,
    MatchResult,
    calculate_match_score,
    classify_score,
    find_best_match,
    load_matching_config,
    match_transaction,
)
from bankrecon.services.transaction_store import (
    RAW_PAYLOAD_VERSION,
    IngestResult,
    decode_raw_payload,
    ingest_transaction,
)

__all__ = [
    "RAW_PAYLOAD_VERSION",
    "AccountSyncResult",
    "CertificateValidationResult",
    "ConnectionTestResult",
    "IngestResult",
    "MatchOutcome",
    "MatchResult",
    "MatchingConfig",
    "SyncRunResult",
    "calculate_match_score",
    "classify_score",
    "decode_raw_payload",
    "find_best_match",
    "ingest_transaction",
    "load_matching_config",
    "match_transaction",
    "run_bank_sync_scheduler",
    "sync_account",
    "sync_all_enabled_accounts",
    "validate_certificates",
]
