"""Provider connectivity test and PSD2 certificate validation.

Neither operation touches the database.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import Any

import httpx
from cryptography import x509

from bankrecon.logger import get_logger, mask_iban
from bankrecon.services.banking import (
    AccountNotFoundError,
    AuthenticationFailedError,
    BankSyncError,
    TransactionFetchFailedError,
    UnsupportedProviderError,
    get_adapter,
)

logger = get_logger(__name__)

PEM_BEGIN = "-----BEGIN CERTIFICATE-----"
PEM_END = "-----END CERTIFICATE-----"


@dataclass
class ConnectionTestResult:
    success: bool
    message: str
    account_found: bool
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class CertificateValidationResult:
    valid: bool
    error: str | None = None
    valid_until: date | None = None


def connection_error_message(exc: BankSyncError) -> str:
    """Map an adapter error to the message shown to the operator."""
    if isinstance(exc, UnsupportedProviderError):
        return f"{exc.user_message}: {exc.provider}"
    if isinstance(exc, AuthenticationFailedError | AccountNotFoundError | TransactionFetchFailedError):
        return exc.user_message
    return f"Connection failed: {exc}"


async def test_connection(
    provider: str,
    iban: str,
    credentials: Mapping[str, Any] | None,
    sandbox: bool = True,
    *,
    today: date | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ConnectionTestResult:
    """Authenticate, resolve the IBAN and fetch a one-day window (yesterday to today)."""
    to_date = today or datetime.now(UTC).date()
    from_date = to_date - timedelta(days=1)
    details: dict[str, Any] = {"provider": provider, "iban": mask_iban(iban), "sandbox_mode": sandbox}
    account_found = False

    try:
        adapter = get_adapter(provider, sandbox=sandbox, transport=transport)
        session = await adapter.authenticate(credentials)
        try:
            resource_id = await adapter.resolve_account(session, iban)
            account_found = True
            transactions = await adapter.fetch_account_transactions(
                session, resource_id, iban, from_date, to_date
            )
        finally:
            await session.aclose()
    except BankSyncError as exc:
        logger.warning(
            "Bank connection test failed",
            provider=provider,
            iban=mask_iban(iban),
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return ConnectionTestResult(
            success=False,
            message=connection_error_message(exc),
            account_found=account_found,
            details={**details, "error": str(exc)},
        )

    logger.info("Bank connection test succeeded", provider=provider, iban=mask_iban(iban))
    return ConnectionTestResult(
        success=True,
        message=f"{adapter.display_name} connection tested successfully",
        account_found=True,
        details={**details, "transactions_found": len(transactions)},
    )


# Not a pytest test
test_connection.__test__ = False  # type: ignore[attr-defined]


def _load_certificate(pem: str, label: str) -> x509.Certificate:
    if PEM_BEGIN not in pem or PEM_END not in pem:
        raise ValueError(f"{label} certificate is not in PEM format")
    try:
        return x509.load_pem_x509_certificate(pem.strip().encode("ascii"))
    except (ValueError, UnicodeEncodeError) as exc:
        raise ValueError(f"{label} certificate could not be parsed") from exc


def validate_certificates(
    client_auth_cert: str,
    signing_cert: str,
    *,
    now: datetime | None = None,
) -> CertificateValidationResult:
    """Validate the QWAC (client auth) and QSeal (signing) PEM certificates.

    Both must parse and be inside their validity period. ``valid_until`` is the
    earlier of the two expiry dates.
    """
    now = now or datetime.now(UTC)
    expiries: list[datetime] = []
    for label, pem in (("QWAC", client_auth_cert), ("QSeal", signing_cert)):
        try:
            certificate = _load_certificate(pem or "", label)
        except ValueError as exc:
            return CertificateValidationResult(valid=False, error=str(exc))

        not_before = certificate.not_valid_before_utc
        not_after = certificate.not_valid_after_utc
        if now < not_before:
            return CertificateValidationResult(
                valid=False, error=f"{label} certificate is not valid before {not_before.date().isoformat()}"
            )
        if now > not_after:
            return CertificateValidationResult(
                valid=False, error=f"{label} certificate expired on {not_after.date().isoformat()}"
            )
        expiries.append(not_after)

    valid_until = min(expiries)
    logger.info("PSD2 certificates validated", valid_until=valid_until.date().isoformat())
    return CertificateValidationResult(valid=True, valid_until=valid_until.date())
