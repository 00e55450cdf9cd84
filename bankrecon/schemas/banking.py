"""Pydantic schemas for bank synchronization."""

from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator

from bankrecon.schemas.base import BaseResponse

_OPTIONAL_TEXT_FIELDS = (
    "currency",
    "description",
    "creditor_name",
    "debtor_name",
    "remittance_info",
    "purpose_code",
    "end_to_end_id",
)


class NormalizedTransaction(BaseModel):
    """Provider-agnostic transaction produced by every adapter.

    Optional fields the provider does not send stay None; blank strings are
    folded to None so "no description" and "empty description" look the same.
    """

    external_transaction_id: str = Field(min_length=1)
    booking_date: date
    value_date: date | None = None
    amount: Decimal  # Signed: negative = outgoing
    currency: str | None = None
    description: str | None = None
    creditor_name: str | None = None
    debtor_name: str | None = None
    remittance_info: str | None = None
    purpose_code: str | None = None
    end_to_end_id: str | None = None
    balance: Decimal | None = None
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)

    @field_validator(*_OPTIONAL_TEXT_FIELDS, mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str | None) -> str | None:
        return value.upper() if value else value


# =============================================================================
# API schemas
# =============================================================================


class AccountSyncResponse(BaseResponse):
    """Result of syncing a single IBAN."""

    synced: int
    matched: int
    errors: list[str] = Field(default_factory=list)


class SyncRunResponse(BaseResponse):
    """Result of syncing every enabled IBAN."""

    total_synced: int
    total_matched: int
    errors: list[str] = Field(default_factory=list)
    accounts_processed: int = 0
    cancelled: bool = False


class ConnectionTestRequest(BaseModel):
    """Request body for a provider connectivity test."""

    provider: str
    iban: str
    credentials: dict[str, Any] = Field(default_factory=dict)
    sandbox: bool = True


class ConnectionTestResponse(BaseResponse):
    """Connectivity test outcome."""

    success: bool
    message: str
    account_found: bool
    details: dict[str, Any] = Field(default_factory=dict)


class CertificateValidationRequest(BaseModel):
    """Request body for PSD2 certificate validation (PEM strings)."""

    client_auth_cert: str
    signing_cert: str


class CertificateValidationResponse(BaseResponse):
    """Certificate validation outcome."""

    valid: bool
    error: str | None = None
    valid_until: date | None = None


class ProviderListResponse(BaseModel):
    """Supported provider names."""

    providers: list[str]
