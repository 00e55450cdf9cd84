"""Pydantic schemas package."""

from bankrecon.schemas.banking import (
    AccountSyncResponse,
    CertificateValidationRequest,
    CertificateValidationResponse,
    ConnectionTestRequest,
    ConnectionTestResponse,
    NormalizedTransaction,
    ProviderListResponse,
    SyncRunResponse,
)
from bankrecon.schemas.base import BaseResponse

__all__ = [
    "AccountSyncResponse",
    "BaseResponse",
    "CertificateValidationRequest",
    "CertificateValidationResponse",
    "ConnectionTestRequest",
    "ConnectionTestResponse",
    "NormalizedTransaction",
    "ProviderListResponse",
    "SyncRunResponse",
]
