"""Bank sync API router."""

from uuid import UUID

from fastapi import APIRouter

from bankrecon.database import get_session_maker
from bankrecon.deps import AdapterFactoryDep, DbSession
from bankrecon.schemas.banking import (
    AccountSyncResponse,
    CertificateValidationRequest,
    CertificateValidationResponse,
    ConnectionTestRequest,
    ConnectionTestResponse,
    ProviderListResponse,
    SyncRunResponse,
)
from bankrecon.services import connection_check
from bankrecon.services.bank_sync import describe_error, sync_account, sync_all_enabled_accounts
from bankrecon.services.banking import (
    BankSyncError,
    IbanNotFoundError,
    SyncConfigurationError,
    UnsupportedProviderError,
    supported_providers,
)
from bankrecon.utils import raise_bad_gateway, raise_bad_request, raise_not_found

router = APIRouter(prefix="/bank-sync", tags=["bank-sync"])


@router.post("/accounts/{iban_id}/sync", response_model=AccountSyncResponse)
async def sync_iban(
    iban_id: UUID,
    db: DbSession,
    adapter_factory: AdapterFactoryDep,
) -> AccountSyncResponse:
    """Sync one IBAN now, regardless of its sync frequency."""
    try:
        result = await sync_account(db, iban_id, adapter_factory=adapter_factory)
    except IbanNotFoundError as exc:
        raise_not_found("IBAN", cause=exc)
    except (SyncConfigurationError, UnsupportedProviderError) as exc:
        raise_bad_request(describe_error(exc), cause=exc)
    except BankSyncError as exc:
        raise_bad_gateway(describe_error(exc), cause=exc)

    return AccountSyncResponse(synced=result.synced, matched=result.matched, errors=result.errors)


@router.post("/sync-all", response_model=SyncRunResponse)
async def sync_all(adapter_factory: AdapterFactoryDep) -> SyncRunResponse:
    """Sync every active, auto-sync enabled IBAN."""
    result = await sync_all_enabled_accounts(get_session_maker(), adapter_factory=adapter_factory)
    return SyncRunResponse.model_validate(result)


@router.post("/test-connection", response_model=ConnectionTestResponse)
async def test_provider_connection(payload: ConnectionTestRequest) -> ConnectionTestResponse:
    result = await connection_check.test_connection(
        payload.provider,
        payload.iban,
        payload.credentials,
        payload.sandbox,
    )
    return ConnectionTestResponse.model_validate(result)


@router.post("/validate-certificates", response_model=CertificateValidationResponse)
async def validate_psd2_certificates(payload: CertificateValidationRequest) -> CertificateValidationResponse:
    result = connection_check.validate_certificates(payload.client_auth_cert, payload.signing_cert)
    return CertificateValidationResponse.model_validate(result)


@router.get("/providers", response_model=ProviderListResponse)
async def list_providers() -> ProviderListResponse:
    return ProviderListResponse(providers=supported_providers())
