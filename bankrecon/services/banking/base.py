"""Provider adapter contract and shared helpers."""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar
from uuid import uuid4

import httpx
from pydantic import ValidationError

from bankrecon.config import settings
from bankrecon.logger import get_logger, mask_iban
from bankrecon.schemas.banking import NormalizedTransaction
from bankrecon.services.banking.credentials import ProviderCredentials, parse_credentials
from bankrecon.services.banking.errors import (
    AccountNotFoundError,
    AuthenticationFailedError,
    BankSyncError,
    TransactionFetchFailedError,
)
from bankrecon.services.banking.resilience import ProviderCallPolicy, get_provider_policy

logger = get_logger(__name__)


@dataclass
class ProviderSession:
    """Authenticated connection to one provider."""

    provider: str
    client: httpx.AsyncClient
    headers: dict[str, str] = field(default_factory=dict)
    consent_id: str | None = None

    async def aclose(self) -> None:
        await self.client.aclose()


def normalize_iban(value: str | None) -> str:
    return (value or "").replace(" ", "").upper()


def parse_provider_date(value: Any, *, field_name: str, provider: str) -> date | None:
    """Parse ISO dates (or datetimes) from provider payloads."""
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise TransactionFetchFailedError(
            f"{provider} returned an invalid {field_name}: {value!r}", provider=provider
        ) from exc


def parse_provider_amount(value: Any, *, field_name: str, provider: str) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise TransactionFetchFailedError(
            f"{provider} returned an invalid {field_name}: {value!r}", provider=provider
        ) from exc


def derive_transaction_id(
    iban: str,
    booking_date: date,
    amount: Decimal,
    currency: str | None,
    description: str | None,
    end_to_end_id: str | None = None,
) -> str:
    """Stable id for providers that omit one.

    Hash = SHA256(iban|booking_date|amount|currency|description|end_to_end_id)
    """
    components = [
        normalize_iban(iban),
        booking_date.isoformat(),
        str(amount),
        str(currency or "").upper(),
        str(description or "").strip().lower(),
        end_to_end_id or "",
    ]
    digest = hashlib.sha256("|".join(components).encode("utf-8")).hexdigest()
    return f"derived-{digest}"


def build_normalized_transaction(
    *,
    provider: str,
    iban: str,
    raw: Mapping[str, Any],
    transaction_id: Any,
    booking_date: Any,
    value_date: Any,
    amount: Any,
    currency: Any = None,
    description: Any = None,
    creditor_name: Any = None,
    debtor_name: Any = None,
    remittance_info: Any = None,
    purpose_code: Any = None,
    end_to_end_id: Any = None,
    balance: Any = None,
) -> NormalizedTransaction:
    """Assemble a NormalizedTransaction from already-extracted provider fields."""
    booked = parse_provider_date(booking_date, field_name="booking date", provider=provider)
    if booked is None:
        raise TransactionFetchFailedError(f"{provider} returned a transaction without booking date", provider=provider)
    parsed_amount = parse_provider_amount(amount, field_name="amount", provider=provider)
    if parsed_amount is None:
        raise TransactionFetchFailedError(f"{provider} returned a transaction without amount", provider=provider)

    external_id = str(transaction_id).strip() if transaction_id not in (None, "") else ""
    if not external_id:
        external_id = derive_transaction_id(
            iban, booked, parsed_amount, currency, description, end_to_end_id
        )

    valued = parse_provider_date(value_date, field_name="value date", provider=provider)
    parsed_balance = parse_provider_amount(balance, field_name="balance", provider=provider)
    try:
        return NormalizedTransaction(
            external_transaction_id=external_id,
            booking_date=booked,
            value_date=valued,
            amount=parsed_amount,
            currency=currency,
            description=description,
            creditor_name=creditor_name,
            debtor_name=debtor_name,
            remittance_info=remittance_info,
            purpose_code=purpose_code,
            end_to_end_id=end_to_end_id,
            balance=parsed_balance,
            raw=dict(raw),
        )
    except ValidationError as exc:
        fields = ", ".join(".".join(str(loc) for loc in err["loc"]) for err in exc.errors())
        raise TransactionFetchFailedError(
            f"{provider} returned a malformed transaction {external_id}: invalid {fields}", provider=provider
        ) from exc


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def map_berlin_group_transaction(raw: Mapping[str, Any], *, provider: str, iban: str) -> NormalizedTransaction:
    """Map a Berlin Group (NextGenPSD2) booked transaction."""
    amount_info = _as_mapping(raw.get("transactionAmount"))
    balance_info = _as_mapping(_as_mapping(raw.get("balanceAfterTransaction")).get("balanceAmount"))
    remittance = raw.get("remittanceInformationUnstructured")
    return build_normalized_transaction(
        provider=provider,
        iban=iban,
        raw=raw,
        transaction_id=raw.get("transactionId") or raw.get("entryReference"),
        booking_date=raw.get("bookingDate"),
        value_date=raw.get("valueDate"),
        amount=amount_info.get("amount"),
        currency=amount_info.get("currency"),
        description=remittance or raw.get("additionalInformation"),
        creditor_name=raw.get("creditorName"),
        debtor_name=raw.get("debtorName"),
        remittance_info=remittance,
        purpose_code=raw.get("purposeCode"),
        end_to_end_id=raw.get("endToEndIdentification"),
        balance=balance_info.get("amount"),
    )


class BankProviderAdapter(ABC):
    """Uniform contract over one bank API family.

    Subclasses implement authentication, account resolution and payload
    mapping; HTTP plumbing, retries and error classification live here.
    """

    name: ClassVar[str]
    display_name: ClassVar[str]
    sandbox_base_url: ClassVar[str]
    production_base_url: ClassVar[str]
    credentials_model: ClassVar[type[ProviderCredentials]]

    def __init__(
        self,
        *,
        sandbox: bool = True,
        policy: ProviderCallPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        self.sandbox = sandbox
        self.policy = policy or get_provider_policy(self.name)
        self._transport = transport
        self.timeout = timeout if timeout is not None else settings.bank_api_timeout_seconds

    @property
    def base_url(self) -> str:
        return self.sandbox_base_url if self.sandbox else self.production_base_url

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def parse_credentials(self, credentials: Mapping[str, Any] | None) -> ProviderCredentials:
        return parse_credentials(self.credentials_model, credentials, provider=self.name)

    async def authenticate(self, credentials: Mapping[str, Any] | None) -> ProviderSession:
        """Validate credentials and open an authenticated session."""
        parsed = self.parse_credentials(credentials)
        client = self._build_client(parsed)
        try:
            return await self._authenticate(client, parsed)
        except BaseException:
            await client.aclose()
            raise

    async def fetch_transactions(
        self,
        session: ProviderSession,
        iban: str,
        from_date: date,
        to_date: date,
    ) -> list[NormalizedTransaction]:
        """Resolve the IBAN at the provider and return booked transactions in the window."""
        resource_id = await self.resolve_account(session, iban)
        return await self.fetch_account_transactions(session, resource_id, iban, from_date, to_date)

    async def fetch_account_transactions(
        self,
        session: ProviderSession,
        resource_id: str,
        iban: str,
        from_date: date,
        to_date: date,
    ) -> list[NormalizedTransaction]:
        """Fetch and map booked transactions for an already resolved account."""
        raw_transactions = await self._fetch_raw_transactions(session, resource_id, from_date, to_date)
        transactions = [self.map_transaction(raw, iban) for raw in raw_transactions]
        logger.info(
            "Fetched provider transactions",
            provider=self.name,
            iban=mask_iban(iban),
            date_from=from_date.isoformat(),
            date_to=to_date.isoformat(),
            count=len(transactions),
        )
        return transactions

    async def fetch(
        self,
        credentials: Mapping[str, Any] | None,
        iban: str,
        from_date: date,
        to_date: date,
    ) -> list[NormalizedTransaction]:
        """Authenticate, fetch and always close the session."""
        session = await self.authenticate(credentials)
        try:
            return await self.fetch_transactions(session, iban, from_date, to_date)
        finally:
            await session.aclose()

    async def resolve_account(self, session: ProviderSession, iban: str) -> str:
        """Return the provider resource id for ``iban``."""
        payload = await self._list_accounts(session, iban)
        accounts = payload.get("accounts") if isinstance(payload, Mapping) else None
        wanted = normalize_iban(iban)
        for account in accounts or []:
            if isinstance(account, Mapping) and normalize_iban(account.get("iban")) == wanted:
                resource_id = account.get(self.resource_id_field)
                if resource_id:
                    return str(resource_id)
        raise AccountNotFoundError(
            f"IBAN {mask_iban(iban)} not found at {self.display_name}", provider=self.name
        )

    # ------------------------------------------------------------------
    # Provider hooks
    # ------------------------------------------------------------------

    resource_id_field: ClassVar[str] = "resourceId"

    @abstractmethod
    async def _authenticate(self, client: httpx.AsyncClient, credentials: ProviderCredentials) -> ProviderSession:
        """Perform the provider handshake on ``client``."""

    @abstractmethod
    async def _list_accounts(self, session: ProviderSession, iban: str) -> Any:
        """Return the provider's account list payload."""

    @abstractmethod
    async def _fetch_raw_transactions(
        self,
        session: ProviderSession,
        resource_id: str,
        from_date: date,
        to_date: date,
    ) -> list[Mapping[str, Any]]:
        """Return raw booked transaction dicts for the window."""

    @abstractmethod
    def map_transaction(self, raw: Mapping[str, Any], iban: str) -> NormalizedTransaction:
        """Map one native transaction to NormalizedTransaction."""

    def _client_options(self, credentials: ProviderCredentials) -> dict[str, Any]:
        """Extra httpx.AsyncClient options (e.g. mutual TLS)."""
        return {}

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _build_client(self, credentials: ProviderCredentials) -> httpx.AsyncClient:
        options: dict[str, Any] = {}
        if self._transport is not None:
            options["transport"] = self._transport
        else:
            options.update(self._client_options(credentials))
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout, connect=min(10.0, self.timeout)),
            **options,
        )

    async def _request(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        *,
        step: str,
        error_cls: type[BankSyncError] = TransactionFetchFailedError,
        headers: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> Any:
        """Send one request through the policy and return the decoded JSON body.

        401/403 always map to AuthenticationFailedError; any other error status
        maps to ``error_cls``.
        """
        request_headers = {
            "Accept": "application/json",
            "X-Request-ID": str(uuid4()),
            **(headers or {}),
        }

        async def send() -> httpx.Response:
            return await client.request(method, url, headers=request_headers, **kwargs)

        response = await self.policy.call(send)
        status_code = response.status_code
        if status_code in (401, 403):
            raise AuthenticationFailedError(
                f"{self.display_name} {step} rejected: HTTP {status_code}", provider=self.name
            )
        if response.is_error:
            raise error_cls(f"{self.display_name} {step} failed: HTTP {status_code}", provider=self.name)
        try:
            return response.json()
        except ValueError as exc:
            raise error_cls(
                f"{self.display_name} {step} returned a non-JSON body", provider=self.name
            ) from exc


def transaction_list(payload: Any, *path: str, provider: str) -> list[Mapping[str, Any]]:
    """Walk ``path`` into a provider payload and return the transaction dicts.

    A missing container means "no transactions"; anything of the wrong shape
    is a malformed response.
    """
    node: Any = payload
    for key in path:
        if not isinstance(node, Mapping):
            raise TransactionFetchFailedError(
                f"{provider} returned a malformed transactions payload", provider=provider
            )
        node = node.get(key)
        if node is None:
            return []
    if not isinstance(node, list) or not all(isinstance(item, Mapping) for item in node):
        raise TransactionFetchFailedError(
            f"{provider} returned a malformed transactions payload", provider=provider
        )
    return node
