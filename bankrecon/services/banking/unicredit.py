"""UniCredit Open Banking adapter (OAuth2 client credentials, Berlin Group payloads)."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from typing import Any

import httpx

from bankrecon.logger import log_external_api
from bankrecon.schemas.banking import NormalizedTransaction
from bankrecon.services.banking.base import (
    BankProviderAdapter,
    ProviderSession,
    map_berlin_group_transaction,
    transaction_list,
)
from bankrecon.services.banking.credentials import ProviderCredentials, UniCreditCredentials
from bankrecon.services.banking.errors import AuthenticationFailedError


class OAuthClientCredentialsAdapter(BankProviderAdapter):
    """Shared flow for banks using client-credentials tokens and Berlin Group accounts."""

    token_path: str = "/oauth2/token"
    token_scope: str = ""

    def _static_headers(self, credentials: Any) -> dict[str, str]:
        """Headers sent on every call, including the token request."""
        return {}

    async def _authenticate(self, client: httpx.AsyncClient, credentials: ProviderCredentials) -> ProviderSession:
        static_headers = self._static_headers(credentials)
        payload = await self._request(
            client,
            "POST",
            self.token_path,
            step="authentication",
            error_cls=AuthenticationFailedError,
            headers=static_headers,
            auth=httpx.BasicAuth(credentials.client_id, credentials.client_secret),  # type: ignore[attr-defined]
            data={"grant_type": "client_credentials", "scope": self.token_scope},
        )
        token = payload.get("access_token") if isinstance(payload, Mapping) else None
        if not token:
            raise AuthenticationFailedError(
                f"{self.display_name} token response did not contain an access token", provider=self.name
            )
        return ProviderSession(
            provider=self.name,
            client=client,
            headers={**static_headers, "Authorization": f"Bearer {token}"},
        )

    async def _list_accounts(self, session: ProviderSession, iban: str) -> Any:
        return await self._request(
            session.client,
            "GET",
            "/accounts",
            step="account lookup",
            headers=session.headers,
        )

    async def _fetch_raw_transactions(
        self,
        session: ProviderSession,
        resource_id: str,
        from_date: date,
        to_date: date,
    ) -> list[Mapping[str, Any]]:
        payload = await self._request(
            session.client,
            "GET",
            f"/accounts/{resource_id}/transactions",
            step="transaction fetch",
            headers=session.headers,
            params={"dateFrom": from_date.isoformat(), "dateTo": to_date.isoformat()},
        )
        return transaction_list(payload, "transactions", "booked", provider=self.name)

    def map_transaction(self, raw: Mapping[str, Any], iban: str) -> NormalizedTransaction:
        return map_berlin_group_transaction(raw, provider=self.name, iban=iban)


class UniCreditAdapter(OAuthClientCredentialsAdapter):
    name = "unicredit"
    display_name = "UniCredit"
    sandbox_base_url = "https://api-sandbox.unicredit.eu/open-banking/v1"
    production_base_url = "https://api.unicredit.eu/open-banking/v1"
    credentials_model = UniCreditCredentials
    token_scope = "AIS:UNICR:read"

    @log_external_api("unicredit")
    async def authenticate(self, credentials: Mapping[str, Any] | None) -> ProviderSession:
        return await super().authenticate(credentials)

    @log_external_api("unicredit")
    async def fetch_transactions(
        self,
        session: ProviderSession,
        iban: str,
        from_date: date,
        to_date: date,
    ) -> list[NormalizedTransaction]:
        return await super().fetch_transactions(session, iban, from_date, to_date)
