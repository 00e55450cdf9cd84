"""Nexi banking adapter (API key + partner id, flat transaction list)."""

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
    build_normalized_transaction,
    transaction_list,
)
from bankrecon.services.banking.credentials import NexiCredentials
from bankrecon.services.banking.errors import AuthenticationFailedError


def _name_of(party: Any) -> Any:
    return party.get("name") if isinstance(party, Mapping) else None


class NexiAdapter(BankProviderAdapter):
    name = "nexi"
    display_name = "Nexi"
    sandbox_base_url = "https://api-sandbox.nexi.it/banking/v1"
    production_base_url = "https://api.nexi.it/banking/v1"
    credentials_model = NexiCredentials
    resource_id_field = "accountId"

    @log_external_api("nexi")
    async def authenticate(self, credentials: Mapping[str, Any] | None) -> ProviderSession:
        return await super().authenticate(credentials)

    async def _authenticate(self, client: httpx.AsyncClient, credentials: NexiCredentials) -> ProviderSession:
        static_headers = {"X-API-Key": credentials.api_key, "X-Partner-ID": credentials.partner_id}
        payload = await self._request(
            client,
            "POST",
            "/auth/token",
            step="authentication",
            error_cls=AuthenticationFailedError,
            headers=static_headers,
            json={"scope": "account_information"},
        )
        token = payload.get("access_token") if isinstance(payload, Mapping) else None
        if not token:
            raise AuthenticationFailedError("Nexi token response did not contain an access token", provider=self.name)
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
            params={"iban": iban},
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
            params={"from": from_date.isoformat(), "to": to_date.isoformat()},
        )
        return transaction_list(payload, "transactions", provider=self.name)

    def map_transaction(self, raw: Mapping[str, Any], iban: str) -> NormalizedTransaction:
        return build_normalized_transaction(
            provider=self.name,
            iban=iban,
            raw=raw,
            transaction_id=raw.get("transactionId"),
            booking_date=raw.get("executionDate"),
            value_date=raw.get("valueDate"),
            amount=raw.get("amount"),
            currency=raw.get("currency"),
            description=raw.get("description") or raw.get("narrative"),
            creditor_name=_name_of(raw.get("beneficiary")),
            debtor_name=_name_of(raw.get("remitter")),
            remittance_info=raw.get("remittanceInformation"),
            end_to_end_id=raw.get("endToEndId"),
        )

    @log_external_api("nexi")
    async def fetch_transactions(
        self,
        session: ProviderSession,
        iban: str,
        from_date: date,
        to_date: date,
    ) -> list[NormalizedTransaction]:
        return await super().fetch_transactions(session, iban, from_date, to_date)
