"""Intesa Sanpaolo Open Banking adapter."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from typing import Any

from bankrecon.logger import log_external_api
from bankrecon.schemas.banking import NormalizedTransaction
from bankrecon.services.banking.base import ProviderSession
from bankrecon.services.banking.credentials import IntesaCredentials
from bankrecon.services.banking.unicredit import OAuthClientCredentialsAdapter


class IntesaAdapter(OAuthClientCredentialsAdapter):
    """Same flow as UniCredit plus an API gateway subscription key on every call."""

    name = "intesa"
    display_name = "Intesa Sanpaolo"
    sandbox_base_url = "https://api-sandbox.intesasanpaolo.com/openbanking/v1"
    production_base_url = "https://api.intesasanpaolo.com/openbanking/v1"
    credentials_model = IntesaCredentials
    token_path = "/auth/oauth/v2/token"
    token_scope = "accounts"

    def _static_headers(self, credentials: IntesaCredentials) -> dict[str, str]:
        return {"Ocp-Apim-Subscription-Key": credentials.subscription_key}

    @log_external_api("intesa")
    async def authenticate(self, credentials: Mapping[str, Any] | None) -> ProviderSession:
        return await super().authenticate(credentials)

    @log_external_api("intesa")
    async def fetch_transactions(
        self,
        session: ProviderSession,
        iban: str,
        from_date: date,
        to_date: date,
    ) -> list[NormalizedTransaction]:
        return await super().fetch_transactions(session, iban, from_date, to_date)
