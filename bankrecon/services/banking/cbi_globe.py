"""CBI Globe adapter (certificate based, consent driven)."""

from __future__ import annotations

import os
import ssl
import tempfile
from collections.abc import Mapping
from datetime import date, timedelta
from typing import Any

import httpx

from bankrecon.logger import get_logger, log_external_api, mask_iban
from bankrecon.schemas.banking import NormalizedTransaction
from bankrecon.services.banking.base import (
    BankProviderAdapter,
    ProviderSession,
    map_berlin_group_transaction,
    transaction_list,
)
from bankrecon.services.banking.credentials import CbiGlobeCredentials
from bankrecon.services.banking.errors import AuthenticationFailedError

logger = get_logger(__name__)

CONSENT_FREQUENCY_PER_DAY = 4
CONSENT_VALIDITY = timedelta(days=1)


def build_mtls_context(certificate_pem: str, private_key_pem: str) -> ssl.SSLContext:
    """Build a client TLS context from in-memory PEM strings.

    ``ssl`` only loads certificate chains from files, so the PEMs are written
    to a private temporary file that is removed right after loading.
    """
    context = ssl.create_default_context()
    fd, path = tempfile.mkstemp(suffix=".pem")
    try:
        with os.fdopen(fd, "w") as handle:
            handle.write(certificate_pem.strip() + "\n")
            handle.write(private_key_pem.strip() + "\n")
        context.load_cert_chain(certfile=path)
    except (ssl.SSLError, OSError) as exc:
        raise AuthenticationFailedError(
            f"CBI Globe QWAC certificate could not be loaded: {exc}", provider="cbi_globe"
        ) from exc
    finally:
        os.unlink(path)
    return context


class CbiGlobeAdapter(BankProviderAdapter):
    name = "cbi_globe"
    display_name = "CBI Globe"
    sandbox_base_url = "https://bperlu.psd2-sandbox.eu"
    production_base_url = "https://www.cbiglobe.com/api/psd2/v1"
    credentials_model = CbiGlobeCredentials

    def _client_options(self, credentials: CbiGlobeCredentials) -> dict[str, Any]:
        if credentials.qwac_certificate and credentials.qwac_private_key:
            return {"verify": build_mtls_context(credentials.qwac_certificate, credentials.qwac_private_key)}
        return {}

    @log_external_api("cbi_globe")
    async def authenticate(self, credentials: Mapping[str, Any] | None) -> ProviderSession:
        return await super().authenticate(credentials)

    async def _authenticate(self, client: httpx.AsyncClient, credentials: CbiGlobeCredentials) -> ProviderSession:
        if not (credentials.qwac_certificate and credentials.qwac_private_key):
            if not self.sandbox:
                raise AuthenticationFailedError(
                    "CBI Globe production access requires a QWAC certificate and private key",
                    provider=self.name,
                )
            logger.warning("CBI Globe sandbox session without mutual TLS", provider=self.name)
        # The QSeal certificate travels as a single-line header value
        signature_certificate = "".join(credentials.qseal_certificate.splitlines())
        return ProviderSession(
            provider=self.name,
            client=client,
            headers={
                "TPP-Signature-Certificate": signature_certificate,
                "TPP-Redirect-URI": credentials.tpp_redirect_uri,
            },
        )

    async def _create_consent(self, session: ProviderSession, iban: str) -> str:
        """Request account information consent for a single IBAN."""
        reference = [{"iban": iban}]
        payload = await self._request(
            session.client,
            "POST",
            "/consents",
            step="consent request",
            error_cls=AuthenticationFailedError,
            headers=session.headers,
            json={
                "access": {"accounts": reference, "balances": reference, "transactions": reference},
                "recurringIndicator": False,
                "validUntil": (date.today() + CONSENT_VALIDITY).isoformat(),
                "frequencyPerDay": CONSENT_FREQUENCY_PER_DAY,
            },
        )
        consent_id = payload.get("consentId") if isinstance(payload, Mapping) else None
        if not consent_id:
            raise AuthenticationFailedError("CBI Globe consent response did not contain a consent id", provider=self.name)
        logger.info("CBI Globe consent obtained", iban=mask_iban(iban))
        return str(consent_id)

    async def _list_accounts(self, session: ProviderSession, iban: str) -> Any:
        if session.consent_id is None:
            session.consent_id = await self._create_consent(session, iban)
            session.headers["Consent-ID"] = session.consent_id
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

    @log_external_api("cbi_globe")
    async def fetch_transactions(
        self,
        session: ProviderSession,
        iban: str,
        from_date: date,
        to_date: date,
    ) -> list[NormalizedTransaction]:
        return await super().fetch_transactions(session, iban, from_date, to_date)
