"""Provider name to adapter lookup."""

from __future__ import annotations

import httpx

from bankrecon.services.banking.base import BankProviderAdapter
from bankrecon.services.banking.cbi_globe import CbiGlobeAdapter
from bankrecon.services.banking.errors import UnsupportedProviderError
from bankrecon.services.banking.intesa import IntesaAdapter
from bankrecon.services.banking.nexi import NexiAdapter
from bankrecon.services.banking.resilience import ProviderCallPolicy
from bankrecon.services.banking.unicredit import UniCreditAdapter

PROVIDER_ADAPTERS: dict[str, type[BankProviderAdapter]] = {
    adapter.name: adapter for adapter in (UniCreditAdapter, IntesaAdapter, CbiGlobeAdapter, NexiAdapter)
}


def supported_providers() -> list[str]:
    return sorted(PROVIDER_ADAPTERS)


def get_adapter(
    provider: str | None,
    *,
    sandbox: bool = True,
    transport: httpx.AsyncBaseTransport | None = None,
    policy: ProviderCallPolicy | None = None,
) -> BankProviderAdapter:
    """Instantiate the adapter registered under ``provider``.

    Raises:
        UnsupportedProviderError: Unknown or missing provider name
    """
    key = (provider or "").strip().lower()
    adapter_cls = PROVIDER_ADAPTERS.get(key)
    if adapter_cls is None:
        raise UnsupportedProviderError(f"Unsupported bank provider: {provider!r}", provider=provider)
    return adapter_cls(sandbox=sandbox, transport=transport, policy=policy)
