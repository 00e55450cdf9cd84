"""Per-provider credential models.

The CRUD layer stores credentials as an opaque JSON blob with camelCase keys
(``clientId``, ``qsealCertificate``...). Both camelCase and snake_case keys are
accepted; unknown keys are ignored.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from bankrecon.services.banking.errors import AuthenticationFailedError


class ProviderCredentials(BaseModel):
    """Base for provider credential blobs."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    @field_validator("*", mode="before")
    @classmethod
    def _strip_strings(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value


class UniCreditCredentials(ProviderCredentials):
    client_id: str
    client_secret: str


class IntesaCredentials(ProviderCredentials):
    client_id: str
    client_secret: str
    subscription_key: str


class CbiGlobeCredentials(ProviderCredentials):
    qseal_certificate: str
    qwac_certificate: str | None = None
    qwac_private_key: str | None = None
    tpp_redirect_uri: str = "https://localhost/psd2/callback"


class NexiCredentials(ProviderCredentials):
    partner_id: str
    api_key: str


def parse_credentials(
    model: type[ProviderCredentials],
    raw: Mapping[str, Any] | None,
    *,
    provider: str,
) -> ProviderCredentials:
    """Validate a credential blob, raising AuthenticationFailedError on problems."""
    if not raw:
        raise AuthenticationFailedError(f"{provider}: no API credentials configured", provider=provider)
    try:
        credentials = model.model_validate(dict(raw))
    except ValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
        raise AuthenticationFailedError(
            f"{provider}: missing or invalid credential fields: {', '.join(fields)}",
            provider=provider,
        ) from exc

    empty = sorted(
        name
        for name, field in model.model_fields.items()
        if field.is_required() and not getattr(credentials, name)
    )
    if empty:
        raise AuthenticationFailedError(
            f"{provider}: empty credential fields: {', '.join(empty)}",
            provider=provider,
        )
    return credentials
