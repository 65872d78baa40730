"""
Provider Catalog - registry of known address providers.

Holds each provider's identity, trust weight, rate-limit interval and
enabled flag. A catalog is an explicit object owned by the configuration
context; there is no module-level registry.
"""

from typing import Iterator, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator
import structlog

from ipquorum.errors import DuplicateProvider, InvalidTrustWeight, UnknownProvider
from ipquorum.models import ProviderInfo

logger = structlog.get_logger()


TRUST_LOW = 1        # new or unknown providers
TRUST_STANDARD = 2
TRUST_HIGH = 3       # reserved, use sparingly

TRUST_WEIGHTS = (TRUST_LOW, TRUST_STANDARD, TRUST_HIGH)


def normalize_provider_id(name: str) -> str:
    """Canonical form used at registration and at every lookup."""
    return name.strip().lower()


def is_valid_trust_weight(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value in TRUST_WEIGHTS


class ProviderSpec(BaseModel):
    """Catalog entry for a single provider."""

    id: str = Field(..., description="Unique provider id (normalized)")
    name: str = Field(default="", description="Human readable name")
    trust_weight: int = Field(default=TRUST_LOW, description="Trust weight, 1 to 3")
    rate_limit: Optional[float] = Field(
        default=None, ge=0.0, description="Minimum seconds between queries, None = unlimited"
    )
    enabled: bool = Field(default=True)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        value = normalize_provider_id(value)
        if not value:
            raise ValueError("provider id must not be empty")
        return value

    @field_validator("trust_weight", mode="before")
    @classmethod
    def _check_trust_weight(cls, value: object, info: ValidationInfo) -> object:
        # not clamped: out-of-range weights are a configuration error
        if not is_valid_trust_weight(value):
            raise InvalidTrustWeight(info.data.get("id", "?"), value)
        return value

    def model_post_init(self, __context) -> None:
        if not self.name:
            self.name = self.id


class ProviderCatalog:
    """
    Ordered registry of providers.

    Registration order is preserved so threshold computation and
    introspection are deterministic.
    """

    def __init__(self, providers: Optional[list[ProviderSpec]] = None):
        self._providers: dict[str, ProviderSpec] = {}
        for spec in providers or []:
            self.register(spec)

    def register(self, spec: ProviderSpec) -> ProviderSpec:
        if spec.id in self._providers:
            raise DuplicateProvider(spec.id)
        self._providers[spec.id] = spec
        logger.debug(
            "Registered provider",
            provider=spec.id,
            trust_weight=spec.trust_weight,
            rate_limit=spec.rate_limit,
        )
        return spec

    def get(self, name: str) -> ProviderSpec:
        provider_id = normalize_provider_id(name)
        try:
            return self._providers[provider_id]
        except KeyError:
            raise UnknownProvider(name) from None

    def set_trust_weight(self, name: str, value: int) -> None:
        spec = self.get(name)
        if not is_valid_trust_weight(value):
            raise InvalidTrustWeight(spec.id, value)
        spec.trust_weight = value
        logger.info("Trust weight overridden", provider=spec.id, trust_weight=value)

    def set_enabled(self, name: str, enabled: bool) -> None:
        spec = self.get(name)
        spec.enabled = enabled
        logger.info("Provider toggled", provider=spec.id, enabled=enabled)

    def trust_weight(self, name: str) -> int:
        return self.get(name).trust_weight

    def is_enabled(self, name: str) -> bool:
        provider_id = normalize_provider_id(name)
        spec = self._providers.get(provider_id)
        return spec is not None and spec.enabled

    def enabled_providers(self) -> list[ProviderSpec]:
        return [spec for spec in self._providers.values() if spec.enabled]

    def enabled_weights(self) -> list[int]:
        return [spec.trust_weight for spec in self.enabled_providers()]

    def describe(self) -> list[ProviderInfo]:
        return [
            ProviderInfo(
                id=spec.id,
                name=spec.name,
                trust_weight=spec.trust_weight,
                rate_limit_seconds=spec.rate_limit,
                enabled=spec.enabled,
            )
            for spec in self._providers.values()
        ]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_provider_id(name) in self._providers

    def __iter__(self) -> Iterator[ProviderSpec]:
        return iter(list(self._providers.values()))

    def __len__(self) -> int:
        return len(self._providers)
