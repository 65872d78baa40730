"""
Address providers for ipquorum.

Each provider independently reports the address it sees for this host.

Components:
- ProviderCatalog: Registry of providers, trust weights and rate limits
- BaseProvider: Abstract capability the consensus layer depends on
- HttpProvider: Provider backed by an HTTP "what is my IP" service
"""

from ipquorum.providers.base import BaseProvider
from ipquorum.providers.catalog import (
    TRUST_HIGH,
    TRUST_LOW,
    TRUST_STANDARD,
    ProviderCatalog,
    ProviderSpec,
    normalize_provider_id,
)
from ipquorum.providers.http import (
    BUILTIN_PROVIDERS,
    HttpEndpoint,
    HttpProvider,
    ResponseFormat,
    build_http_providers,
    default_catalog,
    get_builtin,
)

__all__ = [
    # Catalog
    "ProviderCatalog",
    "ProviderSpec",
    "normalize_provider_id",
    "TRUST_LOW",
    "TRUST_STANDARD",
    "TRUST_HIGH",
    # Base
    "BaseProvider",
    # HTTP
    "HttpProvider",
    "HttpEndpoint",
    "ResponseFormat",
    "BUILTIN_PROVIDERS",
    "build_http_providers",
    "default_catalog",
    "get_builtin",
]
