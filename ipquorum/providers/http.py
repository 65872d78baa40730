"""
HTTP Providers - "what is my IP" services queried over HTTPS.

Each built-in service is described declaratively (URL, response format,
default trust weight and rate limit); one HttpProvider instance serves
any of them. All are free and need no API key.
"""

import json
from enum import Enum
from typing import Optional

import httpx
from pydantic import BaseModel, Field
import structlog

from ipquorum.address import parse_address
from ipquorum.errors import (
    MalformedResponse,
    ProviderNetworkError,
    ProviderRateLimited,
    ProviderTimeout,
)
from ipquorum.models import IPAddress
from ipquorum.providers.base import BaseProvider
from ipquorum.providers.catalog import (
    TRUST_LOW,
    TRUST_STANDARD,
    ProviderCatalog,
    ProviderSpec,
)

logger = structlog.get_logger()

USER_AGENT = "ipquorum/0.1"


class ResponseFormat(str, Enum):
    """How a service encodes the address in its response body."""
    PLAIN = "plain"            # body is the address
    JSON = "json"              # {"<field>": "<address>"}
    KEY_VALUE = "key_value"    # "<field>=<address>" lines


class HttpEndpoint(BaseModel):
    """Declarative description of an HTTP address service."""

    id: str
    name: str
    url: str
    method: str = Field(default="GET")
    format: ResponseFormat = Field(default=ResponseFormat.PLAIN)
    field: Optional[str] = Field(None, description="JSON field or key holding the address")
    trust_weight: int = Field(default=TRUST_LOW)
    rate_limit: Optional[float] = Field(None, description="Seconds between queries")

    def to_spec(self) -> ProviderSpec:
        return ProviderSpec(
            id=self.id,
            name=self.name,
            trust_weight=self.trust_weight,
            rate_limit=self.rate_limit,
        )


BUILTIN_PROVIDERS: list[HttpEndpoint] = [
    HttpEndpoint(
        id="httpbin",
        name="httpbin.org",
        url="https://httpbin.org/ip",
        format=ResponseFormat.JSON,
        field="origin",
    ),
    HttpEndpoint(
        id="ipify",
        name="ipify.org",
        url="https://api64.ipify.org?format=json",
        format=ResponseFormat.JSON,
        field="ip",
        trust_weight=TRUST_STANDARD,
    ),
    HttpEndpoint(
        id="icanhazip",
        name="icanhazip.com",
        url="https://icanhazip.com",
    ),
    HttpEndpoint(
        id="ifconfig.me",
        name="ifconfig.me",
        url="https://ifconfig.me/ip",
    ),
    HttpEndpoint(
        id="ipinfo",
        name="ipinfo.io",
        url="https://ipinfo.io/ip",
        rate_limit=60.0,
    ),
    HttpEndpoint(
        id="amazonaws",
        name="checkip.amazonaws.com",
        url="https://checkip.amazonaws.com",
        trust_weight=TRUST_STANDARD,
    ),
    HttpEndpoint(
        id="cloudflare",
        name="Cloudflare trace",
        url="https://1.1.1.1/cdn-cgi/trace",
        format=ResponseFormat.KEY_VALUE,
        field="ip",
        trust_weight=TRUST_STANDARD,
    ),
]

_BUILTIN_BY_ID = {endpoint.id: endpoint for endpoint in BUILTIN_PROVIDERS}


# --- Decoders ---

def decode_plain(body: str) -> IPAddress:
    return parse_address(body)


def decode_json_field(body: str, field: str) -> IPAddress:
    try:
        data = json.loads(body)
    except ValueError as e:
        raise MalformedResponse(f"cannot decode JSON response: {body[:64]!r}") from e
    if not isinstance(data, dict) or not isinstance(data.get(field), str):
        raise MalformedResponse(f"JSON response has no {field!r} string")
    # httpbin lists every hop when proxied; the first one is the client
    return parse_address(data[field].split(",")[0])


def decode_key_value(body: str, key: str) -> IPAddress:
    for line in body.splitlines():
        name, sep, value = line.partition("=")
        if sep and name.strip() == key:
            return parse_address(value)
    raise MalformedResponse(f"response has no {key!r} entry")


def decode(endpoint: HttpEndpoint, body: str) -> IPAddress:
    if endpoint.format == ResponseFormat.JSON:
        return decode_json_field(body, endpoint.field or "ip")
    if endpoint.format == ResponseFormat.KEY_VALUE:
        return decode_key_value(body, endpoint.field or "ip")
    return decode_plain(body)


class HttpProvider(BaseProvider):
    """
    Provider backed by an HTTP "what is my IP" endpoint.

    Usage:
        provider = HttpProvider(get_builtin("ipify"))
        observation = await provider.query(timeout=5.0)
        await provider.close()
    """

    def __init__(
        self,
        endpoint: HttpEndpoint,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(endpoint.id, endpoint.name)
        self.endpoint = endpoint
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )

    async def fetch(self, timeout: float) -> IPAddress:
        try:
            response = await self.client.request(
                self.endpoint.method,
                self.endpoint.url,
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"no response within {timeout:.1f}s") from e
        except httpx.HTTPError as e:
            raise ProviderNetworkError(str(e) or type(e).__name__) from e

        if response.status_code == 429:
            raise ProviderRateLimited(f"{self.endpoint.name} answered HTTP 429")
        if response.is_error:
            raise ProviderNetworkError(f"{self.endpoint.name} answered HTTP {response.status_code}")

        address = decode(self.endpoint, response.text)
        logger.debug("Provider answered", provider=self.provider_id, address=str(address))
        return address

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()


def get_builtin(provider_id: str) -> Optional[HttpEndpoint]:
    return _BUILTIN_BY_ID.get(provider_id.strip().lower())


def default_catalog() -> ProviderCatalog:
    """Fresh catalog holding every built-in provider, all enabled."""
    return ProviderCatalog([endpoint.to_spec() for endpoint in BUILTIN_PROVIDERS])


def build_http_providers(
    catalog: ProviderCatalog,
    client: Optional[httpx.AsyncClient] = None,
) -> dict[str, BaseProvider]:
    """Create an HttpProvider for every catalog entry with a built-in endpoint."""
    providers: dict[str, BaseProvider] = {}
    for spec in catalog:
        endpoint = get_builtin(spec.id)
        if endpoint is None:
            logger.warning("No HTTP endpoint for provider", provider=spec.id)
            continue
        providers[spec.id] = HttpProvider(endpoint, client=client)
    return providers
