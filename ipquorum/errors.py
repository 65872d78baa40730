"""
Error taxonomy for ipquorum.

Configuration errors are fatal and raised at setup time only.
Provider observation errors are recovered per provider, per round,
and never surface as a round failure.
"""

from typing import Optional

from ipquorum.models import ErrorKind


class IpQuorumError(Exception):
    """Base class for all ipquorum errors."""


# ============================================================================
# Configuration errors
# ============================================================================

class ConfigurationError(IpQuorumError):
    """Invalid configuration; the process must not proceed to polling."""

    def __init__(self, message: str, setting: Optional[str] = None):
        self.setting = setting
        self.message = message
        super().__init__(f"{setting}: {message}" if setting else message)


class InvalidTrustWeight(ConfigurationError):
    def __init__(self, provider: str, value: object):
        self.provider = provider
        self.value = value
        super().__init__(
            f"trust weight for {provider!r} must be 1, 2 or 3, got {value!r}",
            setting="trust",
        )


class InvalidThreshold(ConfigurationError):
    def __init__(self, message: str, setting: str = "threshold"):
        super().__init__(message, setting=setting)


class DuplicateProvider(ConfigurationError):
    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"provider {provider!r} is already registered", setting="providers")


class UnknownProvider(ConfigurationError):
    def __init__(self, provider: str, setting: str = "providers"):
        self.provider = provider
        super().__init__(f"unknown provider {provider!r}", setting=setting)


class NoProvidersEnabled(ConfigurationError):
    def __init__(self):
        super().__init__("at least one provider must stay enabled", setting="disable")


# ============================================================================
# Provider observation errors
# ============================================================================

class ProviderObservationError(IpQuorumError):
    """A single provider failed to report an address for this round."""

    kind: ErrorKind = ErrorKind.NETWORK_ERROR

    def __init__(self, message: str = "", kind: Optional[ErrorKind] = None):
        if kind is not None:
            self.kind = kind
        super().__init__(message or self.kind.value)


class ProviderTimeout(ProviderObservationError):
    kind = ErrorKind.TIMEOUT


class ProviderNetworkError(ProviderObservationError):
    kind = ErrorKind.NETWORK_ERROR


class MalformedResponse(ProviderObservationError):
    kind = ErrorKind.MALFORMED_RESPONSE


class ProviderRateLimited(ProviderObservationError):
    kind = ErrorKind.RATE_LIMITED
