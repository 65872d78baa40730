"""
Base Provider - Abstract base class for all address providers.
"""

from abc import ABC, abstractmethod

import structlog

from ipquorum.errors import ProviderObservationError
from ipquorum.models import IPAddress, Observation
from ipquorum.providers.catalog import normalize_provider_id

logger = structlog.get_logger()


class BaseProvider(ABC):
    """
    Abstract base class for all address providers.

    Each provider must:
    1. Report the address it observes for this host, or fail
    2. Honour the timeout it is given
    3. Be independent (no shared state with other providers)

    The consensus engine only ever sees the Observation returned by
    query(); how a provider talks to its service is its own business.
    """

    def __init__(self, provider_id: str, name: str | None = None):
        self.provider_id = normalize_provider_id(provider_id)
        self.name = name or provider_id

    @abstractmethod
    async def fetch(self, timeout: float) -> IPAddress:
        """
        Ask the service for the caller's address.

        Args:
            timeout: Seconds left before the round deadline

        Returns:
            The reported address

        Raises:
            ProviderObservationError: the service could not give an answer
        """
        pass

    async def query(self, timeout: float) -> Observation:
        """Run fetch() and fold a provider error into an Observation."""
        try:
            address = await self.fetch(timeout)
        except ProviderObservationError as e:
            logger.debug(
                "Provider query failed",
                provider=self.provider_id,
                error=e.kind.value,
                detail=str(e),
            )
            return Observation.failure(self.provider_id, e.kind, str(e))
        return Observation.success(self.provider_id, address)

    async def close(self) -> None:
        """Release any resources held by the provider."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.provider_id!r})"
