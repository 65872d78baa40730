"""
Rate Governor - per-provider admission gate.

Admits at most one query per provider per configured interval. A denied
provider is simply skipped for the round; denial is not an error.
"""

import threading
import time
from typing import Callable, Iterable, Optional

import structlog

from ipquorum.providers.catalog import ProviderSpec, normalize_provider_id

logger = structlog.get_logger()


class RateGovernor:
    """Tracks the last admitted query time of every provider."""

    def __init__(
        self,
        bypass: bool = False,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._bypass = bypass
        self._clock = clock or time.monotonic
        self._last_query: dict[str, float] = {}
        self._lock = threading.Lock()

    @property
    def bypass(self) -> bool:
        return self._bypass

    @bypass.setter
    def bypass(self, value: bool) -> None:
        self._bypass = bool(value)
        logger.info("Rate limit bypass set", bypass=self._bypass)

    def try_acquire(
        self,
        provider_id: str,
        interval: Optional[float],
        now: Optional[float] = None,
    ) -> bool:
        """
        Admit a query for the provider if its interval has elapsed.

        Args:
            provider_id: Provider to admit
            interval: Minimum seconds between queries, None for unlimited
            now: Current monotonic time (defaults to the governor's clock)

        Returns:
            True if admitted; the admission time is then recorded
        """
        key = normalize_provider_id(provider_id)
        with self._lock:
            now = self._clock() if now is None else now
            last = self._last_query.get(key)
            admitted = (
                self._bypass
                or interval is None
                or last is None
                or now - last >= interval
            )
            if admitted:
                self._last_query[key] = now
        if not admitted:
            logger.debug(
                "Provider rate limited",
                provider=key,
                retry_in=round(interval - (now - last), 2),
            )
        return admitted

    def admit(
        self,
        specs: Iterable[ProviderSpec],
        now: Optional[float] = None,
    ) -> tuple[list[str], list[str]]:
        """Split providers into (admitted, denied) ids for one round."""
        admitted: list[str] = []
        denied: list[str] = []
        for spec in specs:
            if self.try_acquire(spec.id, spec.rate_limit, now=now):
                admitted.append(spec.id)
            else:
                denied.append(spec.id)
        return admitted, denied

    def last_query(self, provider_id: str) -> Optional[float]:
        return self._last_query.get(normalize_provider_id(provider_id))

    def reset(self, provider_id: Optional[str] = None) -> None:
        with self._lock:
            if provider_id is None:
                self._last_query.clear()
            else:
                self._last_query.pop(normalize_provider_id(provider_id), None)
