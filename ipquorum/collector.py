"""
Observation Collector - fan-out/fan-in of provider queries for one round.

Issues one query per admitted provider concurrently and gathers exactly
one Observation per provider. The round closes when every query has
finished or the deadline elapses, whichever comes first; queries still
running at the deadline are cancelled and their results never read.
"""

import asyncio
from typing import Mapping, Sequence

from pydantic import BaseModel, Field
import structlog

from ipquorum.address import is_public, kind
from ipquorum.errors import ProviderObservationError
from ipquorum.models import ErrorKind, Observation
from ipquorum.providers.base import BaseProvider

logger = structlog.get_logger()


class Collection(BaseModel):
    """Raw results of one round."""

    observations: list[Observation] = Field(default_factory=list)
    consulted: list[str] = Field(default_factory=list)
    late_discarded: list[str] = Field(default_factory=list)

    @property
    def succeeded(self) -> list[Observation]:
        return [o for o in self.observations if o.ok]

    @property
    def errored(self) -> list[Observation]:
        return [o for o in self.observations if not o.ok]


class ObservationCollector:
    """
    Runs provider queries for a round under a shared deadline.

    Usage:
        collector = ObservationCollector(providers)
        collection = await collector.collect(["ipify", "httpbin"], timeout=5.0)
    """

    def __init__(
        self,
        providers: Mapping[str, BaseProvider],
        require_public: bool = False,
    ):
        self.providers = dict(providers)
        self.require_public = require_public

    async def collect(
        self,
        provider_ids: Sequence[str],
        timeout: float,
    ) -> Collection:
        """
        Query every provider once and wait for the round to close.

        Args:
            provider_ids: Admitted providers, in catalog order
            timeout: Round deadline in seconds

        Returns:
            Collection with one observation per consulted provider
        """
        collection = Collection(consulted=list(provider_ids))
        if not provider_ids:
            return collection

        tasks: dict[str, asyncio.Task] = {}
        for provider_id in provider_ids:
            provider = self.providers.get(provider_id)
            if provider is None:
                continue
            tasks[provider_id] = asyncio.create_task(
                self._query(provider, timeout),
                name=f"ipquorum-query-{provider_id}",
            )

        done: set[asyncio.Task] = set()
        if tasks:
            done, pending = await asyncio.wait(tasks.values(), timeout=timeout)
            # cancelled, not awaited: a late answer must never reach this round
            for task in pending:
                task.cancel()

        for provider_id in provider_ids:
            task = tasks.get(provider_id)
            if task is None:
                logger.warning("No client for provider", provider=provider_id)
                observation = Observation.failure(
                    provider_id, ErrorKind.NETWORK_ERROR, "no client registered"
                )
            elif task in done:
                observation = task.result()
            else:
                collection.late_discarded.append(provider_id)
                observation = Observation.failure(
                    provider_id, ErrorKind.TIMEOUT, f"round deadline of {timeout:.1f}s elapsed"
                )
            collection.observations.append(self._screen(observation))

        logger.info(
            "Round collection completed",
            consulted=len(collection.consulted),
            succeeded=len(collection.succeeded),
            errored=len(collection.errored),
            late=len(collection.late_discarded),
        )
        return collection

    async def _query(self, provider: BaseProvider, timeout: float) -> Observation:
        """Query one provider; never raises except on cancellation."""
        try:
            return await provider.query(timeout)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            logger.warning(f"Provider {provider.provider_id} timed out")
            return Observation.failure(provider.provider_id, ErrorKind.TIMEOUT, "timed out")
        except ProviderObservationError as e:
            return Observation.failure(provider.provider_id, e.kind, str(e))
        except Exception as e:
            logger.error(f"Provider {provider.provider_id} failed: {e}")
            return Observation.failure(provider.provider_id, ErrorKind.NETWORK_ERROR, str(e))

    def _screen(self, observation: Observation) -> Observation:
        if not self.require_public or not observation.ok:
            return observation
        if is_public(observation.address):
            return observation
        logger.warning(
            "Provider reported a non-public address",
            provider=observation.provider_id,
            address=str(observation.address),
            kind=kind(observation.address).value,
        )
        return Observation.failure(
            observation.provider_id,
            ErrorKind.MALFORMED_RESPONSE,
            f"non-public address {observation.address}",
        )

    async def close(self) -> None:
        for provider in self.providers.values():
            await provider.close()
