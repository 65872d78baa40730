"""
ipquorum - Core Implementation

The round orchestrator: polls providers, runs consensus and publishes
the confirmed addresses, one round at a time.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional

import structlog

from ipquorum.collector import ObservationCollector
from ipquorum.config import QuorumContext
from ipquorum.consensus import ConsensusEngine
from ipquorum.models import (
    ConsensusOutcome,
    RoundDiagnostics,
    RoundResult,
    RoundStatus,
)
from ipquorum.providers import BaseProvider, build_http_providers

logger = structlog.get_logger()


class RoundOrchestrator:
    """
    Drives polling rounds and exposes the latest confirmed result.

    Rounds never overlap: a round is collected, evaluated and published
    before the next one starts, so `latest` is always a complete snapshot
    of exactly one round.

    Usage:
        orchestrator = RoundOrchestrator(build_context())
        result = await orchestrator.run_round()
        print(result.verdicts)
    """

    def __init__(
        self,
        context: QuorumContext,
        providers: Optional[Mapping[str, BaseProvider]] = None,
        collector: Optional[ObservationCollector] = None,
    ):
        self.context = context

        # Initialize providers
        if collector is not None:
            self.collector = collector
        else:
            if providers is None:
                providers = build_http_providers(context.catalog)
            self.collector = ObservationCollector(
                providers, require_public=context.require_public
            )

        # Initialize consensus engine
        self.engine = ConsensusEngine(context.catalog, context.consensus)

        self._latest: Optional[RoundResult] = None
        self._round_id = 0
        self._stop = asyncio.Event()

        logger.info(
            "Initialized round orchestrator",
            providers=len(self.collector.providers),
            poll_interval=context.poll_interval,
            round_deadline=context.round_deadline,
        )

    @property
    def latest(self) -> Optional[RoundResult]:
        """The last published round, or None before the first one."""
        return self._latest

    @property
    def rounds_completed(self) -> int:
        return self._round_id

    async def run_round(self) -> RoundResult:
        """
        Run one complete polling round.

        Returns:
            RoundResult with per-family verdicts and diagnostics
        """
        round_id = self._round_id + 1
        started_at = datetime.now(timezone.utc)

        # Pick up configuration changes made since the last round
        self.engine.config = self.context.consensus

        admitted, denied = self.context.governor.admit(
            self.context.catalog.enabled_providers()
        )
        logger.info(
            "Starting round",
            round=round_id,
            admitted=admitted,
            rate_limited=denied,
        )

        collection = await self.collector.collect(admitted, self.context.round_deadline)

        self.engine.begin_round()
        contributed: list[str] = []
        for observation in collection.observations:
            if self.engine.observe(observation):
                contributed.append(observation.provider_id)
        outcome = self.engine.evaluate()

        diagnostics = RoundDiagnostics(
            consulted=collection.consulted,
            skipped_rate_limited=denied,
            errored={o.provider_id: o.error for o in collection.errored},
            contributed=contributed,
            late_discarded=collection.late_discarded,
        )
        result = RoundResult(
            round_id=round_id,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            outcome=outcome,
            diagnostics=diagnostics,
        )

        # Publish
        self._latest = result
        self._round_id = round_id

        log = logger.warning if result.status == RoundStatus.MULTI_CONFIRMED else logger.info
        log(
            "Round completed",
            round=round_id,
            status=result.status.value,
            confirmed=_format_confirmed(outcome),
            threshold=outcome.threshold,
            errored=len(diagnostics.errored),
        )
        return result

    async def run_forever(
        self,
        stop: Optional[asyncio.Event] = None,
        on_round: Optional[Callable[[RoundResult], None]] = None,
    ) -> None:
        """
        Run rounds sequentially until stopped.

        Args:
            stop: Optional external shutdown signal; stop() also works
            on_round: Called with every published result
        """
        while not self._should_stop(stop):
            result = await self.run_round()
            if on_round is not None:
                on_round(result)
            if await self._wait_interval(stop):
                break
        logger.info("Round loop stopped", rounds=self._round_id)

    def stop(self) -> None:
        self._stop.set()

    async def close(self) -> None:
        """Clean up resources."""
        await self.collector.close()

    def _should_stop(self, stop: Optional[asyncio.Event]) -> bool:
        return self._stop.is_set() or (stop is not None and stop.is_set())

    async def _wait_interval(self, stop: Optional[asyncio.Event]) -> bool:
        """Sleep until the next round; True if a stop was requested meanwhile."""
        waiters = [asyncio.create_task(self._stop.wait())]
        if stop is not None:
            waiters.append(asyncio.create_task(stop.wait()))
        try:
            await asyncio.wait(
                waiters,
                timeout=self.context.poll_interval,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for waiter in waiters:
                waiter.cancel()
        return self._should_stop(stop)


def _format_confirmed(outcome: ConsensusOutcome) -> dict[str, list[str]]:
    return {
        family.value: [str(a) for a in addresses]
        for family, addresses in outcome.confirmed.items()
    }


# Convenience function for simple usage
async def resolve_addresses(
    context: Optional[QuorumContext] = None,
    providers: Optional[Mapping[str, BaseProvider]] = None,
) -> RoundResult:
    """
    Run a single round and return its result.

    Usage:
        result = await resolve_addresses()
        print(result.verdicts[AddressFamily.IPV4].address)
    """
    if context is None:
        from ipquorum.config import build_context
        context = build_context()

    orchestrator = RoundOrchestrator(context, providers=providers)
    try:
        return await orchestrator.run_round()
    finally:
        await orchestrator.close()
