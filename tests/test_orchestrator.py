"""
Tests for the Round Orchestrator.
"""

import asyncio

import pytest

from conftest import FakeProvider
from ipquorum.core import RoundOrchestrator, resolve_addresses
from ipquorum.errors import InvalidThreshold, ProviderTimeout
from ipquorum.models import AddressFamily, ErrorKind, RoundStatus, VerdictKind
from ipquorum.providers import ProviderCatalog, ProviderSpec


class TestRoundOrchestrator:
    """Tests for RoundOrchestrator."""

    @pytest.mark.asyncio
    async def test_confirmed_round(self, context, agreeing_providers):
        orchestrator = RoundOrchestrator(context, providers=agreeing_providers)
        assert orchestrator.latest is None

        result = await orchestrator.run_round()

        assert result.round_id == 1
        assert result.status == RoundStatus.CONFIRMED
        assert str(result.verdicts[AddressFamily.IPV4].address) == "10.0.0.1"
        assert result.diagnostics.contributed == ["a", "b", "c"]
        assert orchestrator.latest is result
        assert result.completed_at >= result.started_at

    @pytest.mark.asyncio
    async def test_diagnostics(self, context):
        context.catalog.register(ProviderSpec(id="D", rate_limit=60.0))
        context.governor.try_acquire("d", 60.0)
        providers = {
            "a": FakeProvider("A", error=ProviderTimeout()),
            "b": FakeProvider("B", "10.0.0.1"),
            "c": FakeProvider("C", "10.0.0.2"),
            "d": FakeProvider("D", "10.0.0.1"),
        }
        orchestrator = RoundOrchestrator(context, providers=providers)

        result = await orchestrator.run_round()

        diagnostics = result.diagnostics
        assert diagnostics.consulted == ["a", "b", "c"]
        assert diagnostics.skipped_rate_limited == ["d"]
        assert diagnostics.errored == {"a": ErrorKind.TIMEOUT}
        assert diagnostics.contributed == ["b", "c"]
        assert providers["d"].calls == 0
        # threshold counts the rate-limited provider's weight: ceil(2/3 * 7) = 5
        assert result.outcome.threshold == 5
        assert result.status == RoundStatus.INCONCLUSIVE

    @pytest.mark.asyncio
    async def test_late_answer_does_not_change_published_result(self, context):
        context.round_deadline = 0.1
        slow = FakeProvider("B", "10.0.0.2", delay=0.4)
        providers = {
            "a": FakeProvider("A", "10.0.0.1"),
            "b": slow,
            "c": FakeProvider("C", "10.0.0.1"),
        }
        orchestrator = RoundOrchestrator(context, providers=providers)

        result = await orchestrator.run_round()
        await asyncio.sleep(0.5)

        assert result.diagnostics.late_discarded == ["b"]
        assert orchestrator.latest is result
        assert orchestrator.latest.outcome.candidate("10.0.0.2") is None
        assert result.verdicts[AddressFamily.IPV4].kind == VerdictKind.CONFIRMED
        assert slow.finished == 0

    @pytest.mark.asyncio
    async def test_configuration_changes_apply_next_round(self, context, agreeing_providers):
        orchestrator = RoundOrchestrator(context, providers=agreeing_providers)
        await orchestrator.run_round()

        context.set_threshold_override(6)
        context.disable_provider("a")
        with pytest.raises(InvalidThreshold):
            context.validate()
        context.set_threshold_override(5)

        result = await orchestrator.run_round()

        assert result.round_id == 2
        assert result.outcome.threshold == 5
        assert result.diagnostics.consulted == ["b", "c"]
        assert result.status == RoundStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_run_forever_stops(self, context, agreeing_providers):
        context.poll_interval = 0.01
        orchestrator = RoundOrchestrator(context, providers=agreeing_providers)
        seen = []

        def on_round(result):
            seen.append(result.round_id)
            if result.round_id == 3:
                orchestrator.stop()

        await asyncio.wait_for(orchestrator.run_forever(on_round=on_round), timeout=2.0)

        assert seen == [1, 2, 3]
        assert orchestrator.rounds_completed == 3

    @pytest.mark.asyncio
    async def test_external_stop_interrupts_wait(self, context, agreeing_providers):
        orchestrator = RoundOrchestrator(context, providers=agreeing_providers)
        stop = asyncio.Event()

        task = asyncio.create_task(orchestrator.run_forever(stop=stop))
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(task, timeout=1.0)

        assert orchestrator.rounds_completed == 1

    @pytest.mark.asyncio
    async def test_close(self, context, agreeing_providers):
        orchestrator = RoundOrchestrator(context, providers=agreeing_providers)
        await orchestrator.close()
        assert all(p.closed for p in agreeing_providers.values())


class TestResolveAddresses:
    """Tests for the one-shot helper."""

    @pytest.mark.asyncio
    async def test_single_round(self, context):
        context.catalog.set_enabled("b", False)
        context.catalog.set_enabled("c", False)
        providers = {"a": FakeProvider("A", "2001:db8::5")}

        result = await resolve_addresses(context, providers=providers)

        assert result.verdicts[AddressFamily.IPV6].kind == VerdictKind.CONFIRMED
        assert result.verdicts[AddressFamily.IPV4].kind == VerdictKind.INCONCLUSIVE
        assert providers["a"].closed

    @pytest.mark.asyncio
    async def test_dual_stack_catalog(self):
        from ipquorum.config import QuorumContext

        catalog = ProviderCatalog([ProviderSpec(id="v4"), ProviderSpec(id="v6")])
        context = QuorumContext(catalog=catalog, round_deadline=1.0)
        context.set_threshold_override(1)
        providers = {
            "v4": FakeProvider("v4", "198.51.100.1"),
            "v6": FakeProvider("v6", "2001:db8::1"),
        }

        result = await resolve_addresses(context, providers=providers)

        assert result.status == RoundStatus.CONFIRMED
        assert set(result.outcome.confirmed) == {AddressFamily.IPV4, AddressFamily.IPV6}
