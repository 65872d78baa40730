"""
Tests for the Observation Collector.
"""

import asyncio

import pytest

from conftest import FakeProvider
from ipquorum.collector import ObservationCollector
from ipquorum.errors import MalformedResponse, ProviderRateLimited
from ipquorum.models import ErrorKind


class BrokenProvider(FakeProvider):
    async def fetch(self, timeout: float):
        raise RuntimeError("socket exploded")


class TestObservationCollector:
    """Tests for ObservationCollector."""

    @pytest.mark.asyncio
    async def test_one_observation_per_provider(self, agreeing_providers):
        collector = ObservationCollector(agreeing_providers)

        collection = await collector.collect(["a", "b", "c"], timeout=1.0)

        assert [o.provider_id for o in collection.observations] == ["a", "b", "c"]
        assert all(o.ok for o in collection.observations)
        assert collection.consulted == ["a", "b", "c"]
        assert collection.late_discarded == []

    @pytest.mark.asyncio
    async def test_queries_run_concurrently(self):
        providers = {
            name: FakeProvider(name, "10.0.0.1", delay=0.2) for name in ("a", "b", "c")
        }
        collector = ObservationCollector(providers)

        loop = asyncio.get_running_loop()
        started = loop.time()
        collection = await collector.collect(["a", "b", "c"], timeout=2.0)

        assert loop.time() - started < 0.5
        assert len(collection.succeeded) == 3

    @pytest.mark.asyncio
    async def test_typed_errors(self):
        providers = {
            "a": FakeProvider("a", error=MalformedResponse("garbage")),
            "b": FakeProvider("b", error=ProviderRateLimited()),
            "c": BrokenProvider("c"),
        }
        collector = ObservationCollector(providers)

        collection = await collector.collect(["a", "b", "c"], timeout=1.0)

        errors = {o.provider_id: o.error for o in collection.errored}
        assert errors == {
            "a": ErrorKind.MALFORMED_RESPONSE,
            "b": ErrorKind.RATE_LIMITED,
            "c": ErrorKind.NETWORK_ERROR,
        }

    @pytest.mark.asyncio
    async def test_missing_client(self, agreeing_providers):
        collector = ObservationCollector(agreeing_providers)

        collection = await collector.collect(["a", "ghost"], timeout=1.0)

        ghost = collection.observations[1]
        assert ghost.provider_id == "ghost"
        assert ghost.error == ErrorKind.NETWORK_ERROR

    @pytest.mark.asyncio
    async def test_late_result_is_discarded(self):
        """B is still outstanding at the deadline; its answer never reaches the round."""
        slow = FakeProvider("b", "10.0.0.2", delay=0.5)
        providers = {
            "a": FakeProvider("a", "10.0.0.1"),
            "b": slow,
            "c": FakeProvider("c", "10.0.0.1"),
        }
        collector = ObservationCollector(providers)

        collection = await collector.collect(["a", "b", "c"], timeout=0.1)

        late = collection.observations[1]
        assert late.error == ErrorKind.TIMEOUT
        assert collection.late_discarded == ["b"]

        # the cancelled query never completes
        await asyncio.sleep(0.6)
        assert slow.calls == 1
        assert slow.finished == 0
        assert [str(o.address) for o in collection.succeeded] == ["10.0.0.1", "10.0.0.1"]

    @pytest.mark.asyncio
    async def test_require_public(self):
        providers = {
            "a": FakeProvider("a", "192.168.1.10"),
            "b": FakeProvider("b", "8.8.8.8"),
        }
        collector = ObservationCollector(providers, require_public=True)

        collection = await collector.collect(["a", "b"], timeout=1.0)

        assert collection.observations[0].error == ErrorKind.MALFORMED_RESPONSE
        assert collection.observations[1].ok

    @pytest.mark.asyncio
    async def test_empty_round(self):
        collector = ObservationCollector({})
        collection = await collector.collect([], timeout=1.0)
        assert collection.observations == []

    @pytest.mark.asyncio
    async def test_close(self, agreeing_providers):
        collector = ObservationCollector(agreeing_providers)
        await collector.close()
        assert all(p.closed for p in agreeing_providers.values())
