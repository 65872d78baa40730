"""
Pytest fixtures for ipquorum tests.
"""

import asyncio
from ipaddress import ip_address
from typing import Optional

import pytest
import structlog

from ipquorum.config import QuorumContext
from ipquorum.errors import ProviderObservationError
from ipquorum.governor import RateGovernor
from ipquorum.models import Observation
from ipquorum.providers import BaseProvider, ProviderCatalog, ProviderSpec


class FakeProvider(BaseProvider):
    """Provider answering with a canned address or error, optionally after a delay."""

    def __init__(
        self,
        provider_id: str,
        address: Optional[str] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        super().__init__(provider_id)
        self.address = address
        self.error = error
        self.delay = delay
        self.calls = 0
        self.finished = 0
        self.closed = False

    async def fetch(self, timeout: float):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        self.finished += 1
        if self.error is not None:
            raise self.error
        if self.address is None:
            raise ProviderObservationError("no answer configured")
        return ip_address(self.address)

    async def close(self) -> None:
        self.closed = True


def observe(provider_id: str, address: str) -> Observation:
    """Successful observation shorthand."""
    return Observation.success(provider_id, ip_address(address))


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo any logging setup a CLI test installed."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def catalog():
    """Catalog with A=1, B=2, C=3, all enabled."""
    return ProviderCatalog(
        [
            ProviderSpec(id="A", trust_weight=1),
            ProviderSpec(id="B", trust_weight=2),
            ProviderSpec(id="C", trust_weight=3),
        ]
    )


@pytest.fixture
def context(catalog):
    """Context over the A/B/C catalog with a short round deadline."""
    return QuorumContext(
        catalog=catalog,
        governor=RateGovernor(),
        poll_interval=60,
        round_deadline=0.5,
    )


@pytest.fixture
def agreeing_providers():
    """A, B and C all reporting 10.0.0.1."""
    return {
        "a": FakeProvider("A", "10.0.0.1"),
        "b": FakeProvider("B", "10.0.0.1"),
        "c": FakeProvider("C", "10.0.0.1"),
    }
