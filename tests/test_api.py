"""
Tests for the status API.
"""

import time

from fastapi.testclient import TestClient

from conftest import FakeProvider
from ipquorum.api.server import create_app
from ipquorum.core import RoundOrchestrator


def wait_for_round(client: TestClient, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if client.get("/health").json()["rounds_completed"] > 0:
            return
        time.sleep(0.01)
    raise AssertionError("no round completed in time")


class TestStatusAPI:
    """Tests for the FastAPI status service."""

    def test_no_result_before_first_round(self, context, agreeing_providers):
        app = create_app(RoundOrchestrator(context, providers=agreeing_providers), poll=False)

        with TestClient(app) as client:
            health = client.get("/health")
            assert health.status_code == 200
            assert health.json()["rounds_completed"] == 0
            assert health.json()["polling"] is False

            assert client.get("/result").status_code == 404
            assert client.get("/result/ipv4").status_code == 404

    def test_background_rounds(self, context, agreeing_providers):
        app = create_app(RoundOrchestrator(context, providers=agreeing_providers))

        with TestClient(app) as client:
            wait_for_round(client)

            result = client.get("/result")
            assert result.status_code == 200
            body = result.json()
            assert body["round_id"] >= 1
            assert body["outcome"]["verdicts"]["ipv4"]["kind"] == "confirmed"
            assert body["diagnostics"]["contributed"] == ["a", "b", "c"]

            verdict = client.get("/result/ipv4").json()
            assert verdict == {"family": "ipv4", "kind": "confirmed", "addresses": ["10.0.0.1"]}

            assert client.get("/result/ipv6").json()["kind"] == "inconclusive"
            assert client.get("/result/ipv5").status_code == 422

        # shutdown stops the loop and closes the providers
        assert all(p.closed for p in agreeing_providers.values())

    def test_providers(self, context):
        context.disable_provider("b")
        providers = {"a": FakeProvider("a", "10.0.0.1"), "c": FakeProvider("c", "10.0.0.1")}
        app = create_app(RoundOrchestrator(context, providers=providers), poll=False)

        with TestClient(app) as client:
            infos = {info["id"]: info for info in client.get("/providers").json()}

        assert infos["b"]["enabled"] is False
        assert infos["c"]["trust_weight"] == 3
        assert set(infos) == {"a", "b", "c"}
