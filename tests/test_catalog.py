"""
Tests for the Provider Catalog.
"""

import pytest

from ipquorum.errors import DuplicateProvider, InvalidTrustWeight, UnknownProvider
from ipquorum.providers import (
    TRUST_HIGH,
    TRUST_LOW,
    ProviderCatalog,
    ProviderSpec,
    default_catalog,
)


class TestProviderSpec:
    """Tests for catalog entries."""

    def test_id_is_normalized(self):
        spec = ProviderSpec(id="  IPify ")
        assert spec.id == "ipify"
        assert spec.name == "ipify"
        assert spec.trust_weight == TRUST_LOW
        assert spec.rate_limit is None

    @pytest.mark.parametrize("value", [0, 4, -1, True, 2.0])
    def test_invalid_trust_weight(self, value):
        with pytest.raises(InvalidTrustWeight) as exc:
            ProviderSpec(id="bad", trust_weight=value)
        assert exc.value.provider == "bad"
        assert exc.value.setting == "trust"


class TestProviderCatalog:
    """Tests for ProviderCatalog."""

    def test_registration_order_is_kept(self, catalog):
        assert [spec.id for spec in catalog] == ["a", "b", "c"]
        assert catalog.enabled_weights() == [1, 2, 3]
        assert len(catalog) == 3

    def test_duplicate_provider(self, catalog):
        with pytest.raises(DuplicateProvider):
            catalog.register(ProviderSpec(id="a"))

    def test_lookup_is_case_insensitive(self, catalog):
        assert "A" in catalog
        assert " c " in catalog
        assert "d" not in catalog
        assert catalog.get("B").trust_weight == 2

    def test_set_enabled(self, catalog):
        catalog.set_enabled("B", False)

        assert [spec.id for spec in catalog.enabled_providers()] == ["a", "c"]
        assert catalog.is_enabled("b") is False

        catalog.set_enabled("b", True)
        assert catalog.is_enabled("B") is True

    def test_set_enabled_unknown(self, catalog):
        with pytest.raises(UnknownProvider):
            catalog.set_enabled("nope", False)

    @pytest.mark.parametrize("value", [1, 2, 3])
    def test_trust_weight_in_range(self, catalog, value):
        catalog.set_trust_weight("A", value)
        assert catalog.trust_weight("a") == value

    @pytest.mark.parametrize("value", [0, 4, -1])
    def test_trust_weight_out_of_range(self, catalog, value):
        with pytest.raises(InvalidTrustWeight):
            catalog.set_trust_weight("A", value)
        assert catalog.trust_weight("a") == 1

    def test_describe(self, catalog):
        catalog.set_trust_weight("a", TRUST_HIGH)
        catalog.set_enabled("c", False)

        infos = {info.id: info for info in catalog.describe()}

        assert infos["a"].trust_weight == 3
        assert infos["c"].enabled is False
        assert infos["b"].rate_limit_seconds is None

    def test_default_catalogs_are_independent(self):
        """No process-wide registry: each catalog is its own object."""
        first = default_catalog()
        second = default_catalog()

        first.set_enabled("httpbin", False)

        assert second.is_enabled("httpbin") is True
        assert first.get("ipinfo").rate_limit == 60.0
