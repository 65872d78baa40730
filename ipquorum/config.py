"""
Configuration for ipquorum.

QuorumSettings collects the external configuration surface (flags and
environment variables); QuorumContext is the single object built from it
and handed to the engine, collector and orchestrator.
"""

import math
import os
import re
from typing import Iterable, Optional

from pydantic import BaseModel, Field
import structlog

from ipquorum.consensus.engine import (
    DEFAULT_RETAIN_ROUNDS,
    ConsensusConfig,
    validate_consensus_config,
)
from ipquorum.errors import ConfigurationError, InvalidTrustWeight, UnknownProvider
from ipquorum.governor import RateGovernor
from ipquorum.models import ProviderInfo
from ipquorum.providers.catalog import ProviderCatalog, normalize_provider_id
from ipquorum.providers.http import default_catalog

logger = structlog.get_logger()


ENV_PREFIX = "IPQUORUM_"

DEFAULT_POLL_INTERVAL = 300.0
DEFAULT_ROUND_DEADLINE = 10.0

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str | float | int, setting: str = "duration") -> float:
    """
    Parse "250ms", "30s", "5m", "1h30m" or a bare number of seconds.

    Raises:
        ConfigurationError: the value is not a positive duration
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
    else:
        text = str(value).strip().lower().replace(" ", "")
        try:
            seconds = float(text)
        except ValueError:
            parts = _DURATION_PART.findall(text)
            if not parts or "".join(n + u for n, u in parts) != text:
                raise ConfigurationError(f"cannot parse duration {value!r}", setting=setting) from None
            seconds = sum(float(n) * _DURATION_UNITS[u] for n, u in parts)
    if not (0 < seconds < math.inf):
        raise ConfigurationError(f"must be a positive duration, got {value!r}", setting=setting)
    return seconds


def parse_trust_overrides(items: Iterable[str]) -> dict[str, int]:
    """Parse ["ipify=3", "httpbin=1"] into {"ipify": 3, "httpbin": 1}."""
    overrides: dict[str, int] = {}
    for item in items:
        name, sep, raw = item.partition("=")
        name = normalize_provider_id(name)
        if not sep or not name:
            raise ConfigurationError(f"expected NAME=VALUE, got {item!r}", setting="trust")
        try:
            overrides[name] = int(raw.strip())
        except ValueError:
            raise InvalidTrustWeight(name, raw.strip()) from None
    return overrides


def split_list(items: str | Iterable[str] | None) -> list[str]:
    """
    Split comma or whitespace separated names.

    Accepts one raw string (an environment variable) or several (repeated
    command line options), so "a,b" and ["a", "b"] give the same list.
    """
    if not items:
        return []
    if isinstance(items, str):
        items = [items]
    return [part for item in items for part in re.split(r"[,\s]+", item) if part]


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _parse_int(raw: str, setting: str) -> int:
    try:
        return int(raw.strip())
    except ValueError:
        raise ConfigurationError(f"expected an integer, got {raw!r}", setting=setting) from None


class QuorumSettings(BaseModel):
    """External configuration surface."""

    # Provider selection
    disabled: list[str] = Field(default_factory=list, description="Providers to disable")
    trust: dict[str, int] = Field(default_factory=dict, description="Trust weight overrides")

    # Consensus
    threshold: Optional[int] = Field(None, description="Confirmation threshold override")
    min_providers: int = Field(default=1, description="Distinct providers required")
    retain_candidates: bool = Field(default=False)
    retain_rounds: int = Field(
        default=DEFAULT_RETAIN_ROUNDS, description="Rounds a retained report keeps counting"
    )

    # Polling
    bypass_rate_limits: bool = Field(default=False)
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, description="Seconds between rounds")
    round_deadline: float = Field(default=DEFAULT_ROUND_DEADLINE, description="Seconds per round")
    require_public: bool = Field(default=False, description="Reject non-public addresses")

    log_level: str = Field(default="INFO")

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> "QuorumSettings":
        """Build settings from IPQUORUM_* environment variables."""

        def env(name: str) -> Optional[str]:
            value = os.getenv(prefix + name)
            return value if value not in (None, "") else None

        values: dict = {}
        if (raw := env("DISABLE")) is not None:
            values["disabled"] = split_list(raw)
        if (raw := env("TRUST")) is not None:
            values["trust"] = parse_trust_overrides(split_list(raw))
        if (raw := env("THRESHOLD")) is not None:
            values["threshold"] = _parse_int(raw, "threshold")
        if (raw := env("MIN_PROVIDERS")) is not None:
            values["min_providers"] = _parse_int(raw, "min_providers")
        if (raw := env("RETAIN_CANDIDATES")) is not None:
            values["retain_candidates"] = _parse_bool(raw)
        if (raw := env("RETAIN_ROUNDS")) is not None:
            values["retain_rounds"] = _parse_int(raw, "retain_rounds")
        if (raw := env("BYPASS_RATE_LIMITS")) is not None:
            values["bypass_rate_limits"] = _parse_bool(raw)
        if (raw := env("INTERVAL")) is not None:
            values["poll_interval"] = parse_duration(raw, "interval")
        if (raw := env("DEADLINE")) is not None:
            values["round_deadline"] = parse_duration(raw, "deadline")
        if (raw := env("PUBLIC_ONLY")) is not None:
            values["require_public"] = _parse_bool(raw)
        if (raw := env("LOG_LEVEL")) is not None:
            values["log_level"] = raw.upper()
        return cls(**values)


class QuorumContext:
    """
    Everything a polling round needs, built once at startup.

    Usage:
        context = build_context(QuorumSettings(disabled=["httpbin"]))
        context.set_trust_factor("ipify", 3)
        context.validate()
    """

    def __init__(
        self,
        catalog: Optional[ProviderCatalog] = None,
        consensus: Optional[ConsensusConfig] = None,
        governor: Optional[RateGovernor] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        round_deadline: float = DEFAULT_ROUND_DEADLINE,
        require_public: bool = False,
    ):
        self.catalog = catalog if catalog is not None else default_catalog()
        self.consensus = consensus or ConsensusConfig()
        self.governor = governor or RateGovernor()
        self._poll_interval = parse_duration(poll_interval, "interval")
        self._round_deadline = parse_duration(round_deadline, "deadline")
        self.require_public = require_public

    # --- Configuration surface ---

    def disable_provider(self, name: str) -> None:
        if name not in self.catalog:
            raise UnknownProvider(name, setting="disable")
        self.catalog.set_enabled(name, False)

    def enable_provider(self, name: str) -> None:
        self.catalog.set_enabled(name, True)

    def set_trust_factor(self, name: str, value: int) -> None:
        if name not in self.catalog:
            raise UnknownProvider(name, setting="trust")
        self.catalog.set_trust_weight(name, value)

    def set_threshold_override(self, value: Optional[int]) -> None:
        self.consensus = self.consensus.model_copy(
            update={"threshold": ConsensusConfig(threshold=value).threshold}
        )

    def set_min_provider_count(self, count: int) -> None:
        self.consensus = self.consensus.model_copy(
            update={"min_providers": ConsensusConfig(min_providers=count).min_providers}
        )

    def set_retain_candidates(self, retain: bool) -> None:
        self.consensus = self.consensus.model_copy(update={"retain_candidates": bool(retain)})

    def set_retain_rounds(self, rounds: int) -> None:
        self.consensus = self.consensus.model_copy(
            update={"retain_rounds": ConsensusConfig(retain_rounds=rounds).retain_rounds}
        )

    def bypass_rate_limits(self, bypass: bool) -> None:
        self.governor.bypass = bypass

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    @poll_interval.setter
    def poll_interval(self, value: str | float) -> None:
        self._poll_interval = parse_duration(value, "interval")

    @property
    def round_deadline(self) -> float:
        return self._round_deadline

    @round_deadline.setter
    def round_deadline(self, value: str | float) -> None:
        self._round_deadline = parse_duration(value, "deadline")

    # --- Introspection ---

    def providers(self) -> list[ProviderInfo]:
        return self.catalog.describe()

    def validate(self) -> None:
        """Raise a ConfigurationError if no address could ever be confirmed."""
        validate_consensus_config(self.consensus, self.catalog)


def build_context(
    settings: Optional[QuorumSettings] = None,
    catalog: Optional[ProviderCatalog] = None,
) -> QuorumContext:
    """
    Apply settings to a fresh context and validate it.

    Args:
        settings: Configuration surface values (defaults if omitted)
        catalog: Provider catalog (the built-in catalog if omitted)

    Returns:
        A validated QuorumContext

    Raises:
        ConfigurationError: naming the offending setting
    """
    settings = settings or QuorumSettings()
    context = QuorumContext(
        catalog=catalog,
        poll_interval=settings.poll_interval,
        round_deadline=settings.round_deadline,
        require_public=settings.require_public,
    )

    for name in settings.disabled:
        context.disable_provider(name)
    for name, value in settings.trust.items():
        context.set_trust_factor(name, value)

    context.set_threshold_override(settings.threshold)
    context.set_min_provider_count(settings.min_providers)
    context.set_retain_candidates(settings.retain_candidates)
    context.set_retain_rounds(settings.retain_rounds)
    context.bypass_rate_limits(settings.bypass_rate_limits)
    context.validate()

    logger.info(
        "Configuration loaded",
        enabled=[spec.id for spec in context.catalog.enabled_providers()],
        threshold=settings.threshold,
        min_providers=settings.min_providers,
        bypass_rate_limits=settings.bypass_rate_limits,
    )
    return context

