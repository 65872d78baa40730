"""
Consensus Engine

Turns one round of provider observations into per-family verdicts using
trust-weighted voting with a distinct-provider floor.
"""

from typing import Iterable, Optional, Sequence

from pydantic import BaseModel, Field, field_validator
import structlog

from ipquorum.errors import ConfigurationError, InvalidThreshold, NoProvidersEnabled
from ipquorum.models import (
    AddressFamily,
    CandidateAddress,
    CandidateStatus,
    ConsensusOutcome,
    FamilyVerdict,
    Observation,
    VerdictKind,
)
from ipquorum.providers.catalog import ProviderCatalog, normalize_provider_id

logger = structlog.get_logger()


REASON_BELOW_THRESHOLD = "below_threshold"
REASON_INSUFFICIENT_PROVIDERS = "insufficient_providers"
REASON_NO_PROVIDERS = "no_enabled_providers"

# Rounds a retained report keeps counting, the round it was made included
DEFAULT_RETAIN_ROUNDS = 3


def default_threshold(weights: Sequence[int]) -> int:
    """
    Default confirmation threshold for a set of enabled trust weights.

    A single provider must confirm with its full weight. With more than
    one provider the threshold is two thirds of the total weight, rounded
    up so that a bare two-thirds fraction is never enough.
    """
    if not weights:
        raise ValueError("confirmation threshold is undefined without providers")
    total = sum(weights)
    if len(weights) == 1:
        return total
    return -(-2 * total // 3)


def min_contributors_for(threshold: int, weights: Sequence[int]) -> Optional[int]:
    """Fewest providers whose combined weight reaches the threshold, None if unreachable."""
    running = 0
    for count, weight in enumerate(sorted(weights, reverse=True), start=1):
        running += weight
        if running >= threshold:
            return count
    return None


class ConsensusConfig(BaseModel):
    """Configuration for consensus calculation."""

    # Explicit threshold; None computes the default over enabled providers
    threshold: Optional[int] = Field(default=None)

    # Distinct providers required regardless of score
    min_providers: int = Field(default=1)

    # Carry unconfirmed candidates into the next round
    retain_candidates: bool = Field(default=False)

    # How many rounds a retained report keeps counting
    retain_rounds: int = Field(default=DEFAULT_RETAIN_ROUNDS)

    @field_validator("threshold", mode="before")
    @classmethod
    def _check_threshold(cls, value: object) -> object:
        if value is None:
            return value
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise InvalidThreshold(f"must be a positive integer, got {value!r}")
        return value

    @field_validator("min_providers", mode="before")
    @classmethod
    def _check_min_providers(cls, value: object) -> object:
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise InvalidThreshold(
                f"must be a positive integer, got {value!r}", setting="min_providers"
            )
        return value

    @field_validator("retain_rounds", mode="before")
    @classmethod
    def _check_retain_rounds(cls, value: object) -> object:
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ConfigurationError(
                f"must be a positive integer, got {value!r}", setting="retain_rounds"
            )
        return value


def validate_consensus_config(config: ConsensusConfig, catalog: ProviderCatalog) -> None:
    """
    Check a configuration against the currently enabled providers.

    Raises:
        NoProvidersEnabled: nothing left to poll
        InvalidThreshold: no address could ever be confirmed
    """
    weights = catalog.enabled_weights()
    if not weights:
        raise NoProvidersEnabled()

    if config.min_providers > len(weights):
        raise InvalidThreshold(
            f"{config.min_providers} distinct providers required "
            f"but only {len(weights)} enabled",
            setting="min_providers",
        )

    threshold = config.threshold if config.threshold is not None else default_threshold(weights)
    needed = min_contributors_for(threshold, weights)
    if needed is None:
        raise InvalidThreshold(
            f"{threshold} exceeds the total enabled trust weight of {sum(weights)}"
        )

    if needed < config.min_providers:
        logger.warning(
            "Threshold reachable by fewer providers than required",
            threshold=threshold,
            reachable_with=needed,
            min_providers=config.min_providers,
        )


class ConsensusEngine:
    """
    Trust-weighted consensus engine for address observations.

    Each round starts with begin_round(), accepts observations through
    observe() and closes with evaluate(). An address is confirmed when
    the summed trust weight of the distinct providers reporting it
    reaches the threshold and at least min_providers of them agree.
    """

    def __init__(
        self,
        catalog: ProviderCatalog,
        config: Optional[ConsensusConfig] = None,
    ):
        self.catalog = catalog
        self.config = config or ConsensusConfig()
        validate_consensus_config(self.config, catalog)

        self._arena: dict[tuple[AddressFamily, str], CandidateAddress] = {}
        # candidate key -> provider id -> round of its latest report
        self._reported: dict[tuple[AddressFamily, str], dict[str, int]] = {}
        self._open = False
        self.rounds = 0

        logger.info(
            "Initialized consensus engine",
            threshold=self.threshold(),
            threshold_source="override" if self.config.threshold is not None else "default",
            min_providers=self.config.min_providers,
            retain_candidates=self.config.retain_candidates,
            retain_rounds=self.config.retain_rounds,
        )

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def candidates(self) -> list[CandidateAddress]:
        return list(self._arena.values())

    def threshold(self) -> Optional[int]:
        """Threshold in effect right now, reflecting current overrides."""
        if self.config.threshold is not None:
            return self.config.threshold
        weights = self.catalog.enabled_weights()
        if not weights:
            return None
        return default_threshold(weights)

    def begin_round(self) -> None:
        """
        Open a round, starting from an empty or carried-over arena.

        With retain_candidates, unconfirmed candidates carry over, but each
        provider's report only counts for retain_rounds rounds. A candidate
        left without live reports is dropped.
        """
        self.rounds += 1
        if self.config.retain_candidates:
            oldest = self.rounds - self.config.retain_rounds
            retained: dict[tuple[AddressFamily, str], CandidateAddress] = {}
            expired = 0
            for key, candidate in self._arena.items():
                if candidate.status == CandidateStatus.CONFIRMED:
                    continue
                reported = self._reported.get(key, {})
                for provider_id in list(candidate.contributors):
                    if reported.get(provider_id, 0) <= oldest:
                        del candidate.contributors[provider_id]
                        reported.pop(provider_id, None)
                if not candidate.contributors:
                    expired += 1
                    continue
                candidate.status = CandidateStatus.PENDING
                candidate.reason = None
                retained[key] = candidate
            self._arena = retained
            self._reported = {key: self._reported.get(key, {}) for key in retained}
            if expired:
                logger.debug("Expired retained candidates", round=self.rounds, expired=expired)
        else:
            self._arena = {}
            self._reported = {}
        self._open = True
        logger.debug("Round opened", round=self.rounds, carried=len(self._arena))

    def observe(self, observation: Observation) -> bool:
        """
        Merge one observation into the current round.

        Returns:
            True if the observation credited a candidate
        """
        if not self._open:
            logger.warning(
                "Discarding observation for closed round",
                provider=observation.provider_id,
            )
            return False
        if not observation.ok:
            return False

        provider_id = normalize_provider_id(observation.provider_id)
        if not self.catalog.is_enabled(provider_id):
            logger.debug("Ignoring observation from disabled provider", provider=provider_id)
            return False

        key = (observation.family, str(observation.address))
        candidate = self._arena.get(key)
        if candidate is None:
            candidate = CandidateAddress(address=observation.address, family=observation.family)
            self._arena[key] = candidate

        # a repeated report refreshes the retention window but never counts twice
        self._reported.setdefault(key, {})[provider_id] = self.rounds
        if provider_id in candidate.contributors:
            return False
        candidate.contributors[provider_id] = self.catalog.trust_weight(provider_id)
        return True

    def evaluate(self) -> ConsensusOutcome:
        """
        Close the round and decide every pending candidate.

        Returns:
            ConsensusOutcome with a verdict for each address family
        """
        self._open = False
        threshold = self.threshold()
        min_providers = max(self.config.min_providers, 1)

        for candidate in self._arena.values():
            self._refresh(candidate)
            if candidate.status != CandidateStatus.PENDING:
                continue
            if threshold is None:
                self._reject(candidate, REASON_NO_PROVIDERS)
            elif candidate.score < threshold:
                self._reject(candidate, REASON_BELOW_THRESHOLD)
            elif len(candidate.contributors) < min_providers:
                # enough weight, too few voices
                self._reject(candidate, REASON_INSUFFICIENT_PROVIDERS)
            else:
                candidate.status = CandidateStatus.CONFIRMED

        verdicts = {family: self._verdict(family) for family in AddressFamily}

        logger.info(
            "Vote results",
            round=self.rounds,
            threshold=threshold,
            candidates={str(c.address): c.score for c in self._arena.values()},
            verdicts={family.value: v.kind.value for family, v in verdicts.items()},
        )
        for verdict in verdicts.values():
            if verdict.kind == VerdictKind.MULTI_CONFIRMED:
                logger.warning(
                    "Multiple addresses confirmed in one family",
                    family=verdict.family.value,
                    addresses=[str(a) for a in verdict.addresses],
                )

        return ConsensusOutcome(
            threshold=threshold,
            min_providers=min_providers,
            candidates=[c.model_copy(deep=True) for c in self._arena.values()],
            verdicts=verdicts,
        )

    def calculate(self, observations: Iterable[Observation]) -> ConsensusOutcome:
        """
        Run a complete round over already collected observations.

        Args:
            observations: Every observation of the round

        Returns:
            ConsensusOutcome with per-family verdicts
        """
        self.begin_round()
        for observation in observations:
            self.observe(observation)
        return self.evaluate()

    def _refresh(self, candidate: CandidateAddress) -> None:
        """Re-read contributor weights; disabled providers no longer count."""
        for provider_id in list(candidate.contributors):
            if self.catalog.is_enabled(provider_id):
                candidate.contributors[provider_id] = self.catalog.trust_weight(provider_id)
            else:
                del candidate.contributors[provider_id]

    def _reject(self, candidate: CandidateAddress, reason: str) -> None:
        candidate.status = CandidateStatus.REJECTED
        candidate.reason = reason

    def _verdict(self, family: AddressFamily) -> FamilyVerdict:
        confirmed = sorted(
            (
                c for c in self._arena.values()
                if c.family == family and c.status == CandidateStatus.CONFIRMED
            ),
            key=lambda c: (-c.score, c.address),
        )
        if not confirmed:
            kind = VerdictKind.INCONCLUSIVE
        elif len(confirmed) == 1:
            kind = VerdictKind.CONFIRMED
        else:
            kind = VerdictKind.MULTI_CONFIRMED
        return FamilyVerdict(family=family, kind=kind, addresses=[c.address for c in confirmed])
