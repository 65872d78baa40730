"""
Data models for ipquorum.

These models define the records passed between the provider layer,
the consensus engine and the round orchestrator.
"""

from datetime import datetime, timezone
from enum import Enum
from ipaddress import IPv4Address, IPv6Address
from typing import Optional, Union

from pydantic import BaseModel, Field, IPvAnyAddress, model_validator


IPAddress = Union[IPv4Address, IPv6Address]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AddressFamily(str, Enum):
    """Address families, each an independent consensus track."""
    IPV4 = "ipv4"
    IPV6 = "ipv6"


class AddressKind(str, Enum):
    """Classification of an address against the special-purpose registries."""
    LOOPBACK = "loopback"
    PRIVATE = "private"
    PUBLIC = "public"
    MULTICAST = "multicast"
    RESERVED = "reserved"


class ErrorKind(str, Enum):
    """Reasons a provider produced no address in a round."""
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    MALFORMED_RESPONSE = "malformed_response"
    RATE_LIMITED = "rate_limited"


class Observation(BaseModel):
    """One provider's answer for one round."""

    provider_id: str = Field(..., description="Normalized provider id")
    address: Optional[IPvAnyAddress] = Field(None, description="Reported address")
    error: Optional[ErrorKind] = Field(None, description="Error kind, if the query failed")
    detail: str = Field(default="", description="Human readable error detail")
    timestamp: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _exactly_one_outcome(self) -> "Observation":
        if (self.address is None) == (self.error is None):
            raise ValueError("observation needs either an address or an error, not both")
        return self

    @classmethod
    def success(cls, provider_id: str, address: IPAddress) -> "Observation":
        return cls(provider_id=provider_id, address=address)

    @classmethod
    def failure(cls, provider_id: str, error: ErrorKind, detail: str = "") -> "Observation":
        return cls(provider_id=provider_id, error=error, detail=detail)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def family(self) -> Optional[AddressFamily]:
        if self.address is None:
            return None
        return AddressFamily.IPV4 if self.address.version == 4 else AddressFamily.IPV6


class CandidateStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class CandidateAddress(BaseModel):
    """An address reported at least once in the current round."""

    address: IPvAnyAddress
    family: AddressFamily
    # provider id -> trust weight, in order of first report
    contributors: dict[str, int] = Field(default_factory=dict)
    status: CandidateStatus = Field(default=CandidateStatus.PENDING)
    reason: Optional[str] = Field(None, description="Why the candidate was rejected")

    @property
    def score(self) -> int:
        return sum(self.contributors.values())

    @property
    def key(self) -> tuple[AddressFamily, str]:
        return (self.family, str(self.address))


class VerdictKind(str, Enum):
    CONFIRMED = "confirmed"
    INCONCLUSIVE = "inconclusive"
    MULTI_CONFIRMED = "multi_confirmed"


class FamilyVerdict(BaseModel):
    """Round outcome for one address family."""

    family: AddressFamily
    kind: VerdictKind = Field(default=VerdictKind.INCONCLUSIVE)
    addresses: list[IPvAnyAddress] = Field(default_factory=list)

    @property
    def address(self) -> Optional[IPAddress]:
        if self.kind == VerdictKind.CONFIRMED:
            return self.addresses[0]
        return None


class RoundStatus(str, Enum):
    """Aggregate status of a round across families."""
    CONFIRMED = "confirmed"
    INCONCLUSIVE = "inconclusive"
    MULTI_CONFIRMED = "multi_confirmed"


class ConsensusOutcome(BaseModel):
    """Result of evaluating one round of observations."""

    threshold: Optional[int] = Field(None, description="Confirmation threshold in effect")
    min_providers: int = Field(default=1)
    candidates: list[CandidateAddress] = Field(default_factory=list)
    verdicts: dict[AddressFamily, FamilyVerdict] = Field(default_factory=dict)

    @property
    def confirmed(self) -> dict[AddressFamily, list[IPAddress]]:
        return {
            family: list(verdict.addresses)
            for family, verdict in self.verdicts.items()
            if verdict.kind != VerdictKind.INCONCLUSIVE
        }

    @property
    def status(self) -> RoundStatus:
        kinds = {verdict.kind for verdict in self.verdicts.values()}
        if VerdictKind.MULTI_CONFIRMED in kinds:
            return RoundStatus.MULTI_CONFIRMED
        if VerdictKind.CONFIRMED in kinds:
            return RoundStatus.CONFIRMED
        return RoundStatus.INCONCLUSIVE

    def candidate(self, address: str) -> Optional[CandidateAddress]:
        for candidate in self.candidates:
            if str(candidate.address) == address:
                return candidate
        return None


class RoundDiagnostics(BaseModel):
    """Who took part in a round and how."""

    consulted: list[str] = Field(default_factory=list)
    skipped_rate_limited: list[str] = Field(default_factory=list)
    errored: dict[str, ErrorKind] = Field(default_factory=dict)
    contributed: list[str] = Field(default_factory=list)
    late_discarded: list[str] = Field(default_factory=list)


class RoundResult(BaseModel):
    """Complete, published result of one polling round."""

    round_id: int
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = Field(None)
    outcome: ConsensusOutcome
    diagnostics: RoundDiagnostics = Field(default_factory=RoundDiagnostics)

    @property
    def status(self) -> RoundStatus:
        return self.outcome.status

    @property
    def verdicts(self) -> dict[AddressFamily, FamilyVerdict]:
        return self.outcome.verdicts


class ProviderInfo(BaseModel):
    """Introspection record for one catalog entry."""

    id: str
    name: str
    trust_weight: int
    rate_limit_seconds: Optional[float] = Field(None, description="None means unlimited")
    enabled: bool
