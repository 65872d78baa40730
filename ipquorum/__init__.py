"""
ipquorum

Determines this host's external IP address by polling several independent
"what is my IP" services and reconciling their answers with trust-weighted
consensus.

Components:
- RoundOrchestrator: Polling rounds and the latest confirmed result
- ConsensusEngine: Trust-weighted voting over provider observations
- ProviderCatalog: Providers, trust weights and rate limits
- RateGovernor: Per-provider query admission
- ObservationCollector: Concurrent provider queries under a round deadline
"""

from ipquorum.collector import Collection, ObservationCollector
from ipquorum.config import QuorumContext, QuorumSettings, build_context
from ipquorum.consensus import ConsensusConfig, ConsensusEngine, default_threshold
from ipquorum.core import RoundOrchestrator, resolve_addresses
from ipquorum.errors import (
    ConfigurationError,
    InvalidThreshold,
    InvalidTrustWeight,
    IpQuorumError,
    NoProvidersEnabled,
    UnknownProvider,
)
from ipquorum.governor import RateGovernor
from ipquorum.models import (
    AddressFamily,
    CandidateAddress,
    ConsensusOutcome,
    ErrorKind,
    FamilyVerdict,
    Observation,
    RoundResult,
    RoundStatus,
    VerdictKind,
)
from ipquorum.providers import BaseProvider, HttpProvider, ProviderCatalog, ProviderSpec

__version__ = "0.1.0"
__all__ = [
    # Core
    "RoundOrchestrator",
    "resolve_addresses",
    # Configuration
    "QuorumContext",
    "QuorumSettings",
    "build_context",
    # Consensus
    "ConsensusEngine",
    "ConsensusConfig",
    "default_threshold",
    # Providers
    "ProviderCatalog",
    "ProviderSpec",
    "BaseProvider",
    "HttpProvider",
    "RateGovernor",
    "ObservationCollector",
    "Collection",
    # Models
    "AddressFamily",
    "CandidateAddress",
    "ConsensusOutcome",
    "ErrorKind",
    "FamilyVerdict",
    "Observation",
    "RoundResult",
    "RoundStatus",
    "VerdictKind",
    # Errors
    "IpQuorumError",
    "ConfigurationError",
    "InvalidTrustWeight",
    "InvalidThreshold",
    "NoProvidersEnabled",
    "UnknownProvider",
]
