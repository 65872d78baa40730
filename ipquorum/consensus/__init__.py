"""
Consensus Engine for ipquorum.

Reconciles provider observations using trust-weighted voting.

Components:
- ConsensusEngine: Per-round candidate arena and evaluation
- ConsensusConfig: Threshold override, provider floor, retention
"""

from ipquorum.consensus.engine import (
    ConsensusConfig,
    ConsensusEngine,
    default_threshold,
    min_contributors_for,
    validate_consensus_config,
)

__all__ = [
    "ConsensusEngine",
    "ConsensusConfig",
    "default_threshold",
    "min_contributors_for",
    "validate_consensus_config",
]
