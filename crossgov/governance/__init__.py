"""
CrossGov Governance Pipeline

Provides:
  - types: proposal, vote and artifact data structures
  - power: PowerOracle and the voting-power formula
  - ledger: VoteLedger (signed vote intake, highest-nonce dedup)
  - freezer: MerkleFreezer and the leaf encoding
  - multiproof: MultiproofBuilder and batch calldata
"""

from .types import (
    FrozenVoter,
    MerkleArtifact,
    ProposalRecord,
    ProposalSnapshot,
    SubmitResult,
    SubmitStatus,
    Support,
    Tally,
    VoteRecord,
    VoteSubmission,
    VotingWindow,
)
from .power import PowerOracle, compute_voting_power
from .ledger import VoteLedger
from .freezer import MerkleFreezer, build_artifact, dedup_latest, leaf_hash
from .multiproof import Multiproof, MultiproofBuilder, batch_calldata, reconcile_proof_flags

__all__ = [
    # Types
    "FrozenVoter",
    "MerkleArtifact",
    "ProposalRecord",
    "ProposalSnapshot",
    "SubmitResult",
    "SubmitStatus",
    "Support",
    "Tally",
    "VoteRecord",
    "VoteSubmission",
    "VotingWindow",
    # Power
    "PowerOracle",
    "compute_voting_power",
    # Ledger
    "VoteLedger",
    # Freezer
    "MerkleFreezer",
    "build_artifact",
    "dedup_latest",
    "leaf_hash",
    # Multiproof
    "Multiproof",
    "MultiproofBuilder",
    "batch_calldata",
    "reconcile_proof_flags",
]
