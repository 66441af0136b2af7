"""
CrossGov Multiproof Builder

Batched inclusion proofs over a frozen artifact, in the layout the Chain B
verifier consumes: leaves in tree order, sibling proof nodes, and one flag
per hash step.

The tree is rebuilt from the artifact's frozen (voter, power) pairs only;
live vote storage is never consulted. A rebuilt tree that disagrees with
the stored leaves or root is an integrity failure, not something to repair.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..crypto.address import hex_to_bytes, to_checksum_address
from ..crypto.merkle import MerkleTree, verify_multiproof
from ..exceptions import (
    ArtifactIntegrityError,
    ArtifactNotFound,
    MultiproofLengthMismatch,
    ValidationError,
)
from ..logger import get_logger
from .freezer import leaf_hash
from .types import FrozenVoter, MerkleArtifact, Support, VoteRecord

logger = get_logger(__name__)


@dataclass(frozen=True)
class Multiproof:
    proposal_id: int
    root: str
    leaf_count: int
    voters: List[FrozenVoter]
    indices: List[int]
    leaves: List[str]
    proof: List[str]
    proof_flags: List[bool]

    @property
    def addresses(self) -> List[str]:
        return [v.voter for v in self.voters]

    def verify(self) -> bool:
        """Recompute the root locally before paying gas on Chain B."""
        return verify_multiproof(
            self.root, self.leaf_count, self.indices,
            self.leaves, self.proof, self.proof_flags,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposalId": str(self.proposal_id),
            "root": self.root,
            "voters": self.addresses,
            "indices": list(self.indices),
            "leaves": list(self.leaves),
            "proof": list(self.proof),
            "proofFlags": list(self.proof_flags),
        }


def reconcile_proof_flags(leaf_count: int, proof: Sequence, flags: Sequence[bool]) -> List[bool]:
    """
    Enforce len(flags) == leaf_count + len(proof) - 1.

    The only accepted repair: some tree libraries return no flags when the
    whole tree is proven. With more than one leaf and an empty proof, every
    step combines two known nodes, so the flags are leaf_count - 1 True.

    Raises:
        MultiproofLengthMismatch: for any other violation
    """
    flags = list(flags)
    if len(flags) == leaf_count + len(proof) - 1:
        return flags
    if not flags and not proof and leaf_count > 1:
        return [True] * (leaf_count - 1)
    raise MultiproofLengthMismatch(
        f"Invalid multiproof lengths: {len(flags)} flags for "
        f"{leaf_count} leaves and {len(proof)} proof nodes"
    )


class MultiproofBuilder:
    """Builds multiproofs for frozen artifacts held in a GovernanceStore."""

    def __init__(self, store):
        self.store = store

    @staticmethod
    def rebuild_tree(artifact: MerkleArtifact) -> MerkleTree:
        """
        Rebuild and cross-check the tree of a frozen artifact.

        Raises:
            ArtifactIntegrityError: leaves or root drifted from the frozen numbers
        """
        leaves = [leaf_hash(v.voter, v.power) for v in artifact.voters]
        if ['0x' + leaf.hex() for leaf in leaves] != list(artifact.leaves):
            raise ArtifactIntegrityError(
                f"Artifact #{artifact.proposal_id} leaves do not match its frozen voters"
            )
        tree = MerkleTree(leaves)
        if tree.root_hex != artifact.root:
            raise ArtifactIntegrityError(
                f"Artifact #{artifact.proposal_id} root {artifact.root} "
                f"does not rebuild (got {tree.root_hex})"
            )
        return tree

    @staticmethod
    def _select(artifact: MerkleArtifact, voters: Optional[Iterable[str]]) -> List[int]:
        positions = artifact.voter_index()
        if not voters:
            return list(range(len(artifact.voters)))
        indices = set()
        for voter in voters:
            address = to_checksum_address(voter)
            if address not in positions:
                raise ValidationError(f"Voter {address} is not in the frozen set")
            indices.add(positions[address])
        return sorted(indices)

    def prove_subset(self, artifact: MerkleArtifact, voters: Optional[Iterable[str]] = None) -> Multiproof:
        """
        Multiproof for `voters` (all frozen voters when empty).

        Voters and leaves come back in canonical tree order regardless of
        the order requested.
        """
        tree = self.rebuild_tree(artifact)
        indices = self._select(artifact, voters)
        proof, flags = tree.multiproof(indices)
        flags = reconcile_proof_flags(len(indices), proof, flags)

        multiproof = Multiproof(
            proposal_id=artifact.proposal_id,
            root=artifact.root,
            leaf_count=tree.leaf_count,
            voters=[artifact.voters[i] for i in indices],
            indices=indices,
            leaves=[artifact.leaves[i] for i in indices],
            proof=['0x' + node.hex() for node in proof],
            proof_flags=flags,
        )
        logger.debug(
            f"Multiproof #{artifact.proposal_id}: {len(indices)}/{tree.leaf_count} leaves, "
            f"{len(proof)} proof nodes, {len(flags)} flags"
        )
        return multiproof

    async def prove(self, proposal_id: int, voters: Optional[Iterable[str]] = None) -> Multiproof:
        artifact = await self.store.get_artifact(proposal_id)
        if artifact is None:
            raise ArtifactNotFound(f"No merkle artifact found for proposal #{proposal_id}. Freeze first.")
        return self.prove_subset(artifact, voters)


VoteTuple = Tuple[int, bool, str, int, int, int, bool, bytes]


def batch_calldata(multiproof: Multiproof, records: Mapping[str, VoteRecord]) -> List[VoteTuple]:
    """
    `batchVerifyAndTally` vote tuples in multiproof order:
    (proposalId, support, voter, power, nonce, deadline, abstain, signature).

    Args:
        records: Stored votes keyed by checksummed voter

    Raises:
        ValidationError: a vote is missing or no longer the frozen one
    """
    votes = []
    for frozen in multiproof.voters:
        record = records.get(frozen.voter)
        if record is None:
            raise ValidationError(f"No stored vote for {frozen.voter}")
        if record.nonce != frozen.nonce or record.power != frozen.power:
            raise ValidationError(
                f"Stored vote for {frozen.voter} (nonce {record.nonce}) "
                f"differs from the frozen one (nonce {frozen.nonce})"
            )
        votes.append((
            record.proposal_id,
            record.support is Support.YES,
            record.voter,
            record.power,
            record.nonce,
            record.deadline,
            record.support is Support.ABSTAIN,
            hex_to_bytes(record.signature),
        ))
    return votes
