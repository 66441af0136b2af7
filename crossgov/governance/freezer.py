"""
CrossGov Merkle Freezer

Turns the stored votes of a proposal into an immutable MerkleArtifact:

    votes → dedup (highest nonce per voter) → sort by address
          → leaf = keccak256(abi.encode(address voter, uint256 power))
          → ordered-pair Merkle tree → root + tallies

`build_artifact` is pure: the same vote set always yields the same root,
whatever order the votes were stored in.
"""

import asyncio
import time
from typing import Callable, Dict, Iterable, List

from eth_abi import encode as abi_encode

from ..crypto.address import address_sort_key, to_checksum_address
from ..crypto.hashing import keccak256
from ..crypto.merkle import MerkleTree
from ..exceptions import ArtifactNotFound, FreezeConflict, ValidationError
from ..logger import get_logger
from .types import FrozenVoter, MerkleArtifact, Tally, VoteRecord

logger = get_logger(__name__)


FREEZE_POLICY_LIVE = "live"
FREEZE_POLICY_ONE_SHOT = "one-shot"
FREEZE_POLICIES = (FREEZE_POLICY_LIVE, FREEZE_POLICY_ONE_SHOT)


def leaf_hash(voter: str, power: int) -> bytes:
    """keccak256(abi.encode(address, uint256)), as recomputed on Chain B."""
    return keccak256(abi_encode(["address", "uint256"], [to_checksum_address(voter), power]))


def dedup_latest(records: Iterable[VoteRecord]) -> List[VoteRecord]:
    """Keep the highest-nonce vote per voter."""
    latest: Dict[str, VoteRecord] = {}
    for record in records:
        voter = to_checksum_address(record.voter)
        current = latest.get(voter)
        if current is None or record.nonce > current.nonce:
            latest[voter] = record
    return list(latest.values())


def build_artifact(proposal_id: int, records: Iterable[VoteRecord], frozen_at: int = 0) -> MerkleArtifact:
    """
    Deterministic artifact for a vote set.

    Raises:
        ValidationError: if there are no votes
    """
    unique = dedup_latest(records)
    if not unique:
        raise ValidationError("No votes recorded")
    unique.sort(key=lambda r: address_sort_key(r.voter))

    voters = [
        FrozenVoter(
            voter=to_checksum_address(r.voter),
            power=r.power,
            support=r.support,
            nonce=r.nonce,
        )
        for r in unique
    ]
    leaves = [leaf_hash(v.voter, v.power) for v in voters]
    tree = MerkleTree(leaves)

    counts = Tally()
    for v in voters:
        counts = counts.add(v.support, v.power)

    return MerkleArtifact(
        proposal_id=proposal_id,
        root=tree.root_hex,
        counts=counts,
        voters=voters,
        leaves=['0x' + leaf.hex() for leaf in leaves],
        frozen_at=frozen_at,
    )


class MerkleFreezer:
    """
    Freezes a proposal's votes and persists the artifact.

    Re-freeze policy:
        live      Re-freezing is allowed while the root is unpublished and
                  the change is logged. An identical root returns the
                  stored artifact unchanged. Once a publication exists a
                  different root raises FreezeConflict.
        one-shot  Any re-freeze producing a different root raises
                  FreezeConflict.
    """

    def __init__(
        self,
        ledger,
        store,
        policy: str = FREEZE_POLICY_LIVE,
        require_window_closed: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        if policy not in FREEZE_POLICIES:
            raise ValueError(f"freeze policy must be one of {FREEZE_POLICIES}")
        self.ledger = ledger
        self.store = store
        self.policy = policy
        self.require_window_closed = require_window_closed
        self.clock = clock
        self._locks: Dict[int, asyncio.Lock] = {}

    def _lock(self, proposal_id: int) -> asyncio.Lock:
        lock = self._locks.get(proposal_id)
        if lock is None:
            lock = self._locks[proposal_id] = asyncio.Lock()
        return lock

    async def freeze(self, proposal_id: int) -> MerkleArtifact:
        """
        Raises:
            ValidationError: no votes, or window still open when required closed
            FreezeConflict: the root would change where the policy forbids it
            UpstreamUnavailable: window read failed
        """
        now = int(self.clock())
        if self.require_window_closed:
            window = await self.ledger.get_window(proposal_id)
            if not window.is_closed(now):
                raise ValidationError("Voting period not ended yet.")

        async with self._lock(proposal_id):
            records = await self.ledger.snapshot(proposal_id)
            artifact = build_artifact(proposal_id, records, frozen_at=now)

            existing = await self.store.get_artifact(proposal_id)
            publication = await self.store.get_publication(proposal_id)

            if existing is not None and existing.root == artifact.root:
                logger.debug(f"Re-freeze of #{proposal_id} reproduced root {artifact.root}")
                return existing
            if publication is not None and publication.root != artifact.root:
                raise FreezeConflict(
                    f"Proposal #{proposal_id} root {publication.root} is already published; "
                    f"re-freeze would produce {artifact.root}"
                )
            if existing is not None:
                if self.policy == FREEZE_POLICY_ONE_SHOT:
                    raise FreezeConflict(
                        f"Proposal #{proposal_id} is already frozen at {existing.root}"
                    )
                logger.warning(
                    f"Re-freeze of #{proposal_id} changes root {existing.root} → {artifact.root} "
                    f"({len(existing.voters)} → {len(artifact.voters)} voters)"
                )

            await self.store.put_artifact(artifact)

        logger.info(
            f"Frozen #{proposal_id}: root {artifact.root}, {len(artifact.voters)} voters, "
            f"for={artifact.counts.for_power} against={artifact.counts.against_power} "
            f"abstain={artifact.counts.abstain_power}"
        )
        return artifact

    async def get_artifact(self, proposal_id: int) -> MerkleArtifact:
        artifact = await self.store.get_artifact(proposal_id)
        if artifact is None:
            raise ArtifactNotFound(f"No merkle artifact found for proposal #{proposal_id}. Freeze first.")
        return artifact
