"""
Merkle Freezer tests

Coverage:
  - Leaf encoding keccak256(abi.encode(address, uint256))
  - Determinism: storage order never changes the root
  - Dedup by highest nonce, canonical address order, tallies
  - Re-freeze policies (live / one-shot), published-root protection,
    closed-window requirement
"""

import random

import pytest
from eth_abi import encode as abi_encode

from conftest import ACCOUNTS, PID, VOTING_END, World

from crossgov.bridge.types import PublicationRecord, PublicationStatus
from crossgov.crypto.address import address_sort_key
from crossgov.crypto.hashing import keccak256
from crossgov.crypto.merkle import MerkleTree
from crossgov.exceptions import ArtifactNotFound, FreezeConflict, ValidationError
from crossgov.governance.freezer import (
    FREEZE_POLICY_ONE_SHOT,
    build_artifact,
    dedup_latest,
    leaf_hash,
)
from crossgov.governance.types import MerkleArtifact, Support, VoteRecord


def _record(account, power, support=Support.YES, nonce=1, pid=PID) -> VoteRecord:
    return VoteRecord(
        proposal_id=pid,
        voter=account.address,
        power=power,
        support=support,
        nonce=nonce,
        deadline=1_800,
        signature="0x" + "11" * 65,
        received_at=0,
    )


RECORDS = [
    _record(ACCOUNTS[0], 200, Support.YES),
    _record(ACCOUNTS[1], 50, Support.NO),
    _record(ACCOUNTS[2], 30, Support.ABSTAIN),
    _record(ACCOUNTS[3], 7, Support.YES),
    _record(ACCOUNTS[4], 0, Support.NO),
]


# ══════════════════════════════════════════════════════════════════════
#  SECTION 1: PURE ARTIFACT
# ══════════════════════════════════════════════════════════════════════

class TestLeafHash:

    def test_abi_encoding(self):
        address = ACCOUNTS[0].address
        expected = keccak256(abi_encode(["address", "uint256"], [address, 200]))
        assert leaf_hash(address, 200) == expected

    def test_case_insensitive_address(self):
        address = ACCOUNTS[0].address
        assert leaf_hash(address.lower(), 5) == leaf_hash(address, 5)

    def test_power_is_bound(self):
        assert leaf_hash(ACCOUNTS[0].address, 1) != leaf_hash(ACCOUNTS[0].address, 2)


class TestBuildArtifact:

    def test_order_independent_root(self):
        reference = build_artifact(PID, RECORDS)
        rng = random.Random(7)
        for _ in range(10):
            shuffled = list(RECORDS)
            rng.shuffle(shuffled)
            assert build_artifact(PID, shuffled).root == reference.root

    def test_voters_sorted_by_address(self):
        artifact = build_artifact(PID, RECORDS)
        keys = [address_sort_key(v.voter) for v in artifact.voters]
        assert keys == sorted(keys)

    def test_root_matches_tree_of_leaves(self):
        artifact = build_artifact(PID, RECORDS)
        leaves = [leaf_hash(v.voter, v.power) for v in artifact.voters]
        assert artifact.leaves == ['0x' + l.hex() for l in leaves]
        assert artifact.root == MerkleTree(leaves).root_hex

    def test_tallies(self):
        counts = build_artifact(PID, RECORDS).counts
        assert counts.for_power == 207
        assert counts.against_power == 50
        assert counts.abstain_power == 30
        assert counts.total == 287
        assert counts.to_dict() == {
            "for": "207", "against": "50", "abstain": "30", "totalCounted": "287",
        }

    def test_dedup_keeps_highest_nonce(self):
        older = _record(ACCOUNTS[0], 200, Support.YES, nonce=1)
        newer = _record(ACCOUNTS[0], 200, Support.NO, nonce=3)
        middle = _record(ACCOUNTS[0], 200, Support.YES, nonce=2)
        assert dedup_latest([older, newer, middle]) == [newer]
        artifact = build_artifact(PID, [newer, older, middle])
        assert len(artifact.voters) == 1
        assert artifact.voters[0].support is Support.NO
        assert artifact.counts.against_power == 200

    def test_single_voter_root_is_leaf(self):
        artifact = build_artifact(PID, [RECORDS[0]])
        assert artifact.root == artifact.leaves[0]

    def test_no_votes(self):
        with pytest.raises(ValidationError, match="No votes"):
            build_artifact(PID, [])

    def test_dict_round_trip_keeps_root(self):
        artifact = build_artifact(PID, RECORDS, frozen_at=123)
        restored = MerkleArtifact.from_dict(artifact.to_dict())
        assert restored == artifact
        assert artifact.to_dict()["leavesHexOrdered"] == artifact.leaves


# ══════════════════════════════════════════════════════════════════════
#  SECTION 2: FREEZER SERVICE
# ══════════════════════════════════════════════════════════════════════

async def _store_votes(world, records):
    for record in records:
        await world.store.put_vote(record)


class TestMerkleFreezer:

    @pytest.mark.asyncio
    async def test_freeze_persists_artifact(self):
        world = World()
        await _store_votes(world, RECORDS)
        artifact = await world.service.freeze(PID)
        assert await world.store.get_artifact(PID) == artifact
        assert await world.service.freezer.get_artifact(PID) == artifact

    @pytest.mark.asyncio
    async def test_identical_refreeze_returns_stored(self):
        world = World()
        await _store_votes(world, RECORDS)
        first = await world.service.freeze(PID)
        world.clock.now += 100
        second = await world.service.freeze(PID)
        assert second == first
        assert second.frozen_at == first.frozen_at

    @pytest.mark.asyncio
    async def test_live_refreeze_picks_up_new_votes(self):
        world = World()
        await _store_votes(world, RECORDS[:3])
        first = await world.service.freeze(PID)
        await _store_votes(world, RECORDS[3:])
        second = await world.service.freeze(PID)
        assert second.root != first.root
        assert len(second.voters) == 5
        assert (await world.store.get_artifact(PID)).root == second.root

    @pytest.mark.asyncio
    async def test_one_shot_refuses_changed_root(self):
        world = World(freeze_policy=FREEZE_POLICY_ONE_SHOT)
        await _store_votes(world, RECORDS[:3])
        first = await world.service.freeze(PID)
        await _store_votes(world, RECORDS[3:])
        with pytest.raises(FreezeConflict):
            await world.service.freeze(PID)
        assert (await world.store.get_artifact(PID)).root == first.root

    @pytest.mark.asyncio
    async def test_one_shot_allows_identical_refreeze(self):
        world = World(freeze_policy=FREEZE_POLICY_ONE_SHOT)
        await _store_votes(world, RECORDS)
        first = await world.service.freeze(PID)
        assert await world.service.freeze(PID) == first

    @pytest.mark.asyncio
    async def test_published_root_is_protected(self):
        world = World()
        await _store_votes(world, RECORDS[:3])
        first = await world.service.freeze(PID)
        await world.store.put_publication(PublicationRecord(
            proposal_id=PID, root=first.root, total_power=first.total_power,
            quorum=1, threshold=1, status=PublicationStatus.CHAIN_A_PUBLISHED,
            chain_a_tx="0x" + "aa" * 32,
        ))
        await _store_votes(world, RECORDS[3:])
        with pytest.raises(FreezeConflict):
            await world.service.freeze(PID)

    @pytest.mark.asyncio
    async def test_window_must_be_closed_when_required(self):
        world = World(require_window_closed=True)
        await _store_votes(world, RECORDS)
        with pytest.raises(ValidationError, match="Voting period not ended yet"):
            await world.service.freeze(PID)
        world.clock.now = VOTING_END + 1
        assert (await world.service.freeze(PID)).voters

    @pytest.mark.asyncio
    async def test_no_votes(self):
        world = World()
        with pytest.raises(ValidationError):
            await world.service.freeze(PID)

    @pytest.mark.asyncio
    async def test_missing_artifact(self):
        world = World()
        with pytest.raises(ArtifactNotFound):
            await world.service.freezer.get_artifact(PID)

    @pytest.mark.asyncio
    async def test_submitted_votes_freeze_end_to_end(self):
        world = World()
        world.fund(ACCOUNTS[0], primary=50, derivative=100)
        world.fund(ACCOUNTS[1], primary=10)
        await world.service.submit_vote(world.vote(0, 200, nonce=1))
        await world.service.submit_vote(world.vote(0, 200, support=False, nonce=2))
        await world.service.submit_vote(world.vote(1, 10))
        artifact = await world.service.freeze(PID)
        assert artifact.counts.for_power == 10
        assert artifact.counts.against_power == 200
        assert {v.voter: v.nonce for v in artifact.voters}[ACCOUNTS[0].address] == 2
