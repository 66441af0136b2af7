"""
Cross-Chain Publisher tests

Coverage:
  - Two-chain publish: Chain A publishRoot, read-back, Chain B freezeProposal
  - Partial failure: Chain A failure publishes nothing, Chain B failure is
    resumable without a second Chain A transaction
  - Idempotent republish and conflicting roots
  - Unconfirmed transactions are confirmed from their stored hash, not resent
"""

import pytest

from conftest import ACCOUNTS, PID, VOTING_END, VOTING_START, World

from crossgov.bridge.types import PublicationStatus
from crossgov.exceptions import (
    ArtifactNotFound,
    ChainAPublishFailed,
    ChainBMirrorFailed,
    FreezeConflict,
    TransactionFailed,
    UpstreamUnavailable,
    ValidationError,
)
from crossgov.governance.freezer import build_artifact
from crossgov.governance.types import Support, VoteRecord

ACTION_HASH = "0x" + "ab" * 32


async def _frozen_world(**options):
    world = World(**options)
    world.publisher.add_proposal(PID, action_data_hash=ACTION_HASH)
    world.fund(ACCOUNTS[0], primary=50, derivative=100)
    world.fund(ACCOUNTS[1], primary=10)
    await world.service.submit_vote(world.vote(0, 200))
    await world.service.submit_vote(world.vote(1, 10, support=False))
    artifact = await world.service.freeze(PID)
    return world, artifact


# ══════════════════════════════════════════════════════════════════════
#  SECTION 1: HAPPY PATH
# ══════════════════════════════════════════════════════════════════════

class TestPublish:

    @pytest.mark.asyncio
    async def test_publishes_on_both_chains(self):
        world, artifact = await _frozen_world()
        record = await world.service.publish(PID, quorum=100, threshold=60)

        assert world.publisher.published == [(PID, artifact.root, 210, 100, 60)]
        assert world.verifier_b.frozen == [
            (PID, artifact.root, ACTION_HASH, VOTING_START, VOTING_END, 100, 60)
        ]
        assert record.status is PublicationStatus.MIRRORED
        assert record.action_data_hash == ACTION_HASH
        assert record.chain_a_tx and record.chain_b_tx
        assert await world.store.get_publication(PID) == record

    @pytest.mark.asyncio
    async def test_default_thresholds(self):
        world, artifact = await _frozen_world(default_quorum=7, default_threshold=3)
        await world.service.publish(PID)
        assert world.publisher.published[0][3:] == (7, 3)

    @pytest.mark.asyncio
    async def test_negative_thresholds_rejected(self):
        world, _ = await _frozen_world()
        with pytest.raises(ValidationError):
            await world.service.publish(PID, quorum=-1)
        assert world.publisher.published == []

    @pytest.mark.asyncio
    async def test_requires_frozen_artifact(self):
        world = World()
        with pytest.raises(ArtifactNotFound):
            await world.service.publish(PID)

    @pytest.mark.asyncio
    async def test_republish_is_idempotent(self):
        world, _ = await _frozen_world()
        first = await world.service.publish(PID, quorum=1, threshold=1)
        second = await world.service.publish(PID, quorum=1, threshold=1)
        assert second == first
        assert len(world.publisher.published) == 1
        assert len(world.verifier_b.frozen) == 1

    @pytest.mark.asyncio
    async def test_different_root_conflicts(self):
        world, artifact = await _frozen_world()
        await world.service.publish(PID, quorum=1, threshold=1)
        other = build_artifact(PID, [VoteRecord(
            proposal_id=PID, voter=ACCOUNTS[5].address, power=1, support=Support.YES,
            nonce=1, deadline=1_800, signature="0x", received_at=0,
        )])
        with pytest.raises(FreezeConflict):
            await world.service.publisher.publish(other, 1, 1)
        assert len(world.publisher.published) == 1


# ══════════════════════════════════════════════════════════════════════
#  SECTION 2: PARTIAL FAILURE
# ══════════════════════════════════════════════════════════════════════

class TestPartialFailure:

    @pytest.mark.asyncio
    async def test_chain_a_failure_publishes_nothing(self):
        world, _ = await _frozen_world()
        world.publisher.fail_publish = TransactionFailed("reverted", "0x" + "01" * 32)
        with pytest.raises(ChainAPublishFailed):
            await world.service.publish(PID, quorum=1, threshold=1)
        assert await world.store.get_publication(PID) is None
        assert world.verifier_b.frozen == []

    @pytest.mark.asyncio
    async def test_chain_b_failure_is_resumable(self):
        world, artifact = await _frozen_world()
        world.verifier_b.fail_freeze = UpstreamUnavailable("chain B down")

        with pytest.raises(ChainBMirrorFailed) as info:
            await world.service.publish(PID, quorum=1, threshold=1)
        stored = await world.store.get_publication(PID)
        assert stored.status is PublicationStatus.CHAIN_A_PUBLISHED
        assert info.value.chain_a_tx == stored.chain_a_tx
        assert info.value.proposal_id == PID

        world.verifier_b.fail_freeze = None
        record = await world.service.resume(PID)
        assert record.status is PublicationStatus.MIRRORED
        assert record.chain_a_tx == stored.chain_a_tx
        assert len(world.publisher.published) == 1
        assert world.verifier_b.frozen[0][1] == artifact.root

    @pytest.mark.asyncio
    async def test_publish_after_mirror_failure_does_not_republish(self):
        world, _ = await _frozen_world()
        world.verifier_b.fail_freeze = TransactionFailed("reverted")
        with pytest.raises(ChainBMirrorFailed):
            await world.service.publish(PID, quorum=1, threshold=1)
        world.verifier_b.fail_freeze = None
        record = await world.service.publish(PID, quorum=1, threshold=1)
        assert record.is_mirrored
        assert len(world.publisher.published) == 1

    @pytest.mark.asyncio
    async def test_read_back_failure(self):
        world, _ = await _frozen_world()
        original = world.publisher.send_publish_root

        async def publish_then_fail(*args):
            tx_hash = await original(*args)
            world.publisher.fail_reads = UpstreamUnavailable("chain A down")
            return tx_hash

        world.publisher.send_publish_root = publish_then_fail
        with pytest.raises(ChainBMirrorFailed):
            await world.service.publish(PID, quorum=1, threshold=1)
        assert (await world.store.get_publication(PID)).status is PublicationStatus.CHAIN_A_PUBLISHED
        assert world.verifier_b.frozen == []


# ══════════════════════════════════════════════════════════════════════
#  SECTION 3: RESUME
# ══════════════════════════════════════════════════════════════════════

class TestResume:

    @pytest.mark.asyncio
    async def test_resume_root_published_by_hand(self):
        world, artifact = await _frozen_world()
        await world.publisher.send_publish_root(PID, artifact.root, artifact.total_power, 5, 2)
        world.publisher.published.clear()

        record = await world.service.resume(PID, quorum=5, threshold=2)
        assert record.is_mirrored
        assert record.chain_a_tx == ""
        assert world.publisher.published == []
        assert world.verifier_b.frozen[0][5:] == (5, 2)

    @pytest.mark.asyncio
    async def test_resume_refuses_when_chain_a_root_differs(self):
        world, _ = await _frozen_world()
        with pytest.raises(ChainBMirrorFailed, match="does not match"):
            await world.service.resume(PID, quorum=1, threshold=1)
        assert world.verifier_b.frozen == []

    @pytest.mark.asyncio
    async def test_resume_of_mirrored_is_noop(self):
        world, _ = await _frozen_world()
        first = await world.service.publish(PID, quorum=1, threshold=1)
        assert await world.service.resume(PID) == first
        assert len(world.verifier_b.frozen) == 1

    @pytest.mark.asyncio
    async def test_resume_without_artifact(self):
        world = World()
        with pytest.raises(ArtifactNotFound):
            await world.service.resume(PID, quorum=1, threshold=1)


# ══════════════════════════════════════════════════════════════════════
#  SECTION 4: UNCONFIRMED TRANSACTIONS
# ══════════════════════════════════════════════════════════════════════

class TestUnconfirmed:

    @pytest.mark.asyncio
    async def test_publish_root_timeout_is_confirmed_not_resent(self):
        world, _ = await _frozen_world()
        world.publisher.receipt_failures = 1
        with pytest.raises(ChainAPublishFailed, match="not confirmed"):
            await world.service.publish(PID, quorum=1, threshold=1)
        sent = await world.store.get_publication(PID)
        assert sent.status is PublicationStatus.CHAIN_A_SENT
        assert sent.chain_a_tx in world.publisher.receipts
        assert world.verifier_b.frozen == []

        record = await world.service.publish(PID, quorum=1, threshold=1)
        assert record.is_mirrored
        assert record.chain_a_tx == sent.chain_a_tx
        assert len(world.publisher.published) == 1
        assert world.publisher.waited == [sent.chain_a_tx] * 2

    @pytest.mark.asyncio
    async def test_resume_confirms_sent_publish_root(self):
        world, _ = await _frozen_world()
        world.publisher.receipt_failures = 1
        with pytest.raises(ChainAPublishFailed):
            await world.service.publish(PID, quorum=1, threshold=1)

        record = await world.service.resume(PID)
        assert record.is_mirrored
        assert len(world.publisher.published) == 1
        assert len(world.verifier_b.frozen) == 1

    @pytest.mark.asyncio
    async def test_reverted_publish_root_is_sent_again(self):
        world, _ = await _frozen_world()
        world.publisher.revert_sends = 1
        with pytest.raises(ChainAPublishFailed, match="reverted"):
            await world.service.publish(PID, quorum=1, threshold=1)
        reverted = await world.store.get_publication(PID)

        record = await world.service.publish(PID, quorum=1, threshold=1)
        assert record.is_mirrored
        assert record.chain_a_tx != reverted.chain_a_tx
        assert len(world.publisher.published) == 2

    @pytest.mark.asyncio
    async def test_freeze_timeout_is_confirmed_not_resent(self):
        world, _ = await _frozen_world()
        world.verifier_b.receipt_failures = 1
        with pytest.raises(ChainBMirrorFailed):
            await world.service.publish(PID, quorum=1, threshold=1)
        pending = await world.store.get_publication(PID)
        assert pending.status is PublicationStatus.CHAIN_A_PUBLISHED
        assert pending.chain_b_tx in world.verifier_b.receipts

        record = await world.service.resume(PID)
        assert record.is_mirrored
        assert record.chain_b_tx == pending.chain_b_tx
        assert len(world.verifier_b.frozen) == 1
        assert len(world.publisher.published) == 1

    @pytest.mark.asyncio
    async def test_reverted_freeze_is_sent_again(self):
        world, _ = await _frozen_world()
        world.verifier_b.revert_sends = 1
        with pytest.raises(ChainBMirrorFailed, match="reverted"):
            await world.service.publish(PID, quorum=1, threshold=1)

        record = await world.service.resume(PID)
        assert record.is_mirrored
        assert len(world.verifier_b.frozen) == 2
        assert len(world.publisher.published) == 1
