"""
Governance store tests (in-memory and aiosqlite backends)

Coverage:
  - Conditional vote upsert: strictly higher nonce wins, across the uint256 range
  - Artifact, publication and execution persistence
  - Checkpoints survive reopening the SQLite file
"""

import pytest

from conftest import ACCOUNTS, PID

from crossgov.bridge.types import (
    ExecutionRecord,
    PublicationRecord,
    PublicationStatus,
    RelayState,
)
from crossgov.constants import UINT256_MAX
from crossgov.exceptions import ConfigurationError
from crossgov.governance.freezer import build_artifact
from crossgov.governance.types import Support, VoteRecord
from crossgov.storage import InMemoryGovernanceStore, SQLiteGovernanceStore, open_store

BACKENDS = ["memory", "sqlite"]


async def _open(backend, tmp_path):
    return await open_store(backend, str(tmp_path / "gov" / "crossgov.db"))


def _vote(index=0, nonce=1, support=Support.YES, power=100, pid=PID) -> VoteRecord:
    return VoteRecord(
        proposal_id=pid,
        voter=ACCOUNTS[index].address,
        power=power,
        support=support,
        nonce=nonce,
        deadline=1_800,
        signature="0x" + "22" * 65,
        received_at=1_234,
    )


# ══════════════════════════════════════════════════════════════════════
#  SECTION 1: VOTES
# ══════════════════════════════════════════════════════════════════════

class TestVotes:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("backend", BACKENDS)
    async def test_insert_and_read(self, backend, tmp_path):
        store = await _open(backend, tmp_path)
        try:
            assert await store.put_vote(_vote())
            assert await store.get_vote(PID, ACCOUNTS[0].address) == _vote()
            assert await store.get_vote(PID, ACCOUNTS[1].address) is None
        finally:
            await store.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("backend", BACKENDS)
    async def test_only_higher_nonce_replaces(self, backend, tmp_path):
        store = await _open(backend, tmp_path)
        try:
            assert await store.put_vote(_vote(nonce=5))
            assert not await store.put_vote(_vote(nonce=5, support=Support.NO))
            assert not await store.put_vote(_vote(nonce=4, support=Support.NO))
            assert (await store.get_vote(PID, ACCOUNTS[0].address)).support is Support.YES
            assert await store.put_vote(_vote(nonce=6, support=Support.NO))
            assert (await store.get_vote(PID, ACCOUNTS[0].address)).support is Support.NO
        finally:
            await store.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("backend", BACKENDS)
    async def test_large_nonces_compare_numerically(self, backend, tmp_path):
        store = await _open(backend, tmp_path)
        try:
            assert await store.put_vote(_vote(nonce=9))
            # "10" < "9" as text
            assert await store.put_vote(_vote(nonce=10))
            assert await store.put_vote(_vote(nonce=2 ** 200, power=UINT256_MAX))
            assert not await store.put_vote(_vote(nonce=2 ** 199))
            assert await store.put_vote(_vote(nonce=UINT256_MAX))
            stored = await store.get_vote(PID, ACCOUNTS[0].address)
            assert stored.nonce == UINT256_MAX
        finally:
            await store.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("backend", BACKENDS)
    async def test_list_is_per_proposal(self, backend, tmp_path):
        store = await _open(backend, tmp_path)
        try:
            await store.put_vote(_vote(0))
            await store.put_vote(_vote(1))
            await store.put_vote(_vote(2, pid=PID + 1))
            voters = {v.voter for v in await store.list_votes(PID)}
            assert voters == {ACCOUNTS[0].address, ACCOUNTS[1].address}
            assert len(await store.list_votes(PID + 1)) == 1
            assert await store.list_votes(99) == []
        finally:
            await store.close()


# ══════════════════════════════════════════════════════════════════════
#  SECTION 2: ARTIFACTS, PUBLICATIONS, EXECUTIONS
# ══════════════════════════════════════════════════════════════════════

class TestRecords:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("backend", BACKENDS)
    async def test_artifact(self, backend, tmp_path):
        store = await _open(backend, tmp_path)
        try:
            assert await store.get_artifact(PID) is None
            first = build_artifact(PID, [_vote(0), _vote(1, support=Support.ABSTAIN)], frozen_at=7)
            await store.put_artifact(first)
            assert await store.get_artifact(PID) == first
            second = build_artifact(PID, [_vote(0)], frozen_at=8)
            await store.put_artifact(second)
            assert await store.get_artifact(PID) == second
        finally:
            await store.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("backend", BACKENDS)
    async def test_publication(self, backend, tmp_path):
        store = await _open(backend, tmp_path)
        try:
            record = PublicationRecord(
                proposal_id=PID, root="0x" + "AB" * 32, total_power=UINT256_MAX,
                quorum=10, threshold=5, status=PublicationStatus.CHAIN_A_PUBLISHED,
                chain_a_tx="0x" + "01" * 32, published_at=99,
            )
            await store.put_publication(record)
            assert (await store.get_publication(PID)).root == "0x" + "ab" * 32
            mirrored = record.mirrored("0x" + "02" * 32, "0x" + "03" * 32, 1, 2)
            await store.put_publication(mirrored)
            assert await store.get_publication(PID) == mirrored
        finally:
            await store.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("backend", BACKENDS)
    async def test_executions(self, backend, tmp_path):
        store = await _open(backend, tmp_path)
        try:
            observed = ExecutionRecord(2).transition(RelayState.OBSERVED, event_block=5)
            aborted = ExecutionRecord(1).transition(RelayState.OBSERVED).transition(
                RelayState.ABORTED, "hash mismatch"
            )
            await store.record_execution(observed)
            await store.record_execution(aborted)
            assert await store.get_execution(2) == observed
            assert [r.proposal_id for r in await store.list_executions()] == [1, 2]
            assert (await store.get_execution(1)).is_terminal
            assert await store.get_execution(3) is None
        finally:
            await store.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("backend", BACKENDS)
    async def test_checkpoints(self, backend, tmp_path):
        store = await _open(backend, tmp_path)
        try:
            assert await store.get_checkpoint("relayer") is None
            await store.set_checkpoint("relayer", 10)
            await store.set_checkpoint("relayer", 12)
            assert await store.get_checkpoint("relayer") == 12
        finally:
            await store.close()


# ══════════════════════════════════════════════════════════════════════
#  SECTION 3: PERSISTENCE
# ══════════════════════════════════════════════════════════════════════

class TestSQLitePersistence:

    @pytest.mark.asyncio
    async def test_state_survives_reopen(self, tmp_path):
        path = str(tmp_path / "nested" / "dir" / "crossgov.db")
        store = await SQLiteGovernanceStore.create(path)
        await store.put_vote(_vote(nonce=3))
        await store.record_execution(
            ExecutionRecord(PID).transition(RelayState.OBSERVED).transition(RelayState.ABORTED, "x")
        )
        await store.set_checkpoint("relayer", 41)
        await store.close()

        reopened = await SQLiteGovernanceStore.create(path)
        try:
            assert (await reopened.get_vote(PID, ACCOUNTS[0].address)).nonce == 3
            assert (await reopened.get_execution(PID)).state is RelayState.ABORTED
            assert await reopened.get_checkpoint("relayer") == 41
            assert not await reopened.put_vote(_vote(nonce=2))
        finally:
            await reopened.close()

    @pytest.mark.asyncio
    async def test_open_store_backends(self, tmp_path):
        assert isinstance(await open_store("memory"), InMemoryGovernanceStore)
        with pytest.raises(ConfigurationError):
            await open_store("postgres", str(tmp_path / "x.db"))
