"""
Shared fixtures: in-process fakes for the Chain A / Chain B contracts,
a controllable clock and real eth_account keys.
"""

import os
import sys
from dataclasses import replace
from typing import Dict, List, Optional

import pytest
from eth_account import Account

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from crossgov.bridge.types import ProposalPassedEvent
from crossgov.chains.client import TxReceipt
from crossgov.crypto.address import to_checksum_address
from crossgov.crypto.typed_data import Eip712Domain, TypedVote, sign_vote
from crossgov.exceptions import TransactionFailed, UpstreamUnavailable
from crossgov.governance.types import ProposalRecord, ProposalSnapshot, VotingWindow
from crossgov.service import GovernanceService
from crossgov.storage import InMemoryGovernanceStore


CHAIN_B_ID = 11155111
VERIFIER_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
ER_1_5 = 1_500_000_000_000_000_000   # 1.5e18

PID = 1
SNAPSHOT_BLOCK = 100
VOTING_START = 1_000
VOTING_END = 2_000
NOW = 1_500
DEADLINE = 1_800

KEYS = ["0x" + f"{i:02x}" * 32 for i in range(1, 9)]
ACCOUNTS = [Account.from_key(k) for k in KEYS]


# ═══════════════════════════════════════════════════════════════════════
#  FAKE CONTRACTS
# ═══════════════════════════════════════════════════════════════════════

class FakeClock:
    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> float:
        return float(self.now)


_tx_counter = [0]


def fake_receipt(block: int = 1) -> TxReceipt:
    _tx_counter[0] += 1
    return TxReceipt(tx_hash="0x" + f"{_tx_counter[0]:064x}", status=1, block_number=block)


class FakeReceipts:
    """
    Mined transactions by hash. `receipt_failures` makes that many waits
    time out even though the transaction is mined; `revert_sends` mines
    that many following sends with status 0.
    """

    def __init__(self):
        self.receipts: Dict[str, TxReceipt] = {}
        self.receipt_failures = 0
        self.revert_sends = 0
        self.waited: List[str] = []

    def mine(self) -> str:
        receipt = fake_receipt()
        if self.revert_sends > 0:
            self.revert_sends -= 1
            receipt = replace(receipt, status=0)
        self.receipts[receipt.tx_hash] = receipt
        return receipt.tx_hash

    async def wait_for_receipt(self, tx_hash: str) -> TxReceipt:
        self.waited.append(tx_hash)
        if self.receipt_failures > 0:
            self.receipt_failures -= 1
            raise UpstreamUnavailable(f"no receipt for {tx_hash} (timeout)")
        receipt = self.receipts[tx_hash]
        if not receipt.succeeded:
            raise TransactionFailed(f"tx {tx_hash} reverted", tx_hash)
        return receipt


class FakeToken:
    """ERC-20 with per-block balance history."""

    def __init__(self):
        self.history: Dict[str, Dict[int, int]] = {}
        self.calls: List[tuple] = []
        self.fail: Optional[Exception] = None

    def set_balance(self, account: str, amount: int, block: int = SNAPSHOT_BLOCK) -> None:
        self.history.setdefault(to_checksum_address(account), {})[block] = amount

    async def balance_of(self, account: str, block: int) -> int:
        self.calls.append((account, block))
        if self.fail is not None:
            raise self.fail
        points = self.history.get(to_checksum_address(account), {})
        eligible = [b for b in points if b <= block]
        return points[max(eligible)] if eligible else 0


class FakePublisherA(FakeReceipts):
    """GovernanceRootPublisher on Chain A."""

    def __init__(self):
        super().__init__()
        self.snapshots: Dict[int, ProposalSnapshot] = {}
        self.windows: Dict[int, VotingWindow] = {}
        self.deadlines: Dict[int, int] = {}
        self.proposals: Dict[int, ProposalRecord] = {}
        self.published: List[tuple] = []
        self.fail_publish: Optional[Exception] = None
        self.fail_reads: Optional[Exception] = None

    def add_proposal(self, pid: int, action_data_hash: str = "0x" + "00" * 32,
                     snapshot_block: int = SNAPSHOT_BLOCK, exchange_rate: int = ER_1_5,
                     start: int = VOTING_START, end: int = VOTING_END,
                     deadline: int = DEADLINE) -> None:
        self.snapshots[pid] = ProposalSnapshot(pid, snapshot_block, exchange_rate)
        self.windows[pid] = VotingWindow(start, end)
        self.deadlines[pid] = deadline
        self.proposals[pid] = ProposalRecord(
            proposal_id=pid,
            action_data_hash=action_data_hash,
            voting_start=start,
            voting_end=end,
            snapshot_block=snapshot_block,
            snapshot_er=exchange_rate,
            deadline=deadline,
            power_root="0x" + "00" * 32,
            total_power=0,
            quorum=0,
            threshold=0,
            frozen=False,
        )

    def _check(self):
        if self.fail_reads is not None:
            raise self.fail_reads

    async def get_snapshot(self, pid: int) -> ProposalSnapshot:
        self._check()
        return self.snapshots.get(pid, ProposalSnapshot(pid, 0, 0))

    async def get_window(self, pid: int) -> VotingWindow:
        self._check()
        return self.windows.get(pid, VotingWindow(0, 0))

    async def get_deadline(self, pid: int) -> int:
        self._check()
        return self.deadlines.get(pid, 0)

    async def get_proposal(self, pid: int) -> ProposalRecord:
        self._check()
        return self.proposals[pid]

    async def send_publish_root(self, pid, root, total_power, quorum, threshold) -> str:
        if self.fail_publish is not None:
            raise self.fail_publish
        self.published.append((pid, root, total_power, quorum, threshold))
        self.proposals[pid] = replace(
            self.proposals[pid], power_root=root, total_power=total_power,
            quorum=quorum, threshold=threshold,
        )
        return self.mine()


class FakeVerifierB(FakeReceipts):
    """VoteVerifier on Chain B."""

    def __init__(self):
        super().__init__()
        self.nonces: Dict[tuple, int] = {}
        self.frozen: List[tuple] = []
        self.batches: List[tuple] = []
        self.events: List[ProposalPassedEvent] = []
        self.head = 0
        self.fail_freeze: Optional[Exception] = None
        self.fail_logs: Optional[Exception] = None

    async def get_next_nonce(self, pid: int, voter: str) -> int:
        return self.nonces.get((pid, voter), 0)

    async def send_freeze_proposal(self, pid, root, action_hash, start, end, quorum, threshold) -> str:
        if self.fail_freeze is not None:
            raise self.fail_freeze
        self.frozen.append((pid, root, action_hash, start, end, quorum, threshold))
        return self.mine()

    async def batch_verify_and_tally(self, votes, leaves, proof, proof_flags) -> TxReceipt:
        self.batches.append((list(votes), list(leaves), list(proof), list(proof_flags)))
        return fake_receipt()

    async def latest_block(self) -> int:
        return self.head

    async def get_passed_events(self, from_block: int, to_block: int) -> List[ProposalPassedEvent]:
        if self.fail_logs is not None:
            raise self.fail_logs
        return sorted(
            (e for e in self.events if from_block <= e.block_number <= to_block),
            key=lambda e: (e.block_number, e.log_index),
        )

    def emit(self, pid: int, action_hash: str, block: int) -> ProposalPassedEvent:
        event = ProposalPassedEvent(pid, action_hash, block, tx_hash="0x" + f"{block:064x}")
        self.events.append(event)
        self.head = max(self.head, block)
        return event


class FakeExecutorA(FakeReceipts):
    """GovernanceExecutor on Chain A."""

    def __init__(self):
        super().__init__()
        self.executed: List[bytes] = []
        self.commits: List[str] = []
        self.fail: Optional[Exception] = None

    async def send_commit_action(self, action_data_hash: str) -> str:
        self.commits.append(action_data_hash)
        return self.mine()

    async def send_execute_if_authorized(self, action_data: bytes) -> str:
        if self.fail is not None:
            raise self.fail
        self.executed.append(bytes(action_data))
        return self.mine()


# ═══════════════════════════════════════════════════════════════════════
#  HELPERS
# ═══════════════════════════════════════════════════════════════════════

def signed_vote(key: str, domain: Eip712Domain, power: int, /, pid: int = PID,
                support: bool = True, nonce: int = 1, deadline: int = DEADLINE,
                abstain: bool = False, **extra) -> dict:
    """An /api/vote body signed by `key`."""
    voter = Account.from_key(key).address
    vote = TypedVote(pid, support, voter, power, nonce, deadline)
    body = {
        "proposalId": str(pid),
        "support": support,
        "voter": voter,
        "nonce": str(nonce),
        "deadline": str(deadline),
        "signature": sign_vote(key, domain, vote),
        "abstain": abstain,
    }
    body.update(extra)
    return body


class World:
    """Every fake wired into one GovernanceService."""

    def __init__(self, **service_options):
        self.clock = FakeClock()
        self.publisher = FakePublisherA()
        self.primary = FakeToken()
        self.derivative = FakeToken()
        self.verifier_b = FakeVerifierB()
        self.executor = FakeExecutorA()
        self.store = InMemoryGovernanceStore()
        self.domain = Eip712Domain(chain_id=CHAIN_B_ID, verifying_contract=VERIFIER_ADDRESS)
        self.publisher.add_proposal(PID)
        self.service = GovernanceService(
            publisher_a=self.publisher,
            primary_token=self.primary,
            derivative_token=self.derivative,
            verifier_b=self.verifier_b,
            store=self.store,
            domain=self.domain,
            executor_a=self.executor,
            clock=self.clock,
            **service_options,
        )

    def fund(self, account, primary: int = 0, derivative: int = 0, block: int = SNAPSHOT_BLOCK):
        address = account.address if hasattr(account, "address") else account
        self.primary.set_balance(address, primary, block)
        self.derivative.set_balance(address, derivative, block)

    def vote(self, index: int, power: int, /, **kwargs) -> dict:
        return signed_vote(KEYS[index], self.domain, power, **kwargs)


@pytest.fixture
def world():
    return World()


@pytest.fixture
def domain():
    return Eip712Domain(chain_id=CHAIN_B_ID, verifying_contract=VERIFIER_ADDRESS)
