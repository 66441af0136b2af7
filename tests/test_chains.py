"""
Chain collaborator tests

Coverage:
  - ChainClient failure mapping (reads and receipts → UpstreamUnavailable,
    reverted receipts → TransactionFailed, no signer)
  - Contract wrappers: arguments, pinned blocks, result decoding
  - ProposalPassed log decoding and ordering

No node is contacted: contract functions are built by web3.py against an
unused HTTP endpoint and the client's call / send are recorded.
"""

from types import SimpleNamespace

import pytest
from hexbytes import HexBytes

from conftest import ACCOUNTS, VERIFIER_ADDRESS

from crossgov.chains import (
    ChainClient,
    GovernanceExecutor,
    GovernancePublisher,
    TokenBalance,
    VoteVerifier,
)
from crossgov.chains.client import TxReceipt
from crossgov.exceptions import ConfigurationError, TransactionFailed, UpstreamUnavailable

UNUSED_RPC = "http://127.0.0.1:1"
TOKEN = "0x0000000000000000000000000000000000000001"


class RecordingClient(ChainClient):
    """ChainClient whose reads and sends are answered from a table."""

    def __init__(self, results=None, logs=None):
        super().__init__("T", UNUSED_RPC, chain_id=1)
        self.results = results or {}
        self.logs = logs or []
        self.calls = []
        self.sent = []
        self.waited = []

    async def call(self, fn, block=None, label=""):
        self.calls.append((fn.fn_name, tuple(fn.args), block))
        return self.results[fn.fn_name]

    async def send(self, fn, label=""):
        self.sent.append((fn.fn_name, tuple(fn.args)))
        return "0x" + f"{len(self.sent):064x}"

    async def wait_for_receipt(self, tx_hash, label="tx"):
        self.waited.append(tx_hash)
        return TxReceipt(tx_hash=tx_hash, status=1, block_number=1)

    async def get_logs(self, event, from_block, to_block):
        self.calls.append((event.event_name, (from_block, to_block), None))
        return self.logs


class _FailingFn:
    fn_name = "balanceOf"

    async def call(self, **kwargs):
        raise ConnectionError("connection refused")


# ══════════════════════════════════════════════════════════════════════
#  SECTION 1: CLIENT
# ══════════════════════════════════════════════════════════════════════

class TestChainClient:

    @pytest.mark.asyncio
    async def test_read_failure_is_upstream(self):
        client = ChainClient("A", UNUSED_RPC)
        with pytest.raises(UpstreamUnavailable, match="at block 7"):
            await client.call(_FailingFn(), block=7)

    @pytest.mark.asyncio
    async def test_transact_requires_key(self):
        client = ChainClient("A", UNUSED_RPC)
        with pytest.raises(ConfigurationError):
            await client.transact(_FailingFn(), label="publishRoot")

    @pytest.mark.asyncio
    async def test_receipt_timeout_is_upstream(self):
        async def never_mined(tx_hash, timeout):
            raise TimeoutError(f"{tx_hash} not mined after {timeout}s")

        w3 = SimpleNamespace(eth=SimpleNamespace(wait_for_transaction_receipt=never_mined))
        client = ChainClient("A", receipt_timeout=1, w3=w3)
        with pytest.raises(UpstreamUnavailable, match="no receipt for publishRoot"):
            await client.wait_for_receipt("0x" + "0a" * 32, label="publishRoot")

    @pytest.mark.asyncio
    async def test_reverted_receipt_carries_tx_hash(self):
        async def reverted(tx_hash, timeout):
            return {"status": 0, "blockNumber": 12, "gasUsed": 21_000}

        w3 = SimpleNamespace(eth=SimpleNamespace(wait_for_transaction_receipt=reverted))
        client = ChainClient("A", w3=w3)
        with pytest.raises(TransactionFailed) as info:
            await client.wait_for_receipt("0x" + "0b" * 32)
        assert info.value.tx_hash == "0x" + "0b" * 32

    @pytest.mark.asyncio
    async def test_configured_chain_id_skips_rpc(self):
        assert await ChainClient("B", UNUSED_RPC, chain_id=11155111).get_chain_id() == 11155111

    def test_signer_address(self):
        client = ChainClient("A", UNUSED_RPC, private_key="0x" + "01" * 32)
        assert client.address == ACCOUNTS[0].address
        assert ChainClient("A", UNUSED_RPC).address is None


# ══════════════════════════════════════════════════════════════════════
#  SECTION 2: CHAIN A
# ══════════════════════════════════════════════════════════════════════

class TestChainAContracts:

    @pytest.mark.asyncio
    async def test_balance_pinned_to_block(self):
        client = RecordingClient({"balanceOf": 42})
        token = TokenBalance(client, TOKEN)
        assert await token.balance_of(ACCOUNTS[0].address.lower(), 100) == 42
        assert client.calls == [("balanceOf", (ACCOUNTS[0].address,), 100)]

    @pytest.mark.asyncio
    async def test_publisher_reads(self):
        hash_a = b"\xaa" * 32
        client = RecordingClient({
            "getSnapshot": (100, 1_500_000_000_000_000_000),
            "getWindow": (1_000, 2_000),
            "getDeadline": 1_800,
            "proposals": (hash_a, 1_000, 2_000, 100, 15, 1_800, b"\x00" * 32, 0, 0, 0, False),
        })
        publisher = GovernancePublisher(client, VERIFIER_ADDRESS)

        snapshot = await publisher.get_snapshot(3)
        assert (snapshot.block, snapshot.exchange_rate) == (100, 1_500_000_000_000_000_000)
        window = await publisher.get_window(3)
        assert (window.start, window.end) == (1_000, 2_000)
        assert await publisher.get_deadline(3) == 1_800
        proposal = await publisher.get_proposal(3)
        assert proposal.action_data_hash == "0x" + "aa" * 32
        assert proposal.frozen is False
        assert all(args == (3,) for _, args, _ in client.calls)

    @pytest.mark.asyncio
    async def test_publish_root_arguments(self):
        client = RecordingClient()
        publisher = GovernancePublisher(client, VERIFIER_ADDRESS)
        tx_hash = await publisher.send_publish_root(3, "0x" + "AB" * 32, 210, 100, 60)
        assert client.waited == []
        assert (await publisher.wait_for_receipt(tx_hash)).tx_hash == tx_hash
        assert client.sent == [("publishRoot", (3, b"\xab" * 32, 210, 100, 60))]

    @pytest.mark.asyncio
    async def test_executor(self):
        client = RecordingClient()
        executor = GovernanceExecutor(client, VERIFIER_ADDRESS)
        await executor.send_commit_action("0x" + "01" * 32)
        await executor.send_execute_if_authorized(b"\x01\x02")
        assert client.sent == [
            ("commitAction", (b"\x01" * 32,)),
            ("executeIfAuthorized", (b"\x01\x02",)),
        ]


# ══════════════════════════════════════════════════════════════════════
#  SECTION 3: CHAIN B
# ══════════════════════════════════════════════════════════════════════

class TestVoteVerifier:

    @pytest.mark.asyncio
    async def test_next_nonce(self):
        client = RecordingClient({"getNextNonce": 4})
        verifier = VoteVerifier(client, VERIFIER_ADDRESS)
        assert await verifier.get_next_nonce(1, ACCOUNTS[2].address.lower()) == 4
        assert client.calls == [("getNextNonce", (1, ACCOUNTS[2].address), None)]

    @pytest.mark.asyncio
    async def test_freeze_and_batch_arguments(self):
        client = RecordingClient()
        verifier = VoteVerifier(client, VERIFIER_ADDRESS)
        await verifier.send_freeze_proposal(1, "0x" + "11" * 32, "0x" + "22" * 32, 10, 20, 5, 3)
        vote = (1, True, ACCOUNTS[0].address, 200, 1, 1_800, False, b"\x01" * 65)
        await verifier.batch_verify_and_tally([vote], ["0x" + "33" * 32], [], [])
        assert client.sent[0] == (
            "freezeProposal", (1, b"\x11" * 32, b"\x22" * 32, 10, 20, 5, 3),
        )
        assert client.sent[1] == ("batchVerifyAndTally", ([vote], [b"\x33" * 32], [], []))
        assert client.waited == ["0x" + f"{2:064x}"]

    @pytest.mark.asyncio
    async def test_passed_events_decoded_in_chain_order(self):
        logs = [
            {"args": {"proposalId": 2, "actionDataHash": b"\x02" * 32},
             "blockNumber": 9, "transactionHash": HexBytes(b"\x09" * 32), "logIndex": 1},
            {"args": {"proposalId": 1, "actionDataHash": b"\x01" * 32},
             "blockNumber": 9, "transactionHash": HexBytes(b"\x09" * 32), "logIndex": 0},
            {"args": {"proposalId": 3, "actionDataHash": b"\x03" * 32},
             "blockNumber": 4, "transactionHash": HexBytes(b"\x04" * 32), "logIndex": 5},
        ]
        client = RecordingClient(logs=logs)
        events = await VoteVerifier(client, VERIFIER_ADDRESS).get_passed_events(0, 10)
        assert [e.proposal_id for e in events] == [3, 1, 2]
        assert events[0].action_data_hash == "0x" + "03" * 32
        assert events[0].tx_hash == "0x" + "04" * 32
        assert client.calls == [("ProposalPassed", (0, 10), None)]
