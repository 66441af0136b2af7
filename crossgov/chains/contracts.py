"""
Contract Wrappers

Typed async facades over the deployed contracts:

    Chain A  TokenBalance (primary asset, derivative share token)
             GovernancePublisher (snapshot, window, proposals, publishRoot)
             GovernanceExecutor (commitAction, executeIfAuthorized)
    Chain B  VoteVerifier (freezeProposal, getNextNonce, batchVerifyAndTally,
             ProposalPassed events)
"""

from typing import List, Sequence

from hexbytes import HexBytes

from ..bridge.types import ProposalPassedEvent
from ..crypto.address import hex_to_bytes, normalize_hash, to_checksum_address
from ..governance.types import ProposalRecord, ProposalSnapshot, VotingWindow
from .abi import ERC20_ABI, EXECUTOR_ABI, PUBLISHER_ABI, VERIFIER_ABI
from .client import ChainClient, TxReceipt


def _bytes32(value) -> bytes:
    return hex_to_bytes(normalize_hash(value))


class TokenBalance:
    """ERC-20 `balanceOf` at a historical block."""

    def __init__(self, client: ChainClient, address: str):
        self.client = client
        self.address = to_checksum_address(address)
        self.contract = client.contract(self.address, ERC20_ABI)

    async def balance_of(self, account: str, block: int) -> int:
        fn = self.contract.functions.balanceOf(to_checksum_address(account))
        return int(await self.client.call(fn, block=block, label="balanceOf"))


class GovernancePublisher:
    """GovernanceRootPublisher on Chain A: the authority for proposal data."""

    def __init__(self, client: ChainClient, address: str):
        self.client = client
        self.address = to_checksum_address(address)
        self.contract = client.contract(self.address, PUBLISHER_ABI)

    async def get_snapshot(self, proposal_id: int) -> ProposalSnapshot:
        block, rate = await self.client.call(
            self.contract.functions.getSnapshot(proposal_id), label="getSnapshot"
        )
        return ProposalSnapshot(proposal_id=proposal_id, block=int(block), exchange_rate=int(rate))

    async def get_window(self, proposal_id: int) -> VotingWindow:
        start, end = await self.client.call(
            self.contract.functions.getWindow(proposal_id), label="getWindow"
        )
        return VotingWindow(start=int(start), end=int(end))

    async def get_deadline(self, proposal_id: int) -> int:
        return int(await self.client.call(
            self.contract.functions.getDeadline(proposal_id), label="getDeadline"
        ))

    async def get_proposal(self, proposal_id: int) -> ProposalRecord:
        values = await self.client.call(
            self.contract.functions.proposals(proposal_id), label="proposals"
        )
        return ProposalRecord.from_tuple(proposal_id, values)

    async def send_publish_root(self, proposal_id: int, root: str, total_power: int,
                                quorum: int, threshold: int) -> str:
        fn = self.contract.functions.publishRoot(
            proposal_id, _bytes32(root), total_power, quorum, threshold
        )
        return await self.client.send(fn, label=f"publishRoot(#{proposal_id})")

    async def wait_for_receipt(self, tx_hash: str) -> TxReceipt:
        return await self.client.wait_for_receipt(tx_hash, label="publishRoot")


class GovernanceExecutor:
    """GovernanceExecutor on Chain A."""

    def __init__(self, client: ChainClient, address: str):
        self.client = client
        self.address = to_checksum_address(address)
        self.contract = client.contract(self.address, EXECUTOR_ABI)

    async def send_commit_action(self, action_data_hash: str) -> str:
        fn = self.contract.functions.commitAction(_bytes32(action_data_hash))
        return await self.client.send(fn, label="commitAction")

    async def send_execute_if_authorized(self, action_data: bytes) -> str:
        fn = self.contract.functions.executeIfAuthorized(bytes(action_data))
        return await self.client.send(fn, label="executeIfAuthorized")

    async def wait_for_receipt(self, tx_hash: str) -> TxReceipt:
        return await self.client.wait_for_receipt(tx_hash, label="executor tx")


class VoteVerifier:
    """VoteVerifier on Chain B."""

    def __init__(self, client: ChainClient, address: str):
        self.client = client
        self.address = to_checksum_address(address)
        self.contract = client.contract(self.address, VERIFIER_ABI)

    async def get_next_nonce(self, proposal_id: int, voter: str) -> int:
        fn = self.contract.functions.getNextNonce(proposal_id, to_checksum_address(voter))
        return int(await self.client.call(fn, label="getNextNonce"))

    async def send_freeze_proposal(self, proposal_id: int, power_root: str, action_data_hash: str,
                                   voting_start: int, voting_end: int,
                                   quorum: int, threshold: int) -> str:
        fn = self.contract.functions.freezeProposal(
            proposal_id, _bytes32(power_root), _bytes32(action_data_hash),
            voting_start, voting_end, quorum, threshold,
        )
        return await self.client.send(fn, label=f"freezeProposal(#{proposal_id})")

    async def wait_for_receipt(self, tx_hash: str) -> TxReceipt:
        return await self.client.wait_for_receipt(tx_hash, label="freezeProposal")

    async def batch_verify_and_tally(self, votes: Sequence[tuple], leaves: Sequence[str],
                                     proof: Sequence[str], proof_flags: Sequence[bool]) -> TxReceipt:
        fn = self.contract.functions.batchVerifyAndTally(
            list(votes),
            [_bytes32(leaf) for leaf in leaves],
            [_bytes32(node) for node in proof],
            list(proof_flags),
        )
        return await self.client.transact(fn, label="batchVerifyAndTally")

    async def latest_block(self) -> int:
        return await self.client.block_number()

    async def get_passed_events(self, from_block: int, to_block: int) -> List[ProposalPassedEvent]:
        logs = await self.client.get_logs(self.contract.events.ProposalPassed, from_block, to_block)
        events = [
            ProposalPassedEvent(
                proposal_id=int(log["args"]["proposalId"]),
                action_data_hash=normalize_hash(log["args"]["actionDataHash"]),
                block_number=int(log["blockNumber"]),
                tx_hash=HexBytes(log["transactionHash"]).to_0x_hex(),
                log_index=int(log["logIndex"]),
            )
            for log in logs
        ]
        return sorted(events, key=lambda e: (e.block_number, e.log_index))
