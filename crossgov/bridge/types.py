"""
CrossGov Bridge Types

Core data structures shared by the cross-chain publisher and the relayer.

Defines:
  - RelayState per-proposal state machine
    (IDLE → OBSERVED → VERIFIED → SUBMITTED → EXECUTED)
  - ExecutionRecord, the persisted once-only execution ledger entry
  - ProposalPassedEvent decoded from Chain B logs
  - PublicationStatus / PublicationRecord tracking the two-chain publish
"""

import time
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Any, Dict

from ..crypto.address import normalize_hash
from ..exceptions import CrossGovError
from ..logger import get_logger

logger = get_logger(__name__)


class RelayStateError(CrossGovError):
    """Illegal relay state transition."""


# ══════════════════════════════════════════════════════════════════════
#  RELAY STATE MACHINE
# ══════════════════════════════════════════════════════════════════════

class RelayState(IntEnum):
    IDLE      = 0   # Nothing observed, or released for retry
    OBSERVED  = 1   # ProposalPassed seen on Chain B
    VERIFIED  = 2   # Hashes agree across chains and with the local payload
    SUBMITTED = 3   # executeIfAuthorized broadcast, receipt pending
    EXECUTED  = 4   # executeIfAuthorized mined on Chain A
    ABORTED   = 5   # Hash mismatch or reverted execution


_VALID_TRANSITIONS: Dict[RelayState, set] = {
    RelayState.IDLE:      {RelayState.OBSERVED},
    RelayState.OBSERVED:  {RelayState.VERIFIED, RelayState.ABORTED, RelayState.IDLE},
    RelayState.VERIFIED:  {RelayState.SUBMITTED, RelayState.ABORTED, RelayState.IDLE},
    # a broadcast tx is only ever confirmed, never sent again
    RelayState.SUBMITTED: {RelayState.EXECUTED, RelayState.ABORTED},
    # Terminal states, never re-executed
    RelayState.EXECUTED:  set(),
    RelayState.ABORTED:   set(),
}


def is_terminal(state: RelayState) -> bool:
    return not _VALID_TRANSITIONS[state]


@dataclass(frozen=True)
class ProposalPassedEvent:
    """`ProposalPassed(uint256 indexed proposalId, bytes32 actionDataHash)` on Chain B."""
    proposal_id: int
    action_data_hash: str
    block_number: int
    tx_hash: str = ""
    log_index: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposalId": str(self.proposal_id),
            "actionDataHash": self.action_data_hash,
            "blockNumber": self.block_number,
            "txHash": self.tx_hash,
            "logIndex": self.log_index,
        }


@dataclass(frozen=True)
class ExecutionRecord:
    """
    Persisted relay progress for one proposal.

    Attributes:
        state: Current RelayState
        action_data_hash: Authoritative Chain A hash, once read
        event_block: Chain B block of the ProposalPassed log
        commit_tx: Chain A commitAction tx, when commit-before-execute is on
        execution_tx: Chain A executeIfAuthorized tx
        reason: Human-readable cause of the last abort or release
    """
    proposal_id: int
    state: RelayState = RelayState.IDLE
    action_data_hash: str = ""
    event_block: int = 0
    event_tx: str = ""
    commit_tx: str = ""
    execution_tx: str = ""
    reason: str = ""
    updated_at: int = field(default_factory=lambda: int(time.time()))

    def transition(self, new_state: RelayState, reason: str = "", **changes) -> 'ExecutionRecord':
        """
        Return a copy in `new_state`.

        Raises:
            RelayStateError: if the transition is not allowed
        """
        allowed = _VALID_TRANSITIONS.get(self.state, set())
        if new_state not in allowed:
            raise RelayStateError(
                f"Cannot transition proposal #{self.proposal_id} from "
                f"{self.state.name} → {new_state.name}. Allowed: {[s.name for s in allowed]}"
            )
        logger.info(
            f"Relay #{self.proposal_id}: {self.state.name} → {new_state.name}"
            + (f" | {reason}" if reason else "")
        )
        return replace(self, state=new_state, reason=reason, updated_at=int(time.time()), **changes)

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.state)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposalId": str(self.proposal_id),
            "state": self.state.name,
            "actionDataHash": self.action_data_hash,
            "eventBlock": self.event_block,
            "eventTx": self.event_tx,
            "commitTx": self.commit_tx,
            "executionTx": self.execution_tx,
            "reason": self.reason,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'ExecutionRecord':
        return cls(
            proposal_id=int(d["proposalId"]),
            state=RelayState[d["state"]],
            action_data_hash=d.get("actionDataHash", ""),
            event_block=int(d.get("eventBlock", 0)),
            event_tx=d.get("eventTx", ""),
            commit_tx=d.get("commitTx", ""),
            execution_tx=d.get("executionTx", ""),
            reason=d.get("reason", ""),
            updated_at=int(d.get("updatedAt", 0)),
        )


# ══════════════════════════════════════════════════════════════════════
#  PUBLICATION
# ══════════════════════════════════════════════════════════════════════

class PublicationStatus(IntEnum):
    CHAIN_A_SENT      = 0   # publishRoot broadcast, receipt pending
    CHAIN_A_PUBLISHED = 1   # publishRoot mined on Chain A, not yet mirrored
    MIRRORED          = 2   # freezeProposal mined on Chain B


@dataclass(frozen=True)
class PublicationRecord:
    """Where a frozen root stands on the two chains."""
    proposal_id: int
    root: str
    total_power: int
    quorum: int
    threshold: int
    status: PublicationStatus
    chain_a_tx: str
    chain_b_tx: str = ""
    action_data_hash: str = ""
    voting_start: int = 0
    voting_end: int = 0
    published_at: int = field(default_factory=lambda: int(time.time()))

    def __post_init__(self):
        object.__setattr__(self, "root", normalize_hash(self.root))

    @property
    def is_mirrored(self) -> bool:
        return self.status == PublicationStatus.MIRRORED

    def mirrored(self, chain_b_tx: str, action_data_hash: str,
                 voting_start: int, voting_end: int) -> 'PublicationRecord':
        return replace(
            self,
            status=PublicationStatus.MIRRORED,
            chain_b_tx=chain_b_tx,
            action_data_hash=action_data_hash,
            voting_start=voting_start,
            voting_end=voting_end,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposalId": str(self.proposal_id),
            "root": self.root,
            "totalPower": str(self.total_power),
            "quorum": str(self.quorum),
            "threshold": str(self.threshold),
            "status": self.status.name,
            "chainATx": self.chain_a_tx,
            "chainBTx": self.chain_b_tx,
            "actionDataHash": self.action_data_hash,
            "votingStart": self.voting_start,
            "votingEnd": self.voting_end,
            "publishedAt": self.published_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'PublicationRecord':
        return cls(
            proposal_id=int(d["proposalId"]),
            root=d["root"],
            total_power=int(d["totalPower"]),
            quorum=int(d["quorum"]),
            threshold=int(d["threshold"]),
            status=PublicationStatus[d["status"]],
            chain_a_tx=d["chainATx"],
            chain_b_tx=d.get("chainBTx", ""),
            action_data_hash=d.get("actionDataHash", ""),
            voting_start=int(d.get("votingStart", 0)),
            voting_end=int(d.get("votingEnd", 0)),
            published_at=int(d.get("publishedAt", 0)),
        )

