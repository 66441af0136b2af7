"""
CrossGov Governance Types

Data structures of the off-chain vote pipeline.

Defines:
  - Support tri-state (yes / no / abstain)
  - ProposalSnapshot, VotingWindow, ProposalRecord read from Chain A
  - VoteSubmission (inbound, untrusted) and VoteRecord (stored)
  - SubmitResult returned by the vote ledger
  - FrozenVoter, Tally, MerkleArtifact produced by the freezer

Large integers travel as decimal strings in every dict form so that
JSON consumers never lose precision.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..constants import VALID_DECIMAL_PATTERN
from ..crypto.address import is_valid_address, normalize_hash, to_checksum_address
from ..crypto.typed_data import TypedVote
from ..exceptions import ValidationError


def parse_uint(value: Union[int, str, None], name: str) -> int:
    """
    Parse an unsigned integer from an int or a decimal string.

    Raises:
        ValidationError: on missing, negative, boolean or non-decimal input
    """
    if value is None:
        raise ValidationError(f"Missing field: {name}")
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an unsigned integer")
    if isinstance(value, int):
        if value < 0:
            raise ValidationError(f"{name} must be non-negative")
        return value
    if isinstance(value, str) and VALID_DECIMAL_PATTERN.match(value.strip()):
        return int(value.strip())
    raise ValidationError(f"{name} must be a decimal integer, got {value!r}")


def parse_flag(value: Union[bool, str, None], name: str, default: bool = False) -> bool:
    """
    Parse a boolean from a JSON bool or the strings "true" / "false".

    Raises:
        ValidationError: on any other value
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValidationError(f"{name} must be true or false, got {value!r}")


# ══════════════════════════════════════════════════════════════════════
#  SUPPORT
# ══════════════════════════════════════════════════════════════════════

class Support(str, Enum):
    """Recorded stance of a vote."""
    YES     = "yes"
    NO      = "no"
    ABSTAIN = "abstain"

    @classmethod
    def from_signed(cls, support: bool, abstain: bool = False) -> 'Support':
        if abstain:
            return cls.ABSTAIN
        return cls.YES if support else cls.NO

    @property
    def signed_support(self) -> bool:
        """Value of the `support` field inside the signed struct."""
        return self is Support.YES


# ══════════════════════════════════════════════════════════════════════
#  PROPOSAL (Chain A)
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ProposalSnapshot:
    """Historical block and exchange rate pinned at proposal creation."""
    proposal_id: int
    block: int
    exchange_rate: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposalId": str(self.proposal_id),
            "snapshotBlock": self.block,
            "snapshotER": str(self.exchange_rate),
        }


@dataclass(frozen=True)
class VotingWindow:
    """Closed interval [start, end] in unix seconds."""
    start: int
    end: int

    def contains(self, now: int) -> bool:
        return self.start <= now <= self.end

    def is_closed(self, now: int) -> bool:
        return now > self.end


@dataclass(frozen=True)
class ProposalRecord:
    """
    The publisher's `proposals(id)` record on Chain A.

    Chain A is the authority for the action-data hash and the window;
    Chain B only ever mirrors these values.
    """
    proposal_id: int
    action_data_hash: str
    voting_start: int
    voting_end: int
    snapshot_block: int
    snapshot_er: int
    deadline: int
    power_root: str
    total_power: int
    quorum: int
    threshold: int
    frozen: bool

    @property
    def window(self) -> VotingWindow:
        return VotingWindow(self.voting_start, self.voting_end)

    @classmethod
    def from_tuple(cls, proposal_id: int, values) -> 'ProposalRecord':
        (action_hash, start, end, snap_block, snap_er, deadline,
         power_root, total_power, quorum, threshold, frozen) = values
        return cls(
            proposal_id=proposal_id,
            action_data_hash=normalize_hash(action_hash),
            voting_start=int(start),
            voting_end=int(end),
            snapshot_block=int(snap_block),
            snapshot_er=int(snap_er),
            deadline=int(deadline),
            power_root=normalize_hash(power_root),
            total_power=int(total_power),
            quorum=int(quorum),
            threshold=int(threshold),
            frozen=bool(frozen),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposalId": str(self.proposal_id),
            "actionDataHash": self.action_data_hash,
            "votingStart": self.voting_start,
            "votingEnd": self.voting_end,
            "snapshotBlock": self.snapshot_block,
            "snapshotER": str(self.snapshot_er),
            "deadline": self.deadline,
            "powerRoot": self.power_root,
            "totalPower": str(self.total_power),
            "quorum": str(self.quorum),
            "threshold": str(self.threshold),
            "frozen": self.frozen,
        }


# ══════════════════════════════════════════════════════════════════════
#  VOTES
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class VoteSubmission:
    """
    A vote as received from a client. Nothing here is trusted yet.

    Attributes:
        claimed_power: Optional power the client signed over; it must equal
            the recomputed power or the vote is rejected
    """
    proposal_id: int
    voter: str
    support: bool
    nonce: int
    deadline: int
    signature: str
    abstain: bool = False
    claimed_power: Optional[int] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'VoteSubmission':
        if not isinstance(d, dict):
            raise ValidationError("Vote body must be a JSON object")
        for name in ("proposalId", "voter", "signature"):
            if d.get(name) in (None, ""):
                raise ValidationError(f"Missing field: {name}")

        voter = d["voter"]
        if not is_valid_address(voter):
            raise ValidationError(f"Invalid voter address: {voter!r}")
        signature = d["signature"]
        if not isinstance(signature, str):
            raise ValidationError("signature must be a hex string")

        claimed = d.get("power")
        return cls(
            proposal_id=parse_uint(d["proposalId"], "proposalId"),
            voter=to_checksum_address(voter),
            support=parse_flag(d.get("support"), "support"),
            nonce=parse_uint(d.get("nonce"), "nonce"),
            deadline=parse_uint(d.get("deadline"), "deadline"),
            signature=signature,
            abstain=parse_flag(d.get("abstain"), "abstain"),
            claimed_power=None if claimed in (None, "") else parse_uint(claimed, "power"),
        )

    def typed_vote(self, power: int) -> TypedVote:
        """The struct the signature must cover, with the authoritative power."""
        return TypedVote(
            proposal_id=self.proposal_id,
            support=self.support,
            voter=self.voter,
            power=power,
            nonce=self.nonce,
            deadline=self.deadline,
        )


@dataclass(frozen=True)
class VoteRecord:
    """A verified vote as stored: one per (proposal, voter), highest nonce wins."""
    proposal_id: int
    voter: str
    power: int
    support: Support
    nonce: int
    deadline: int
    signature: str
    received_at: int = field(default_factory=lambda: int(time.time()))

    @property
    def signed_support(self) -> bool:
        return self.support.signed_support

    def typed_vote(self) -> TypedVote:
        return TypedVote(
            proposal_id=self.proposal_id,
            support=self.signed_support,
            voter=self.voter,
            power=self.power,
            nonce=self.nonce,
            deadline=self.deadline,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposalId": str(self.proposal_id),
            "voter": self.voter,
            "power": str(self.power),
            "support": self.support.value,
            "nonce": str(self.nonce),
            "deadline": str(self.deadline),
            "signature": self.signature,
            "receivedAt": self.received_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'VoteRecord':
        return cls(
            proposal_id=int(d["proposalId"]),
            voter=to_checksum_address(d["voter"]),
            power=int(d["power"]),
            support=Support(d["support"]),
            nonce=int(d["nonce"]),
            deadline=int(d["deadline"]),
            signature=d["signature"],
            received_at=int(d.get("receivedAt", 0)),
        )


class SubmitStatus(str, Enum):
    ACCEPTED = "accepted"
    IGNORED  = "ignored"


@dataclass(frozen=True)
class SubmitResult:
    """
    Outcome of VoteLedger.submit.

    `record` is the newly stored vote when accepted, or the vote that is
    still in force when the submission was ignored as stale.
    """
    status: SubmitStatus
    record: VoteRecord

    @property
    def accepted(self) -> bool:
        return self.status is SubmitStatus.ACCEPTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "status": self.status.value,
            "stored": self.record.to_dict(),
        }


# ══════════════════════════════════════════════════════════════════════
#  MERKLE ARTIFACT
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FrozenVoter:
    voter: str
    power: int
    support: Support
    nonce: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "voter": self.voter,
            "power": str(self.power),
            "support": self.support.value,
            "nonce": str(self.nonce),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'FrozenVoter':
        return cls(
            voter=to_checksum_address(d["voter"]),
            power=int(d["power"]),
            support=Support(d["support"]),
            nonce=int(d["nonce"]),
        )


@dataclass(frozen=True)
class Tally:
    for_power: int = 0
    against_power: int = 0
    abstain_power: int = 0

    @property
    def total(self) -> int:
        return self.for_power + self.against_power + self.abstain_power

    def add(self, support: Support, power: int) -> 'Tally':
        if support is Support.YES:
            return Tally(self.for_power + power, self.against_power, self.abstain_power)
        if support is Support.NO:
            return Tally(self.for_power, self.against_power + power, self.abstain_power)
        return Tally(self.for_power, self.against_power, self.abstain_power + power)

    def to_dict(self) -> Dict[str, str]:
        return {
            "for": str(self.for_power),
            "against": str(self.against_power),
            "abstain": str(self.abstain_power),
            "totalCounted": str(self.total),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Tally':
        return cls(int(d["for"]), int(d["against"]), int(d["abstain"]))


@dataclass(frozen=True)
class MerkleArtifact:
    """
    Immutable result of a freeze.

    `voters` and `leaves` share the canonical order (ascending voter
    address), so the tree can be rebuilt from this object alone.
    """
    proposal_id: int
    root: str
    counts: Tally
    voters: List[FrozenVoter]
    leaves: List[str]
    frozen_at: int = 0

    @property
    def total_power(self) -> int:
        return self.counts.total

    def voter_index(self) -> Dict[str, int]:
        return {v.voter: i for i, v in enumerate(self.voters)}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposalId": str(self.proposal_id),
            "root": self.root,
            "counts": self.counts.to_dict(),
            "voters": [v.to_dict() for v in self.voters],
            "leavesHexOrdered": list(self.leaves),
            "frozenAt": self.frozen_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'MerkleArtifact':
        return cls(
            proposal_id=int(d["proposalId"]),
            root=normalize_hash(d["root"]),
            counts=Tally.from_dict(d["counts"]),
            voters=[FrozenVoter.from_dict(v) for v in d["voters"]],
            leaves=[normalize_hash(leaf) for leaf in d["leavesHexOrdered"]],
            frozen_at=int(d.get("frozenAt", 0)),
        )
