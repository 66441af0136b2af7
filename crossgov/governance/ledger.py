"""
CrossGov Vote Ledger

Accepts signed votes and keeps exactly one per (proposal, voter): the one
with the highest nonce. Power is always recomputed by the Power Oracle and
the signature is checked over the tuple carrying that authoritative power.

Submission and freeze serialize on the same per-proposal asyncio.Lock, so a
freeze snapshot never observes a half-applied replacement.
"""

import asyncio
import time
from typing import Callable, Dict, List, Optional

from ..crypto.address import to_checksum_address
from ..crypto.typed_data import SignatureVerifier
from ..exceptions import StaleNonce, ValidationError
from ..logger import get_logger
from .power import PowerOracle
from .types import (
    Support,
    SubmitResult,
    SubmitStatus,
    VoteRecord,
    VoteSubmission,
    VotingWindow,
)

logger = get_logger(__name__)


ABSTAIN_SIDE_CHANNEL = "side-channel"
ABSTAIN_REJECT = "reject"
ABSTAIN_MODES = (ABSTAIN_SIDE_CHANNEL, ABSTAIN_REJECT)


class VoteLedger:
    """
    Args:
        oracle: PowerOracle for the authoritative power
        verifier: SignatureVerifier bound to the Chain B domain
        publisher: Chain A publisher exposing `get_window(proposal_id)`
        store: GovernanceStore holding the votes
        clock: Returns unix seconds; injectable for tests
        abstain_mode: "side-channel" accepts the unsigned abstain flag,
            "reject" refuses abstain votes outright
    """

    def __init__(
        self,
        oracle: PowerOracle,
        verifier: SignatureVerifier,
        publisher,
        store,
        clock: Callable[[], float] = time.time,
        abstain_mode: str = ABSTAIN_SIDE_CHANNEL,
    ):
        if abstain_mode not in ABSTAIN_MODES:
            raise ValueError(f"abstain_mode must be one of {ABSTAIN_MODES}")
        self.oracle = oracle
        self.verifier = verifier
        self.publisher = publisher
        self.store = store
        self.clock = clock
        self.abstain_mode = abstain_mode
        self._locks: Dict[int, asyncio.Lock] = {}
        if abstain_mode == ABSTAIN_SIDE_CHANNEL:
            logger.warning(
                "Abstain mode is side-channel: the abstain flag is not signed, so anyone "
                "relaying a signed 'no' vote can relabel it as abstain. "
                "Set governance.abstain_mode = \"reject\" to refuse abstain votes."
            )

    def lock_for(self, proposal_id: int) -> asyncio.Lock:
        lock = self._locks.get(proposal_id)
        if lock is None:
            lock = self._locks[proposal_id] = asyncio.Lock()
        return lock

    def now(self) -> int:
        return int(self.clock())

    async def get_window(self, proposal_id: int) -> VotingWindow:
        return await self.publisher.get_window(proposal_id)

    def _check_abstain(self, submission: VoteSubmission) -> None:
        if not submission.abstain:
            return
        if self.abstain_mode == ABSTAIN_REJECT:
            raise ValidationError("Abstain votes are not accepted")
        if submission.support:
            raise ValidationError("Abstain vote must be signed with support=false")

    async def submit(self, submission: VoteSubmission) -> SubmitResult:
        """
        Validate, verify and store a vote.

        Returns:
            SubmitResult ACCEPTED with the new record, or IGNORED with the
            record still in force when the nonce is not above the stored one

        Raises:
            ValidationError: bad address, outside window, expired deadline,
                abstain misuse or client power mismatch
            BadSignature: signer is not the voter
            UpstreamUnavailable: Chain A read failed
        """
        voter = to_checksum_address(submission.voter)
        pid = submission.proposal_id

        window = await self.get_window(pid)
        now = self.now()
        if not window.contains(now):
            raise ValidationError(
                f"outside voting window [{window.start}, {window.end}] at {now}"
            )
        if now > submission.deadline:
            raise ValidationError("Expired signature")
        self._check_abstain(submission)

        power = await self.oracle.compute_power(pid, voter)
        if submission.claimed_power is not None and submission.claimed_power != power:
            raise ValidationError(
                f"client power mismatch: claimed {submission.claimed_power}, computed {power}"
            )

        self.verifier.verify(submission.typed_vote(power), submission.signature)

        record = VoteRecord(
            proposal_id=pid,
            voter=voter,
            power=power,
            support=Support.from_signed(submission.support, submission.abstain),
            nonce=submission.nonce,
            deadline=submission.deadline,
            signature=submission.signature,
            received_at=now,
        )

        async with self.lock_for(pid):
            try:
                stored = await self._store_if_newer(record)
            except StaleNonce as stale:
                logger.info(
                    f"Ignored vote pid={pid} {voter}: nonce {stale.incoming} "
                    f"not above stored {stale.stored}"
                )
                current = await self.store.get_vote(pid, voter)
                return SubmitResult(SubmitStatus.IGNORED, current)

        logger.info(
            f"Accepted vote pid={pid} {voter}: {stored.support.value} "
            f"power={stored.power} nonce={stored.nonce}"
        )
        return SubmitResult(SubmitStatus.ACCEPTED, stored)

    async def _store_if_newer(self, record: VoteRecord) -> VoteRecord:
        current = await self.store.get_vote(record.proposal_id, record.voter)
        if current is not None and current.nonce >= record.nonce:
            raise StaleNonce(record.proposal_id, record.voter, current.nonce, record.nonce)
        if not await self.store.put_vote(record):
            # another writer on the same store got there first
            current = await self.store.get_vote(record.proposal_id, record.voter)
            raise StaleNonce(
                record.proposal_id, record.voter,
                current.nonce if current else record.nonce, record.nonce,
            )
        return record

    async def get_vote(self, proposal_id: int, voter: str) -> Optional[VoteRecord]:
        return await self.store.get_vote(proposal_id, to_checksum_address(voter))

    async def snapshot(self, proposal_id: int) -> List[VoteRecord]:
        """All stored votes for a proposal, read under the proposal lock."""
        async with self.lock_for(proposal_id):
            return await self.store.list_votes(proposal_id)
