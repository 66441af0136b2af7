"""
Cross-Chain Publisher

Moves a frozen root onto both chains in three phases:

    1. publishRoot(id, root, totalPower, quorum, threshold) on Chain A
    2. read proposals(id) back from Chain A (authoritative action hash and
       window, and confirmation that the root landed)
    3. freezeProposal(id, root, actionDataHash, start, end, quorum, threshold)
       on Chain B

The two chains cannot be updated atomically. A failure after phase 1 leaves
a PublicationRecord in CHAIN_A_PUBLISHED state and raises
ChainBMirrorFailed carrying the Chain A transaction, so an operator can run
`resume` (phases 2-3 only) instead of publishing twice.

Every transaction hash is stored before its receipt is awaited. A record in
CHAIN_A_SENT, or a CHAIN_A_PUBLISHED record that already carries a
chain_b_tx, means a transaction was broadcast but never confirmed; the next
publish or resume waits for that transaction instead of sending a second one.
A stored transaction that turns out to have reverted is sent again.
"""

from dataclasses import replace
from typing import Optional

from ..exceptions import (
    ArtifactNotFound,
    ChainAPublishFailed,
    ChainBMirrorFailed,
    FreezeConflict,
    TransactionFailed,
    UpstreamUnavailable,
    ValidationError,
)
from ..governance.types import MerkleArtifact
from ..logger import get_logger
from .types import PublicationRecord, PublicationStatus

logger = get_logger(__name__)


class CrossChainPublisher:
    """
    Args:
        publisher_a: GovernancePublisher on Chain A
        verifier_b: VoteVerifier on Chain B
        store: GovernanceStore for publication records and artifacts
    """

    def __init__(self, publisher_a, verifier_b, store):
        self.publisher_a = publisher_a
        self.verifier_b = verifier_b
        self.store = store

    async def publish(self, artifact: MerkleArtifact, quorum: int, threshold: int) -> PublicationRecord:
        """
        Raises:
            FreezeConflict: a different root was already published for the proposal
            ChainAPublishFailed: phase 1 did not succeed, or was sent but is
                still unconfirmed (the record stays CHAIN_A_SENT)
            ChainBMirrorFailed: Chain A holds the root but Chain B does not
        """
        pid = artifact.proposal_id
        existing = await self.store.get_publication(pid)
        if existing is not None:
            if existing.root != artifact.root:
                raise FreezeConflict(
                    f"Proposal #{pid} already published root {existing.root}; "
                    f"refusing to publish {artifact.root}"
                )
            if existing.is_mirrored:
                logger.info(f"Proposal #{pid} already published on both chains")
                return existing
            if existing.status == PublicationStatus.CHAIN_A_SENT:
                logger.warning(f"[A] publishRoot #{pid} was sent as {existing.chain_a_tx}; confirming it")
                existing = await self._confirm_chain_a(existing)
            if existing is not None:
                logger.warning(f"[A] Proposal #{pid} root already on Chain A ({existing.chain_a_tx}); resuming mirror")
                return await self._mirror(existing)

        logger.info(
            f"[A] publishRoot #{pid}: root {artifact.root} totalPower={artifact.total_power} "
            f"quorum={quorum} threshold={threshold}"
        )
        try:
            tx_hash = await self.publisher_a.send_publish_root(
                pid, artifact.root, artifact.total_power, quorum, threshold
            )
        except (TransactionFailed, UpstreamUnavailable) as exc:
            logger.error(f"[A] publishRoot #{pid} failed: {exc}")
            raise ChainAPublishFailed(f"publishRoot for proposal #{pid} failed: {exc}") from exc

        record = PublicationRecord(
            proposal_id=pid,
            root=artifact.root,
            total_power=artifact.total_power,
            quorum=quorum,
            threshold=threshold,
            status=PublicationStatus.CHAIN_A_SENT,
            chain_a_tx=tx_hash,
        )
        await self.store.put_publication(record)
        confirmed = await self._confirm_chain_a(record)
        if confirmed is None:
            raise ChainAPublishFailed(f"publishRoot for proposal #{pid} reverted ({tx_hash})")
        return await self._mirror(confirmed)

    async def resume(self, proposal_id: int, quorum: Optional[int] = None,
                     threshold: Optional[int] = None) -> PublicationRecord:
        """
        Run phases 2-3 for a root already on Chain A.

        Without a stored publication record (root published by hand), the
        stored artifact plus `quorum` / `threshold` describe it.
        """
        record = await self.store.get_publication(proposal_id)
        if record is None:
            artifact = await self.store.get_artifact(proposal_id)
            if artifact is None:
                raise ArtifactNotFound(f"No merkle artifact found for proposal #{proposal_id}. Freeze first.")
            if quorum is None or threshold is None:
                raise ValidationError("quorum and threshold are required when no publication is recorded")
            record = PublicationRecord(
                proposal_id=proposal_id,
                root=artifact.root,
                total_power=artifact.total_power,
                quorum=quorum,
                threshold=threshold,
                status=PublicationStatus.CHAIN_A_PUBLISHED,
                chain_a_tx="",
            )
        if record.is_mirrored:
            logger.info(f"Proposal #{proposal_id} already mirrored to Chain B ({record.chain_b_tx})")
            return record
        if record.status == PublicationStatus.CHAIN_A_SENT:
            tx_hash = record.chain_a_tx
            record = await self._confirm_chain_a(record)
            if record is None:
                raise ChainAPublishFailed(
                    f"publishRoot for proposal #{proposal_id} reverted ({tx_hash}); run publish again"
                )
        return await self._mirror(record)

    async def _confirm_chain_a(self, record: PublicationRecord) -> Optional[PublicationRecord]:
        """
        Wait for the stored publishRoot transaction.

        Returns:
            The CHAIN_A_PUBLISHED record, or None when the transaction reverted

        Raises:
            ChainAPublishFailed: no receipt yet; the record stays CHAIN_A_SENT
        """
        pid = record.proposal_id
        try:
            receipt = await self.publisher_a.wait_for_receipt(record.chain_a_tx)
        except TransactionFailed as exc:
            logger.error(f"[A] publishRoot #{pid} reverted: {exc}")
            return None
        except UpstreamUnavailable as exc:
            logger.error(
                f"[A] publishRoot #{pid} sent as {record.chain_a_tx} but not confirmed. "
                f"Run publish or resume again to confirm it: {exc}"
            )
            raise ChainAPublishFailed(
                f"publishRoot for proposal #{pid} sent as {record.chain_a_tx} but not confirmed: {exc}"
            ) from exc

        record = replace(record, status=PublicationStatus.CHAIN_A_PUBLISHED)
        await self.store.put_publication(record)
        logger.info(f"[A] RootPublished #{pid} in block {receipt.block_number}")
        return record

    async def _mirror(self, record: PublicationRecord) -> PublicationRecord:
        pid = record.proposal_id
        try:
            proposal = await self.publisher_a.get_proposal(pid)
        except UpstreamUnavailable as exc:
            logger.error(f"[A] proposals(#{pid}) read-back failed after publish: {exc}")
            raise ChainBMirrorFailed(
                f"Root for #{pid} is on Chain A but read-back failed: {exc}", pid, record.chain_a_tx
            ) from exc

        if proposal.power_root != record.root:
            logger.error(
                f"[A] Proposal #{pid} reports root {proposal.power_root}, expected {record.root}"
            )
            raise ChainBMirrorFailed(
                f"Chain A root {proposal.power_root} does not match published {record.root}",
                pid, record.chain_a_tx,
            )

        receipt = None
        if record.chain_b_tx:
            logger.warning(f"[B] freezeProposal #{pid} was sent as {record.chain_b_tx}; confirming it")
            receipt = await self._wait_chain_b(record)
            if receipt is None:
                record = replace(record, chain_b_tx="")

        if receipt is None:
            logger.info(
                f"[B] freezeProposal #{pid}: actionDataHash {proposal.action_data_hash} "
                f"window [{proposal.voting_start}, {proposal.voting_end}]"
            )
            try:
                tx_hash = await self.verifier_b.send_freeze_proposal(
                    pid, record.root, proposal.action_data_hash,
                    proposal.voting_start, proposal.voting_end,
                    record.quorum, record.threshold,
                )
            except (TransactionFailed, UpstreamUnavailable) as exc:
                self._mirror_failed(record, exc)
            record = replace(record, chain_b_tx=tx_hash)
            await self.store.put_publication(record)
            receipt = await self._wait_chain_b(record)
            if receipt is None:
                self._mirror_failed(record, TransactionFailed(f"tx {record.chain_b_tx} reverted", record.chain_b_tx))

        record = record.mirrored(
            chain_b_tx=record.chain_b_tx,
            action_data_hash=proposal.action_data_hash,
            voting_start=proposal.voting_start,
            voting_end=proposal.voting_end,
        )
        await self.store.put_publication(record)
        logger.info(f"[B] ProposalFrozen #{pid} in block {receipt.block_number}")
        return record

    async def _wait_chain_b(self, record: PublicationRecord):
        """Receipt of the stored freezeProposal tx, or None when it reverted."""
        try:
            return await self.verifier_b.wait_for_receipt(record.chain_b_tx)
        except TransactionFailed as exc:
            logger.error(f"[B] freezeProposal #{record.proposal_id} reverted: {exc}")
            return None
        except UpstreamUnavailable as exc:
            self._mirror_failed(record, exc)

    def _mirror_failed(self, record: PublicationRecord, exc: Exception):
        pid = record.proposal_id
        logger.error(
            f"[B] freezeProposal #{pid} failed; Chain A tx {record.chain_a_tx} stands. "
            f"Run resume to retry: {exc}"
        )
        raise ChainBMirrorFailed(
            f"freezeProposal for proposal #{pid} failed: {exc}", pid, record.chain_a_tx
        ) from exc
