"""
CrossGov Governance Service

Wires one governance pipeline from configuration:

    Power Oracle → Signature Verifier → Vote Ledger → Merkle Freezer
                                                    → Multiproof Builder
                                                    → Cross-Chain Publisher
                                                    → Relayer

Chain ids and contract addresses are injected, never hardcoded, so the same
service drives any Chain A / Chain B pair. The HTTP API and the CLI are thin
layers over this class.
"""

import asyncio
import os
import time
from typing import Any, Callable, Dict, Iterable, Optional

from .bridge.actions import ActionRegistry
from .bridge.publisher import CrossChainPublisher
from .bridge.relayer import Relayer
from .bridge.types import PublicationRecord
from .crypto.address import to_checksum_address
from .crypto.typed_data import Eip712Domain, SignatureVerifier
from .exceptions import ArtifactIntegrityError, ConfigurationError, ValidationError
from .governance.freezer import FREEZE_POLICY_LIVE, MerkleFreezer
from .governance.ledger import ABSTAIN_SIDE_CHANNEL, VoteLedger
from .governance.multiproof import Multiproof, MultiproofBuilder, batch_calldata
from .governance.power import PowerOracle
from .governance.types import MerkleArtifact, SubmitResult, VoteSubmission
from .logger import get_logger

logger = get_logger(__name__)


class GovernanceService:
    """
    Args:
        publisher_a: GovernancePublisher on Chain A
        primary_token: TokenBalance for the primary asset
        derivative_token: TokenBalance for the liquid-staking share token
        verifier_b: VoteVerifier on Chain B
        store: GovernanceStore
        domain: EIP-712 domain bound to the Chain B verifier
        executor_a: GovernanceExecutor on Chain A (relaying only)
        clients: ChainClients owned by the service, closed on `close()`
    """

    def __init__(
        self,
        publisher_a,
        primary_token,
        derivative_token,
        verifier_b,
        store,
        domain: Eip712Domain,
        executor_a=None,
        freeze_policy: str = FREEZE_POLICY_LIVE,
        require_window_closed: bool = False,
        abstain_mode: str = ABSTAIN_SIDE_CHANNEL,
        default_quorum: int = 0,
        default_threshold: int = 0,
        clock: Callable[[], float] = time.time,
        clients: Iterable = (),
    ):
        self.publisher_a = publisher_a
        self.verifier_b = verifier_b
        self.executor_a = executor_a
        self.store = store
        self.domain = domain
        self.default_quorum = default_quorum
        self.default_threshold = default_threshold
        self._clients = list(clients)

        self.oracle = PowerOracle(publisher_a, primary_token, derivative_token)
        self.verifier = SignatureVerifier(domain)
        self.ledger = VoteLedger(
            self.oracle, self.verifier, publisher_a, store,
            clock=clock, abstain_mode=abstain_mode,
        )
        self.freezer = MerkleFreezer(
            self.ledger, store, policy=freeze_policy,
            require_window_closed=require_window_closed, clock=clock,
        )
        self.builder = MultiproofBuilder(store)
        self.publisher = CrossChainPublisher(publisher_a, verifier_b, store)

    @classmethod
    async def from_config(cls, config) -> "GovernanceService":
        """
        Build chain clients, contract wrappers and the store from a
        validated CrossGovConfig.

        Raises:
            ConfigurationError: a required contract address is missing
            UpstreamUnavailable: Chain B chain id could not be fetched
        """
        from .chains import (
            ChainClient,
            GovernanceExecutor,
            GovernancePublisher,
            TokenBalance,
            VoteVerifier,
        )
        from .storage import open_store

        a, b = config.chain_a, config.chain_b
        for section, name, value in (
            ("chain_a", "publisher", a.publisher),
            ("chain_a", "primary_token", a.primary_token),
            ("chain_a", "derivative_token", a.derivative_token),
            ("chain_b", "verifier", b.verifier),
        ):
            if not value:
                raise ConfigurationError(f"{section}.{name} must be set")

        client_a = ChainClient("A", a.rpc_url, a.private_key, a.chain_id or None, a.receipt_timeout)
        client_b = ChainClient("B", b.rpc_url, b.private_key, b.chain_id or None, b.receipt_timeout)
        chain_b_id = await client_b.get_chain_id()

        if config.storage.backend == "sqlite":
            directory = os.path.dirname(config.storage.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
        store = await open_store(config.storage.backend, config.storage.path)

        gov = config.governance
        service = cls(
            publisher_a=GovernancePublisher(client_a, a.publisher),
            primary_token=TokenBalance(client_a, a.primary_token),
            derivative_token=TokenBalance(client_a, a.derivative_token),
            verifier_b=VoteVerifier(client_b, b.verifier),
            store=store,
            domain=Eip712Domain(chain_id=chain_b_id, verifying_contract=b.verifier),
            executor_a=GovernanceExecutor(client_a, a.executor) if a.executor else None,
            freeze_policy=gov.freeze_policy,
            require_window_closed=gov.require_window_closed,
            abstain_mode=gov.abstain_mode,
            default_quorum=gov.quorum,
            default_threshold=gov.threshold,
            clients=(client_a, client_b),
        )
        logger.info(
            f"Governance service ready: chain B {chain_b_id} verifier {b.verifier}, "
            f"storage {config.storage.backend}"
        )
        return service

    # ══════════════════════════════════════════════════════════════════
    #  VOTE INTAKE
    # ══════════════════════════════════════════════════════════════════

    async def proposal_info(self, proposal_id: int) -> Dict[str, Any]:
        """Snapshot, window and deadline from Chain A plus the signing domain."""
        snapshot, window, deadline = await asyncio.gather(
            self.publisher_a.get_snapshot(proposal_id),
            self.publisher_a.get_window(proposal_id),
            self.publisher_a.get_deadline(proposal_id),
        )
        return {
            "proposalId": str(proposal_id),
            "snapshotBlock": snapshot.block,
            "snapshotER": str(snapshot.exchange_rate),
            "votingStart": window.start,
            "votingEnd": window.end,
            "deadline": deadline,
            "chainB": {
                "chainId": self.domain.chain_id,
                "verifier": to_checksum_address(self.domain.verifying_contract),
            },
        }

    async def compute_power(self, proposal_id: int, voter: str) -> int:
        return await self.oracle.compute_power(proposal_id, voter)

    async def submit_vote(self, payload: Dict[str, Any]) -> SubmitResult:
        return await self.ledger.submit(VoteSubmission.from_dict(payload))

    async def next_nonce(self, proposal_id: int, voter: str) -> int:
        return await self.verifier_b.get_next_nonce(proposal_id, to_checksum_address(voter))

    # ══════════════════════════════════════════════════════════════════
    #  FREEZE AND PROOFS
    # ══════════════════════════════════════════════════════════════════

    async def freeze(self, proposal_id: int) -> MerkleArtifact:
        return await self.freezer.freeze(proposal_id)

    async def multiproof(self, proposal_id: int, voters: Optional[Iterable[str]] = None) -> Multiproof:
        return await self.builder.prove(proposal_id, voters)

    async def batch_verify(self, proposal_id: int, voters: Optional[Iterable[str]] = None):
        """
        Submit a multiproof batch of stored votes to `batchVerifyAndTally`.

        The root is recomputed locally first; a batch that would not verify
        on Chain B is never sent.

        Raises:
            ArtifactIntegrityError: the multiproof does not reproduce the root
            ValidationError: a frozen vote is missing from storage
        """
        multiproof = await self.multiproof(proposal_id, voters)
        if not multiproof.verify():
            raise ArtifactIntegrityError(
                f"Multiproof for #{proposal_id} does not reproduce root {multiproof.root}"
            )

        records = {}
        for voter in multiproof.addresses:
            record = await self.store.get_vote(proposal_id, voter)
            if record is not None:
                records[voter] = record
        votes = batch_calldata(multiproof, records)

        logger.info(
            f"[B] batchVerifyAndTally #{proposal_id}: {len(votes)} vote(s), "
            f"{len(multiproof.proof)} proof node(s)"
        )
        return await self.verifier_b.batch_verify_and_tally(
            votes, multiproof.leaves, multiproof.proof, multiproof.proof_flags
        )

    # ══════════════════════════════════════════════════════════════════
    #  CROSS-CHAIN
    # ══════════════════════════════════════════════════════════════════

    def _thresholds(self, quorum: Optional[int], threshold: Optional[int]):
        quorum = self.default_quorum if quorum is None else quorum
        threshold = self.default_threshold if threshold is None else threshold
        if quorum < 0 or threshold < 0:
            raise ValidationError("quorum and threshold must be non-negative")
        return quorum, threshold

    async def publish(self, proposal_id: int, quorum: Optional[int] = None,
                      threshold: Optional[int] = None) -> PublicationRecord:
        artifact = await self.freezer.get_artifact(proposal_id)
        quorum, threshold = self._thresholds(quorum, threshold)
        return await self.publisher.publish(artifact, quorum, threshold)

    async def resume(self, proposal_id: int, quorum: Optional[int] = None,
                     threshold: Optional[int] = None) -> PublicationRecord:
        if quorum is None and threshold is None and await self.store.get_publication(proposal_id):
            return await self.publisher.resume(proposal_id)
        quorum, threshold = self._thresholds(quorum, threshold)
        return await self.publisher.resume(proposal_id, quorum, threshold)

    def build_relayer(self, actions: ActionRegistry, relayer_config=None) -> Relayer:
        """
        Raises:
            ConfigurationError: no GovernanceExecutor configured on Chain A
        """
        if self.executor_a is None:
            raise ConfigurationError("chain_a.executor must be set to run the relayer")
        options: Dict[str, Any] = {}
        if relayer_config is not None:
            options = dict(
                commit_before_execute=relayer_config.commit_before_execute,
                poll_interval=relayer_config.poll_interval,
                batch_size=relayer_config.batch_size,
                max_concurrency=relayer_config.max_concurrency,
                start_block=relayer_config.start_block,
            )
        return Relayer(self.verifier_b, self.publisher_a, self.executor_a, actions, self.store, **options)

    async def close(self) -> None:
        await self.store.close()
        for client in self._clients:
            await client.close()
