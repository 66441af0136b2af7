"""
Relayer

Watches Chain B for `ProposalPassed(proposalId, actionDataHash)` and
executes the proposal's action on Chain A exactly once:

    IDLE → OBSERVED    event seen, progress persisted
         → VERIFIED    event hash == Chain A proposals(id).actionDataHash
                       == keccak256(local actionData)
         → SUBMITTED   executeIfAuthorized(actionData) broadcast, tx hash saved
         → EXECUTED    receipt confirmed
    any  → ABORTED     hash mismatch or reverted tx

Execution dedup lives in the GovernanceStore, so restarts and rescans never
execute twice. A SUBMITTED record is only ever confirmed from its saved tx
hash, never sent again. The consumer loop polls logs in block ranges from a
persisted checkpoint; events that fail on an unavailable RPC, or whose
proposal has no configured action yet, keep the checkpoint below their
block and are retried on the next poll.
"""

import asyncio
from dataclasses import replace
from typing import Dict, Optional, Set, Tuple

from ..constants import (
    RELAYER_BLOCK_BATCH_SIZE,
    RELAYER_CHECKPOINT_KEY,
    RELAYER_MAX_CONCURRENCY,
    RELAYER_POLL_INTERVAL,
    RELAYER_SHUTDOWN_GRACE,
)
from ..crypto.address import normalize_hash
from ..exceptions import (
    ActionNotConfigured,
    HashMismatch,
    TransactionFailed,
    UpstreamUnavailable,
    ValidationError,
)
from ..logger import get_logger
from .actions import ActionRegistry
from .types import ExecutionRecord, ProposalPassedEvent, RelayState

logger = get_logger(__name__)


class Relayer:
    """
    Args:
        verifier_b: VoteVerifier on Chain B (ProposalPassed source)
        publisher_a: GovernancePublisher on Chain A (authoritative hash)
        executor_a: GovernanceExecutor on Chain A
        actions: ActionRegistry resolving proposal id → action payload
        store: GovernanceStore holding executions and the checkpoint
        commit_before_execute: send commitAction(hash) before executing
        start_block: first Chain B block to scan when no checkpoint exists;
            defaults to the current head
    """

    def __init__(
        self,
        verifier_b,
        publisher_a,
        executor_a,
        actions: ActionRegistry,
        store,
        commit_before_execute: bool = False,
        poll_interval: float = RELAYER_POLL_INTERVAL,
        batch_size: int = RELAYER_BLOCK_BATCH_SIZE,
        max_concurrency: int = RELAYER_MAX_CONCURRENCY,
        start_block: Optional[int] = None,
        checkpoint_key: str = RELAYER_CHECKPOINT_KEY,
    ):
        if batch_size < 1 or max_concurrency < 1:
            raise ValueError("batch_size and max_concurrency must be positive")
        self.verifier_b = verifier_b
        self.publisher_a = publisher_a
        self.executor_a = executor_a
        self.actions = actions
        self.store = store
        self.commit_before_execute = commit_before_execute
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.start_block = start_block
        self.checkpoint_key = checkpoint_key

        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._locks: Dict[int, asyncio.Lock] = {}
        self._inflight: Dict[int, Tuple[ProposalPassedEvent, asyncio.Task]] = {}
        self._retry: Dict[int, ProposalPassedEvent] = {}
        self._unconfigured: Set[int] = set()
        self._scanned_to: Optional[int] = None

    def _lock(self, proposal_id: int) -> asyncio.Lock:
        lock = self._locks.get(proposal_id)
        if lock is None:
            lock = self._locks[proposal_id] = asyncio.Lock()
        return lock

    # ══════════════════════════════════════════════════════════════════
    #  PER-EVENT STATE MACHINE
    # ══════════════════════════════════════════════════════════════════

    async def _save(self, record: ExecutionRecord) -> ExecutionRecord:
        await self.store.record_execution(record)
        return record

    async def handle_event(self, event: ProposalPassedEvent) -> ExecutionRecord:
        """
        Drive one proposal through the relay state machine.

        Returns:
            The persisted ExecutionRecord (EXECUTED, ABORTED, or the
            terminal record found when the proposal was already handled)

        Raises:
            ActionNotConfigured: no action payload for the proposal; the
                record is released to IDLE so a fixed actions file can
                still execute it
            UpstreamUnavailable: a chain read or send failed. A record whose
                execution was already broadcast stays SUBMITTED; anything
                earlier is released to IDLE
        """
        pid = event.proposal_id
        async with self._lock(pid):
            record = await self.store.get_execution(pid)
            if record is None:
                record = ExecutionRecord(proposal_id=pid)
            if record.is_terminal:
                logger.info(f"(skip) Relay #{pid} already {record.state.name}")
                return record
            if record.state == RelayState.SUBMITTED:
                logger.warning(
                    f"Relay #{pid} executeIfAuthorized {record.execution_tx} already sent; "
                    f"waiting for its receipt"
                )
                return await self._settle(record, self._confirm(record))
            if record.state != RelayState.IDLE:
                logger.warning(
                    f"Relay #{pid} found in {record.state.name} from an earlier run; re-verifying"
                )
                record = await self._save(record.transition(RelayState.IDLE, "interrupted"))

            logger.info(
                f"[B] ProposalPassed pid={pid} hash={event.action_data_hash} (block {event.block_number})"
            )
            record = await self._save(record.transition(
                RelayState.OBSERVED,
                event_block=event.block_number,
                event_tx=event.tx_hash,
            ))
            return await self._settle(record, self._verify_and_execute(record, event))

    async def _settle(self, record: ExecutionRecord, step) -> ExecutionRecord:
        pid = record.proposal_id
        try:
            return await step
        except (HashMismatch, TransactionFailed) as exc:
            logger.error(f"Relay #{pid} aborted: {exc}")
            current = await self.store.get_execution(pid) or record
            return await self._save(current.transition(RelayState.ABORTED, str(exc)))
        except Exception as exc:
            current = await self.store.get_execution(pid) or record
            if current.state != RelayState.SUBMITTED:
                await self._save(current.transition(RelayState.IDLE, str(exc)))
            raise

    async def _verify_and_execute(self, record: ExecutionRecord,
                                  event: ProposalPassedEvent) -> ExecutionRecord:
        pid = record.proposal_id
        proposal = await self.publisher_a.get_proposal(pid)
        authoritative = proposal.action_data_hash
        emitted = normalize_hash(event.action_data_hash)
        if emitted != authoritative:
            raise HashMismatch(pid, authoritative, emitted, source="event")

        spec = self.actions.get(pid)
        local = spec.hash()
        if local != authoritative:
            raise HashMismatch(pid, authoritative, local, source="local")

        record = await self._save(record.transition(
            RelayState.VERIFIED, action_data_hash=authoritative
        ))

        if self.commit_before_execute:
            if not record.commit_tx:
                logger.info(f"[A] Calling commitAction(pid={pid})…")
                tx_hash = await self.executor_a.send_commit_action(authoritative)
                record = await self._save(replace(record, commit_tx=tx_hash))
            await self.executor_a.wait_for_receipt(record.commit_tx)

        logger.info(f"[A] Calling executeIfAuthorized(pid={pid})…")
        tx_hash = await self.executor_a.send_execute_if_authorized(spec.encode())
        record = await self._save(record.transition(RelayState.SUBMITTED, execution_tx=tx_hash))
        return await self._confirm(record)

    async def _confirm(self, record: ExecutionRecord) -> ExecutionRecord:
        receipt = await self.executor_a.wait_for_receipt(record.execution_tx)
        record = await self._save(record.transition(RelayState.EXECUTED))
        logger.info(
            f"[A] Executed #{record.proposal_id} in block {receipt.block_number} ({receipt.tx_hash})"
        )
        return record

    # ══════════════════════════════════════════════════════════════════
    #  CONSUMER LOOP
    # ══════════════════════════════════════════════════════════════════

    async def _process(self, event: ProposalPassedEvent) -> None:
        pid = event.proposal_id
        async with self._semaphore:
            try:
                await self.handle_event(event)
            except UpstreamUnavailable as exc:
                logger.warning(f"Relay #{pid} deferred to next poll: {exc}")
                self._retry[pid] = event
                return
            except ActionNotConfigured as exc:
                logger.error(f"Relay #{pid} held: {exc}. Add it to the actions file to execute.")
                self._retry[pid] = event
                self._unconfigured.add(pid)
                return
            except Exception:
                logger.exception(f"Relay #{pid} failed unexpectedly; will retry")
                self._retry[pid] = event
                return
        self._retry.pop(pid, None)
        self._unconfigured.discard(pid)

    def _dispatch(self, event: ProposalPassedEvent) -> bool:
        pid = event.proposal_id
        if pid in self._inflight:
            return False
        task = asyncio.create_task(self._process(event), name=f"relay-{pid}")
        self._inflight[pid] = (event, task)
        task.add_done_callback(lambda _t, pid=pid: self._inflight.pop(pid, None))
        return True

    def checkpoint_block(self) -> Optional[int]:
        """Highest block below which every event is fully handled."""
        if self._scanned_to is None:
            return None
        open_blocks = [e.block_number for e, _ in self._inflight.values()]
        open_blocks += [e.block_number for e in self._retry.values()]
        if open_blocks:
            return min(min(open_blocks) - 1, self._scanned_to)
        return self._scanned_to

    async def _save_checkpoint(self) -> None:
        block = self.checkpoint_block()
        if block is not None:
            await self.store.set_checkpoint(self.checkpoint_key, block)

    async def load_checkpoint(self) -> int:
        """Restore the scan position; returns the next block to scan."""
        stored = await self.store.get_checkpoint(self.checkpoint_key)
        if stored is not None:
            self._scanned_to = stored
        elif self.start_block is not None:
            self._scanned_to = self.start_block - 1
        else:
            self._scanned_to = await self.verifier_b.latest_block()
        logger.info(f"[B] Relayer scanning from block {self._scanned_to + 1}")
        return self._scanned_to + 1

    async def rescan_from(self, block: int) -> None:
        """Replay history from `block`; executed proposals are skipped."""
        self._scanned_to = max(block, 0) - 1
        await self.store.set_checkpoint(self.checkpoint_key, self._scanned_to)
        logger.info(f"[B] Rescan requested from block {block}")

    def _reload_actions(self) -> None:
        try:
            self.actions.reload()
        except (ValidationError, ValueError, OSError) as exc:
            logger.error(f"Actions file reload failed, keeping the loaded actions: {exc}")

    async def poll_once(self) -> int:
        """
        Dispatch retries and every new ProposalPassed event up to the head.

        Returns:
            Number of events dispatched
        """
        if self._scanned_to is None:
            await self.load_checkpoint()
        if self._unconfigured:
            self._reload_actions()

        dispatched = sum(self._dispatch(e) for e in list(self._retry.values()))
        try:
            latest = await self.verifier_b.latest_block()
            start = self._scanned_to + 1
            while start <= latest:
                end = min(start + self.batch_size - 1, latest)
                events = await self.verifier_b.get_passed_events(start, end)
                for event in events:
                    dispatched += self._dispatch(event)
                self._scanned_to = end
                start = end + 1
        finally:
            await self._save_checkpoint()
        return dispatched

    async def drain(self) -> None:
        """Wait for every in-flight relay task to finish."""
        while self._inflight:
            await asyncio.gather(*(task for _, task in list(self._inflight.values())))

    async def run(self, stop: Optional[asyncio.Event] = None,
                  grace: float = RELAYER_SHUTDOWN_GRACE) -> None:
        """Poll until `stop` is set, then shut down gracefully."""
        stop = stop or asyncio.Event()
        await self.load_checkpoint()
        logger.info(f"Relayer started: {len(self.actions)} action(s) configured")
        try:
            while not stop.is_set():
                try:
                    await self.poll_once()
                except UpstreamUnavailable as exc:
                    logger.warning(f"[B] Poll failed: {exc}")
                try:
                    await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.shutdown(grace)

    async def shutdown(self, grace: float = RELAYER_SHUTDOWN_GRACE) -> None:
        """Let in-flight relays finish within `grace` seconds; abandon the rest."""
        inflight = list(self._inflight.values())
        if inflight:
            logger.info(f"Relayer draining {len(inflight)} in-flight relay(s)…")
            _, pending = await asyncio.wait([task for _, task in inflight], timeout=grace)
            abandoned = [(event, task) for event, task in inflight if task in pending]
            for event, task in abandoned:
                logger.warning(
                    f"Relay #{event.proposal_id} abandoned at shutdown (block {event.block_number}); "
                    f"it will be retried from the checkpoint"
                )
                self._retry[event.proposal_id] = event
                task.cancel()
            if abandoned:
                await asyncio.gather(*(task for _, task in abandoned), return_exceptions=True)
        await self._save_checkpoint()
        logger.info(f"Relayer stopped at checkpoint {self.checkpoint_block()}")
