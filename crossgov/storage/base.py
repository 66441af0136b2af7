"""
CrossGov Governance Store

Persistence contract for votes, frozen artifacts, publications, relay
executions and relayer checkpoints, plus an in-memory implementation used
by tests and single-process deployments.

Vote writes are conditional: a vote replaces the stored one only when its
nonce is strictly higher. Every backend applies this rule atomically so the
ledger's own check is never the only line of defense.
"""

import asyncio
from typing import Dict, List, Optional, Protocol, Tuple

from ..bridge.types import ExecutionRecord, PublicationRecord
from ..governance.types import MerkleArtifact, VoteRecord


class GovernanceStore(Protocol):
    """Storage backend for the governance pipeline."""

    async def put_vote(self, record: VoteRecord) -> bool:
        """Store if new or higher nonce. Returns True if written."""
        ...

    async def get_vote(self, proposal_id: int, voter: str) -> Optional[VoteRecord]:
        ...

    async def list_votes(self, proposal_id: int) -> List[VoteRecord]:
        ...

    async def put_artifact(self, artifact: MerkleArtifact) -> None:
        ...

    async def get_artifact(self, proposal_id: int) -> Optional[MerkleArtifact]:
        ...

    async def put_publication(self, record: PublicationRecord) -> None:
        ...

    async def get_publication(self, proposal_id: int) -> Optional[PublicationRecord]:
        ...

    async def record_execution(self, record: ExecutionRecord) -> None:
        ...

    async def get_execution(self, proposal_id: int) -> Optional[ExecutionRecord]:
        ...

    async def list_executions(self) -> List[ExecutionRecord]:
        ...

    async def get_checkpoint(self, key: str) -> Optional[int]:
        ...

    async def set_checkpoint(self, key: str, block: int) -> None:
        ...

    async def close(self) -> None:
        ...


class InMemoryGovernanceStore:
    """
    In-memory GovernanceStore. State is lost on restart, so it is NOT
    suitable for a relayer that must survive restarts.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._votes: Dict[Tuple[int, str], VoteRecord] = {}
        self._artifacts: Dict[int, MerkleArtifact] = {}
        self._publications: Dict[int, PublicationRecord] = {}
        self._executions: Dict[int, ExecutionRecord] = {}
        self._checkpoints: Dict[str, int] = {}

    async def put_vote(self, record: VoteRecord) -> bool:
        key = (record.proposal_id, record.voter)
        async with self._lock:
            current = self._votes.get(key)
            if current is not None and current.nonce >= record.nonce:
                return False
            self._votes[key] = record
            return True

    async def get_vote(self, proposal_id: int, voter: str) -> Optional[VoteRecord]:
        return self._votes.get((proposal_id, voter))

    async def list_votes(self, proposal_id: int) -> List[VoteRecord]:
        return [v for (pid, _), v in self._votes.items() if pid == proposal_id]

    async def put_artifact(self, artifact: MerkleArtifact) -> None:
        self._artifacts[artifact.proposal_id] = artifact

    async def get_artifact(self, proposal_id: int) -> Optional[MerkleArtifact]:
        return self._artifacts.get(proposal_id)

    async def put_publication(self, record: PublicationRecord) -> None:
        self._publications[record.proposal_id] = record

    async def get_publication(self, proposal_id: int) -> Optional[PublicationRecord]:
        return self._publications.get(proposal_id)

    async def record_execution(self, record: ExecutionRecord) -> None:
        self._executions[record.proposal_id] = record

    async def get_execution(self, proposal_id: int) -> Optional[ExecutionRecord]:
        return self._executions.get(proposal_id)

    async def list_executions(self) -> List[ExecutionRecord]:
        return sorted(self._executions.values(), key=lambda r: r.proposal_id)

    async def get_checkpoint(self, key: str) -> Optional[int]:
        return self._checkpoints.get(key)

    async def set_checkpoint(self, key: str, block: int) -> None:
        self._checkpoints[key] = block

    async def close(self) -> None:
        pass
