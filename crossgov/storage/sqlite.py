"""
SQLite Governance Store

aiosqlite-backed GovernanceStore. One file holds votes, artifacts,
publications, the relay execution ledger and relayer checkpoints, so the
relayer's once-only guarantee survives restarts.

Large integers (power, nonce) are stored as TEXT; nonce comparison in the
conditional upsert uses a fixed-width zero-padded copy so that SQLite's
string ordering equals numeric ordering for the full uint256 range.
"""

import json
import os
from typing import List, Optional

import aiosqlite

from ..bridge.types import ExecutionRecord, PublicationRecord
from ..crypto.address import to_checksum_address
from ..governance.types import MerkleArtifact, Support, VoteRecord
from ..logger import get_logger

logger = get_logger(__name__)

NONCE_WIDTH = 78  # decimal digits of 2**256 - 1


def _nonce_key(nonce: int) -> str:
    return str(nonce).zfill(NONCE_WIDTH)


class SQLiteGovernanceStore:
    """Persistent GovernanceStore on a single SQLite file."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.connection: Optional[aiosqlite.Connection] = None

    @staticmethod
    async def create(db_path: str) -> 'SQLiteGovernanceStore':
        """Open (creating if needed) and initialize the store."""
        self = SQLiteGovernanceStore(db_path)

        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        self.connection = await aiosqlite.connect(db_path)
        self.connection.row_factory = aiosqlite.Row

        await self.connection.execute("PRAGMA journal_mode=WAL")
        await self.connection.execute("PRAGMA synchronous=NORMAL")

        await self._init_schema()

        logger.info(f"Governance store initialized: {db_path}")
        return self

    async def _init_schema(self):
        schema = """
        CREATE TABLE IF NOT EXISTS votes (
            proposal_id TEXT NOT NULL,
            voter TEXT NOT NULL,
            power TEXT NOT NULL,
            support TEXT NOT NULL,
            nonce TEXT NOT NULL,
            nonce_key TEXT NOT NULL,
            deadline TEXT NOT NULL,
            signature TEXT NOT NULL,
            received_at INTEGER NOT NULL,
            PRIMARY KEY (proposal_id, voter)
        );

        CREATE TABLE IF NOT EXISTS artifacts (
            proposal_id TEXT PRIMARY KEY,
            root TEXT NOT NULL,
            content TEXT NOT NULL,
            frozen_at INTEGER NOT NULL
        );

        CREATE TABLE IF NOT EXISTS publications (
            proposal_id TEXT PRIMARY KEY,
            status TEXT NOT NULL,
            content TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS executions (
            proposal_id TEXT PRIMARY KEY,
            state TEXT NOT NULL,
            content TEXT NOT NULL,
            updated_at INTEGER NOT NULL
        );

        CREATE TABLE IF NOT EXISTS checkpoints (
            name TEXT PRIMARY KEY,
            block_number INTEGER NOT NULL
        );
        """
        await self.connection.executescript(schema)
        await self.connection.commit()

    async def close(self):
        if self.connection:
            await self.connection.close()
            self.connection = None
            logger.info(f"Governance store closed: {self.db_path}")

    # ── Votes ────────────────────────────────────────────────────────

    async def put_vote(self, record: VoteRecord) -> bool:
        cursor = await self.connection.execute("""
            INSERT INTO votes (proposal_id, voter, power, support, nonce, nonce_key,
                               deadline, signature, received_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (proposal_id, voter) DO UPDATE SET
                power = excluded.power,
                support = excluded.support,
                nonce = excluded.nonce,
                nonce_key = excluded.nonce_key,
                deadline = excluded.deadline,
                signature = excluded.signature,
                received_at = excluded.received_at
            WHERE excluded.nonce_key > votes.nonce_key
        """, (
            str(record.proposal_id), record.voter, str(record.power), record.support.value,
            str(record.nonce), _nonce_key(record.nonce), str(record.deadline),
            record.signature, record.received_at,
        ))
        written = cursor.rowcount > 0
        await self.connection.commit()
        return written

    @staticmethod
    def _vote_from_row(row) -> VoteRecord:
        return VoteRecord(
            proposal_id=int(row['proposal_id']),
            voter=to_checksum_address(row['voter']),
            power=int(row['power']),
            support=Support(row['support']),
            nonce=int(row['nonce']),
            deadline=int(row['deadline']),
            signature=row['signature'],
            received_at=row['received_at'],
        )

    async def get_vote(self, proposal_id: int, voter: str) -> Optional[VoteRecord]:
        cursor = await self.connection.execute(
            "SELECT * FROM votes WHERE proposal_id = ? AND voter = ?",
            (str(proposal_id), voter),
        )
        row = await cursor.fetchone()
        return self._vote_from_row(row) if row else None

    async def list_votes(self, proposal_id: int) -> List[VoteRecord]:
        cursor = await self.connection.execute(
            "SELECT * FROM votes WHERE proposal_id = ?", (str(proposal_id),)
        )
        rows = await cursor.fetchall()
        return [self._vote_from_row(row) for row in rows]

    # ── Artifacts ────────────────────────────────────────────────────

    async def put_artifact(self, artifact: MerkleArtifact) -> None:
        await self.connection.execute("""
            INSERT INTO artifacts (proposal_id, root, content, frozen_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (proposal_id) DO UPDATE SET
                root = excluded.root,
                content = excluded.content,
                frozen_at = excluded.frozen_at
        """, (
            str(artifact.proposal_id), artifact.root,
            json.dumps(artifact.to_dict()), artifact.frozen_at,
        ))
        await self.connection.commit()

    async def get_artifact(self, proposal_id: int) -> Optional[MerkleArtifact]:
        cursor = await self.connection.execute(
            "SELECT content FROM artifacts WHERE proposal_id = ?", (str(proposal_id),)
        )
        row = await cursor.fetchone()
        return MerkleArtifact.from_dict(json.loads(row['content'])) if row else None

    # ── Publications ─────────────────────────────────────────────────

    async def put_publication(self, record: PublicationRecord) -> None:
        await self.connection.execute("""
            INSERT INTO publications (proposal_id, status, content)
            VALUES (?, ?, ?)
            ON CONFLICT (proposal_id) DO UPDATE SET
                status = excluded.status,
                content = excluded.content
        """, (str(record.proposal_id), record.status.name, json.dumps(record.to_dict())))
        await self.connection.commit()

    async def get_publication(self, proposal_id: int) -> Optional[PublicationRecord]:
        cursor = await self.connection.execute(
            "SELECT content FROM publications WHERE proposal_id = ?", (str(proposal_id),)
        )
        row = await cursor.fetchone()
        return PublicationRecord.from_dict(json.loads(row['content'])) if row else None

    # ── Executions ───────────────────────────────────────────────────

    async def record_execution(self, record: ExecutionRecord) -> None:
        await self.connection.execute("""
            INSERT INTO executions (proposal_id, state, content, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (proposal_id) DO UPDATE SET
                state = excluded.state,
                content = excluded.content,
                updated_at = excluded.updated_at
        """, (
            str(record.proposal_id), record.state.name,
            json.dumps(record.to_dict()), record.updated_at,
        ))
        await self.connection.commit()

    async def get_execution(self, proposal_id: int) -> Optional[ExecutionRecord]:
        cursor = await self.connection.execute(
            "SELECT content FROM executions WHERE proposal_id = ?", (str(proposal_id),)
        )
        row = await cursor.fetchone()
        return ExecutionRecord.from_dict(json.loads(row['content'])) if row else None

    async def list_executions(self) -> List[ExecutionRecord]:
        cursor = await self.connection.execute("SELECT content FROM executions")
        rows = await cursor.fetchall()
        records = [ExecutionRecord.from_dict(json.loads(row['content'])) for row in rows]
        return sorted(records, key=lambda r: r.proposal_id)

    # ── Checkpoints ──────────────────────────────────────────────────

    async def get_checkpoint(self, key: str) -> Optional[int]:
        cursor = await self.connection.execute(
            "SELECT block_number FROM checkpoints WHERE name = ?", (key,)
        )
        row = await cursor.fetchone()
        return row['block_number'] if row else None

    async def set_checkpoint(self, key: str, block: int) -> None:
        await self.connection.execute("""
            INSERT INTO checkpoints (name, block_number) VALUES (?, ?)
            ON CONFLICT (name) DO UPDATE SET block_number = excluded.block_number
        """, (key, block))
        await self.connection.commit()
