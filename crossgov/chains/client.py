"""
Chain Client

Thin async wrapper over web3.py's AsyncWeb3 for one EVM chain:
pinned-block contract calls, locally signed transactions, receipt waits
and event log queries.

Failure mapping:
    transport / RPC errors        → UpstreamUnavailable (retryable)
    revert in gas estimation      → TransactionFailed
    mined receipt with status 0   → TransactionFailed
"""

import asyncio
from dataclasses import dataclass
from typing import Any, List, Optional

from eth_account import Account
from hexbytes import HexBytes
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError

from ..constants import TX_RECEIPT_TIMEOUT
from ..crypto.address import to_checksum_address
from ..exceptions import ConfigurationError, TransactionFailed, UpstreamUnavailable
from ..logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TxReceipt:
    tx_hash: str
    status: int
    block_number: int
    gas_used: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == 1


def _hex(value) -> str:
    return HexBytes(value).to_0x_hex()


class ChainClient:
    """
    Args:
        name: Short tag used in logs ("A" or "B")
        rpc_url: HTTP JSON-RPC endpoint
        private_key: Signing key for transactions; reads need none
        chain_id: Expected chain id; fetched from the node when omitted
        w3: Pre-built AsyncWeb3 (tests)
    """

    def __init__(
        self,
        name: str,
        rpc_url: str = "",
        private_key: Optional[str] = None,
        chain_id: Optional[int] = None,
        receipt_timeout: float = TX_RECEIPT_TIMEOUT,
        w3: Optional[AsyncWeb3] = None,
    ):
        self.name = name
        self.rpc_url = rpc_url
        self.w3 = w3 if w3 is not None else AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self.account = Account.from_key(private_key) if private_key else None
        self.chain_id = chain_id
        self.receipt_timeout = receipt_timeout
        self._tx_lock = asyncio.Lock()

    @property
    def address(self) -> Optional[str]:
        return self.account.address if self.account else None

    def contract(self, address: str, abi: List[dict]):
        return self.w3.eth.contract(address=to_checksum_address(address), abi=abi)

    async def call(self, fn, block: Optional[int] = None, label: str = "") -> Any:
        """
        Execute a view function, optionally pinned to a historical block.

        Raises:
            UpstreamUnavailable: on any RPC or decoding failure
        """
        try:
            if block is None:
                return await fn.call()
            return await fn.call(block_identifier=block)
        except Exception as exc:
            where = f" at block {block}" if block is not None else ""
            raise UpstreamUnavailable(
                f"[{self.name}] call {label or fn.fn_name}{where} failed: {exc}"
            ) from exc

    async def get_chain_id(self) -> int:
        if self.chain_id is None:
            try:
                self.chain_id = await self.w3.eth.chain_id
            except Exception as exc:
                raise UpstreamUnavailable(f"[{self.name}] chain id unavailable: {exc}") from exc
        return self.chain_id

    async def block_number(self) -> int:
        try:
            return await self.w3.eth.block_number
        except Exception as exc:
            raise UpstreamUnavailable(f"[{self.name}] block number unavailable: {exc}") from exc

    async def get_logs(self, event, from_block: int, to_block: int) -> list:
        try:
            return await event.get_logs(from_block=from_block, to_block=to_block)
        except Exception as exc:
            raise UpstreamUnavailable(
                f"[{self.name}] log query {from_block}..{to_block} failed: {exc}"
            ) from exc

    async def send(self, fn, label: str = "") -> str:
        """
        Sign and broadcast a contract transaction without waiting for it.

        Sends are serialized per client so account nonces never collide.
        Callers that must not repeat a send persist the returned hash before
        waiting on it.

        Returns:
            The transaction hash

        Raises:
            ConfigurationError: no signing key configured
            TransactionFailed: reverted in gas estimation
            UpstreamUnavailable: RPC failure before the node accepted the tx
        """
        if self.account is None:
            raise ConfigurationError(f"[{self.name}] no private key configured for {label}")
        label = label or fn.fn_name

        async with self._tx_lock:
            try:
                chain_id = await self.get_chain_id()
                nonce = await self.w3.eth.get_transaction_count(self.account.address, "pending")
                tx = await fn.build_transaction({
                    "from": self.account.address,
                    "nonce": nonce,
                    "chainId": chain_id,
                })
                signed = self.account.sign_transaction(tx)
                tx_hash = _hex(await self.w3.eth.send_raw_transaction(signed.raw_transaction))
            except ContractLogicError as exc:
                raise TransactionFailed(f"[{self.name}] {label} reverted: {exc}") from exc
            except (ConfigurationError, UpstreamUnavailable):
                raise
            except Exception as exc:
                raise UpstreamUnavailable(f"[{self.name}] {label} not sent: {exc}") from exc

        logger.info(f"[{self.name}] {label} sent: {tx_hash}")
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, label: str = "tx") -> TxReceipt:
        """
        Wait for a sent transaction to be mined. Safe to call again for the
        same hash; an already mined tx returns at once.

        Raises:
            TransactionFailed: mined with status 0
            UpstreamUnavailable: RPC failure or receipt timeout; the tx may
                still be mined later
        """
        try:
            raw = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except Exception as exc:
            raise UpstreamUnavailable(
                f"[{self.name}] no receipt for {label} {tx_hash}: {exc}"
            ) from exc

        receipt = TxReceipt(
            tx_hash=tx_hash,
            status=int(raw["status"]),
            block_number=int(raw["blockNumber"]),
            gas_used=int(raw.get("gasUsed", 0)),
        )
        if not receipt.succeeded:
            logger.error(f"[{self.name}] {label} {tx_hash} failed in block {receipt.block_number}")
            raise TransactionFailed(f"[{self.name}] {label} failed: {tx_hash}", tx_hash)
        logger.info(f"[{self.name}] {label} mined in block {receipt.block_number}")
        return receipt

    async def transact(self, fn, label: str = "") -> TxReceipt:
        """Send and wait; for transactions that are harmless to repeat."""
        label = label or fn.fn_name
        return await self.wait_for_receipt(await self.send(fn, label), label)

    async def close(self) -> None:
        try:
            await self.w3.provider.disconnect()
        except Exception as exc:
            logger.debug(f"[{self.name}] provider disconnect: {exc}")

    def __repr__(self) -> str:
        return f"<ChainClient {self.name} {self.rpc_url} signer={self.address}>"
