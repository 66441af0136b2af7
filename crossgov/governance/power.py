"""
CrossGov Power Oracle

Voting power of an address at a proposal's snapshot:

    power = primaryBalance + floor(derivativeBalance * snapshotER / 1e18)

Both balances are read at the identical historical block recorded by the
publisher on Chain A. Read failures surface as UpstreamUnavailable; a
failed read is never treated as a zero balance.
"""

import asyncio
from typing import Dict, Iterable

from ..constants import EXCHANGE_RATE_SCALE
from ..crypto.address import to_checksum_address
from ..exceptions import UpstreamUnavailable, ValidationError
from ..logger import get_logger
from .types import ProposalSnapshot

logger = get_logger(__name__)


def compute_voting_power(primary: int, derivative: int, exchange_rate: int) -> int:
    """
    Pure power formula with floor division.

    Raises:
        ValidationError: if any input is negative
    """
    if primary < 0 or derivative < 0 or exchange_rate < 0:
        raise ValidationError("Balances and exchange rate must be non-negative")
    return primary + (derivative * exchange_rate) // EXCHANGE_RATE_SCALE


class PowerOracle:
    """
    Reads snapshot and balances from Chain A.

    Args:
        publisher: Chain A publisher exposing `get_snapshot(proposal_id)`
        primary_token: Asset exposing `balance_of(address, block)`
        derivative_token: Liquid-staking share token, same interface
    """

    def __init__(self, publisher, primary_token, derivative_token):
        self.publisher = publisher
        self.primary_token = primary_token
        self.derivative_token = derivative_token

    async def get_snapshot(self, proposal_id: int) -> ProposalSnapshot:
        snapshot = await self.publisher.get_snapshot(proposal_id)
        if snapshot.block <= 0:
            raise ValidationError(f"Proposal #{proposal_id} has no snapshot on Chain A")
        return snapshot

    async def power_at(self, voter: str, snapshot: ProposalSnapshot) -> int:
        """Power of `voter` at an already-read snapshot."""
        voter = to_checksum_address(voter)
        try:
            primary, derivative = await asyncio.gather(
                self.primary_token.balance_of(voter, snapshot.block),
                self.derivative_token.balance_of(voter, snapshot.block),
            )
        except UpstreamUnavailable:
            logger.warning(
                f"Balance read failed for {voter} at block {snapshot.block} "
                f"(proposal #{snapshot.proposal_id})"
            )
            raise
        power = compute_voting_power(primary, derivative, snapshot.exchange_rate)
        logger.debug(
            f"Power pid={snapshot.proposal_id} {voter}: primary={primary} "
            f"derivative={derivative} er={snapshot.exchange_rate} -> {power}"
        )
        return power

    async def compute_power(self, proposal_id: int, voter: str) -> int:
        """
        Raises:
            ValidationError: malformed address or proposal without snapshot
            UpstreamUnavailable: any chain read failed
        """
        voter = to_checksum_address(voter)
        snapshot = await self.get_snapshot(proposal_id)
        return await self.power_at(voter, snapshot)

    async def compute_powers(self, proposal_id: int, voters: Iterable[str]) -> Dict[str, int]:
        """Batch variant: one snapshot read, every balance at that block."""
        addresses = list(dict.fromkeys(to_checksum_address(v) for v in voters))
        snapshot = await self.get_snapshot(proposal_id)
        powers = await asyncio.gather(*(self.power_at(v, snapshot) for v in addresses))
        return dict(zip(addresses, powers))
