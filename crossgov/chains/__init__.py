"""
CrossGov Chain Collaborators

Provides:
  - client: ChainClient (web3.py AsyncWeb3 over HTTP), TxReceipt
  - contracts: TokenBalance, GovernancePublisher, GovernanceExecutor, VoteVerifier
  - abi: the contract ABI fragments
"""

from .client import ChainClient, TxReceipt
from .contracts import GovernanceExecutor, GovernancePublisher, TokenBalance, VoteVerifier

__all__ = [
    "ChainClient",
    "TxReceipt",
    "GovernanceExecutor",
    "GovernancePublisher",
    "TokenBalance",
    "VoteVerifier",
]
