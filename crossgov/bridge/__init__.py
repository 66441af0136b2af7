"""
CrossGov Cross-Chain Bridge

Provides:
  - types: RelayState, ExecutionRecord, ProposalPassedEvent, PublicationRecord
  - actions: ActionSpec, ActionRegistry and calldata encoding
  - publisher: CrossChainPublisher (Chain A publish, Chain B mirror, resume)
  - relayer: Relayer (ProposalPassed consumer, once-only execution)
"""

from .types import (
    ExecutionRecord,
    ProposalPassedEvent,
    PublicationRecord,
    PublicationStatus,
    RelayState,
    RelayStateError,
)
from .actions import ActionRegistry, ActionSpec, encode_function_call, function_selector
from .publisher import CrossChainPublisher
from .relayer import Relayer

__all__ = [
    # Types
    "ExecutionRecord",
    "ProposalPassedEvent",
    "PublicationRecord",
    "PublicationStatus",
    "RelayState",
    "RelayStateError",
    # Actions
    "ActionRegistry",
    "ActionSpec",
    "encode_function_call",
    "function_selector",
    # Services
    "CrossChainPublisher",
    "Relayer",
]
