"""
CrossGov Storage

Provides:
  - GovernanceStore protocol
  - InMemoryGovernanceStore for tests and ephemeral runs
  - SQLiteGovernanceStore (aiosqlite) for persistent deployments
"""

from ..exceptions import ConfigurationError
from .base import GovernanceStore, InMemoryGovernanceStore
from .sqlite import SQLiteGovernanceStore


async def open_store(backend: str, path: str = "") -> GovernanceStore:
    """Open the configured backend ("memory" or "sqlite")."""
    if backend == "memory":
        return InMemoryGovernanceStore()
    if backend == "sqlite":
        return await SQLiteGovernanceStore.create(path)
    raise ConfigurationError(f"Unknown storage backend: {backend!r}")


__all__ = [
    "GovernanceStore",
    "InMemoryGovernanceStore",
    "SQLiteGovernanceStore",
    "open_store",
]
