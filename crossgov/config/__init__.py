"""
CrossGov Unified Configuration

Loads all sections of crossgov.toml at startup.
Environment variables override TOML values.
"""

from .loader import (
    ChainAConfig,
    ChainBConfig,
    CrossGovConfig,
    GovernanceConfig,
    RelayerConfig,
    ServiceConfig,
    StorageConfig,
    load_config,
)

__all__ = [
    "ChainAConfig",
    "ChainBConfig",
    "CrossGovConfig",
    "GovernanceConfig",
    "RelayerConfig",
    "ServiceConfig",
    "StorageConfig",
    "load_config",
]
