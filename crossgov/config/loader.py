"""
CrossGov Configuration Loader

Loads crossgov.toml and applies environment variable overrides.

Environment variable mapping (highest priority):
    CROSSGOV_CONFIG                 → path to crossgov.toml
    CROSSGOV_CHAIN_A_RPC_URL        → chain_a.rpc_url
    CROSSGOV_CHAIN_A_CHAIN_ID       → chain_a.chain_id
    CROSSGOV_CHAIN_B_RPC_URL        → chain_b.rpc_url
    CROSSGOV_CHAIN_B_CHAIN_ID       → chain_b.chain_id
    CROSSGOV_PRIVATE_KEY            → signing key for both chains
    CROSSGOV_CHAIN_A_PRIVATE_KEY    → signing key for Chain A (wins over the shared key)
    CROSSGOV_CHAIN_B_PRIVATE_KEY    → signing key for Chain B (wins over the shared key)
    CROSSGOV_STORAGE_BACKEND        → storage.backend
    CROSSGOV_STORAGE_PATH           → storage.path
    CROSSGOV_HOST                   → service.host
    CROSSGOV_PORT                   → service.port
    CROSSGOV_ACTIONS_FILE           → relayer.actions_file
    CROSSGOV_START_BLOCK            → relayer.start_block

Sensitive values (private keys) MUST come from env vars, never TOML.
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from ..constants import (
    CROSSGOV_CONFIG,
    CROSSGOV_DATA_DIR,
    CROSSGOV_HOST,
    CROSSGOV_PORT,
    RELAYER_BLOCK_BATCH_SIZE,
    RELAYER_MAX_CONCURRENCY,
    RELAYER_POLL_INTERVAL,
    RELAYER_SHUTDOWN_GRACE,
    TX_RECEIPT_TIMEOUT,
    parse_bool,
)
from ..crypto.address import is_valid_address, to_checksum_address
from ..exceptions import ConfigurationError
from ..logger import get_logger

logger = get_logger(__name__)

DEFAULT_DB_PATH = os.path.join(str(CROSSGOV_DATA_DIR), "crossgov.db")


def _checksum(section: str, name: str, value: str) -> str:
    if not value:
        return value
    if not is_valid_address(value):
        raise ConfigurationError(f"{section}.{name} is not a valid address: {value!r}")
    return to_checksum_address(value)


def _env_bool(value: str) -> bool:
    return bool(parse_bool(value))


# -----------------------------------------------------------------------
# Chain sections
# -----------------------------------------------------------------------

@dataclass
class ChainAConfig:
    """Chain A: tokens, GovernanceRootPublisher, GovernanceExecutor."""
    rpc_url: str = "http://127.0.0.1:8545"
    chain_id: int = 0
    publisher: str = ""
    executor: str = ""
    primary_token: str = ""
    derivative_token: str = ""
    receipt_timeout: float = TX_RECEIPT_TIMEOUT
    # env only
    private_key: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChainAConfig":
        return cls(
            rpc_url=data.get("rpc_url", "http://127.0.0.1:8545"),
            chain_id=int(data.get("chain_id", 0)),
            publisher=data.get("publisher", ""),
            executor=data.get("executor", ""),
            primary_token=data.get("primary_token", ""),
            derivative_token=data.get("derivative_token", ""),
            receipt_timeout=float(data.get("receipt_timeout", TX_RECEIPT_TIMEOUT)),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("CROSSGOV_CHAIN_A_RPC_URL"):
            self.rpc_url = v
        if v := os.environ.get("CROSSGOV_CHAIN_A_CHAIN_ID"):
            self.chain_id = int(v)
        if v := os.environ.get("CROSSGOV_CHAIN_A_PRIVATE_KEY") or os.environ.get("CROSSGOV_PRIVATE_KEY"):
            self.private_key = v

    def validate(self) -> None:
        if not self.rpc_url:
            raise ConfigurationError("chain_a.rpc_url must be set")
        if self.chain_id < 0:
            raise ConfigurationError("chain_a.chain_id must be >= 0")
        for name in ("publisher", "executor", "primary_token", "derivative_token"):
            setattr(self, name, _checksum("chain_a", name, getattr(self, name)))


@dataclass
class ChainBConfig:
    """Chain B: VoteVerifier (EIP-712 verifying contract and ProposalPassed source)."""
    rpc_url: str = "http://127.0.0.1:8546"
    chain_id: int = 0
    verifier: str = ""
    receipt_timeout: float = TX_RECEIPT_TIMEOUT
    private_key: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChainBConfig":
        return cls(
            rpc_url=data.get("rpc_url", "http://127.0.0.1:8546"),
            chain_id=int(data.get("chain_id", 0)),
            verifier=data.get("verifier", ""),
            receipt_timeout=float(data.get("receipt_timeout", TX_RECEIPT_TIMEOUT)),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("CROSSGOV_CHAIN_B_RPC_URL"):
            self.rpc_url = v
        if v := os.environ.get("CROSSGOV_CHAIN_B_CHAIN_ID"):
            self.chain_id = int(v)
        if v := os.environ.get("CROSSGOV_CHAIN_B_PRIVATE_KEY") or os.environ.get("CROSSGOV_PRIVATE_KEY"):
            self.private_key = v

    def validate(self) -> None:
        if not self.rpc_url:
            raise ConfigurationError("chain_b.rpc_url must be set")
        if self.chain_id < 0:
            raise ConfigurationError("chain_b.chain_id must be >= 0")
        self.verifier = _checksum("chain_b", "verifier", self.verifier)


# -----------------------------------------------------------------------
# Service sections
# -----------------------------------------------------------------------

@dataclass
class StorageConfig:
    backend: str = "sqlite"
    path: str = DEFAULT_DB_PATH

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StorageConfig":
        return cls(
            backend=data.get("backend", "sqlite"),
            path=data.get("path", DEFAULT_DB_PATH),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("CROSSGOV_STORAGE_BACKEND"):
            self.backend = v
        if v := os.environ.get("CROSSGOV_STORAGE_PATH"):
            self.path = v

    def validate(self) -> None:
        if self.backend not in ("memory", "sqlite"):
            raise ConfigurationError(f"Unknown storage backend: {self.backend!r}")
        if self.backend == "sqlite" and not self.path:
            raise ConfigurationError("storage.path must be set for the sqlite backend")


@dataclass
class ServiceConfig:
    host: str = str(CROSSGOV_HOST)
    port: int = int(CROSSGOV_PORT)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceConfig":
        return cls(
            host=data.get("host", str(CROSSGOV_HOST)),
            port=int(data.get("port", int(CROSSGOV_PORT))),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("CROSSGOV_HOST"):
            self.host = v
        if v := os.environ.get("CROSSGOV_PORT"):
            self.port = int(v)

    def validate(self) -> None:
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"Invalid service port: {self.port}")


@dataclass
class GovernanceConfig:
    """
    Vote intake and freeze behaviour.

    quorum / threshold are the defaults passed to publishRoot and
    freezeProposal when the operator does not give them explicitly.
    """
    freeze_policy: str = "live"
    require_window_closed: bool = False
    abstain_mode: str = "side-channel"
    quorum: int = 0
    threshold: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GovernanceConfig":
        return cls(
            freeze_policy=data.get("freeze_policy", "live"),
            require_window_closed=bool(data.get("require_window_closed", False)),
            abstain_mode=data.get("abstain_mode", "side-channel"),
            quorum=int(data.get("quorum", 0)),
            threshold=int(data.get("threshold", 0)),
        )

    def validate(self) -> None:
        if self.freeze_policy not in ("live", "one-shot"):
            raise ConfigurationError(f"Invalid freeze_policy: {self.freeze_policy!r}")
        if self.abstain_mode not in ("side-channel", "reject"):
            raise ConfigurationError(f"Invalid abstain_mode: {self.abstain_mode!r}")
        if self.quorum < 0 or self.threshold < 0:
            raise ConfigurationError("quorum and threshold must be >= 0")


@dataclass
class RelayerConfig:
    actions_file: str = "actions.json"
    poll_interval: float = RELAYER_POLL_INTERVAL
    batch_size: int = RELAYER_BLOCK_BATCH_SIZE
    max_concurrency: int = RELAYER_MAX_CONCURRENCY
    shutdown_grace: float = RELAYER_SHUTDOWN_GRACE
    start_block: Optional[int] = None
    commit_before_execute: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RelayerConfig":
        start_block = data.get("start_block")
        return cls(
            actions_file=data.get("actions_file", "actions.json"),
            poll_interval=float(data.get("poll_interval", RELAYER_POLL_INTERVAL)),
            batch_size=int(data.get("batch_size", RELAYER_BLOCK_BATCH_SIZE)),
            max_concurrency=int(data.get("max_concurrency", RELAYER_MAX_CONCURRENCY)),
            shutdown_grace=float(data.get("shutdown_grace", RELAYER_SHUTDOWN_GRACE)),
            start_block=None if start_block is None else int(start_block),
            commit_before_execute=bool(data.get("commit_before_execute", False)),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("CROSSGOV_ACTIONS_FILE"):
            self.actions_file = v
        if v := os.environ.get("CROSSGOV_START_BLOCK"):
            self.start_block = int(v)
        if v := os.environ.get("CROSSGOV_COMMIT_BEFORE_EXECUTE"):
            self.commit_before_execute = _env_bool(v)

    def validate(self) -> None:
        if self.poll_interval <= 0:
            raise ConfigurationError("relayer.poll_interval must be > 0")
        if self.batch_size < 1:
            raise ConfigurationError("relayer.batch_size must be >= 1")
        if self.max_concurrency < 1:
            raise ConfigurationError("relayer.max_concurrency must be >= 1")
        if self.start_block is not None and self.start_block < 0:
            raise ConfigurationError("relayer.start_block must be >= 0")


# -----------------------------------------------------------------------
# Top-level unified config
# -----------------------------------------------------------------------

@dataclass
class CrossGovConfig:
    """
    Unified configuration.

    Loads every section of crossgov.toml and applies environment variable
    overrides. This is the single source of truth at runtime.
    """
    chain_a: ChainAConfig = field(default_factory=ChainAConfig)
    chain_b: ChainBConfig = field(default_factory=ChainBConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)
    governance: GovernanceConfig = field(default_factory=GovernanceConfig)
    relayer: RelayerConfig = field(default_factory=RelayerConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrossGovConfig":
        """Create CrossGovConfig from a parsed TOML dict."""
        return cls(
            chain_a=ChainAConfig.from_dict(data.get("chain_a", {})),
            chain_b=ChainBConfig.from_dict(data.get("chain_b", {})),
            storage=StorageConfig.from_dict(data.get("storage", {})),
            service=ServiceConfig.from_dict(data.get("service", {})),
            governance=GovernanceConfig.from_dict(data.get("governance", {})),
            relayer=RelayerConfig.from_dict(data.get("relayer", {})),
        )

    @classmethod
    def from_file(cls, config_path: str) -> "CrossGovConfig":
        path = Path(config_path)
        if not path.exists():
            logger.warning(f"Config file not found: {config_path}, using defaults")
            cfg = cls()
            cfg.apply_env()
            return cfg

        with open(path, "rb") as f:
            try:
                raw = tomllib.load(f)
            except tomllib.TOMLDecodeError as exc:
                raise ConfigurationError(f"Invalid TOML in {config_path}: {exc}") from exc

        for section in ("chain_a", "chain_b"):
            if "private_key" in raw.get(section, {}):
                logger.warning(f"Ignoring {section}.private_key in {config_path}; keys come from the environment")

        cfg = cls.from_dict(raw)
        cfg.apply_env()
        return cfg

    def apply_env(self) -> None:
        """Apply environment variable overrides to all sections."""
        self.chain_a.apply_env()
        self.chain_b.apply_env()
        self.storage.apply_env()
        self.service.apply_env()
        self.relayer.apply_env()

    def validate(self) -> bool:
        """
        Validate all configuration sections, checksumming addresses in place.

        Raises:
            ConfigurationError: on invalid config
        """
        self.chain_a.validate()
        self.chain_b.validate()
        self.storage.validate()
        self.service.validate()
        self.governance.validate()
        self.relayer.validate()
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for diagnostics; private keys are never included)."""
        return {
            "chain_a": {
                "rpc_url": self.chain_a.rpc_url,
                "chain_id": self.chain_a.chain_id,
                "publisher": self.chain_a.publisher,
                "executor": self.chain_a.executor,
                "primary_token": self.chain_a.primary_token,
                "derivative_token": self.chain_a.derivative_token,
                "signer": bool(self.chain_a.private_key),
            },
            "chain_b": {
                "rpc_url": self.chain_b.rpc_url,
                "chain_id": self.chain_b.chain_id,
                "verifier": self.chain_b.verifier,
                "signer": bool(self.chain_b.private_key),
            },
            "storage": {"backend": self.storage.backend, "path": self.storage.path},
            "service": {"host": self.service.host, "port": self.service.port},
            "governance": {
                "freeze_policy": self.governance.freeze_policy,
                "require_window_closed": self.governance.require_window_closed,
                "abstain_mode": self.governance.abstain_mode,
                "quorum": self.governance.quorum,
                "threshold": self.governance.threshold,
            },
            "relayer": {
                "actions_file": self.relayer.actions_file,
                "poll_interval": self.relayer.poll_interval,
                "batch_size": self.relayer.batch_size,
                "max_concurrency": self.relayer.max_concurrency,
                "start_block": self.relayer.start_block,
                "commit_before_execute": self.relayer.commit_before_execute,
            },
        }


# -----------------------------------------------------------------------
# Convenience function
# -----------------------------------------------------------------------

def load_config(path: Optional[str] = None) -> CrossGovConfig:
    """
    Load configuration.

    Resolution order:
        1. Explicit *path* argument
        2. CROSSGOV_CONFIG env var (or .env)
        3. ./crossgov.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("CROSSGOV_CONFIG", str(CROSSGOV_CONFIG))

    return CrossGovConfig.from_file(path)
