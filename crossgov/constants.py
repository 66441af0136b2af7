"""
CrossGov Constants

This module consolidates global constants and environment configuration
used throughout the codebase. Chain endpoints and contract addresses live in
the TOML configuration (see crossgov.config); this module only carries the
process-level settings read from `.env` and the protocol constants that must
match the deployed contracts.
"""
import os
import re
from dotenv import dotenv_values

# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================
# Load .env once at module import. Process environment wins over the file.
_config = dotenv_values(".env")

SERVICE_DEFAULTS = {
    'CROSSGOV_HOST':                   '127.0.0.1',
    'CROSSGOV_PORT':                   '3000',
    'CROSSGOV_CONFIG':                 'crossgov.toml',
    'CROSSGOV_DATA_DIR':               './data',
}

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                       'INFO',
    'LOG_FORMAT':                      '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':                 '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING':        'True',
    'LOG_TO_FILE':                     'True',
}

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024 # 10MB
LOG_BACKUP_COUNT = 5


# WARNING: THE VALUES BELOW MUST MATCH THE DEPLOYED VERIFIER AND PUBLISHER CONTRACTS.
# CHANGING THEM PRODUCES SIGNATURES AND MERKLE ROOTS THAT THE CHAINS WILL REJECT.

# ==================================================================================
# EIP-712 SIGNING DOMAIN
# ==================================================================================
EIP712_DOMAIN_NAME = 'CrossGov'
EIP712_DOMAIN_VERSION = '1'


# ==================================================================================
# VOTING POWER
# ==================================================================================
EXCHANGE_RATE_SCALE = 10 ** 18  # Fixed-point base of the snapshot exchange rate
UINT256_MAX = 2 ** 256 - 1


# ==================================================================================
# RELAYER DEFAULTS
# ==================================================================================
RELAYER_POLL_INTERVAL = 5.0        # seconds between log polls
RELAYER_BLOCK_BATCH_SIZE = 2_000   # max block span per eth_getLogs request
RELAYER_MAX_CONCURRENCY = 4        # proposals processed in parallel
RELAYER_SHUTDOWN_GRACE = 30.0      # seconds in-flight executions may finish
RELAYER_CHECKPOINT_KEY = 'relayer:proposal-passed'

TX_RECEIPT_TIMEOUT = 180           # seconds to wait for a receipt


# ==================================================================================
# VALIDATION PATTERNS
# ==================================================================================
VALID_HASH_PATTERN = re.compile(r'^0x[0-9a-fA-F]{64}$')
VALID_HEX_PATTERN = re.compile(r'^0x(?:[0-9a-fA-F]{2})*$')
VALID_DECIMAL_PATTERN = re.compile(r'^[0-9]+$')


# ==================================================================================
# CONFIGURATION WRAPPERS
# ==================================================================================
TRUE_WORDS = frozenset({'1', 'true', 'yes', 'on'})
FALSE_WORDS = frozenset({'0', 'false', 'no', 'off'})


class ConfigString(str):
    """A `.env` string that remembers its built-in default."""

    def __new__(cls, value, default):
        obj = super().__new__(cls, value)
        obj._default = default
        return obj

    def default(self):
        return self._default


class ConfigBool(int):
    """A `.env` flag: truthy like a bool, remembers its built-in default."""

    def __new__(cls, value, default):
        obj = super().__new__(cls, 1 if value else 0)
        obj._default = default
        return obj

    def default(self):
        return self._default

    def __repr__(self):
        return repr(bool(self))

    __str__ = __repr__

    def __eq__(self, other):
        return bool(self) == other

    __hash__ = int.__hash__


def parse_bool(text):
    """True/False for recognised flag words, None for anything else."""
    if not isinstance(text, str):
        return None
    word = text.strip().lower()
    if word in TRUE_WORDS:
        return True
    if word in FALSE_WORDS:
        return False
    return None


# ==================================================================================
# DYNAMIC CONFIGURATION LOADING
# ==================================================================================
DEFAULTS = SERVICE_DEFAULTS | LOGGER_DEFAULTS
namespace = globals()

for key, fallback in DEFAULTS.items():
    # process environment, then .env, then the built-in default
    text = os.environ.get(key, _config.get(key))
    if text is None:
        text = fallback
    if parse_bool(fallback) is not None:
        flag = parse_bool(text)
        namespace[key] = ConfigBool(parse_bool(fallback) if flag is None else flag, parse_bool(fallback))
    else:
        namespace[key] = ConfigString(text, fallback)
