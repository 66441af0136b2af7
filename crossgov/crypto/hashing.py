"""
CrossGov Crypto Hashing Module

Keccak-256 as used by the EVM for leaves, Merkle nodes and action-data hashes.
"""

from typing import Union

from eth_hash.auto import keccak as _eth_keccak


def _as_bytes(data: Union[bytes, str]) -> bytes:
    if isinstance(data, str):
        if data.startswith('0x') or data.startswith('0X'):
            return bytes.fromhex(data[2:])
        return bytes.fromhex(data)
    return bytes(data)


def keccak256(data: Union[bytes, str]) -> bytes:
    """
    Compute Keccak-256 hash (Ethereum standard).

    Args:
        data: Input bytes or hex string

    Returns:
        32-byte hash
    """
    return _eth_keccak(_as_bytes(data))


def keccak256_hex(data: Union[bytes, str]) -> str:
    """
    Compute Keccak-256 hash and return as hex string.

    Returns:
        Hex string with 0x prefix
    """
    return '0x' + keccak256(data).hex()
