"""
CrossGov Address and Hex Helpers

EIP-55 checksumming and the canonical hex forms used on the wire:
addresses are checksummed, hashes are lower-case 0x + 64 hex chars.
"""

from typing import Union

from eth_utils import is_address
from eth_utils import to_checksum_address as _eth_to_checksum_address

from ..constants import VALID_HASH_PATTERN, VALID_HEX_PATTERN
from ..exceptions import ValidationError


def is_valid_address(address) -> bool:
    """Check if value is a 20-byte hex address (checksum optional)."""
    return isinstance(address, str) and is_address(address)


def to_checksum_address(address: str) -> str:
    """
    Convert an address to EIP-55 checksum format.

    Raises:
        ValidationError: if the value is not a 20-byte hex address
    """
    if not is_valid_address(address):
        raise ValidationError(f"Invalid address: {address!r}")
    return _eth_to_checksum_address(address)


def address_sort_key(address: str) -> str:
    """
    Canonical ordering key for checksummed addresses.

    Case-insensitive comparison, i.e. numeric address order. A plain str
    comparison would rank upper-case checksum letters before lower-case ones.
    """
    return to_checksum_address(address).lower()


def normalize_hash(value: Union[str, bytes]) -> str:
    """Return a 32-byte hash as lower-case 0x-prefixed hex."""
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 32:
            raise ValidationError(f"Expected 32-byte hash, got {len(value)} bytes")
        return '0x' + bytes(value).hex()
    if not isinstance(value, str) or not VALID_HASH_PATTERN.match(value):
        raise ValidationError(f"Invalid 32-byte hash: {value!r}")
    return value.lower()


def hex_to_bytes(value: str) -> bytes:
    """Decode 0x-prefixed, even-length hex."""
    if not isinstance(value, str) or not VALID_HEX_PATTERN.match(value):
        raise ValidationError(f"Invalid hex string: {value!r}")
    return bytes.fromhex(value[2:])


def bytes_to_hex(value: bytes) -> str:
    return '0x' + bytes(value).hex()
