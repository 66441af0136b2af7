"""
CrossGov Crypto Module

This module provides the cryptographic primitives of the governance pipeline:
- Hash functions (keccak256)
- EIP-55 address handling
- EIP-712 vote signing and verification
- The ordered-pair Merkle tree and multiproofs
"""

from .hashing import keccak256, keccak256_hex
from .address import (
    is_valid_address,
    to_checksum_address,
    address_sort_key,
    normalize_hash,
    hex_to_bytes,
    bytes_to_hex,
)
from .typed_data import (
    Eip712Domain,
    TypedVote,
    SignatureVerifier,
    encode_vote,
    vote_digest,
    sign_vote,
    recover_signer,
)
from .merkle import MerkleTree, hash_pair, layer_sizes, verify_multiproof

__all__ = [
    # Hashing
    "keccak256",
    "keccak256_hex",
    # Addresses
    "is_valid_address",
    "to_checksum_address",
    "address_sort_key",
    "normalize_hash",
    "hex_to_bytes",
    "bytes_to_hex",
    # EIP-712
    "Eip712Domain",
    "TypedVote",
    "SignatureVerifier",
    "encode_vote",
    "vote_digest",
    "sign_vote",
    "recover_signer",
    # Merkle
    "MerkleTree",
    "hash_pair",
    "layer_sizes",
    "verify_multiproof",
]
