"""
CrossGov Typed-Data Signatures (EIP-712)

Implements the vote signature scheme checked by the Chain B verifier:

    domain = {name: "CrossGov", version: "1", chainId: <Chain B>, verifyingContract: <verifier>}
    Vote   = {proposalId uint256, support bool, voter address,
              power uint256, nonce uint256, deadline uint256}

`support` is yes (True) / no (False) only. Abstention is not part of the
signed struct; it travels as a separate flag next to the signature and is
policed by the vote ledger.
"""

from dataclasses import dataclass
from typing import Any, Dict, Union

from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data

from ..constants import EIP712_DOMAIN_NAME, EIP712_DOMAIN_VERSION
from ..exceptions import BadSignature
from ..logger import get_logger
from .address import bytes_to_hex, hex_to_bytes, to_checksum_address
from .hashing import keccak256

logger = get_logger(__name__)


EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

VOTE_TYPE = [
    {"name": "proposalId", "type": "uint256"},
    {"name": "support", "type": "bool"},
    {"name": "voter", "type": "address"},
    {"name": "power", "type": "uint256"},
    {"name": "nonce", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
]


@dataclass(frozen=True)
class Eip712Domain:
    """Signing domain bound to the Chain B verifier."""
    chain_id: int
    verifying_contract: str
    name: str = EIP712_DOMAIN_NAME
    version: str = EIP712_DOMAIN_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": to_checksum_address(self.verifying_contract),
        }


@dataclass(frozen=True)
class TypedVote:
    """The exact tuple a voter signs."""
    proposal_id: int
    support: bool
    voter: str
    power: int
    nonce: int
    deadline: int

    def to_message(self) -> Dict[str, Any]:
        return {
            "proposalId": self.proposal_id,
            "support": bool(self.support),
            "voter": to_checksum_address(self.voter),
            "power": self.power,
            "nonce": self.nonce,
            "deadline": self.deadline,
        }


def encode_vote(domain: Eip712Domain, vote: TypedVote) -> SignableMessage:
    """Build the EIP-712 signable message for a vote."""
    return encode_typed_data(full_message={
        "types": {"EIP712Domain": EIP712_DOMAIN_TYPE, "Vote": VOTE_TYPE},
        "primaryType": "Vote",
        "domain": domain.to_dict(),
        "message": vote.to_message(),
    })


def vote_digest(domain: Eip712Domain, vote: TypedVote) -> bytes:
    """keccak256(0x19 0x01 ‖ domainSeparator ‖ structHash)"""
    signable = encode_vote(domain, vote)
    return keccak256(b'\x19' + signable.version + signable.header + signable.body)


def sign_vote(private_key: Union[str, bytes], domain: Eip712Domain, vote: TypedVote) -> str:
    """
    Sign a vote with a local key (client tooling / tests).

    Returns:
        65-byte signature as 0x hex (r ‖ s ‖ v, v in {27, 28})
    """
    signed = Account.sign_message(encode_vote(domain, vote), private_key=private_key)
    return bytes_to_hex(signed.signature)


def recover_signer(domain: Eip712Domain, vote: TypedVote, signature: Union[str, bytes]) -> str:
    """
    Recover the checksummed signer address.

    Raises:
        BadSignature: if the signature cannot be decoded or recovered
    """
    try:
        raw = hex_to_bytes(signature) if isinstance(signature, str) else bytes(signature)
        if len(raw) != 65:
            raise ValueError(f"signature must be 65 bytes, got {len(raw)}")
        return to_checksum_address(Account.recover_message(encode_vote(domain, vote), signature=raw))
    except BadSignature:
        raise
    except Exception as exc:
        raise BadSignature(f"Unrecoverable signature: {exc}") from exc


class SignatureVerifier:
    """
    Fail-closed EIP-712 vote verification.

    A mismatch between recovered address and claimed voter is always an
    error, never a warning.
    """

    def __init__(self, domain: Eip712Domain):
        self.domain = domain

    def verify(self, vote: TypedVote, signature: Union[str, bytes]) -> str:
        """
        Args:
            vote: Tuple exactly as stored, including the authoritative power
            signature: 65-byte signature

        Returns:
            Recovered (checksummed) signer address

        Raises:
            BadSignature: on any mismatch
        """
        recovered = recover_signer(self.domain, vote, signature)
        claimed = to_checksum_address(vote.voter)
        if recovered != claimed:
            logger.warning(
                f"Bad signature on proposal #{vote.proposal_id}: "
                f"claimed {claimed}, recovered {recovered}"
            )
            raise BadSignature(f"Bad signature: signer {recovered} is not voter {claimed}")
        return recovered

    def __repr__(self) -> str:
        return (
            f"<SignatureVerifier chainId={self.domain.chain_id} "
            f"verifier={self.domain.verifying_contract}>"
        )
