"""
CrossGov Exceptions

Error taxonomy shared by the vote pipeline, the publisher and the relayer.
The API and CLI layers map these onto HTTP status codes / exit messages.
"""


class CrossGovError(Exception):
    """Base exception for CrossGov."""
    pass


class ValidationError(CrossGovError):
    """Malformed input: bad address, missing field, out-of-window timestamp."""
    pass


class BadSignature(CrossGovError):
    """Recovered signer does not match the claimed voter."""
    pass


class StaleNonce(CrossGovError):
    """Incoming nonce is not above the stored one. Callers treat this as a no-op."""

    def __init__(self, proposal_id: int, voter: str, stored: int, incoming: int):
        super().__init__(
            f"stale nonce for {voter} on proposal #{proposal_id}: "
            f"stored={stored} incoming={incoming}"
        )
        self.proposal_id = proposal_id
        self.voter = voter
        self.stored = stored
        self.incoming = incoming


class UpstreamUnavailable(CrossGovError):
    """A chain read or RPC call failed. Retryable at the caller's discretion."""
    pass


class TransactionFailed(CrossGovError):
    """A mined transaction reported status 0."""

    def __init__(self, message: str, tx_hash: str = ""):
        super().__init__(message)
        self.tx_hash = tx_hash


class ChainAPublishFailed(CrossGovError):
    """Publishing the root on Chain A did not succeed."""
    pass


class ChainBMirrorFailed(CrossGovError):
    """Root is published on Chain A but the freeze was not mirrored to Chain B."""

    def __init__(self, message: str, proposal_id: int, chain_a_tx: str):
        super().__init__(message)
        self.proposal_id = proposal_id
        self.chain_a_tx = chain_a_tx


class HashMismatch(CrossGovError):
    """Action-data hashes disagree across chains or with the local payload."""

    def __init__(self, proposal_id: int, expected: str, actual: str, source: str = "event"):
        super().__init__(
            f"action hash mismatch for proposal #{proposal_id}: "
            f"chain A={expected} {source}={actual}"
        )
        self.proposal_id = proposal_id
        self.expected = expected
        self.actual = actual
        self.source = source


class MultiproofLengthMismatch(CrossGovError):
    """len(flags) != len(leaves) + len(proof) - 1."""
    pass


class FreezeConflict(CrossGovError):
    """Re-freeze would change a root that must not change."""
    pass


class ArtifactNotFound(CrossGovError):
    """No frozen artifact exists for the proposal."""
    pass


class ArtifactIntegrityError(CrossGovError):
    """A stored artifact no longer rebuilds to its own leaves or root."""
    pass


class ActionNotConfigured(CrossGovError):
    """The relayer has no action payload for a passed proposal."""
    pass


class ConfigurationError(CrossGovError):
    """Configuration error."""
    pass
