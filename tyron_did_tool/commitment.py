# tyron_did_tool/commitment.py
"""
Commit-then-reveal authorization.

An operation commits to the public key that will authorize the next operation of
the same kind by publishing only a double hash of it. The key itself is revealed
later, inside the signed data of that next operation, and is accepted only if it
hashes back to the stored commitment.
"""

import hashlib
import logging
from typing import Dict, Any

from .crypto_utils import (
    b64url_encode,
    canonical_public_jwk,
    canonicalize,
    hash_then_encode,
    multihash_sha256,
)
from .errors import CommitmentError

logger = logging.getLogger(__name__)


def reveal_value(public_jwk: Dict[str, Any]) -> str:
    """Single-hash multihash of the canonical public key."""
    return hash_then_encode(canonicalize(canonical_public_jwk(public_jwk)))

def commit(public_jwk: Dict[str, Any]) -> str:
    """
    Derives the commitment for a public key.

    The canonical JWK is hashed with sha2-256, the digest is hashed again and the
    outer digest is encoded as a base64url multihash.

    Raises:
        InvalidPublicKeyError: If the key is not a public secp256k1 JWK.
        CommitmentError: If hashing fails.
    """
    canonical = canonical_public_jwk(public_jwk)
    try:
        intermediate = hashlib.sha256(canonicalize(canonical)).digest()
        return b64url_encode(multihash_sha256(intermediate))
    except (TypeError, ValueError) as e:
        raise CommitmentError(f"Failed to commit to public key: {e}") from e

def verify_reveal(public_jwk: Any, commitment: str) -> bool:
    """True when the revealed key hashes to `commitment`. Malformed keys never match."""
    try:
        return commit(public_jwk) == commitment
    except CommitmentError as e:
        logger.debug(f"Revealed key rejected: {e}")
        return False


class KeyCommitment:
    """
    The first phase of the capability: a commitment published now, which later
    authorizes whoever reveals the matching key.
    """

    def __init__(self, commitment: str):
        if not isinstance(commitment, str) or not commitment:
            raise CommitmentError("Commitment must be a non-empty string.")
        self.commitment = commitment

    @classmethod
    def for_key(cls, public_jwk: Dict[str, Any]) -> "KeyCommitment":
        return cls(commit(public_jwk))

    def authorizes(self, revealed_jwk: Any) -> bool:
        return verify_reveal(revealed_jwk, self.commitment)

    def __eq__(self, other):
        return isinstance(other, KeyCommitment) and other.commitment == self.commitment

    def __hash__(self):
        return hash(self.commitment)

    def __repr__(self):
        return f"KeyCommitment({self.commitment!r})"
