"""
Commitments binding a claim's private payment data to a random nonce.

Only the SHA-256 digest, the claim id and the execution reference are ever
published; anyone holding the claim fields and the nonce can recompute the
digest and compare.

The preimage is the UTF-8 encoding of::

    claim_id \\n execution_ref \\n amount \\n token_symbol \\n token_chain \\n recipient_id \\n nonce_hex

with an empty string for a missing recipient.
"""
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Optional, Union

NONCE_BYTES = 32


@dataclass(frozen=True)
class AttestationData:
    """Off-chain fields that go into a claim's commitment"""
    claim_id: str
    execution_ref: str
    amount: str
    token_symbol: str
    token_chain: str
    recipient_id: Optional[str] = None


def generate_nonce() -> str:
    """Return a fresh 32-byte nonce as 64 lowercase hex characters"""
    return secrets.token_hex(NONCE_BYTES)


def canonical_preimage(data: AttestationData, nonce_hex: str) -> str:
    """
    Build the newline-joined preimage for a commitment.

    Args:
        data: Claim fields
        nonce_hex: Hex nonce stored on the claim

    Returns:
        Preimage string
    """
    return "\n".join([
        data.claim_id,
        data.execution_ref,
        data.amount,
        data.token_symbol,
        data.token_chain,
        data.recipient_id or "",
        nonce_hex,
    ])


def compute_commitment(data: AttestationData, nonce_hex: str) -> bytes:
    """
    Hash the canonical preimage.

    Returns:
        32-byte SHA-256 digest
    """
    return hashlib.sha256(canonical_preimage(data, nonce_hex).encode("utf-8")).digest()


def commitment_hex(commitment: bytes) -> str:
    return "0x" + commitment.hex()


def _as_bytes(commitment: Union[bytes, str]) -> bytes:
    if isinstance(commitment, (bytes, bytearray)):
        return bytes(commitment)
    value = commitment[2:] if commitment.startswith("0x") else commitment
    return bytes.fromhex(value)


def verify_commitment(data: AttestationData, nonce_hex: str, commitment: Union[bytes, str]) -> bool:
    """
    Check that ``commitment`` was produced from ``data`` and ``nonce_hex``.

    Args:
        data: Off-chain claim fields
        nonce_hex: Nonce stored for the claim
        commitment: On-chain commitment as bytes or (0x-prefixed) hex

    Returns:
        True iff the recomputed digest equals the commitment
    """
    try:
        expected = _as_bytes(commitment)
    except ValueError:
        return False
    return hmac.compare_digest(compute_commitment(data, nonce_hex), expected)
