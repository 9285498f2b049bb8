"""Integrity attestation for finalized analysis results.

The digest is SHA-256 over a canonical JSON rendering of the result. The
attestation is an Ed25519 signature over that digest, produced by whatever
signing capability the caller hands in. Key management is the caller's job.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Mapping, Protocol, runtime_checkable

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from .errors import SigningUnavailableError
from .models import AnalysisResult, Attestation

logger = logging.getLogger(__name__)

ALGORITHM = "ed25519-sha256"


def canonical_json(record: Mapping[str, Any]) -> bytes:
    return json.dumps(record, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def digest(result: AnalysisResult) -> str:
    return hashlib.sha256(canonical_json(result.signed_fields())).hexdigest()


@runtime_checkable
class Signer(Protocol):
    """Signing capability injected by the surrounding system."""

    @property
    def public_key(self) -> str: ...

    def sign(self, message: bytes) -> str: ...


class KeypairSigner:
    """Ed25519 signer backed by a solders Keypair."""

    def __init__(self, keypair: Keypair) -> None:
        self._keypair = keypair

    @classmethod
    def from_secret(cls, secret: str) -> "KeypairSigner":
        """Load from a base58 secret or a JSON array of 64 bytes."""
        raw = secret.strip()
        try:
            if raw.startswith("["):
                arr = json.loads(raw)
                if len(arr) < 64:
                    raise ValueError("expected 64 key bytes")
                return cls(Keypair.from_bytes(bytes(arr[:64])))
            return cls(Keypair.from_base58_string(raw))
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            raise ValueError("Invalid signing key") from e

    @classmethod
    def generate(cls) -> "KeypairSigner":
        return cls(Keypair())

    @property
    def public_key(self) -> str:
        return str(self._keypair.pubkey())

    def sign(self, message: bytes) -> str:
        return str(self._keypair.sign_message(message))


class IntegritySigner:
    def __init__(self, signer: Signer) -> None:
        self.signer = signer

    def attest(self, result: AnalysisResult) -> Attestation:
        """Sign the digest of ``result``.

        Raises:
            SigningUnavailableError: if the signing capability fails
        """
        hex_digest = digest(result)
        try:
            signature = self.signer.sign(bytes.fromhex(hex_digest))
            public_key = self.signer.public_key
        except Exception as e:
            raise SigningUnavailableError(f"signer failed: {e}") from e
        return Attestation(digest=hex_digest, signature=signature, public_key=public_key, algorithm=ALGORITHM)


def verify_attestation(result: AnalysisResult, attestation: Attestation) -> bool:
    """Check that ``attestation`` was made over exactly this result."""
    hex_digest = digest(result)
    if hex_digest != attestation.digest:
        return False
    try:
        signature = Signature.from_string(attestation.signature)
        pubkey = Pubkey.from_string(attestation.public_key)
    except ValueError:
        logger.debug("Malformed attestation for digest %s", hex_digest)
        return False
    return signature.verify(pubkey, bytes.fromhex(hex_digest))
