"""Twin identity and deployment signing using Ed25519."""

from typing import Protocol, runtime_checkable

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)


@runtime_checkable
class Signer(Protocol):
    """Anything able to sign a deployment challenge for a twin."""

    signature_type: str

    def sign(self, message: bytes) -> bytes: ...

    def public_bytes(self) -> bytes: ...


class Ed25519Identity:
    """Ed25519 key pair acting for one twin."""

    signature_type = "ed25519"

    def __init__(self, private_key: Ed25519PrivateKey):
        self.private_key = private_key
        self.public_key = private_key.public_key()

    @classmethod
    def generate(cls) -> "Ed25519Identity":
        """Generate a new random identity."""
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> "Ed25519Identity":
        """Load an identity from its 32-byte private seed."""
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @classmethod
    def from_seed_hex(cls, seed_hex: str) -> "Ed25519Identity":
        seed_hex = seed_hex.removeprefix("0x")
        return cls.from_seed(bytes.fromhex(seed_hex))

    def public_bytes(self) -> bytes:
        """Export public key as raw bytes (32 bytes)."""
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def public_key_hex(self) -> str:
        return self.public_bytes().hex()

    def sign(self, message: bytes) -> bytes:
        return self.private_key.sign(message)


def verify_signature(public_key_bytes: bytes, message: bytes, signature: bytes) -> bool:
    """Verify an Ed25519 signature."""
    try:
        Ed25519PublicKey.from_public_bytes(public_key_bytes).verify(signature, message)
        return True
    except (InvalidSignature, ValueError):
        return False
