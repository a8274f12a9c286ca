"""
afriflow/core/crypto.py

Ed25519 journal key.

The settlement service signs every journal entry with this key so an
auditor can check the payment and escrow history without trusting the
process that wrote it. Transfer authorizations are signed separately
(EIP-712, afriflow/settlement/signer.py).

Wire forms:
    public key : 64 lowercase hex chars (raw 32 bytes)
    signature  : base64url of the raw 64 bytes, '=' padding stripped
    key file   : PKCS8 PEM, written 0600
"""

import base64
import os
from pathlib import Path

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_pem_private_key,
)


_SEED_BYTES      = 32
_SIGNATURE_BYTES = 64


def encode_signature(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def decode_signature(text: str) -> bytes:
    """Inverse of encode_signature. Raises ValueError on bad input."""
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class Ed25519KeyManager:
    """
    Holds the journal signing key.

        key = Ed25519KeyManager.load_or_generate(Path("journal/journal.key"))
        sig = key.sign(canonical_bytes)
        Ed25519KeyManager.verify_detached(canonical_bytes, sig, key.public_key_hex)
    """

    def __init__(self, private_key: Ed25519PrivateKey) -> None:
        self._private_key = private_key
        self._public_key_hex = (
            private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()
        )

    @classmethod
    def generate(cls) -> "Ed25519KeyManager":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_private_bytes(cls, seed: bytes) -> "Ed25519KeyManager":
        if len(seed) != _SEED_BYTES:
            raise ValueError(f"Ed25519 seed must be {_SEED_BYTES} bytes, got {len(seed)}")
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @classmethod
    def from_hex(cls, seed_hex: str) -> "Ed25519KeyManager":
        """Seed given as hex, with or without 0x (e.g. from an env variable)."""
        return cls.from_private_bytes(bytes.fromhex(seed_hex.removeprefix("0x")))

    # ── Key files ─────────────────────────────────────────────

    @classmethod
    def load(cls, path: Path) -> "Ed25519KeyManager":
        """
        Load a PEM key file.
        Raises FileNotFoundError, or ValueError if it is not an Ed25519 key.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Journal key not found: {path}")
        try:
            private_key = load_pem_private_key(path.read_bytes(), password=None)
        except (ValueError, TypeError) as exc:
            raise ValueError(f"Unreadable journal key {path}: {exc}") from exc
        if not isinstance(private_key, Ed25519PrivateKey):
            raise ValueError(f"{path} does not hold an Ed25519 private key")
        return cls(private_key)

    @classmethod
    def load_or_generate(cls, path: Path) -> "Ed25519KeyManager":
        """Reuse the key at `path`, creating and saving one on first start."""
        path = Path(path)
        if path.exists():
            return cls.load(path)
        key = cls.generate()
        key.save(path)
        return key

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        pem = self._private_key.private_bytes(
            encoding=             Encoding.PEM,
            format=               PrivateFormat.PKCS8,
            encryption_algorithm= NoEncryption(),
        )
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(pem)

    # ── Sign / verify ─────────────────────────────────────────

    @property
    def public_key_hex(self) -> str:
        return self._public_key_hex

    def sign(self, data: bytes) -> str:
        """Sign already-canonical bytes."""
        return encode_signature(self._private_key.sign(data))

    @staticmethod
    def verify_detached(data: bytes, signature: str, public_key_hex: str) -> bool:
        """
        Check `signature` over `data` with only the signer's public key.
        Any malformed input is a failed verification, never an exception.
        """
        if not isinstance(public_key_hex, str) or not isinstance(signature, str) or not signature:
            return False
        try:
            public_key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_key_hex))
            raw = decode_signature(signature)
        except ValueError:
            return False
        if len(raw) != _SIGNATURE_BYTES:
            return False
        try:
            public_key.verify(raw, data)
        except InvalidSignature:
            return False
        return True

    def __repr__(self) -> str:
        return f"Ed25519KeyManager(public_key={self._public_key_hex[:16]}...)"
