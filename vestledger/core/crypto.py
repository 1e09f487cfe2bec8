"""
vestledger/core/crypto.py

Ed25519 keys for two roles:

    host key         signs every journal entry
    beneficiary key  signs claim requests; its public_key_hex IS the
                     beneficiary identity in the account config

Signatures are base64url without padding. Verification only ever needs
the signer's 64-char public key hex, so verify_detached() is static.
"""

import base64
import os
from pathlib import Path

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


PUBLIC_KEY_HEX_LENGTH = 64
SIGNATURE_LENGTH = 64
KEY_FILE_MODE = 0o600


class Ed25519KeyManager:
    """
    A private key plus its cached identity.

        Ed25519KeyManager.generate()                  → new random key
        Ed25519KeyManager.from_file(path)             → PEM private key
        Ed25519KeyManager.load_or_generate(path)      → host key bootstrap
        Ed25519KeyManager.verify_detached(d, s, hex)  → bool, never raises
    """

    def __init__(self, private_key: Ed25519PrivateKey) -> None:
        self._private_key = private_key
        self._public_key_hex = (
            private_key.public_key()
            .public_bytes(Encoding.Raw, PublicFormat.Raw)
            .hex()
        )

    @classmethod
    def generate(cls) -> "Ed25519KeyManager":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_file(cls, path: Path) -> "Ed25519KeyManager":
        """
        Load a PEM-encoded Ed25519 private key.

        Raises FileNotFoundError for a missing file and ValueError for
        anything that is not an unencrypted Ed25519 key.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Key file not found: {path}")
        try:
            private_key = load_pem_private_key(path.read_bytes(), password=None)
        except (ValueError, TypeError) as exc:
            raise ValueError(f"Cannot read key file {path}: {exc}") from exc
        if not isinstance(private_key, Ed25519PrivateKey):
            raise ValueError(f"{path} is not an Ed25519 private key")
        return cls(private_key)

    @classmethod
    def load_or_generate(cls, path: Path) -> "Ed25519KeyManager":
        """Load the key at path, or create and save one there."""
        path = Path(path)
        if path.exists():
            return cls.from_file(path)
        key = cls.generate()
        key.save(path)
        return key

    @property
    def public_key_hex(self) -> str:
        return self._public_key_hex

    def sign(self, data: bytes) -> str:
        """Sign canonical bytes. Caller canonicalizes."""
        raw_sig = self._private_key.sign(data)
        return base64.urlsafe_b64encode(raw_sig).rstrip(b"=").decode("ascii")

    @staticmethod
    def verify_detached(data: bytes, signature_b64: str, public_key_hex: str) -> bool:
        """
        True iff signature_b64 is a valid signature over data by
        public_key_hex. Malformed keys or signatures return False.
        """
        if not is_public_key_hex(public_key_hex) or not isinstance(signature_b64, str):
            return False
        try:
            raw_sig = base64.urlsafe_b64decode(signature_b64 + "=" * (-len(signature_b64) % 4))
        except ValueError:
            return False
        if len(raw_sig) != SIGNATURE_LENGTH:
            return False

        try:
            Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_key_hex)).verify(raw_sig, data)
        except Exception:
            return False
        return True

    def save(self, path: Path, overwrite: bool = False) -> None:
        """
        Write the private key as unencrypted PKCS8 PEM, readable by the
        owner only. Raises FileExistsError unless overwrite is set.
        """
        path = Path(path)
        if path.exists() and not overwrite:
            raise FileExistsError(f"Key file already exists: {path}")
        path.parent.mkdir(parents=True, exist_ok=True)

        pem = self._private_key.private_bytes(
            encoding=Encoding.PEM,
            format=PrivateFormat.PKCS8,
            encryption_algorithm=NoEncryption(),
        )
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, KEY_FILE_MODE)
        with os.fdopen(fd, "wb") as f:
            f.write(pem)

    def __repr__(self) -> str:
        return f"Ed25519KeyManager(identity={self._public_key_hex[:16]}...)"


def is_public_key_hex(value) -> bool:
    """True for exactly 64 lowercase hex characters."""
    if not isinstance(value, str) or len(value) != PUBLIC_KEY_HEX_LENGTH:
        return False
    return all(c in "0123456789abcdef" for c in value)
