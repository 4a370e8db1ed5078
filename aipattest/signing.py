"""
AIP Checkpoint Signing

Uses Ed25519 (RFC 8032) over the UTF-8 bytes of the canonical signed
payload. Signatures travel as base64, public keys as lowercase hex.
"""

import base64
import binascii
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from nacl.exceptions import BadSignatureError, CryptoError
from nacl.signing import SigningKey, VerifyKey

SIGNATURE_ALGORITHM = "Ed25519"

KeyMaterial = Union[bytes, str]


@dataclass
class KeyPair:
    """Ed25519 key pair."""
    key_id: str
    signing_key: bytes
    verify_key: bytes
    created_at: datetime
    is_active: bool = True
    algorithm: str = SIGNATURE_ALGORITHM

    def public_key_hex(self) -> str:
        return self.verify_key.hex()

    def to_published_entry(self) -> Dict[str, Any]:
        """Convert to a published key set entry."""
        return {
            "key_id": self.key_id,
            "public_key": self.public_key_hex(),
            "algorithm": self.algorithm,
            "created_at": self.created_at.isoformat().replace("+00:00", "Z"),
            "is_active": self.is_active,
        }


class SigningService:
    """
    Holds checkpoint signing keys and signs canonical payloads.

    One key is active at a time; retired keys stay in the published set
    (``is_active`` false) so that old certificates remain attributable.
    """

    def __init__(self):
        self._keys: Dict[str, KeyPair] = {}
        self._active_key_id: Optional[str] = None

    def generate_key_pair(self, key_id: Optional[str] = None) -> KeyPair:
        """
        Generate a new Ed25519 key pair.

        Args:
            key_id: Key identifier; derived from the public key if omitted

        Returns:
            KeyPair with signing and verification keys
        """
        signing_key = SigningKey.generate()
        return self.add_key(bytes(signing_key), key_id=key_id)

    def add_key(self, secret_key: KeyMaterial, key_id: Optional[str] = None) -> KeyPair:
        """Register an existing 32-byte secret key (raw bytes or hex)."""
        secret = _key_bytes(secret_key)
        verify_key = get_public_key_from_secret(secret)
        key_id = key_id or key_id_for_public_key(verify_key)

        key_pair = KeyPair(
            key_id=key_id,
            signing_key=secret,
            verify_key=verify_key,
            created_at=datetime.now(timezone.utc),
        )
        self._keys[key_id] = key_pair

        if self._active_key_id is None:
            self._active_key_id = key_id

        return key_pair

    @property
    def active_key_id(self) -> Optional[str]:
        return self._active_key_id

    def set_active_key(self, key_id: str):
        """Rotate to ``key_id``; every other key is marked inactive."""
        if key_id not in self._keys:
            raise ValueError(f"Key not found: {key_id}")
        for kid, kp in self._keys.items():
            kp.is_active = kid == key_id
        self._active_key_id = key_id

    def sign(self, payload: str, key_id: Optional[str] = None) -> Tuple[str, str]:
        """
        Sign a payload string.

        Args:
            payload: Canonical signed payload
            key_id: Key to use (default: active key)

        Returns:
            Tuple of (key_id, base64_signature)
        """
        key_id = key_id or self._active_key_id
        if not key_id:
            raise ValueError("No signing key available")

        key_pair = self._keys.get(key_id)
        if not key_pair:
            raise ValueError(f"Key not found: {key_id}")

        return key_id, sign_checkpoint(payload, key_pair.signing_key)

    def get_public_key(self, key_id: str) -> bytes:
        key_pair = self._keys.get(key_id)
        if not key_pair:
            raise ValueError(f"Key not found: {key_id}")
        return key_pair.verify_key

    def published_keys(self) -> List[Dict[str, Any]]:
        """The public key listing consumers use to verify certificates."""
        return [kp.to_published_entry() for kp in self._keys.values()]


# Convenience functions

def generate_signing_key() -> Tuple[bytes, bytes]:
    """
    Generate an Ed25519 key pair.

    Returns:
        Tuple of (secret_key_bytes, public_key_bytes)
    """
    signing_key = SigningKey.generate()
    return bytes(signing_key), bytes(signing_key.verify_key)


def load_signing_key_from_hex(hex_key: str) -> bytes:
    """Convert a hex-encoded key to bytes."""
    try:
        return bytes.fromhex(hex_key)
    except ValueError as e:
        raise ValueError(f"Invalid hex key: {e}") from e


def get_public_key_from_secret(secret_key: KeyMaterial) -> bytes:
    """Derive the Ed25519 public key from a 32-byte secret key."""
    return bytes(SigningKey(_key_bytes(secret_key)).verify_key)


def key_id_for_public_key(public_key: KeyMaterial) -> str:
    """Key identifier: ``key-`` plus the first 8 hex characters of the public key."""
    return f"key-{_key_bytes(public_key).hex()[:8]}"


def sign_checkpoint(payload: str, secret_key: KeyMaterial) -> str:
    """Sign a payload string; returns the base64-encoded signature."""
    key = SigningKey(_key_bytes(secret_key))
    signature = key.sign(payload.encode('utf-8')).signature
    return base64.b64encode(signature).decode('ascii')


def verify_checkpoint_signature(
    signature: str,
    signed_payload: str,
    public_key: KeyMaterial
) -> bool:
    """
    Verify a base64 Ed25519 signature over a payload string.

    Returns False for a wrong key, a tampered payload, or malformed
    signature or key encodings.
    """
    try:
        key = VerifyKey(_key_bytes(public_key))
        sig = base64.b64decode(signature, validate=True)
        key.verify(signed_payload.encode('utf-8'), sig)
        return True
    except (BadSignatureError, CryptoError, binascii.Error, ValueError, TypeError):
        return False


def _key_bytes(key: KeyMaterial) -> bytes:
    """Accept raw key bytes or their hex encoding."""
    if isinstance(key, str):
        return load_signing_key_from_hex(key)
    return bytes(key)
