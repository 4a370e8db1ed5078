"""
Key management module for AIP attestation.

Provides signing key providers for checkpoint payloads (file-based keys and
AWS KMS) and the published key set that verifiers resolve ``key_id`` values
against.
"""

import base64
import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from nacl.signing import SigningKey

from .signing import (
    SIGNATURE_ALGORITHM,
    key_id_for_public_key,
    load_signing_key_from_hex,
    sign_checkpoint,
)

logger = logging.getLogger(__name__)


class KeyProvider(ABC):
    """Abstract interface for checkpoint payload signing."""

    @abstractmethod
    def sign_checkpoint_payload(self, payload: str) -> Tuple[str, str]:
        """
        Sign a payload and return (kid, signature_b64).

        Args:
            payload: The canonical signed payload string

        Returns:
            Tuple of (key_id, base64_encoded_signature)
        """

    @abstractmethod
    def get_kid(self) -> str:
        """Get the key ID used for signing."""

    @abstractmethod
    def get_public_key_hex(self) -> Optional[str]:
        """Hex public key, when the provider can expose it."""


class FileKeyProvider(KeyProvider):
    """
    File-based key provider using an Ed25519 key stored in a JSON file.

    File format: ``{"kid": "...", "private_key_hex": "..."}``. ``kid`` is
    optional and defaults to the id derived from the public key.
    """

    def __init__(self, signing_key_path: str):
        self._signing_key_path = signing_key_path

        with open(self._signing_key_path, "r", encoding="utf-8") as f:
            raw = json.load(f)

        if "private_key_hex" not in raw:
            raise ValueError(f"{signing_key_path}: missing private_key_hex")

        self._secret = load_signing_key_from_hex(raw["private_key_hex"])
        self._public = bytes(SigningKey(self._secret).verify_key)
        self._kid = raw.get("kid") or key_id_for_public_key(self._public)

    def sign_checkpoint_payload(self, payload: str) -> Tuple[str, str]:
        return self._kid, sign_checkpoint(payload, self._secret)

    def get_kid(self) -> str:
        return self._kid

    def get_public_key_hex(self) -> Optional[str]:
        return self._public.hex()


class AwsKmsEd25519Provider(KeyProvider):
    """
    AWS KMS signing provider using Ed25519 keys.

    Requires a SIGN_VERIFY KMS key with ED25519 support.
    Uses KMS Sign API with SigningAlgorithm ED25519_SHA_512 and MessageType RAW.

    Docs: https://docs.aws.amazon.com/kms/latest/APIReference/API_Sign.html
    """

    def __init__(
        self,
        kms_key_id: str,
        region: Optional[str] = None,
        kid: Optional[str] = None,
        public_key_hex: Optional[str] = None
    ):
        self._kms_key_id = kms_key_id
        self._region = region
        self._kid = kid or "aws-kms-ed25519"
        self._public_key_hex = public_key_hex
        self._client = None
        self._lock = threading.RLock()

    def _get_client(self):
        """Lazy-load boto3 client."""
        with self._lock:
            if self._client is None:
                try:
                    import boto3
                except ImportError as e:
                    raise RuntimeError(
                        "boto3 required for AWS KMS signing. Install with: pip install aipattest[aws]"
                    ) from e
                self._client = boto3.client("kms", region_name=self._region)
            return self._client

    def sign_checkpoint_payload(self, payload: str) -> Tuple[str, str]:
        """Sign payload using AWS KMS."""
        client = self._get_client()
        resp = client.sign(
            KeyId=self._kms_key_id,
            Message=payload.encode("utf-8"),
            MessageType="RAW",
            SigningAlgorithm="ED25519_SHA_512"
        )
        sig = resp["Signature"]
        return self._kid, base64.b64encode(sig).decode("ascii")

    def get_kid(self) -> str:
        return self._kid

    def get_public_key_hex(self) -> Optional[str]:
        return self._public_key_hex


class PublishedKeySet:
    """
    The public signing key listing.

    Entries look like::

        {"key_id": "key-1a2b3c4d", "public_key": "<hex>", "algorithm": "Ed25519",
         "created_at": "2026-01-01T00:00:00Z", "is_active": true}

    Inactive or non-Ed25519 keys never resolve.
    """

    def __init__(self, keys: Optional[List[Dict[str, Any]]] = None):
        self._keys: Dict[str, Dict[str, Any]] = {}
        for entry in keys or []:
            self.add(entry)

    def add(self, entry: Dict[str, Any]) -> None:
        if "key_id" not in entry or "public_key" not in entry:
            raise ValueError("Published key entry requires key_id and public_key")
        self._keys[entry["key_id"]] = dict(entry)

    def get_public_key(self, key_id: str) -> Optional[bytes]:
        """Resolve an active key, or None."""
        entry = self._keys.get(key_id)
        if entry is None:
            return None
        if not entry.get("is_active", True):
            logger.warning("Key %s is published but inactive", key_id)
            return None
        if entry.get("algorithm", SIGNATURE_ALGORITHM) != SIGNATURE_ALGORITHM:
            return None
        try:
            return load_signing_key_from_hex(entry["public_key"])
        except ValueError:
            logger.warning("Key %s has a malformed public_key", key_id)
            return None

    def __contains__(self, key_id: str) -> bool:
        return key_id in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def to_dict(self) -> Dict[str, Any]:
        return {"keys": list(self._keys.values())}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PublishedKeySet':
        return cls(data.get("keys", []))

    @classmethod
    def load(cls, path: str) -> 'PublishedKeySet':
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


def get_key_provider(
    signer_type: str = "file",
    signing_key_path: str = "secrets/aipattest_signing_key.json",
    kms_key_id: Optional[str] = None,
    kms_region: Optional[str] = None,
    kms_kid: Optional[str] = None
) -> KeyProvider:
    """
    Factory function to create the appropriate key provider.

    Args:
        signer_type: "file" or "aws_kms"
        signing_key_path: Path to signing key JSON (for file provider)
        kms_key_id: AWS KMS key ID (for KMS provider)
        kms_region: AWS region (for KMS provider)
        kms_kid: Key ID to use in signatures (for KMS provider)

    Returns:
        Configured KeyProvider instance
    """
    if signer_type == "aws_kms":
        if not kms_key_id:
            raise ValueError("AWS_KMS_KEY_ID required for aws_kms signer")
        return AwsKmsEd25519Provider(
            kms_key_id=kms_key_id,
            region=kms_region,
            kid=kms_kid
        )
    if signer_type != "file":
        raise ValueError(f"Unknown signer type: {signer_type}")

    return FileKeyProvider(signing_key_path=signing_key_path)
