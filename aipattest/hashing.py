"""
AIP Hashing

All digests are SHA-256 with 64-character lowercase hexadecimal output and
no algorithm prefix.
"""

import hashlib
import hmac
import re
from typing import Any, Union

from .canonicalization import canonicalize

DIGEST_PATTERN = re.compile(r'^[0-9a-f]{64}$')


def sha256_hex(data: Union[bytes, str]) -> str:
    """
    Compute a SHA-256 digest.

    Args:
        data: Raw bytes, or a string which is hashed as its UTF-8 bytes

    Returns:
        64-character lowercase hex string
    """
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def canonical_hash(obj: Any) -> str:
    """SHA-256 of the canonical JSON encoding of ``obj``."""
    return sha256_hex(canonicalize(obj))


def is_digest(value: Any) -> bool:
    """True if ``value`` is a well-formed digest string."""
    return isinstance(value, str) and DIGEST_PATTERN.match(value) is not None


def digests_equal(a: str, b: str) -> bool:
    """
    Compare two digests in constant time.

    Non-string operands compare unequal rather than raising.
    """
    if not isinstance(a, str) or not isinstance(b, str):
        return False
    return hmac.compare_digest(a.encode('utf-8'), b.encode('utf-8'))
