"""
Configuration module for AIP attestation.

Centralizes all configuration with environment variable support,
validation, and caching for performance.
"""

import json
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional

# ============================================================
# Environment Configuration
# ============================================================

# Signing configuration
SIGNER_TYPE = os.getenv("AIPATTEST_SIGNER", "file")  # file|aws_kms
SIGNING_KEY_PATH = os.getenv("SIGNING_KEY_PATH", "secrets/aipattest_signing_key.json")
AWS_KMS_KEY_ID = os.getenv("AWS_KMS_KEY_ID", "")
AWS_REGION = os.getenv("AWS_REGION", "")
AWS_KMS_KID = os.getenv("AWS_KMS_KID", "aws-kms-ed25519")

# Published public keys (verification side)
PUBLISHED_KEYS_PATH = os.getenv("PUBLISHED_KEYS_PATH", "trust/published_keys.json")

# Base URL written into certificate verification endpoints
BASE_URL = os.getenv("AIPATTEST_BASE_URL", "https://api.mnemom.ai").rstrip("/")

# Logging
LOG_LEVEL = os.getenv("AIPATTEST_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("AIPATTEST_LOG_JSON", "true").lower() in ("1", "true", "yes")

# Cache TTL (seconds)
CONFIG_CACHE_TTL = int(os.getenv("CONFIG_CACHE_TTL", "60"))


# ============================================================
# Cached Configuration Loaders
# ============================================================

class CachedConfig:
    """
    Thread-safe cached configuration loader.
    Reloads configuration files periodically based on TTL.
    """

    def __init__(self, ttl_seconds: int = 60):
        self._cache: Dict[str, Any] = {}
        self._timestamps: Dict[str, float] = {}
        self._lock = threading.RLock()
        self._ttl = ttl_seconds

    def _is_stale(self, key: str) -> bool:
        if key not in self._timestamps:
            return True
        return (time.time() - self._timestamps[key]) > self._ttl

    def get_json(self, path: str, force_reload: bool = False) -> Dict[str, Any]:
        """
        Load JSON file with caching.
        Returns cached version if within TTL, otherwise reloads.
        """
        with self._lock:
            if not force_reload and path in self._cache and not self._is_stale(path):
                return self._cache[path]

            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)

            self._cache[path] = data
            self._timestamps[path] = time.time()
            return data

    def invalidate(self, path: Optional[str] = None) -> None:
        """Invalidate cache for a specific path or all paths."""
        with self._lock:
            if path:
                self._cache.pop(path, None)
                self._timestamps.pop(path, None)
            else:
                self._cache.clear()
                self._timestamps.clear()


# Global cached config instance
_config_cache = CachedConfig(ttl_seconds=CONFIG_CACHE_TTL)


def load_json_cached(path: str) -> Dict[str, Any]:
    """Load JSON file with caching."""
    return _config_cache.get_json(path)


def load_published_keys(path: Optional[str] = None) -> Dict[str, Any]:
    """Load the published key set with caching."""
    return load_json_cached(path or PUBLISHED_KEYS_PATH)


def invalidate_config_cache() -> None:
    """Invalidate all cached configuration."""
    _config_cache.invalidate()


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Check the configured files and settings.
    Returns dict of name -> ok.
    """
    checks = {
        "published_keys": Path(PUBLISHED_KEYS_PATH).exists(),
    }

    if SIGNER_TYPE == "file":
        checks["signing_key"] = Path(SIGNING_KEY_PATH).exists()
    elif SIGNER_TYPE == "aws_kms":
        checks["aws_kms_key_id"] = bool(AWS_KMS_KEY_ID)
    else:
        checks["signer_type"] = False

    return checks


# ============================================================
# Feature Flags
# ============================================================

def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("AIPATTEST_DEBUG", "").lower() in ("1", "true", "yes")
