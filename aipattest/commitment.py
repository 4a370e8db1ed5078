"""
AIP Input Commitment

Collapses everything the analysis saw (alignment card, conscience values,
prior window context, model and prompt template versions) into a single
digest. The commitment is recorded in the hash chain, so any later change to
the analysis inputs is detectable.

    commitment = SHA-256( CJ(card) | CJ(values) | CJ(window) | CJ(model) | CJ(template) )

where CJ is the canonical JSON encoding and ``|`` is a literal pipe.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from .canonicalization import canonicalize_str
from .hashing import canonical_hash, sha256_hex

COMMITMENT_SEPARATOR = "|"


@dataclass(frozen=True)
class InputCommitmentData:
    """
    Analysis inputs bound by the input commitment.

    ``card`` must carry at least ``card_id`` and ``values``; any extra card
    fields are committed too.
    """
    card: Dict[str, Any]
    conscience_values: List[Dict[str, Any]] = field(default_factory=list)
    window_context: List[Dict[str, Any]] = field(default_factory=list)
    model_version: str = ""
    prompt_template_version: str = ""

    def __post_init__(self):
        if not isinstance(self.card, dict):
            raise ValueError("card must be an object/dict")
        missing = [k for k in ("card_id", "values") if k not in self.card]
        if missing:
            raise ValueError(f"card is missing required fields: {missing}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InputCommitmentData':
        """Create from a JSON document using snake_case keys."""
        required = ["card", "model_version", "prompt_template_version"]
        missing = [f for f in required if f not in data]
        if missing:
            raise ValueError(f"Missing required fields: {missing}")

        return cls(
            card=data["card"],
            conscience_values=list(data.get("conscience_values") or []),
            window_context=list(data.get("window_context") or []),
            model_version=data["model_version"],
            prompt_template_version=data["prompt_template_version"],
        )


def compute_input_commitment(data: InputCommitmentData) -> str:
    """
    Compute the deterministic commitment over all analysis inputs.

    Each part is canonically encoded on its own, the encodings are joined
    with ``|`` and the result is SHA-256 hashed.
    """
    parts = [
        canonicalize_str(data.card),
        canonicalize_str(data.conscience_values),
        canonicalize_str(data.window_context),
        canonicalize_str(data.model_version),
        canonicalize_str(data.prompt_template_version),
    ]
    return sha256_hex(COMMITMENT_SEPARATOR.join(parts))


def card_hash(card: Dict[str, Any]) -> str:
    """Digest of the alignment card alone."""
    return canonical_hash(card)


def values_hash(conscience_values: List[Dict[str, Any]]) -> str:
    """Digest of the conscience value statements."""
    return canonical_hash(conscience_values)


def context_hash(window_context: List[Dict[str, Any]]) -> str:
    """Digest of the prior-window context."""
    return canonical_hash(window_context)
