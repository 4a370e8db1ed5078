"""
AIP Hash Chain Linking

Creates tamper-evident links between integrity checkpoints. Each checkpoint
carries the SHA-256 chain hash of its predecessor, forming an ordered
sequence per agent. A broken link means the checkpoint history has been
altered, reordered or truncated.

Chain hash preimage (pipe delimited, fixed field order):

    prev_chain_hash | checkpoint_id | verdict | thinking_block_hash | input_commitment | timestamp

The first checkpoint of a chain has no predecessor; the literal string
``genesis`` stands in for the previous hash. This sentinel is part of the
wire format: changing it invalidates every certificate already issued.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

from .hashing import digests_equal, sha256_hex

GENESIS_SENTINEL = "genesis"

CHAIN_FIELD_SEPARATOR = "|"


@dataclass(frozen=True)
class ChainInput:
    """Fields that determine one chain hash."""
    prev_chain_hash: Optional[str]
    checkpoint_id: str
    verdict: str
    thinking_block_hash: str
    input_commitment: str
    timestamp: str


@dataclass(frozen=True)
class ChainCheckpoint:
    """
    A chain input together with its computed chain hash.

    This is the persisted unit. ``chain_hash`` is never recomputed in place;
    any change to the other fields must show up as a verification failure.
    """
    prev_chain_hash: Optional[str]
    checkpoint_id: str
    verdict: str
    thinking_block_hash: str
    input_commitment: str
    timestamp: str
    chain_hash: str

    @classmethod
    def from_input(cls, chain_input: ChainInput, chain_hash: str) -> 'ChainCheckpoint':
        return cls(chain_hash=chain_hash, **asdict(chain_input))

    def to_input(self) -> ChainInput:
        return ChainInput(
            prev_chain_hash=self.prev_chain_hash,
            checkpoint_id=self.checkpoint_id,
            verdict=self.verdict,
            thinking_block_hash=self.thinking_block_hash,
            input_commitment=self.input_commitment,
            timestamp=self.timestamp,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChainCheckpoint':
        """Create a checkpoint from a JSON record."""
        required = [
            "checkpoint_id", "verdict", "thinking_block_hash",
            "input_commitment", "timestamp", "chain_hash",
        ]
        missing = [f for f in required if f not in data]
        if missing:
            raise ValueError(f"Missing required fields: {missing}")

        return cls(
            prev_chain_hash=data.get("prev_chain_hash"),
            checkpoint_id=data["checkpoint_id"],
            verdict=data["verdict"],
            thinking_block_hash=data["thinking_block_hash"],
            input_commitment=data["input_commitment"],
            timestamp=data["timestamp"],
            chain_hash=data["chain_hash"],
        )


@dataclass(frozen=True)
class ChainVerificationResult:
    """Outcome of verifying an ordered checkpoint sequence."""
    valid: bool
    links_verified: int
    details: str
    broken_at: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "valid": self.valid,
            "links_verified": self.links_verified,
            "details": self.details,
        }
        if self.broken_at is not None:
            d["broken_at"] = self.broken_at
        return d


def compute_chain_hash(chain_input: ChainInput) -> str:
    """
    Compute the SHA-256 chain hash for a single checkpoint link.

    A ``None`` previous hash is replaced by ``GENESIS_SENTINEL``. An empty
    string is hashed as-is, so it never collides with a genesis link.
    """
    prev = chain_input.prev_chain_hash
    if prev is None:
        prev = GENESIS_SENTINEL

    preimage = CHAIN_FIELD_SEPARATOR.join([
        prev,
        chain_input.checkpoint_id,
        chain_input.verdict,
        chain_input.thinking_block_hash,
        chain_input.input_commitment,
        chain_input.timestamp,
    ])
    return sha256_hex(preimage)


def verify_chain_link(chain_input: ChainInput, claimed_hash: str) -> bool:
    """Recompute the chain hash and compare it with ``claimed_hash``."""
    return digests_equal(compute_chain_hash(chain_input), claimed_hash)


def verify_chain_sequence(checkpoints: Sequence[ChainCheckpoint]) -> ChainVerificationResult:
    """
    Verify an ordered sequence of checkpoints (oldest first).

    Per checkpoint, in order:
    1. index 0 must have ``prev_chain_hash is None``
    2. index i > 0 must link to the chain hash of index i - 1
    3. the stored chain hash must match its recomputation

    Linkage and content are checked separately so that deletions,
    reorderings and field edits produce distinct messages. Stops at the
    first broken link; ``links_verified`` counts the clean checkpoints
    before it.
    """
    if len(checkpoints) == 0:
        return ChainVerificationResult(
            valid=True,
            links_verified=0,
            details="Empty chain; nothing to verify.",
        )

    for i, cp in enumerate(checkpoints):
        if i == 0:
            if cp.prev_chain_hash is not None:
                return ChainVerificationResult(
                    valid=False,
                    links_verified=0,
                    broken_at=0,
                    details="Genesis checkpoint must have prev_chain_hash == None.",
                )
        else:
            prev = checkpoints[i - 1]
            if cp.prev_chain_hash != prev.chain_hash:
                return ChainVerificationResult(
                    valid=False,
                    links_verified=i,
                    broken_at=i,
                    details=(
                        f"Chain broken at index {i}: prev_chain_hash does not match "
                        f"previous checkpoint's chain_hash."
                    ),
                )

        if not verify_chain_link(cp.to_input(), cp.chain_hash):
            return ChainVerificationResult(
                valid=False,
                links_verified=i,
                broken_at=i,
                details=(
                    f"Chain broken at index {i}: recomputed chain_hash does not match "
                    f"stored chain_hash."
                ),
            )

    return ChainVerificationResult(
        valid=True,
        links_verified=len(checkpoints),
        details=f"All {len(checkpoints)} links verified successfully.",
    )


def checkpoints_from_list(records: List[Dict[str, Any]]) -> List[ChainCheckpoint]:
    """Load an exported chain (list of JSON records) in stored order."""
    return [ChainCheckpoint.from_dict(r) for r in records]
