"""
AIP Merkle Accumulator

A per-agent append-only binary Merkle tree over checkpoint leaf hashes.
Supports inclusion proofs (a checkpoint is part of a published root) and
tree state summaries.

Construction rules:
- Leaf hash = SHA-256(checkpoint_id | verdict | thinking_block_hash | chain_hash | timestamp)
- Node hash = SHA-256(left_hex + right_hex); order matters
- At every level with an odd number of nodes, the last node is duplicated
  before pairing
- An empty tree has root ``""``; a single leaf is its own root

There is no tree object. Every operation takes the full ordered list of leaf
hashes and returns a fresh result, so a tree can always be rebuilt from a
flat list reloaded from storage.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

from .hashing import digests_equal, sha256_hex

LEAF_FIELD_SEPARATOR = "|"

POSITION_LEFT = "left"
POSITION_RIGHT = "right"


class MerkleError(ValueError):
    """Caller misuse of a Merkle operation (not tampering)."""


class EmptyTreeError(MerkleError):
    """Raised when a proof is requested from a tree with no leaves."""

    def __init__(self):
        super().__init__("Cannot generate proof for empty tree.")


class LeafIndexOutOfBoundsError(MerkleError):
    """Raised when a leaf index falls outside the tree."""

    def __init__(self, leaf_index: int, tree_size: int):
        self.leaf_index = leaf_index
        self.tree_size = tree_size
        super().__init__(
            f"leaf_index {leaf_index} out of bounds (tree has {tree_size} leaves)."
        )


@dataclass(frozen=True)
class LeafData:
    """Checkpoint fields hashed into one leaf. Includes the chain hash."""
    checkpoint_id: str
    verdict: str
    thinking_block_hash: str
    chain_hash: str
    timestamp: str


@dataclass(frozen=True)
class MerkleProofSibling:
    """A sibling on the proof path and the side it sits on."""
    hash: str
    position: str  # "left" | "right"

    def to_dict(self) -> Dict[str, str]:
        return {"hash": self.hash, "position": self.position}


@dataclass(frozen=True)
class InclusionProof:
    """Sibling path from one leaf up to the root, ordered bottom-up."""
    leaf_hash: str
    leaf_index: int
    siblings: Tuple[MerkleProofSibling, ...]
    root: str
    tree_size: int

    def siblings_to_list(self) -> List[Dict[str, str]]:
        return [s.to_dict() for s in self.siblings]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "leaf_hash": self.leaf_hash,
            "leaf_index": self.leaf_index,
            "siblings": self.siblings_to_list(),
            "root": self.root,
            "tree_size": self.tree_size,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InclusionProof':
        """
        Create a proof from its JSON form.

        Accepts both ``siblings`` and the certificate's ``inclusion_proof``
        key for the sibling path.
        """
        raw_siblings = data.get("siblings")
        if raw_siblings is None:
            raw_siblings = data.get("inclusion_proof", [])
        return cls(
            leaf_hash=data["leaf_hash"],
            leaf_index=int(data["leaf_index"]),
            siblings=tuple(
                MerkleProofSibling(hash=s["hash"], position=s["position"])
                for s in raw_siblings
            ),
            root=data["root"],
            tree_size=int(data["tree_size"]),
        )


@dataclass(frozen=True)
class TreeState:
    """Point-in-time summary of a tree."""
    root: str
    depth: int
    leaf_count: int
    leaf_hashes: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "merkle_root": self.root,
            "tree_depth": self.depth,
            "leaf_count": self.leaf_count,
        }


def compute_leaf_hash(data: LeafData) -> str:
    """Compute the SHA-256 leaf hash for a checkpoint."""
    preimage = LEAF_FIELD_SEPARATOR.join([
        data.checkpoint_id,
        data.verdict,
        data.thinking_block_hash,
        data.chain_hash,
        data.timestamp,
    ])
    return sha256_hex(preimage)


def compute_node_hash(left: str, right: str) -> str:
    """Hash of an internal node: SHA-256 over the two hex strings concatenated."""
    return sha256_hex(left + right)


def _next_level(level: List[str]) -> List[str]:
    """Pair adjacent nodes. ``level`` must already have an even length."""
    return [compute_node_hash(level[i], level[i + 1]) for i in range(0, len(level), 2)]


def compute_merkle_root(leaf_hashes: Sequence[str]) -> str:
    """
    Build the tree bottom-up and return its root.

    Returns ``""`` for an empty list and the leaf itself for a single leaf.
    """
    if len(leaf_hashes) == 0:
        return ""

    level = list(leaf_hashes)
    while len(level) > 1:
        if len(level) % 2 != 0:
            level.append(level[-1])
        level = _next_level(level)

    return level[0]


def generate_inclusion_proof(leaf_hashes: Sequence[str], leaf_index: int) -> InclusionProof:
    """
    Generate an inclusion proof for the leaf at ``leaf_index``.

    Each sibling's ``position`` says on which side of the path node it sits.
    On an odd level the last node is paired with its own duplicate, which is
    recorded as a right-hand sibling.

    Raises:
        EmptyTreeError: ``leaf_hashes`` is empty
        LeafIndexOutOfBoundsError: ``leaf_index`` is negative or >= tree size
    """
    tree_size = len(leaf_hashes)
    if tree_size == 0:
        raise EmptyTreeError()
    if leaf_index < 0 or leaf_index >= tree_size:
        raise LeafIndexOutOfBoundsError(leaf_index, tree_size)

    siblings: List[MerkleProofSibling] = []
    level = list(leaf_hashes)
    idx = leaf_index

    while len(level) > 1:
        if len(level) % 2 != 0:
            level.append(level[-1])

        if idx % 2 == 0:
            siblings.append(MerkleProofSibling(hash=level[idx + 1], position=POSITION_RIGHT))
        else:
            siblings.append(MerkleProofSibling(hash=level[idx - 1], position=POSITION_LEFT))

        level = _next_level(level)
        idx //= 2

    return InclusionProof(
        leaf_hash=leaf_hashes[leaf_index],
        leaf_index=leaf_index,
        siblings=tuple(siblings),
        root=level[0],
        tree_size=tree_size,
    )


def verify_inclusion_proof(
    proof: InclusionProof,
    claimed_leaf_hash: str,
    claimed_root: str
) -> bool:
    """
    Verify an inclusion proof by folding the sibling path.

    The proof must be for ``claimed_leaf_hash``, and the recomputed root must
    equal both the proof's own root and ``claimed_root``. An unknown sibling
    position fails the proof.
    """
    if not digests_equal(proof.leaf_hash, claimed_leaf_hash):
        return False

    current = claimed_leaf_hash
    for sibling in proof.siblings:
        if sibling.position == POSITION_RIGHT:
            current = compute_node_hash(current, sibling.hash)
        elif sibling.position == POSITION_LEFT:
            current = compute_node_hash(sibling.hash, current)
        else:
            return False

    return digests_equal(current, proof.root) and digests_equal(current, claimed_root)


def tree_depth(leaf_count: int) -> int:
    """ceil(log2(leaf_count)), and 0 for trees of zero or one leaf."""
    if leaf_count <= 1:
        return 0
    return (leaf_count - 1).bit_length()


def sibling_positions(leaf_index: int, tree_size: int) -> List[str]:
    """
    The sibling sides a proof for ``leaf_index`` must carry, leaf level first.

    Mirrors ``generate_inclusion_proof``: a self-duplicated last node on an
    odd level is a right-hand sibling.

    Raises:
        EmptyTreeError: ``tree_size`` is zero
        LeafIndexOutOfBoundsError: ``leaf_index`` is negative or >= tree size
    """
    if tree_size <= 0:
        raise EmptyTreeError()
    if leaf_index < 0 or leaf_index >= tree_size:
        raise LeafIndexOutOfBoundsError(leaf_index, tree_size)

    positions: List[str] = []
    width, idx = tree_size, leaf_index
    while width > 1:
        positions.append(POSITION_RIGHT if idx % 2 == 0 else POSITION_LEFT)
        width = (width + 1) // 2
        idx //= 2
    return positions


def build_tree_state(leaf_hashes: Sequence[str]) -> TreeState:
    """Summarise a tree. The leaf list is copied, never referenced."""
    snapshot = tuple(leaf_hashes)
    return TreeState(
        root=compute_merkle_root(snapshot),
        depth=tree_depth(len(snapshot)),
        leaf_count=len(snapshot),
        leaf_hashes=snapshot,
    )
