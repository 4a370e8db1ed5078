"""
AIP Chain Writer and Attestation Pipeline

Appending to an agent's chain is the one ordered operation in the system:
two concurrent appends for the same agent would both link to the same tip
and fork the chain. ``ChainWriterRegistry`` hands out at most one
``ChainWriter`` per agent at a time.

``CheckpointAttestor`` runs the full per-checkpoint pipeline on a writer:

1. Compute the input commitment
2. Append to the chain (chain hash from the previous tip)
3. Build and sign the canonical payload
4. Append the leaf hash, recompute the tree state and inclusion proof
5. Assemble the IntegrityCertificate
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple, Union

from .certificate import (
    CertificateInput,
    SignedPayloadInput,
    build_certificate,
    build_signed_payload,
)
from .chain import ChainCheckpoint, ChainInput, compute_chain_hash
from .commitment import (
    InputCommitmentData,
    card_hash,
    compute_input_commitment,
    context_hash,
    values_hash,
)
from .keys import KeyProvider
from .logging_config import audit_log
from .merkle import (
    InclusionProof,
    LeafData,
    TreeState,
    build_tree_state,
    compute_leaf_hash,
    generate_inclusion_proof,
)
from .models import IntegrityCertificate
from .signing import SigningService

logger = logging.getLogger(__name__)

# agent_id -> (checkpoints oldest first, leaf hashes or empty to derive them)
ChainLoader = Callable[[str], Tuple[Sequence[ChainCheckpoint], Sequence[str]]]


class WriterBusyError(RuntimeError):
    """Another writer already holds this agent's chain."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Chain writer for agent {agent_id!r} is already held")


class WriterClosedError(RuntimeError):
    """The writer handle was used after release."""


def leaf_hash_for_checkpoint(checkpoint: ChainCheckpoint) -> str:
    return compute_leaf_hash(LeafData(
        checkpoint_id=checkpoint.checkpoint_id,
        verdict=checkpoint.verdict,
        thinking_block_hash=checkpoint.thinking_block_hash,
        chain_hash=checkpoint.chain_hash,
        timestamp=checkpoint.timestamp,
    ))


class ChainWriter:
    """
    Exclusive append handle for one agent's chain and Merkle leaves.

    Obtained from ``ChainWriterRegistry.acquire``. Usable as a context
    manager; the handle is released on exit.
    """

    def __init__(
        self,
        registry: 'ChainWriterRegistry',
        agent_id: str,
        checkpoints: List[ChainCheckpoint],
        leaf_hashes: List[str]
    ):
        self._registry = registry
        self.agent_id = agent_id
        self._checkpoints = checkpoints
        self._leaf_hashes = leaf_hashes
        self._closed = False

    def __enter__(self) -> 'ChainWriter':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __len__(self) -> int:
        return len(self._checkpoints)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def checkpoints(self) -> List[ChainCheckpoint]:
        return list(self._checkpoints)

    @property
    def leaf_hashes(self) -> List[str]:
        return list(self._leaf_hashes)

    @property
    def tip(self) -> Optional[ChainCheckpoint]:
        """Most recent checkpoint, or None for an empty chain."""
        return self._checkpoints[-1] if self._checkpoints else None

    def _check_open(self) -> None:
        if self._closed:
            raise WriterClosedError(f"Chain writer for agent {self.agent_id!r} has been released")

    def append(
        self,
        checkpoint_id: str,
        verdict: str,
        thinking_block_hash: str,
        input_commitment: str,
        timestamp: str
    ) -> ChainCheckpoint:
        """Link a new checkpoint to the tip and record its leaf hash."""
        self._check_open()

        tip = self.tip
        chain_input = ChainInput(
            prev_chain_hash=tip.chain_hash if tip is not None else None,
            checkpoint_id=checkpoint_id,
            verdict=verdict,
            thinking_block_hash=thinking_block_hash,
            input_commitment=input_commitment,
            timestamp=timestamp,
        )
        checkpoint = ChainCheckpoint.from_input(chain_input, compute_chain_hash(chain_input))

        self._checkpoints.append(checkpoint)
        self._leaf_hashes.append(leaf_hash_for_checkpoint(checkpoint))

        audit_log.checkpoint_appended(
            agent_id=self.agent_id,
            checkpoint_id=checkpoint_id,
            chain_hash=checkpoint.chain_hash,
            position=len(self._checkpoints) - 1,
        )
        return checkpoint

    def tree_state(self) -> TreeState:
        return build_tree_state(self._leaf_hashes)

    def proof_for(self, position: int) -> InclusionProof:
        return generate_inclusion_proof(self._leaf_hashes, position)

    def release(self) -> None:
        """Give the agent's chain back to the registry. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._registry._release(self.agent_id)


class ChainWriterRegistry:
    """
    Hands out one ChainWriter per agent at a time.

    Thread-safe; callers in other threads either fail fast with
    ``WriterBusyError`` or wait up to ``timeout`` seconds.
    """

    def __init__(self, loader: Optional[ChainLoader] = None):
        self._held: Set[str] = set()
        self._cond = threading.Condition(threading.Lock())
        self._loader = loader

    def is_held(self, agent_id: str) -> bool:
        with self._cond:
            return agent_id in self._held

    def acquire(
        self,
        agent_id: str,
        checkpoints: Sequence[ChainCheckpoint] = (),
        leaf_hashes: Sequence[str] = (),
        timeout: Optional[float] = None
    ) -> ChainWriter:
        """
        Open the writer for ``agent_id``.

        Args:
            agent_id: Agent whose chain is appended to
            checkpoints: Existing chain, oldest first. When omitted and the
                registry has a loader, the chain is loaded after the hold is
                taken, so it cannot be stale
            leaf_hashes: Existing Merkle leaves; derived from the checkpoints
                when omitted
            timeout: Seconds to wait for a held writer (default: don't wait)

        Raises:
            WriterBusyError: the writer is held and was not released in time
            ValueError: the leaf hashes do not line up with the checkpoints
        """
        with self._cond:
            if agent_id in self._held:
                if timeout is None or not self._cond.wait_for(
                    lambda: agent_id not in self._held, timeout=timeout
                ):
                    audit_log.writer_contention(agent_id)
                    raise WriterBusyError(agent_id)
            self._held.add(agent_id)

        try:
            if not checkpoints and self._loader is not None:
                checkpoints, leaf_hashes = self._loader(agent_id)
            existing = list(checkpoints)
            leaves = list(leaf_hashes)
            if not leaves and existing:
                leaves = [leaf_hash_for_checkpoint(cp) for cp in existing]
            if len(leaves) != len(existing):
                raise ValueError(
                    f"Got {len(leaves)} leaf hashes for {len(existing)} checkpoints"
                )
        except Exception:
            self._release(agent_id)
            raise

        logger.debug("Chain writer acquired for %s at length %d", agent_id, len(existing))
        return ChainWriter(self, agent_id, existing, leaves)

    def _release(self, agent_id: str) -> None:
        with self._cond:
            self._held.discard(agent_id)
            self._cond.notify_all()


@dataclass
class AttestationRequest:
    """One analysed checkpoint to attest."""
    checkpoint_id: str
    verdict: str
    thinking_block_hash: str
    timestamp: str
    inputs: InputCommitmentData
    session_id: str = ""
    concerns: List[Dict[str, str]] = field(default_factory=list)
    confidence: float = 1.0
    reasoning_summary: str = ""
    analysis_model: str = ""
    analysis_duration_ms: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AttestationRequest':
        required = ["checkpoint_id", "verdict", "thinking_block_hash", "timestamp", "inputs"]
        missing = [f for f in required if f not in data]
        if missing:
            raise ValueError(f"Missing required fields: {missing}")

        return cls(
            checkpoint_id=data["checkpoint_id"],
            verdict=data["verdict"],
            thinking_block_hash=data["thinking_block_hash"],
            timestamp=data["timestamp"],
            inputs=InputCommitmentData.from_dict(data["inputs"]),
            session_id=data.get("session_id", ""),
            concerns=list(data.get("concerns") or []),
            confidence=float(data.get("confidence", 1.0)),
            reasoning_summary=data.get("reasoning_summary", ""),
            analysis_model=data.get("analysis_model", ""),
            analysis_duration_ms=int(data.get("analysis_duration_ms", 0)),
        )


@dataclass
class AttestationRecord:
    """Everything produced for one attested checkpoint."""
    checkpoint: ChainCheckpoint
    position: int
    leaf_hash: str
    signed_payload: str
    key_id: str
    signature: str
    tree_state: TreeState
    proof: InclusionProof
    certificate: IntegrityCertificate


Signer = Union[KeyProvider, SigningService]


class CheckpointAttestor:
    """Runs the attestation pipeline with a given signer."""

    def __init__(self, signer: Signer, base_url: Optional[str] = None):
        self.signer = signer
        self.base_url = base_url

    def _sign(self, payload: str):
        if isinstance(self.signer, SigningService):
            return self.signer.sign(payload)
        return self.signer.sign_checkpoint_payload(payload)

    def attest(self, writer: ChainWriter, request: AttestationRequest) -> AttestationRecord:
        """
        Attest one checkpoint on ``writer``'s chain.

        The checkpoint is appended before signing, so a signer failure
        leaves the chain extended without a certificate; callers holding
        the writer may retry issuance with ``reissue``.
        """
        commitment = compute_input_commitment(request.inputs)

        writer.append(
            checkpoint_id=request.checkpoint_id,
            verdict=request.verdict,
            thinking_block_hash=request.thinking_block_hash,
            input_commitment=commitment,
            timestamp=request.timestamp,
        )
        return self.reissue(writer, request, len(writer) - 1)

    def reissue(self, writer: ChainWriter, request: AttestationRequest, position: int) -> AttestationRecord:
        """Sign and certify the checkpoint already stored at ``position``."""
        checkpoint = writer.checkpoints[position]
        signed_payload = build_signed_payload(SignedPayloadInput(
            checkpoint_id=checkpoint.checkpoint_id,
            agent_id=writer.agent_id,
            verdict=checkpoint.verdict,
            thinking_block_hash=checkpoint.thinking_block_hash,
            input_commitment=checkpoint.input_commitment,
            chain_hash=checkpoint.chain_hash,
            timestamp=checkpoint.timestamp,
        ))
        key_id, signature = self._sign(signed_payload)

        tree_state = writer.tree_state()
        proof = writer.proof_for(position)

        inputs = request.inputs
        certificate = build_certificate(
            CertificateInput(
                checkpoint_id=checkpoint.checkpoint_id,
                agent_id=writer.agent_id,
                verdict=checkpoint.verdict,
                timestamp=checkpoint.timestamp,
                thinking_block_hash=checkpoint.thinking_block_hash,
                input_commitment=checkpoint.input_commitment,
                signature_key_id=key_id,
                signature_value=signature,
                signed_payload=signed_payload,
                chain_hash=checkpoint.chain_hash,
                prev_chain_hash=checkpoint.prev_chain_hash,
                chain_position=position,
                merkle_proof=proof,
                session_id=request.session_id,
                card_id=str(inputs.card.get("card_id", "")),
                concerns=request.concerns,
                confidence=request.confidence,
                reasoning_summary=request.reasoning_summary,
                analysis_model=request.analysis_model,
                analysis_duration_ms=request.analysis_duration_ms,
                card_hash=card_hash(inputs.card),
                values_hash=values_hash(inputs.conscience_values),
                context_hash=context_hash(inputs.window_context),
                model_version=inputs.model_version,
            ),
            base_url=self.base_url,
        )

        audit_log.certificate_issued(
            certificate_id=certificate.certificate_id,
            checkpoint_id=checkpoint.checkpoint_id,
            key_id=key_id,
            merkle_root=tree_state.root,
        )

        return AttestationRecord(
            checkpoint=checkpoint,
            position=position,
            leaf_hash=writer.leaf_hashes[position],
            signed_payload=signed_payload,
            key_id=key_id,
            signature=signature,
            tree_state=tree_state,
            proof=proof,
            certificate=certificate,
        )
