"""
AIP Integrity Certificate

A machine-readable certificate that bundles all cryptographic evidence for
one checkpoint into a single self-describing document:

- the Ed25519 signature over the canonical signed payload
- the chain link (chain hash, previous hash, position in the chain)
- the Merkle inclusion proof against the agent's tree, or null if the
  checkpoint has not been accumulated yet
- the input commitments the analysis was bound to

Anyone holding the certificate and the signer's public key can re-verify it
offline (see ``aipattest.verifier``).
"""

import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from . import config
from .canonicalization import canonicalize_str
from .merkle import InclusionProof
from .models import IntegrityCertificate
from .signing import SIGNATURE_ALGORITHM

CERTIFICATE_ID_PREFIX = "cert-"
CERTIFICATE_ID_LENGTH = 8
CERTIFICATE_ID_ALPHABET = string.ascii_lowercase + string.digits


@dataclass(frozen=True)
class SignedPayloadInput:
    """Checkpoint fields covered by the signature."""
    checkpoint_id: str
    agent_id: str
    verdict: str
    thinking_block_hash: str
    input_commitment: str
    chain_hash: str
    timestamp: str


@dataclass
class CertificateInput:
    """Everything needed to assemble one certificate."""
    checkpoint_id: str
    agent_id: str
    verdict: str
    timestamp: str
    thinking_block_hash: str
    input_commitment: str
    signature_key_id: str
    signature_value: str
    signed_payload: str
    chain_hash: str
    prev_chain_hash: Optional[str]
    chain_position: int
    merkle_proof: Optional[InclusionProof] = None
    session_id: str = ""
    card_id: str = ""
    concerns: List[Dict[str, str]] = field(default_factory=list)
    confidence: float = 1.0
    reasoning_summary: str = ""
    analysis_model: str = ""
    analysis_duration_ms: int = 0
    card_hash: str = ""
    values_hash: str = ""
    context_hash: str = ""
    model_version: str = ""
    verdict_derivation: Optional[Dict[str, Any]] = None


def generate_certificate_id() -> str:
    """Generate a certificate ID of the form ``cert-`` + 8 random [a-z0-9]."""
    suffix = "".join(
        secrets.choice(CERTIFICATE_ID_ALPHABET) for _ in range(CERTIFICATE_ID_LENGTH)
    )
    return f"{CERTIFICATE_ID_PREFIX}{suffix}"


def signed_payload_fields(payload: SignedPayloadInput) -> Dict[str, str]:
    return {
        "agent_id": payload.agent_id,
        "chain_hash": payload.chain_hash,
        "checkpoint_id": payload.checkpoint_id,
        "input_commitment": payload.input_commitment,
        "thinking_block_hash": payload.thinking_block_hash,
        "timestamp": payload.timestamp,
        "verdict": payload.verdict,
    }


def build_signed_payload(payload: SignedPayloadInput) -> str:
    """
    Build the canonical string that gets signed for a checkpoint.

    Compact JSON with sorted keys. This exact string is what the Ed25519
    signature covers and is carried verbatim in the certificate.
    """
    return canonicalize_str(signed_payload_fields(payload))


def _utc_now_iso() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime('%Y-%m-%dT%H:%M:%S.') + f"{now.microsecond // 1000:03d}Z"


def verification_endpoints(checkpoint_id: str, base_url: Optional[str] = None) -> Dict[str, str]:
    base = (base_url or config.BASE_URL).rstrip("/")
    return {
        "keys_url": f"{base}/v1/keys",
        "certificate_url": f"{base}/v1/checkpoints/{checkpoint_id}/certificate",
        "verify_url": f"{base}/v1/verify",
    }


def build_certificate(
    cert_input: CertificateInput,
    certificate_id: Optional[str] = None,
    issued_at: Optional[str] = None,
    base_url: Optional[str] = None
) -> IntegrityCertificate:
    """
    Assemble an IntegrityCertificate.

    Args:
        cert_input: Checkpoint, signature, chain and Merkle data
        certificate_id: Reuse a stored id; a fresh one is minted if omitted
        issued_at: Issuance time (default: now, ISO-8601 UTC)
        base_url: Base for the verification endpoint URLs

    Returns:
        The certificate model; ``to_dict()`` gives the JSON document
    """
    merkle: Optional[Dict[str, Any]] = None
    proof = cert_input.merkle_proof
    if proof is not None:
        merkle = {
            "leaf_hash": proof.leaf_hash,
            "leaf_index": proof.leaf_index,
            "root": proof.root,
            "tree_size": proof.tree_size,
            "inclusion_proof": proof.siblings_to_list(),
        }

    document = {
        "certificate_id": certificate_id or generate_certificate_id(),
        "issued_at": issued_at or _utc_now_iso(),
        "subject": {
            "checkpoint_id": cert_input.checkpoint_id,
            "agent_id": cert_input.agent_id,
            "session_id": cert_input.session_id,
            "card_id": cert_input.card_id,
            "timestamp": cert_input.timestamp,
        },
        "claims": {
            "verdict": cert_input.verdict,
            "concerns": list(cert_input.concerns),
            "confidence": cert_input.confidence,
            "reasoning_summary": cert_input.reasoning_summary,
            "analysis_model": cert_input.analysis_model,
            "analysis_duration_ms": cert_input.analysis_duration_ms,
        },
        "input_commitments": {
            "thinking_block_hash": cert_input.thinking_block_hash,
            "card_hash": cert_input.card_hash,
            "values_hash": cert_input.values_hash,
            "context_hash": cert_input.context_hash,
            "model_version": cert_input.model_version,
            "combined_commitment": cert_input.input_commitment,
        },
        "proofs": {
            "signature": {
                "algorithm": SIGNATURE_ALGORITHM,
                "key_id": cert_input.signature_key_id,
                "value": cert_input.signature_value,
                "signed_payload": cert_input.signed_payload,
            },
            "chain": {
                "chain_hash": cert_input.chain_hash,
                "prev_chain_hash": cert_input.prev_chain_hash,
                "position": cert_input.chain_position,
            },
            "merkle": merkle,
            "verdict_derivation": cert_input.verdict_derivation,
        },
        "verification": verification_endpoints(cert_input.checkpoint_id, base_url),
    }
    return IntegrityCertificate.model_validate(document)
