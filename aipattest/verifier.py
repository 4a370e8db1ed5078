"""
AIP Certificate Verification

Lets any third party confirm an IntegrityCertificate after the fact, using
only the certificate and a public key. Nothing here trusts the issuer.

Verification steps:
1. Verify the Ed25519 signature over ``signed_payload``
2. Verify the signed payload is exactly the payload rebuilt from the
   certificate's own subject, claims and proofs
3. Recompute the chain hash from the certificate fields
4. Recompute the leaf hash and verify the Merkle inclusion proof
   (optionally against an independently published root)
5. Check the input commitment is present and well formed

Tampering never raises: each check reports valid/invalid and the overall
result is valid only if every applicable check passes.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from .certificate import SignedPayloadInput, build_signed_payload
from .chain import ChainInput, compute_chain_hash
from .hashing import digests_equal, is_digest
from .keys import PublishedKeySet
from .logging_config import audit_log
from .merkle import (
    InclusionProof,
    LeafData,
    compute_leaf_hash,
    sibling_positions,
    tree_depth,
    verify_inclusion_proof,
)
from .models import IntegrityCertificate
from .signing import SIGNATURE_ALGORITHM, KeyMaterial, verify_checkpoint_signature

logger = logging.getLogger(__name__)


class CertificateFormatError(ValueError):
    """The document is not a structurally valid IntegrityCertificate."""


@dataclass
class CertificateVerificationResult:
    """Result of verifying one certificate."""
    valid: bool
    checks: Dict[str, Optional[Dict[str, Any]]]
    details: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "checks": self.checks,
            "details": "; ".join(self.details),
        }


def parse_certificate(data: Union[IntegrityCertificate, Dict[str, Any]]) -> IntegrityCertificate:
    """Validate a certificate document, raising CertificateFormatError."""
    if isinstance(data, IntegrityCertificate):
        return data
    if not isinstance(data, dict):
        raise CertificateFormatError("Certificate must be a JSON object")
    try:
        return IntegrityCertificate.model_validate(data)
    except ValidationError as e:
        raise CertificateFormatError(f"Invalid certificate structure: {e}") from e


class CertificateVerifier:
    """
    Offline certificate verifier.

    Keys are resolved from an explicit public key when given, otherwise by
    ``key_id`` from the published key set.
    """

    def __init__(self, key_set: Optional[PublishedKeySet] = None):
        self.key_set = key_set or PublishedKeySet()

    def verify(
        self,
        certificate: Union[IntegrityCertificate, Dict[str, Any]],
        public_key: Optional[KeyMaterial] = None,
        expected_root: Optional[str] = None
    ) -> CertificateVerificationResult:
        """
        Verify a certificate.

        Args:
            certificate: Certificate model or its JSON document
            public_key: Signer public key (bytes or hex); overrides the key set
            expected_root: Independently published Merkle root to pin against

        Returns:
            CertificateVerificationResult

        Raises:
            CertificateFormatError: the document is not a certificate
        """
        cert = parse_certificate(certificate)
        details: List[str] = []

        checks: Dict[str, Optional[Dict[str, Any]]] = {
            "signature": self._check_signature(cert, public_key, details),
            "payload": self._check_payload(cert, details),
            "chain": self._check_chain(cert, details),
            "merkle": self._check_merkle(cert, expected_root, details),
            "input_commitment": self._check_input_commitment(cert, details),
        }

        valid = all(c["valid"] for c in checks.values() if c is not None)
        logger.debug("Certificate %s checks: %s", cert.certificate_id, "; ".join(details))
        result = CertificateVerificationResult(valid=valid, checks=checks, details=details)

        audit_log.certificate_verification(
            certificate_id=cert.certificate_id,
            valid=valid,
            details="; ".join(details),
        )
        return result

    def _check_signature(
        self,
        cert: IntegrityCertificate,
        public_key: Optional[KeyMaterial],
        details: List[str]
    ) -> Dict[str, Any]:
        sig = cert.proofs.signature
        check = {"valid": False, "key_id": sig.key_id}

        if sig.algorithm != SIGNATURE_ALGORITHM:
            details.append(f"Signature: unsupported algorithm {sig.algorithm!r}")
            return check

        key = public_key if public_key is not None else self.key_set.get_public_key(sig.key_id)
        if key is None:
            details.append(f'Signature: signing key "{sig.key_id}" not found')
            audit_log.security_event(
                "unknown_signing_key",
                severity="high",
                certificate_id=cert.certificate_id,
                key_id=sig.key_id,
            )
            return check

        check["valid"] = verify_checkpoint_signature(sig.value, sig.signed_payload, key)
        if not check["valid"]:
            audit_log.security_event(
                "signature_mismatch",
                severity="high",
                certificate_id=cert.certificate_id,
                key_id=sig.key_id,
            )
        details.append(
            "Signature: valid" if check["valid"]
            else "Signature: Ed25519 signature verification failed"
        )
        return check

    def _check_payload(self, cert: IntegrityCertificate, details: List[str]) -> Dict[str, Any]:
        expected = build_signed_payload(SignedPayloadInput(
            checkpoint_id=cert.subject.checkpoint_id,
            agent_id=cert.subject.agent_id,
            verdict=cert.claims.verdict,
            thinking_block_hash=cert.input_commitments.thinking_block_hash,
            input_commitment=cert.input_commitments.combined_commitment,
            chain_hash=cert.proofs.chain.chain_hash,
            timestamp=cert.subject.timestamp,
        ))
        valid = expected == cert.proofs.signature.signed_payload
        details.append(
            "Payload: bound to certificate claims" if valid
            else "Payload: signed payload does not match certificate claims"
        )
        return {"valid": valid}

    def _check_chain(self, cert: IntegrityCertificate, details: List[str]) -> Dict[str, Any]:
        chain = cert.proofs.chain
        check = {"valid": False, "chain_hash": chain.chain_hash}

        is_genesis_position = chain.position == 0
        if is_genesis_position != (chain.prev_chain_hash is None):
            details.append(
                "Chain: position 0 requires a null prev_chain_hash and later "
                "positions require a previous hash"
            )
            return check

        recomputed = compute_chain_hash(ChainInput(
            prev_chain_hash=chain.prev_chain_hash,
            checkpoint_id=cert.subject.checkpoint_id,
            verdict=cert.claims.verdict,
            thinking_block_hash=cert.input_commitments.thinking_block_hash,
            input_commitment=cert.input_commitments.combined_commitment,
            timestamp=cert.subject.timestamp,
        ))
        check["valid"] = digests_equal(recomputed, chain.chain_hash)
        details.append(
            "Chain: valid" if check["valid"]
            else "Chain: recomputed chain hash does not match certificate"
        )
        return check

    def _check_merkle(
        self,
        cert: IntegrityCertificate,
        expected_root: Optional[str],
        details: List[str]
    ) -> Optional[Dict[str, Any]]:
        block = cert.proofs.merkle
        if block is None:
            details.append("Merkle: not present (optional)")
            return None

        check = {"valid": False, "root": block.root}

        if block.leaf_index >= block.tree_size:
            details.append("Merkle: leaf_index outside tree_size")
            return check

        # Leaves are appended in chain order.
        if block.leaf_index != cert.proofs.chain.position:
            details.append("Merkle: leaf_index does not match chain position")
            return check

        if len(block.inclusion_proof) != tree_depth(block.tree_size):
            details.append("Merkle: inclusion proof length does not match tree depth")
            return check

        expected_sides = sibling_positions(block.leaf_index, block.tree_size)
        if [step.position for step in block.inclusion_proof] != expected_sides:
            details.append("Merkle: sibling positions do not match leaf_index")
            return check

        leaf = compute_leaf_hash(LeafData(
            checkpoint_id=cert.subject.checkpoint_id,
            verdict=cert.claims.verdict,
            thinking_block_hash=cert.input_commitments.thinking_block_hash,
            chain_hash=cert.proofs.chain.chain_hash,
            timestamp=cert.subject.timestamp,
        ))
        if not digests_equal(leaf, block.leaf_hash):
            details.append("Merkle: leaf hash does not match certificate fields")
            return check

        proof = InclusionProof.from_dict(block.model_dump(mode="json"))
        claimed_root = expected_root if expected_root is not None else block.root
        check["valid"] = verify_inclusion_proof(proof, leaf, claimed_root)
        if check["valid"]:
            details.append("Merkle: valid")
        elif expected_root is not None and not digests_equal(block.root, expected_root):
            details.append("Merkle: root does not match published root")
        else:
            details.append("Merkle: inclusion proof verification failed")
        return check

    def _check_input_commitment(self, cert: IntegrityCertificate, details: List[str]) -> Dict[str, Any]:
        commitment = cert.input_commitments.combined_commitment
        valid = is_digest(commitment)
        details.append("Input commitment: present" if valid else "Input commitment: missing or malformed")
        return {"valid": valid, "commitment": commitment}


def verify_certificate(
    certificate: Union[IntegrityCertificate, Dict[str, Any]],
    public_key: Optional[KeyMaterial] = None,
    key_set: Optional[PublishedKeySet] = None,
    expected_root: Optional[str] = None
) -> CertificateVerificationResult:
    """Convenience function to verify one certificate."""
    verifier = CertificateVerifier(key_set=key_set)
    return verifier.verify(certificate, public_key=public_key, expected_root=expected_root)
