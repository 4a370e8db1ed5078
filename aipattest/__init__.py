"""
AIP Attest: Integrity Attestation for Agent Checkpoints

Version: 1.0.0

Produces and verifies tamper-evident attestations for the integrity
checkpoints a monitored agent emits. Every checkpoint is:

- linked to its predecessor in a SHA-256 hash chain
- accumulated into a per-agent append-only Merkle tree
- signed with Ed25519 and packaged as an IntegrityCertificate

A third party holding a certificate and a public key can verify it offline
without trusting the issuer.

Usage:
    from aipattest import (
        ChainWriterRegistry,
        CheckpointAttestor,
        AttestationRequest,
        InputCommitmentData,
        SigningService,
        verify_certificate,
    )

    service = SigningService()
    key_pair = service.generate_key_pair()
    attestor = CheckpointAttestor(service)
    registry = ChainWriterRegistry()

    with registry.acquire("agent-42", checkpoints=stored_chain) as writer:
        record = attestor.attest(writer, AttestationRequest(
            checkpoint_id="ic-0001",
            verdict="clear",
            thinking_block_hash=thinking_hash,
            timestamp="2026-01-01T00:00:00.000Z",
            inputs=InputCommitmentData(card=card, model_version="m", prompt_template_version="1"),
        ))

    result = verify_certificate(record.certificate.to_dict(), public_key=key_pair.verify_key)
    assert result.valid
"""

__version__ = "1.0.0"

# Canonicalization and hashing
from .canonicalization import canonicalize, canonicalize_str
from .hashing import sha256_hex, canonical_hash, is_digest, digests_equal

# Commitment
from .commitment import (
    InputCommitmentData,
    compute_input_commitment,
    card_hash,
    values_hash,
    context_hash,
)

# Chain
from .chain import (
    GENESIS_SENTINEL,
    ChainInput,
    ChainCheckpoint,
    ChainVerificationResult,
    compute_chain_hash,
    verify_chain_link,
    verify_chain_sequence,
    checkpoints_from_list,
)

# Merkle
from .merkle import (
    LeafData,
    MerkleProofSibling,
    InclusionProof,
    TreeState,
    MerkleError,
    EmptyTreeError,
    LeafIndexOutOfBoundsError,
    compute_leaf_hash,
    compute_node_hash,
    compute_merkle_root,
    generate_inclusion_proof,
    verify_inclusion_proof,
    build_tree_state,
)

# Signing and keys
from .signing import (
    SigningService,
    KeyPair,
    generate_signing_key,
    get_public_key_from_secret,
    key_id_for_public_key,
    sign_checkpoint,
    verify_checkpoint_signature,
)
from .keys import (
    KeyProvider,
    FileKeyProvider,
    AwsKmsEd25519Provider,
    PublishedKeySet,
    get_key_provider,
)

# Certificates
from .certificate import (
    SignedPayloadInput,
    CertificateInput,
    build_signed_payload,
    build_certificate,
    generate_certificate_id,
)
from .models import IntegrityCertificate

# Verifier
from .verifier import (
    CertificateVerifier,
    CertificateVerificationResult,
    CertificateFormatError,
    verify_certificate,
)

# Writer
from .writer import (
    ChainWriter,
    ChainWriterRegistry,
    WriterBusyError,
    WriterClosedError,
    AttestationRequest,
    AttestationRecord,
    CheckpointAttestor,
)


__all__ = [
    # Version
    "__version__",

    # Canonicalization
    "canonicalize",
    "canonicalize_str",

    # Hashing
    "sha256_hex",
    "canonical_hash",
    "is_digest",
    "digests_equal",

    # Commitment
    "InputCommitmentData",
    "compute_input_commitment",
    "card_hash",
    "values_hash",
    "context_hash",

    # Chain
    "GENESIS_SENTINEL",
    "ChainInput",
    "ChainCheckpoint",
    "ChainVerificationResult",
    "compute_chain_hash",
    "verify_chain_link",
    "verify_chain_sequence",
    "checkpoints_from_list",

    # Merkle
    "LeafData",
    "MerkleProofSibling",
    "InclusionProof",
    "TreeState",
    "MerkleError",
    "EmptyTreeError",
    "LeafIndexOutOfBoundsError",
    "compute_leaf_hash",
    "compute_node_hash",
    "compute_merkle_root",
    "generate_inclusion_proof",
    "verify_inclusion_proof",
    "build_tree_state",

    # Signing and keys
    "SigningService",
    "KeyPair",
    "generate_signing_key",
    "get_public_key_from_secret",
    "key_id_for_public_key",
    "sign_checkpoint",
    "verify_checkpoint_signature",
    "KeyProvider",
    "FileKeyProvider",
    "AwsKmsEd25519Provider",
    "PublishedKeySet",
    "get_key_provider",

    # Certificates
    "SignedPayloadInput",
    "CertificateInput",
    "build_signed_payload",
    "build_certificate",
    "generate_certificate_id",
    "IntegrityCertificate",

    # Verifier
    "CertificateVerifier",
    "CertificateVerificationResult",
    "CertificateFormatError",
    "verify_certificate",

    # Writer
    "ChainWriter",
    "ChainWriterRegistry",
    "WriterBusyError",
    "WriterClosedError",
    "AttestationRequest",
    "AttestationRecord",
    "CheckpointAttestor",
]
