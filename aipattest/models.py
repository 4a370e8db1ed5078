from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

CERTIFICATE_CONTEXT = "https://mnemom.ai/aip/v1"
CERTIFICATE_TYPE = "IntegrityCertificate"
CERTIFICATE_VERSION = "1.0.0"


class FrozenModel(BaseModel):
    # Issued certificates are immutable at every nesting level.
    model_config = ConfigDict(frozen=True)


class Concern(FrozenModel):
    category: str
    severity: str
    description: str


class Subject(FrozenModel):
    checkpoint_id: str
    agent_id: str
    session_id: str = ""
    card_id: str = ""
    timestamp: str


class Claims(FrozenModel):
    verdict: str
    concerns: Tuple[Concern, ...] = ()
    confidence: float = 1.0
    reasoning_summary: str = ""
    analysis_model: str = ""
    analysis_duration_ms: int = 0


class InputCommitments(FrozenModel):
    model_config = ConfigDict(protected_namespaces=())

    thinking_block_hash: str
    card_hash: str = ""
    values_hash: str = ""
    context_hash: str = ""
    model_version: str = ""
    combined_commitment: str


class SignatureProof(FrozenModel):
    algorithm: str = "Ed25519"
    key_id: str
    value: str
    signed_payload: str


class ChainProof(FrozenModel):
    chain_hash: str
    prev_chain_hash: Optional[str] = None
    position: int = Field(ge=0)


class InclusionStep(FrozenModel):
    hash: str
    # Kept as a free string: an unknown side must fail verification, not parsing.
    position: str


class MerkleProofBlock(FrozenModel):
    leaf_hash: str
    leaf_index: int = Field(ge=0)
    root: str
    tree_size: int = Field(ge=1)
    inclusion_proof: Tuple[InclusionStep, ...] = ()


class Proofs(FrozenModel):
    signature: SignatureProof
    chain: ChainProof
    merkle: Optional[MerkleProofBlock] = None
    verdict_derivation: Optional[Dict[str, Any]] = None


class VerificationEndpoints(FrozenModel):
    keys_url: str
    certificate_url: str
    verify_url: str


class IntegrityCertificate(FrozenModel):
    model_config = ConfigDict(populate_by_name=True)

    context: str = Field(default=CERTIFICATE_CONTEXT, alias="@context")
    type: str = CERTIFICATE_TYPE
    version: str = CERTIFICATE_VERSION
    certificate_id: str
    issued_at: str
    subject: Subject
    claims: Claims
    input_commitments: InputCommitments
    proofs: Proofs
    verification: VerificationEndpoints

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")
