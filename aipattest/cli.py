#!/usr/bin/env python3
"""
AIP Attest Command Line Interface

Usage:
    aipattest keygen [--output <key file>] [--published <file>]
    aipattest commit --file <inputs file>
    aipattest chain-verify --file <chain file>
    aipattest merkle-root --file <leaves file>
    aipattest merkle-proof --file <leaves file> --index <n>
    aipattest attest --file <requests file> [--chain <chain file>] [--output <file>]
    aipattest verify --certificate <file> [--public-key <hex> | --keys <file>] [--root <hex>]
    aipattest demo

Results are printed as JSON on stdout. Verification commands exit 0 when
valid and 1 when invalid.
"""

import argparse
import json
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from . import config
from .logging_config import audit_log, configure_logging, set_request_id


def load_json(path: str) -> Any:
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_json(data: Any, path: str):
    """Save JSON to file."""
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)


def print_json(data: Any):
    print(json.dumps(data, indent=2))


def cmd_keygen(args) -> int:
    """Generate an Ed25519 signing key and its published key set."""
    from .signing import SigningService

    service = SigningService()
    key_pair = service.generate_key_pair(key_id=args.key_id)
    published = {"keys": service.published_keys()}

    if args.output:
        save_json({"kid": key_pair.key_id, "private_key_hex": key_pair.signing_key.hex()}, args.output)
        print(f"Signing key saved to: {args.output}", file=sys.stderr)

    if args.published:
        save_json(published, args.published)
        print(f"Published keys saved to: {args.published}", file=sys.stderr)
    else:
        print_json(published)

    print(f"Generated key: {key_pair.key_id}", file=sys.stderr)
    return 0


def cmd_commit(args) -> int:
    """Compute the input commitment for an analysis inputs document."""
    from .commitment import (
        InputCommitmentData,
        card_hash,
        compute_input_commitment,
        context_hash,
        values_hash,
    )

    data = InputCommitmentData.from_dict(load_json(args.file))
    print_json({
        "input_commitment": compute_input_commitment(data),
        "card_hash": card_hash(data.card),
        "values_hash": values_hash(data.conscience_values),
        "context_hash": context_hash(data.window_context),
    })
    return 0


def cmd_chain_verify(args) -> int:
    """Verify an exported chain (oldest first)."""
    from .chain import checkpoints_from_list, verify_chain_sequence

    data = load_json(args.file)
    agent_id = None
    if isinstance(data, dict):
        agent_id = data.get("agent_id")
        data = data.get("checkpoints", [])

    result = verify_chain_sequence(checkpoints_from_list(data))
    audit_log.chain_verification(
        valid=result.valid,
        links_verified=result.links_verified,
        broken_at=result.broken_at,
        details=result.details,
        agent_id=agent_id,
    )
    print_json(result.to_dict())
    return 0 if result.valid else 1


def _load_leaves(path: str) -> List[str]:
    data = load_json(path)
    if isinstance(data, dict):
        data = data.get("leaf_hashes", [])
    return list(data)


def cmd_merkle_root(args) -> int:
    """Summarise a Merkle tree from its leaf hashes."""
    from .merkle import build_tree_state

    print_json(build_tree_state(_load_leaves(args.file)).to_dict())
    return 0


def cmd_merkle_proof(args) -> int:
    """Generate an inclusion proof for one leaf."""
    from .merkle import MerkleError, generate_inclusion_proof

    try:
        proof = generate_inclusion_proof(_load_leaves(args.file), args.index)
    except MerkleError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print_json(proof.to_dict())
    return 0


def configured_key_provider():
    """Build the signer selected by the AIPATTEST_SIGNER settings."""
    from .keys import get_key_provider

    return get_key_provider(
        signer_type=config.SIGNER_TYPE,
        signing_key_path=config.SIGNING_KEY_PATH,
        kms_key_id=config.AWS_KMS_KEY_ID,
        kms_region=config.AWS_REGION or None,
        kms_kid=config.AWS_KMS_KID,
    )


def _load_chain_file(path: Optional[str]) -> List[dict]:
    if not path or not os.path.exists(path):
        return []
    data = load_json(path)
    if isinstance(data, dict):
        data = data.get("checkpoints", [])
    return list(data)


def cmd_attest(args) -> int:
    """Attest analysed checkpoints with the configured signer."""
    from .chain import checkpoints_from_list
    from .writer import AttestationRequest, ChainWriterRegistry, CheckpointAttestor

    signer_checks = {k: ok for k, ok in config.validate_config().items() if k != "published_keys"}
    failed = [k for k, ok in signer_checks.items() if not ok]
    if failed:
        print(f"Error: signer configuration invalid: {', '.join(failed)}", file=sys.stderr)
        return 1

    data = load_json(args.file)
    agent_id = data["agent_id"]
    requests = [AttestationRequest.from_dict(r) for r in data.get("checkpoints", [])]

    registry = ChainWriterRegistry(
        loader=lambda _agent: (checkpoints_from_list(_load_chain_file(args.chain)), ())
    )
    attestor = CheckpointAttestor(configured_key_provider(), base_url=args.base_url)

    with registry.acquire(agent_id) as writer:
        records = [attestor.attest(writer, request) for request in requests]
        checkpoints = writer.checkpoints
        state = writer.tree_state()

    if args.chain:
        save_json({"agent_id": agent_id, "checkpoints": [cp.to_dict() for cp in checkpoints]}, args.chain)
        print(f"Chain saved to: {args.chain}", file=sys.stderr)

    output = {
        "agent_id": agent_id,
        "merkle_root": state.root,
        "tree_size": state.leaf_count,
        "certificates": [r.certificate.to_dict() for r in records],
    }
    if args.output:
        save_json(output, args.output)
        print(f"Certificates saved to: {args.output}", file=sys.stderr)
    else:
        print_json(output)
    return 0


def cmd_verify(args) -> int:
    """Verify an IntegrityCertificate offline."""
    from .keys import PublishedKeySet
    from .verifier import CertificateFormatError, verify_certificate

    key_set = None
    if not args.public_key:
        key_set = PublishedKeySet.from_dict(config.load_published_keys(args.keys))

    try:
        result = verify_certificate(
            load_json(args.certificate),
            public_key=args.public_key,
            key_set=key_set,
            expected_root=args.root,
        )
    except CertificateFormatError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print_json(result.to_dict())
    return 0 if result.valid else 1


def cmd_demo(args) -> int:
    """Run a demonstration of the attestation pipeline."""
    from .chain import verify_chain_sequence
    from .commitment import InputCommitmentData
    from .hashing import sha256_hex
    from .signing import SigningService
    from .verifier import verify_certificate
    from .writer import AttestationRequest, ChainWriterRegistry, CheckpointAttestor

    print("=" * 60)
    print("AIP Attestation Demonstration")
    print("=" * 60)

    service = SigningService()
    key_pair = service.generate_key_pair()
    attestor = CheckpointAttestor(service)
    registry = ChainWriterRegistry()

    inputs = InputCommitmentData(
        card={"card_id": "ac-demo", "values": ["honesty", "transparency"]},
        conscience_values=[{"type": "BOUNDARY", "content": "Never exfiltrate credentials"}],
        model_version="demo-analysis-model",
        prompt_template_version="1.0.0",
    )

    print(f"\nSigning key: {key_pair.key_id}")

    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    records = []
    with registry.acquire("agent-demo") as writer:
        for i, verdict in enumerate(["clear", "clear", "review_needed"]):
            timestamp = (base + timedelta(minutes=i)).strftime('%Y-%m-%dT%H:%M:%S.000Z')
            record = attestor.attest(writer, AttestationRequest(
                checkpoint_id=f"ic-demo-{i:03d}",
                verdict=verdict,
                thinking_block_hash=sha256_hex(f"thinking block {i}"),
                timestamp=timestamp,
                inputs=inputs,
                session_id="sess-demo",
            ))
            records.append(record)
            print(f"  [{i}] {record.checkpoint.checkpoint_id} {verdict:<14} "
                  f"chain={record.checkpoint.chain_hash[:16]}...")
        checkpoints = writer.checkpoints
        state = writer.tree_state()

    print("\n" + "-" * 60)
    print("Chain verification")
    print("-" * 60)
    chain_result = verify_chain_sequence(checkpoints)
    print(chain_result.details)
    print(f"Merkle root: {state.root} (depth {state.depth}, {state.leaf_count} leaves)")

    print("\n" + "-" * 60)
    print("Certificate verification")
    print("-" * 60)
    # The latest certificate is the one whose proof targets the current root
    certificate = records[-1].certificate.to_dict()
    result = verify_certificate(certificate, public_key=key_pair.verify_key, expected_root=state.root)
    print(f"{certificate['certificate_id']}: {'VALID' if result.valid else 'INVALID'}")

    print("\n" + "-" * 60)
    print("Tampered certificate (verdict changed)")
    print("-" * 60)
    certificate["claims"]["verdict"] = "boundary_violation"
    tampered = verify_certificate(certificate, public_key=key_pair.verify_key)
    print(f"{certificate['certificate_id']}: {'VALID' if tampered.valid else 'INVALID'}")
    for name, check in tampered.checks.items():
        if check is not None and not check["valid"]:
            print(f"  Failed: {name}")

    print("\n" + "=" * 60)
    print("Demonstration complete.")
    print("=" * 60)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="aipattest",
        description="AIP integrity attestation CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  aipattest demo                               Run demonstration
  aipattest keygen -o signing_key.json -p published_keys.json
  aipattest commit -f inputs.json
  aipattest attest -f requests.json -c chain.json
  aipattest chain-verify -f chain.json
  aipattest merkle-proof -f leaves.json -i 3
  aipattest verify -c certificate.json -k published_keys.json
        """
    )
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="Log level")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # keygen
    keygen_parser = subparsers.add_parser("keygen", help="Generate signing key pair")
    keygen_parser.add_argument("-o", "--output", help="Output file for the signing key")
    keygen_parser.add_argument("-p", "--published", help="Output file for the published key set")
    keygen_parser.add_argument("-k", "--key-id", help="Key identifier")

    # commit
    commit_parser = subparsers.add_parser("commit", help="Compute input commitment")
    commit_parser.add_argument("-f", "--file", required=True, help="Analysis inputs JSON file")

    # chain-verify
    chain_parser = subparsers.add_parser("chain-verify", help="Verify a checkpoint chain")
    chain_parser.add_argument("-f", "--file", required=True, help="Chain JSON file")

    # merkle-root
    root_parser = subparsers.add_parser("merkle-root", help="Compute Merkle tree state")
    root_parser.add_argument("-f", "--file", required=True, help="Leaf hashes JSON file")

    # merkle-proof
    proof_parser = subparsers.add_parser("merkle-proof", help="Generate inclusion proof")
    proof_parser.add_argument("-f", "--file", required=True, help="Leaf hashes JSON file")
    proof_parser.add_argument("-i", "--index", required=True, type=int, help="Leaf index")

    # attest
    attest_parser = subparsers.add_parser("attest", help="Attest checkpoints with the configured signer")
    attest_parser.add_argument("-f", "--file", required=True, help="Attestation requests JSON file")
    attest_parser.add_argument("-c", "--chain", help="Chain JSON file to extend and update")
    attest_parser.add_argument("-o", "--output", help="Output file for the issued certificates")
    attest_parser.add_argument("--base-url", help="Base URL for verification endpoints")

    # verify
    verify_parser = subparsers.add_parser("verify", help="Verify an integrity certificate")
    verify_parser.add_argument("-c", "--certificate", required=True, help="Certificate JSON file")
    verify_parser.add_argument("-p", "--public-key", help="Signer public key (hex)")
    verify_parser.add_argument("-k", "--keys", help="Published key set JSON file")
    verify_parser.add_argument("-r", "--root", help="Published Merkle root to check against")

    # demo
    subparsers.add_parser("demo", help="Run demonstration")

    args = parser.parse_args(argv)
    level = "DEBUG" if config.is_debug() else args.log_level
    configure_logging(level=level, json_format=config.LOG_JSON)
    set_request_id()

    commands = {
        "keygen": cmd_keygen,
        "commit": cmd_commit,
        "chain-verify": cmd_chain_verify,
        "merkle-root": cmd_merkle_root,
        "merkle-proof": cmd_merkle_proof,
        "attest": cmd_attest,
        "verify": cmd_verify,
        "demo": cmd_demo,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 2
    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
