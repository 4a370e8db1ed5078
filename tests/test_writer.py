"""Single-writer registry and attestation pipeline tests."""

import threading
import time
import unittest

from pydantic import ValidationError

from aipattest.chain import verify_chain_sequence
from aipattest.commitment import compute_input_commitment
from aipattest.hashing import sha256_hex
from aipattest.merkle import compute_merkle_root, verify_inclusion_proof
from aipattest.signing import SigningService, verify_checkpoint_signature
from aipattest.verifier import verify_certificate
from aipattest.writer import (
    AttestationRequest,
    ChainWriterRegistry,
    CheckpointAttestor,
    WriterBusyError,
    WriterClosedError,
    leaf_hash_for_checkpoint,
)

from tests.factories import attest_chain, build_valid_chain, make_inputs, timestamp_for


def _append(writer, i: int):
    return writer.append(
        checkpoint_id=f"ic-{i:04d}",
        verdict="clear",
        thinking_block_hash=sha256_hex(f"thinking-{i}"),
        input_commitment=sha256_hex(f"commitment-{i}"),
        timestamp=timestamp_for(i),
    )


class TestChainWriterRegistry(unittest.TestCase):

    def setUp(self):
        self.registry = ChainWriterRegistry()

    def test_second_acquire_is_refused(self):
        writer = self.registry.acquire("agent-1")
        with self.assertRaises(WriterBusyError) as ctx:
            self.registry.acquire("agent-1")
        self.assertEqual(ctx.exception.agent_id, "agent-1")
        writer.release()
        self.registry.acquire("agent-1").release()

    def test_agents_are_independent(self):
        a = self.registry.acquire("agent-a")
        b = self.registry.acquire("agent-b")
        self.assertTrue(self.registry.is_held("agent-a"))
        self.assertTrue(self.registry.is_held("agent-b"))
        a.release()
        b.release()
        self.assertFalse(self.registry.is_held("agent-a"))

    def test_context_manager_releases(self):
        with self.registry.acquire("agent-1") as writer:
            self.assertTrue(self.registry.is_held("agent-1"))
        self.assertTrue(writer.closed)
        self.assertFalse(self.registry.is_held("agent-1"))

    def test_context_manager_releases_on_error(self):
        with self.assertRaises(RuntimeError):
            with self.registry.acquire("agent-1"):
                raise RuntimeError("boom")
        self.assertFalse(self.registry.is_held("agent-1"))

    def test_release_is_idempotent(self):
        writer = self.registry.acquire("agent-1")
        writer.release()
        second = self.registry.acquire("agent-1")
        writer.release()
        self.assertTrue(self.registry.is_held("agent-1"))
        second.release()

    def test_released_writer_cannot_append(self):
        writer = self.registry.acquire("agent-1")
        writer.release()
        with self.assertRaises(WriterClosedError):
            _append(writer, 0)

    def test_wait_for_release(self):
        writer = self.registry.acquire("agent-1")
        timer = threading.Timer(0.05, writer.release)
        timer.start()
        try:
            second = self.registry.acquire("agent-1", timeout=5)
        finally:
            timer.join()
        self.assertFalse(second.closed)
        second.release()

    def test_wait_times_out(self):
        writer = self.registry.acquire("agent-1")
        start = time.monotonic()
        with self.assertRaises(WriterBusyError):
            self.registry.acquire("agent-1", timeout=0.05)
        self.assertGreaterEqual(time.monotonic() - start, 0.04)
        writer.release()

    def test_mismatched_leaves_rejected_without_holding(self):
        chain = build_valid_chain(3)
        with self.assertRaises(ValueError):
            self.registry.acquire("agent-1", checkpoints=chain, leaf_hashes=[sha256_hex("x")])
        self.assertFalse(self.registry.is_held("agent-1"))


class TestChainWriter(unittest.TestCase):

    def setUp(self):
        self.registry = ChainWriterRegistry()

    def test_appends_form_valid_chain(self):
        with self.registry.acquire("agent-1") as writer:
            first = _append(writer, 0)
            second = _append(writer, 1)
            self.assertIsNone(first.prev_chain_hash)
            self.assertEqual(second.prev_chain_hash, first.chain_hash)
            self.assertEqual(writer.tip, second)
            self.assertEqual(len(writer), 2)
            self.assertEqual(writer.leaf_hashes, [leaf_hash_for_checkpoint(first), leaf_hash_for_checkpoint(second)])
        self.assertTrue(verify_chain_sequence(writer.checkpoints).valid)

    def test_resume_existing_chain(self):
        stored = build_valid_chain(4)
        with self.registry.acquire("agent-1", checkpoints=stored) as writer:
            self.assertEqual(writer.tip, stored[-1])
            new = _append(writer, 4)
            self.assertEqual(new.prev_chain_hash, stored[-1].chain_hash)
            state = writer.tree_state()
        result = verify_chain_sequence(writer.checkpoints)
        self.assertTrue(result.valid)
        self.assertEqual(result.links_verified, 5)
        self.assertEqual(state.leaf_count, 5)
        self.assertEqual(len(stored), 4)

    def test_snapshots_are_copies(self):
        with self.registry.acquire("agent-1") as writer:
            _append(writer, 0)
            writer.checkpoints.clear()
            writer.leaf_hashes.clear()
            self.assertEqual(len(writer), 1)
            self.assertEqual(len(writer.leaf_hashes), 1)

    def test_proofs_track_growing_tree(self):
        with self.registry.acquire("agent-1") as writer:
            for i in range(6):
                _append(writer, i)
            leaves = writer.leaf_hashes
            root = compute_merkle_root(leaves)
            self.assertEqual(writer.tree_state().root, root)
            for i in range(6):
                self.assertTrue(verify_inclusion_proof(writer.proof_for(i), leaves[i], root))

    def test_loader_reads_after_hold_is_taken(self):
        store = {"agent-1": []}
        registry = ChainWriterRegistry(loader=lambda agent_id: (store[agent_id], ()))

        def worker(i):
            with registry.acquire("agent-1", timeout=10) as writer:
                _append(writer, i)
                store["agent-1"] = writer.checkpoints

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        result = verify_chain_sequence(store["agent-1"])
        self.assertTrue(result.valid, result.details)
        self.assertEqual(result.links_verified, 8)


class TestCheckpointAttestor(unittest.TestCase):

    def test_pipeline_outputs_are_consistent(self):
        service, records, state = attest_chain(3)
        public_key = service.get_public_key(service.active_key_id)

        for position, record in enumerate(records):
            with self.subTest(position=position):
                self.assertEqual(record.position, position)
                self.assertEqual(record.checkpoint.input_commitment, compute_input_commitment(make_inputs()))
                self.assertTrue(verify_checkpoint_signature(record.signature, record.signed_payload, public_key))
                self.assertEqual(record.tree_state.leaf_count, position + 1)
                self.assertTrue(verify_inclusion_proof(record.proof, record.leaf_hash, record.tree_state.root))

                cert = record.certificate
                self.assertEqual(cert.proofs.chain.position, position)
                self.assertEqual(cert.proofs.chain.chain_hash, record.checkpoint.chain_hash)
                self.assertEqual(cert.proofs.signature.signed_payload, record.signed_payload)
                self.assertEqual(cert.subject.agent_id, "agent-test")
                self.assertEqual(cert.subject.card_id, "ac-test-001")
                self.assertEqual(cert.verification.keys_url, "https://verify.example.test/v1/keys")

        self.assertEqual(records[-1].tree_state.root, state.root)
        self.assertTrue(verify_chain_sequence([r.checkpoint for r in records]).valid)

    def test_key_provider_signer(self):
        service = SigningService()
        kp = service.generate_key_pair(key_id="key-provider")

        class Provider:
            def sign_checkpoint_payload(self, payload):
                return service.sign(payload)

        # Any KeyProvider implementation works; SigningService is accepted directly too
        attestor = CheckpointAttestor(Provider())
        registry = ChainWriterRegistry()
        with registry.acquire("agent-9") as writer:
            record = attestor.attest(writer, AttestationRequest(
                checkpoint_id="ic-0000",
                verdict="clear",
                thinking_block_hash=sha256_hex("t"),
                timestamp=timestamp_for(0),
                inputs=make_inputs(),
            ))
        self.assertEqual(record.key_id, "key-provider")
        self.assertTrue(verify_certificate(record.certificate, public_key=kp.verify_key).valid)

    def test_issued_certificate_cannot_be_mutated(self):
        service, records, _ = attest_chain(3)
        cert = records[2].certificate
        public_key = service.get_public_key(service.active_key_id)

        with self.assertRaises(ValidationError):
            cert.claims.verdict = "boundary_violation"
        with self.assertRaises(ValidationError):
            cert.proofs.chain.chain_hash = "0" * 64
        with self.assertRaises(ValidationError):
            cert.proofs.merkle.leaf_index = 0
        with self.assertRaises(ValidationError):
            cert.subject.timestamp = timestamp_for(99)
        with self.assertRaises(AttributeError):
            cert.claims.concerns.append(None)

        self.assertEqual(cert.claims.verdict, "review_needed")
        self.assertTrue(verify_certificate(cert, public_key=public_key).valid)

    def test_request_from_dict(self):
        inputs = make_inputs()
        request = AttestationRequest.from_dict({
            "checkpoint_id": "ic-0000",
            "verdict": "clear",
            "thinking_block_hash": sha256_hex("t"),
            "timestamp": timestamp_for(0),
            "inputs": {
                "card": inputs.card,
                "conscience_values": inputs.conscience_values,
                "model_version": inputs.model_version,
                "prompt_template_version": inputs.prompt_template_version,
            },
            "confidence": 0.5,
        })
        self.assertEqual(request.inputs.card, inputs.card)
        self.assertEqual(request.inputs.window_context, [])
        self.assertEqual(request.confidence, 0.5)
        self.assertEqual(request.concerns, [])

        with self.assertRaises(ValueError):
            AttestationRequest.from_dict({"checkpoint_id": "ic-0000"})

    def test_attest_on_released_writer(self):
        registry = ChainWriterRegistry()
        writer = registry.acquire("agent-1")
        writer.release()
        service = SigningService()
        service.generate_key_pair()
        with self.assertRaises(WriterClosedError):
            CheckpointAttestor(service).attest(writer, AttestationRequest(
                checkpoint_id="ic-0000",
                verdict="clear",
                thinking_block_hash=sha256_hex("t"),
                timestamp=timestamp_for(0),
                inputs=make_inputs(),
            ))


if __name__ == "__main__":
    unittest.main()
