"""Ed25519 signing tests."""

import base64
import re
import unittest

from aipattest.signing import (
    SIGNATURE_ALGORITHM,
    SigningService,
    generate_signing_key,
    get_public_key_from_secret,
    key_id_for_public_key,
    load_signing_key_from_hex,
    sign_checkpoint,
    verify_checkpoint_signature,
)

PAYLOAD = '{"agent_id":"agent-1","checkpoint_id":"ic-1","verdict":"clear"}'


class TestSignAndVerify(unittest.TestCase):

    def setUp(self):
        self.secret, self.public = generate_signing_key()

    def test_key_sizes(self):
        self.assertEqual(len(self.secret), 32)
        self.assertEqual(len(self.public), 32)
        self.assertEqual(get_public_key_from_secret(self.secret), self.public)

    def test_signature_is_base64_of_64_bytes(self):
        sig = sign_checkpoint(PAYLOAD, self.secret)
        self.assertEqual(len(base64.b64decode(sig)), 64)

    def test_deterministic(self):
        self.assertEqual(sign_checkpoint(PAYLOAD, self.secret), sign_checkpoint(PAYLOAD, self.secret))

    def test_verify_valid(self):
        sig = sign_checkpoint(PAYLOAD, self.secret)
        self.assertTrue(verify_checkpoint_signature(sig, PAYLOAD, self.public))

    def test_hex_key_material_accepted(self):
        sig = sign_checkpoint(PAYLOAD, self.secret.hex())
        self.assertTrue(verify_checkpoint_signature(sig, PAYLOAD, self.public.hex()))

    def test_wrong_key(self):
        sig = sign_checkpoint(PAYLOAD, self.secret)
        _, other_public = generate_signing_key()
        self.assertFalse(verify_checkpoint_signature(sig, PAYLOAD, other_public))

    def test_tampered_payload(self):
        sig = sign_checkpoint(PAYLOAD, self.secret)
        self.assertFalse(verify_checkpoint_signature(sig, PAYLOAD.replace("clear", "review_needed"), self.public))

    def test_malformed_inputs_return_false(self):
        sig = sign_checkpoint(PAYLOAD, self.secret)
        cases = {
            "not base64": ("!!!not-base64!!!", PAYLOAD, self.public),
            "short signature": (base64.b64encode(b"short").decode(), PAYLOAD, self.public),
            "short key": (sig, PAYLOAD, b"\x00" * 8),
            "non-hex key": (sig, PAYLOAD, "zz" * 32),
            "empty signature": ("", PAYLOAD, self.public),
        }
        for name, args in cases.items():
            with self.subTest(case=name):
                self.assertFalse(verify_checkpoint_signature(*args))

    def test_load_hex_rejects_garbage(self):
        with self.assertRaises(ValueError):
            load_signing_key_from_hex("not hex")

    def test_key_id_format(self):
        kid = key_id_for_public_key(self.public)
        self.assertRegex(kid, r'^key-[0-9a-f]{8}$')
        self.assertEqual(kid, "key-" + self.public.hex()[:8])


class TestSigningService(unittest.TestCase):

    def test_first_key_becomes_active(self):
        service = SigningService()
        kp = service.generate_key_pair()
        self.assertEqual(service.active_key_id, kp.key_id)
        self.assertTrue(re.match(r'^key-[0-9a-f]{8}$', kp.key_id))

    def test_sign_uses_active_key(self):
        service = SigningService()
        kp = service.generate_key_pair(key_id="key-primary")
        key_id, sig = service.sign(PAYLOAD)
        self.assertEqual(key_id, "key-primary")
        self.assertTrue(verify_checkpoint_signature(sig, PAYLOAD, kp.verify_key))
        self.assertEqual(service.get_public_key("key-primary"), kp.verify_key)

    def test_rotation(self):
        service = SigningService()
        old = service.generate_key_pair(key_id="key-old")
        new = service.generate_key_pair(key_id="key-new")
        self.assertEqual(service.active_key_id, "key-old")

        service.set_active_key("key-new")
        key_id, sig = service.sign(PAYLOAD)
        self.assertEqual(key_id, "key-new")
        self.assertTrue(verify_checkpoint_signature(sig, PAYLOAD, new.verify_key))
        self.assertFalse(old.is_active)

        published = {e["key_id"]: e for e in service.published_keys()}
        self.assertFalse(published["key-old"]["is_active"])
        self.assertTrue(published["key-new"]["is_active"])
        self.assertEqual(published["key-new"]["algorithm"], SIGNATURE_ALGORITHM)
        self.assertEqual(published["key-new"]["public_key"], new.verify_key.hex())
        self.assertTrue(published["key-new"]["created_at"].endswith("Z"))

    def test_explicit_key_for_retired_signing(self):
        service = SigningService()
        old = service.generate_key_pair(key_id="key-old")
        service.generate_key_pair(key_id="key-new")
        service.set_active_key("key-new")
        key_id, sig = service.sign(PAYLOAD, key_id="key-old")
        self.assertEqual(key_id, "key-old")
        self.assertTrue(verify_checkpoint_signature(sig, PAYLOAD, old.verify_key))

    def test_add_existing_key(self):
        secret, public = generate_signing_key()
        service = SigningService()
        kp = service.add_key(secret.hex())
        self.assertEqual(kp.verify_key, public)
        self.assertEqual(kp.key_id, key_id_for_public_key(public))

    def test_errors(self):
        service = SigningService()
        with self.assertRaises(ValueError):
            service.sign(PAYLOAD)
        with self.assertRaises(ValueError):
            service.set_active_key("missing")
        with self.assertRaises(ValueError):
            service.get_public_key("missing")


if __name__ == "__main__":
    unittest.main()
