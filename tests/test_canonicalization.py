"""
Canonical JSON and hashing tests.

Every hash and signature in the system depends on these encodings being
byte-stable, so they are pinned to literal expected strings.
"""

import unittest

from aipattest.canonicalization import canonicalize, canonicalize_str, format_number
from aipattest.hashing import canonical_hash, digests_equal, is_digest, sha256_hex


class TestCanonicalize(unittest.TestCase):

    def test_keys_sorted_at_every_level(self):
        obj = {"b": 1, "a": {"d": [{"z": 1, "y": 2}], "c": None}}
        self.assertEqual(
            canonicalize_str(obj),
            '{"a":{"c":null,"d":[{"y":2,"z":1}]},"b":1}'
        )

    def test_insertion_order_irrelevant(self):
        a = {"card_id": "ac-1", "values": ["x", "y"]}
        b = {"values": ["x", "y"], "card_id": "ac-1"}
        self.assertEqual(canonicalize(a), canonicalize(b))

    def test_array_order_preserved(self):
        self.assertNotEqual(canonicalize_str([1, 2]), canonicalize_str([2, 1]))

    def test_unicode_emitted_as_utf8(self):
        self.assertEqual(canonicalize_str({"k": "café"}), '{"k":"café"}')
        self.assertEqual(canonicalize({"k": "café"}), '{"k":"café"}'.encode('utf-8'))

    def test_plain_string_is_json_quoted(self):
        self.assertEqual(canonicalize_str("1.2.0"), '"1.2.0"')

    def test_integral_float_written_as_int(self):
        self.assertEqual(canonicalize_str({"confidence": 1.0}), '{"confidence":1}')
        self.assertEqual(canonicalize_str({"confidence": 0.5}), '{"confidence":0.5}')

    def test_numbers_match_javascript_stringify(self):
        cases = {
            1e21: "1e+21",
            1.5e300: "1.5e+300",
            1e20: "100000000000000000000",
            1e-7: "1e-7",
            1.5e-7: "1.5e-7",
            1e-6: "0.000001",
            123.456: "123.456",
            -0.25: "-0.25",
            -0.0: "0",
            0.1 + 0.2: "0.30000000000000004",
        }
        for value, expected in cases.items():
            with self.subTest(value=value):
                self.assertEqual(format_number(value), expected)
        self.assertEqual(canonicalize_str({"x": 1e21}), '{"x":1e+21}')

    def test_large_int_written_exactly(self):
        self.assertEqual(canonicalize_str([10 ** 21]), "[1000000000000000000000]")

    def test_control_characters_escaped(self):
        self.assertEqual(canonicalize_str("a\nb\u0001\"\\"), '"a\\nb\\u0001\\"\\\\"')

    def test_booleans_not_coerced(self):
        self.assertEqual(canonicalize_str([True, False, 0, 1]), '[true,false,0,1]')

    def test_tuple_encoded_as_array(self):
        self.assertEqual(canonicalize_str(("a", "b")), '["a","b"]')

    def test_non_finite_rejected(self):
        with self.assertRaises(ValueError):
            canonicalize({"x": float("nan")})
        with self.assertRaises(ValueError):
            canonicalize([float("inf")])

    def test_non_string_keys_rejected(self):
        with self.assertRaises(ValueError):
            canonicalize({1: "a"})

    def test_unsupported_type_rejected(self):
        with self.assertRaises(ValueError):
            canonicalize({"x": object()})


class TestHashing(unittest.TestCase):

    def test_sha256_known_vectors(self):
        self.assertEqual(
            sha256_hex(""),
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )
        self.assertEqual(
            sha256_hex("abc"),
            "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        )

    def test_str_and_bytes_agree(self):
        self.assertEqual(sha256_hex("genesis"), sha256_hex(b"genesis"))

    def test_canonical_hash_ignores_key_order(self):
        self.assertEqual(canonical_hash({"a": 1, "b": 2}), canonical_hash({"b": 2, "a": 1}))

    def test_is_digest(self):
        self.assertTrue(is_digest(sha256_hex("x")))
        self.assertFalse(is_digest(sha256_hex("x").upper()))
        self.assertFalse(is_digest("sha256:" + sha256_hex("x")))
        self.assertFalse(is_digest(sha256_hex("x")[:63]))
        self.assertFalse(is_digest(None))
        self.assertFalse(is_digest(""))

    def test_digests_equal(self):
        d = sha256_hex("x")
        self.assertTrue(digests_equal(d, str(d)))
        self.assertFalse(digests_equal(d, sha256_hex("y")))
        self.assertFalse(digests_equal(d, None))


if __name__ == "__main__":
    unittest.main()
