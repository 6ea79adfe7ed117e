"""Unit tests for password hashing and token digests."""

import unittest
from unittest.mock import patch

from app.core import security
from app.core.security import (
    HASH_SIZE,
    SALT_SIZE,
    InvalidInputError,
    PasswordHasher,
    generate_reset_token,
    hash_token,
)
from tests.support import FAST_ITERATIONS


class TestPasswordHasher(unittest.TestCase):
    def setUp(self) -> None:
        self.hasher = PasswordHasher(iterations=FAST_ITERATIONS)

    def test_verify_accepts_original_and_rejects_altered_password(self) -> None:
        for password in ["Secret123!", "", "pässwörd", "x" * 128]:
            password_hash, salt = self.hasher.hash(password)
            self.assertTrue(self.hasher.verify(password, password_hash, salt))
            self.assertFalse(self.hasher.verify(password + "x", password_hash, salt))

    def test_lone_surrogate_password_is_hashable(self) -> None:
        password_hash, salt = self.hasher.hash("\ud800abc")
        self.assertTrue(self.hasher.verify("\ud800abc", password_hash, salt))
        self.assertFalse(self.hasher.verify("\udc00abc", password_hash, salt))
        self.assertFalse(self.hasher.verify("\ud800", password_hash, salt))

    def test_hash_and_salt_sizes(self) -> None:
        password_hash, salt = self.hasher.hash("Secret123!")
        self.assertEqual(len(password_hash), HASH_SIZE)
        self.assertEqual(len(salt), SALT_SIZE)

    def test_same_password_yields_distinct_pairs(self) -> None:
        pairs = {self.hasher.hash("Secret123!") for _ in range(10)}
        self.assertEqual(len(pairs), 10)

    def test_verify_with_wrong_salt_fails(self) -> None:
        password_hash, _ = self.hasher.hash("Secret123!")
        _, other_salt = self.hasher.hash("Secret123!")
        self.assertFalse(self.hasher.verify("Secret123!", password_hash, other_salt))

    def test_missing_inputs_raise(self) -> None:
        password_hash, salt = self.hasher.hash("Secret123!")
        with self.assertRaises(InvalidInputError):
            self.hasher.hash(None)
        with self.assertRaises(InvalidInputError):
            self.hasher.verify(None, password_hash, salt)
        with self.assertRaises(InvalidInputError):
            self.hasher.verify("Secret123!", None, salt)
        with self.assertRaises(InvalidInputError):
            self.hasher.verify("Secret123!", password_hash, None)

    def test_iterations_must_be_positive(self) -> None:
        with self.assertRaises(ValueError):
            PasswordHasher(iterations=0)

    def test_default_iteration_count(self) -> None:
        self.assertEqual(PasswordHasher().iterations, 100_000)

    def test_dummy_verify_performs_a_derivation(self) -> None:
        with patch.object(security.hashlib, "pbkdf2_hmac", wraps=security.hashlib.pbkdf2_hmac) as derive:
            self.hasher.dummy_verify("whatever")
        derive.assert_called_once()
        self.assertEqual(derive.call_args.args[3], FAST_ITERATIONS)


class TestTokenDigests(unittest.TestCase):
    def test_hash_token_is_stable_sha256_hex(self) -> None:
        digest = hash_token("abc")
        self.assertEqual(
            digest, "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        )
        self.assertEqual(hash_token("abc"), digest)

    def test_hash_token_accepts_lone_surrogates(self) -> None:
        self.assertEqual(len(hash_token("\ud800")), 64)
        self.assertNotEqual(hash_token("\ud800"), hash_token("\udc00"))

    def test_reset_tokens_are_unique_and_url_safe(self) -> None:
        tokens = {generate_reset_token() for _ in range(20)}
        self.assertEqual(len(tokens), 20)
        for token in tokens:
            self.assertRegex(token, r"^[A-Za-z0-9_-]+$")
            self.assertGreaterEqual(len(token), 64)
