import re

from django.test import SimpleTestCase

from fulfillment.tokens import generate_token, hash_token, issue_token, token_matches


class TokenCryptoTests(SimpleTestCase):
    def test_generated_tokens_are_256_bit_hex_and_unique(self):
        tokens = {generate_token() for _ in range(50)}
        self.assertEqual(len(tokens), 50)
        for token in tokens:
            self.assertRegex(token, re.compile(r"^[0-9a-f]{64}$"))

    def test_hash_is_deterministic_and_differs_from_raw(self):
        raw = generate_token()
        self.assertEqual(hash_token(raw), hash_token(raw))
        self.assertNotEqual(hash_token(raw), raw)
        self.assertEqual(len(hash_token(raw)), 64)

    def test_token_matches_only_its_own_digest(self):
        raw, digest = issue_token()
        self.assertTrue(token_matches(raw, digest))
        self.assertFalse(token_matches(generate_token(), digest))
        self.assertFalse(token_matches(digest, digest))

    def test_empty_values_never_match(self):
        _raw, digest = issue_token()
        self.assertFalse(token_matches("", digest))
        self.assertFalse(token_matches("abc", ""))
