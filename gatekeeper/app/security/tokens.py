# gatekeeper/app/security/tokens.py
"""
Random identifiers, human-enterable codes and one-way digests.

Key points:
- All randomness comes from the `secrets` module (CSPRNG)
- Per-character selection uses secrets.choice (uniform, no modulo bias)
- Only digests are ever stored; plaintext values stay with the caller
"""
import hashlib
import secrets

CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
DIGIT_ALPHABET = "0123456789"
PASSWORD_ALPHABET = (
    "abcdefghijklmnopqrstuvwxyz"
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "0123456789"
    "!@#$%^&*()"
)

# Request IDs carry 128 bits of entropy
REQUEST_ID_BYTES = 16
CONTINUATION_TOKEN_BYTES = 24
COMPLETE_TOKEN_BYTES = 32


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.

    Returns:
        True if strings match, False otherwise
    """
    if len(a) != len(b):
        secrets.compare_digest(a, a)
        return False
    return secrets.compare_digest(a, b)


class TokenGenerator:
    """Source of identifiers, codes, passwords and digests."""

    def random_id(self, byte_length: int = REQUEST_ID_BYTES) -> str:
        return secrets.token_hex(byte_length)

    def random_code(self, length: int, alphabet: str = CODE_ALPHABET) -> str:
        return "".join(secrets.choice(alphabet) for _ in range(length))

    def random_digits(self, length: int) -> str:
        return self.random_code(length, DIGIT_ALPHABET)

    def random_password(self, length: int = 12) -> str:
        return self.random_code(length, PASSWORD_ALPHABET)

    def digest(self, plaintext: str) -> str:
        """SHA-256 hex digest used for every stored comparison."""
        return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()

    def matches(self, plaintext: str, stored_digest: str) -> bool:
        return constant_time_compare(self.digest(plaintext), stored_digest)
