"""Password hashing (PBKDF2-HMAC-SHA-256) and credential input limits."""

import hashlib
import hmac
import secrets

# PBKDF2 parameters; changing any of them invalidates every stored hash.
SALT_SIZE = 128  # bytes
HASH_SIZE = 256  # bytes
ITERATIONS = 100_000
HASH_NAME = "sha256"

# Min/max lengths for input validation.
EMAIL_MAX_LEN = 255
USERNAME_MIN_LEN = 1
USERNAME_MAX_LEN = 100
PASSWORD_MIN_LEN = 6
PASSWORD_MAX_LEN = 128


class InvalidInputError(ValueError):
    """Raised when a hashing argument is missing."""


class PasswordHasher:
    """
    Salted PBKDF2-HMAC-SHA-256 password hashing.

    Each call to hash() draws a fresh random salt, so hashing the same password
    twice yields different (hash, salt) pairs. verify() re-derives with the
    stored salt and compares in constant time.
    """

    def __init__(self, iterations: int = ITERATIONS) -> None:
        if iterations < 1:
            raise ValueError("iterations must be positive")
        self.iterations = iterations
        self._dummy_salt = secrets.token_bytes(SALT_SIZE)
        self._dummy_hash = secrets.token_bytes(HASH_SIZE)

    def _derive(self, password: str, salt: bytes) -> bytes:
        return hashlib.pbkdf2_hmac(
            HASH_NAME,
            # surrogatepass: JSON may carry lone surrogates, which strict UTF-8 rejects.
            password.encode("utf-8", "surrogatepass"),
            salt,
            self.iterations,
            dklen=HASH_SIZE,
        )

    def hash(self, password: str) -> tuple[bytes, bytes]:
        """Return (hash, salt) for a plain-text password. Empty passwords are allowed."""
        if password is None:
            raise InvalidInputError("password is required")
        salt = secrets.token_bytes(SALT_SIZE)
        return self._derive(password, salt), salt

    def verify(self, password: str, password_hash: bytes, salt: bytes) -> bool:
        """Check a candidate password against a stored hash and salt."""
        if password is None or password_hash is None or salt is None:
            raise InvalidInputError("password, hash and salt are required")
        computed = self._derive(password, bytes(salt))
        return hmac.compare_digest(computed, bytes(password_hash))

    def dummy_verify(self, password: str) -> None:
        """Spend one derivation on a throwaway hash (unknown-account login path)."""
        self.verify(password or "", self._dummy_hash, self._dummy_salt)


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a raw refresh or reset token; only digests are stored."""
    return hashlib.sha256(token.encode("utf-8", "surrogatepass")).hexdigest()


def generate_reset_token() -> str:
    """URL-safe single-use password reset token."""
    return secrets.token_urlsafe(64)
