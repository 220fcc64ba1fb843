"""
Password hashing for the Limbo BBS server

Passwords are stretched with Scrypt and a random per-user salt. The stored
hash records its own cost parameters so they can be raised later without
invalidating existing accounts.

Hash format (ASCII bytes):
    scrypt$<n>$<r>$<p>$<salt hex>$<key hex>
"""

import os

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from cryptography.hazmat.backends import default_backend


HASH_SCHEME = "scrypt"
SALT_BYTES = 16
KEY_BYTES = 32


class CryptoError(Exception):
    """Base exception for cryptographic errors"""
    pass


class HashError(CryptoError):
    """Raised when a password cannot be hashed"""
    pass


class PasswordHasher:
    """
    Hashes and verifies user passwords.
    """

    def __init__(self, min_length: int = 3, n: int = 2**14, r: int = 8, p: int = 1):
        """
        Args:
            min_length: Shortest password accepted by hash_password
            n: Scrypt CPU/memory cost parameter
            r: Scrypt block size
            p: Scrypt parallelization parameter
        """
        self.backend = default_backend()
        self.min_length = min_length
        self.n = n
        self.r = r
        self.p = p

    def _kdf(self, salt: bytes, n: int, r: int, p: int) -> Scrypt:
        return Scrypt(
            salt=salt,
            length=KEY_BYTES,
            n=n,
            r=r,
            p=p,
            backend=self.backend
        )

    def hash_password(self, password: str) -> bytes:
        """
        Hash a password with a fresh salt.

        Args:
            password: Plaintext password

        Returns:
            bytes: Encoded hash including parameters and salt

        Raises:
            HashError: If the password is too short or hashing fails
        """
        if password is None or len(password) < self.min_length:
            raise HashError(f"Password must be at least {self.min_length} characters")

        try:
            salt = os.urandom(SALT_BYTES)
            key = self._kdf(salt, self.n, self.r, self.p).derive(password.encode('utf-8'))
        except Exception as e:
            raise HashError(f"Failed to hash password: {e}") from e

        encoded = f"{HASH_SCHEME}${self.n}${self.r}${self.p}${salt.hex()}${key.hex()}"
        return encoded.encode('ascii')

    def verify_password(self, password_hash: bytes, password: str) -> bool:
        """
        Check a password against a stored hash.

        Args:
            password_hash: Hash produced by hash_password
            password: Plaintext password to check

        Returns:
            bool: True if the password matches, False otherwise
        """
        try:
            scheme, n, r, p, salt_hex, key_hex = password_hash.decode('ascii').split('$')
            if scheme != HASH_SCHEME:
                return False
            kdf = self._kdf(bytes.fromhex(salt_hex), int(n), int(r), int(p))
            kdf.verify(password.encode('utf-8'), bytes.fromhex(key_hex))
            return True
        except InvalidKey:
            return False
        except (ValueError, TypeError, AttributeError, UnicodeError):
            return False
