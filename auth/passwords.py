"""
auth/passwords.py -- Salted password hashing with a slow key-derivation function.

Security design decisions:
  KDF: bcrypt-pbkdf via bcrypt.kdf(). It is PBKDF2 with bcrypt's expensive
       key schedule as the PRF, so each round costs far more than an HMAC and
       the round count is the tunable work factor. Output is a fixed 64 bytes,
       hex-encoded.

  Salt: 16 bytes from the OS CSPRNG, hex-encoded (32 chars). Generated once per
       principal and stored beside the hash; the KDF consumes the hex string
       as-is so stored salts round-trip without decoding.

  Comparison: hmac.compare_digest, so verification time does not depend on
       how many leading characters match.

  Blocking: the KDF is CPU-bound. Async callers must use derive_async() /
       verify_async(), which run the derivation in the worker thread pool and
       keep the event loop free for other requests.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import hmac
import logging
import secrets

import bcrypt
from starlette.concurrency import run_in_threadpool

from auth.errors import EntropyExhausted

logger = logging.getLogger("catalog.auth")

SALT_BYTES = 16
HASH_BYTES = 64
DEFAULT_ROUNDS = 100

# bcrypt.kdf() warns below this; we log instead so low test settings stay quiet.
_MIN_RECOMMENDED_ROUNDS = 50


def generate_salt() -> str:
    """Return SALT_BYTES random bytes as a fixed-width hex string.

    Raises EntropyExhausted if the OS random source is unavailable.
    """
    try:
        return secrets.token_hex(SALT_BYTES)
    except (OSError, NotImplementedError) as exc:
        raise EntropyExhausted("OS random source unavailable") from exc


class PasswordHasher:
    """Derives and verifies salted password hashes.

    Usage:
        hasher = PasswordHasher(rounds=100)
        salt = generate_salt()
        digest = hasher.derive("secret", salt)
        hasher.verify("secret", salt, digest)  # True
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        if rounds < 1:
            raise ValueError("rounds must be a positive integer")
        if rounds < _MIN_RECOMMENDED_ROUNDS:
            logger.warning("KDF rounds=%d is below the recommended minimum of %d", rounds, _MIN_RECOMMENDED_ROUNDS)
        self.rounds = rounds

    def generate_salt(self) -> str:
        return generate_salt()

    def derive(self, secret: str, salt: str) -> str:
        """Return the hex-encoded KDF output for (secret, salt).

        Deterministic: the same pair always yields the same hash. An empty
        secret or salt is rejected by bcrypt with ValueError; callers validate
        input before reaching here.
        """
        key = bcrypt.kdf(
            password=secret.encode("utf-8"),
            salt=salt.encode("utf-8"),
            desired_key_bytes=HASH_BYTES,
            rounds=self.rounds,
            ignore_few_rounds=True,
        )
        return key.hex()

    def verify(self, secret: str, salt: str, expected_hash: str) -> bool:
        """Return True if secret hashes to expected_hash under salt.

        An empty secret still pays for one derivation so its timing matches a
        wrong password; it can never verify.
        """
        if not salt or not expected_hash:
            return False
        matches = hmac.compare_digest(self.derive(secret or "-", salt), expected_hash)
        return bool(secret) and matches

    async def derive_async(self, secret: str, salt: str) -> str:
        return await run_in_threadpool(self.derive, secret, salt)

    async def verify_async(self, secret: str, salt: str, expected_hash: str) -> bool:
        return await run_in_threadpool(self.verify, secret, salt, expected_hash)
