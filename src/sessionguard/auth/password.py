"""Password hashing utilities.

Learn: Uses bcrypt for secure password hashing. bcrypt automatically
handles salting and is resistant to rainbow table attacks. The work
factor is configurable (10 by default, ~50-100ms per hash), which is
exactly why hashing must never run on the event loop: the *_async
variants push the work onto a worker thread.

The same hasher protects refresh-token verifiers at rest.
"""

import asyncio
from functools import lru_cache

import bcrypt

DEFAULT_ROUNDS = 10

# bcrypt only looks at the first 72 bytes; newer releases raise instead of
# truncating, so we truncate explicitly.
_BCRYPT_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Hash a password with bcrypt.

    Learn: bcrypt includes a random salt automatically and produces
    hashes starting with "$2b$". Two hashes of the same password differ.
    """
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(_encode(password), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash.

    Never raises for bad input: a malformed hash is simply a mismatch.
    bcrypt.checkpw does the constant-time comparison.
    """
    try:
        return bcrypt.checkpw(_encode(password), password_hash.encode("utf-8"))
    except (ValueError, TypeError, AttributeError):
        return False


@lru_cache(maxsize=8)
def dummy_hash(rounds: int = DEFAULT_ROUNDS) -> str:
    """A throwaway hash used to spend the same time when a user doesn't exist."""
    return hash_password("sessionguard-timing-equalizer", rounds)


async def hash_password_async(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    return await asyncio.to_thread(hash_password, password, rounds)


async def verify_password_async(password: str, password_hash: str) -> bool:
    return await asyncio.to_thread(verify_password, password, password_hash)


def _verify_against_dummy(password: str, rounds: int) -> bool:
    return verify_password(password, dummy_hash(rounds))


async def equalize_timing_async(password: str, rounds: int = DEFAULT_ROUNDS) -> None:
    """Spend one bcrypt comparison for an account that doesn't exist."""
    await asyncio.to_thread(_verify_against_dummy, password, rounds)
