"""Refresh-token codec — the selector/verifier pattern.

Learn: Storing only a bcrypt hash of a refresh token means finding "which
session is this?" would take one slow comparison per stored session.
Instead the token has two random halves generated together:

    <selector>.<verifier>
     32 hex     64 hex

The selector is a plaintext, uniquely indexed lookup key (not secret).
The verifier is the secret; only its bcrypt hash is stored. A refresh is
then one index lookup plus one bcrypt comparison.

hash_for_blacklist() is different on purpose: a fast, deterministic
SHA-256 used to key access-token blacklist rows by value.
"""

import hashlib
import re
import secrets
from dataclasses import dataclass
from typing import Optional

SELECTOR_BYTES = 16
VERIFIER_BYTES = 32
SEPARATOR = "."

_SELECTOR_RE = re.compile(r"[0-9a-fA-F]{%d}" % (SELECTOR_BYTES * 2))
_VERIFIER_RE = re.compile(r"[0-9a-fA-F]{%d}" % (VERIFIER_BYTES * 2))


@dataclass(frozen=True)
class TokenPair:
    selector: str
    verifier: str
    full_token: str


@dataclass(frozen=True)
class ParsedToken:
    selector: str
    verifier: str


def generate_token_pair() -> TokenPair:
    """Generate a fresh selector/verifier pair from the OS CSPRNG."""
    selector = secrets.token_hex(SELECTOR_BYTES)
    verifier = secrets.token_hex(VERIFIER_BYTES)
    return TokenPair(
        selector=selector,
        verifier=verifier,
        full_token=f"{selector}{SEPARATOR}{verifier}",
    )


def parse_token(full_token: Optional[str]) -> Optional[ParsedToken]:
    """Split a refresh token into its halves.

    Returns None for anything malformed: missing or extra separators,
    wrong lengths, non-hex characters. Hex is accepted in either case and
    folded to lower case, the form generate_token_pair() emits and the
    store compares against.
    """
    if not isinstance(full_token, str):
        return None
    parts = full_token.split(SEPARATOR)
    if len(parts) != 2:
        return None
    selector, verifier = parts
    if not _SELECTOR_RE.fullmatch(selector) or not _VERIFIER_RE.fullmatch(verifier):
        return None
    return ParsedToken(selector=selector.lower(), verifier=verifier.lower())


def hash_for_blacklist(token: str) -> str:
    """Stable SHA-256 hex digest of a token, for blacklist keys."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
