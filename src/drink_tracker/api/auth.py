"""Authorization seam between the core and the session layer.

The core only ever asks one question, "is this caller authorized?",
through an ``Authorizer`` callable.  ``PasscodeAuthorizer`` is the
default: it checks an ``X-Passcode`` header against the write-once bcrypt
hash kept in the store's settings.  Until a passcode is set, everyone is
authorized (first-run setup on a private LAN).

bcrypt is deliberately slow, so async handlers call the authorizer and
``hash_passcode`` through the threadpool.
"""

from __future__ import annotations

from collections.abc import Callable

import bcrypt
from fastapi import Request

from drink_tracker.core.errors import ValidationError
from drink_tracker.store.event_store import EventStore

Authorizer = Callable[[Request], bool]

PASSCODE_HEADER = "X-Passcode"
MIN_PASSCODE_LENGTH = 4
# bcrypt only looks at the first 72 bytes of its input.
MAX_PASSCODE_BYTES = 72
DEFAULT_ROUNDS = 12


def hash_passcode(passcode: str, *, rounds: int = DEFAULT_ROUNDS) -> str:
    """Hash a plaintext passcode with bcrypt."""
    if len(passcode) < MIN_PASSCODE_LENGTH:
        raise ValidationError(
            f"passcode must be at least {MIN_PASSCODE_LENGTH} characters"
        )
    raw = passcode.encode("utf-8")
    if len(raw) > MAX_PASSCODE_BYTES:
        raise ValidationError(f"passcode must be at most {MAX_PASSCODE_BYTES} bytes")
    return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_passcode(passcode: str, hashed: str) -> bool:
    """Check a plaintext passcode against a stored hash.

    A malformed stored hash (hand-edited or foreign artifact) never
    verifies.
    """
    raw = passcode.encode("utf-8")
    if len(raw) > MAX_PASSCODE_BYTES:
        return False
    try:
        return bcrypt.checkpw(raw, hashed.encode("utf-8"))
    except ValueError:
        return False


class PasscodeAuthorizer:
    """Authorize requests carrying the correct ``X-Passcode`` header."""

    def __init__(self, store: EventStore) -> None:
        self._store = store

    def __call__(self, request: Request) -> bool:
        hashed = self._store.settings.passcode_hash
        if hashed is None:
            return True
        supplied = request.headers.get(PASSCODE_HEADER)
        if not supplied:
            return False
        return verify_passcode(supplied, hashed)
