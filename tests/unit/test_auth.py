"""Test passcode hashing and the default authorizer."""

import asyncio
import time

import pytest
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request

from drink_tracker.api.auth import (
    PASSCODE_HEADER,
    PasscodeAuthorizer,
    hash_passcode,
    verify_passcode,
)
from drink_tracker.core.errors import ValidationError

# bcrypt's minimum cost keeps the suite fast.
FAST = 4


def _request(headers=None):
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw})


class TestHashing:
    def test_verify_roundtrip(self):
        hashed = hash_passcode("party-time", rounds=FAST)
        assert hashed.startswith("$2b$04$")
        assert verify_passcode("party-time", hashed)
        assert not verify_passcode("party-tim", hashed)

    def test_salted(self):
        assert hash_passcode("party-time", rounds=FAST) != hash_passcode(
            "party-time", rounds=FAST,
        )

    def test_too_short(self):
        with pytest.raises(ValidationError):
            hash_passcode("abc")

    def test_too_long(self):
        with pytest.raises(ValidationError):
            hash_passcode("x" * 73, rounds=FAST)

    def test_overlong_attempt_never_verifies(self):
        hashed = hash_passcode("x" * 72, rounds=FAST)
        assert not verify_passcode("x" * 73, hashed)

    @pytest.mark.parametrize(
        "hashed",
        ["", "garbage", "pbkdf2_sha256$notanumber$salt$abc", "$2b$99$abc"],
    )
    def test_malformed_hash_never_verifies(self, hashed):
        assert not verify_passcode("anything", hashed)


class TestPasscodeAuthorizer:
    def test_everyone_authorized_before_setup(self, store):
        assert PasscodeAuthorizer(store)(_request())

    def test_header_checked_after_setup(self, store):
        store.set_passcode_hash(hash_passcode("party-time", rounds=FAST))
        authorize = PasscodeAuthorizer(store)
        assert not authorize(_request())
        assert not authorize(_request({PASSCODE_HEADER: "wrong"}))
        assert authorize(_request({PASSCODE_HEADER: "party-time"}))

    def test_malformed_stored_hash_denies_instead_of_raising(self, store):
        store.set_passcode_hash("pbkdf2_sha256$notanumber$salt$abc")
        authorize = PasscodeAuthorizer(store)
        assert not authorize(_request({PASSCODE_HEADER: "party-time"}))

    @pytest.mark.asyncio
    async def test_threadpool_checks_leave_event_loop_responsive(self, store):
        store.set_passcode_hash(hash_passcode("party-time", rounds=12))
        authorize = PasscodeAuthorizer(store)
        gaps: list[float] = []
        done = asyncio.Event()

        async def ticker():
            last = time.perf_counter()
            while not done.is_set():
                await asyncio.sleep(0.001)
                now = time.perf_counter()
                gaps.append(now - last)
                last = now

        task = asyncio.create_task(ticker())
        results = [
            await run_in_threadpool(authorize, _request({PASSCODE_HEADER: "wrong"}))
            for _ in range(3)
        ]
        done.set()
        await task

        assert results == [False, False, False]
        assert gaps
        assert max(gaps) < 0.15
