"""Unit tests for auth/otp.py and cache/store.py -- verification codes with TTL.

Covers:
- generate_code() returns six zero-padded digits
- OTPStore keys codes by purpose and email, overwrite replaces the old code
- consume_code deletes only a matching code, and only one concurrent caller wins
- MemoryStore expires keys after their TTL (controlled clock)
"""

import threading
from concurrent.futures import ThreadPoolExecutor

from auth.otp import ACTIVATION, ACTIVATION_TTL, TWO_FACTOR, TWO_FACTOR_TTL, OTPStore, generate_code
from cache.store import MemoryStore


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestGenerateCode:
    def test_six_digits(self):
        for _ in range(200):
            code = generate_code()
            assert len(code) == 6
            assert code.isdigit()

    def test_codes_vary(self):
        assert len({generate_code() for _ in range(50)}) > 1


class TestOTPStore:
    def test_set_get_delete(self):
        otp = OTPStore(MemoryStore())
        otp.set_code(ACTIVATION, "ann@example.com", "012345", ACTIVATION_TTL)
        assert otp.get_code(ACTIVATION, "ann@example.com") == "012345"
        otp.delete_code(ACTIVATION, "ann@example.com")
        assert otp.get_code(ACTIVATION, "ann@example.com") is None

    def test_purposes_are_separate(self):
        otp = OTPStore(MemoryStore())
        otp.set_code(ACTIVATION, "ann@example.com", "111111", ACTIVATION_TTL)
        otp.set_code(TWO_FACTOR, "ann@example.com", "222222", TWO_FACTOR_TTL)
        assert otp.get_code(ACTIVATION, "ann@example.com") == "111111"
        assert otp.get_code(TWO_FACTOR, "ann@example.com") == "222222"

    def test_overwrite_replaces_code(self):
        otp = OTPStore(MemoryStore())
        otp.set_code(TWO_FACTOR, "ann@example.com", "111111", TWO_FACTOR_TTL)
        otp.set_code(TWO_FACTOR, "ann@example.com", "222222", TWO_FACTOR_TTL)
        assert otp.get_code(TWO_FACTOR, "ann@example.com") == "222222"

    def test_key_format(self):
        kv = MemoryStore()
        OTPStore(kv).set_code(TWO_FACTOR, "ann@example.com", "123456", TWO_FACTOR_TTL)
        assert kv.get("2fa:ann@example.com") == "123456"


class TestConsumeCode:
    def test_matching_code_is_consumed_once(self):
        otp = OTPStore(MemoryStore())
        otp.set_code(TWO_FACTOR, "ann@example.com", "123456", TWO_FACTOR_TTL)
        assert otp.consume_code(TWO_FACTOR, "ann@example.com", "123456") is True
        assert otp.consume_code(TWO_FACTOR, "ann@example.com", "123456") is False
        assert otp.get_code(TWO_FACTOR, "ann@example.com") is None

    def test_wrong_code_leaves_stored_code(self):
        otp = OTPStore(MemoryStore())
        otp.set_code(TWO_FACTOR, "ann@example.com", "123456", TWO_FACTOR_TTL)
        assert otp.consume_code(TWO_FACTOR, "ann@example.com", "654321") is False
        assert otp.get_code(TWO_FACTOR, "ann@example.com") == "123456"

    def test_expired_code_is_not_consumed(self):
        clock = FakeClock()
        otp = OTPStore(MemoryStore(clock=clock))
        otp.set_code(ACTIVATION, "ann@example.com", "123456", ACTIVATION_TTL)
        clock.now += ACTIVATION_TTL
        assert otp.consume_code(ACTIVATION, "ann@example.com", "123456") is False

    def test_one_winner_under_contention(self):
        otp = OTPStore(MemoryStore())
        otp.set_code(TWO_FACTOR, "ann@example.com", "123456", TWO_FACTOR_TTL)
        start = threading.Barrier(8)

        def attempt(_):
            start.wait()
            return otp.consume_code(TWO_FACTOR, "ann@example.com", "123456")

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, range(8)))
        assert results.count(True) == 1


class TestMemoryStoreExpiry:
    def test_expires_after_ttl(self):
        clock = FakeClock()
        kv = MemoryStore(clock=clock)
        kv.set("k", "v", ttl=300)
        clock.now += 299
        assert kv.get("k") == "v"
        clock.now += 1
        assert kv.get("k") is None

    def test_ttl_reports_remaining(self):
        clock = FakeClock()
        kv = MemoryStore(clock=clock)
        kv.set("k", "v", ttl=600)
        clock.now += 100
        assert kv.ttl("k") == 500
        assert kv.ttl("missing") is None

    def test_overwrite_restarts_ttl(self):
        clock = FakeClock()
        kv = MemoryStore(clock=clock)
        kv.set("k", "old", ttl=300)
        clock.now += 200
        kv.set("k", "new", ttl=300)
        clock.now += 200
        assert kv.get("k") == "new"

    def test_delete_missing_is_noop(self):
        kv = MemoryStore()
        kv.delete("never-set")
        assert kv.get("never-set") is None
