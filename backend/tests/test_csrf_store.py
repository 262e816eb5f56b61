"""
Gatehouse Backend: CSRF Token Store Unit Tests
==============================================

What:  Tests for the CSRF pair lifecycle (issue, validate, expire, invalidate).
How:   Store driven by a FakeClock so expiry is deterministic.

What we test:
    ✅ Valid after generate, any number of times
    ✅ Cross-pair tokens and missing values rejected
    ✅ Expiry removes the entry on first use
    ✅ invalidate is idempotent; sweep and size bound evict
    ✅ Concurrent generate/validate/invalidate keep the map consistent
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from gatehouse.services.csrf_store import CsrfTokenStore


@pytest.fixture
def store(clock):
    return CsrfTokenStore(ttl_seconds=600, max_entries=100, clock=clock)


class TestGenerate:
    def test_pair_values_are_64_hex_chars(self, store):
        pair = store.generate()
        for value in (pair.token, pair.cookie_key):
            assert len(value) == 64
            int(value, 16)

    def test_pairs_are_unique(self, store):
        first, second = store.generate(), store.generate()
        assert first.token != second.token
        assert first.cookie_key != second.cookie_key
        assert len(store) == 2

    def test_generate_evicts_expired_entries(self, store, clock):
        store.generate()
        clock.advance(600)
        store.generate()
        assert len(store) == 1

    def test_full_store_evicts_soonest_expiring(self, clock):
        store = CsrfTokenStore(ttl_seconds=600, max_entries=2, clock=clock)
        oldest = store.generate()
        clock.advance(1)
        middle = store.generate()
        clock.advance(1)
        newest = store.generate()

        assert len(store) == 2
        assert store.validate(oldest.cookie_key, oldest.token) is False
        assert store.validate(middle.cookie_key, middle.token) is True
        assert store.validate(newest.cookie_key, newest.token) is True


class TestValidate:
    def test_valid_pair_accepted_repeatedly(self, store):
        pair = store.generate()
        assert store.validate(pair.cookie_key, pair.token) is True
        assert store.validate(pair.cookie_key, pair.token) is True

    def test_token_from_another_pair_rejected(self, store):
        first, second = store.generate(), store.generate()
        assert store.validate(first.cookie_key, second.token) is False

    @pytest.mark.parametrize("cookie_key, token", [(None, "t"), ("k", None), ("", "t"), ("k", "")])
    def test_missing_values_rejected(self, store, cookie_key, token):
        assert store.validate(cookie_key, token) is False

    def test_unknown_cookie_key_rejected(self, store):
        pair = store.generate()
        assert store.validate("0" * 64, pair.token) is False

    @pytest.mark.parametrize("token", ["tokén", "café", "\u00ff" * 64])
    def test_non_ascii_token_rejected(self, store, token):
        pair = store.generate()
        assert store.validate(pair.cookie_key, token) is False
        assert store.validate(pair.cookie_key, pair.token) is True

    def test_valid_just_before_expiry(self, store, clock):
        pair = store.generate()
        clock.advance(599)
        assert store.validate(pair.cookie_key, pair.token) is True

    def test_expired_pair_rejected_and_removed(self, store, clock):
        pair = store.generate()
        clock.advance(600)
        assert store.validate(pair.cookie_key, pair.token) is False
        assert len(store) == 0


class TestInvalidateAndSweep:
    def test_invalidated_pair_rejected(self, store):
        pair = store.generate()
        store.invalidate(pair.cookie_key)
        assert store.validate(pair.cookie_key, pair.token) is False

    def test_invalidate_is_idempotent(self, store):
        pair = store.generate()
        store.invalidate(pair.cookie_key)
        store.invalidate(pair.cookie_key)
        store.invalidate(None)
        store.invalidate("never-issued")
        assert len(store) == 0

    def test_invalidate_leaves_other_pairs(self, store):
        first, second = store.generate(), store.generate()
        store.invalidate(first.cookie_key)
        assert store.validate(second.cookie_key, second.token) is True

    def test_sweep_removes_only_expired(self, store, clock):
        store.generate()
        clock.advance(300)
        fresh = store.generate()
        clock.advance(300)

        assert store.sweep() == 1
        assert len(store) == 1
        assert store.validate(fresh.cookie_key, fresh.token) is True


class TestConcurrentAccess:
    """Handlers run in the threadpool; the map must stay consistent under contention."""

    WORKERS = 16

    def test_concurrent_generate_then_invalidate(self, clock):
        store = CsrfTokenStore(ttl_seconds=600, max_entries=1000, clock=clock)
        barrier = threading.Barrier(self.WORKERS)

        def issue_batch(_):
            barrier.wait()
            return [store.generate() for _ in range(25)]

        with ThreadPoolExecutor(max_workers=self.WORKERS) as pool:
            pairs = [pair for batch in pool.map(issue_batch, range(self.WORKERS)) for pair in batch]

        assert len(pairs) == self.WORKERS * 25
        assert len({pair.cookie_key for pair in pairs}) == len(pairs)
        assert len(store) == len(pairs)

        with ThreadPoolExecutor(max_workers=self.WORKERS) as pool:
            list(pool.map(lambda pair: store.invalidate(pair.cookie_key), pairs))

        assert len(store) == 0

    def test_validate_racing_invalidate_never_raises(self, store):
        pair = store.generate()
        barrier = threading.Barrier(self.WORKERS)

        def validate_or_invalidate(i):
            barrier.wait()
            if i % 4 == 0:
                store.invalidate(pair.cookie_key)
                return None
            return store.validate(pair.cookie_key, pair.token)

        with ThreadPoolExecutor(max_workers=self.WORKERS) as pool:
            results = list(pool.map(validate_or_invalidate, range(self.WORKERS)))

        assert all(result in (True, False, None) for result in results)
        assert store.validate(pair.cookie_key, pair.token) is False
        assert len(store) == 0

    def test_size_bound_holds_under_contention(self, clock):
        store = CsrfTokenStore(ttl_seconds=600, max_entries=10, clock=clock)
        barrier = threading.Barrier(self.WORKERS)

        def issue_batch(_):
            barrier.wait()
            for _ in range(10):
                store.generate()

        with ThreadPoolExecutor(max_workers=self.WORKERS) as pool:
            list(pool.map(issue_batch, range(self.WORKERS)))

        assert len(store) == 10
