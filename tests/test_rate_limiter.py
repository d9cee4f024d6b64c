from __future__ import annotations

from bookstore import rate_limiter
from bookstore.cache_backend import MemoryCacheBackend


def test_check_rate_limit_blocks_after_threshold(monkeypatch):
    cache = MemoryCacheBackend()
    monkeypatch.setattr(rate_limiter, "get_cache_backend", lambda: cache)

    ok1, c1 = rate_limiter.check_rate_limit("login", "reader@astewai.test", 2)
    ok2, c2 = rate_limiter.check_rate_limit("login", "reader@astewai.test", 2)
    ok3, c3 = rate_limiter.check_rate_limit("login", "reader@astewai.test", 2)

    assert ok1 is True and c1 == 1
    assert ok2 is True and c2 == 2
    assert ok3 is False and c3 == 3


def test_identities_and_buckets_are_counted_separately(monkeypatch):
    cache = MemoryCacheBackend()
    monkeypatch.setattr(rate_limiter, "get_cache_backend", lambda: cache)

    rate_limiter.check_rate_limit("login", "a@astewai.test", 1)

    assert rate_limiter.check_rate_limit("login", "b@astewai.test", 1) == (True, 1)
    assert rate_limiter.check_rate_limit("telegram", "a@astewai.test", 1) == (True, 1)


def test_zero_limit_disables_counting(monkeypatch):
    def _unused():
        raise AssertionError("cache should not be touched")

    monkeypatch.setattr(rate_limiter, "get_cache_backend", _unused)
    assert rate_limiter.check_rate_limit("login", "x", 0) == (True, 0)


def test_check_rate_limit_fails_open_when_cache_errors(monkeypatch):
    class BrokenCache:
        def incr(self, *_args, **_kwargs):
            raise RuntimeError("cache down")

    monkeypatch.setattr(rate_limiter, "get_cache_backend", lambda: BrokenCache())
    ok, count = rate_limiter.check_rate_limit("payment_submit", "user-1", 2)
    assert ok is True
    assert count == 0
