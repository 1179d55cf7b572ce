"""Tests for the session descriptor cache."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import make_descriptor
from photo_match.errors import ExtractionFailed, NotFound


class CountingFetcher:
    """Fetcher that records how often it runs and can be slowed down."""

    def __init__(self, delay=0.0, error=None):
        self.calls = 0
        self.delay = delay
        self.error = error
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return make_descriptor()


class TestGetOrCompute:

    def test_computes_once(self, cache):
        fetcher = CountingFetcher()
        first = cache.get_or_compute("a", fetcher)
        second = cache.get_or_compute("a", fetcher)
        assert first is second
        assert fetcher.calls == 1

    def test_concurrent_requests_extract_once(self, cache):
        fetcher = CountingFetcher(delay=0.05)
        barrier = threading.Barrier(16)

        def request():
            barrier.wait()
            return cache.get_or_compute("same", fetcher)

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(lambda _: request(), range(16)))

        assert fetcher.calls == 1
        assert all(r is results[0] for r in results)

    def test_unrelated_keys_do_not_serialize(self, cache):
        slow = CountingFetcher(delay=0.5)
        fast = CountingFetcher()
        started = threading.Event()

        def slow_request():
            started.set()
            cache.get_or_compute("slow", slow)

        worker = threading.Thread(target=slow_request)
        worker.start()
        started.wait()
        time.sleep(0.05)

        t0 = time.monotonic()
        cache.get_or_compute("fast", fast)
        assert time.monotonic() - t0 < 0.4
        worker.join()

    def test_failure_is_cached(self, cache):
        fetcher = CountingFetcher(error=NotFound("gone", "not in store"))
        with pytest.raises(NotFound):
            cache.get_or_compute("gone", fetcher)
        with pytest.raises(NotFound):
            cache.get_or_compute("gone", fetcher)
        assert fetcher.calls == 1

    def test_unexpected_error_wrapped(self, cache):
        fetcher = CountingFetcher(error=RuntimeError("decoder crashed"))
        with pytest.raises(ExtractionFailed, match="decoder crashed"):
            cache.get_or_compute("bad", fetcher)

    def test_non_descriptor_result_fails(self, cache):
        with pytest.raises(ExtractionFailed):
            cache.get_or_compute("weird", lambda: None)

    def test_waiters_see_cached_failure(self, cache):
        fetcher = CountingFetcher(delay=0.05, error=ExtractionFailed("x", "corrupt"))

        def request():
            try:
                cache.get_or_compute("x", fetcher)
            except ExtractionFailed:
                return "failed"
            return "ok"

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(lambda _: request(), range(8)))

        assert outcomes == ["failed"] * 8
        assert fetcher.calls == 1


class TestInvalidation:

    def test_recheck_recomputes(self, cache):
        fetcher = CountingFetcher()
        first = cache.get_or_compute("a", fetcher)
        second = cache.recheck("a", fetcher)
        assert fetcher.calls == 2
        assert first is not second

    def test_recheck_clears_failure(self, cache):
        failing = CountingFetcher(error=ExtractionFailed("a", "corrupt"))
        with pytest.raises(ExtractionFailed):
            cache.get_or_compute("a", failing)
        assert cache.recheck("a", CountingFetcher()) is not None

    def test_invalidate_leaves_in_flight_entry(self, cache):
        fetcher = CountingFetcher(delay=0.3)
        worker = threading.Thread(target=cache.get_or_compute, args=("a", fetcher))
        worker.start()
        time.sleep(0.05)
        assert cache.invalidate("a") is False
        worker.join()
        assert cache.invalidate("a") is True
        assert "a" not in cache

    def test_peek(self, cache):
        assert cache.peek("a") is None
        desc = cache.get_or_compute("a", CountingFetcher())
        assert cache.peek("a") is desc

    def test_clear_and_len(self, cache):
        cache.get_or_compute("a", CountingFetcher())
        cache.get_or_compute("b", CountingFetcher())
        assert len(cache) == 2
        cache.clear()
        assert len(cache) == 0


class TestStats:

    def test_counts(self, cache):
        fetcher = CountingFetcher()
        cache.get_or_compute("a", fetcher)
        cache.get_or_compute("a", fetcher)
        with pytest.raises(NotFound):
            cache.get_or_compute("b", CountingFetcher(error=NotFound("b")))
        stats = cache.stats()
        assert stats["misses"] == 2
        assert stats["hits"] == 1
        assert stats["computations"] == 2
        assert stats["failures"] == 1
        assert stats["entries"] == 2
