"""Tests for resilience patterns (CircuitBreaker, ExponentialBackoff)."""

import random

from registry_express.core.resilience import CircuitBreaker, ExponentialBackoff


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# ═══════════════════════════════════════════
# ExponentialBackoff Tests
# ═══════════════════════════════════════════


class TestExponentialBackoff:
    def test_should_retry_within_limit(self):
        backoff = ExponentialBackoff(max_retries=3)
        assert backoff.should_retry(0) is True
        assert backoff.should_retry(2) is True

    def test_should_not_retry_at_limit(self):
        backoff = ExponentialBackoff(max_retries=3)
        assert backoff.should_retry(3) is False

    def test_delay_within_jitter_band(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=60.0, rng=random.Random(7))
        for attempt, base in enumerate([1, 2, 4, 8, 16]):
            delay = backoff.calculate_delay(attempt)
            assert base * 0.75 <= delay <= base * 1.25

    def test_delay_capped_at_max(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=10.0)
        assert backoff.calculate_delay(100) <= 10.0 * 1.25

    def test_seeded_rng_is_reproducible(self):
        a = ExponentialBackoff(rng=random.Random(42))
        b = ExponentialBackoff(rng=random.Random(42))
        assert [a.calculate_delay(i) for i in range(4)] == [b.calculate_delay(i) for i in range(4)]


# ═══════════════════════════════════════════
# CircuitBreaker Tests
# ═══════════════════════════════════════════


class TestCircuitBreaker:
    def test_initially_closed(self):
        cb = CircuitBreaker(failure_threshold=3)
        assert cb.is_open("acme/registry") is False

    def test_opens_after_threshold(self):
        cb = CircuitBreaker(failure_threshold=3)
        cb.record_failure("acme/registry")
        cb.record_failure("acme/registry")
        assert cb.is_open("acme/registry") is False  # 2 < 3
        cb.record_failure("acme/registry")
        assert cb.is_open("acme/registry") is True

    def test_success_closes_circuit(self):
        cb = CircuitBreaker(failure_threshold=2)
        cb.record_failure("acme/registry")
        cb.record_failure("acme/registry")
        cb.record_success("acme/registry")
        assert cb.failures["acme/registry"] == 0
        assert cb.is_open("acme/registry") is False

    def test_keys_independent(self):
        cb = CircuitBreaker(failure_threshold=1)
        cb.record_failure("acme/registry")
        assert cb.is_open("acme/registry") is True
        assert cb.is_open("other/registry") is False

    def test_timeout_resets_circuit(self):
        clock = FakeClock()
        cb = CircuitBreaker(failure_threshold=2, timeout=60.0, clock=clock)
        cb.record_failure("acme/registry")
        cb.record_failure("acme/registry")
        clock.now += 30
        assert cb.is_open("acme/registry") is True
        clock.now += 31
        assert cb.is_open("acme/registry") is False
        assert cb.failures["acme/registry"] == 0
