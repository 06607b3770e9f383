"""Tests del rate limiter de ventana deslizante."""

import logging

from sense_ingest.udp.rate_limiter import SlidingWindowRateLimiter


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


# =============================================================================
# ADMISIÓN
# =============================================================================

class TestSlidingWindow:

    def test_admits_up_to_max_then_rejects(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter("t", 3, clock=clock)

        assert [limiter.try_acquire() for _ in range(5)] == [True, True, True, False, False]
        assert limiter.current_rate == 3

    def test_rejected_attempts_not_recorded(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter("t", 2, clock=clock)
        limiter.try_acquire()
        limiter.try_acquire()

        for _ in range(10):
            limiter.try_acquire()

        assert limiter.current_rate == 2

    def test_window_slides(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter("t", 2, clock=clock)
        limiter.try_acquire()
        clock.advance(30_000)
        limiter.try_acquire()

        assert limiter.try_acquire() is False

        # El primero sale de la ventana, el segundo no
        clock.advance(30_001)
        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is False

    def test_disabled_always_admits(self):
        limiter = SlidingWindowRateLimiter("t", 1, enabled=False, clock=FakeClock())

        assert all(limiter.try_acquire() for _ in range(50))
        assert limiter.current_rate == 0

    def test_reset(self):
        limiter = SlidingWindowRateLimiter("t", 1, clock=FakeClock())
        limiter.try_acquire()
        limiter.reset()

        assert limiter.try_acquire() is True


# =============================================================================
# LOG DE VIOLACIONES
# =============================================================================

class TestViolationLog:

    def test_violation_warning_throttled(self, caplog):
        caplog.set_level(logging.WARNING)
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(
            "t", 1, clock=clock, violation_log_throttle_seconds=60,
        )
        limiter.try_acquire()

        for _ in range(5):
            limiter.try_acquire()
        warnings = [r for r in caplog.records if "Rate limit exceeded" in r.getMessage()]
        assert len(warnings) == 1

        clock.advance(61_000)
        limiter.try_acquire()  # admitido: la ventana ya está vacía
        limiter.try_acquire()
        warnings = [r for r in caplog.records if "Rate limit exceeded" in r.getMessage()]
        assert len(warnings) == 2
