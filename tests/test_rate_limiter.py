"""
Unit tests for the outbound rate limiter.
"""
import logging
import threading

from immodiag.rate_limiter import RateLimiter


def make_limiter(clock, **kwargs):
    return RateLimiter(clock=clock.now, sleep=clock.sleep, **kwargs)


def admitted_times(limiter, clock, n):
    times = []
    for _ in range(n):
        limiter.admit()
        times.append(clock.now())
    return times


class TestSpacing:
    """Minimum interval between admissions."""

    def test_first_call_is_immediate(self, clock):
        """The first admission does not wait."""
        limiter = make_limiter(clock)
        assert limiter.admit() == 0.0
        assert clock.sleeps == []

    def test_consecutive_calls_are_one_second_apart(self, clock):
        """No two admissions are closer than the minimum interval."""
        limiter = make_limiter(clock)
        times = admitted_times(limiter, clock, 5)
        gaps = [b - a for a, b in zip(times, times[1:])]
        assert all(gap >= 1.0 for gap in gaps)

    def test_no_wait_when_caller_is_already_slow(self, clock):
        """Callers spaced out by themselves are never held back."""
        limiter = make_limiter(clock)
        limiter.admit()
        clock.advance(3)
        assert limiter.admit() == 0.0


class TestWindow:
    """Sliding window cap."""

    def test_ninth_call_waits_for_the_window(self, clock):
        """At most 8 admissions in any trailing 60 s window."""
        limiter = make_limiter(clock)
        times = admitted_times(limiter, clock, 12)
        for i, t in enumerate(times):
            in_window = [u for u in times[: i + 1] if u > t - 60]
            assert len(in_window) <= 8
        assert times[8] - times[0] >= 60

    def test_ten_back_to_back_calls_take_nine_seconds(self, clock):
        """Ten admissions with the default settings span at least 9 s."""
        limiter = make_limiter(clock)
        start = clock.now()
        admitted_times(limiter, clock, 10)
        assert clock.now() - start >= 9

    def test_recent_calls_prunes_old_entries(self, clock):
        """Entries older than the window drop out of the log."""
        limiter = make_limiter(clock)
        admitted_times(limiter, clock, 3)
        assert len(limiter.recent_calls()) == 3
        clock.advance(61)
        assert limiter.recent_calls() == []

    def test_custom_limits(self, clock):
        """Interval and window are configurable."""
        limiter = make_limiter(clock, min_interval=0.0, max_calls=2, window=10.0)
        times = admitted_times(limiter, clock, 3)
        assert times[1] == times[0]
        assert times[2] - times[0] >= 10


class TestThreads:
    """Admissions from several threads."""

    def test_concurrent_admissions_stay_spaced(self, clock):
        """Worker threads sharing one limiter still honour the interval."""
        limiter = make_limiter(clock, max_calls=100)

        def worker():
            for _ in range(3):
                limiter.admit()

        threads = [threading.Thread(target=worker) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stamps = limiter.recent_calls()
        assert len(stamps) == 9
        assert all(b - a >= 1.0 for a, b in zip(stamps, stamps[1:]))


class TestLogging:
    """Waits are visible in the logs."""

    def test_every_wait_is_logged(self, clock, caplog):
        """A one-second spacing wait produces a log line."""
        limiter = make_limiter(clock)
        with caplog.at_level(logging.INFO):
            limiter.admit()
            limiter.admit()
        assert [r for r in caplog.records if "holding outbound call" in r.getMessage()]

    def test_no_log_without_wait(self, clock, caplog):
        """Admissions that go straight through stay quiet."""
        limiter = make_limiter(clock)
        with caplog.at_level(logging.INFO):
            limiter.admit()
        assert not [r for r in caplog.records if "holding outbound call" in r.getMessage()]
