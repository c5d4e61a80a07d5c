"""Tests for the clock abstractions."""

from datetime import datetime, timedelta, timezone

from kunde_kernel.domain.clock import DeterministicClock, SystemClock

T0 = datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


class TestDeterministicClock:
    def test_default_time(self):
        assert DeterministicClock().now() == datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def test_stable_until_advanced(self):
        clock = DeterministicClock(T0)
        assert clock.now() == clock.now() == T0
        clock.advance(30)
        assert clock.now() == T0 + timedelta(seconds=30)

    def test_tick(self):
        clock = DeterministicClock(T0)
        assert clock.tick() == T0 + timedelta(seconds=1)

    def test_set_time_resets_advance(self):
        clock = DeterministicClock(T0)
        clock.advance(100)
        later = datetime(2025, 1, 1, tzinfo=timezone.utc)
        clock.set_time(later)
        assert clock.now() == later

    def test_monotonic_follows_time(self):
        clock = DeterministicClock(T0)
        before = clock.monotonic()
        clock.advance(5)
        assert clock.monotonic() - before == 5


class TestSystemClock:
    def test_timezone_aware(self):
        assert SystemClock().now_utc().tzinfo is not None
