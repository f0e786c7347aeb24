"""Tests for the injectable clocks."""

from datetime import UTC, date, datetime, timedelta, timezone

import pytest

from settlement_kernel.domain.clock import DeterministicClock, SystemClock

NAIROBI = timezone(timedelta(hours=3))


class TestDeterministicClock:

    def test_time_stands_still(self):
        clock = DeterministicClock(datetime(2024, 3, 14, 12, 0, tzinfo=UTC))
        assert clock.now() == clock.now()

    def test_advance(self):
        clock = DeterministicClock(datetime(2024, 3, 14, 12, 0, tzinfo=UTC))
        assert clock.advance() == datetime(2024, 3, 14, 12, 0, 1, tzinfo=UTC)
        assert clock.advance(timedelta(hours=1)) == datetime(2024, 3, 14, 13, 0, 1, tzinfo=UTC)

    def test_cannot_go_backwards(self):
        with pytest.raises(ValueError):
            DeterministicClock().advance(-1)

    def test_naive_start_rejected(self):
        with pytest.raises(ValueError):
            DeterministicClock(datetime(2024, 3, 14, 12, 0))

    def test_local_time_normalized(self):
        clock = DeterministicClock(datetime(2024, 3, 14, 15, 0, tzinfo=NAIROBI))
        assert clock.now() == datetime(2024, 3, 14, 12, 0, tzinfo=UTC)
        assert clock.now().utcoffset() == timedelta(0)

    def test_today_depends_on_zone(self):
        clock = DeterministicClock(datetime(2024, 3, 14, 22, 30, tzinfo=UTC))
        assert clock.today() == date(2024, 3, 14)
        assert clock.today(NAIROBI) == date(2024, 3, 15)


class TestSystemClock:

    def test_aware_utc(self):
        assert SystemClock().now().utcoffset() == timedelta(0)
