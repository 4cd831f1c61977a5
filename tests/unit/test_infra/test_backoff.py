"""Tests for the retry backoff calculation."""

from __future__ import annotations

from datetime import timedelta

import pytest

from cloud_outbox.infra.events.outbox.backoff import retry_delay


@pytest.mark.parametrize(
    ("failures", "expected"),
    [(1, 1.0), (2, 2.0), (3, 4.0), (4, 8.0)],
)
def test_delay_doubles_per_failure(failures, expected):
    assert retry_delay(failures, base_delay=1.0, max_delay=300.0) == timedelta(seconds=expected)


def test_delay_is_capped():
    assert retry_delay(20, base_delay=1.0, max_delay=300.0) == timedelta(seconds=300)


def test_huge_failure_count_does_not_overflow():
    assert retry_delay(10_000, base_delay=2.0, max_delay=60.0) == timedelta(seconds=60)


def test_zero_failures_uses_base_delay():
    assert retry_delay(0, base_delay=5.0, max_delay=60.0) == timedelta(seconds=5)


def test_zero_base_delay_retries_immediately():
    assert retry_delay(3, base_delay=0.0, max_delay=0.0) == timedelta(0)


def test_jitter_stays_within_bounds():
    delays = {
        retry_delay(3, base_delay=1.0, max_delay=300.0, jitter=0.5).total_seconds()
        for _ in range(50)
    }

    assert all(2.0 <= d <= 6.0 for d in delays)
    assert len(delays) > 1


def test_jitter_never_exceeds_cap():
    for _ in range(50):
        delay = retry_delay(30, base_delay=1.0, max_delay=10.0, jitter=1.0)
        assert delay <= timedelta(seconds=10)
