"""Tests for hourly speech/vision quotas."""

import pytest

from lardigital.infra.quota import WINDOW_SECONDS, HourlyQuota, QuotaExceededError


class Ticker:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestHourlyQuota:
    def test_allows_up_to_limit(self):
        quota = HourlyQuota("speech", 2, clock=Ticker())

        quota.acquire()
        quota.acquire()

        with pytest.raises(QuotaExceededError) as exc:
            quota.acquire()
        assert exc.value.name == "speech"
        assert exc.value.limit == 2

    def test_zero_limit_rejects_first_call(self):
        quota = HourlyQuota("vision", 0, clock=Ticker())

        with pytest.raises(QuotaExceededError):
            quota.acquire()

    def test_window_resets_after_an_hour(self):
        clock = Ticker()
        quota = HourlyQuota("speech", 1, clock=clock)
        quota.acquire()

        clock.now += WINDOW_SECONDS + 1

        quota.acquire()
        assert quota.remaining == 0

    def test_remaining(self):
        clock = Ticker()
        quota = HourlyQuota("vision", 3, clock=clock)
        quota.acquire()

        assert quota.remaining == 2
        clock.now += WINDOW_SECONDS + 1
        assert quota.remaining == 3
