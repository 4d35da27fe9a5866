"""Tests for focus_buddy.config — settings validation."""

import calendar

import pytest
from pydantic import ValidationError

from focus_buddy.config import Settings


class TestSettings:
    def test_defaults(self):
        s = Settings()
        assert s.STORE_PROVIDER == "sqlite"
        assert s.WEEK_STARTS_ON == calendar.SUNDAY
        assert s.LATEST_END_TIME == "23:30"
        assert s.MAX_RECURRENCE_STEPS == 365

    def test_provider_is_normalized(self):
        assert Settings(STORE_PROVIDER=" PostgREST ").STORE_PROVIDER == "postgrest"

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValidationError):
            Settings(STORE_PROVIDER="mongodb")

    def test_week_start_by_name(self):
        assert Settings(WEEK_STARTS_ON="Monday").WEEK_STARTS_ON == calendar.MONDAY
        assert Settings(WEEK_STARTS_ON="6").WEEK_STARTS_ON == calendar.SUNDAY

    def test_week_start_out_of_range(self):
        with pytest.raises(ValidationError):
            Settings(WEEK_STARTS_ON=7)

    def test_snap_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(SNAP_MINUTES="0")

    def test_latest_end_time_format(self):
        assert Settings(LATEST_END_TIME="9:05").LATEST_END_TIME == "09:05"
        with pytest.raises(ValidationError):
            Settings(LATEST_END_TIME="25:00")

    def test_poll_interval(self):
        assert Settings().POLL_INTERVAL_SECONDS == 15.0
        assert Settings(POLL_INTERVAL_SECONDS="0").POLL_INTERVAL_SECONDS == 0
        with pytest.raises(ValidationError):
            Settings(POLL_INTERVAL_SECONDS="-1")
