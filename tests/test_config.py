"""Unit tests for environment configuration."""

import os
import sys
from datetime import timedelta

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "worker"))

from fakes import make_config
from hpoll.config import ConfigError


class TestDefaults:
    def test_defaults(self):
        config = make_config()
        assert config.poll_interval == timedelta(minutes=60)
        assert config.battery_poll_interval == timedelta(hours=84)
        assert config.data_retention == timedelta(hours=168)
        assert config.token_refresh_check_interval == timedelta(hours=24)
        assert config.token_refresh_threshold == timedelta(hours=48)
        assert config.token_refresh_max_retries == 3
        assert config.health_failure_threshold == 3
        assert config.health_max_silence == timedelta(hours=6)
        assert config.email_send_times_utc == ["08:00"]
        assert config.email_error_retry_delay == timedelta(minutes=5)
        assert config.battery_alert_threshold == 30
        assert config.http_timeout_seconds == 30

    def test_db_path_under_data_path(self):
        config = make_config(HPOLL_DATA_PATH="/srv/hpoll")
        assert config.db_path == os.path.join("/srv/hpoll", "hpoll.db")
        assert config.customers_file == os.path.join("/srv/hpoll", "customers.json")


class TestOverrides:
    def test_from_env(self):
        config = make_config(POLL_INTERVAL_MINUTES="15", EMAIL_SEND_TIMES_UTC="06:00, 18:30",
                             TOKEN_REFRESH_THRESHOLD_HOURS="12.5")
        assert config.poll_interval == timedelta(minutes=15)
        assert config.email_send_times_utc == ["06:00", "18:30"]
        assert config.token_refresh_threshold == timedelta(hours=12.5)


class TestValidation:
    @pytest.mark.parametrize("env,value", [
        ("POLL_INTERVAL_MINUTES", "0"),
        ("POLL_INTERVAL_MINUTES", "abc"),
        ("HPOLL_WEB_PORT", "70000"),
        ("TOKEN_REFRESH_MAX_RETRIES", "11"),
        ("HEALTH_MAX_SILENCE_HOURS", "-1"),
        ("BATTERY_ALERT_THRESHOLD", "101"),
        ("EMAIL_ERROR_RETRY_DELAY_MINUTES", "soon"),
    ])
    def test_invalid_numbers(self, env, value):
        with pytest.raises(ConfigError, match=env):
            make_config(**{env: value})

    @pytest.mark.parametrize("value", ["", "8am", "24:00", "08:00,9:75"])
    def test_invalid_send_times(self, value):
        with pytest.raises(ConfigError, match="EMAIL_SEND_TIMES_UTC"):
            make_config(EMAIL_SEND_TIMES_UTC=value)
