# hpoll Worker
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Configuration from environment variables with validation.

Only values consumed by the background loops live here. Customer and hub
records are seeded separately from the customers file (see seed.py).
"""

import logging
import os
import re
from datetime import timedelta

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


class ConfigError(Exception):
    """Raised when configuration is invalid."""


class Config:
    def __init__(self):
        self.data_path = os.environ.get("HPOLL_DATA_PATH", "/data")
        self.db_path = os.environ.get(
            "HPOLL_DB_PATH", os.path.join(self.data_path, "hpoll.db"))
        self.customers_file = os.environ.get(
            "HPOLL_CUSTOMERS_FILE", os.path.join(self.data_path, "customers.json"))
        self.log_level = os.environ.get("HPOLL_LOG_LEVEL", "INFO")
        self.product_name = os.environ.get("HPOLL_PRODUCT_NAME", "hpoll")
        self.web_port = self._int("HPOLL_WEB_PORT", "8080", 1, 65535)

        # Polling
        self.poll_interval_minutes = self._int("POLL_INTERVAL_MINUTES", "60", 1, 1440)
        self.battery_poll_interval_hours = self._int(
            "BATTERY_POLL_INTERVAL_HOURS", "84", 1, 8760)
        self.data_retention_hours = self._int("DATA_RETENTION_HOURS", "168", 1, 87600)
        self.http_timeout_seconds = self._int("HTTP_TIMEOUT_SECONDS", "30", 1, 300)

        # Token refresh
        self.token_refresh_check_hours = self._float(
            "TOKEN_REFRESH_CHECK_HOURS", "24", 0.01, 720)
        self.token_refresh_threshold_hours = self._float(
            "TOKEN_REFRESH_THRESHOLD_HOURS", "48", 1, 8760)
        self.token_refresh_max_retries = self._int(
            "TOKEN_REFRESH_MAX_RETRIES", "3", 1, 10)

        # Hub health
        self.health_failure_threshold = self._int(
            "HEALTH_FAILURE_THRESHOLD", "3", 1, 1000)
        self.health_max_silence_hours = self._float(
            "HEALTH_MAX_SILENCE_HOURS", "6", 0.1, 8760)

        # Digest email
        self.email_send_times_utc = self._time_list("EMAIL_SEND_TIMES_UTC", "08:00")
        self.email_error_retry_delay_minutes = self._float(
            "EMAIL_ERROR_RETRY_DELAY_MINUTES", "5", 0.1, 1440)
        self.email_from_address = os.environ.get("EMAIL_FROM_ADDRESS", "")
        self.sendgrid_api_key = os.environ.get("SENDGRID_API_KEY", "")
        self.battery_alert_threshold = self._int("BATTERY_ALERT_THRESHOLD", "30", 0, 100)

        # Hue OAuth application
        self.hue_client_id = os.environ.get("HUE_CLIENT_ID", "")
        self.hue_client_secret = os.environ.get("HUE_CLIENT_SECRET", "")

        self._log_config()

    @staticmethod
    def _int(env: str, default: str, min_val: int, max_val: int) -> int:
        raw = os.environ.get(env, default)
        try:
            val = int(raw)
        except (ValueError, TypeError):
            raise ConfigError(f"{env}={raw!r} is not a valid integer")
        if not (min_val <= val <= max_val):
            raise ConfigError(f"{env}={val} out of range [{min_val}, {max_val}]")
        return val

    @staticmethod
    def _float(env: str, default: str, min_val: float, max_val: float) -> float:
        raw = os.environ.get(env, default)
        try:
            val = float(raw)
        except (ValueError, TypeError):
            raise ConfigError(f"{env}={raw!r} is not a valid number")
        if not (min_val <= val <= max_val):
            raise ConfigError(f"{env}={val} out of range [{min_val}, {max_val}]")
        return val

    @staticmethod
    def _time_list(env: str, default: str) -> list[str]:
        raw = os.environ.get(env, default)
        times = [t.strip() for t in raw.split(",") if t.strip()]
        if not times:
            raise ConfigError(f"{env} must contain at least one HH:MM time")
        for t in times:
            if not _TIME_RE.match(t):
                raise ConfigError(f"{env} entry {t!r} is not a valid HH:MM time")
        return times

    # ------------------------------------------------------------------
    # Derived durations
    # ------------------------------------------------------------------

    @property
    def poll_interval(self) -> timedelta:
        return timedelta(minutes=self.poll_interval_minutes)

    @property
    def battery_poll_interval(self) -> timedelta:
        return timedelta(hours=self.battery_poll_interval_hours)

    @property
    def data_retention(self) -> timedelta:
        return timedelta(hours=self.data_retention_hours)

    @property
    def token_refresh_check_interval(self) -> timedelta:
        return timedelta(hours=self.token_refresh_check_hours)

    @property
    def token_refresh_threshold(self) -> timedelta:
        return timedelta(hours=self.token_refresh_threshold_hours)

    @property
    def health_max_silence(self) -> timedelta:
        return timedelta(hours=self.health_max_silence_hours)

    @property
    def email_error_retry_delay(self) -> timedelta:
        return timedelta(minutes=self.email_error_retry_delay_minutes)

    def _log_config(self):
        logger.info(
            "Config: db=%s poll=%dm battery=%dh retention=%dh token_check=%.1fh "
            "token_threshold=%.1fh retries=%d send_times=%s",
            self.db_path, self.poll_interval_minutes,
            self.battery_poll_interval_hours, self.data_retention_hours,
            self.token_refresh_check_hours, self.token_refresh_threshold_hours,
            self.token_refresh_max_retries, ",".join(self.email_send_times_utc),
        )
