"""Hub liveness classification from failure count and time since last success."""

from datetime import datetime, timedelta
from typing import Callable

from .models import Hub, utcnow


class HealthEvaluator:
    def __init__(self, failure_threshold: int = 3,
                 max_silence: timedelta = timedelta(hours=6),
                 clock: Callable[[], datetime] = utcnow):
        self.failure_threshold = failure_threshold
        self.max_silence = max_silence
        self._clock = clock

    def is_healthy(self, consecutive_failures: int) -> bool:
        return consecutive_failures < self.failure_threshold

    def needs_attention(self, last_success_at: datetime | None,
                        consecutive_failures: int,
                        now: datetime | None = None) -> bool:
        # A hub that has never succeeded is not treated as silent.
        if consecutive_failures >= self.failure_threshold:
            return True
        if last_success_at is not None:
            now = now or self._clock()
            return now - last_success_at > self.max_silence
        return False

    def evaluate(self, hub: Hub, now: datetime | None = None) -> dict:
        now = now or self._clock()
        return {
            "hub_id": hub.id,
            "bridge_id": hub.bridge_id,
            "status": hub.status,
            "consecutive_failures": hub.consecutive_failures,
            "is_healthy": self.is_healthy(hub.consecutive_failures),
            "needs_attention": self.needs_attention(
                hub.last_success_at, hub.consecutive_failures, now),
            "last_polled_at": hub.last_polled_at.isoformat() if hub.last_polled_at else None,
            "last_success_at": hub.last_success_at.isoformat() if hub.last_success_at else None,
            "token_expires_at": hub.token_expires_at.isoformat(),
        }
