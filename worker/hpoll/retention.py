"""Deletes readings and poll logs older than the retention horizon."""

import logging
from datetime import datetime, timedelta
from typing import Callable

from .models import utcnow
from .store import Store

logger = logging.getLogger(__name__)

BATCH_SIZE = 1000


class RetentionSweeper:
    def __init__(self, store: Store, retention: timedelta,
                 clock: Callable[[], datetime] = utcnow,
                 batch_size: int = BATCH_SIZE):
        self._store = store
        self._retention = retention
        self._clock = clock
        self._batch_size = batch_size

    def sweep(self, now: datetime | None = None) -> tuple[int, int]:
        """Delete rows with timestamp < now - retention.

        Returns (readings_deleted, logs_deleted). Never raises: storage
        errors are logged and reported as (0, 0).
        """
        cutoff = (now or self._clock()) - self._retention
        try:
            readings = self._delete_batched(
                lambda db: db.delete_readings_older_than(cutoff, self._batch_size))
            logs = self._delete_batched(
                lambda db: db.delete_polling_logs_older_than(cutoff, self._batch_size))
        except Exception:
            logger.warning("Data retention cleanup failed", exc_info=True)
            return 0, 0

        if readings or logs:
            logger.info(
                "Data retention cleanup: deleted %d readings and %d polling logs "
                "older than %s", readings, logs, cutoff.isoformat())
        return readings, logs

    def _delete_batched(self, delete_batch) -> int:
        total = 0
        while True:
            with self._store.session() as db:
                deleted = delete_batch(db)
            total += deleted
            if deleted < self._batch_size:
                return total
