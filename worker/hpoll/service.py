# hpoll Worker
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Shared plumbing for the long-running background loops."""

import asyncio
import logging
from datetime import datetime
from typing import Callable

from .models import utcnow
from .store import Store

logger = logging.getLogger(__name__)

RUNTIME_CATEGORY = "Runtime"


class BackgroundService:
    """Base for a timed loop with a cooperative stop signal.

    Subclasses implement run(). Sleeps go through _sleep(), which returns
    False as soon as stop() is called so the loop can exit without raising.
    """

    name = "service"

    def __init__(self, store: Store, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self._clock = clock
        self._stop_event = asyncio.Event()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def stop(self):
        self._running = False
        self._stop_event.set()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def now(self) -> datetime:
        return self._clock()

    async def _sleep(self, seconds: float) -> bool:
        """Sleep up to seconds; False if the stop signal arrived first."""
        if self._stop_event.is_set():
            return False
        if seconds <= 0:
            return True
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False

    def _record_runtime(self, entries: dict[str, str]):
        """Best-effort runtime metrics for the status API."""
        try:
            with self.store.session() as db:
                db.set_system_info(RUNTIME_CATEGORY, entries)
        except Exception:
            logger.warning("[%s] Failed to update runtime info", self.name, exc_info=True)
