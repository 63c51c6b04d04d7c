# hpoll Worker
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""OAuth token refresh loop.

Every check interval, hubs whose access token expires within the refresh
threshold get a refresh attempt, retried with exponential backoff (2, 4,
8... seconds). A hub that exhausts its retries is marked needs_reauth and
left alone until someone re-authorises it by hand.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from .config import Config
from .hue_model import TokenResponse
from .interfaces import BridgeClient
from .models import HUB_NEEDS_REAUTH, Hub, utcnow
from .service import BackgroundService
from .store import Store

logger = logging.getLogger(__name__)


@dataclass
class RefreshOutcome:
    """Result of a single refresh attempt."""
    attempt: int
    success: bool
    token: TokenResponse | None = None
    error: str | None = None


class TokenRefreshService(BackgroundService):
    name = "token_refresh"

    def __init__(self, store: Store, client: BridgeClient, config: Config,
                 clock: Callable[[], datetime] = utcnow):
        super().__init__(store, clock)
        self._client = client
        self._check_interval: timedelta = config.token_refresh_check_interval
        self._threshold: timedelta = config.token_refresh_threshold
        self._max_retries: int = config.token_refresh_max_retries

    async def run(self):
        self._running = True
        logger.info(
            "Token refresh service started. Check interval: %.1fh, "
            "refresh threshold: %.1fh before expiry",
            self._check_interval.total_seconds() / 3600,
            self._threshold.total_seconds() / 3600,
        )
        try:
            while not self.stopping:
                try:
                    await self.refresh_expiring_tokens()
                except Exception:
                    logger.exception("Unhandled error in token refresh cycle")

                if not await self._sleep(self._check_interval.total_seconds()):
                    break
        except asyncio.CancelledError:
            logger.info("Token refresh service cancelled")
        finally:
            self._running = False
        logger.info("Token refresh service stopped")

    async def refresh_expiring_tokens(self) -> dict[str, bool]:
        """Refresh tokens near expiry. Returns {bridge_id: refreshed} for attempted hubs."""
        with self.store.session() as db:
            hubs = db.get_active_hubs()

        logger.info("Checking tokens for %d active hubs", len(hubs))

        results = {}
        for hub in hubs:
            if self.stopping:
                break
            time_until_expiry = hub.token_expires_at - self.now()
            if time_until_expiry > self._threshold:
                logger.debug("[%s] Token still valid for %.0fh, skipping refresh",
                             hub.bridge_id, time_until_expiry.total_seconds() / 3600)
                continue

            logger.info("[%s] Token expires in %.1fh (threshold: %.1fh), refreshing",
                        hub.bridge_id, time_until_expiry.total_seconds() / 3600,
                        self._threshold.total_seconds() / 3600)
            try:
                results[hub.bridge_id] = await self.refresh_hub(hub)
            except Exception:
                logger.exception("[%s] Failed to store token refresh result", hub.bridge_id)
                results[hub.bridge_id] = False

        self._record_runtime({"runtime.last_token_check": self.now().isoformat()})
        return results

    async def refresh_hub(self, hub: Hub) -> bool:
        """Attempt a refresh up to max_retries times; mark needs_reauth on exhaustion."""
        for attempt in range(1, self._max_retries + 1):
            outcome = await self._attempt(hub, attempt)
            if outcome.success:
                self._apply_token(hub, outcome.token)
                return True

            if attempt < self._max_retries:
                if not await self._sleep(2 ** attempt):
                    logger.info("[%s] Stop requested during refresh backoff", hub.bridge_id)
                    return False

        logger.error(
            "[%s] Token refresh failed after %d retries. Marking as needs_reauth",
            hub.bridge_id, self._max_retries)
        with self.store.session() as db:
            marked = db.mark_needs_reauth(hub.id)
            current = db.get_hub(hub.id)
        if marked:
            hub.status = HUB_NEEDS_REAUTH
        elif current is not None:
            hub.status = current.status
            logger.info("[%s] Status changed to %s during refresh, leaving it",
                        hub.bridge_id, current.status)
        return False

    async def _attempt(self, hub: Hub, attempt: int) -> RefreshOutcome:
        try:
            token = await self._client.refresh_access_token(hub.refresh_token)
        except Exception as e:
            logger.warning("[%s] Token refresh attempt %d/%d failed: %s",
                           hub.bridge_id, attempt, self._max_retries, e)
            return RefreshOutcome(attempt=attempt, success=False, error=str(e))
        return RefreshOutcome(attempt=attempt, success=True, token=token)

    def _apply_token(self, hub: Hub, token: TokenResponse):
        now = self.now()
        hub.access_token = token.access_token
        # Bridges may omit refresh token rotation
        if token.refresh_token:
            hub.refresh_token = token.refresh_token
        hub.token_expires_at = now + timedelta(seconds=token.expires_in)
        hub.updated_at = now
        with self.store.session() as db:
            db.save_tokens(hub)
        logger.info("[%s] Token refreshed. Expires at %s",
                    hub.bridge_id, hub.token_expires_at.isoformat())
