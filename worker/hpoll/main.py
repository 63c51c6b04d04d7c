# hpoll Worker
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Entry point: Hue hub polling, token refresh and digest email worker.

Architecture
------------
WorkerManager       -- wires config, store, bridge client and the status API,
                       then runs the three background loops as independent
                       asyncio tasks.
PollingService      -- polls every active hub each interval.
TokenRefreshService -- refreshes OAuth tokens ahead of expiry.
DigestScheduler     -- sends each customer's daily summary email.
"""

__version__ = "1.0.0"

import asyncio
import logging
import signal
import sys

from .config import Config, ConfigError
from .digest import DigestScheduler
from .digest_renderer import SummaryRenderer
from .health import HealthEvaluator
from .hue_client import HueApiClient
from .mailer import create_sender
from .poller import PollingService
from .retention import RetentionSweeper
from .seed import load_customer_configs, seed_store
from .service import BackgroundService
from .store import Store
from .token_refresh import TokenRefreshService
from .web import RingBufferHandler, StatusServer

logger = logging.getLogger("hpoll_worker")

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


class WorkerManager:
    """Top-level orchestrator.

    A loop that fails never takes the others down: each runs in its own
    task and only exits when stop() is called.
    """

    def __init__(self, config: Config, log_buffer: RingBufferHandler | None = None,
                 client=None, sender=None):
        self.config = config
        self._running = False
        self._tasks: dict[str, asyncio.Task] = {}

        self.store = Store(config.db_path)
        self.client = client or HueApiClient(
            config.hue_client_id, config.hue_client_secret,
            timeout=config.http_timeout_seconds,
        )
        self.health = HealthEvaluator(
            failure_threshold=config.health_failure_threshold,
            max_silence=config.health_max_silence,
        )

        self.poller = PollingService(
            self.store, self.client, config,
            retention=RetentionSweeper(self.store, config.data_retention),
        )
        self.token_refresh = TokenRefreshService(self.store, self.client, config)
        self.digest = DigestScheduler(
            self.store,
            SummaryRenderer(self.store, self.health,
                            battery_alert_threshold=config.battery_alert_threshold,
                            product_name=config.product_name),
            sender or create_sender(config),
            config,
        )

        self.web = StatusServer(
            self.store, self.health, config.web_port,
            services=self.services, log_buffer=log_buffer, version=__version__,
        )

    @property
    def services(self) -> dict[str, BackgroundService]:
        return {s.name: s for s in (self.poller, self.token_refresh, self.digest)}

    def seed(self) -> tuple[int, int]:
        customers = load_customer_configs(self.config.customers_file)
        if not customers:
            return 0, 0
        created = seed_store(self.store, customers)
        logger.info("Seeding done: %d customer(s), %d hub(s) created", *created)
        return created

    async def run(self):
        """Start the status API and all loops; return once every loop has exited."""
        self._running = True
        self.seed()

        try:
            await self.web.start()
        except OSError:
            logger.exception("Status API failed to start on port %d, continuing without it",
                             self.config.web_port)

        for name, service in self.services.items():
            self._tasks[name] = asyncio.create_task(service.run(), name=f"hpoll-{name}")
            logger.info("Launched %s loop", name)

        try:
            results = await asyncio.gather(*self._tasks.values(), return_exceptions=True)
            for name, result in zip(self._tasks, results):
                if isinstance(result, BaseException) and not isinstance(
                        result, asyncio.CancelledError):
                    logger.error("%s loop exited with error: %r", name, result)
        finally:
            self._tasks.clear()
            await self.web.stop()
            await self.client.close()
            self._running = False

    def stop(self):
        """Signal every loop to finish its current step and exit."""
        if not self._running:
            return
        logger.info("Stopping worker loops")
        for service in self.services.values():
            service.stop()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def setup_logging(level: str) -> RingBufferHandler:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )

    # Ring buffer for the status API log viewer
    log_buffer = RingBufferHandler(1000)
    log_buffer.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(log_buffer)
    return log_buffer


async def _run(manager: WorkerManager):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, manager.stop)
    await manager.run()


def main():
    try:
        config = Config()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    log_buffer = setup_logging(config.log_level)
    logger.info("hpoll worker %s starting", __version__)

    manager = WorkerManager(config, log_buffer=log_buffer)
    try:
        asyncio.run(_run(manager))
    except KeyboardInterrupt:
        pass
    finally:
        logger.info("Worker stopped.")


if __name__ == "__main__":
    main()
