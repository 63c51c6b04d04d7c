# hpoll Worker
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Digest email scheduler.

Each active customer carries a next_send_time_utc. The scheduler sleeps
until the earliest one (checking at least every 10 minutes), sends every
due digest in one batch and advances each customer's next send time,
whether or not its send succeeded.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable

from .config import Config
from .interfaces import DigestRenderer, EmailSender
from .models import Customer, utcnow
from .send_time import local_time, next_send_time_for
from .service import BackgroundService
from .store import Store

logger = logging.getLogger(__name__)

MAX_SLEEP = timedelta(minutes=10)


def parse_email_list(raw: str | None) -> list[str] | None:
    """Split a comma-separated address list, dropping entries without '@'.

    Returns None when nothing usable remains.
    """
    if not raw or not raw.strip():
        return None
    addresses = [a.strip() for a in raw.split(",") if "@" in a]
    return addresses or None


class DigestScheduler(BackgroundService):
    name = "digest"

    def __init__(self, store: Store, renderer: DigestRenderer, sender: EmailSender,
                 config: Config, clock: Callable[[], datetime] = utcnow):
        super().__init__(store, clock)
        self._renderer = renderer
        self._sender = sender
        self._default_send_times: list[str] = list(config.email_send_times_utc)
        self._error_delay: timedelta = config.email_error_retry_delay
        self._product_name = config.product_name
        self._total_sent = 0

    @property
    def total_sent(self) -> int:
        return self._total_sent

    async def run(self):
        self._running = True
        logger.info("Digest scheduler started. Default send times: %s UTC",
                    ", ".join(self._default_send_times))
        try:
            while not self.stopping:
                try:
                    self.initialize_next_send_times()

                    # Anything that fell due while sending is picked up too
                    while await self.process_due_customers():
                        if self.stopping:
                            break

                    delay = self.get_sleep_duration()
                    logger.info("Next digest check in %s", delay)
                    if not await self._sleep(delay.total_seconds()):
                        break
                except Exception:
                    logger.exception("Unhandled error in digest scheduler")
                    if not await self._sleep(self._error_delay.total_seconds()):
                        break
        except asyncio.CancelledError:
            logger.info("Digest scheduler cancelled")
        finally:
            self._running = False
        logger.info("Digest scheduler stopped")

    def next_send_time(self, customer: Customer, now: datetime) -> datetime | None:
        return next_send_time_for(customer.send_times_local, customer.time_zone_id,
                                  now, self._default_send_times)

    def initialize_next_send_times(self) -> int:
        """Give every active customer without a next send time one."""
        now = self.now()
        initialized = 0
        with self.store.session() as db:
            for customer in db.get_customers_without_send_time():
                next_send = self.next_send_time(customer, now)
                if next_send is None:
                    logger.warning("Customer %s (Id=%s) has no valid send times",
                                   customer.name, customer.id)
                    continue
                db.set_next_send_time(customer.id, next_send)
                initialized += 1
                logger.info("Initialized next send time for customer %s (Id=%s): %s",
                            customer.name, customer.id, next_send.isoformat())
        return initialized

    async def process_due_customers(self) -> bool:
        """Send all due digests. Returns True if any customer was due."""
        with self.store.session() as db:
            due = db.get_due_customers(self.now())

        if not due:
            return False

        logger.info("Found %d customers due for digest", len(due))

        for customer in due:
            try:
                if await self.send_customer_digest(customer):
                    self._total_sent += 1
            except Exception:
                logger.exception("Failed to send digest to %s (customer %s, Id=%s)",
                                 customer.email, customer.name, customer.id)

            # Always advance, even on failure, so one bad customer cannot loop
            next_send = self.next_send_time(customer, self.now())
            with self.store.session() as db:
                db.set_next_send_time(customer.id, next_send)

        next_due = self.next_due_time()
        self._record_runtime({
            "runtime.last_email_sent": self.now().isoformat(),
            "runtime.total_emails_sent": str(self._total_sent),
            "runtime.next_email_due": next_due.isoformat() if next_due else "N/A",
        })
        return True

    async def send_customer_digest(self, customer: Customer) -> bool:
        """Render and send one digest. Returns False if there was nothing to send."""
        to_list = parse_email_list(customer.email)
        if to_list is None:
            logger.warning("Customer %s (Id=%s) has no valid notification email "
                           "addresses, skipping", customer.name, customer.id)
            return False

        now = self.now()
        body = await self._renderer.render_daily_summary(
            customer.id, customer.time_zone_id, now)
        if body is None:
            logger.info("No digest content for customer %s (Id=%s), skipping",
                        customer.name, customer.id)
            return False

        subject = self.subject_for(now, customer.time_zone_id)
        await self._sender.send(
            to_list, subject, body,
            cc=parse_email_list(customer.cc_emails),
            bcc=parse_email_list(customer.bcc_emails),
        )
        logger.info("Digest sent to %s (customer %s, Id=%s)",
                    customer.email, customer.name, customer.id)
        return True

    def subject_for(self, now: datetime, time_zone_id: str) -> str:
        local = local_time(now, time_zone_id)
        return f"{self._product_name} Daily Summary - {local.day} {local:%b %Y}"

    def next_due_time(self) -> datetime | None:
        with self.store.session() as db:
            return db.get_next_due_time()

    def get_sleep_duration(self) -> timedelta:
        """min(time until the next due customer, MAX_SLEEP), never negative."""
        next_due = self.next_due_time()
        if next_due is None:
            return MAX_SLEEP
        until_next = next_due - self.now()
        if until_next <= timedelta(0):
            return timedelta(0)
        return min(until_next, MAX_SLEEP)
