"""Unit tests for the data retention sweep."""

import os
import sys
from contextlib import contextmanager
from datetime import timedelta
from unittest.mock import MagicMock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "worker"))

from fakes import add_hub
from hpoll.models import Device, PollingLogEntry, Reading
from hpoll.retention import RetentionSweeper


def seed_rows(store, clock, old_readings, new_readings, old_logs=0):
    hub = add_hub(store, token_expires_at=clock())
    with store.session() as db:
        device = db.add_device(Device(hub_id=hub.id, bridge_device_id="d1"))
        old = clock() - timedelta(days=8)
        for i in range(old_readings):
            db.add_reading(Reading(device_id=device.id, timestamp=old - timedelta(seconds=i),
                                   kind="motion", value="{}"))
        for i in range(new_readings):
            db.add_reading(Reading(device_id=device.id, timestamp=clock() - timedelta(seconds=i),
                                   kind="motion", value="{}"))
        for _ in range(old_logs):
            db.add_polling_log(PollingLogEntry(hub_id=hub.id, timestamp=old))
        db.add_polling_log(PollingLogEntry(hub_id=hub.id, timestamp=clock()))
    return hub


class TestRetentionSweeper:
    def test_deletes_in_batches(self, store, clock):
        seed_rows(store, clock, old_readings=2500, new_readings=10, old_logs=3)
        sweeper = RetentionSweeper(store, timedelta(hours=168), clock=clock)

        assert sweeper.sweep() == (2500, 3)

        with store.session() as db:
            assert db.count_readings() == 10
            assert len(db.get_polling_logs()) == 1

    def test_boundary_row_kept(self, store, clock):
        hub = add_hub(store, token_expires_at=clock())
        retention = timedelta(hours=24)
        with store.session() as db:
            device = db.add_device(Device(hub_id=hub.id, bridge_device_id="d1"))
            db.add_reading(Reading(device_id=device.id, timestamp=clock() - retention,
                                   kind="motion", value="{}"))

        assert RetentionSweeper(store, retention, clock=clock).sweep() == (0, 0)

    def test_explicit_now(self, store, clock):
        seed_rows(store, clock, old_readings=5, new_readings=5)
        sweeper = RetentionSweeper(store, timedelta(hours=1), clock=clock)
        assert sweeper.sweep(clock() + timedelta(days=1)) == (10, 1)

    def test_small_batch_size(self, store, clock):
        seed_rows(store, clock, old_readings=7, new_readings=0)
        sweeper = RetentionSweeper(store, timedelta(hours=168), clock=clock, batch_size=3)

        assert sweeper.sweep() == (7, 0)

    def test_storage_error_returns_zero(self, clock):
        broken = MagicMock()

        @contextmanager
        def session():
            raise RuntimeError("disk I/O error")
            yield

        broken.session = session
        sweeper = RetentionSweeper(broken, timedelta(hours=1), clock=clock)

        assert sweeper.sweep() == (0, 0)
