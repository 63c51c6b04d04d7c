"""Unit tests for SQLite storage."""

import os
import sqlite3
import sys
from datetime import timedelta

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "worker"))

from fakes import add_customer, add_hub
from hpoll.models import (
    CUSTOMER_INACTIVE,
    HUB_ACTIVE,
    HUB_INACTIVE,
    HUB_NEEDS_REAUTH,
    Device,
    PollingLogEntry,
    Reading,
)
from hpoll.store import Store


class TestSchema:
    def test_create_tables(self, store):
        with store.session() as db:
            rows = db._conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        names = {r["name"] for r in rows}
        assert {"customers", "hubs", "devices", "readings",
                "polling_logs", "system_info"} <= names

    def test_reopen_existing_database(self, tmp_db, store):
        add_customer(store)
        reopened = Store(tmp_db)
        with reopened.session() as db:
            assert len(db.get_active_customers()) == 1

    def test_rollback_on_error(self, store):
        with pytest.raises(RuntimeError):
            with store.session() as db:
                db._conn.execute(
                    "INSERT INTO system_info (key, category, value, updated_at) "
                    "VALUES ('k', 'c', 'v', 0)")
                raise RuntimeError("boom")
        with store.session() as db:
            assert db.get_system_info() == {}


class TestCustomers:
    def test_due_customers_ordered(self, store, clock):
        later = add_customer(store, name="Later", next_send_time_utc=clock() - timedelta(minutes=1))
        earlier = add_customer(store, name="Earlier",
                               next_send_time_utc=clock() - timedelta(hours=1))
        add_customer(store, name="Future", next_send_time_utc=clock() + timedelta(minutes=1))
        add_customer(store, name="Inactive", status=CUSTOMER_INACTIVE,
                     next_send_time_utc=clock() - timedelta(hours=2))
        add_customer(store, name="Unscheduled")

        with store.session() as db:
            due = db.get_due_customers(clock())

        assert [c.id for c in due] == [earlier.id, later.id]

    def test_due_includes_exact_time(self, store, clock):
        add_customer(store, next_send_time_utc=clock())
        with store.session() as db:
            assert len(db.get_due_customers(clock())) == 1

    def test_next_due_time(self, store, clock):
        with store.session() as db:
            assert db.get_next_due_time() is None
        add_customer(store, next_send_time_utc=clock() + timedelta(hours=3))
        add_customer(store, next_send_time_utc=clock() + timedelta(hours=1))
        with store.session() as db:
            assert db.get_next_due_time() == clock() + timedelta(hours=1)

    def test_set_next_send_time(self, store, clock):
        customer = add_customer(store)
        with store.session() as db:
            db.set_next_send_time(customer.id, clock())
            assert db.get_customer(customer.id).next_send_time_utc == clock()
            assert db.get_customers_without_send_time() == []

    def test_find_customer(self, store):
        customer = add_customer(store, name="Bob", email="bob@example.com")
        with store.session() as db:
            assert db.find_customer("Bob", "bob@example.com").id == customer.id
            assert db.find_customer("Bob", "other@example.com") is None


class TestHubs:
    def test_roundtrip(self, store, clock):
        customer = add_customer(store)
        hub = add_hub(store, customer.id, token_expires_at=clock())
        with store.session() as db:
            loaded = db.get_hub(hub.id)
        assert loaded.bridge_id == "bridge-1"
        assert loaded.token_expires_at == clock()
        assert loaded.token_expires_at.tzinfo is not None
        assert loaded.last_polled_at is None

    def test_by_status(self, store, clock):
        add_hub(store, bridge_id="a", token_expires_at=clock())
        add_hub(store, bridge_id="b", token_expires_at=clock(), status=HUB_NEEDS_REAUTH)
        with store.session() as db:
            assert [h.bridge_id for h in db.get_active_hubs()] == ["a"]
            assert [h.bridge_id for h in db.get_hubs_by_status(HUB_NEEDS_REAUTH)] == ["b"]
            assert len(db.get_all_hubs()) == 2

    def test_duplicate_bridge_id_rejected(self, store, clock):
        add_hub(store, token_expires_at=clock())
        with pytest.raises(sqlite3.IntegrityError):
            add_hub(store, token_expires_at=clock())

    def test_poll_state_and_tokens_do_not_clobber(self, store, clock):
        hub = add_hub(store, token_expires_at=clock())
        with store.session() as db:
            polling_copy = db.get_hub(hub.id)
            token_copy = db.get_hub(hub.id)

        token_copy.access_token = "fresh"
        token_copy.token_expires_at = clock() + timedelta(days=7)
        with store.session() as db:
            db.save_tokens(token_copy)

        polling_copy.consecutive_failures = 4
        polling_copy.last_polled_at = clock()
        with store.session() as db:
            db.save_poll_state(polling_copy)

        with store.session() as db:
            saved = db.get_hub(hub.id)
        assert saved.access_token == "fresh"
        assert saved.token_expires_at == clock() + timedelta(days=7)
        assert saved.consecutive_failures == 4
        assert saved.last_polled_at == clock()

    def test_set_status_validates(self, store, clock):
        hub = add_hub(store, token_expires_at=clock())
        with store.session() as db:
            with pytest.raises(ValueError):
                db.set_hub_status(hub.id, "sleeping")
            with pytest.raises(KeyError):
                db.set_hub_status(9999, HUB_ACTIVE)

    def test_reactivation_resets_failures(self, store, clock):
        hub = add_hub(store, token_expires_at=clock(), status=HUB_NEEDS_REAUTH,
                      consecutive_failures=7)
        with store.session() as db:
            db.set_hub_status(hub.id, HUB_ACTIVE)
            saved = db.get_hub(hub.id)
        assert saved.status == HUB_ACTIVE
        assert saved.consecutive_failures == 0

    def test_mark_needs_reauth_only_from_active(self, store, clock):
        active = add_hub(store, bridge_id="a", token_expires_at=clock())
        inactive = add_hub(store, bridge_id="b", token_expires_at=clock(), status=HUB_INACTIVE)
        with store.session() as db:
            assert db.mark_needs_reauth(active.id) is True
            assert db.mark_needs_reauth(inactive.id) is False
            assert db.get_hub(active.id).status == HUB_NEEDS_REAUTH
            assert db.get_hub(inactive.id).status == HUB_INACTIVE

    def test_other_transitions_keep_failures(self, store, clock):
        hub = add_hub(store, token_expires_at=clock(), consecutive_failures=2)
        with store.session() as db:
            db.set_hub_status(hub.id, HUB_INACTIVE)
            db.set_hub_status(hub.id, HUB_ACTIVE)
            assert db.get_hub(hub.id).consecutive_failures == 2


class TestReadingsAndLogs:
    def _device(self, store, clock):
        hub = add_hub(store, token_expires_at=clock())
        with store.session() as db:
            return db.add_device(Device(hub_id=hub.id, bridge_device_id="d1", name="Hall"))

    def test_unique_device_per_hub(self, store, clock):
        device = self._device(store, clock)
        with pytest.raises(sqlite3.IntegrityError):
            with store.session() as db:
                db.add_device(Device(hub_id=device.hub_id, bridge_device_id="d1"))

    def test_range_is_half_open(self, store, clock):
        device = self._device(store, clock)
        with store.session() as db:
            for hours in (0, 1, 2):
                db.add_reading(Reading(device_id=device.id,
                                       timestamp=clock() + timedelta(hours=hours),
                                       kind="motion", value="{}"))
            readings = db.get_readings([device.id], clock(), clock() + timedelta(hours=2))
        assert [r.timestamp for r in readings] == [clock(), clock() + timedelta(hours=1)]

    def test_empty_device_set(self, store, clock):
        with store.session() as db:
            assert db.get_readings([], clock(), clock()) == []

    def test_batched_delete(self, store, clock):
        device = self._device(store, clock)
        with store.session() as db:
            for i in range(5):
                db.add_reading(Reading(device_id=device.id,
                                       timestamp=clock() - timedelta(days=10, minutes=i),
                                       kind="motion", value="{}"))
            db.add_reading(Reading(device_id=device.id, timestamp=clock(),
                                   kind="motion", value="{}"))
        with store.session() as db:
            assert db.delete_readings_older_than(clock() - timedelta(days=1), limit=3) == 3
            assert db.delete_readings_older_than(clock() - timedelta(days=1), limit=3) == 2
            assert db.count_readings() == 1

    def test_polling_logs_newest_first(self, store, clock):
        hub = add_hub(store, token_expires_at=clock())
        with store.session() as db:
            db.add_polling_log(PollingLogEntry(hub_id=hub.id, timestamp=clock(), success=True,
                                               api_calls_made=3))
            db.add_polling_log(PollingLogEntry(hub_id=hub.id,
                                               timestamp=clock() + timedelta(hours=1),
                                               error_message="Rate limited (429)"))
            logs = db.get_polling_logs(hub.id)
        assert [log.success for log in logs] == [False, True]
        assert logs[0].error_message == "Rate limited (429)"
        assert logs[1].api_calls_made == 3


class TestSystemInfo:
    def test_upsert_and_filter(self, store):
        with store.session() as db:
            db.set_system_info("Runtime", {"runtime.hubs_polled": "2"})
            db.set_system_info("Runtime", {"runtime.hubs_polled": "3"})
            db.set_system_info("Build", {"build.version": "1.0.0"})
            assert db.get_system_info("Runtime") == {"runtime.hubs_polled": "3"}
            assert db.get_system_info() == {"build.version": "1.0.0",
                                            "runtime.hubs_polled": "3"}
