"""SQLite storage for hubs, devices, readings, poll logs and runtime info."""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator

from .models import (
    HUB_ACTIVE,
    HUB_NEEDS_REAUTH,
    HUB_STATUSES,
    CUSTOMER_ACTIVE,
    Customer,
    Device,
    Hub,
    PollingLogEntry,
    Reading,
    utcnow,
)

logger = logging.getLogger(__name__)

SCHEMA = """
    CREATE TABLE IF NOT EXISTS customers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        email TEXT NOT NULL,
        cc_emails TEXT NOT NULL DEFAULT '',
        bcc_emails TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT 'active',
        time_zone_id TEXT NOT NULL DEFAULT 'UTC',
        send_times_local TEXT NOT NULL DEFAULT '',
        next_send_time_utc REAL,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    );

    CREATE TABLE IF NOT EXISTS hubs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        customer_id INTEGER REFERENCES customers(id) ON DELETE CASCADE,
        bridge_id TEXT NOT NULL UNIQUE,
        application_key TEXT NOT NULL DEFAULT '',
        access_token TEXT NOT NULL DEFAULT '',
        refresh_token TEXT NOT NULL DEFAULT '',
        token_expires_at REAL NOT NULL,
        status TEXT NOT NULL DEFAULT 'active',
        consecutive_failures INTEGER NOT NULL DEFAULT 0,
        last_polled_at REAL,
        last_success_at REAL,
        last_battery_poll_at REAL,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_hubs_status ON hubs(status);

    CREATE TABLE IF NOT EXISTS devices (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        hub_id INTEGER NOT NULL REFERENCES hubs(id) ON DELETE CASCADE,
        bridge_device_id TEXT NOT NULL,
        device_type TEXT NOT NULL DEFAULT '',
        name TEXT NOT NULL DEFAULT '',
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    );
    CREATE UNIQUE INDEX IF NOT EXISTS idx_devices_hub_bridge
        ON devices(hub_id, bridge_device_id);

    CREATE TABLE IF NOT EXISTS readings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        device_id INTEGER NOT NULL REFERENCES devices(id) ON DELETE CASCADE,
        ts REAL NOT NULL,
        kind TEXT NOT NULL,
        value TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_readings_ts ON readings(ts);
    CREATE INDEX IF NOT EXISTS idx_readings_device_ts ON readings(device_id, ts);

    CREATE TABLE IF NOT EXISTS polling_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        hub_id INTEGER NOT NULL REFERENCES hubs(id) ON DELETE CASCADE,
        ts REAL NOT NULL,
        success INTEGER NOT NULL,
        error_message TEXT,
        api_calls_made INTEGER NOT NULL DEFAULT 0
    );
    CREATE INDEX IF NOT EXISTS idx_polling_logs_ts ON polling_logs(ts);

    CREATE TABLE IF NOT EXISTS system_info (
        key TEXT PRIMARY KEY,
        category TEXT NOT NULL,
        value TEXT NOT NULL,
        updated_at REAL NOT NULL
    );
"""


def to_epoch(value: datetime | None) -> float | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def from_epoch(value: float | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


class Store:
    """Owns the database file and hands out short-lived sessions.

    Each loop iteration opens its own session, does its reads and writes,
    and closes it again. No connection is held across a sleep.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)
            conn.commit()
        finally:
            conn.close()

    @property
    def db_path(self) -> str:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def session(self) -> Iterator["StoreSession"]:
        """Commit on normal exit, roll back on exception, always close."""
        conn = self._connect()
        try:
            yield StoreSession(conn)
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()


class StoreSession:
    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def add_customer(self, customer: Customer) -> Customer:
        cur = self._conn.execute(
            "INSERT INTO customers (name, email, cc_emails, bcc_emails, status, "
            "time_zone_id, send_times_local, next_send_time_utc, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (customer.name, customer.email, customer.cc_emails, customer.bcc_emails,
             customer.status, customer.time_zone_id, customer.send_times_local,
             to_epoch(customer.next_send_time_utc), to_epoch(customer.created_at),
             to_epoch(customer.updated_at)),
        )
        customer.id = cur.lastrowid
        return customer

    def get_customer(self, customer_id: int) -> Customer | None:
        row = self._conn.execute(
            "SELECT * FROM customers WHERE id = ?", (customer_id,),
        ).fetchone()
        return self._customer(row) if row else None

    def find_customer(self, name: str, email: str) -> Customer | None:
        row = self._conn.execute(
            "SELECT * FROM customers WHERE name = ? AND email = ?", (name, email),
        ).fetchone()
        return self._customer(row) if row else None

    def get_active_customers(self) -> list[Customer]:
        rows = self._conn.execute(
            "SELECT * FROM customers WHERE status = ? ORDER BY id", (CUSTOMER_ACTIVE,),
        ).fetchall()
        return [self._customer(r) for r in rows]

    def get_customers_without_send_time(self) -> list[Customer]:
        rows = self._conn.execute(
            "SELECT * FROM customers WHERE status = ? AND next_send_time_utc IS NULL "
            "ORDER BY id",
            (CUSTOMER_ACTIVE,),
        ).fetchall()
        return [self._customer(r) for r in rows]

    def get_due_customers(self, now: datetime) -> list[Customer]:
        rows = self._conn.execute(
            "SELECT * FROM customers WHERE status = ? AND next_send_time_utc IS NOT NULL "
            "AND next_send_time_utc <= ? ORDER BY next_send_time_utc, id",
            (CUSTOMER_ACTIVE, to_epoch(now)),
        ).fetchall()
        return [self._customer(r) for r in rows]

    def get_next_due_time(self) -> datetime | None:
        row = self._conn.execute(
            "SELECT MIN(next_send_time_utc) AS next_due FROM customers "
            "WHERE status = ? AND next_send_time_utc IS NOT NULL",
            (CUSTOMER_ACTIVE,),
        ).fetchone()
        return from_epoch(row["next_due"]) if row else None

    def set_next_send_time(self, customer_id: int, next_send: datetime | None):
        self._conn.execute(
            "UPDATE customers SET next_send_time_utc = ?, updated_at = ? WHERE id = ?",
            (to_epoch(next_send), to_epoch(utcnow()), customer_id),
        )

    @staticmethod
    def _customer(row: sqlite3.Row) -> Customer:
        return Customer(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            cc_emails=row["cc_emails"],
            bcc_emails=row["bcc_emails"],
            status=row["status"],
            time_zone_id=row["time_zone_id"],
            send_times_local=row["send_times_local"],
            next_send_time_utc=from_epoch(row["next_send_time_utc"]),
            created_at=from_epoch(row["created_at"]),
            updated_at=from_epoch(row["updated_at"]),
        )

    # ------------------------------------------------------------------
    # Hubs
    # ------------------------------------------------------------------

    def add_hub(self, hub: Hub) -> Hub:
        cur = self._conn.execute(
            "INSERT INTO hubs (customer_id, bridge_id, application_key, access_token, "
            "refresh_token, token_expires_at, status, consecutive_failures, "
            "last_polled_at, last_success_at, last_battery_poll_at, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (hub.customer_id, hub.bridge_id, hub.application_key, hub.access_token,
             hub.refresh_token, to_epoch(hub.token_expires_at), hub.status,
             hub.consecutive_failures, to_epoch(hub.last_polled_at),
             to_epoch(hub.last_success_at), to_epoch(hub.last_battery_poll_at),
             to_epoch(hub.created_at), to_epoch(hub.updated_at)),
        )
        hub.id = cur.lastrowid
        return hub

    def get_hub(self, hub_id: int, with_devices: bool = False) -> Hub | None:
        row = self._conn.execute("SELECT * FROM hubs WHERE id = ?", (hub_id,)).fetchone()
        if not row:
            return None
        hub = self._hub(row)
        if with_devices:
            hub.devices = self.get_devices_by_hub(hub.id)
        return hub

    def find_hub_by_bridge_id(self, bridge_id: str) -> Hub | None:
        row = self._conn.execute(
            "SELECT * FROM hubs WHERE bridge_id = ?", (bridge_id,),
        ).fetchone()
        return self._hub(row) if row else None

    def get_hubs_by_status(self, status: str, with_devices: bool = False) -> list[Hub]:
        rows = self._conn.execute(
            "SELECT * FROM hubs WHERE status = ? ORDER BY id", (status,),
        ).fetchall()
        hubs = [self._hub(r) for r in rows]
        if with_devices:
            for hub in hubs:
                hub.devices = self.get_devices_by_hub(hub.id)
        return hubs

    def get_active_hubs(self, with_devices: bool = False) -> list[Hub]:
        return self.get_hubs_by_status(HUB_ACTIVE, with_devices=with_devices)

    def get_all_hubs(self) -> list[Hub]:
        rows = self._conn.execute("SELECT * FROM hubs ORDER BY id").fetchall()
        return [self._hub(r) for r in rows]

    def get_hubs_for_customer(self, customer_id: int) -> list[Hub]:
        rows = self._conn.execute(
            "SELECT * FROM hubs WHERE customer_id = ? ORDER BY id", (customer_id,),
        ).fetchall()
        return [self._hub(r) for r in rows]

    def save_poll_state(self, hub: Hub):
        """Persist only the fields owned by the polling loop."""
        self._conn.execute(
            "UPDATE hubs SET consecutive_failures = ?, last_polled_at = ?, "
            "last_success_at = ?, last_battery_poll_at = ?, updated_at = ? WHERE id = ?",
            (hub.consecutive_failures, to_epoch(hub.last_polled_at),
             to_epoch(hub.last_success_at), to_epoch(hub.last_battery_poll_at),
             to_epoch(hub.updated_at), hub.id),
        )

    def save_tokens(self, hub: Hub):
        """Persist only the fields owned by the token refresh loop."""
        self._conn.execute(
            "UPDATE hubs SET access_token = ?, refresh_token = ?, token_expires_at = ?, "
            "updated_at = ? WHERE id = ?",
            (hub.access_token, hub.refresh_token, to_epoch(hub.token_expires_at),
             to_epoch(hub.updated_at), hub.id),
        )

    def set_hub_status(self, hub_id: int, status: str):
        """Change a hub's lifecycle status.

        Leaving needs_reauth for active is a fresh start, so the failure
        counter is reset along with it.
        """
        if status not in HUB_STATUSES:
            raise ValueError(f"Unknown hub status: {status!r}")
        row = self._conn.execute(
            "SELECT status FROM hubs WHERE id = ?", (hub_id,),
        ).fetchone()
        if row is None:
            raise KeyError(f"Hub {hub_id} not found")
        now = to_epoch(utcnow())
        if row["status"] == HUB_NEEDS_REAUTH and status == HUB_ACTIVE:
            self._conn.execute(
                "UPDATE hubs SET status = ?, consecutive_failures = 0, updated_at = ? "
                "WHERE id = ?",
                (status, now, hub_id),
            )
        else:
            self._conn.execute(
                "UPDATE hubs SET status = ?, updated_at = ? WHERE id = ?",
                (status, now, hub_id),
            )

    def mark_needs_reauth(self, hub_id: int) -> bool:
        """Move an active hub to needs_reauth. False if it is no longer active."""
        cur = self._conn.execute(
            "UPDATE hubs SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
            (HUB_NEEDS_REAUTH, to_epoch(utcnow()), hub_id, HUB_ACTIVE),
        )
        return cur.rowcount == 1

    @staticmethod
    def _hub(row: sqlite3.Row) -> Hub:
        return Hub(
            id=row["id"],
            customer_id=row["customer_id"],
            bridge_id=row["bridge_id"],
            application_key=row["application_key"],
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            token_expires_at=from_epoch(row["token_expires_at"]),
            status=row["status"],
            consecutive_failures=row["consecutive_failures"],
            last_polled_at=from_epoch(row["last_polled_at"]),
            last_success_at=from_epoch(row["last_success_at"]),
            last_battery_poll_at=from_epoch(row["last_battery_poll_at"]),
            created_at=from_epoch(row["created_at"]),
            updated_at=from_epoch(row["updated_at"]),
        )

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    def get_devices_by_hub(self, hub_id: int) -> list[Device]:
        rows = self._conn.execute(
            "SELECT * FROM devices WHERE hub_id = ? ORDER BY id", (hub_id,),
        ).fetchall()
        return [self._device(r) for r in rows]

    def add_device(self, device: Device) -> Device:
        cur = self._conn.execute(
            "INSERT INTO devices (hub_id, bridge_device_id, device_type, name, "
            "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
            (device.hub_id, device.bridge_device_id, device.device_type, device.name,
             to_epoch(device.created_at), to_epoch(device.updated_at)),
        )
        device.id = cur.lastrowid
        return device

    def rename_device(self, device_id: int, name: str):
        self._conn.execute(
            "UPDATE devices SET name = ?, updated_at = ? WHERE id = ?",
            (name, to_epoch(utcnow()), device_id),
        )

    @staticmethod
    def _device(row: sqlite3.Row) -> Device:
        return Device(
            id=row["id"],
            hub_id=row["hub_id"],
            bridge_device_id=row["bridge_device_id"],
            device_type=row["device_type"],
            name=row["name"],
            created_at=from_epoch(row["created_at"]),
            updated_at=from_epoch(row["updated_at"]),
        )

    # ------------------------------------------------------------------
    # Readings and poll logs
    # ------------------------------------------------------------------

    def add_reading(self, reading: Reading) -> int:
        cur = self._conn.execute(
            "INSERT INTO readings (device_id, ts, kind, value) VALUES (?, ?, ?, ?)",
            (reading.device_id, to_epoch(reading.timestamp), reading.kind, reading.value),
        )
        return cur.lastrowid

    def get_readings(self, device_ids: Iterable[int], start: datetime,
                     end: datetime) -> list[Reading]:
        """Readings for any of device_ids with start <= ts < end, oldest first."""
        ids = list(device_ids)
        if not ids:
            return []
        placeholders = ",".join("?" for _ in ids)
        rows = self._conn.execute(
            f"SELECT * FROM readings WHERE device_id IN ({placeholders}) "
            "AND ts >= ? AND ts < ? ORDER BY ts, id",
            (*ids, to_epoch(start), to_epoch(end)),
        ).fetchall()
        return [
            Reading(id=r["id"], device_id=r["device_id"], timestamp=from_epoch(r["ts"]),
                    kind=r["kind"], value=r["value"])
            for r in rows
        ]

    def count_readings(self) -> int:
        return self._conn.execute("SELECT COUNT(*) AS c FROM readings").fetchone()["c"]

    def add_polling_log(self, entry: PollingLogEntry) -> int:
        cur = self._conn.execute(
            "INSERT INTO polling_logs (hub_id, ts, success, error_message, api_calls_made) "
            "VALUES (?, ?, ?, ?, ?)",
            (entry.hub_id, to_epoch(entry.timestamp), int(entry.success),
             entry.error_message, entry.api_calls_made),
        )
        entry.id = cur.lastrowid
        return entry.id

    def get_polling_logs(self, hub_id: int | None = None,
                         limit: int = 100) -> list[PollingLogEntry]:
        if hub_id is None:
            rows = self._conn.execute(
                "SELECT * FROM polling_logs ORDER BY ts DESC, id DESC LIMIT ?", (limit,),
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM polling_logs WHERE hub_id = ? "
                "ORDER BY ts DESC, id DESC LIMIT ?",
                (hub_id, limit),
            ).fetchall()
        return [
            PollingLogEntry(
                id=r["id"], hub_id=r["hub_id"], timestamp=from_epoch(r["ts"]),
                success=bool(r["success"]), error_message=r["error_message"],
                api_calls_made=r["api_calls_made"],
            )
            for r in rows
        ]

    def delete_readings_older_than(self, cutoff: datetime, limit: int) -> int:
        cur = self._conn.execute(
            "DELETE FROM readings WHERE id IN "
            "(SELECT id FROM readings WHERE ts < ? LIMIT ?)",
            (to_epoch(cutoff), limit),
        )
        return cur.rowcount

    def delete_polling_logs_older_than(self, cutoff: datetime, limit: int) -> int:
        cur = self._conn.execute(
            "DELETE FROM polling_logs WHERE id IN "
            "(SELECT id FROM polling_logs WHERE ts < ? LIMIT ?)",
            (to_epoch(cutoff), limit),
        )
        return cur.rowcount

    # ------------------------------------------------------------------
    # Runtime system info
    # ------------------------------------------------------------------

    def set_system_info(self, category: str, entries: dict[str, str]):
        now = to_epoch(utcnow())
        self._conn.executemany(
            "INSERT INTO system_info (key, category, value, updated_at) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET category = excluded.category, "
            "value = excluded.value, updated_at = excluded.updated_at",
            [(key, category, str(value), now) for key, value in entries.items()],
        )

    def get_system_info(self, category: str | None = None) -> dict[str, str]:
        if category is None:
            rows = self._conn.execute(
                "SELECT key, value FROM system_info ORDER BY key").fetchall()
        else:
            rows = self._conn.execute(
                "SELECT key, value FROM system_info WHERE category = ? ORDER BY key",
                (category,),
            ).fetchall()
        return {r["key"]: r["value"] for r in rows}
