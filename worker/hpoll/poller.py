# hpoll Worker
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Hub polling loop.

PollingService wakes every poll interval (and once immediately on start),
polls each active hub in turn and records one poll log entry per hub.
A hub's own API calls run concurrently; hubs are processed one at a time,
and a failure on one hub never reaches another hub or the loop itself.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from .config import Config
from .hue_client import ProtocolError
from .hue_model import (
    BridgeResponse,
    DevicePowerResource,
    DeviceResource,
    MotionResource,
    TemperatureResource,
)
from .interfaces import BridgeClient
from .models import (
    DEVICE_BATTERY,
    DEVICE_MOTION_SENSOR,
    DEVICE_TEMPERATURE_SENSOR,
    READING_BATTERY,
    READING_MOTION,
    READING_TEMPERATURE,
    Device,
    Hub,
    PollingLogEntry,
    Reading,
    truncate_error,
    utcnow,
)
from .retention import RetentionSweeper
from .service import BackgroundService
from .store import Store, StoreSession

logger = logging.getLogger(__name__)

UNKNOWN_DEVICE_NAME = "Unknown"

# Status codes with a dedicated poll-log message
FAILURE_MESSAGES = {
    401: "Unauthorized (401) - token may be expired",
    429: "Rate limited (429)",
    503: "Bridge offline (503)",
}


def describe_failure(exc: BaseException) -> str:
    """Poll-log message for a failed hub poll, at most 500 chars."""
    if isinstance(exc, ProtocolError) and exc.status in FAILURE_MESSAGES:
        return FAILURE_MESSAGES[exc.status]
    return truncate_error(str(exc) or type(exc).__name__)


@dataclass
class HubSnapshot:
    """Joined responses of one hub's fan-out."""
    motion: BridgeResponse[MotionResource]
    temperature: BridgeResponse[TemperatureResource]
    devices: BridgeResponse[DeviceResource]
    power: BridgeResponse[DevicePowerResource] = field(default_factory=BridgeResponse)
    battery_polled: bool = False


@dataclass
class IngestStats:
    motion: int = 0
    temperature: int = 0
    battery: int = 0
    skipped: int = 0


class PollingService(BackgroundService):
    name = "polling"

    def __init__(self, store: Store, client: BridgeClient, config: Config,
                 retention: RetentionSweeper | None = None,
                 clock: Callable[[], datetime] = utcnow):
        super().__init__(store, clock)
        self._client = client
        self._interval: timedelta = config.poll_interval
        self._battery_interval: timedelta = config.battery_poll_interval
        self._retention = retention or RetentionSweeper(
            store, config.data_retention, clock=clock)
        # Forces a battery poll on the first cycle after process start
        self._first_cycle = True
        self._cycle_count = 0

    async def run(self):
        """Poll immediately, then on every interval until stopped."""
        self._running = True
        logger.info("Polling service started. Interval: %d minutes",
                    self._interval.total_seconds() // 60)
        try:
            while not self.stopping:
                try:
                    await self.poll_all_hubs(self._first_cycle)
                    self._first_cycle = False
                except Exception:
                    logger.exception("Unhandled error in polling cycle")

                self.cleanup_old_data()

                if not await self._sleep(self._interval.total_seconds()):
                    break
        except asyncio.CancelledError:
            logger.info("Polling service cancelled")
        finally:
            self._running = False
        logger.info("Polling service stopped")

    async def poll_all_hubs(self, force_battery_poll: bool = False) -> list[PollingLogEntry]:
        with self.store.session() as db:
            hubs = db.get_active_hubs(with_devices=True)

        logger.info("Polling %d active hubs", len(hubs))

        entries = []
        for hub in hubs:
            if hub.token_expires_at <= self.now():
                logger.warning("[%s] Token expired, skipping poll", hub.bridge_id)
                continue
            entries.append(await self.poll_hub(hub, force_battery_poll))

        self._cycle_count += 1
        self._record_runtime({
            "runtime.last_poll_cycle": self.now().isoformat(),
            "runtime.hubs_polled": str(len(entries)),
            "runtime.poll_cycles": str(self._cycle_count),
        })
        return entries

    async def poll_hub(self, hub: Hub, force_battery_poll: bool = False) -> PollingLogEntry:
        """Poll one hub. Never raises; the outcome is in the returned entry."""
        poll_time = self.now()
        entry = PollingLogEntry(hub_id=hub.id, timestamp=poll_time)
        api_calls = 0

        try:
            poll_battery = self._should_poll_battery(hub, poll_time, force_battery_poll)
            snapshot, api_calls = await self._fetch(hub, poll_battery)

            with self.store.session() as db:
                stats = self._ingest(db, hub, snapshot, poll_time)
            if snapshot.battery_polled:
                hub.last_battery_poll_at = poll_time
                logger.info("[%s] Battery data fetched. %d device_power resources",
                            hub.bridge_id, len(snapshot.power.data))

            hub.last_success_at = poll_time
            hub.consecutive_failures = 0
            entry.success = True
            logger.info(
                "[%s] Polled successfully. %d motion, %d temperature, %d battery readings",
                hub.bridge_id, stats.motion, stats.temperature, stats.battery)

        except ProtocolError as e:
            hub.consecutive_failures += 1
            entry.error_message = describe_failure(e)
            if e.status in FAILURE_MESSAGES:
                logger.warning("[%s] %s", hub.bridge_id, entry.error_message)
            else:
                logger.error("[%s] Polling failed: %s", hub.bridge_id, e)
        except Exception as e:
            hub.consecutive_failures += 1
            entry.error_message = describe_failure(e)
            logger.exception("[%s] Polling failed", hub.bridge_id)
        finally:
            hub.last_polled_at = poll_time
            hub.updated_at = poll_time
            entry.api_calls_made = api_calls
            try:
                with self.store.session() as db:
                    db.save_poll_state(hub)
                    db.add_polling_log(entry)
            except Exception:
                logger.exception("[%s] Failed to save polling log", hub.bridge_id)

        return entry

    def cleanup_old_data(self):
        try:
            self._retention.sweep(self.now())
        except Exception:
            logger.warning("Data retention cleanup failed", exc_info=True)

    # -- fan-out -----------------------------------------------------------

    def _should_poll_battery(self, hub: Hub, now: datetime, force: bool) -> bool:
        if force or hub.last_battery_poll_at is None:
            return True
        return now - hub.last_battery_poll_at >= self._battery_interval

    async def _fetch(self, hub: Hub, poll_battery: bool) -> tuple[HubSnapshot, int]:
        token, key = hub.access_token, hub.application_key
        calls = [
            self._client.fetch_motion_sensors(token, key),
            self._client.fetch_temperature_sensors(token, key),
            self._client.fetch_devices(token, key),
        ]
        if poll_battery:
            calls.append(self._client.fetch_device_power(token, key))

        # Wait for every call before judging the outcome
        results = await asyncio.gather(*calls, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result

        snapshot = HubSnapshot(
            motion=results[0],
            temperature=results[1],
            devices=results[2],
            battery_polled=poll_battery,
        )
        if poll_battery:
            snapshot.power = results[3]
        return snapshot, len(calls)

    # -- ingestion ---------------------------------------------------------

    def _ingest(self, db: StoreSession, hub: Hub, snapshot: HubSnapshot,
                poll_time: datetime) -> IngestStats:
        stats = IngestStats()
        catalog = {d.id: d for d in snapshot.devices.data}
        motion_cutoff = self._motion_cutoff(hub, poll_time)

        for motion in snapshot.motion.data:
            if motion.report is None:
                continue
            try:
                changed = motion.report.changed
                detected = (changed > motion_cutoff) if changed else motion.report.motion
                value = {
                    "motion": detected,
                    "changed": changed.isoformat() if changed else None,
                }
                self._append(db, hub, catalog, motion.owner.rid, DEVICE_MOTION_SENSOR,
                             READING_MOTION, value, poll_time)
                stats.motion += 1
            except (TypeError, ValueError, AttributeError):
                stats.skipped += 1
                logger.warning("[%s] Skipping malformed motion reading %s",
                               hub.bridge_id, motion.id, exc_info=True)

        for temp in snapshot.temperature.data:
            if temp.report is None:
                continue
            try:
                changed = temp.report.changed
                value = {
                    "temperature": float(temp.report.temperature),
                    "changed": changed.isoformat() if changed else None,
                }
                self._append(db, hub, catalog, temp.owner.rid, DEVICE_TEMPERATURE_SENSOR,
                             READING_TEMPERATURE, value, poll_time)
                stats.temperature += 1
            except (TypeError, ValueError, AttributeError):
                stats.skipped += 1
                logger.warning("[%s] Skipping malformed temperature reading %s",
                               hub.bridge_id, temp.id, exc_info=True)

        for power in snapshot.power.data:
            if power.power_state.battery_level is None:
                continue
            try:
                value = {
                    "battery_level": int(power.power_state.battery_level),
                    "battery_state": power.power_state.battery_state or "unknown",
                }
                self._append(db, hub, catalog, power.owner.rid, DEVICE_BATTERY,
                             READING_BATTERY, value, poll_time)
                stats.battery += 1
            except (TypeError, ValueError, AttributeError):
                stats.skipped += 1
                logger.warning("[%s] Skipping malformed battery reading %s",
                               hub.bridge_id, power.id, exc_info=True)

        return stats

    def _motion_cutoff(self, hub: Hub, poll_time: datetime) -> datetime:
        """Motion counts if it changed after the earlier of last poll and one interval ago.

        The bridge's motion flag is momentary, so with long poll intervals the
        change timestamp is the reliable signal.
        """
        interval_cutoff = poll_time - self._interval
        if hub.last_polled_at is None:
            return interval_cutoff
        return min(hub.last_polled_at, interval_cutoff)

    def _append(self, db: StoreSession, hub: Hub, catalog: dict[str, DeviceResource],
                owner_id: str, device_type: str, kind: str, value: dict,
                poll_time: datetime):
        owner = catalog.get(owner_id)
        name = owner.name if owner is not None else UNKNOWN_DEVICE_NAME
        device = self._get_or_create_device(db, hub, owner_id, device_type, name)
        db.add_reading(Reading(
            device_id=device.id,
            timestamp=poll_time,
            kind=kind,
            value=json.dumps(value),
        ))

    @staticmethod
    def _get_or_create_device(db: StoreSession, hub: Hub, bridge_device_id: str,
                              device_type: str, name: str) -> Device:
        device = hub.find_device(bridge_device_id)
        if device is None:
            device = db.add_device(Device(
                hub_id=hub.id,
                bridge_device_id=bridge_device_id,
                device_type=device_type,
                name=name,
            ))
            hub.devices.append(device)
            logger.info("[%s] New device %s (%s): %s",
                        hub.bridge_id, bridge_device_id, device_type, name)
        elif device.name != name:
            db.rename_device(device.id, name)
            device.name = name
        return device
