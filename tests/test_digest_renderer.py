# hpoll Worker
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Tests for the default HTML digest renderer."""

import json
import os
import sys
from datetime import timedelta

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "worker"))

from fakes import add_customer, add_hub
from hpoll.digest_renderer import SummaryRenderer, summarize_readings
from hpoll.health import HealthEvaluator
from hpoll.models import (
    HUB_INACTIVE,
    READING_BATTERY,
    READING_MOTION,
    READING_TEMPERATURE,
    Device,
    Reading,
)


def add_device(store, hub_id, bridge_device_id, name, device_type="motion_sensor"):
    with store.session() as db:
        return db.add_device(Device(hub_id=hub_id, bridge_device_id=bridge_device_id,
                                    device_type=device_type, name=name))


def add_reading(store, device_id, ts, kind, value):
    with store.session() as db:
        db.add_reading(Reading(device_id=device_id, timestamp=ts, kind=kind,
                               value=json.dumps(value)))


@pytest.fixture
def renderer(store, clock):
    return SummaryRenderer(store, HealthEvaluator(clock=clock), battery_alert_threshold=30)


class TestSummarizeReadings:
    def test_folds_per_device(self, clock):
        devices = [Device(hub_id=1, bridge_device_id="d1", name="Hall", id=1),
                   Device(hub_id=1, bridge_device_id="d2", name="attic", id=2)]
        readings = [
            Reading(device_id=1, timestamp=clock(), kind=READING_MOTION,
                    value=json.dumps({"motion": True})),
            Reading(device_id=1, timestamp=clock(), kind=READING_MOTION,
                    value=json.dumps({"motion": False})),
            Reading(device_id=1, timestamp=clock(), kind=READING_MOTION,
                    value=json.dumps({"motion": True})),
            Reading(device_id=2, timestamp=clock(), kind=READING_TEMPERATURE,
                    value=json.dumps({"temperature": 18.0})),
            Reading(device_id=2, timestamp=clock(), kind=READING_TEMPERATURE,
                    value=json.dumps({"temperature": 19.5})),
            Reading(device_id=2, timestamp=clock(), kind=READING_BATTERY,
                    value=json.dumps({"battery_level": 12, "battery_state": "low"})),
        ]

        summaries = summarize_readings(devices, readings)

        assert [s.name for s in summaries] == ["attic", "Hall"]
        attic, hall = summaries
        assert hall.motion_events == 2
        assert attic.temperature == 19.5
        assert (attic.battery_level, attic.battery_state) == (12, "low")

    def test_malformed_payload_skipped(self, clock):
        devices = [Device(hub_id=1, bridge_device_id="d1", name="Hall", id=1)]
        readings = [
            Reading(device_id=1, timestamp=clock(), kind=READING_TEMPERATURE, value="{oops"),
            Reading(device_id=1, timestamp=clock(), kind=READING_TEMPERATURE,
                    value=json.dumps({"celsius": 20})),
            Reading(device_id=99, timestamp=clock(), kind=READING_MOTION,
                    value=json.dumps({"motion": True})),
        ]

        summaries = summarize_readings(devices, readings)

        assert summaries[0].temperature is None
        assert summaries[0].motion_events == 0


class TestRenderDailySummary:
    @pytest.mark.asyncio
    async def test_no_devices_returns_none(self, store, renderer, clock):
        customer = add_customer(store)
        add_hub(store, customer.id, token_expires_at=clock() + timedelta(days=1))
        assert await renderer.render_daily_summary(customer.id, "UTC", clock()) is None

    @pytest.mark.asyncio
    async def test_inactive_hub_devices_excluded(self, store, renderer, clock):
        customer = add_customer(store)
        hub = add_hub(store, customer.id, token_expires_at=clock(), status=HUB_INACTIVE)
        add_device(store, hub.id, "d1", "Hall")
        assert await renderer.render_daily_summary(customer.id, "UTC", clock()) is None

    @pytest.mark.asyncio
    async def test_renders_sections(self, store, renderer, clock):
        customer = add_customer(store)
        hub = add_hub(store, customer.id, token_expires_at=clock() + timedelta(days=1))
        hall = add_device(store, hub.id, "d1", "Hall <main>")
        add_reading(store, hall.id, clock() - timedelta(hours=2), READING_MOTION,
                    {"motion": True})
        add_reading(store, hall.id, clock() - timedelta(hours=1), READING_TEMPERATURE,
                    {"temperature": 20.25})
        add_reading(store, hall.id, clock() - timedelta(hours=1), READING_BATTERY,
                    {"battery_level": 15, "battery_state": "low"})
        # Outside the 24h window
        add_reading(store, hall.id, clock() - timedelta(hours=30), READING_MOTION,
                    {"motion": True})

        html = await renderer.render_daily_summary(customer.id, "Europe/London", clock())

        assert html.startswith("<!DOCTYPE html>")
        assert "Hall &lt;main&gt;" in html
        assert "Hall <main>" not in html
        assert "20.2" in html or "20.3" in html
        assert "15%" in html
        assert "#e74c3c" in html        # low battery flagged
        assert "bridge-1" in html
        assert "automated summary from hpoll" in html

    @pytest.mark.asyncio
    async def test_renders_with_no_readings(self, store, renderer, clock):
        customer = add_customer(store)
        hub = add_hub(store, customer.id, token_expires_at=clock() + timedelta(days=1))
        add_device(store, hub.id, "d1", "Hall")

        html = await renderer.render_daily_summary(customer.id, "UTC", clock())

        assert html is not None
        assert "Motion" in html
        assert "Batteries" not in html
