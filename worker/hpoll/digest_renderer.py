# hpoll Worker
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""HTML daily summary: motion, temperature and battery per device, plus hub health."""

import html
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from .health import HealthEvaluator
from .models import (
    HUB_ACTIVE,
    READING_BATTERY,
    READING_MOTION,
    READING_TEMPERATURE,
    Device,
    Hub,
    Reading,
)
from .send_time import local_time
from .store import Store

logger = logging.getLogger(__name__)

SUMMARY_WINDOW = timedelta(hours=24)

COLOR_HEADER = "#2c3e50"
COLOR_OK = "#27ae60"
COLOR_WARN = "#f39c12"
COLOR_ALERT = "#e74c3c"
COLOR_DIM = "#999999"


@dataclass
class DeviceSummary:
    name: str
    device_type: str
    motion_events: int = 0
    temperature: float | None = None
    battery_level: int | None = None
    battery_state: str | None = None


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------

def _payload(reading: Reading) -> dict | None:
    try:
        value = json.loads(reading.value)
    except (TypeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def summarize_readings(devices: list[Device], readings: list[Reading]) -> list[DeviceSummary]:
    """Fold readings (oldest first) into one summary per device.

    Motion counts detected events, temperature and battery keep the latest
    value. Malformed payloads are skipped.
    """
    summaries = {d.id: DeviceSummary(name=d.name, device_type=d.device_type) for d in devices}
    for reading in readings:
        summary = summaries.get(reading.device_id)
        value = _payload(reading)
        if summary is None or value is None:
            continue
        try:
            if reading.kind == READING_MOTION:
                if value.get("motion") is True:
                    summary.motion_events += 1
            elif reading.kind == READING_TEMPERATURE:
                summary.temperature = float(value["temperature"])
            elif reading.kind == READING_BATTERY:
                summary.battery_level = int(value["battery_level"])
                summary.battery_state = value.get("battery_state")
        except (KeyError, TypeError, ValueError):
            logger.debug("Skipping malformed %s reading %s", reading.kind, reading.id)
    return sorted(summaries.values(), key=lambda s: s.name.lower())


def _cell(text: str, color: str | None = None, bold: bool = False) -> str:
    style = "padding:6px;border-bottom:1px solid #eee;"
    if color:
        style += f"color:{color};"
    if bold:
        style += "font-weight:bold;"
    return f'<td style="{style}">{html.escape(text)}</td>'


def _header_row(*labels: str) -> str:
    cells = "".join(
        f'<th style="text-align:left;padding:6px;border-bottom:2px solid #dee2e6;">'
        f"{html.escape(label)}</th>"
        for label in labels
    )
    return f'<tr style="background-color:#f8f9fa;">{cells}</tr>'


def _section(title: str, rows: list[str]) -> list[str]:
    return [
        '<tr><td style="padding:20px;">',
        f'<h2 style="margin:0 0 12px;font-size:16px;color:{COLOR_HEADER};">'
        f"{html.escape(title)}</h2>",
        '<table width="100%" cellpadding="0" cellspacing="0" '
        'style="font-size:12px;border-collapse:collapse;">',
        *rows,
        "</table>",
        "</td></tr>",
    ]


# ---------------------------------------------------------------------------
# Renderer
# ---------------------------------------------------------------------------

class SummaryRenderer:
    """Default DigestRenderer backed by the store."""

    def __init__(self, store: Store, health: HealthEvaluator,
                 battery_alert_threshold: int = 30, product_name: str = "hpoll",
                 window: timedelta = SUMMARY_WINDOW):
        self._store = store
        self._health = health
        self._battery_alert_threshold = battery_alert_threshold
        self._product_name = product_name
        self._window = window

    async def render_daily_summary(self, customer_id: int, time_zone_id: str,
                                   end_utc: datetime) -> str | None:
        start_utc = end_utc - self._window
        with self._store.session() as db:
            hubs = db.get_hubs_for_customer(customer_id)
            devices = [d for hub in hubs if hub.status == HUB_ACTIVE
                       for d in db.get_devices_by_hub(hub.id)]
            if not devices:
                logger.info("Customer %s has no devices, nothing to summarise", customer_id)
                return None
            readings = db.get_readings([d.id for d in devices], start_utc, end_utc)

        if not readings:
            logger.info("No readings for customer %s between %s and %s",
                        customer_id, start_utc.isoformat(), end_utc.isoformat())

        summaries = summarize_readings(devices, readings)
        return self.build_html(
            summaries, hubs, local_time(start_utc, time_zone_id),
            local_time(end_utc, time_zone_id), end_utc)

    def build_html(self, summaries: list[DeviceSummary], hubs: list[Hub],
                   start_local: datetime, end_local: datetime, now: datetime) -> str:
        period = f"{start_local:%d %b %Y %H:%M} to {end_local:%d %b %Y %H:%M} ({end_local:%Z})"

        motion_rows = [_header_row("Device", "Motion events")]
        temp_rows = [_header_row("Device", "Latest (°C)")]
        battery_rows = [_header_row("Device", "Battery", "State")]
        for s in summaries:
            if s.device_type == "motion_sensor" or s.motion_events:
                color = COLOR_OK if s.motion_events else COLOR_DIM
                motion_rows.append(
                    f"<tr>{_cell(s.name)}{_cell(str(s.motion_events), color, bold=True)}</tr>")
            if s.temperature is not None:
                temp_rows.append(f"<tr>{_cell(s.name)}{_cell(f'{s.temperature:.1f}')}</tr>")
            if s.battery_level is not None:
                low = s.battery_level < self._battery_alert_threshold
                battery_rows.append(
                    f"<tr>{_cell(s.name)}"
                    f"{_cell(f'{s.battery_level}%', COLOR_ALERT if low else COLOR_OK, bold=low)}"
                    f"{_cell(s.battery_state or 'unknown')}</tr>")

        health_rows = [_header_row("Hub", "Status", "Last success")]
        for hub in hubs:
            health = self._health.evaluate(hub, now)
            if hub.status != HUB_ACTIVE:
                label, color = hub.status, COLOR_WARN
            elif health["needs_attention"]:
                label, color = "Needs attention", COLOR_ALERT
            else:
                label, color = "OK", COLOR_OK
            last = hub.last_success_at.strftime("%d %b %H:%M UTC") if hub.last_success_at else "never"
            health_rows.append(f"<tr>{_cell(hub.bridge_id)}{_cell(label, color, bold=True)}"
                               f"{_cell(last)}</tr>")

        parts = [
            "<!DOCTYPE html>",
            '<html><head><meta charset="utf-8"></head>',
            '<body style="margin:0;padding:20px;font-family:Arial,Helvetica,sans-serif;'
            'background-color:#f5f5f5;">',
            '<table width="100%" cellpadding="0" cellspacing="0" style="max-width:600px;'
            'margin:0 auto;background-color:#ffffff;border-radius:8px;">',
            f'<tr><td style="background-color:{COLOR_HEADER};color:#ffffff;padding:20px;'
            'text-align:center;">',
            '<h1 style="margin:0;font-size:22px;">Daily Activity Summary</h1>',
            f'<p style="margin:5px 0 0;font-size:14px;">{html.escape(period)}</p>',
            "</td></tr>",
        ]
        parts += _section("Motion", motion_rows)
        if len(temp_rows) > 1:
            parts += _section("Temperature", temp_rows)
        if len(battery_rows) > 1:
            parts += _section("Batteries", battery_rows)
        parts += _section("Hubs", health_rows)
        parts += [
            f'<tr><td style="background-color:#f8f9fa;padding:15px;text-align:center;'
            f'font-size:11px;color:{COLOR_DIM};">',
            f"This is an automated summary from {html.escape(self._product_name)}.",
            "</td></tr>",
            "</table></body></html>",
        ]
        return "\n".join(parts)
