# hpoll Worker
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Protocols for the collaborators the background loops depend on.

The polling and token loops talk to the bridge only through BridgeClient,
and the digest loop renders and sends through DigestRenderer and
EmailSender. HueApiClient, DigestRenderer (default) and the mailer senders
implement these; tests substitute fakes.
"""

from datetime import datetime
from typing import Protocol, runtime_checkable

from .hue_model import (
    BridgeResponse,
    DevicePowerResource,
    DeviceResource,
    MotionResource,
    TemperatureResource,
    TokenResponse,
)


@runtime_checkable
class BridgeClient(Protocol):
    """Stateless wire client for the bridge resource API and token endpoint."""

    async def fetch_motion_sensors(
            self, access_token: str, application_key: str) -> BridgeResponse[MotionResource]:
        ...

    async def fetch_temperature_sensors(
            self, access_token: str, application_key: str) -> BridgeResponse[TemperatureResource]:
        ...

    async def fetch_devices(
            self, access_token: str, application_key: str) -> BridgeResponse[DeviceResource]:
        ...

    async def fetch_device_power(
            self, access_token: str, application_key: str) -> BridgeResponse[DevicePowerResource]:
        ...

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        ...


@runtime_checkable
class DigestRenderer(Protocol):
    async def render_daily_summary(self, customer_id: int, time_zone_id: str,
                                   end_utc: datetime) -> str | None:
        """Return the digest body, or None when there is nothing to report."""
        ...


@runtime_checkable
class EmailSender(Protocol):
    async def send(self, to: list[str], subject: str, html_body: str,
                   cc: list[str] | None = None, bcc: list[str] | None = None) -> None:
        """Send one message; raises on failure."""
        ...
