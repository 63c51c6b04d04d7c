"""Data models for the Hue remote API (CLIP v2 resources and OAuth tokens)."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

CLIP_V2_BASE_URL = "https://api.meethue.com/route/clip/v2"
TOKEN_URL = "https://api.meethue.com/v2/oauth2/token"

# Resource paths (relative to CLIP_V2_BASE_URL)
PATH_MOTION = "/resource/motion"
PATH_TEMPERATURE = "/resource/temperature"
PATH_DEVICE = "/resource/device"
PATH_DEVICE_POWER = "/resource/device_power"

APPLICATION_KEY_HEADER = "hue-application-key"

T = TypeVar("T")


def parse_timestamp(raw: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp from the bridge into an aware UTC datetime."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        ts = raw
    else:
        text = str(raw)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        ts = datetime.fromisoformat(text)
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


@dataclass
class ResourceRef:
    rid: str = ""
    rtype: str = ""

    @classmethod
    def from_dict(cls, d: dict | None) -> "ResourceRef":
        d = d or {}
        return cls(rid=d.get("rid", ""), rtype=d.get("rtype", ""))


@dataclass
class MotionReport:
    motion: bool
    changed: datetime | None


@dataclass
class MotionResource:
    id: str
    owner: ResourceRef
    enabled: bool = True
    report: MotionReport | None = None

    @classmethod
    def from_dict(cls, d: dict) -> "MotionResource":
        raw = (d.get("motion") or {}).get("motion_report")
        report = None
        if raw is not None:
            report = MotionReport(
                motion=bool(raw.get("motion", False)),
                changed=parse_timestamp(raw.get("changed")),
            )
        return cls(
            id=d.get("id", ""),
            owner=ResourceRef.from_dict(d.get("owner")),
            enabled=d.get("enabled", True),
            report=report,
        )


@dataclass
class TemperatureReport:
    temperature: float
    changed: datetime | None


@dataclass
class TemperatureResource:
    id: str
    owner: ResourceRef
    enabled: bool = True
    report: TemperatureReport | None = None

    @classmethod
    def from_dict(cls, d: dict) -> "TemperatureResource":
        raw = (d.get("temperature") or {}).get("temperature_report")
        report = None
        if raw is not None:
            report = TemperatureReport(
                temperature=float(raw["temperature"]),
                changed=parse_timestamp(raw.get("changed")),
            )
        return cls(
            id=d.get("id", ""),
            owner=ResourceRef.from_dict(d.get("owner")),
            enabled=d.get("enabled", True),
            report=report,
        )


@dataclass
class DeviceResource:
    id: str
    name: str = ""
    archetype: str = ""
    model_id: str = ""
    product_name: str = ""
    services: list[ResourceRef] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: dict) -> "DeviceResource":
        metadata = d.get("metadata") or {}
        product = d.get("product_data") or {}
        return cls(
            id=d.get("id", ""),
            name=metadata.get("name", ""),
            archetype=metadata.get("archetype", ""),
            model_id=product.get("model_id", ""),
            product_name=product.get("product_name", ""),
            services=[ResourceRef.from_dict(s) for s in d.get("services", [])],
        )


@dataclass
class PowerState:
    battery_level: int | None = None
    battery_state: str | None = None


@dataclass
class DevicePowerResource:
    id: str
    owner: ResourceRef
    power_state: PowerState = field(default_factory=PowerState)

    @classmethod
    def from_dict(cls, d: dict) -> "DevicePowerResource":
        raw = d.get("power_state") or {}
        level = raw.get("battery_level")
        return cls(
            id=d.get("id", ""),
            owner=ResourceRef.from_dict(d.get("owner")),
            power_state=PowerState(
                battery_level=int(level) if level is not None else None,
                battery_state=raw.get("battery_state"),
            ),
        )


@dataclass
class BridgeError:
    description: str = ""


@dataclass
class BridgeResponse(Generic[T]):
    """Envelope returned by every CLIP v2 resource endpoint."""
    data: list[T] = field(default_factory=list)
    errors: list[BridgeError] = field(default_factory=list)
    skipped: int = 0                    # malformed items dropped while parsing

    @classmethod
    def from_dict(cls, d: dict,
                  parse_item: Callable[[dict], T]) -> "BridgeResponse[T]":
        items = []
        skipped = 0
        for raw in d.get("data") or []:
            try:
                items.append(parse_item(raw))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                skipped += 1
                logger.warning("Skipping malformed resource %r: %s",
                               raw.get("id") if isinstance(raw, dict) else raw, e)
        return cls(
            data=items,
            errors=[BridgeError(description=e.get("description", ""))
                    for e in d.get("errors") or []],
            skipped=skipped,
        )


@dataclass
class TokenResponse:
    access_token: str
    expires_in: int
    refresh_token: str = ""
    token_type: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> "TokenResponse":
        return cls(
            access_token=d["access_token"],
            expires_in=int(d.get("expires_in", 0)),
            refresh_token=d.get("refresh_token") or "",
            token_type=d.get("token_type", ""),
        )
