"""Storage entities for customers, hubs, devices, readings and poll logs."""

from dataclasses import dataclass, field
from datetime import datetime, timezone

# Hub lifecycle status
HUB_ACTIVE = "active"
HUB_INACTIVE = "inactive"
HUB_NEEDS_REAUTH = "needs_reauth"
HUB_STATUSES = frozenset({HUB_ACTIVE, HUB_INACTIVE, HUB_NEEDS_REAUTH})

CUSTOMER_ACTIVE = "active"
CUSTOMER_INACTIVE = "inactive"

# Reading kinds
READING_MOTION = "motion"
READING_TEMPERATURE = "temperature"
READING_BATTERY = "battery"
READING_KINDS = frozenset({READING_MOTION, READING_TEMPERATURE, READING_BATTERY})

# Device types, keyed by the resource that first reported the device
DEVICE_MOTION_SENSOR = "motion_sensor"
DEVICE_TEMPERATURE_SENSOR = "temperature_sensor"
DEVICE_BATTERY = "battery"

ERROR_MESSAGE_MAX = 500


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def truncate_error(message: str, limit: int = ERROR_MESSAGE_MAX) -> str:
    return message if len(message) <= limit else message[:limit]


@dataclass
class Customer:
    name: str
    email: str                          # comma-separated "to" addresses
    id: int | None = None
    cc_emails: str = ""
    bcc_emails: str = ""
    status: str = CUSTOMER_ACTIVE
    time_zone_id: str = "UTC"           # IANA zone, e.g. "Australia/Sydney"
    send_times_local: str = ""          # "HH:MM,HH:MM" in time_zone_id; empty = defaults
    next_send_time_utc: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Device:
    hub_id: int
    bridge_device_id: str               # owner rid reported by the bridge
    device_type: str = ""
    name: str = ""
    id: int | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Hub:
    bridge_id: str
    customer_id: int | None = None
    id: int | None = None
    application_key: str = ""
    access_token: str = ""
    refresh_token: str = ""
    token_expires_at: datetime = field(default_factory=utcnow)
    status: str = HUB_ACTIVE
    consecutive_failures: int = 0
    last_polled_at: datetime | None = None
    last_success_at: datetime | None = None
    last_battery_poll_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    devices: list[Device] = field(default_factory=list)

    def find_device(self, bridge_device_id: str) -> Device | None:
        for device in self.devices:
            if device.bridge_device_id == bridge_device_id:
                return device
        return None


@dataclass(frozen=True)
class Reading:
    device_id: int
    timestamp: datetime
    kind: str
    value: str                          # JSON-encoded payload
    id: int | None = None


@dataclass
class PollingLogEntry:
    hub_id: int
    timestamp: datetime
    success: bool = False
    error_message: str | None = None
    api_calls_made: int = 0
    id: int | None = None
