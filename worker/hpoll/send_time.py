"""Next digest send time across time zones."""

import logging
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


def parse_time_list(raw: str | list[str] | None) -> list[time]:
    """Parse "HH:MM" entries (comma string or list); invalid entries are dropped."""
    if not raw:
        return []
    parts = raw.split(",") if isinstance(raw, str) else raw
    result = []
    for part in parts:
        part = part.strip()
        if not part:
            continue
        try:
            hh, mm = part.split(":")
            result.append(time(int(hh), int(mm)))
        except ValueError:
            logger.debug("Ignoring invalid send time %r", part)
    return result


def _to_utc(day: date, at: time, tz) -> datetime:
    """Convert a local wall-clock time to UTC.

    With fold=0 a wall time inside a spring-forward gap resolves with the
    pre-transition offset, which lands it past the gap (02:30 becomes 03:30
    local on a one-hour shift). An ambiguous fall-back time resolves to its
    first occurrence.
    """
    return datetime.combine(day, at, tzinfo=tz).astimezone(timezone.utc)


def compute_next_send_time(send_times, now: datetime,
                           tz_name: str | None = None) -> datetime | None:
    """Soonest configured time strictly after now, as an aware UTC datetime.

    send_times are wall-clock times in tz_name (UTC when None). Times are
    sorted and scanned in order; if all of today's have passed, the first
    time tomorrow is returned. Returns None when no valid time is given or
    the zone is unknown.
    """
    times = sorted(parse_time_list(send_times))
    if not times:
        return None

    if tz_name:
        try:
            tz = ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown time zone %r", tz_name)
            return None
    else:
        tz = timezone.utc

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now_utc = now.astimezone(timezone.utc)
    today = now_utc.astimezone(tz).date()

    for at in times:
        candidate = _to_utc(today, at, tz)
        if candidate > now_utc:
            return candidate

    return _to_utc(today + timedelta(days=1), times[0], tz)


def next_send_time_for(send_times_local: str, time_zone_id: str, now: datetime,
                       default_send_times_utc: list[str] | None = None) -> datetime | None:
    """Per-customer local send times, falling back to the configured UTC times."""
    if send_times_local and send_times_local.strip():
        return compute_next_send_time(send_times_local, now, time_zone_id)
    if default_send_times_utc:
        return compute_next_send_time(default_send_times_utc, now)
    return None


def local_time(now: datetime, time_zone_id: str | None) -> datetime:
    """now in time_zone_id, or in UTC when the zone is unknown."""
    if time_zone_id:
        try:
            return now.astimezone(ZoneInfo(time_zone_id))
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown time zone %r, using UTC", time_zone_id)
    return now.astimezone(timezone.utc)
