"""
Timezone resolution.

Every instant that leaves the engine for a calendar provider goes through
`stamp_for_calendar`, which attaches an explicit IANA zone. Instants inside
the engine are always timezone-aware; the host's local zone is never consulted.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, time, timezone
from typing import Dict, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.parser import isoparse

from ..config import DEFAULT_TIMEZONE
from ..infra.calendar_provider import CalendarProvider, CalendarStamp
from ..parsing.temporal import TemporalParser

logger = logging.getLogger(__name__)

ZONE_ABBREVIATIONS = {
    # US
    "pst": "America/Los_Angeles",
    "pdt": "America/Los_Angeles",
    "mst": "America/Denver",
    "mdt": "America/Denver",
    "cst": "America/Chicago",
    "cdt": "America/Chicago",
    "est": "America/New_York",
    "edt": "America/New_York",
    "akst": "America/Anchorage",
    "akdt": "America/Anchorage",
    "hst": "Pacific/Honolulu",
    "hdt": "Pacific/Honolulu",
    # international
    "gmt": "Europe/London",
    "bst": "Europe/London",
    "cet": "Europe/Paris",
    "cest": "Europe/Paris",
    "ist": "Asia/Kolkata",
    "jst": "Asia/Tokyo",
    "aest": "Australia/Sydney",
    "aedt": "Australia/Sydney",
    "nzst": "Pacific/Auckland",
    "nzdt": "Pacific/Auckland",
}

_ZONE_IN_TEXT_RE = re.compile(
    r"\b\d{1,2}(?::\d{2})?\s*(?:a\.?m\.?|p\.?m\.?)?\s+("
    + "|".join(sorted(ZONE_ABBREVIATIONS, key=len, reverse=True))
    + r")\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ZonedInstant:
    absolute_instant: datetime  # UTC
    formatted_local: str
    zone_id: str
    has_time: bool = True


def load_zone(zone_id: str) -> ZoneInfo:
    """ZoneInfo for an IANA id; raises ValueError for unknown ids."""
    if not zone_id or not isinstance(zone_id, str):
        raise ValueError(f"invalid zone id: {zone_id!r}")
    try:
        return ZoneInfo(zone_id)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"unknown zone id: {zone_id!r}") from e


def is_valid_zone(zone_id: str) -> bool:
    try:
        load_zone(zone_id)
        return True
    except ValueError:
        return False


def extract_zone_from_text(text: str) -> Optional[str]:
    """IANA zone for an abbreviation written after a clock time ("2pm EST"), else None."""
    if not text:
        return None
    m = _ZONE_IN_TEXT_RE.search(text)
    if not m:
        return None
    return ZONE_ABBREVIATIONS.get(m.group(1).lower())


def format_local(instant: datetime, zone_id: str) -> str:
    local = instant.astimezone(load_zone(zone_id))
    hour = local.hour % 12 or 12
    ampm = "AM" if local.hour < 12 else "PM"
    return f"{local.strftime('%A, %B')} {local.day} at {hour}:{local.minute:02d} {ampm} {local.tzname()}"


def stamp_for_calendar(instant: datetime, zone_id: str) -> CalendarStamp:
    if instant.tzinfo is None:
        raise ValueError("refusing to stamp a naive datetime; instants must be timezone-aware")
    local = instant.astimezone(load_zone(zone_id))
    return CalendarStamp(local_date_time=local.isoformat(), zone_id=zone_id)


def from_calendar_stamp(stamp: CalendarStamp) -> datetime:
    """Absolute UTC instant for a stamp; inverse of stamp_for_calendar."""
    zone = load_zone(stamp.zone_id)
    local = isoparse(stamp.local_date_time)
    if local.tzinfo is None:
        local = local.replace(tzinfo=zone)
    return local.astimezone(timezone.utc)


class TimezoneResolver:
    """
    Resolves the calendar owner's zone for one request.

    The cache lives on the instance, and an instance is built per request, so
    one user's zone can never leak into another user's request.
    """

    def __init__(
        self,
        provider: Optional[CalendarProvider] = None,
        default_zone: str = DEFAULT_TIMEZONE,
        parser: Optional[TemporalParser] = None,
    ) -> None:
        self.provider = provider
        self.default_zone = default_zone
        self.parser = parser or TemporalParser()
        self._cache: Dict[str, str] = {}

    def resolve_user_zone(self, user_id: str) -> str:
        if user_id in self._cache:
            return self._cache[user_id]

        zone_id = self.default_zone
        if self.provider is None:
            logger.warning("[tz] no calendar provider user_id=%s fallback=%s", user_id, zone_id)
        else:
            try:
                candidate = self.provider.get_timezone(user_id)
                if is_valid_zone(candidate):
                    zone_id = candidate
                else:
                    logger.warning("[tz] provider returned unknown zone user_id=%s zone=%r fallback=%s",
                                   user_id, candidate, zone_id)
            except Exception as e:
                logger.warning("[tz] zone lookup failed user_id=%s fallback=%s err=%r", user_id, zone_id, e)

        self._cache[user_id] = zone_id
        return zone_id

    def parse_in_zone(self, text: str, zone_id: str, now: Optional[datetime] = None) -> Optional[ZonedInstant]:
        zone_id = extract_zone_from_text(text) or zone_id
        try:
            zone = load_zone(zone_id)
        except ValueError:
            logger.warning("[tz] unknown zone for parse zone=%r fallback=%s", zone_id, self.default_zone)
            zone_id = self.default_zone
            zone = load_zone(zone_id)

        reference = (now or datetime.now(timezone.utc)).astimezone(zone)
        parsed = self.parser.parse(text, reference)
        if not parsed.is_valid:
            logger.info("[tz] unparseable text=%r zone=%s err=%s", text, zone_id, parsed.error)
            return None

        return ZonedInstant(
            absolute_instant=parsed.instant.astimezone(timezone.utc),
            formatted_local=format_local(parsed.instant, zone_id),
            zone_id=zone_id,
            has_time=parsed.has_time,
        )

    def stamp_for_calendar(self, instant: datetime, zone_id: str) -> CalendarStamp:
        return stamp_for_calendar(instant, zone_id)

    def from_calendar_stamp(self, stamp: CalendarStamp) -> datetime:
        return from_calendar_stamp(stamp)


def parse_preferred_date(value: str, zone_id: str) -> Tuple[datetime, bool]:
    """
    Instant for a stored preferred date and whether it carried a clock time.

    Bare dates ("2026-10-20") resolve to local midnight in `zone_id`.
    """
    parsed = isoparse(value)
    if len(value.strip()) <= 10:
        return datetime.combine(parsed.date(), time(0, 0), tzinfo=load_zone(zone_id)), False
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=load_zone(zone_id))
    return parsed, True


def pick_preferred_start(values: Sequence[str], zone_id: str) -> Optional[Tuple[datetime, bool]]:
    """First preferred date carrying a clock time, else the first readable one."""
    parsed = []
    for value in values:
        try:
            parsed.append(parse_preferred_date(value, zone_id))
        except (ValueError, OverflowError):
            logger.warning("[tz] unreadable preferred date value=%r", value)
    for item in parsed:
        if item[1]:
            return item
    return parsed[0] if parsed else None
