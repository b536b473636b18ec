from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Tuple

DAY_ALIASES = {
    "mon": "mon", "monday": "mon",
    "tue": "tue", "tues": "tue", "tuesday": "tue",
    "wed": "wed", "weds": "wed", "wednesday": "wed",
    "thu": "thu", "thur": "thu", "thurs": "thu", "thursday": "thu",
    "fri": "fri", "friday": "fri",
    "sat": "sat", "saturday": "sat",
    "sun": "sun", "sunday": "sun",
}

DOW = {"mon": 0, "tue": 1, "wed": 2, "thu": 3, "fri": 4, "sat": 5, "sun": 6}
# "sat" and "sun" are ordinary words; accepted only after next/this/on or before a date or time
DOW_RE = (
    r"(mon(?:day)?|tue(?:s|sday)?|wed(?:s|nesday)?|thu(?:r|rs|rsday)?|fri(?:day)?|saturday|sunday"
    r"|(?:(?<=next\s)|(?<=this\s)|(?<=on\s))(?:sat|sun)"
    r"|(?:sat|sun)(?=\.?\s*(?:\d|at\s*\d|@|morning\b|afternoon\b|evening\b|noon\b)))"
)

MONTHS = {
    "jan": 1, "january": 1,
    "feb": 2, "february": 2,
    "mar": 3, "march": 3,
    "apr": 4, "april": 4,
    "may": 5,
    "jun": 6, "june": 6,
    "jul": 7, "july": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}
MONTH_RE = (
    r"(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)

AMPM_RE = r"(a\.?m\.?|p\.?m\.?)"

# "2pm", "2:30 pm", "10 a.m."
TIME_12H_RE = re.compile(rf"\b(\d{{1,2}})(?::(\d{{2}}))?\s*{AMPM_RE}(?![a-z])", re.IGNORECASE)
# "14:30"
TIME_24H_RE = re.compile(r"\b([01]?\d|2[0-3]):([0-5]\d)\b(?!\s*(?:a\.?m|p\.?m))", re.IGNORECASE)
NOON_RE = re.compile(r"\b(noon|midday|midnight)\b", re.IGNORECASE)

# "2:00pm-3:00pm", produced by time range rules
CANONICAL_RANGE_RE = re.compile(
    r"(\d{1,2}):(\d{2})(am|pm)\s*-\s*(\d{1,2}):(\d{2})(am|pm)",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ClockTime:
    hour: int    # 0-23
    minute: int

    def canonical(self) -> str:
        """12-hour rendering used inside range strings, e.g. '2:00pm'."""
        h = self.hour % 12 or 12
        ampm = "am" if self.hour < 12 else "pm"
        return f"{h}:{self.minute:02d}{ampm}"

    def plus_minutes(self, minutes: int) -> "ClockTime":
        total = (self.hour * 60 + self.minute + minutes) % (24 * 60)
        return ClockTime(total // 60, total % 60)


def normalize_ampm(value: str | None) -> str:
    if not value:
        return ""
    v = value.lower().replace(".", "")
    return v if v in ("am", "pm") else ""


def to_24h(h: int, m: int, ap: str) -> Tuple[int, int]:
    ap = normalize_ampm(ap)
    if ap == "am":
        if h == 12:
            h = 0
    elif ap == "pm":
        if h != 12:
            h += 12
    return h, m


def make_clock(h: int, m: int, ap: str) -> Optional[ClockTime]:
    """Build a ClockTime, or None when the fields do not describe a real time."""
    if m < 0 or m > 59:
        return None
    if normalize_ampm(ap):
        if h < 1 or h > 12:
            return None
    elif h > 23:
        return None
    hh, mm = to_24h(h, m, ap)
    return ClockTime(hh, mm)


def find_clock_time(text: str) -> Optional[ClockTime]:
    """First explicit clock time in text; canonical ranges yield their start."""
    if not text:
        return None

    m = CANONICAL_RANGE_RE.search(text)
    if m:
        return make_clock(int(m.group(1)), int(m.group(2)), m.group(3))

    m = TIME_12H_RE.search(text)
    if m:
        return make_clock(int(m.group(1)), int(m.group(2) or 0), m.group(3))

    m = TIME_24H_RE.search(text)
    if m:
        return make_clock(int(m.group(1)), int(m.group(2)), "")

    m = NOON_RE.search(text)
    if m:
        return ClockTime(0, 0) if m.group(1).lower() == "midnight" else ClockTime(12, 0)

    return None


def weekday_index(token: str) -> Optional[int]:
    key = DAY_ALIASES.get(token.lower().strip("."))
    if key is None:
        return None
    return DOW[key]


def month_index(token: str) -> Optional[int]:
    return MONTHS.get(token.lower().strip("."))
