from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Pattern

from .clock import AMPM_RE, ClockTime, make_clock, normalize_ampm

DEFAULT_SPAN_MINUTES = 60


@dataclass(frozen=True)
class TimeRange:
    start: ClockTime
    end: ClockTime
    rule: str

    def canonical(self) -> str:
        return f"{self.start.canonical()}-{self.end.canonical()}"


@dataclass(frozen=True)
class TimeRangeRule:
    name: str
    pattern: Pattern
    build: Callable[[re.Match], Optional[TimeRange]]


def _from_to(m: re.Match) -> Optional[TimeRange]:
    h1, m1, ap1, h2, m2, ap2 = m.groups()
    end_ap = normalize_ampm(ap2)
    start_ap = normalize_ampm(ap1) or end_ap or "am"
    start = make_clock(int(h1), int(m1 or 0), start_ap)
    end = make_clock(int(h2), int(m2 or 0), end_ap or start_ap)
    if start is None or end is None:
        return None
    if not normalize_ampm(ap1) and (start.hour, start.minute) >= (end.hour, end.minute):
        flipped = make_clock(int(h1), int(m1 or 0), "am")
        if flipped is not None:
            start = flipped
    return TimeRange(start, end, "from_to")


def _dash_range(m: re.Match) -> Optional[TimeRange]:
    h1, m1, h2, m2, ap = m.groups()
    start = make_clock(int(h1), int(m1 or 0), ap)
    end = make_clock(int(h2), int(m2 or 0), ap)
    if start is None or end is None:
        return None
    # "11-12pm" means 11am to noon
    if (start.hour, start.minute) >= (end.hour, end.minute) and normalize_ampm(ap) == "pm":
        flipped = make_clock(int(h1), int(m1 or 0), "am")
        if flipped is not None:
            start = flipped
    return TimeRange(start, end, "dash_range")


def _single(name: str) -> Callable[[re.Match], Optional[TimeRange]]:
    def build(m: re.Match) -> Optional[TimeRange]:
        h, mm, ap = m.groups()
        start = make_clock(int(h), int(mm or 0), ap)
        if start is None:
            return None
        return TimeRange(start, start.plus_minutes(DEFAULT_SPAN_MINUTES), name)
    return build


# Order is significant: first match wins.
TIME_RANGE_RULES: List[TimeRangeRule] = [
    TimeRangeRule(
        "from_to",
        re.compile(
            rf"\bfrom\s+(\d{{1,2}})(?::(\d{{2}}))?\s*{AMPM_RE}?\s+(?:to|until|till|-)\s+(\d{{1,2}})(?::(\d{{2}}))?\s*{AMPM_RE}",
            re.IGNORECASE,
        ),
        _from_to,
    ),
    TimeRangeRule(
        "dash_range",
        re.compile(rf"\b(\d{{1,2}})(?::(\d{{2}}))?\s*[-–]\s*(\d{{1,2}})(?::(\d{{2}}))?\s*{AMPM_RE}(?![a-z])", re.IGNORECASE),
        _dash_range,
    ),
    TimeRangeRule(
        "at_time",
        re.compile(rf"\bat\s+(\d{{1,2}})(?::(\d{{2}}))?\s*{AMPM_RE}(?![a-z])", re.IGNORECASE),
        _single("at_time"),
    ),
    TimeRangeRule(
        "standalone_time",
        re.compile(rf"\b(\d{{1,2}})(?::(\d{{2}}))?\s*{AMPM_RE}(?![a-z])", re.IGNORECASE),
        _single("standalone_time"),
    ),
]


def find_time_range(text: str, rules: Optional[List[TimeRangeRule]] = None) -> Optional[TimeRange]:
    for rule in rules or TIME_RANGE_RULES:
        m = rule.pattern.search(text or "")
        if not m:
            continue
        built = rule.build(m)
        if built is not None:
            return built
    return None
