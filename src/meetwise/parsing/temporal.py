"""
Free-text date/time parsing.

`TemporalParser.parse` walks an ordered rule table and returns the first match
as a `ParsedInstant`. Rules are grouped in three tiers, tried in this order:

  1. relative keywords ("today", "tomorrow", "next week", weekday names)
  2. standard numeric / ISO formats ("2026-10-20", "10/20/2026")
  3. fuzzy fallbacks (month name + day, bare clock times)

All resolution happens in the timezone carried by the caller's `now`. A clock
time found anywhere in the text is applied to the resolved date. The parser
never raises: unparseable or out-of-range input comes back with
`is_valid=False` and an error string.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, List, Optional, Pattern, Tuple

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta

from ..config import FUZZY_TOMORROW_CUTOFF_HOUR
from ..scheduling.models import ParsedInstant
from .clock import DOW_RE, MONTH_RE, ClockTime, find_clock_time, month_index, weekday_index

logger = logging.getLogger(__name__)

CONF_RELATIVE_STRONG = 95
CONF_RELATIVE = 90
CONF_STANDARD = 85
CONF_FUZZY_TIME = 75
CONF_FUZZY_MONTH_DAY = 70


@dataclass(frozen=True)
class Resolution:
    day: date
    clock: Optional[ClockTime] = None
    instant: Optional[datetime] = None  # set when the text carried a full timestamp


@dataclass(frozen=True)
class DateRule:
    name: str
    pattern: Pattern
    resolve: Callable[[re.Match, datetime, "TemporalParser"], Optional[Resolution]]
    confidence: int


def next_business_day(d: date) -> date:
    while d.weekday() >= 5:
        d += timedelta(days=1)
    return d


def _today(m, now, parser):
    return Resolution(now.date())


def _tomorrow(m, now, parser):
    return Resolution(now.date() + timedelta(days=1))


def _day_after_tomorrow(m, now, parser):
    return Resolution(now.date() + timedelta(days=2))


def _this_week(m, now, parser):
    return Resolution(next_business_day(now.date()))


def _next_week(m, now, parser):
    return Resolution(next_business_day(now.date() + timedelta(days=7)))


def _weekday(m, now, parser):
    wd = weekday_index(m.group(2))
    if wd is None:
        return None
    # strictly after today: "monday" said on a monday means next monday
    return Resolution(now.date() + relativedelta(days=+1, weekday=wd))


def _iso(m, now, parser):
    raw = m.group(0)
    parsed = isoparse(raw)
    parser.check_year(parsed.year, now)
    if "T" not in raw and " " not in raw.strip():
        return Resolution(parsed.date())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=now.tzinfo)
    return Resolution(parsed.date(), instant=parsed)


def _us_numeric(m, now, parser):
    month, day = int(m.group(1)), int(m.group(2))
    year_raw = m.group(3)
    if year_raw:
        year = int(year_raw)
        if year < 100:
            year += 2000
        parser.check_year(year, now)
        return Resolution(date(year, month, day))
    return Resolution(_roll_forward(month, day, now.date()))


def _month_day(m, now, parser):
    groups = m.groupdict()
    month = month_index(groups["month"])
    if month is None:
        return None
    day = int(groups["day"])
    if groups.get("year"):
        year = int(groups["year"])
        parser.check_year(year, now)
        return Resolution(date(year, month, day))
    return Resolution(_roll_forward(month, day, now.date()))


def _bare_time(m, now, parser):
    clock = find_clock_time(m.string)
    if clock is None:
        return None
    day = now.date()
    if now.hour >= parser.tomorrow_cutoff_hour:
        day += timedelta(days=1)
    return Resolution(day, clock=clock)


def _roll_forward(month: int, day: int, today: date) -> date:
    """Year for a month/day without one: this year, or next year if already passed."""
    candidate = date(today.year, month, day)
    if candidate < today:
        return date(today.year + 1, month, day)
    return candidate


_CLOCK_HINT = re.compile(
    r"(\d{1,2}(?::\d{2})?\s*(?:a\.?m\.?|p\.?m\.?)(?![a-z])|\b(?:[01]?\d|2[0-3]):[0-5]\d\b|\bnoon\b|\bmidday\b|\bmidnight\b)",
    re.IGNORECASE,
)

# Order is significant: first match wins.
RULES: List[DateRule] = [
    # relative keywords
    DateRule("day_after_tomorrow", re.compile(r"\bday\s+after\s+tomorrow\b", re.I), _day_after_tomorrow, CONF_RELATIVE),
    DateRule("today", re.compile(r"\b(today|tonight)\b", re.I), _today, CONF_RELATIVE_STRONG),
    DateRule("tomorrow", re.compile(r"\b(tomorrow|tmrw|tmr)\b", re.I), _tomorrow, CONF_RELATIVE_STRONG),
    DateRule("next_week", re.compile(r"\bnext\s+week\b", re.I), _next_week, CONF_RELATIVE),
    DateRule("this_week", re.compile(r"\bthis\s+week\b", re.I), _this_week, CONF_RELATIVE),
    DateRule("weekday", re.compile(rf"\b(?:(next|this|on)\s+)?{DOW_RE}\b\.?", re.I), _weekday, CONF_RELATIVE),
    # standard formats
    DateRule(
        "iso",
        re.compile(r"\b\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?(?![\d:])"),
        _iso,
        CONF_STANDARD,
    ),
    DateRule(
        "us_numeric",
        re.compile(r"\b(\d{1,2})[/-](\d{1,2})(?:[/-](\d{4}|\d{2}))?\b(?![:/-]|\s*(?:a\.?m|p\.?m))", re.I),
        _us_numeric,
        CONF_STANDARD,
    ),
    # fuzzy
    DateRule(
        "month_day",
        re.compile(
            rf"\b(?P<month>{MONTH_RE})\.?\s+(?P<day>\d{{1,2}})(?:st|nd|rd|th)?\b(?!\s*(?:a\.?m|p\.?m|:))(?:,?\s+(?P<year>\d{{4}}))?",
            re.I,
        ),
        _month_day,
        CONF_FUZZY_MONTH_DAY,
    ),
    DateRule(
        "day_month",
        re.compile(
            rf"\b(?P<day>\d{{1,2}})(?:st|nd|rd|th)?\s+(?:of\s+)?(?P<month>{MONTH_RE})\b(?:,?\s+(?P<year>\d{{4}}))?",
            re.I,
        ),
        _month_day,
        CONF_FUZZY_MONTH_DAY,
    ),
    DateRule("bare_time", _CLOCK_HINT, _bare_time, CONF_FUZZY_TIME),
]


class YearOutOfRange(ValueError):
    pass


class TemporalParser:
    def __init__(self, rules: Optional[List[DateRule]] = None, tomorrow_cutoff_hour: int = FUZZY_TOMORROW_CUTOFF_HOUR) -> None:
        self.rules = list(rules) if rules is not None else list(RULES)
        self.tomorrow_cutoff_hour = tomorrow_cutoff_hour

    def check_year(self, year: int, now: datetime) -> None:
        low, high = now.year - 1, now.year + 5
        if not low <= year <= high:
            raise YearOutOfRange(f"year {year} outside allowed range [{low}, {high}]")

    def parse(self, text: str, now: Optional[datetime] = None) -> ParsedInstant:
        try:
            return self._parse(text, now)
        except Exception as e:  # the parser must never raise
            logger.warning("[temporal] unexpected parse failure text=%r err=%r", text, e)
            return ParsedInstant.invalid(str(text), f"parse failure: {e}")

    def _parse(self, text: str, now: Optional[datetime]) -> ParsedInstant:
        raw = text if isinstance(text, str) else ("" if text is None else str(text))
        if not raw.strip():
            return ParsedInstant.invalid(raw, "empty input")

        if now is None:
            now = datetime.now(timezone.utc)
        if now.tzinfo is None:
            return ParsedInstant.invalid(raw, "reference time must be timezone-aware")

        for rule in self.rules:
            m = rule.pattern.search(raw)
            if not m:
                continue
            try:
                resolution = rule.resolve(m, now, self)
            except YearOutOfRange as e:
                return ParsedInstant.invalid(raw, str(e), strategy=rule.name)
            except (ValueError, OverflowError) as e:
                logger.debug("[temporal] rule rejected rule=%s text=%r err=%s", rule.name, raw, e)
                continue
            if resolution is None:
                continue
            return self._finish(raw, now, rule, m, resolution)

        return ParsedInstant.invalid(raw, f"unrecognized date/time expression: {raw!r}")

    def _finish(self, raw: str, now: datetime, rule: DateRule, m: re.Match, res: Resolution) -> ParsedInstant:
        has_time = True
        if res.instant is not None:
            instant = res.instant
        else:
            clock = res.clock
            if clock is None:
                remainder = raw[: m.start()] + " " + raw[m.end():]
                clock = find_clock_time(remainder)
            if clock is None:
                has_time = False
                clock = ClockTime(0, 0)
            instant = _localize(res.day, clock, now)

        low, high = now - relativedelta(years=1), now + relativedelta(years=5)
        if not low <= instant <= high:
            return ParsedInstant.invalid(
                raw,
                f"resolved instant {instant.isoformat()} outside [{low.date()}, {high.date()}]",
                strategy=rule.name,
            )

        return ParsedInstant(
            text=raw,
            instant=instant,
            is_valid=True,
            confidence=rule.confidence,
            strategy=rule.name,
            has_time=has_time,
        )


def _localize(day: date, clock: ClockTime, now: datetime) -> datetime:
    """Wall-clock time on `day` in the zone of `now`."""
    return datetime.combine(day, time(clock.hour, clock.minute), tzinfo=now.tzinfo)


_default_parser = TemporalParser()


def parse(text: str, now: Optional[datetime] = None) -> ParsedInstant:
    return _default_parser.parse(text, now)


def rule_names() -> Tuple[str, ...]:
    return tuple(r.name for r in RULES)
