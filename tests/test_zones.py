import logging
from datetime import datetime, timezone

import pytest

from conftest import FakeCalendarProvider, local
from meetwise.errors import CalendarProviderError
from meetwise.scheduling.zones import (
    TimezoneResolver,
    extract_zone_from_text,
    format_local,
    from_calendar_stamp,
    is_valid_zone,
    parse_preferred_date,
    pick_preferred_start,
    stamp_for_calendar,
)

NOW = datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)


class BrokenZoneProvider(FakeCalendarProvider):
    def __init__(self, zone=None, error=None):
        super().__init__(zone=zone)
        self.error = error
        self.lookups = 0

    def get_timezone(self, account):
        self.lookups += 1
        if self.error is not None:
            raise self.error
        return self.zone


def test_stamp_carries_zone_and_offset():
    stamp = stamp_for_calendar(datetime(2026, 10, 20, 21, 0, tzinfo=timezone.utc), "America/Los_Angeles")
    assert stamp.zone_id == "America/Los_Angeles"
    assert stamp.local_date_time == "2026-10-20T14:00:00-07:00"
    assert stamp.as_payload() == {"dateTime": "2026-10-20T14:00:00-07:00", "timeZone": "America/Los_Angeles"}


@pytest.mark.parametrize("zone", ["America/Los_Angeles", "Europe/London", "Asia/Kolkata", "Australia/Sydney"])
def test_stamp_round_trip(zone):
    instant = datetime(2026, 3, 29, 1, 30, tzinfo=timezone.utc)
    assert from_calendar_stamp(stamp_for_calendar(instant, zone)) == instant


def test_naive_instants_are_refused():
    with pytest.raises(ValueError):
        stamp_for_calendar(datetime(2026, 10, 20, 14, 0), "America/Los_Angeles")


def test_zone_validation():
    assert is_valid_zone("Europe/Berlin")
    assert not is_valid_zone("Mars/Olympus_Mons")
    assert not is_valid_zone("")


def test_zone_abbreviation_after_clock_time():
    assert extract_zone_from_text("let's say 2pm EST") == "America/New_York"
    assert extract_zone_from_text("10:30 am pst works") == "America/Los_Angeles"
    assert extract_zone_from_text("the EST team") is None


def test_format_local():
    assert format_local(local(2026, 10, 20, 14, 0), "America/Los_Angeles") == "Tuesday, October 20 at 2:00 PM PDT"
    assert format_local(local(2026, 10, 20, 14, 0), "America/New_York") == "Tuesday, October 20 at 5:00 PM EDT"


def test_resolver_uses_provider_zone_and_caches():
    provider = BrokenZoneProvider(zone="Europe/Berlin")
    resolver = TimezoneResolver(provider=provider)
    assert resolver.resolve_user_zone("a@example.com") == "Europe/Berlin"
    assert resolver.resolve_user_zone("a@example.com") == "Europe/Berlin"
    assert provider.lookups == 1


def test_resolver_falls_back_with_warning(caplog):
    provider = BrokenZoneProvider(error=CalendarProviderError("down", status=503))
    resolver = TimezoneResolver(provider=provider, default_zone="America/Chicago")
    with caplog.at_level(logging.WARNING, logger="meetwise.scheduling.zones"):
        assert resolver.resolve_user_zone("a@example.com") == "America/Chicago"
    assert any("zone lookup failed" in r.getMessage() for r in caplog.records)


def test_resolver_rejects_unknown_provider_zone(caplog):
    provider = BrokenZoneProvider(zone="Not/AZone")
    resolver = TimezoneResolver(provider=provider, default_zone="UTC")
    with caplog.at_level(logging.WARNING, logger="meetwise.scheduling.zones"):
        assert resolver.resolve_user_zone("a@example.com") == "UTC"
    assert any("unknown zone" in r.getMessage() for r in caplog.records)


def test_resolver_caches_per_user():
    provider = BrokenZoneProvider(zone="Asia/Tokyo")
    resolver = TimezoneResolver(provider=provider)
    resolver.resolve_user_zone("a@example.com")
    resolver.resolve_user_zone("b@example.com")
    assert provider.lookups == 2


def test_parse_in_zone_honours_written_abbreviation():
    resolver = TimezoneResolver()
    zoned = resolver.parse_in_zone("tomorrow at 2pm EST", "America/Los_Angeles", NOW)
    assert zoned.zone_id == "America/New_York"
    assert zoned.absolute_instant == datetime(2026, 10, 20, 18, 0, tzinfo=timezone.utc)
    assert zoned.formatted_local == "Tuesday, October 20 at 2:00 PM EDT"
    assert zoned.has_time


def test_parse_in_zone_uses_owner_zone():
    resolver = TimezoneResolver()
    zoned = resolver.parse_in_zone("tomorrow at 2pm", "America/Los_Angeles", NOW)
    assert zoned.absolute_instant == datetime(2026, 10, 20, 21, 0, tzinfo=timezone.utc)


def test_parse_in_zone_unknown_zone_falls_back():
    resolver = TimezoneResolver(default_zone="UTC")
    zoned = resolver.parse_in_zone("tomorrow at 2pm", "Nowhere/Land", NOW)
    assert zoned.zone_id == "UTC"
    assert zoned.absolute_instant == datetime(2026, 10, 20, 14, 0, tzinfo=timezone.utc)


def test_parse_in_zone_unparseable_is_none():
    assert TimezoneResolver().parse_in_zone("whenever", "UTC", NOW) is None


def test_parse_preferred_date():
    start, has_time = parse_preferred_date("2026-10-20", "America/Los_Angeles")
    assert (start, has_time) == (local(2026, 10, 20), False)
    start, has_time = parse_preferred_date("2026-10-20T14:00:00-07:00", "UTC")
    assert has_time
    assert start == local(2026, 10, 20, 14, 0)


def test_pick_preferred_start():
    zone = "America/Los_Angeles"
    assert pick_preferred_start(["2026-10-21", "2026-10-22T11:00:00-07:00"], zone) == (local(2026, 10, 22, 11, 0), True)
    assert pick_preferred_start(["not a date", "2026-10-21"], zone) == (local(2026, 10, 21), False)
    assert pick_preferred_start([], zone) is None
