from datetime import datetime

import pytest

from conftest import LA, local
from meetwise.parsing import temporal
from meetwise.parsing.temporal import TemporalParser, next_business_day

# Monday 08:00 local
NOW = local(2026, 10, 19, 8, 0)


def test_tomorrow_with_time():
    p = temporal.parse("tomorrow at 2pm", NOW)
    assert p.is_valid
    assert p.instant == local(2026, 10, 20, 14, 0)
    assert p.confidence == 95
    assert p.strategy == "tomorrow"
    assert p.has_time


def test_date_without_time_is_midnight_and_flagged():
    p = temporal.parse("next week", NOW)
    assert p.instant == local(2026, 10, 26)
    assert not p.has_time
    assert p.confidence == 90


def test_weekday_is_strictly_after_today():
    assert temporal.parse("friday", NOW).instant.date().isoformat() == "2026-10-23"
    assert temporal.parse("monday", NOW).instant.date().isoformat() == "2026-10-26"


def test_next_weekday_with_time():
    p = temporal.parse("next friday at 10:30am", NOW)
    assert p.instant == local(2026, 10, 23, 10, 30)


def test_day_after_tomorrow_wins_over_tomorrow():
    p = temporal.parse("the day after tomorrow", NOW)
    assert p.strategy == "day_after_tomorrow"
    assert p.instant.date().isoformat() == "2026-10-21"


def test_iso_timestamp_keeps_offset():
    p = temporal.parse("2026-10-20T14:00:00-04:00", NOW)
    assert p.strategy == "iso"
    assert p.confidence == 85
    assert p.instant.utcoffset().total_seconds() == -4 * 3600


def test_us_numeric_rolls_into_next_year_when_past():
    assert temporal.parse("10/20", NOW).instant.date().isoformat() == "2026-10-20"
    assert temporal.parse("3/1", NOW).instant.date().isoformat() == "2027-03-01"


def test_month_name_and_day():
    p = temporal.parse("March 3rd", NOW)
    assert p.strategy == "month_day"
    assert p.confidence == 70
    assert p.instant.date().isoformat() == "2027-03-03"


def test_day_month_order():
    p = temporal.parse("5th of November at 3pm", NOW)
    assert p.instant == local(2026, 11, 5, 15, 0)


def test_bare_time_is_today_before_cutoff():
    p = temporal.parse("3pm", NOW)
    assert p.strategy == "bare_time"
    assert p.confidence == 75
    assert p.instant == local(2026, 10, 19, 15, 0)


def test_bare_time_is_tomorrow_after_cutoff():
    p = temporal.parse("3pm", local(2026, 10, 19, 18, 0))
    assert p.instant == local(2026, 10, 20, 15, 0)


def test_24h_clock_in_remainder():
    assert temporal.parse("tomorrow 14:30", NOW).instant == local(2026, 10, 20, 14, 30)


def test_year_out_of_range_is_rejected():
    p = temporal.parse("2035-01-01", NOW)
    assert not p.is_valid
    assert p.instant is None
    assert "outside allowed range" in p.error


@pytest.mark.parametrize("text", ["", "   ", None, "lorem ipsum dolor", "13/45/2026", "99:99"])
def test_garbage_never_raises(text):
    p = temporal.parse(text, NOW)
    assert not p.is_valid
    assert p.instant is None
    assert p.error


def test_naive_reference_time_is_rejected():
    p = temporal.parse("tomorrow", datetime(2026, 10, 19, 8, 0))
    assert not p.is_valid
    assert "timezone-aware" in p.error


def test_valid_results_are_bounded():
    for text in ("today", "tomorrow 9am", "next week", "friday", "12/31", "Jan 2"):
        p = temporal.parse(text, NOW)
        assert p.is_valid, text
        assert NOW.replace(year=2025) <= p.instant <= NOW.replace(year=2031)
        assert 0 <= p.confidence <= 100


def test_custom_cutoff():
    parser = TemporalParser(tomorrow_cutoff_hour=7)
    assert parser.parse("3pm", NOW).instant == local(2026, 10, 20, 15, 0)


def test_next_business_day_skips_weekend():
    assert next_business_day(local(2026, 10, 24).date()).isoformat() == "2026-10-26"
    assert next_business_day(local(2026, 10, 22).date()).isoformat() == "2026-10-22"


def test_results_carry_the_reference_zone():
    assert temporal.parse("tomorrow at 9am", NOW).instant.tzinfo == LA


@pytest.mark.parametrize("text", ["I sat with the team", "the sun was out"])
def test_short_weekend_names_need_a_cue(text):
    assert not temporal.parse(text, NOW).is_valid


def test_short_weekend_names_with_a_cue():
    assert temporal.parse("next sat", NOW).instant.date().isoformat() == "2026-10-24"
    p = temporal.parse("sun 10am", NOW)
    assert p.strategy == "weekday"
    assert p.instant == local(2026, 10, 25, 10, 0)
