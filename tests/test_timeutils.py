"""Tests for src.core.timeutils — fixed-offset Brasília helpers."""

from datetime import date, datetime, timedelta, timezone

import pytest

from src.core.timeutils import (
    BRT,
    compose_timestamp,
    format_date_br,
    format_interval,
    format_remaining,
    parse_hhmm,
    parse_timestamp,
    to_iso,
    weekday_sun0,
)


class TestParseHHMM:
    def test_colon_form(self):
        assert parse_hhmm("14:30") == (14, 30)

    def test_hour_only(self):
        assert parse_hhmm("9") == (9, 0)

    def test_h_suffix(self):
        assert parse_hhmm("8h30") == (8, 30)
        assert parse_hhmm("15h") == (15, 0)

    @pytest.mark.parametrize("raw", ["", "abc", "25:00", "10:61", "xx:10"])
    def test_invalid_raises(self, raw):
        with pytest.raises(ValueError):
            parse_hhmm(raw)


class TestTimestamps:
    def test_compose_has_fixed_offset(self):
        assert compose_timestamp(date(2025, 2, 14), "16:00") == "2025-02-14T16:00:00-03:00"

    def test_to_iso_converts_utc(self):
        utc = datetime(2025, 2, 14, 19, 0, tzinfo=timezone.utc)
        assert to_iso(utc) == "2025-02-14T16:00:00-03:00"

    def test_to_iso_takes_naive_as_local(self):
        assert to_iso(datetime(2025, 2, 14, 16, 0)) == "2025-02-14T16:00:00-03:00"

    def test_parse_round_trip_is_aware(self):
        parsed = parse_timestamp("2025-02-14T16:00:00-03:00")
        assert parsed.utcoffset() == timedelta(hours=-3)
        assert parsed.hour == 16

    def test_parse_empty_raises(self):
        with pytest.raises(ValueError):
            parse_timestamp("")

    def test_iso_strings_sort_chronologically(self):
        a = to_iso(datetime(2025, 2, 3, 9, 0, tzinfo=BRT))
        b = to_iso(datetime(2025, 2, 3, 10, 0, tzinfo=BRT))
        c = to_iso(datetime(2025, 2, 10, 8, 0, tzinfo=BRT))
        assert sorted([c, a, b]) == [a, b, c]


class TestFormatting:
    def test_weekday_sunday_is_zero(self):
        assert weekday_sun0(date(2025, 2, 2)) == 0   # Sunday
        assert weekday_sun0(date(2025, 2, 3)) == 1   # Monday
        assert weekday_sun0(date(2025, 2, 8)) == 6   # Saturday

    def test_format_date_br(self):
        dt = datetime(2025, 2, 3, 14, 0, tzinfo=BRT)
        assert format_date_br(dt) == "Seg 03/02 às 14:00"

    def test_format_interval(self):
        assert format_interval(30) == "em 30 minutos"
        assert format_interval(180) == "daqui 3h"
        assert format_interval(1500) == "amanhã de manhã (9h)"

    def test_format_remaining(self):
        assert format_remaining(65) == "1h05"
        assert format_remaining(120) == "2h"
        assert format_remaining(40) == "40min"
        assert format_remaining(-5) == "0min"
