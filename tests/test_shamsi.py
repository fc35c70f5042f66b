"""Unit tests for the Shamsi calendar helpers."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from resto_erp import shamsi


def test_normalize_pads_and_accepts_dashes():
    assert shamsi.normalize("1402-1-5") == "1402/01/05"


def test_normalize_accepts_persian_digits():
    assert shamsi.normalize("۱۴۰۲/۰۳/۰۷") == "1402/03/07"


@pytest.mark.parametrize("text", ["", "1402/13/01", "1402/01/32", "not a date", "02/01/01"])
def test_parse_rejects_invalid_dates(text):
    with pytest.raises(ValueError):
        shamsi.parse(text)


def test_is_valid_reports_without_raising():
    assert shamsi.is_valid("1402/12/29")
    assert not shamsi.is_valid("1402/12/31")


def test_compare_orders_by_calendar_fields():
    assert shamsi.compare("1402/01/02", "1402/01/10") == -1
    assert shamsi.compare("1402/2/1", "1402/01/31") == 1
    assert shamsi.compare("1402/01/01", "1402-1-1") == 0


def test_in_range_is_inclusive():
    assert shamsi.in_range("1402/01/01", "1402/01/01", "1402/01/31")
    assert shamsi.in_range("1402/01/31", "1402/01/01", "1402/01/31")
    assert not shamsi.in_range("1402/02/01", "1402/01/01", "1402/01/31")


def test_gregorian_round_trip_for_nowruz():
    assert shamsi.to_gregorian("1402/01/01") == date(2023, 3, 21)
    assert shamsi.from_gregorian(date(2023, 3, 21)) == "1402/01/01"


def test_format_date_accepts_epoch_millis_in_utc():
    moment = datetime(2023, 3, 21, 12, 0, tzinfo=timezone.utc)
    assert shamsi.format_date(int(moment.timestamp() * 1000)) == "1402/01/01"
    assert shamsi.format_date(moment) == "1402/01/01"


def test_add_days_crosses_month_boundary():
    assert shamsi.add_days("1402/01/31", 1) == "1402/02/01"
    assert shamsi.days_between("1402/01/01", "1402/02/01") == 31


def test_month_end_respects_esfand_leap_years():
    # 1403 is a leap year in the Shamsi calendar; 1402 is not.
    assert shamsi.month_end("1403/12/05") == "1403/12/30"
    assert shamsi.month_end("1402/12/05") == "1402/12/29"
    assert shamsi.month_start("1402/07/15") == "1402/07/01"


def test_current_date_is_canonical():
    assert shamsi.is_valid(shamsi.current_date())
    assert len(shamsi.current_date()) == 10
