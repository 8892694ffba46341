from datetime import date

import pytest

from errors import InvalidRequest
from money import to_amount, to_cents
from periods import (
    ALL_TIME,
    add_months,
    iter_months,
    parse_date,
    resolve_summary_periods,
)


def test_to_cents_rounds_half_away_from_zero():
    assert to_cents("10.005") == 1001
    assert to_cents("-10.005") == -1001
    assert to_cents(0.1) == 10
    assert to_cents(12) == 1200


def test_to_cents_rejects_garbage():
    with pytest.raises(ValueError):
        to_cents("twelve")
    with pytest.raises(ValueError):
        to_cents("NaN")


def test_to_amount_is_two_decimals():
    assert to_amount(140_000) == 1400.0
    assert to_amount(-4_550) == -45.5


def test_add_months_snaps_to_month_end():
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2024, 3, 31), -1) == date(2024, 2, 29)
    assert add_months(date(2024, 2, 29), 1, desired_day=31) == date(2024, 3, 31)
    assert add_months(date(2024, 12, 15), 1) == date(2025, 1, 15)


def test_iter_months_is_inclusive():
    months = list(iter_months(date(2023, 11, 20), date(2024, 2, 1)))
    assert months == [
        date(2023, 11, 1),
        date(2023, 12, 1),
        date(2024, 1, 1),
        date(2024, 2, 1),
    ]


def test_parse_date_accepts_iso_datetime():
    assert parse_date("2024-01-01T00:00:00Z") == date(2024, 1, 1)
    assert parse_date("2024-01-31") == date(2024, 1, 31)
    with pytest.raises(InvalidRequest):
        parse_date("31/01/2024")


def test_monthly_is_the_default_mode():
    (period,) = resolve_summary_periods(None, year="2024", month="2")
    assert period.start == date(2024, 2, 1)
    assert period.end == date(2024, 2, 29)


@pytest.mark.parametrize(
    "mode, params",
    [
        ("monthly", {"year": "2024"}),
        ("yearly", {}),
        ("yearlyByMonth", {}),
        ("last12months", {"start": "2024-01-01"}),
        ("range", {"end": "2024-01-01"}),
    ],
)
def test_missing_parameters_are_rejected(mode, params):
    with pytest.raises(InvalidRequest):
        resolve_summary_periods(mode, **params)


def test_reversed_range_is_rejected():
    with pytest.raises(InvalidRequest):
        resolve_summary_periods("range", start="2024-02-01", end="2024-01-01")


def test_unknown_mode_is_rejected():
    with pytest.raises(InvalidRequest):
        resolve_summary_periods("weekly", year="2024")


def test_out_of_range_month_is_rejected():
    with pytest.raises(InvalidRequest):
        resolve_summary_periods("monthly", year="2024", month="13")


def test_yearly_by_month_yields_twelve_months():
    periods = resolve_summary_periods("yearlyByMonth", year="2023")
    assert len(periods) == 12
    assert periods[1].end == date(2023, 2, 28)
    assert periods[-1].start == date(2023, 12, 1)


def test_all_time_without_records_collapses_to_today():
    today = date(2024, 8, 8)
    (period,) = resolve_summary_periods(ALL_TIME, earliest=lambda: None, today=today)
    assert period.start == period.end == today


def test_all_time_starts_at_earliest_record():
    today = date(2024, 8, 8)
    (period,) = resolve_summary_periods(
        ALL_TIME, earliest=lambda: date(2019, 4, 2), today=today
    )
    assert period.start == date(2019, 4, 2)
    assert period.end == today


def test_parse_date_rejects_years_outside_supported_range():
    with pytest.raises(InvalidRequest):
        parse_date("9999-12-31")
    with pytest.raises(InvalidRequest):
        parse_date("1969-12-31")
    assert parse_date("3000-12-31") == date(3000, 12, 31)


def test_far_future_range_is_rejected():
    with pytest.raises(InvalidRequest):
        resolve_summary_periods("range", start="9990-01-01", end="9999-12-31")
