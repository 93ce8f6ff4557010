from datetime import date

import pytest

from periods import resolve_chart_window


def test_week_window_runs_sunday_to_saturday():
    window = resolve_chart_window("week", 0, today=date(2025, 1, 5))
    assert (window.start, window.end) == (date(2025, 1, 5), date(2025, 1, 11))

    previous = resolve_chart_window("week", 1, today=date(2025, 1, 11))
    assert (previous.start, previous.end) == (date(2024, 12, 29), date(2025, 1, 4))
    assert previous.bucket_index(date(2025, 1, 4)) == 6


def test_month_window_labels_every_fifth_day_and_last():
    window = resolve_chart_window("month", 1, today=date(2024, 3, 15))

    assert (window.start, window.end) == (date(2024, 2, 1), date(2024, 2, 29))
    assert len(window.labels) == 29
    assert window.labels[0] == ""
    assert window.labels[4] == "5"
    assert window.labels[28] == "29"
    assert window.bucket_index(date(2024, 2, 10)) == 9


def test_month_window_crosses_year_boundary():
    window = resolve_chart_window("month", 2, today=date(2025, 1, 31))
    assert (window.start, window.end) == (date(2024, 11, 1), date(2024, 11, 30))


def test_year_window_and_range_label():
    window = resolve_chart_window("year", 1, today=date(2025, 6, 1))
    assert (window.start, window.end) == (date(2024, 1, 1), date(2024, 12, 31))
    assert window.labels[0] == "Jan"
    assert window.date_range == "Jan 1, 2024 - Dec 31, 2024"


def test_unknown_range_falls_back_to_week():
    assert resolve_chart_window("decade", 0, today=date(2025, 1, 8)).slug == "week"


def test_negative_offset_is_rejected():
    with pytest.raises(ValueError):
        resolve_chart_window("month", -1, today=date(2025, 1, 8))


def test_week_offset_beyond_calendar_is_rejected():
    with pytest.raises(ValueError):
        resolve_chart_window("week", 10**6, today=date(2024, 1, 1))
