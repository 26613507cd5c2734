from datetime import date, datetime

import pytest

from gymdesk.utils.date import (
    DATE_FORMATS,
    detect_date_formats,
    expand_two_digit_year,
    get_date_format,
    month_key,
    month_sort_key,
    parse_date_with_format,
    parse_iso_date,
)


@pytest.mark.parametrize("spec", DATE_FORMATS, ids=lambda spec: spec.name)
def test_every_format_parses_its_example(spec):
    assert parse_date_with_format(spec.example, spec) == date(2023, 12, 25)


def test_twelve_formats_are_offered():
    names = [spec.name for spec in DATE_FORMATS]

    assert len(names) == 12
    assert names[0] == "dd/mm/yyyy"
    assert len(set(names)) == 12


IMPOSSIBLE_DATES = {
    "dd/mm/yyyy": ["31/02/2024", "29/02/2023", "31/04/2024"],
    "mm/dd/yyyy": ["02/30/2024", "02/29/2023"],
    "yyyy-mm-dd": ["2023-02-29", "2024-06-31"],
    "yyyy/mm/dd": ["2024/04/31", "2024/02/30"],
    "dd-mm-yyyy": ["31-06-2024", "30-02-2024"],
    "mm-dd-yyyy": ["09-31-2024", "02-29-2023"],
    "dd.mm.yyyy": ["30.02.2024", "31.11.2024"],
    "mm.dd.yyyy": ["11.31.2024", "02.30.2024"],
    "dd/mm/yy": ["29/02/23", "31/09/24"],
    "mm/dd/yy": ["02/29/23", "04/31/24"],
    "dd-mm-yy": ["31-04-24", "30-02-24"],
    "mm-dd-yy": ["06-31-24", "02-29-23"],
}


def test_impossible_dates_cover_every_format():
    assert set(IMPOSSIBLE_DATES) == {spec.name for spec in DATE_FORMATS}


@pytest.mark.parametrize(
    ("name", "value"),
    [(name, value) for name, values in IMPOSSIBLE_DATES.items() for value in values],
)
def test_impossible_calendar_dates_are_rejected(name, value):
    assert parse_date_with_format(value, get_date_format(name)) is None


def test_leap_day_is_accepted():
    assert parse_date_with_format("29/02/2024", get_date_format("dd/mm/yyyy")) == date(2024, 2, 29)


@pytest.mark.parametrize(
    "value",
    [
        "25-12-2023",   # wrong separator
        "25/12/23",     # two-digit year under a four-digit format
        "13/13/2023",   # month out of range
        "00/12/2023",   # day out of range
        "01/01/1899",   # before 1900
        "01/01/2101",   # after 2100
        "25/12/2023 10:00",
        "yesterday",
    ],
)
def test_values_that_do_not_fit_the_format_are_rejected(value):
    assert parse_date_with_format(value, get_date_format("dd/mm/yyyy")) is None


@pytest.mark.parametrize("value", [None, "", "   "])
def test_empty_values_are_none(value):
    assert parse_date_with_format(value, get_date_format("dd/mm/yyyy")) is None


def test_month_first_and_day_first_read_the_same_text_differently():
    value = "03/04/2024"

    assert parse_date_with_format(value, get_date_format("dd/mm/yyyy")) == date(2024, 4, 3)
    assert parse_date_with_format(value, get_date_format("mm/dd/yyyy")) == date(2024, 3, 4)


@pytest.mark.parametrize(
    ("two_digit", "expected"),
    [(0, 2000), (23, 2023), (50, 2050), (51, 1951), (99, 1999)],
)
def test_two_digit_year_pivot(two_digit, expected):
    assert expand_two_digit_year(two_digit) == expected


def test_two_digit_formats_use_the_pivot():
    spec = get_date_format("dd/mm/yy")

    assert parse_date_with_format("01/01/50", spec) == date(2050, 1, 1)
    assert parse_date_with_format("01/01/51", spec) == date(1951, 1, 1)


def test_format_lookup_is_forgiving_about_case_and_spaces():
    assert get_date_format(" DD/MM/YYYY ").name == "dd/mm/yyyy"
    assert get_date_format("dd/mm/yyyyy") is None
    assert get_date_format(None) is None


def test_detect_formats_keeps_every_format_that_fits_all_samples():
    assert detect_date_formats(["01/02/2024", "03/04/2024"]) == ["dd/mm/yyyy", "mm/dd/yyyy"]
    assert detect_date_formats(["25/12/2023", "01/02/2024"]) == ["dd/mm/yyyy"]
    assert detect_date_formats(["2023-12-25", ""]) == ["yyyy-mm-dd"]
    assert detect_date_formats([]) == []


def test_month_key_labels():
    assert month_key(date(2024, 1, 31)) == "Jan 2024"
    assert month_key(datetime(2023, 12, 1, 23, 59)) == "Dec 2023"
    assert month_key("2024-02-05T11:00:00Z") == "Feb 2024"
    assert month_key("not a date") is None
    assert month_key(None) is None


def test_month_sort_key_orders_across_years():
    labels = ["Feb 2024", "Dec 2023", "Unknown", "Jan 2024"]

    assert sorted(labels, key=month_sort_key) == ["Dec 2023", "Jan 2024", "Feb 2024", "Unknown"]


def test_parse_iso_date():
    assert parse_iso_date("2024-01-05") == date(2024, 1, 5)
    assert parse_iso_date(datetime(2024, 1, 5, 10, 0)) == date(2024, 1, 5)
    assert parse_iso_date("05/01/2024") is None
