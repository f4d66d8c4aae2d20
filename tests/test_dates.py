from datetime import date
import pytest
from core.dates import FiscalYearStart, fiscal_year_for, fiscal_year_bounds, due_date_for, yyyymmdd

def test_calendar_fiscal_year():
    start = FiscalYearStart()
    assert fiscal_year_for(date(2025, 1, 1), start) == 2025
    assert fiscal_year_for(date(2025, 12, 31), start) == 2025
    assert fiscal_year_bounds(2025, start) == (date(2025, 1, 1), date(2025, 12, 31))

def test_shifted_fiscal_year():
    start = FiscalYearStart(11, 1)
    assert fiscal_year_for(date(2024, 10, 31), start) == 2023
    assert fiscal_year_for(date(2024, 11, 1), start) == 2024
    assert fiscal_year_bounds(2024, start) == (date(2024, 11, 1), date(2025, 10, 31))

def test_bounds_cover_leap_day():
    first, last = fiscal_year_bounds(2023, FiscalYearStart(3, 1))
    assert last == date(2024, 2, 29)

@pytest.mark.parametrize("month,day", [(0, 1), (13, 1), (2, 29), (4, 31)])
def test_invalid_fiscal_start(month, day):
    with pytest.raises(ValueError):
        FiscalYearStart(month, day)

@pytest.mark.parametrize("terms,expected", [
    ("comptant", date(2025, 1, 20)),
    ("45 jours net", date(2025, 3, 6)),
    ("30 jours fin de mois", date(2025, 2, 28)),
    ("", date(2025, 2, 19)),
    (None, date(2025, 2, 19)),
    ("on receipt", date(2025, 2, 19)),
])
def test_due_date_terms(terms, expected):
    assert due_date_for(date(2025, 1, 20), terms) == expected

def test_yyyymmdd():
    assert yyyymmdd(date(2025, 3, 7)) == "20250307"
