# core/dates.py
import calendar
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Tuple

DEFAULT_TERMS_DAYS = 30
_TERMS_RE = re.compile(r"^(\d+) jours (net|fin de mois)$")


@dataclass(frozen=True)
class FiscalYearStart:
    """
    First day (month, day) of the fiscal year, e.g. FiscalYearStart(11, 1) for a Nov-Oct year.
    """

    month: int = 1
    day: int = 1

    def __post_init__(self):
        if not 1 <= self.month <= 12:
            raise ValueError(f"Invalid fiscal year start month: {self.month}")
        # 2001 is not a leap year: Feb 29 is refused, every year must have this date
        if not 1 <= self.day <= calendar.monthrange(2001, self.month)[1]:
            raise ValueError(f"Invalid fiscal year start day: {self.month:02d}-{self.day:02d}")

    def in_year(self, year: int) -> date:
        return date(year, self.month, self.day)


def fiscal_year_for(invoice_date: date, start: FiscalYearStart) -> int:
    """
    With a Nov-Oct fiscal year: 2024-10-31 -> 2023, 2024-11-01 -> 2024.
    """
    year = invoice_date.year
    if invoice_date < start.in_year(year):
        return year - 1
    return year


def fiscal_year_bounds(fiscal_year: int, start: FiscalYearStart) -> Tuple[date, date]:
    first = start.in_year(fiscal_year)
    last = start.in_year(fiscal_year + 1) - timedelta(days=1)
    return first, last


def end_of_month(d: date) -> date:
    return d.replace(day=calendar.monthrange(d.year, d.month)[1])


def due_date_for(invoice_date: date, payment_terms: str) -> date:
    """
    "comptant" -> same day
    "N jours net" -> invoice date + N days
    "N jours fin de mois" -> last day of the month reached after N days
    anything else -> 30 days net
    """
    terms = (payment_terms or "").strip()
    if terms == "comptant":
        return invoice_date
    m = _TERMS_RE.match(terms)
    if m:
        shifted = invoice_date + timedelta(days=int(m.group(1)))
        if m.group(2) == "fin de mois":
            return end_of_month(shifted)
        return shifted
    return invoice_date + timedelta(days=DEFAULT_TERMS_DAYS)


def yyyymmdd(d: date) -> str:
    return d.strftime("%Y%m%d")
