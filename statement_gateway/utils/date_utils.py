"""Date manipulation utilities"""

import calendar
from datetime import date, datetime
from typing import Optional, Tuple

# Day-first formats come before year-first ones that share a separator
STATEMENT_DATE_FORMATS = ("%d/%m/%Y", "%Y-%m-%d", "%d-%m-%Y", "%Y/%m/%d")


def parse_statement_date(text: str) -> Optional[date]:
    """Parse a statement date in any supported wire format, None if none fits"""
    value = text.strip()
    for fmt in STATEMENT_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def billing_cycle_of(day: date) -> str:
    """Truncate a date to its year-month billing cycle, e.g. 2025-11"""
    return f"{day.year:04d}-{day.month:02d}"


def days_apart(a: date, b: date) -> int:
    return abs((a - b).days)


def cycle_date_range(billing_cycle: str) -> Tuple[date, date]:
    """First and last day of a YYYY-MM billing cycle"""
    year, month = (int(part) for part in billing_cycle.split("-"))
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])
