from __future__ import annotations

from calendar import monthrange
from datetime import date, datetime, time
from typing import Optional

LOOKBACK_LAST_YEAR = "lastYear"
LOOKBACK_ALL = "all"
SUPPORTED_LOOKBACKS = {LOOKBACK_LAST_YEAR, LOOKBACK_ALL}


def month_key(value: date) -> str:
    return value.strftime("%Y-%m")


def parse_month_value(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m").date()
    except ValueError:
        try:
            return datetime.strptime(value, "%Y-%m-%d").date().replace(day=1)
        except ValueError as exc:
            raise ValueError("Invalid month format. Use YYYY-MM.") from exc


def month_start(value: date) -> date:
    return value.replace(day=1)


def shift_month(value: date, months: int) -> date:
    month_index = (value.year * 12 + value.month - 1) + months
    year = month_index // 12
    month = month_index % 12 + 1
    return date(year, month, 1)


def month_end(value: date) -> date:
    last_day = monthrange(value.year, value.month)[1]
    return value.replace(day=last_day)


def month_end_instant(month: str) -> datetime:
    """Last representable instant of a ``YYYY-MM`` month."""
    return datetime.combine(month_end(parse_month_value(month)), time.max)


def iter_months(start_value: date, end_value: date) -> list[date]:
    months: list[date] = []
    cursor = month_start(start_value)
    end_month = month_start(end_value)
    while cursor <= end_month:
        months.append(cursor)
        cursor = shift_month(cursor, 1)
    return months


def build_month_range(start_value: Optional[date], today: date) -> list[str]:
    """Contiguous ``YYYY-MM`` keys from ``start_value`` through ``today``.

    A missing or future start collapses the range to the current month.
    """
    if start_value is None or month_start(start_value) > month_start(today):
        return [month_key(today)]
    return [month_key(value) for value in iter_months(start_value, today)]


def normalize_lookback(value: str) -> str:
    normalized = value.strip()
    for candidate in SUPPORTED_LOOKBACKS:
        if candidate.lower() == normalized.lower():
            return candidate
    raise ValueError("Invalid lookback. Use 'lastYear' or 'all'.")


def lookback_start(
    lookback: str, today: date, earliest: Optional[date | datetime]
) -> Optional[date]:
    normalized = normalize_lookback(lookback)
    if normalized == LOOKBACK_LAST_YEAR:
        return date(today.year - 1, 1, 1)
    if earliest is None:
        return None
    if isinstance(earliest, datetime):
        earliest = earliest.date()
    return month_start(earliest)
