from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from config import get_settings
from models import Frequency


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int) -> date:
    """Calendar-month step; the day is clamped to the target month's length."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(base.day, days_in_month(year, month)))


def calculate_next_date(frequency: Frequency, from_date: date) -> date:
    if frequency == Frequency.weekly:
        return from_date + timedelta(days=7)
    if frequency == Frequency.biweekly:
        return from_date + timedelta(days=14)
    if frequency == Frequency.monthly:
        return add_months(from_date, 1)
    if frequency == Frequency.quarterly:
        return add_months(from_date, 3)
    if frequency == Frequency.annually:
        return add_months(from_date, 12)
    raise ValueError(f"Unsupported frequency: {frequency}")
