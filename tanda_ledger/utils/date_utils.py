"""Date manipulation utilities"""

from datetime import date, timedelta

from dateutil.relativedelta import relativedelta


def add_months(from_date: date, months: int) -> date:
    """Add calendar months; relativedelta clamps to the month's last day (Jan 31 + 1 month = Feb 28/29)"""
    return from_date + relativedelta(months=months)


def add_days(from_date: date, days: int) -> date:
    return from_date + timedelta(days=days)
