from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from records import coerce_date


@dataclass(frozen=True)
class Period:
    """Half-open window [start, end)."""

    slug: str
    start: date
    end: date

    def contains(self, on: date) -> bool:
        return self.start <= on < self.end

    @property
    def last_day(self) -> date:
        return self.end - timedelta(days=1)


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def month_period(year: int, month: int) -> Period:
    first = date(year, month, 1)
    return Period(f"{year:04d}-{month:02d}", first, add_months(first, 1))


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    months: int = 6,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    tomorrow = today + timedelta(days=1)
    if period == "all":
        return Period("all", date(1970, 1, 1), tomorrow)
    if period == "last_month":
        first_this = today.replace(day=1)
        return Period("last_month", add_months(first_this, -1), first_this)
    if period == "last_n_months":
        if months < 1:
            raise ValueError("months must be at least 1")
        first_this = today.replace(day=1)
        return Period(
            "last_n_months", add_months(first_this, -(months - 1)), add_months(first_this, 1)
        )
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = coerce_date(start)
        end_date = coerce_date(end)
        if start_date is None or end_date is None:
            raise ValueError("Invalid custom period dates")
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        # end is given inclusively by callers
        return Period("custom", start_date, end_date + timedelta(days=1))

    first = today.replace(day=1)
    return Period("this_month", first, add_months(first, 1))
