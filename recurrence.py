import logging
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Iterable, Iterator, Optional
from zoneinfo import ZoneInfo

from config import get_settings
from records import Frequency, TransactionRecord, VirtualRef


logger = logging.getLogger(__name__)


class RecurrenceConfigError(ValueError):
    pass


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


def _months_between(start: date, end: date) -> Iterator[tuple[int, int]]:
    """(year, month) pairs touched by the half-open window [start, end)."""
    last = end - timedelta(days=1)
    index = start.year * 12 + start.month - 1
    stop = last.year * 12 + last.month - 1
    while index <= stop:
        yield index // 12, index % 12 + 1
        index += 1


def _monthly_dates(
    txn: TransactionRecord, window_start: date, window_end: date
) -> Iterator[date]:
    rule = txn.recurrence
    day = rule.frequency_day if rule.frequency_day is not None else txn.date.day
    if day < 1 or day > 31:
        raise RecurrenceConfigError(f"frequency_day {day} is outside 1-31")
    for year, month in _months_between(window_start, window_end):
        # months without the requested day produce nothing; no clamping to month end
        if day > days_in_month(year, month):
            continue
        yield date(year, month, day)


def _yearly_dates(
    txn: TransactionRecord, window_start: date, window_end: date
) -> Iterator[date]:
    anchor = txn.date
    last = window_end - timedelta(days=1)
    for year in range(window_start.year, last.year + 1):
        if anchor.day > days_in_month(year, anchor.month):
            continue
        yield date(year, anchor.month, anchor.day)


def _custom_dates(
    txn: TransactionRecord, window_start: date, window_end: date
) -> Iterator[date]:
    interval = txn.recurrence.frequency_custom_days
    if interval is None or interval <= 0:
        raise RecurrenceConfigError(
            f"frequency_custom_days must be a positive integer, got {interval!r}"
        )
    step = timedelta(days=interval)
    current = txn.date + step
    if current < window_start:
        behind = (window_start - current).days
        current += step * -(-behind // interval)
    while current < window_end:
        yield current
        current += step


_GENERATORS = {
    Frequency.monthly: _monthly_dates,
    Frequency.yearly: _yearly_dates,
    Frequency.custom: _custom_dates,
}


def occurrence_dates(
    txn: TransactionRecord, window_start: date, window_end: date
) -> list[date]:
    """Dates inside [window_start, window_end) on which ``txn`` recurs.

    Only dates strictly after the original date and on or before the
    recurring end date are returned. Raises RecurrenceConfigError for an
    unusable rule.
    """
    rule = txn.recurrence
    if not rule.expandable or txn.date is None or window_start >= window_end:
        return []
    generator = _GENERATORS[rule.frequency]
    dates: list[date] = []
    for candidate in generator(txn, window_start, window_end):
        if rule.recurring_end_date and candidate > rule.recurring_end_date:
            break
        if candidate <= txn.date or candidate < window_start:
            continue
        if candidate >= window_end:
            break
        dates.append(candidate)
    return dates


def _fingerprint(txn: TransactionRecord, on: date) -> tuple:
    return (
        txn.user_id,
        txn.source_account_id,
        txn.destination_account_id,
        txn.type,
        txn.amount,
        txn.category_name,
        on,
    )


def expand(
    transactions: Iterable[TransactionRecord],
    window_start: date,
    window_end: date,
    *,
    include_series_starting_inside: bool = False,
) -> list[TransactionRecord]:
    """Virtual occurrences of recurring transactions inside [window_start, window_end).

    A series whose original lies inside the window is skipped unless
    ``include_series_starting_inside`` is set; its later dates are then
    projected as well.
    """
    records = list(transactions)
    persisted = {
        _fingerprint(txn, txn.date)
        for txn in records
        if not txn.is_virtual and txn.date is not None
    }

    occurrences: list[TransactionRecord] = []
    for txn in records:
        rule = txn.recurrence
        if txn.is_virtual or not rule.expandable:
            continue
        if txn.date is None:
            logger.debug(f"recurrence_skip: source={txn.source_id} reason=no_date")
            continue
        if window_start <= txn.date < window_end and not include_series_starting_inside:
            continue
        if rule.recurring_end_date and rule.recurring_end_date < window_start:
            continue
        try:
            dates = occurrence_dates(txn, window_start, window_end)
        except RecurrenceConfigError as exc:
            logger.warning(
                f"recurrence_skip: source={txn.source_id} frequency={rule.frequency.value} "
                f"reason={exc}"
            )
            continue
        for on in dates:
            if _fingerprint(txn, on) in persisted:
                continue
            occurrences.append(
                replace(txn, ref=VirtualRef(txn.source_id, on), date=on)
            )

    occurrences.sort(key=lambda occ: (occ.date, occ.source_id))
    return occurrences


def next_occurrence(
    txn: TransactionRecord, after: date, *, horizon_days: int = 366 * 2
) -> Optional[date]:
    """First recurrence strictly after ``after``, searched within a bounded horizon."""
    start = after + timedelta(days=1)
    try:
        dates = occurrence_dates(txn, start, start + timedelta(days=horizon_days))
    except RecurrenceConfigError as exc:
        logger.warning(f"next_occurrence_skip: source={txn.source_id} reason={exc}")
        return None
    return dates[0] if dates else None


def monthly_equivalent_cents(txn: TransactionRecord) -> int:
    rule = txn.recurrence
    amount = txn.amount
    if rule.frequency == Frequency.yearly:
        return amount // 12
    if rule.frequency == Frequency.custom:
        if not rule.frequency_custom_days or rule.frequency_custom_days <= 0:
            return 0
        return amount * 30 // rule.frequency_custom_days
    return amount
