import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Iterable, Optional, Union

from records import CategoryCatalog, TransactionRecord, TransactionType


logger = logging.getLogger(__name__)


class Bucketing(str, Enum):
    day = "day"
    month = "month"


class Dimension(str, Enum):
    account = "account"
    category = "category"
    user = "user"


BucketKey = Union[int, tuple[int, int]]
GroupKey = Union[None, int, str]


def month_label(year: int, month: int) -> str:
    return date(year, month, 1).strftime("%b %Y")


@dataclass
class SeriesPoint:
    key: BucketKey
    label: str
    group: GroupKey = None
    income_cents: int = 0
    expense_cents: int = 0
    transfer_cents: int = 0
    expense_by_category: dict[str, int] = field(default_factory=dict)

    @property
    def net_cents(self) -> int:
        return self.income_cents - self.expense_cents + self.transfer_cents


@dataclass(frozen=True)
class Totals:
    income_cents: int
    expense_cents: int

    @property
    def net_cents(self) -> int:
        return self.income_cents - self.expense_cents


def _bucket(on: date, bucketing: Bucketing) -> tuple[BucketKey, str]:
    if bucketing == Bucketing.day:
        return on.day, str(on.day)
    return (on.year, on.month), month_label(on.year, on.month)


def _group_sort_key(group: GroupKey, catalog: Optional[CategoryCatalog]) -> tuple:
    if group is None:
        return (0, 0, "")
    if isinstance(group, str):
        rank = catalog.rank(group) if catalog is not None else None
        if rank is not None:
            return (0, rank, "")
        return (1, 0, group)
    return (0, group, "")


def aggregate(
    transactions: Iterable[TransactionRecord],
    bucketing: Bucketing,
    dimension: Optional[Dimension] = None,
    *,
    categories: Optional[CategoryCatalog] = None,
) -> list[SeriesPoint]:
    """Fold real and virtual transactions into ordered per-period buckets.

    Income and expense are credited to the bucket of the transaction's date,
    optionally split by source account, category or user. Transfers only move
    money between accounts, so they count solely when splitting by account:
    the source bucket gets ``-amount`` and the destination bucket ``+amount``.

    Records without a usable date are dropped; a missing amount counts as zero
    and a missing category as "Uncategorized". The result is ordered
    chronologically, then by group (category groups follow ``categories`` when
    given).
    """
    points: dict[tuple[BucketKey, GroupKey], SeriesPoint] = {}

    def point(key: BucketKey, label: str, group: GroupKey) -> SeriesPoint:
        existing = points.get((key, group))
        if existing is None:
            existing = SeriesPoint(key=key, label=label, group=group)
            points[(key, group)] = existing
        return existing

    for txn in transactions:
        if txn.date is None:
            logger.debug(f"aggregate_skip: source={txn.source_id} reason=no_date")
            continue
        key, label = _bucket(txn.date, bucketing)
        amount = txn.amount

        if txn.type == TransactionType.transfer:
            if dimension != Dimension.account:
                continue
            if txn.destination_account_id is None:
                logger.debug(
                    f"aggregate_skip: source={txn.source_id} reason=transfer_without_destination"
                )
                continue
            point(key, label, txn.source_account_id).transfer_cents -= amount
            point(key, label, txn.destination_account_id).transfer_cents += amount
            continue

        if dimension == Dimension.account:
            group: GroupKey = txn.source_account_id
        elif dimension == Dimension.category:
            group = txn.category_name
        elif dimension == Dimension.user:
            group = txn.user_id
        else:
            group = None

        target = point(key, label, group)
        if txn.type == TransactionType.income:
            target.income_cents += amount
        elif txn.type == TransactionType.expense:
            target.expense_cents += amount
            category = txn.category_name
            target.expense_by_category[category] = (
                target.expense_by_category.get(category, 0) + amount
            )

    return sorted(
        points.values(),
        key=lambda p: (p.key, _group_sort_key(p.group, categories)),
    )


def totals(transactions: Iterable[TransactionRecord]) -> Totals:
    income = 0
    expense = 0
    for txn in transactions:
        if txn.date is None:
            continue
        if txn.type == TransactionType.income:
            income += txn.amount
        elif txn.type == TransactionType.expense:
            expense += txn.amount
    return Totals(income_cents=income, expense_cents=expense)


def fill_months(points: list[SeriesPoint], start: date, end: date) -> list[SeriesPoint]:
    """Ungrouped month series covering every month from ``start`` to ``end`` inclusive."""
    by_key = {p.key: p for p in points if p.group is None}
    out: list[SeriesPoint] = []
    index = start.year * 12 + start.month - 1
    stop = end.year * 12 + end.month - 1
    while index <= stop:
        year, month = index // 12, index % 12 + 1
        existing = by_key.get((year, month))
        out.append(
            existing
            if existing is not None
            else SeriesPoint(key=(year, month), label=month_label(year, month))
        )
        index += 1
    return out
