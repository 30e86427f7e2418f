import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from records import AccountRecord, TransactionRecord, TransactionType, cents_to_decimal
from recurrence import expand, local_today


logger = logging.getLogger(__name__)


def account_effect_cents(txn: TransactionRecord, account_id: int) -> int:
    """Signed change ``txn`` makes to the balance of ``account_id``."""
    amount = txn.amount
    if txn.type == TransactionType.income:
        return amount if txn.source_account_id == account_id else 0
    if txn.type == TransactionType.expense:
        return -amount if txn.source_account_id == account_id else 0
    if txn.type == TransactionType.transfer:
        if txn.destination_account_id is None:
            return 0
        effect = 0
        if txn.source_account_id == account_id:
            effect -= amount
        if txn.destination_account_id == account_id:
            effect += amount
        return effect
    return 0


def project_balance_cents(
    account: AccountRecord,
    transactions: Iterable[TransactionRecord],
    as_of: date,
    *,
    now: Optional[date] = None,
) -> int:
    """Balance of ``account`` as of ``as_of``, walked back from the stored balance.

    The stored balance reflects everything up to ``now``; effects of records
    dated between ``as_of`` and ``now`` (both inclusive) are reversed. Dates at
    or after ``now`` report the stored balance as-is.
    """
    now = now or local_today()
    if as_of >= now:
        return account.balance_cents

    delta = 0
    for txn in transactions:
        if txn.date is None:
            logger.debug(f"balance_skip: source={txn.source_id} reason=no_date")
            continue
        if as_of <= txn.date <= now:
            delta += account_effect_cents(txn, account.id)
    return account.balance_cents - delta


def project_balance(
    account: AccountRecord,
    transactions: Iterable[TransactionRecord],
    as_of: date,
    *,
    now: Optional[date] = None,
) -> Decimal:
    return cents_to_decimal(project_balance_cents(account, transactions, as_of, now=now))


@dataclass
class TrendPoint:
    month_start: date
    label: str
    balances: dict[int, int] = field(default_factory=dict)

    @property
    def total_cents(self) -> int:
        return sum(self.balances.values())


def balance_trend(
    accounts: Sequence[AccountRecord],
    transactions: Sequence[TransactionRecord],
    *,
    months: int = 6,
    now: Optional[date] = None,
) -> list[TrendPoint]:
    """Opening balance of every account on the first day of each of the last months."""
    now = now or local_today()
    if not accounts:
        return []
    records = list(transactions)
    index = now.year * 12 + now.month - 1 - months
    stop = now.year * 12 + now.month - 1
    points: list[TrendPoint] = []
    while index <= stop:
        month_start = date(index // 12, index % 12 + 1, 1)
        point = TrendPoint(month_start=month_start, label=month_start.strftime("%b %Y"))
        for account in accounts:
            point.balances[account.id] = project_balance_cents(
                account, records, month_start, now=now
            )
        points.append(point)
        index += 1
    return points


@dataclass(frozen=True)
class ForecastPoint:
    day: date
    income_cents: int
    expense_cents: int
    balance_cents: int


def cash_flow_forecast(
    accounts: Sequence[AccountRecord],
    transactions: Sequence[TransactionRecord],
    *,
    days: int = 30,
    today: Optional[date] = None,
) -> list[ForecastPoint]:
    """Running total balance for today and the following ``days`` days.

    Stored balances already contain every saved record, including those dated
    after today, so the opening point backs those out and the walk re-applies
    them on their own dates together with projected recurrences. Transfers
    between the given accounts leave the total unchanged.
    """
    today = today or local_today()
    if not accounts:
        return []
    horizon_end = today + timedelta(days=days + 1)
    account_ids = [account.id for account in accounts]

    def effect(txn: TransactionRecord) -> int:
        return sum(account_effect_cents(txn, account_id) for account_id in account_ids)

    booked_ahead = [
        txn
        for txn in transactions
        if not txn.is_virtual and txn.date is not None and txn.date > today
    ]
    scheduled = [txn for txn in booked_ahead if txn.date < horizon_end]
    scheduled.extend(
        expand(transactions, today, horizon_end, include_series_starting_inside=True)
    )

    income_by_day: dict[date, int] = {}
    expense_by_day: dict[date, int] = {}
    delta_by_day: dict[date, int] = {}
    for txn in scheduled:
        if txn.type == TransactionType.income:
            income_by_day[txn.date] = income_by_day.get(txn.date, 0) + txn.amount
        elif txn.type == TransactionType.expense:
            expense_by_day[txn.date] = expense_by_day.get(txn.date, 0) + txn.amount
        delta_by_day[txn.date] = delta_by_day.get(txn.date, 0) + effect(txn)

    running = sum(account.balance_cents for account in accounts)
    running -= sum(effect(txn) for txn in booked_ahead)
    points: list[ForecastPoint] = []
    for offset in range(days + 1):
        day = today + timedelta(days=offset)
        running += delta_by_day.get(day, 0)
        points.append(
            ForecastPoint(
                day=day,
                income_cents=income_by_day.get(day, 0),
                expense_cents=expense_by_day.get(day, 0),
                balance_cents=running,
            )
        )
    return points
