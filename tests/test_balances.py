from datetime import date, timedelta
from decimal import Decimal

from balances import (
    account_effect_cents,
    balance_trend,
    cash_flow_forecast,
    project_balance,
    project_balance_cents,
)
from records import (
    AccountRecord,
    Frequency,
    PersistedRef,
    RecurrenceRule,
    TransactionRecord,
    TransactionType,
)


NOW = date(2025, 6, 30)


def _account(account_id: int = 1, balance_cents: int = 100_000) -> AccountRecord:
    return AccountRecord(
        id=account_id, user_id=1, name=f"Account {account_id}", balance_cents=balance_cents
    )


def _txn(
    txn_id: int,
    on,
    txn_type: TransactionType,
    amount_cents: int,
    *,
    account: int = 1,
    destination=None,
    recurrence: RecurrenceRule = RecurrenceRule(),
) -> TransactionRecord:
    return TransactionRecord(
        ref=PersistedRef(txn_id),
        source_account_id=account,
        destination_account_id=destination,
        type=txn_type,
        amount_cents=amount_cents,
        user_id=1,
        date=on,
        category="Housing",
        recurrence=recurrence,
    )


def test_no_transactions_returns_stored_balance():
    account = _account(balance_cents=123_45)
    assert project_balance_cents(account, [], NOW, now=NOW) == 123_45
    assert project_balance_cents(account, [], NOW - timedelta(days=40), now=NOW) == 123_45
    assert project_balance(account, [], NOW, now=NOW) == Decimal("123.45")


def test_reversing_an_expense_on_the_as_of_date():
    account = _account(balance_cents=50_000)
    as_of = NOW - timedelta(days=3)
    expense = _txn(1, as_of, TransactionType.expense, 7_500)
    assert project_balance_cents(account, [expense], as_of, now=NOW) == 57_500


def test_walks_balance_back_before_an_expense():
    account = _account(balance_cents=100_000)
    expense = _txn(1, NOW - timedelta(days=10), TransactionType.expense, 20_000)

    before = project_balance(account, [expense], NOW - timedelta(days=15), now=NOW)
    current = project_balance(account, [expense], NOW, now=NOW)

    assert before == Decimal("1200.00")
    assert current == Decimal("1000.00")


def test_future_dates_report_stored_balance():
    account = _account(balance_cents=100_000)
    upcoming = _txn(1, NOW + timedelta(days=5), TransactionType.expense, 20_000)
    assert project_balance_cents(account, [upcoming], NOW + timedelta(days=30), now=NOW) == (
        100_000
    )


def test_transfers_and_foreign_accounts():
    checking = _account(1, balance_cents=10_000)
    savings = _account(2, balance_cents=90_000)
    as_of = NOW - timedelta(days=20)
    txns = [
        _txn(1, NOW - timedelta(days=5), TransactionType.transfer, 30_000, account=1, destination=2),
        _txn(2, NOW - timedelta(days=4), TransactionType.income, 5_000, account=1),
        _txn(3, NOW - timedelta(days=4), TransactionType.expense, 1_000, account=3),
    ]

    assert project_balance_cents(checking, txns, as_of, now=NOW) == 10_000 + 30_000 - 5_000
    assert project_balance_cents(savings, txns, as_of, now=NOW) == 90_000 - 30_000


def test_activity_before_as_of_is_left_alone():
    account = _account(balance_cents=10_000)
    old = _txn(1, NOW - timedelta(days=60), TransactionType.income, 99_000)
    assert project_balance_cents(account, [old], NOW - timedelta(days=30), now=NOW) == 10_000


def test_undated_records_are_excluded():
    account = _account(balance_cents=10_000)
    txns = [
        _txn(1, None, TransactionType.expense, 5_000),
        _txn(2, NOW - timedelta(days=1), TransactionType.expense, 1_000),
    ]
    assert project_balance_cents(account, txns, NOW - timedelta(days=2), now=NOW) == 11_000


def test_account_effect_cents():
    transfer = _txn(1, NOW, TransactionType.transfer, 500, account=1, destination=2)
    assert account_effect_cents(transfer, 1) == -500
    assert account_effect_cents(transfer, 2) == 500
    assert account_effect_cents(transfer, 3) == 0
    assert account_effect_cents(_txn(2, NOW, TransactionType.income, 700), 1) == 700
    assert account_effect_cents(_txn(3, NOW, TransactionType.expense, 700), 1) == -700


def test_balance_trend_reports_month_start_balances():
    account = _account(balance_cents=100_000)
    txns = [
        _txn(1, date(2025, 5, 10), TransactionType.expense, 20_000),
        _txn(2, date(2025, 6, 2), TransactionType.income, 50_000),
    ]
    points = balance_trend([account], txns, months=2, now=NOW)

    assert [p.label for p in points] == ["Apr 2025", "May 2025", "Jun 2025"]
    assert [p.balances[1] for p in points] == [70_000, 70_000, 50_000]
    assert points[-1].total_cents == 50_000
    assert balance_trend([], txns, months=2, now=NOW) == []


def test_cash_flow_forecast_runs_recurring_rules_forward():
    accounts = [_account(1, balance_cents=100_000), _account(2, balance_cents=50_000)]
    rent = _txn(
        1,
        date(2025, 5, 3),
        TransactionType.expense,
        80_000,
        recurrence=RecurrenceRule(
            is_recurring=True, frequency=Frequency.monthly, frequency_day=3
        ),
    )
    bonus = _txn(2, NOW + timedelta(days=5), TransactionType.income, 10_000)
    already_booked = _txn(3, NOW, TransactionType.expense, 99_999)

    points = cash_flow_forecast(accounts, [rent, bonus, already_booked], days=10, today=NOW)

    assert len(points) == 11
    assert points[0].day == NOW
    # the stored 150_000 already holds the bonus saved for Jul 5
    assert points[0].balance_cents == 140_000
    by_day = {p.day: p for p in points}
    assert by_day[date(2025, 7, 3)].expense_cents == 80_000
    assert by_day[date(2025, 7, 5)].income_cents == 10_000
    assert by_day[date(2025, 7, 5)].balance_cents == 140_000 - 80_000 + 10_000
    assert points[-1].balance_cents == 150_000 - 80_000


def test_cash_flow_forecast_projects_series_starting_inside_horizon():
    account = _account(balance_cents=100_000)
    weekly = _txn(
        1,
        NOW + timedelta(days=2),
        TransactionType.expense,
        1_000,
        recurrence=RecurrenceRule(
            is_recurring=True, frequency=Frequency.custom, frequency_custom_days=7
        ),
    )

    points = cash_flow_forecast([account], [weekly], days=30, today=NOW)

    expense_days = [p.day for p in points if p.expense_cents]
    assert expense_days == [NOW + timedelta(days=offset) for offset in (2, 9, 16, 23, 30)]
    # the first one is saved and already in the stored balance
    assert points[0].balance_cents == 101_000
    assert points[-1].balance_cents == 101_000 - 5 * 1_000


def test_cash_flow_forecast_zero_days_is_just_today():
    points = cash_flow_forecast([_account(balance_cents=5_000)], [], days=0, today=NOW)
    assert [(p.day, p.balance_cents) for p in points] == [(NOW, 5_000)]
