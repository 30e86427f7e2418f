import logging
from datetime import date

import pytest

from records import (
    Frequency,
    PersistedRef,
    RecurrenceRule,
    TransactionRecord,
    TransactionType,
    VirtualRef,
)
from recurrence import (
    RecurrenceConfigError,
    expand,
    monthly_equivalent_cents,
    next_occurrence,
    occurrence_dates,
)


def _txn(
    txn_id: int,
    on: date,
    frequency=None,
    *,
    day=None,
    every=None,
    until=None,
    recurring=True,
    amount_cents: int = 5_000,
    category: str = "Housing",
    txn_type: TransactionType = TransactionType.expense,
) -> TransactionRecord:
    return TransactionRecord(
        ref=PersistedRef(txn_id),
        source_account_id=1,
        type=txn_type,
        amount_cents=amount_cents,
        user_id=1,
        date=on,
        category=category,
        recurrence=RecurrenceRule(
            is_recurring=recurring,
            frequency=frequency,
            frequency_day=day,
            frequency_custom_days=every,
            recurring_end_date=until,
        ),
    )


MARCH = (date(2025, 3, 1), date(2025, 4, 1))
FEBRUARY = (date(2025, 2, 1), date(2025, 3, 1))


def test_non_recurring_transactions_never_expand():
    txns = [
        _txn(1, date(2025, 1, 15), Frequency.monthly, day=15, recurring=False),
        _txn(2, date(2025, 1, 15), Frequency.one_time),
        _txn(3, date(2025, 1, 15), None),
    ]
    assert expand(txns, *MARCH) == []


def test_monthly_emits_one_occurrence_on_frequency_day():
    source = _txn(1, date(2025, 1, 15), Frequency.monthly, day=15)

    result = expand([source], *MARCH)

    assert [occ.date for occ in result] == [date(2025, 3, 15)]
    occ = result[0]
    assert occ.is_virtual
    assert occ.ref == VirtualRef(source_id=1, occurrence_date=date(2025, 3, 15))
    assert occ.amount_cents == source.amount_cents
    assert occ.category == source.category
    assert occ.recurrence == source.recurrence


def test_monthly_day_missing_from_month_is_not_clamped():
    source = _txn(1, date(2025, 1, 31), Frequency.monthly, day=31)
    assert expand([source], *FEBRUARY) == []

    leap = _txn(2, date(2024, 1, 31), Frequency.monthly, day=31)
    assert expand([leap], date(2024, 2, 1), date(2024, 3, 1)) == []


def test_monthly_without_frequency_day_uses_original_day():
    source = _txn(1, date(2025, 1, 7), Frequency.monthly)
    assert [o.date for o in expand([source], *MARCH)] == [date(2025, 3, 7)]


def test_monthly_spanning_window_emits_one_per_month():
    source = _txn(1, date(2024, 12, 20), Frequency.monthly, day=20)
    result = expand([source], date(2025, 1, 25), date(2025, 4, 21))
    assert [o.date for o in result] == [
        date(2025, 2, 20),
        date(2025, 3, 20),
        date(2025, 4, 20),
    ]


def test_custom_interval_every_ten_days_in_february():
    start = date(2025, 1, 1)
    source = _txn(1, start, Frequency.custom, every=10)

    first = expand([source], date(2025, 2, 1), date(2025, 2, 28))
    second = expand([source], date(2025, 2, 1), date(2025, 2, 28))

    assert [o.date for o in first] == [date(2025, 2, 10), date(2025, 2, 20)]
    assert all((o.date - start).days % 10 == 0 for o in first)
    assert first == second


def test_custom_interval_jumps_long_gaps_without_walking():
    source = _txn(1, date(2000, 1, 1), Frequency.custom, every=1)
    result = expand([source], date(2025, 6, 1), date(2025, 6, 4))
    assert [o.date for o in result] == [
        date(2025, 6, 1),
        date(2025, 6, 2),
        date(2025, 6, 3),
    ]


def test_invalid_rules_are_skipped_without_aborting(caplog):
    bad_custom = _txn(1, date(2025, 1, 1), Frequency.custom, every=0)
    negative_custom = _txn(2, date(2025, 1, 1), Frequency.custom, every=-3)
    bad_monthly = _txn(3, date(2025, 1, 1), Frequency.monthly, day=32)
    good = _txn(4, date(2025, 1, 15), Frequency.monthly, day=15)

    with caplog.at_level(logging.WARNING, logger="recurrence"):
        result = expand([bad_custom, negative_custom, bad_monthly, good], *MARCH)

    assert [o.source_id for o in result] == [4]
    assert "recurrence_skip" in caplog.text


def test_occurrence_dates_raises_for_non_positive_interval():
    with pytest.raises(RecurrenceConfigError):
        occurrence_dates(_txn(1, date(2025, 1, 1), Frequency.custom, every=0), *MARCH)


def test_yearly_leap_day_only_recurs_in_leap_years():
    source = _txn(1, date(2024, 2, 29), Frequency.yearly)

    assert expand([source], date(2025, 1, 1), date(2026, 1, 1)) == []
    result = expand([source], date(2028, 2, 1), date(2028, 3, 1))
    assert [o.date for o in result] == [date(2028, 2, 29)]


def test_yearly_matches_original_month_and_day():
    source = _txn(1, date(2023, 7, 4), Frequency.yearly)
    result = expand([source], date(2025, 7, 1), date(2025, 8, 1))
    assert [o.date for o in result] == [date(2025, 7, 4)]
    assert expand([source], *MARCH) == []


def test_original_inside_window_is_not_duplicated():
    source = _txn(1, date(2025, 3, 15), Frequency.monthly, day=15)
    assert expand([source], *MARCH) == []


def test_nothing_is_projected_before_the_series_starts():
    source = _txn(1, date(2025, 5, 15), Frequency.monthly, day=15)
    assert expand([source], *MARCH) == []


def test_end_date_before_window_skips_transaction():
    source = _txn(
        1, date(2025, 1, 15), Frequency.monthly, day=15, until=date(2025, 2, 28)
    )
    assert expand([source], *MARCH) == []


def test_end_date_is_an_inclusive_cutoff():
    on_cutoff = _txn(
        1, date(2025, 1, 15), Frequency.monthly, day=15, until=date(2025, 3, 15)
    )
    before_cutoff = _txn(
        2, date(2025, 1, 15), Frequency.monthly, day=15, until=date(2025, 3, 14)
    )
    assert [o.date for o in expand([on_cutoff], *MARCH)] == [date(2025, 3, 15)]
    assert expand([before_cutoff], *MARCH) == []


def test_window_end_is_exclusive_and_start_inclusive():
    source = _txn(1, date(2025, 1, 1), Frequency.monthly, day=1)
    result = expand([source], date(2025, 3, 1), date(2025, 4, 1))
    assert [o.date for o in result] == [date(2025, 3, 1)]


def test_persisted_copy_suppresses_virtual_occurrence():
    source = _txn(1, date(2025, 1, 15), Frequency.monthly, day=15)
    recorded = _txn(9, date(2025, 3, 15), None, recurring=False)
    assert expand([source, recorded], *MARCH) == []


def test_output_is_sorted_by_date_then_source_id():
    txns = [
        _txn(7, date(2025, 1, 20), Frequency.monthly, day=20),
        _txn(5, date(2025, 1, 20), Frequency.monthly, day=20, category="Food"),
        _txn(6, date(2025, 1, 2), Frequency.monthly, day=2),
    ]
    result = expand(txns, *MARCH)
    assert [(o.date.day, o.source_id) for o in result] == [(2, 6), (20, 5), (20, 7)]
    assert len({o.ref for o in result}) == len(result)


def test_records_without_date_and_virtual_inputs_are_ignored():
    undated = TransactionRecord(
        ref=PersistedRef(1),
        source_account_id=1,
        type=TransactionType.expense,
        amount_cents=100,
        user_id=1,
        date=None,
        recurrence=RecurrenceRule(is_recurring=True, frequency=Frequency.monthly),
    )
    source = _txn(2, date(2025, 1, 15), Frequency.monthly, day=15)
    virtual = expand([source], *FEBRUARY)

    assert expand([undated], *MARCH) == []
    assert [o.source_id for o in expand(virtual + [source], *MARCH)] == [2]


def test_next_occurrence_after_date():
    source = _txn(1, date(2025, 1, 5), Frequency.monthly, day=5)
    assert next_occurrence(source, date(2025, 3, 5)) == date(2025, 4, 5)
    assert next_occurrence(source, date(2025, 3, 4)) == date(2025, 3, 5)

    ended = _txn(2, date(2025, 1, 5), Frequency.monthly, day=5, until=date(2025, 2, 1))
    assert next_occurrence(ended, date(2025, 3, 1)) is None


def test_monthly_equivalent_cents():
    yearly = _txn(1, date(2025, 1, 1), Frequency.yearly, amount_cents=12_000)
    custom = _txn(2, date(2025, 1, 1), Frequency.custom, every=15, amount_cents=1_000)
    monthly = _txn(3, date(2025, 1, 1), Frequency.monthly, amount_cents=999)
    broken = _txn(4, date(2025, 1, 1), Frequency.custom, every=0, amount_cents=1_000)

    assert monthly_equivalent_cents(yearly) == 1_000
    assert monthly_equivalent_cents(custom) == 2_000
    assert monthly_equivalent_cents(monthly) == 999
    assert monthly_equivalent_cents(broken) == 0

    odd_yearly = _txn(5, date(2025, 1, 1), Frequency.yearly, amount_cents=1_000)
    weekly = _txn(6, date(2025, 1, 1), Frequency.custom, every=7, amount_cents=1_000)
    assert monthly_equivalent_cents(odd_yearly) == 83
    assert monthly_equivalent_cents(weekly) == 4_285


def test_series_starting_inside_window_can_be_projected():
    source = _txn(1, date(2025, 3, 3), Frequency.custom, every=7)

    assert expand([source], *MARCH) == []
    result = expand([source], *MARCH, include_series_starting_inside=True)
    assert [o.date for o in result] == [
        date(2025, 3, 10),
        date(2025, 3, 17),
        date(2025, 3, 24),
        date(2025, 3, 31),
    ]
