from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from aggregation import (
    Bucketing,
    Dimension,
    SeriesPoint,
    aggregate,
    fill_months,
    totals,
)
from balances import (
    ForecastPoint,
    TrendPoint,
    account_effect_cents,
    balance_trend,
    cash_flow_forecast,
    project_balance_cents,
)
from config import get_settings
from models import Account, Family, Transaction, User
from periods import Period, add_months, month_period
from records import (
    DEFAULT_CATEGORIES,
    CategoryCatalog,
    TransactionRecord,
    TransactionType,
)
from recurrence import expand, local_today, monthly_equivalent_cents, next_occurrence
from schemas import AccountIn, FamilyIn, TransactionIn, UserIn


logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class InsufficientFundsError(ValueError):
    pass


def get_current_user_id() -> int:
    return 1


def visible_user_ids(session: Session, user_id: int) -> list[int]:
    """The user plus every member of the user's family."""
    user = session.get(User, user_id)
    if not user or user.family_id is None:
        return [user_id]
    stmt = select(User.id).where(User.family_id == user.family_id).order_by(User.id)
    return list(session.scalars(stmt).all())


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def create(self, data: UserIn) -> User:
        clash = self.session.scalar(
            select(User.id).where(
                or_(
                    func.lower(User.username) == data.username.strip().lower(),
                    func.lower(User.email) == data.email.strip().lower(),
                )
            )
        )
        if clash:
            raise ValueError("Username or email already in use")
        user = User(
            username=data.username.strip(),
            name=data.name.strip(),
            email=data.email.strip(),
            is_admin=data.is_admin,
            family_id=data.family_id,
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_created: id={user.id}")
        return user


class FamilyService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Family]:
        return self.session.scalars(select(Family).order_by(Family.name)).all()

    def get(self, family_id: int) -> Family:
        family = self.session.get(Family, family_id)
        if not family:
            raise NotFoundError("Family not found")
        return family

    def create(self, data: FamilyIn) -> Family:
        family = Family(
            name=data.name.strip(),
            currency=data.currency.upper(),
            created_by=self.user_id,
        )
        self.session.add(family)
        self.session.commit()
        self.session.refresh(family)
        logger.info(f"family_created: id={family.id} by={self.user_id}")
        return family

    def members(self, family_id: int) -> list[User]:
        self.get(family_id)
        stmt = select(User).where(User.family_id == family_id).order_by(User.name)
        return self.session.scalars(stmt).all()

    def add_member(self, family_id: int, member_id: int) -> User:
        self.get(family_id)
        user = UserService(self.session).get(member_id)
        user.family_id = family_id
        self.session.commit()
        logger.info(f"family_member_added: family={family_id} user={member_id}")
        return user

    def remove_member(self, member_id: int) -> User:
        user = UserService(self.session).get(member_id)
        user.family_id = None
        self.session.commit()
        logger.info(f"family_member_removed: user={member_id}")
        return user


class AccountService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Account]:
        owners = visible_user_ids(self.session, self.user_id)
        stmt = (
            select(Account)
            .where(Account.user_id.in_(owners))
            .order_by(Account.name, Account.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id not in visible_user_ids(
            self.session, self.user_id
        ):
            raise NotFoundError("Account not found")
        return account

    def create(self, data: AccountIn) -> Account:
        account = Account(
            user_id=self.user_id,
            name=data.name.strip(),
            category=data.category,
            icon=data.icon,
            balance_cents=data.balance_cents,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        logger.info(f"account_created: id={account.id} user={self.user_id}")
        return account

    def update(self, account_id: int, data: AccountIn) -> Account:
        account = self.get(account_id)
        account.name = data.name.strip()
        account.category = data.category
        account.icon = data.icon
        account.balance_cents = data.balance_cents
        self.session.commit()
        self.session.refresh(account)
        return account

    def delete(self, account_id: int) -> None:
        account = self.get(account_id)
        in_use = self.session.scalar(
            select(func.count(Transaction.id)).where(
                or_(
                    Transaction.source_account_id == account_id,
                    Transaction.destination_account_id == account_id,
                )
            )
        )
        if in_use:
            raise ValueError("Account still has transactions")
        self.session.delete(account)
        self.session.commit()
        logger.info(f"account_deleted: id={account_id}")


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _owners(self) -> list[int]:
        return visible_user_ids(self.session, self.user_id)

    def _apply(self, txn: Transaction, sign: int) -> None:
        record = txn.to_record()
        for account_id in {txn.source_account_id, txn.destination_account_id}:
            if account_id is None:
                continue
            account = self.session.get(Account, account_id)
            if account:
                account.balance_cents += sign * account_effect_cents(record, account_id)

    def _catalog(self) -> CategoryCatalog:
        stmt = (
            select(Transaction.category)
            .where(Transaction.user_id.in_(self._owners()))
            .distinct()
            .order_by(Transaction.category)
        )
        return CategoryCatalog(DEFAULT_CATEGORIES).merge(self.session.scalars(stmt).all())

    def _check_accounts(self, data: TransactionIn) -> Account:
        accounts = AccountService(self.session, self.user_id)
        source = accounts.get(data.source_account_id)
        if data.destination_account_id is not None:
            accounts.get(data.destination_account_id)
        return source

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id not in self._owners():
            raise NotFoundError("Transaction not found")
        return txn

    def list(
        self,
        period: Optional[Period] = None,
        *,
        account_id: Optional[int] = None,
        recurring_only: bool = False,
    ) -> list[Transaction]:
        stmt = select(Transaction).where(Transaction.user_id.in_(self._owners()))
        if period is not None:
            stmt = stmt.where(
                Transaction.date >= period.start, Transaction.date < period.end
            )
        if account_id is not None:
            stmt = stmt.where(
                or_(
                    Transaction.source_account_id == account_id,
                    Transaction.destination_account_id == account_id,
                )
            )
        if recurring_only:
            stmt = stmt.where(Transaction.is_recurring.is_(True))
        stmt = stmt.order_by(Transaction.date.desc(), Transaction.id.desc())
        return self.session.scalars(stmt).all()

    def records(self) -> list[TransactionRecord]:
        return [txn.to_record() for txn in self.list()]

    def create(self, data: TransactionIn) -> Transaction:
        source = self._check_accounts(data)
        if (
            data.type in (TransactionType.expense, TransactionType.transfer)
            and source.balance_cents < data.amount_cents
        ):
            raise InsufficientFundsError("Insufficient funds in source account")
        category = self._catalog().resolve(data.category)
        txn = Transaction(user_id=self.user_id, **data.model_dump())
        txn.category = category
        self.session.add(txn)
        self.session.flush()
        self._apply(txn, +1)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: id={txn.id} type={txn.type.value} "
            f"amount_cents={txn.amount_cents}"
        )
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        self._check_accounts(data)
        category = self._catalog().resolve(data.category)
        self._apply(txn, -1)
        for field_name, value in data.model_dump().items():
            setattr(txn, field_name, value)
        txn.category = category
        self.session.flush()
        self._apply(txn, +1)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(f"transaction_updated: id={txn.id}")
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self._apply(txn, -1)
        self.session.delete(txn)
        self.session.commit()
        logger.info(f"transaction_deleted: id={transaction_id}")

    def rename_category(self, old: str, new: str) -> int:
        """Move every visible transaction from one category to another."""
        clean_new = new.strip()
        if not clean_new:
            raise ValueError("Category name must not be empty")
        stmt = select(Transaction).where(
            Transaction.user_id.in_(self._owners()),
            Transaction.category == old,
        )
        rows = self.session.scalars(stmt).all()
        for txn in rows:
            txn.category = clean_new
        self.session.commit()
        logger.info(f"category_renamed: old={old!r} new={clean_new!r} count={len(rows)}")
        return len(rows)


@dataclass(frozen=True)
class UpcomingPayment:
    record: TransactionRecord
    next_date: date
    monthly_cents: int


class DashboardService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        *,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.today = today or local_today()
        self._records: Optional[list[TransactionRecord]] = None

    def records(self) -> list[TransactionRecord]:
        if self._records is None:
            self._records = TransactionService(self.session, self.user_id).records()
        return self._records

    def accounts(self):
        return [a.to_record() for a in AccountService(self.session, self.user_id).list_all()]

    def category_catalog(self) -> CategoryCatalog:
        used = sorted({r.category_name for r in self.records()})
        return CategoryCatalog(DEFAULT_CATEGORIES).merge(used)

    def with_occurrences(self, period: Period) -> list[TransactionRecord]:
        """Persisted records inside ``period`` plus projected recurrences."""
        records = self.records()
        inside = [r for r in records if r.date is not None and period.contains(r.date)]
        return inside + expand(records, period.start, period.end)

    def daily_activity(self, year: int, month: int) -> list[SeriesPoint]:
        period = month_period(year, month)
        return aggregate(self.with_occurrences(period), Bucketing.day)

    def monthly_overview(self, months: Optional[int] = None) -> list[SeriesPoint]:
        if months is None:
            months = get_settings().history_months
        this_month = self.today.replace(day=1)
        start = add_months(this_month, -(months - 1))
        end = add_months(this_month, 1)
        records = self.records()
        history = [
            r for r in records if r.date is not None and start <= r.date < this_month
        ]
        # only the running month gets projected recurrences
        current = self.with_occurrences(Period("current", this_month, end))
        points = aggregate(history + current, Bucketing.month)
        return fill_months(points, start, this_month)

    def breakdown(
        self, period: Period, dimension: Dimension, *, expenses_only: bool = False
    ) -> list[SeriesPoint]:
        records = self.with_occurrences(period)
        if expenses_only:
            records = [r for r in records if r.type == TransactionType.expense]
        return aggregate(
            records,
            Bucketing.month,
            dimension,
            categories=self.category_catalog(),
        )

    def summary(self, period: Period) -> dict[str, int]:
        result = totals(self.with_occurrences(period))
        return {
            "income_cents": result.income_cents,
            "expense_cents": result.expense_cents,
            "net_cents": result.net_cents,
            "balance_cents": sum(a.balance_cents for a in self.accounts()),
        }

    def upcoming_payments(self, *, days: Optional[int] = None) -> list[UpcomingPayment]:
        horizon = self.today + timedelta(
            days=get_settings().forecast_days if days is None else days
        )
        upcoming: list[UpcomingPayment] = []
        for record in self.records():
            if not record.recurrence.expandable or record.type != TransactionType.expense:
                continue
            if record.date is None:
                continue
            if record.date > self.today:
                nxt: Optional[date] = record.date
            else:
                nxt = next_occurrence(record, self.today)
            if nxt is None or nxt > horizon:
                continue
            upcoming.append(
                UpcomingPayment(
                    record=record,
                    next_date=nxt,
                    monthly_cents=monthly_equivalent_cents(record),
                )
            )
        upcoming.sort(key=lambda p: (p.next_date, p.record.source_id))
        return upcoming

    def recurring_summary(self) -> dict[str, object]:
        income = 0
        expenses = 0
        by_category: dict[str, int] = {}
        seen: set[tuple[str, str]] = set()
        # latest record per (category, description) stands for the subscription
        ordered = sorted(
            (r for r in self.records() if r.recurrence.expandable and r.date is not None),
            key=lambda r: (r.date, r.source_id),
            reverse=True,
        )
        for record in ordered:
            key = (record.category_name, record.description or "")
            if key in seen:
                continue
            seen.add(key)
            monthly = monthly_equivalent_cents(record)
            if record.type == TransactionType.income:
                income += monthly
            elif record.type == TransactionType.expense:
                expenses += monthly
                by_category[record.category_name] = (
                    by_category.get(record.category_name, 0) + monthly
                )
        breakdown = [
            {"category": name, "monthly_cents": amount}
            for name, amount in sorted(
                by_category.items(), key=lambda item: item[1], reverse=True
            )
        ]
        return {
            "monthly_income_cents": income,
            "monthly_expense_cents": expenses,
            "net_monthly_cents": income - expenses,
            "expense_breakdown": breakdown,
        }

    def balance_as_of(self, account_id: int, as_of: date) -> int:
        account = AccountService(self.session, self.user_id).get(account_id)
        return project_balance_cents(
            account.to_record(), self.records(), as_of, now=self.today
        )

    def balance_trend(self, months: Optional[int] = None) -> list[TrendPoint]:
        return balance_trend(
            self.accounts(),
            self.records(),
            months=get_settings().history_months if months is None else months,
            now=self.today,
        )

    def cash_flow_forecast(self, days: Optional[int] = None) -> list[ForecastPoint]:
        return cash_flow_forecast(
            self.accounts(),
            self.records(),
            days=get_settings().forecast_days if days is None else days,
            today=self.today,
        )
