from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from records import (
    AccountCategory,
    AccountRecord,
    Frequency,
    PersistedRef,
    RecurrenceRule,
    TransactionRecord,
    TransactionType,
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Family(Base, TimestampMixin):
    __tablename__ = "families"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    created_by: Mapped[int] = mapped_column(Integer, nullable=False)

    members: Mapped[list["User"]] = relationship("User", back_populates="family")


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    family_id: Mapped[Optional[int]] = mapped_column(ForeignKey("families.id"))

    family: Mapped[Optional["Family"]] = relationship(
        "Family", back_populates="members"
    )
    accounts: Mapped[list["Account"]] = relationship("Account", back_populates="user")


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    category: Mapped[AccountCategory] = mapped_column(
        SAEnum(AccountCategory), nullable=False, default=AccountCategory.checking
    )
    icon: Mapped[Optional[str]] = mapped_column(String(40))
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    user: Mapped["User"] = relationship("User", back_populates="accounts")

    __table_args__ = (Index("ix_accounts_user", "user_id"),)

    def to_record(self) -> AccountRecord:
        return AccountRecord(
            id=self.id,
            user_id=self.user_id,
            name=self.name,
            balance_cents=int(self.balance_cents or 0),
            category=self.category,
            icon=self.icon,
        )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    source_account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"), nullable=False
    )
    destination_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id")
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    frequency: Mapped[Optional[Frequency]] = mapped_column(SAEnum(Frequency))
    frequency_day: Mapped[Optional[int]] = mapped_column(Integer)
    frequency_custom_days: Mapped[Optional[int]] = mapped_column(Integer)
    recurring_end_date: Mapped[Optional[date]] = mapped_column(Date)

    source_account: Mapped["Account"] = relationship(
        "Account", foreign_keys=[source_account_id]
    )
    destination_account: Mapped[Optional["Account"]] = relationship(
        "Account", foreign_keys=[destination_account_id]
    )
    user: Mapped["User"] = relationship("User")

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_source_date", "source_account_id", "date"),
        Index("ix_transactions_destination_date", "destination_account_id", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "frequency_custom_days IS NULL OR frequency_custom_days > 0",
            name="ck_transactions_custom_days_positive",
        ),
        CheckConstraint(
            "frequency_day IS NULL OR (frequency_day >= 1 AND frequency_day <= 31)",
            name="ck_transactions_frequency_day_range",
        ),
        CheckConstraint(
            "destination_account_id IS NULL "
            "OR destination_account_id != source_account_id",
            name="ck_transactions_transfer_distinct",
        ),
    )

    def to_record(self) -> TransactionRecord:
        return TransactionRecord(
            ref=PersistedRef(self.id),
            source_account_id=self.source_account_id,
            destination_account_id=self.destination_account_id,
            user_id=self.user_id,
            amount_cents=self.amount_cents,
            type=self.type,
            category=self.category,
            description=self.description,
            date=self.date,
            recurrence=RecurrenceRule(
                is_recurring=bool(self.is_recurring),
                frequency=self.frequency,
                frequency_day=self.frequency_day,
                frequency_custom_days=self.frequency_custom_days,
                recurring_end_date=self.recurring_end_date,
            ),
        )
