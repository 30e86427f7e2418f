from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from records import (
    AccountCategory,
    EntryRef,
    Frequency,
    TransactionRecord,
    TransactionType,
    VirtualRef,
    to_cents,
)


class FamilyIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    currency: str = Field(default="USD", min_length=3, max_length=3)


class UserIn(BaseModel):
    username: str = Field(..., min_length=3, max_length=80)
    name: str = Field(..., min_length=1, max_length=120)
    email: str = Field(..., min_length=3, max_length=200)
    is_admin: bool = False
    family_id: Optional[int] = None


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    category: AccountCategory = AccountCategory.checking
    icon: Optional[str] = Field(default=None, max_length=40)
    balance_cents: int = 0

    @model_validator(mode="before")
    @classmethod
    def _balance_from_decimal(cls, data):
        if isinstance(data, dict) and "balance" in data and "balance_cents" not in data:
            data = dict(data)
            data["balance_cents"] = to_cents(data.pop("balance"), allow_negative=True)
        return data


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    name: str
    category: AccountCategory
    icon: Optional[str]
    balance_cents: int


class TransactionIn(BaseModel):
    source_account_id: int
    destination_account_id: Optional[int] = None
    amount_cents: int = Field(..., ge=0)
    type: TransactionType
    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    date: date
    is_recurring: bool = False
    frequency: Optional[Frequency] = None
    frequency_day: Optional[int] = Field(default=None, ge=1, le=31)
    frequency_custom_days: Optional[int] = Field(default=None, gt=0)
    recurring_end_date: Optional[date] = None

    @model_validator(mode="before")
    @classmethod
    def _amount_from_decimal(cls, data):
        # clients may send a decimal "amount" instead of cents
        if isinstance(data, dict) and "amount" in data and "amount_cents" not in data:
            data = dict(data)
            data["amount_cents"] = to_cents(data.pop("amount"))
        return data

    @model_validator(mode="after")
    def _check_shape(self) -> "TransactionIn":
        if self.type == TransactionType.transfer:
            if self.destination_account_id is None:
                raise ValueError("Destination account is required for transfers")
            if self.destination_account_id == self.source_account_id:
                raise ValueError("Transfer accounts must differ")
        elif self.destination_account_id is not None:
            raise ValueError("Only transfers have a destination account")
        if self.is_recurring:
            if self.frequency is None:
                raise ValueError("Recurring transactions need a frequency")
            if self.frequency == Frequency.custom and not self.frequency_custom_days:
                raise ValueError("Custom frequency requires frequency_custom_days")
        if self.recurring_end_date and self.recurring_end_date < self.date:
            raise ValueError("Recurring end date must not precede the transaction date")
        return self


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source_account_id: int
    destination_account_id: Optional[int]
    user_id: int
    amount_cents: int
    type: TransactionType
    category: str
    description: Optional[str]
    date: date
    is_recurring: bool
    frequency: Optional[Frequency]
    frequency_day: Optional[int]
    frequency_custom_days: Optional[int]
    recurring_end_date: Optional[date]


class EntryRefOut(BaseModel):
    kind: Literal["persisted", "virtual"]
    id: Optional[int] = None
    source_id: Optional[int] = None
    occurrence_date: Optional[date] = None

    @classmethod
    def from_ref(cls, ref: EntryRef) -> "EntryRefOut":
        if isinstance(ref, VirtualRef):
            return cls(
                kind="virtual",
                source_id=ref.source_id,
                occurrence_date=ref.occurrence_date,
            )
        return cls(kind="persisted", id=ref.id)


class OccurrenceOut(BaseModel):
    ref: EntryRefOut
    is_virtual: bool
    source_account_id: int
    destination_account_id: Optional[int]
    user_id: int
    amount_cents: int
    type: TransactionType
    category: str
    description: Optional[str]
    date: Optional[date]
    frequency: Optional[Frequency]

    @classmethod
    def from_record(cls, record: TransactionRecord) -> "OccurrenceOut":
        return cls(
            ref=EntryRefOut.from_ref(record.ref),
            is_virtual=record.is_virtual,
            source_account_id=record.source_account_id,
            destination_account_id=record.destination_account_id,
            user_id=record.user_id,
            amount_cents=record.amount,
            type=record.type,
            category=record.category_name,
            description=record.description,
            date=record.date,
            frequency=record.recurrence.frequency,
        )


class CategoryRenameIn(BaseModel):
    old_category: str = Field(..., min_length=1, max_length=100)
    new_category: str = Field(default="Other", min_length=1, max_length=100)
