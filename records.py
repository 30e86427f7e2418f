"""In-memory records the analytics core works on.

Rows coming out of the database (or any other source) are converted into these
frozen dataclasses before expansion, aggregation or balance projection. The core
never sees ORM objects and never writes anything back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Iterable, Optional, Union

from rapidfuzz.distance import Levenshtein


UNCATEGORIZED = "Uncategorized"

DEFAULT_CATEGORIES: tuple[str, ...] = (
    "Housing",
    "Transportation",
    "Food",
    "Utilities",
    "Insurance",
    "Healthcare",
    "Savings",
    "Personal",
    "Entertainment",
    "Education",
    "Debt",
    "Gifts",
    "Salary",
    "Business",
    "Other",
)


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"
    transfer = "transfer"


class Frequency(str, Enum):
    one_time = "one_time"
    monthly = "monthly"
    yearly = "yearly"
    custom = "custom"


class AccountCategory(str, Enum):
    checking = "checking"
    savings = "savings"
    credit = "credit"
    loan = "loan"
    investment = "investment"


@dataclass(frozen=True)
class PersistedRef:
    id: int

    @property
    def sort_key(self) -> int:
        return self.id


@dataclass(frozen=True)
class VirtualRef:
    source_id: int
    occurrence_date: date

    @property
    def sort_key(self) -> int:
        return self.source_id


EntryRef = Union[PersistedRef, VirtualRef]


@dataclass(frozen=True)
class RecurrenceRule:
    is_recurring: bool = False
    frequency: Optional[Frequency] = None
    frequency_day: Optional[int] = None
    frequency_custom_days: Optional[int] = None
    recurring_end_date: Optional[date] = None

    @property
    def expandable(self) -> bool:
        return (
            self.is_recurring
            and self.frequency is not None
            and self.frequency != Frequency.one_time
        )


NO_RECURRENCE = RecurrenceRule()


@dataclass(frozen=True)
class TransactionRecord:
    ref: EntryRef
    source_account_id: int
    type: TransactionType
    amount_cents: Optional[int]
    user_id: int
    date: Optional[date]
    category: Optional[str] = None
    description: Optional[str] = None
    destination_account_id: Optional[int] = None
    recurrence: RecurrenceRule = field(default=NO_RECURRENCE)

    @property
    def is_virtual(self) -> bool:
        return isinstance(self.ref, VirtualRef)

    @property
    def source_id(self) -> int:
        return self.ref.sort_key

    @property
    def amount(self) -> int:
        return self.amount_cents or 0

    @property
    def category_name(self) -> str:
        name = (self.category or "").strip()
        return name or UNCATEGORIZED


@dataclass(frozen=True)
class AccountRecord:
    id: int
    user_id: int
    name: str
    balance_cents: int
    category: AccountCategory = AccountCategory.checking
    icon: Optional[str] = None


def coerce_date(value: object) -> Optional[date]:
    """Best-effort conversion to a calendar date; ``None`` when unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            return None
    return None


def to_cents(value: Union[int, float, str, Decimal], *, allow_negative: bool = False) -> int:
    if isinstance(value, str):
        clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
        clean = clean.replace(",", ".")
        if clean.count(".") > 1:
            parts = clean.split(".")
            clean = "".join(parts[:-1]) + "." + parts[-1]
    else:
        clean = str(value)
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


class AmbiguousCategoryError(ValueError):
    pass


class CategoryCatalog:
    """Immutable, insertion-ordered set of known category names."""

    __slots__ = ("_names", "_index")

    def __init__(self, names: Iterable[str] = DEFAULT_CATEGORIES) -> None:
        ordered: list[str] = []
        seen: set[str] = set()
        for raw in names:
            name = (raw or "").strip()
            if name and name not in seen:
                seen.add(name)
                ordered.append(name)
        self._names = tuple(ordered)
        self._index = {name: idx for idx, name in enumerate(self._names)}

    def __iter__(self):
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __repr__(self) -> str:
        return f"CategoryCatalog({list(self._names)!r})"

    @property
    def names(self) -> tuple[str, ...]:
        return self._names

    def merge(self, names: Iterable[str]) -> "CategoryCatalog":
        return CategoryCatalog((*self._names, *names))

    def rank(self, name: str) -> Optional[int]:
        return self._index.get(name)

    def resolve(self, name: str) -> str:
        clean = (name or "").strip()
        if not clean:
            return UNCATEGORIZED
        lowered = clean.lower()
        for known in self._names:
            if known.lower() == lowered:
                return known

        best_distance: Optional[int] = None
        best: list[str] = []
        for known in self._names:
            dist = int(Levenshtein.distance(lowered, known.lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [known]
            elif dist == best_distance:
                best.append(known)

        if best_distance is not None and best_distance <= 1:
            if len(best) > 1:
                options = ", ".join(sorted(best))
                raise AmbiguousCategoryError(
                    f"Category '{clean}' is ambiguous; matches: {options}"
                )
            return best[0]
        return clean
