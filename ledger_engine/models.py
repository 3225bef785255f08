from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Optional

ZERO = Decimal("0")


class AccountRole:
    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"

    values = {ASSET, LIABILITY, INCOME, EXPENSE}
    stock = frozenset({ASSET, LIABILITY})
    flow = frozenset({INCOME, EXPENSE})

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in cls.values:
            raise ValueError("Invalid account role.")
        return normalized

    @classmethod
    def normalize(cls, value: str | None) -> str | None:
        if not value:
            return None
        try:
            return cls.validate(value)
        except ValueError:
            return None


class TransactionType:
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    BALANCE = "BALANCE"

    values = {INCOME, EXPENSE, BALANCE}
    flow = frozenset({INCOME, EXPENSE})

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in cls.values:
            raise ValueError("Invalid transaction type.")
        return normalized


@dataclass(frozen=True)
class Transaction:
    id: str
    type: str
    amount: Decimal
    currency_code: str
    date: datetime
    notes: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class Account:
    id: str
    name: str
    category_id: str
    currency_code: str
    role: Optional[str] = None
    transactions: tuple[Transaction, ...] = ()
    description: Optional[str] = None


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    role: Optional[str] = None
    parent_id: Optional[str] = None
    order: int = 0


@dataclass(frozen=True)
class BaseCurrency:
    code: str
    symbol: str
    name: str


@dataclass(frozen=True)
class AccountBalance:
    currency_code: str
    amount: Decimal


@dataclass
class MonthlyBalance:
    """Per-currency figures for one month.

    ``converted`` is keyed by the original currency code and holds the
    base-currency value of that figure. Currencies whose conversion failed
    are listed in ``unconverted`` and keep their original value.
    """

    original: dict[str, Decimal] = field(default_factory=dict)
    converted: dict[str, Decimal] = field(default_factory=dict)
    unconverted: list[str] = field(default_factory=list)

    @classmethod
    def zero(cls, currency_code: str) -> "MonthlyBalance":
        return cls(original={currency_code: ZERO}, converted={currency_code: ZERO})


def coerce_decimal(value: Decimal | float | int | str) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    return datetime.combine(value, time.min)
