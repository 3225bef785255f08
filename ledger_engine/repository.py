from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Collection, Optional

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ledger_engine.currency_conversion import (
    RateProviderUnavailable,
    normalize_currency,
)
from ledger_engine.models import (
    Account,
    AccountRole,
    BaseCurrency,
    Category,
    Transaction,
    TransactionType,
    coerce_decimal,
)

logger = logging.getLogger(__name__)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

currencies = Table(
    "currencies",
    metadata,
    Column("code", String(3), primary_key=True),
    Column("symbol", String(10), nullable=False),
    Column("name", String(100), nullable=False),
    Column("is_custom", Boolean, nullable=False, server_default="0"),
    Column("created_by", String(36), ForeignKey("users.id")),
)

user_settings = Table(
    "user_settings",
    metadata,
    Column("user_id", String(36), ForeignKey("users.id"), primary_key=True),
    Column("base_currency", String(3), ForeignKey("currencies.code")),
)

categories = Table(
    "categories",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("type", String(20)),
    Column("parent_id", String(36), ForeignKey("categories.id")),
    Column("order", Integer, nullable=False, server_default="0"),
)

accounts = Table(
    "accounts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("category_id", String(36), ForeignKey("categories.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("description", String(500)),
    Column("currency", String(3), nullable=False),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("account_id", String(36), ForeignKey("accounts.id"), nullable=False),
    Column("type", String(20), nullable=False),
    Column("amount", Numeric(18, 2), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("date", DateTime, nullable=False),
    Column("description", String(255)),
    Column("notes", String(500)),
)

exchange_rates = Table(
    "exchange_rates",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("from_currency", String(3), nullable=False),
    Column("to_currency", String(3), nullable=False),
    Column("rate", Numeric(20, 8), nullable=False),
    Column("effective_date", Date, nullable=False),
    Column("notes", String(500)),
)


class LedgerRepository:
    """Read-only access to a user's categories, accounts and transactions."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get_category(
        self,
        user_id: str,
        category_id: str,
        roles: Optional[Collection[str]] = None,
    ) -> Optional[Category]:
        stmt = select(categories).where(
            categories.c.id == category_id,
            categories.c.user_id == user_id,
        )
        if roles is not None:
            stmt = stmt.where(categories.c.type.in_(sorted(roles)))
        with self.engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
        return _category_from_row(row) if row else None

    def list_categories(
        self,
        user_id: str,
        roles: Optional[Collection[str]] = None,
    ) -> list[Category]:
        stmt = (
            select(categories)
            .where(categories.c.user_id == user_id)
            .order_by(categories.c["order"].asc(), categories.c.name.asc(), categories.c.id.asc())
        )
        if roles is not None:
            stmt = stmt.where(categories.c.type.in_(sorted(roles)))
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [_category_from_row(row) for row in rows]

    def list_accounts(
        self,
        user_id: str,
        category_ids: Collection[str],
    ) -> list[Account]:
        """Accounts filed under ``category_ids`` with their transactions.

        Transactions come back oldest first. The account role is the type of
        its category.
        """
        if not category_ids:
            return []
        account_stmt = (
            select(
                accounts.c.id,
                accounts.c.name,
                accounts.c.description,
                accounts.c.category_id,
                accounts.c.currency,
                categories.c.type.label("role"),
            )
            .select_from(accounts.join(categories, accounts.c.category_id == categories.c.id))
            .where(
                accounts.c.user_id == user_id,
                accounts.c.category_id.in_(sorted(category_ids)),
            )
            .order_by(accounts.c.name.asc(), accounts.c.id.asc())
        )
        with self.engine.begin() as conn:
            account_rows = conn.execute(account_stmt).mappings().all()
            account_ids = [row["id"] for row in account_rows]
            transaction_rows = []
            if account_ids:
                txn_stmt = (
                    select(transactions)
                    .where(
                        transactions.c.user_id == user_id,
                        transactions.c.account_id.in_(account_ids),
                    )
                    .order_by(transactions.c.date.asc(), transactions.c.id.asc())
                )
                transaction_rows = conn.execute(txn_stmt).mappings().all()

        by_account: dict[str, list[Transaction]] = {account_id: [] for account_id in account_ids}
        for row in transaction_rows:
            txn = _transaction_from_row(row)
            if txn is not None:
                by_account[row["account_id"]].append(txn)

        return [
            Account(
                id=row["id"],
                name=row["name"],
                description=row["description"],
                category_id=row["category_id"],
                currency_code=_currency_code(row["currency"]),
                role=AccountRole.normalize(row["role"]),
                transactions=tuple(by_account[row["id"]]),
            )
            for row in account_rows
        ]

    def get_base_currency(self, user_id: str) -> Optional[BaseCurrency]:
        """The user's chosen base currency, ignoring custom codes of other users."""
        stmt = (
            select(currencies.c.code, currencies.c.symbol, currencies.c.name)
            .select_from(
                user_settings.join(currencies, user_settings.c.base_currency == currencies.c.code)
            )
            .where(user_settings.c.user_id == user_id, _visible_to(user_id))
        )
        with self.engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
        if not row:
            return None
        return BaseCurrency(code=row["code"], symbol=row["symbol"], name=row["name"])


class StoredRateProvider:
    """Rates the user has recorded, picked by effective date.

    The rate used is the latest one effective on or before the requested
    date. Only the direct ``source -> target`` pair is consulted.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get_rate(
        self,
        source_currency: str,
        target_currency: str,
        as_of: Optional[date] = None,
        user_id: Optional[str] = None,
    ) -> Decimal:
        source = normalize_currency(source_currency)
        target = normalize_currency(target_currency)
        if source == target:
            return Decimal("1")
        if user_id is None:
            raise ValueError("Stored rates require a user.")

        stmt = (
            select(exchange_rates.c.rate)
            .where(
                exchange_rates.c.user_id == user_id,
                exchange_rates.c.from_currency == source,
                exchange_rates.c.to_currency == target,
            )
            .order_by(exchange_rates.c.effective_date.desc())
            .limit(1)
        )
        if as_of is not None:
            stmt = stmt.where(exchange_rates.c.effective_date <= as_of)
        try:
            with self.engine.begin() as conn:
                rate = conn.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise RateProviderUnavailable("Exchange rate table unavailable") from exc
        if rate is None:
            raise ValueError(f"No exchange rate from {source} to {target}")
        return coerce_decimal(rate)


def _visible_to(user_id: str):
    return or_(currencies.c.is_custom.is_(False), currencies.c.created_by == user_id)


def _currency_code(value: str) -> str:
    return value.strip().upper()


def _category_from_row(row) -> Category:
    return Category(
        id=row["id"],
        name=row["name"],
        role=AccountRole.normalize(row["type"]),
        parent_id=row["parent_id"],
        order=row["order"] or 0,
    )


def _transaction_from_row(row) -> Optional[Transaction]:
    try:
        txn_type = TransactionType.validate(row["type"])
    except ValueError:
        logger.warning("Skipping transaction %s with unknown type %r", row["id"], row["type"])
        return None
    return Transaction(
        id=row["id"],
        type=txn_type,
        amount=coerce_decimal(row["amount"]),
        currency_code=_currency_code(row["currency"]),
        date=row["date"],
        notes=row["notes"],
        description=row["description"],
    )
