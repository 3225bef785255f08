from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable, Optional

from ledger_engine.balance_notes import extract_balance_change
from ledger_engine.currency_conversion import ConversionGateway, convert_monthly_figures
from ledger_engine.models import (
    ZERO,
    Account,
    BaseCurrency,
    MonthlyBalance,
    Transaction,
    TransactionType,
    as_datetime,
    coerce_decimal,
)
from ledger_engine.months import month_end_instant, month_key

logger = logging.getLogger(__name__)

MonthlyFigures = dict[str, dict[str, Decimal]]


def balance_adjustments(account: Account) -> list[Transaction]:
    return [txn for txn in account.transactions if txn.type == TransactionType.BALANCE]


def flow_transactions(account: Account) -> list[Transaction]:
    return [txn for txn in account.transactions if txn.type in TransactionType.flow]


def adjustment_value(txn: Transaction) -> Decimal:
    """Value a balance adjustment sets the account to.

    A delta recorded in the notes takes precedence over the stored amount.
    """
    delta = extract_balance_change(txn.notes)
    if delta is not None:
        return delta
    return coerce_decimal(txn.amount)


def stock_month_end_balances(account: Account, months: Iterable[str]) -> MonthlyFigures:
    """Month-end balances per currency, rebuilt from balance adjustments.

    Each currency takes the value of its latest adjustment on or before the
    month end. Months before any adjustment stay empty; an empty month after
    data exists inherits the previous month.
    """
    adjustments = balance_adjustments(account)
    ignored = len(account.transactions) - len(adjustments)
    if ignored:
        logger.warning(
            "Excluding %d income/expense transactions from balance history of account %s",
            ignored,
            account.id,
        )
    if not adjustments:
        return {}

    by_currency = _group_by_currency(adjustments)
    ordered_months = sorted(months)
    cursors = {currency: 0 for currency in by_currency}
    latest: dict[str, Optional[Decimal]] = {currency: None for currency in by_currency}

    balances: MonthlyFigures = {}
    for month in ordered_months:
        month_end = month_end_instant(month)
        row: dict[str, Decimal] = {}
        for currency, transactions in by_currency.items():
            position = cursors[currency]
            while position < len(transactions) and as_datetime(transactions[position].date) <= month_end:
                latest[currency] = adjustment_value(transactions[position])
                position += 1
            cursors[currency] = position
            if latest[currency] is not None:
                row[currency] = latest[currency]
        balances[month] = row

    previous: Optional[dict[str, Decimal]] = None
    for month in ordered_months:
        if not balances[month] and previous:
            balances[month] = dict(previous)
        if balances[month]:
            previous = balances[month]
    return balances


def flow_month_totals(account: Account, months: Iterable[str]) -> MonthlyFigures:
    """Income/expense totals per currency for each calendar month.

    A month without transactions is zero; nothing carries over.
    """
    anomalies = len(balance_adjustments(account))
    if anomalies:
        logger.warning(
            "Ignoring %d balance adjustments on flow account %s",
            anomalies,
            account.id,
        )
    transactions = flow_transactions(account)
    if not transactions:
        return {}

    by_currency = _group_by_currency(transactions)
    totals: dict[tuple[str, str], Decimal] = {}
    for currency, currency_transactions in by_currency.items():
        for txn in currency_transactions:
            key = (month_key(as_datetime(txn.date)), currency)
            totals[key] = totals.get(key, ZERO) + coerce_decimal(txn.amount)

    return {
        month: {currency: totals.get((month, currency), ZERO) for currency in by_currency}
        for month in sorted(months)
    }


def reconstruct_stock_months(
    account: Account,
    months: Iterable[str],
    base_currency: BaseCurrency,
    gateway: ConversionGateway,
    user_id: str,
) -> dict[str, MonthlyBalance]:
    figures = stock_month_end_balances(account, months)
    if not figures:
        return {}
    return convert_monthly_figures({account.id: figures}, base_currency.code, gateway, user_id)[
        account.id
    ]


def reconstruct_flow_months(
    account: Account,
    months: Iterable[str],
    base_currency: BaseCurrency,
    gateway: ConversionGateway,
    user_id: str,
) -> dict[str, MonthlyBalance]:
    figures = flow_month_totals(account, months)
    if not figures:
        return {}
    return convert_monthly_figures({account.id: figures}, base_currency.code, gateway, user_id)[
        account.id
    ]


def _group_by_currency(transactions: Iterable[Transaction]) -> dict[str, list[Transaction]]:
    groups: dict[str, list[Transaction]] = {}
    for txn in sorted(transactions, key=lambda item: (as_datetime(item.date), item.id)):
        groups.setdefault(txn.currency_code, []).append(txn)
    return groups
