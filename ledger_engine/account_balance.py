from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Iterable, Optional

from ledger_engine.models import (
    ZERO,
    Account,
    AccountBalance,
    AccountRole,
    Transaction,
    TransactionType,
    as_datetime,
    coerce_decimal,
)

logger = logging.getLogger(__name__)

# Sign applied to each transaction type, per account role.
ROLE_SIGNS: dict[str, dict[str, int]] = {
    AccountRole.ASSET: {TransactionType.INCOME: 1, TransactionType.EXPENSE: -1},
    AccountRole.LIABILITY: {TransactionType.INCOME: 1, TransactionType.EXPENSE: -1},
    AccountRole.INCOME: {TransactionType.INCOME: 1},
    AccountRole.EXPENSE: {TransactionType.EXPENSE: 1},
}


@dataclass(frozen=True)
class RoleValidation:
    is_valid: bool
    issues: list[str] = field(default_factory=list)


def calculate_balance(
    account: Account,
    as_of: Optional[date | datetime] = None,
) -> dict[str, AccountBalance]:
    """Current balance of one account, per currency.

    Stock accounts net income against expense; flow accounts only total the
    transaction type matching their role. BALANCE adjustments are ignored
    here, they only feed the monthly reconstruction.
    """
    role = AccountRole.normalize(account.role)
    if role is None:
        logger.warning("Account %s has no role, using asset convention", account.name)
        role = AccountRole.ASSET
    signs = ROLE_SIGNS[role]

    totals: dict[str, Decimal] = {}
    for txn in _filter_as_of(account.transactions, as_of):
        currency = txn.currency_code
        totals.setdefault(currency, ZERO)
        sign = signs.get(txn.type)
        if sign is None:
            if txn.type != TransactionType.BALANCE:
                logger.warning(
                    "Ignoring %s transaction %s on %s account %s",
                    txn.type,
                    txn.id,
                    role,
                    account.name,
                )
            continue
        totals[currency] += sign * coerce_decimal(txn.amount)

    return _as_balances(totals)


def calculate_total_balance(
    accounts: Iterable[Account],
    as_of: Optional[date | datetime] = None,
) -> dict[str, AccountBalance]:
    totals: dict[str, Decimal] = {}
    for account in accounts:
        for currency, balance in calculate_balance(account, as_of).items():
            totals[currency] = totals.get(currency, ZERO) + balance.amount
    return _as_balances(totals)


def calculate_balances_by_role(
    accounts: Iterable[Account],
    as_of: Optional[date | datetime] = None,
) -> dict[str, dict[str, AccountBalance]]:
    totals: dict[str, dict[str, Decimal]] = {role: {} for role in ROLE_SIGNS}
    for account in accounts:
        role = AccountRole.normalize(account.role) or AccountRole.ASSET
        role_totals = totals[role]
        for currency, balance in calculate_balance(account, as_of).items():
            role_totals[currency] = role_totals.get(currency, ZERO) + balance.amount
    return {role: _as_balances(role_totals) for role, role_totals in totals.items()}


def calculate_net_worth(
    accounts: Iterable[Account],
    as_of: Optional[date | datetime] = None,
) -> dict[str, AccountBalance]:
    by_role = calculate_balances_by_role(accounts, as_of)
    assets = by_role[AccountRole.ASSET]
    liabilities = by_role[AccountRole.LIABILITY]
    net_worth: dict[str, Decimal] = {}
    for currency in sorted(set(assets) | set(liabilities)):
        asset_amount = assets[currency].amount if currency in assets else ZERO
        liability_amount = liabilities[currency].amount if currency in liabilities else ZERO
        net_worth[currency] = asset_amount - liability_amount
    return _as_balances(net_worth)


def validate_account_roles(accounts: Iterable[Account]) -> RoleValidation:
    issues = [
        f'Account "{account.name}" has no role.'
        for account in accounts
        if AccountRole.normalize(account.role) is None
    ]
    return RoleValidation(is_valid=not issues, issues=issues)


def _filter_as_of(
    transactions: Iterable[Transaction],
    as_of: Optional[date | datetime],
) -> list[Transaction]:
    if as_of is None:
        return list(transactions)
    cutoff = as_of if isinstance(as_of, datetime) else datetime.combine(as_of, time.max)
    cutoff = as_datetime(cutoff)
    return [txn for txn in transactions if as_datetime(txn.date) <= cutoff]


def _as_balances(totals: dict[str, Decimal]) -> dict[str, AccountBalance]:
    return {
        currency: AccountBalance(currency_code=currency, amount=amount)
        for currency, amount in totals.items()
    }
