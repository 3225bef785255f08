from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from typing import Collection, Iterable, Sequence

from ledger_engine.category_tree import CategoryHierarchy
from ledger_engine.currency_conversion import ConversionGateway, convert_monthly_figures
from ledger_engine.models import (
    ZERO,
    Account,
    AccountRole,
    BaseCurrency,
    Category,
    MonthlyBalance,
)
from ledger_engine.monthly_history import (
    MonthlyFigures,
    balance_adjustments,
    flow_month_totals,
    flow_transactions,
    stock_month_end_balances,
)
from ledger_engine.schemas import (
    MonthlyAccountSummary,
    MonthlyBalances,
    MonthlyCategorySummary,
    MonthlyReport,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _ChildGroup:
    category: Category
    account_ids: tuple[str, ...]


def compose_monthly_reports(
    root: Category,
    hierarchy: CategoryHierarchy,
    accounts: Sequence[Account],
    months: Sequence[str],
    base_currency: BaseCurrency,
    gateway: ConversionGateway,
    user_id: str,
    roles: Collection[str],
    max_workers: int = 4,
) -> list[MonthlyReport]:
    """Build one report per month for a category subtree, newest first.

    Args:
        root: Category the reports are built for.
        hierarchy: Category index restricted to the root's role family.
        accounts: Every account inside the root's subtree.
        months: Contiguous ``YYYY-MM`` keys, oldest first.
        base_currency: Currency the ``converted`` figures are expressed in.
        gateway: Conversion gateway, called once for the whole request.
        user_id: Owner of the data, forwarded to the gateway.
        roles: Role family of the root (stock or flow roles).
        max_workers: Thread pool size for per-account reconstruction.

    Returns:
        Monthly reports ordered from the latest month to the earliest.
    """
    included = _select_accounts(accounts, hierarchy, root, roles)
    account_roles = {
        account.id: _resolve_role(account, hierarchy, root) for account in included
    }

    def reconstruct(account: Account) -> MonthlyFigures:
        if account_roles[account.id] in AccountRole.stock:
            figures = stock_month_end_balances(account, months)
        else:
            figures = flow_month_totals(account, months)
        return _zero_fill(figures, months, account.currency_code)

    with ThreadPoolExecutor(max_workers=max(max_workers, 1)) as executor:
        reconstructed = list(executor.map(reconstruct, included))
    figures_by_account = {
        account.id: figures for account, figures in zip(included, reconstructed)
    }

    balances_by_account = convert_monthly_figures(
        figures_by_account, base_currency.code, gateway, user_id
    )

    child_groups = [
        _group_accounts(child, hierarchy, included)
        for child in hierarchy.child_categories(root.id)
        if child.role in roles
    ]
    direct_accounts = [account for account in included if account.category_id == root.id]
    transaction_counts = {
        account.id: _transaction_count(account, account_roles[account.id])
        for account in included
    }

    reports: list[MonthlyReport] = []
    for month in months:
        month_balances = {
            account_id: by_month[month]
            for account_id, by_month in balances_by_account.items()
        }
        report = MonthlyReport(
            month=month,
            has_conversion_errors=any(
                balance.unconverted for balance in month_balances.values()
            ),
        )
        for group in child_groups:
            report.child_categories.append(
                MonthlyCategorySummary(
                    id=group.category.id,
                    name=group.category.name,
                    type=group.category.role or "",
                    order=group.category.order,
                    account_count=len(group.account_ids),
                    balances=_sum_balances(
                        [month_balances[account_id] for account_id in group.account_ids]
                        or [MonthlyBalance.zero(base_currency.code)]
                    ),
                )
            )
        for account in direct_accounts:
            balance = month_balances[account.id]
            report.direct_accounts.append(
                MonthlyAccountSummary(
                    id=account.id,
                    name=account.name,
                    description=account.description,
                    category_id=account.category_id,
                    transaction_count=transaction_counts[account.id],
                    balances=MonthlyBalances(
                        original=dict(balance.original),
                        converted=dict(balance.converted),
                    ),
                )
            )
        reports.append(report)

    reports.sort(key=lambda item: item.month, reverse=True)
    return reports


def has_conversion_errors(reports: Sequence[MonthlyReport]) -> bool:
    return any(report.has_conversion_errors for report in reports)


def _select_accounts(
    accounts: Sequence[Account],
    hierarchy: CategoryHierarchy,
    root: Category,
    roles: Collection[str],
) -> list[Account]:
    selected: list[Account] = []
    for account in sorted(accounts, key=lambda item: (item.name, item.id)):
        role = _resolve_role(account, hierarchy, root)
        if role not in roles:
            logger.warning(
                "Skipping account %s with role %s outside the %s summary",
                account.id,
                role,
                "/".join(sorted(roles)),
            )
            continue
        selected.append(account)
    return selected


def _resolve_role(account: Account, hierarchy: CategoryHierarchy, root: Category) -> str | None:
    role = AccountRole.normalize(account.role)
    if role is not None:
        return role
    category = hierarchy.categories.get(account.category_id)
    if category is not None and category.role:
        return category.role
    return root.role


def _group_accounts(
    child: Category, hierarchy: CategoryHierarchy, accounts: Sequence[Account]
) -> _ChildGroup:
    subtree = hierarchy.subtree_ids(child.id)
    return _ChildGroup(
        category=child,
        account_ids=tuple(account.id for account in accounts if account.category_id in subtree),
    )


def _zero_fill(
    figures: MonthlyFigures, months: Sequence[str], currency_code: str
) -> MonthlyFigures:
    return {
        month: dict(figures[month]) if figures.get(month) else {currency_code: ZERO}
        for month in months
    }


def _transaction_count(account: Account, role: str | None) -> int:
    if role in AccountRole.stock:
        return len(balance_adjustments(account))
    return len(flow_transactions(account))


def _sum_balances(balances: Iterable[MonthlyBalance]) -> MonthlyBalances:
    original: dict[str, Decimal] = {}
    converted: dict[str, Decimal] = {}
    for balance in balances:
        for currency, amount in balance.original.items():
            original[currency] = original.get(currency, ZERO) + amount
        for currency, amount in balance.converted.items():
            converted[currency] = converted.get(currency, ZERO) + amount
    return MonthlyBalances(original=original, converted=converted)
