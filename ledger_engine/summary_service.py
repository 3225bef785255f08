from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Collection, Optional

from sqlalchemy.engine import Engine

from ledger_engine.account_balance import calculate_balance
from ledger_engine.category_tree import CategoryHierarchy
from ledger_engine.currency_conversion import ConversionGateway, RateProviderGateway
from ledger_engine.models import (
    Account,
    AccountBalance,
    AccountRole,
    BaseCurrency,
    Category,
    TransactionType,
    as_datetime,
)
from ledger_engine.months import build_month_range, lookback_start, normalize_lookback
from ledger_engine.repository import LedgerRepository, StoredRateProvider
from ledger_engine.schemas import MonthlyReport
from ledger_engine.settings import (
    Settings,
    configure_logging,
    create_db_engine,
    load_settings,
)
from ledger_engine.summary_composer import compose_monthly_reports, has_conversion_errors

logger = logging.getLogger(__name__)


class CategoryNotFound(LookupError):
    """Raised when a category is missing, foreign to the user or of the wrong kind."""


@dataclass
class SummaryService:
    repository: LedgerRepository
    gateway: ConversionGateway
    settings: Settings

    @classmethod
    def from_engine(cls, engine: Engine, settings: Optional[Settings] = None) -> "SummaryService":
        return cls(
            repository=LedgerRepository(engine),
            gateway=RateProviderGateway(StoredRateProvider(engine)),
            settings=settings or load_settings(),
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SummaryService":
        settings = settings or load_settings()
        configure_logging(settings.log_level)
        return cls.from_engine(create_db_engine(settings.database_url), settings)

    def get_stock_summary(
        self,
        category_id: str,
        user_id: str,
        lookback: Optional[str] = None,
        today: Optional[date] = None,
    ) -> list[MonthlyReport]:
        """Month-end balances of an asset or liability subtree."""
        lookback = normalize_lookback(lookback or self.settings.stock_lookback)
        today = today or date.today()
        root, hierarchy, accounts = self._load_subtree(category_id, user_id, AccountRole.stock)

        earliest = _earliest_transaction(accounts, {TransactionType.BALANCE})
        months = build_month_range(lookback_start(lookback, today, earliest), today)
        return self._compose(root, user_id, hierarchy, accounts, months, AccountRole.stock)

    def get_flow_summary(
        self,
        category_id: str,
        user_id: str,
        today: Optional[date] = None,
    ) -> list[MonthlyReport]:
        """Monthly income or expense totals of a flow subtree."""
        today = today or date.today()
        root, hierarchy, accounts = self._load_subtree(category_id, user_id, AccountRole.flow)

        earliest = _earliest_transaction(accounts, TransactionType.flow)
        months = build_month_range(earliest.date() if earliest else None, today)
        return self._compose(root, user_id, hierarchy, accounts, months, AccountRole.flow)

    def calculate_balance(
        self,
        account: Account,
        as_of: Optional[date | datetime] = None,
    ) -> dict[str, AccountBalance]:
        return calculate_balance(account, as_of)

    def has_conversion_errors(self, reports: list[MonthlyReport]) -> bool:
        return has_conversion_errors(reports)

    def base_currency(self, user_id: str) -> BaseCurrency:
        currency = self.repository.get_base_currency(user_id)
        if currency is None:
            return self.settings.default_currency
        return currency

    def _load_subtree(
        self,
        category_id: str,
        user_id: str,
        roles: Collection[str],
    ) -> tuple[Category, CategoryHierarchy, list[Account]]:
        root = self.repository.get_category(user_id, category_id, roles)
        if root is None:
            raise CategoryNotFound(
                f"Category {category_id} not found for user {user_id} "
                f"among {'/'.join(sorted(roles))} categories."
            )
        hierarchy = CategoryHierarchy.build(self.repository.list_categories(user_id, roles), roles)
        accounts = self.repository.list_accounts(user_id, hierarchy.subtree_ids(root.id))
        return root, hierarchy, accounts

    def _compose(
        self,
        root: Category,
        user_id: str,
        hierarchy: CategoryHierarchy,
        accounts: list[Account],
        months: list[str],
        roles: Collection[str],
    ) -> list[MonthlyReport]:
        base_currency = self.base_currency(user_id)
        reports = compose_monthly_reports(
            root=root,
            hierarchy=hierarchy,
            accounts=accounts,
            months=months,
            base_currency=base_currency,
            gateway=self.gateway,
            user_id=user_id,
            roles=roles,
            max_workers=self.settings.aggregation_workers,
        )
        logger.info(
            "Built %d monthly reports for category %s (%d accounts, base %s)",
            len(reports),
            root.id,
            len(accounts),
            base_currency.code,
        )
        return reports


def _earliest_transaction(
    accounts: list[Account], transaction_types: Collection[str]
) -> Optional[datetime]:
    dates = [
        as_datetime(txn.date)
        for account in accounts
        for txn in account.transactions
        if txn.type in transaction_types
    ]
    return min(dates) if dates else None
