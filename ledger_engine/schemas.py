from __future__ import annotations

from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel


# Amounts stay Decimal in Python and become plain numbers in JSON.
Amount = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class ReportModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MonthlyBalances(ReportModel):
    original: dict[str, Amount] = Field(default_factory=dict)
    converted: dict[str, Amount] = Field(default_factory=dict)


class MonthlyCategorySummary(ReportModel):
    id: str
    name: str
    type: str
    order: int
    account_count: int
    balances: MonthlyBalances


class MonthlyAccountSummary(ReportModel):
    id: str
    name: str
    description: str | None = None
    category_id: str
    transaction_count: int
    balances: MonthlyBalances


class MonthlyReport(ReportModel):
    month: str
    child_categories: list[MonthlyCategorySummary] = Field(default_factory=list)
    direct_accounts: list[MonthlyAccountSummary] = Field(default_factory=list)
    has_conversion_errors: bool = False


def reports_to_json(reports: list[MonthlyReport]) -> list[dict]:
    return [report.model_dump(mode="json", by_alias=True) for report in reports]
