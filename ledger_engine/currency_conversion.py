from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Mapping, Optional, Protocol, Sequence

from ledger_engine.models import ZERO, MonthlyBalance, coerce_decimal
from ledger_engine.months import month_end, parse_month_value

logger = logging.getLogger(__name__)

DEFAULT_RATES: dict[str, Decimal] = {
    "USD": Decimal("1"),
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
    "JPY": Decimal("147.50"),
    "CAD": Decimal("1.34"),
    "AUD": Decimal("1.52"),
    "CNY": Decimal("7.24"),
    "HKD": Decimal("7.82"),
    "CHF": Decimal("0.88"),
}


class RateProviderUnavailable(RuntimeError):
    """Raised when a rate provider cannot read its rates."""


class RateProvider(Protocol):
    def get_rate(
        self,
        source_currency: str,
        target_currency: str,
        as_of: Optional[date] = None,
        user_id: Optional[str] = None,
    ) -> Decimal:
        ...


@dataclass(frozen=True)
class ConversionItem:
    amount: Decimal
    currency_code: str
    period_tag: str


@dataclass(frozen=True)
class ConversionResult:
    success: bool
    converted_amount: Decimal
    rate: Optional[Decimal] = None
    error: Optional[str] = None


class ConversionGateway(Protocol):
    def convert_batch(
        self,
        user_id: str,
        items: Sequence[ConversionItem],
        target_currency_code: str,
    ) -> list[ConversionResult]:
        ...


@dataclass(frozen=True)
class StaticRateProvider:
    """Deterministic, in-memory FX rates.

    Rates are expressed as units of a currency per 1 USD, so any pair is
    converted through USD.
    """

    rates: Optional[Mapping[str, Decimal]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "rates", dict(self.rates or DEFAULT_RATES))

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
        return self._usd_rate(target) / self._usd_rate(source)

    def _usd_rate(self, currency: str) -> Decimal:
        try:
            rate = coerce_decimal(self.rates[currency])
        except KeyError as exc:
            raise ValueError(f"Unsupported currency: {currency}") from exc
        if rate <= ZERO:
            raise ValueError(f"Invalid rate for {currency}: {rate}")
        return rate


@dataclass
class RateProviderGateway:
    """Batch conversion backed by a rate provider.

    Results are returned in request order. A missing rate or an unavailable
    provider never raises: the item is reported as failed and keeps its
    original amount.
    """

    provider: RateProvider

    def convert_batch(
        self,
        user_id: str,
        items: Sequence[ConversionItem],
        target_currency_code: str,
    ) -> list[ConversionResult]:
        target = normalize_currency(target_currency_code)
        rate_cache: dict[tuple[str, str], Decimal | str] = {}
        results: list[ConversionResult] = []
        for item in items:
            amount = coerce_decimal(item.amount)
            cache_key = (item.currency_code, item.period_tag)
            if cache_key not in rate_cache:
                rate_cache[cache_key] = self._lookup_rate(
                    user_id, item.currency_code, target, item.period_tag
                )
            rate = rate_cache[cache_key]
            if isinstance(rate, str):
                results.append(
                    ConversionResult(success=False, converted_amount=amount, error=rate)
                )
            else:
                results.append(
                    ConversionResult(success=True, converted_amount=amount * rate, rate=rate)
                )
        return results

    def _lookup_rate(
        self, user_id: str, source: str, target: str, period_tag: str
    ) -> Decimal | str:
        try:
            return self.provider.get_rate(
                source,
                target,
                as_of=period_end(period_tag),
                user_id=user_id,
            )
        except (ValueError, RateProviderUnavailable) as exc:
            return str(exc) or f"No rate from {source} to {target}"


def convert_monthly_figures(
    figures: Mapping[str, Mapping[str, Mapping[str, Decimal]]],
    base_currency_code: str,
    gateway: ConversionGateway,
    user_id: str,
) -> dict[str, dict[str, MonthlyBalance]]:
    """Convert ``{owner: {month: {currency: amount}}}`` in one gateway call.

    Zero figures are never sent and convert to zero. Figures already in the
    base currency pass through unchanged. Every other figure is sent in a
    single ordered batch and matched back by position.
    """
    base = normalize_currency(base_currency_code)
    requests: list[ConversionItem] = []
    for by_month in figures.values():
        for month, amounts in by_month.items():
            for currency, amount in amounts.items():
                if amount != ZERO and currency != base:
                    requests.append(
                        ConversionItem(amount=amount, currency_code=currency, period_tag=month)
                    )

    results: list[ConversionResult] = []
    if requests:
        results = list(gateway.convert_batch(user_id, requests, base))
        if len(results) != len(requests):
            raise RuntimeError(
                f"Conversion gateway returned {len(results)} results for {len(requests)} items."
            )

    converted: dict[str, dict[str, MonthlyBalance]] = {}
    position = 0
    for owner, by_month in figures.items():
        owner_balances: dict[str, MonthlyBalance] = {}
        for month, amounts in by_month.items():
            balance = MonthlyBalance()
            for currency, amount in amounts.items():
                balance.original[currency] = amount
                if amount == ZERO:
                    balance.converted[currency] = ZERO
                elif currency == base:
                    balance.converted[currency] = amount
                else:
                    result = results[position]
                    position += 1
                    if result.success:
                        balance.converted[currency] = result.converted_amount
                    else:
                        logger.warning(
                            "Conversion of %s %s for %s to %s failed: %s",
                            amount,
                            currency,
                            month,
                            base,
                            result.error,
                        )
                        balance.converted[currency] = amount
                        balance.unconverted.append(currency)
            owner_balances[month] = balance
        converted[owner] = owner_balances
    return converted


def period_end(period_tag: str) -> date:
    return month_end(parse_month_value(period_tag))


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized
