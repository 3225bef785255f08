import unittest
from datetime import date
from decimal import Decimal

from ledger_engine.currency_conversion import (
    ConversionItem,
    ConversionResult,
    RateProviderGateway,
    RateProviderUnavailable,
    StaticRateProvider,
    convert_monthly_figures,
    period_end,
)


class RecordingGateway:
    def __init__(self, fail_currencies=(), drop_last=False) -> None:
        self.calls: list[tuple[str, list[ConversionItem], str]] = []
        self.fail_currencies = set(fail_currencies)
        self.drop_last = drop_last

    def convert_batch(self, user_id, items, target_currency_code):
        self.calls.append((user_id, list(items), target_currency_code))
        results = [
            ConversionResult(success=False, converted_amount=item.amount, error="no rate")
            if item.currency_code in self.fail_currencies
            else ConversionResult(
                success=True, converted_amount=item.amount * 2, rate=Decimal("2")
            )
            for item in items
        ]
        return results[:-1] if self.drop_last else results


class StaticRateProviderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.provider = StaticRateProvider(
            rates={
                "USD": Decimal("1"),
                "EUR": Decimal("2"),
                "JPY": Decimal("4"),
            }
        )

    def test_same_currency_rate_is_one(self) -> None:
        self.assertEqual(self.provider.get_rate("USD", "USD"), Decimal("1"))

    def test_conversion_uses_usd_base_rates(self) -> None:
        rate = self.provider.get_rate("EUR", "JPY")

        self.assertEqual(Decimal("10") * rate, Decimal("20"))

    def test_normalizes_currency_codes(self) -> None:
        rate = self.provider.get_rate(" eur ", "jpy")

        self.assertEqual(Decimal("6") * rate, Decimal("12"))

    def test_missing_currency_raises(self) -> None:
        with self.assertRaises(ValueError):
            self.provider.get_rate("USD", "CAD")

    def test_zero_rate_is_rejected(self) -> None:
        provider = StaticRateProvider(rates={"USD": 1, "XAU": 0})

        with self.assertRaises(ValueError):
            provider.get_rate("XAU", "USD")


class RateProviderGatewayTests(unittest.TestCase):
    def test_converts_in_request_order(self) -> None:
        gateway = RateProviderGateway(
            StaticRateProvider(rates={"USD": Decimal("1"), "EUR": Decimal("2")})
        )
        items = [
            ConversionItem(Decimal("10"), "USD", "2024-01"),
            ConversionItem(Decimal("10"), "EUR", "2024-01"),
        ]

        results = gateway.convert_batch("user-1", items, "eur")

        self.assertEqual(
            [result.converted_amount for result in results],
            [Decimal("20"), Decimal("10")],
        )
        self.assertTrue(all(result.success for result in results))

    def test_unavailable_provider_marks_items_failed(self) -> None:
        class UnavailableProvider:
            def __init__(self) -> None:
                self.calls = 0

            def get_rate(self, source, target, as_of=None, user_id=None) -> Decimal:
                self.calls += 1
                raise RateProviderUnavailable("Down")

        provider = UnavailableProvider()
        gateway = RateProviderGateway(provider)
        items = [
            ConversionItem(Decimal("7"), "EUR", "2024-02"),
            ConversionItem(Decimal("9"), "EUR", "2024-02"),
        ]

        results = gateway.convert_batch("user-1", items, "USD")

        self.assertEqual([result.success for result in results], [False, False])
        self.assertEqual(results[1].converted_amount, Decimal("9"))
        self.assertEqual(results[0].error, "Down")
        self.assertEqual(provider.calls, 1)

    def test_zero_rate_marks_item_failed(self) -> None:
        gateway = RateProviderGateway(StaticRateProvider(rates={"USD": 1, "XAU": 0}))

        results = gateway.convert_batch(
            "user-1", [ConversionItem(Decimal("3"), "XAU", "2024-01")], "USD"
        )

        self.assertFalse(results[0].success)
        self.assertEqual(results[0].converted_amount, Decimal("3"))

    def test_rates_are_looked_up_at_month_end(self) -> None:
        seen = []

        class RecordingProvider:
            def get_rate(self, source, target, as_of=None, user_id=None) -> Decimal:
                seen.append((source, target, as_of, user_id))
                return Decimal("1.5")

        RateProviderGateway(RecordingProvider()).convert_batch(
            "user-9", [ConversionItem(Decimal("2"), "GBP", "2024-02")], "USD"
        )

        self.assertEqual(seen, [("GBP", "USD", date(2024, 2, 29), "user-9")])

    def test_period_end(self) -> None:
        self.assertEqual(period_end("2023-12"), date(2023, 12, 31))


class ConvertMonthlyFiguresTests(unittest.TestCase):
    def test_zero_and_base_figures_are_never_sent(self) -> None:
        gateway = RecordingGateway()
        figures = {
            "acc-1": {
                "2024-01": {"USD": Decimal("100"), "EUR": Decimal("0")},
                "2024-02": {"USD": Decimal("0"), "EUR": Decimal("30")},
            },
            "acc-2": {"2024-01": {"JPY": Decimal("500")}},
        }

        converted = convert_monthly_figures(figures, "USD", gateway, "user-1")

        self.assertEqual(len(gateway.calls), 1)
        user_id, items, target = gateway.calls[0]
        self.assertEqual(user_id, "user-1")
        self.assertEqual(target, "USD")
        self.assertEqual(
            [(item.currency_code, item.period_tag) for item in items],
            [("EUR", "2024-02"), ("JPY", "2024-01")],
        )
        self.assertEqual(
            converted["acc-1"]["2024-01"].converted,
            {"USD": Decimal("100"), "EUR": Decimal("0")},
        )
        self.assertEqual(converted["acc-1"]["2024-02"].converted["EUR"], Decimal("60"))
        self.assertEqual(converted["acc-2"]["2024-01"].converted["JPY"], Decimal("1000"))
        self.assertEqual(converted["acc-2"]["2024-01"].original["JPY"], Decimal("500"))

    def test_only_base_figures_skip_gateway(self) -> None:
        gateway = RecordingGateway()

        converted = convert_monthly_figures(
            {"acc-1": {"2024-01": {"USD": Decimal("5")}}}, "usd", gateway, "user-1"
        )

        self.assertEqual(gateway.calls, [])
        self.assertEqual(converted["acc-1"]["2024-01"].converted, {"USD": Decimal("5")})

    def test_failed_conversion_keeps_original_and_is_flagged(self) -> None:
        gateway = RecordingGateway(fail_currencies={"GBP"})
        figures = {"acc-1": {"2024-01": {"GBP": Decimal("8"), "EUR": Decimal("3")}}}

        with self.assertLogs("ledger_engine.currency_conversion", level="WARNING"):
            converted = convert_monthly_figures(figures, "USD", gateway, "user-1")

        balance = converted["acc-1"]["2024-01"]
        self.assertEqual(balance.converted, {"GBP": Decimal("8"), "EUR": Decimal("6")})
        self.assertEqual(balance.unconverted, ["GBP"])

    def test_result_count_mismatch_raises(self) -> None:
        gateway = RecordingGateway(drop_last=True)
        figures = {"acc-1": {"2024-01": {"EUR": Decimal("1"), "GBP": Decimal("2")}}}

        with self.assertRaises(RuntimeError):
            convert_monthly_figures(figures, "USD", gateway, "user-1")


if __name__ == "__main__":
    unittest.main()
