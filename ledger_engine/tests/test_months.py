import unittest
from datetime import date, datetime

from ledger_engine.months import (
    build_month_range,
    lookback_start,
    month_end_instant,
    normalize_lookback,
    parse_month_value,
)


class MonthRangeTests(unittest.TestCase):
    def test_range_is_contiguous_across_year_boundary(self) -> None:
        months = build_month_range(date(2023, 11, 20), date(2024, 2, 3))

        self.assertEqual(months, ["2023-11", "2023-12", "2024-01", "2024-02"])

    def test_single_transaction_month_through_today(self) -> None:
        months = build_month_range(date(2024, 6, 30), date(2024, 9, 1))

        self.assertEqual(months, ["2024-06", "2024-07", "2024-08", "2024-09"])

    def test_missing_start_is_current_month(self) -> None:
        self.assertEqual(build_month_range(None, date(2024, 5, 17)), ["2024-05"])

    def test_future_start_is_current_month(self) -> None:
        self.assertEqual(build_month_range(date(2025, 1, 1), date(2024, 5, 17)), ["2024-05"])

    def test_month_end_instant_is_last_moment(self) -> None:
        self.assertEqual(
            month_end_instant("2024-02"),
            datetime(2024, 2, 29, 23, 59, 59, 999999),
        )

    def test_parse_month_value_rejects_garbage(self) -> None:
        self.assertEqual(parse_month_value("2024-03"), date(2024, 3, 1))
        with self.assertRaises(ValueError):
            parse_month_value("March")


class LookbackTests(unittest.TestCase):
    def test_last_year_starts_in_january_of_previous_year(self) -> None:
        start = lookback_start("lastYear", date(2024, 5, 17), datetime(2010, 1, 1))

        self.assertEqual(start, date(2023, 1, 1))

    def test_all_starts_at_earliest_month(self) -> None:
        start = lookback_start("all", date(2024, 5, 17), datetime(2021, 8, 14, 9, 30))

        self.assertEqual(start, date(2021, 8, 1))

    def test_all_without_data_has_no_start(self) -> None:
        self.assertIsNone(lookback_start("all", date(2024, 5, 17), None))

    def test_normalize_lookback(self) -> None:
        self.assertEqual(normalize_lookback(" LASTYEAR "), "lastYear")
        with self.assertRaises(ValueError):
            normalize_lookback("decade")


if __name__ == "__main__":
    unittest.main()
