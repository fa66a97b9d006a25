import os
import unittest
from decimal import Decimal
from unittest import mock

from leora.config import get_settings
from leora.domain import MoneyAmount
from leora.currency_conversion import (
    CompositeRateProvider,
    HttpRateProvider,
    RateProviderUnavailable,
    RateTable,
    StaticRateProvider,
    convert_amount,
    convert_money,
    format_amount,
    is_supported_currency,
    normalize_currency,
    round_for_currency,
)


class FailingProvider:
    def get_table(self) -> RateTable:
        raise RateProviderUnavailable("offline")


class CurrencyConversionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.table = RateTable()

    def test_same_currency_returns_original_amount(self) -> None:
        amount = convert_amount(Decimal("12.50"), "USD", "USD", self.table)

        self.assertEqual(amount, Decimal("12.50"))

    def test_conversion_goes_through_pivot(self) -> None:
        amount = convert_amount(Decimal("2"), "USD", "UZS", self.table)

        self.assertEqual(amount, Decimal("24900"))

    def test_round_trip_is_close_to_original(self) -> None:
        there = convert_amount(Decimal("100"), "EUR", "USD", self.table)
        back = convert_amount(there, "USD", "EUR", self.table)

        self.assertAlmostEqual(back, Decimal("100"), places=6)

    def test_normalizes_currency_codes(self) -> None:
        amount = convert_amount(Decimal("1"), " usd ", "uzs", self.table)

        self.assertEqual(amount, Decimal("12450"))

    def test_aliases_resolve_to_canonical_codes(self) -> None:
        self.assertEqual(normalize_currency("$"), "USD")
        self.assertEqual(normalize_currency("sum"), "UZS")
        self.assertEqual(normalize_currency("usdt"), "USDT")

    def test_unknown_currency_uses_fallback(self) -> None:
        self.assertEqual(normalize_currency("XYZ", fallback="EUR"), "EUR")

    def test_unknown_currency_uses_configured_default(self) -> None:
        get_settings.cache_clear()
        self.addCleanup(get_settings.cache_clear)
        with mock.patch.dict(os.environ, {"DEFAULT_CURRENCY": "GBP"}):
            get_settings.cache_clear()
            self.assertEqual(normalize_currency("XYZ"), "GBP")
            self.assertEqual(normalize_currency(None), "GBP")

    def test_convert_money_carries_target_currency(self) -> None:
        money = convert_money(MoneyAmount(value=Decimal("3"), currency="USD"), "uzs", self.table)

        self.assertEqual(money, MoneyAmount(value=Decimal("37350"), currency="UZS"))

    def test_supported_currency_check(self) -> None:
        self.assertTrue(is_supported_currency(" usdt "))
        self.assertTrue(is_supported_currency("€"))
        self.assertFalse(is_supported_currency("JPY"))

    def test_missing_rate_returns_amount_unconverted(self) -> None:
        table = RateTable(rates={"USD": Decimal("12450")})

        amount = convert_amount(Decimal("5"), "EUR", "USD", table)

        self.assertEqual(amount, Decimal("5"))

    def test_malformed_amount_is_zero(self) -> None:
        self.assertEqual(convert_amount("abc", "USD", "UZS", self.table), Decimal("0"))
        self.assertEqual(convert_amount(float("nan"), "USD", "UZS", self.table), Decimal("0"))

    def test_direct_override_wins_over_pivot(self) -> None:
        table = self.table.with_override("USD", "EUR", Decimal("0.5"))

        self.assertEqual(convert_amount(Decimal("10"), "USD", "EUR", table), Decimal("5.0"))
        self.assertEqual(convert_amount(Decimal("5"), "EUR", "USD", table), Decimal("10"))

    def test_pivot_rate_is_always_one(self) -> None:
        table = RateTable(rates={"UZS": Decimal("7"), "USD": Decimal("10")})

        self.assertEqual(table.pivot_rate("UZS"), Decimal("1"))

    def test_invalid_rates_are_dropped(self) -> None:
        table = RateTable(rates={"USD": Decimal("-1"), "EUR": "bad", "XYZ": Decimal("3")})

        self.assertIsNone(table.pivot_rate("USD"))
        self.assertIsNone(table.pivot_rate("EUR"))
        self.assertNotIn("XYZ", table.rates)

    def test_rounding_and_formatting(self) -> None:
        self.assertEqual(round_for_currency(Decimal("1234.567"), "UZS"), Decimal("1235"))
        self.assertEqual(round_for_currency(Decimal("1.005"), "USD"), Decimal("1.01"))
        self.assertEqual(format_amount(Decimal("1234.5"), "USD"), "1,234.50 USD")


class RateProviderTests(unittest.TestCase):
    def test_composite_falls_back_when_primary_fails(self) -> None:
        provider = CompositeRateProvider(
            primary=FailingProvider(),
            fallback=StaticRateProvider(rates={"USD": Decimal("10000")}),
        )

        table = provider.get_table()

        self.assertEqual(table.pivot_rate("USD"), Decimal("10000"))

    def test_http_provider_without_url_is_unavailable(self) -> None:
        with self.assertRaises(RateProviderUnavailable):
            HttpRateProvider(url="").get_table()

    def test_http_provider_caches_fetched_rates(self) -> None:
        provider = HttpRateProvider(url="http://rates.invalid/latest")
        with mock.patch.object(
            HttpRateProvider, "_fetch_rates", return_value={"USD": Decimal("12000")}
        ) as fetch:
            first = provider.get_table()
            second = provider.get_table()

        self.assertIs(first, second)
        self.assertEqual(fetch.call_count, 1)
        self.assertEqual(first.pivot_rate("USD"), Decimal("12000"))


if __name__ == "__main__":
    unittest.main()
