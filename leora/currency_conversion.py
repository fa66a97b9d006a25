from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
import json
import time
from typing import Mapping, Optional, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import urlopen

import structlog

from leora.config import get_settings
from leora.domain import Amount, MoneyAmount, coerce_amount

logger = structlog.get_logger(__name__)

SUPPORTED_CURRENCIES: tuple[str, ...] = (
    "UZS",
    "USD",
    "EUR",
    "GBP",
    "TRY",
    "SAR",
    "AED",
    "USDT",
    "RUB",
)
PIVOT_CURRENCY = "UZS"

# Pivot units (UZS) per one unit of the currency.
DEFAULT_RATES: dict[str, Decimal] = {
    "UZS": Decimal("1"),
    "USD": Decimal("12450"),
    "EUR": Decimal("13600"),
    "GBP": Decimal("15800"),
    "TRY": Decimal("375"),
    "SAR": Decimal("3300"),
    "AED": Decimal("3380"),
    "USDT": Decimal("12450"),
    "RUB": Decimal("140"),
}

CURRENCY_ALIASES: dict[str, str] = {
    "$": "USD",
    "US$": "USD",
    "€": "EUR",
    "£": "GBP",
    "₽": "RUB",
    "RUR": "RUB",
    "₺": "TRY",
    "TL": "TRY",
    "SUM": "UZS",
    "SOM": "UZS",
    "SO'M": "UZS",
    "СУМ": "UZS",
}

CURRENCY_DECIMALS: dict[str, int] = {"UZS": 0}


def is_supported_currency(value: Optional[str]) -> bool:
    return _canonical_code(value) in SUPPORTED_CURRENCIES


def normalize_currency(value: Optional[str], fallback: Optional[str] = None) -> str:
    """Map any accepted spelling of a currency to its canonical code.

    Unknown codes resolve to ``fallback`` (itself normalized) or to the
    configured default reporting currency. Never raises.
    """
    code = _canonical_code(value)
    if code in SUPPORTED_CURRENCIES:
        return code
    default = _canonical_code(get_settings().default_currency)
    if default not in SUPPORTED_CURRENCIES:
        default = "USD"
    if fallback is not None:
        fallback_code = _canonical_code(fallback)
        if fallback_code in SUPPORTED_CURRENCIES:
            return fallback_code
    return default


def _canonical_code(value: Optional[str]) -> str:
    if not value:
        return ""
    cleaned = value.strip().upper()
    return CURRENCY_ALIASES.get(cleaned, cleaned)


@dataclass(frozen=True)
class RateTable:
    """Exchange rates relative to the pivot, plus direct pair overrides.

    ``rates[c]`` is the number of pivot units one unit of ``c`` is worth.
    ``overrides[(a, b)]`` is how many ``b`` one ``a`` buys.
    """

    rates: Mapping[str, Decimal] = None
    overrides: Mapping[tuple[str, str], Decimal] = field(default_factory=dict)
    pivot: str = PIVOT_CURRENCY

    def __post_init__(self) -> None:
        source = DEFAULT_RATES if self.rates is None else self.rates
        cleaned: dict[str, Decimal] = {}
        for code, rate in source.items():
            if not is_supported_currency(code):
                continue
            value = coerce_amount(rate)
            if value > 0:
                cleaned[normalize_currency(code)] = value
        cleaned[self.pivot] = Decimal("1")

        cleaned_overrides: dict[tuple[str, str], Decimal] = {}
        for (source_code, target_code), rate in dict(self.overrides).items():
            if not (is_supported_currency(source_code) and is_supported_currency(target_code)):
                continue
            value = coerce_amount(rate)
            if value > 0:
                key = (normalize_currency(source_code), normalize_currency(target_code))
                cleaned_overrides[key] = value

        object.__setattr__(self, "rates", cleaned)
        object.__setattr__(self, "overrides", cleaned_overrides)

    def pivot_rate(self, currency: str) -> Optional[Decimal]:
        return self.rates.get(currency)

    def direct_rate(self, source: str, target: str) -> Optional[Decimal]:
        rate = self.overrides.get((source, target))
        if rate is not None:
            return rate
        inverse = self.overrides.get((target, source))
        if inverse is not None:
            return Decimal("1") / inverse
        return None

    def with_override(self, source: str, target: str, rate: Amount) -> "RateTable":
        overrides = dict(self.overrides)
        overrides[(normalize_currency(source), normalize_currency(target))] = coerce_amount(rate)
        return RateTable(rates=self.rates, overrides=overrides, pivot=self.pivot)


def convert_amount(
    amount: Amount,
    source_currency: Optional[str],
    target_currency: Optional[str],
    rate_table: Optional[RateTable] = None,
) -> Decimal:
    """Best-effort conversion of ``amount`` between two currencies.

    Uses a direct pair rate when one exists, otherwise goes through the pivot.
    When neither path is available the amount is returned unconverted, so an
    incomplete rate table under- or over-counts cross-currency aggregates
    instead of failing them.
    """
    table = rate_table or RateTable()
    source = normalize_currency(source_currency)
    target = normalize_currency(target_currency)
    coerced_amount = coerce_amount(amount)

    if source == target:
        return coerced_amount

    direct = table.direct_rate(source, target)
    if direct is not None:
        return coerced_amount * direct

    source_rate = table.pivot_rate(source)
    target_rate = table.pivot_rate(target)
    if source_rate is None or target_rate is None:
        # Known limitation: identity fallback, no "rate unavailable" flag.
        logger.warning(
            "fx_rate_missing",
            source_currency=source,
            target_currency=target,
        )
        return coerced_amount

    amount_in_pivot = coerced_amount * source_rate
    return amount_in_pivot / target_rate


def convert_money(
    money: MoneyAmount,
    target_currency: Optional[str],
    rate_table: Optional[RateTable] = None,
) -> MoneyAmount:
    target = normalize_currency(target_currency)
    return MoneyAmount(
        value=convert_amount(money.value, money.currency, target, rate_table),
        currency=target,
    )


def round_for_currency(amount: Amount, currency: str) -> Decimal:
    decimals = CURRENCY_DECIMALS.get(normalize_currency(currency), 2)
    quantum = Decimal(1).scaleb(-decimals)
    return coerce_amount(amount).quantize(quantum, rounding=ROUND_HALF_UP)


def format_amount(amount: Amount, currency: str) -> str:
    code = normalize_currency(currency)
    rounded = round_for_currency(amount, code)
    return f"{rounded:,} {code}"


class RateProvider(Protocol):
    def get_table(self) -> RateTable:
        ...


class RateProviderUnavailable(RuntimeError):
    """Raised when a rate provider cannot fetch live rates."""


@dataclass(frozen=True)
class StaticRateProvider:
    """Deterministic, in-memory FX rates (the bundled defaults)."""

    rates: Mapping[str, Decimal] = None

    def get_table(self) -> RateTable:
        return RateTable(rates=dict(self.rates or DEFAULT_RATES))


@dataclass(frozen=True)
class CachedTable:
    table: RateTable
    expires_at: float


@dataclass
class HttpRateProvider:
    """Fetches ``{"rates": {"USD": 12450, ...}}`` expressed in pivot units."""

    url: str
    cache_ttl_seconds: int = 12 * 60 * 60
    timeout_seconds: float = 8
    _cache: Optional[CachedTable] = None

    def get_table(self) -> RateTable:
        now = time.monotonic()
        if self._cache and self._cache.expires_at > now:
            return self._cache.table

        table = RateTable(rates=self._fetch_rates())
        self._cache = CachedTable(table=table, expires_at=now + self.cache_ttl_seconds)
        return table

    def _fetch_rates(self) -> Mapping[str, Decimal]:
        if not self.url:
            raise RateProviderUnavailable("No FX rates URL configured")
        try:
            with urlopen(self.url, timeout=self.timeout_seconds) as response:
                payload = json.load(response)
        except (HTTPError, URLError, TimeoutError, json.JSONDecodeError) as exc:
            raise RateProviderUnavailable("FX rates endpoint unavailable") from exc

        rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(rates, dict):
            raise RateProviderUnavailable("FX rates response missing rates")

        return {code: coerce_amount(value) for code, value in rates.items()}


@dataclass(frozen=True)
class CompositeRateProvider:
    primary: RateProvider
    fallback: StaticRateProvider

    def get_table(self) -> RateTable:
        try:
            return self.primary.get_table()
        except RateProviderUnavailable as exc:
            logger.warning("fx_provider_fallback", reason=str(exc))
            return self.fallback.get_table()


def build_rate_provider(url: Optional[str] = None) -> RateProvider:
    rates_url = get_settings().fx_rates_url if url is None else url
    if not rates_url:
        return StaticRateProvider()
    return CompositeRateProvider(
        primary=HttpRateProvider(url=rates_url),
        fallback=StaticRateProvider(),
    )
