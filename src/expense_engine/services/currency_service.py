"""Exchange rates and currency conversion."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation

import httpx

from expense_engine.errors import ExpenseEngineError, UpstreamServiceError, ValidationError
from expense_engine.services.cache import TTLCache

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
RATE_PLACES = Decimal("0.0001")

FALLBACK_CURRENCIES = ["AUD", "BRL", "CAD", "CNY", "EUR", "GBP", "INR", "JPY", "USD", "ZAR"]


@dataclass(frozen=True)
class ExchangeRates:
    """Rates quoted against one base currency."""

    base: str
    date: str
    rates: dict[str, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of converting an amount between currencies."""

    from_currency: str
    to_currency: str
    amount: Decimal
    converted: Decimal
    rate: Decimal
    date: str


def _parse_rates(payload: dict, base: str) -> ExchangeRates:
    try:
        raw_rates = payload["rates"]
        rates = {code.upper(): Decimal(str(value)) for code, value in raw_rates.items()}
    except (KeyError, AttributeError, TypeError, InvalidOperation) as e:
        raise ValueError(f"Malformed exchange rate payload for {base}") from e
    return ExchangeRates(
        base=str(payload.get("base", base)).upper(),
        date=str(payload.get("date", date.today().isoformat())),
        rates=rates,
    )


def _identity(amount: Decimal, currency: str) -> ConversionResult:
    return ConversionResult(
        from_currency=currency,
        to_currency=currency,
        amount=amount,
        converted=amount,
        rate=Decimal("1"),
        date=date.today().isoformat(),
    )


class CurrencyService:
    """Fetches exchange rates through an injected HTTP client and cache.

    Fresh cached rates are returned without a request. When the upstream
    fails, a stale cached value is served; only when nothing is cached does
    the lookup fail.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: TTLCache[str, ExchangeRates],
        api_url: str = "https://api.exchangerate-api.com/v4/latest",
    ):
        self.client = client
        self.cache = cache
        self.api_url = api_url.rstrip("/")

    async def get_exchange_rates(self, base_currency: str) -> ExchangeRates:
        """Rates for a base currency (cached)."""
        base = base_currency.upper()
        cached = self.cache.get_fresh(base)
        if cached is not None:
            return cached

        try:
            response = await self.client.get(f"{self.api_url}/{base}")
            response.raise_for_status()
            rates = _parse_rates(response.json(), base)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Failed to fetch exchange rates for %s: %s", base, e)
            stale = self.cache.get_stale(base)
            if stale is not None:
                logger.info("Using stale exchange rate cache for %s", base)
                return stale
            raise UpstreamServiceError(
                f"Unable to fetch exchange rates for {base}", currency=base
            ) from e

        self.cache.set(base, rates)
        return rates

    async def convert(
        self, amount: Decimal, from_currency: str, to_currency: str
    ) -> ConversionResult:
        """Convert an amount; identical currencies convert at rate 1."""
        source = from_currency.upper()
        target = to_currency.upper()

        if source == target:
            return _identity(amount, source)

        rates = await self.get_exchange_rates(source)
        return self._convert_with(rates, amount, target)

    async def convert_many(
        self, conversions: list[tuple[Decimal, str]], to_currency: str
    ) -> list[ConversionResult | None]:
        """Convert several (amount, currency) pairs, fetching each base once.

        Pairs whose rates cannot be obtained come back as None.
        """
        target = to_currency.upper()
        sources = sorted({currency.upper() for _, currency in conversions} - {target})

        fetched = await asyncio.gather(
            *(self.get_exchange_rates(s) for s in sources), return_exceptions=True
        )
        rates_by_base: dict[str, ExchangeRates] = {}
        for source, outcome in zip(sources, fetched):
            if isinstance(outcome, ExchangeRates):
                rates_by_base[source] = outcome
            elif isinstance(outcome, ExpenseEngineError):
                logger.warning("Exchange rates unavailable for %s: %s", source, outcome)
            else:
                raise outcome

        results: list[ConversionResult | None] = []
        for amount, currency in conversions:
            source = currency.upper()
            rates = rates_by_base.get(source)
            if source == target:
                results.append(_identity(amount, source))
            elif rates is not None and target in rates.rates:
                results.append(self._convert_with(rates, amount, target))
            else:
                results.append(None)
        return results

    async def available_currencies(self, base_currency: str = "USD") -> list[str]:
        """Currency codes the rate provider knows about."""
        base = base_currency.upper()
        try:
            rates = await self.get_exchange_rates(base)
        except UpstreamServiceError:
            logger.warning("Falling back to built-in currency list")
            return list(FALLBACK_CURRENCIES)
        return sorted({base, *rates.rates.keys()})

    def _convert_with(
        self, rates: ExchangeRates, amount: Decimal, target: str
    ) -> ConversionResult:
        rate = rates.rates.get(target)
        if rate is None:
            raise ValidationError(f"Exchange rate not found for {target}", currency=target)
        return ConversionResult(
            from_currency=rates.base,
            to_currency=target,
            amount=amount,
            converted=(amount * rate).quantize(CENTS),
            rate=rate.quantize(RATE_PLACES),
            date=rates.date,
        )
