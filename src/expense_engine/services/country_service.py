"""Country and currency lookups."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from expense_engine.services.cache import TTLCache

logger = logging.getLogger(__name__)

COUNTRIES_KEY = "countries"
DEFAULT_CURRENCY = "USD"


@dataclass(frozen=True)
class CountryCurrency:
    """A country paired with one of its currencies."""

    country: str
    currency_code: str
    currency_name: str
    currency_symbol: str


FALLBACK_COUNTRIES = sorted(
    [
        CountryCurrency("United States", "USD", "United States Dollar", "$"),
        CountryCurrency("United Kingdom", "GBP", "British Pound Sterling", "£"),
        CountryCurrency("Germany", "EUR", "Euro", "€"),
        CountryCurrency("France", "EUR", "Euro", "€"),
        CountryCurrency("India", "INR", "Indian Rupee", "₹"),
        CountryCurrency("Canada", "CAD", "Canadian Dollar", "CA$"),
        CountryCurrency("Australia", "AUD", "Australian Dollar", "A$"),
        CountryCurrency("Japan", "JPY", "Japanese Yen", "¥"),
        CountryCurrency("China", "CNY", "Chinese Yuan", "¥"),
        CountryCurrency("Brazil", "BRL", "Brazilian Real", "R$"),
        CountryCurrency("South Africa", "ZAR", "South African Rand", "R"),
        CountryCurrency("Mexico", "MXN", "Mexican Peso", "Mex$"),
    ],
    key=lambda c: c.country.lower(),
)


def _parse_countries(payload: list) -> list[CountryCurrency]:
    countries: list[CountryCurrency] = []
    for item in payload:
        name = (item.get("name") or {}).get("common")
        currencies = item.get("currencies") or {}
        if not name:
            continue
        for code, currency in currencies.items():
            currency = currency or {}
            countries.append(
                CountryCurrency(
                    country=name,
                    currency_code=code,
                    currency_name=currency.get("name", code),
                    currency_symbol=currency.get("symbol") or code,
                )
            )
    countries.sort(key=lambda c: c.country.lower())
    return countries


class CountryService:
    """Country/currency list with TTL caching and graceful fallback."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: TTLCache[str, list[CountryCurrency]],
        api_url: str = "https://restcountries.com/v3.1/all?fields=name,currencies",
    ):
        self.client = client
        self.cache = cache
        self.api_url = api_url

    async def list_countries(self) -> list[CountryCurrency]:
        """Every (country, currency) pair, sorted by country name."""
        cached = self.cache.get_fresh(COUNTRIES_KEY)
        if cached is not None:
            return cached

        try:
            response = await self.client.get(self.api_url)
            response.raise_for_status()
            payload = response.json()
            if not isinstance(payload, list):
                raise ValueError("Country payload is not a list")
            countries = _parse_countries(payload)
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.warning("Failed to fetch countries: %s", e)
            stale = self.cache.get_stale(COUNTRIES_KEY)
            if stale is not None:
                logger.info("Using stale country cache due to API error")
                return stale
            return list(FALLBACK_COUNTRIES)

        self.cache.set(COUNTRIES_KEY, countries)
        return countries

    async def unique_countries(self) -> list[tuple[str, str]]:
        """One (country, currency_code) per country, first currency wins."""
        seen: dict[str, str] = {}
        for entry in await self.list_countries():
            seen.setdefault(entry.country, entry.currency_code)
        return sorted(seen.items(), key=lambda item: item[0].lower())

    async def currency_for_country(self, country_name: str) -> str:
        """Primary currency of a country (case-insensitive), USD if unknown."""
        wanted = country_name.strip().lower()
        for entry in await self.list_countries():
            if entry.country.lower() == wanted:
                return entry.currency_code
        return DEFAULT_CURRENCY
