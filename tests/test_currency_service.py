"""Tests for exchange rate lookups and conversion."""

from decimal import Decimal

import httpx
import pytest

from expense_engine.errors import UpstreamServiceError, ValidationError
from expense_engine.services.cache import TTLCache
from expense_engine.services.currency_service import FALLBACK_CURRENCIES, CurrencyService

API_URL = "https://rates.test/v4/latest"


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class RateApi:
    """Mock rate provider counting requests."""

    def __init__(self):
        self.calls: list[str] = []
        self.fail = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request.url.path)
        if self.fail:
            return httpx.Response(503, json={"error": "unavailable"})
        base = request.url.path.rsplit("/", 1)[-1]
        return httpx.Response(
            200,
            json={
                "base": base,
                "date": "2024-03-15",
                "rates": {base: 1, "EUR": 0.92, "INR": 83.12346},
            },
        )


@pytest.fixture
def api() -> RateApi:
    return RateApi()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def service(api, clock):
    async with httpx.AsyncClient(transport=httpx.MockTransport(api.handler)) as client:
        yield CurrencyService(client, TTLCache(3600, clock=clock), API_URL)


class TestExchangeRates:
    """Rate fetching and caching."""

    async def test_fetches_and_parses(self, service, api):
        """Rates are fetched for the upper-cased base and parsed as Decimal."""
        rates = await service.get_exchange_rates("usd")

        assert rates.base == "USD"
        assert rates.rates["EUR"] == Decimal("0.92")
        assert api.calls == ["/v4/latest/USD"]

    async def test_fresh_cache_skips_request(self, service, api, clock):
        """A cached rate table is reused within the TTL."""
        await service.get_exchange_rates("USD")
        clock.now += 3599
        await service.get_exchange_rates("USD")

        assert len(api.calls) == 1

    async def test_expired_cache_refetches(self, service, api, clock):
        """An expired rate table is fetched again."""
        await service.get_exchange_rates("USD")
        clock.now += 3600
        await service.get_exchange_rates("USD")

        assert len(api.calls) == 2

    async def test_stale_cache_served_on_failure(self, service, api, clock):
        """Stale rates are served when the provider fails."""
        first = await service.get_exchange_rates("USD")
        clock.now += 7200
        api.fail = True

        rates = await service.get_exchange_rates("USD")

        assert rates == first
        assert len(api.calls) == 2

    async def test_failure_without_cache_raises(self, service, api):
        """Provider failure with an empty cache raises UpstreamServiceError."""
        api.fail = True
        with pytest.raises(UpstreamServiceError):
            await service.get_exchange_rates("USD")


class TestConvert:
    """Conversion rounding and edge cases."""

    async def test_same_currency_is_identity(self, service, api):
        """Same-currency conversion needs no rate lookup."""
        result = await service.convert(Decimal("12.50"), "usd", "USD")

        assert result.converted == Decimal("12.50")
        assert result.rate == Decimal("1")
        assert api.calls == []

    async def test_rounds_amount_and_rate(self, service):
        """Amounts round to cents and rates to four places."""
        result = await service.convert(Decimal("10"), "USD", "INR")

        assert result.converted == Decimal("831.23")
        assert result.rate == Decimal("83.1235")
        assert result.date == "2024-03-15"

    async def test_unknown_target_currency(self, service):
        """An unknown target currency is a validation error."""
        with pytest.raises(ValidationError):
            await service.convert(Decimal("10"), "USD", "XYZ")

    async def test_convert_many_fetches_each_base_once(self, service, api):
        """Batch conversion fetches each source currency once."""
        results = await service.convert_many(
            [(Decimal("1"), "USD"), (Decimal("2"), "usd"), (Decimal("3"), "EUR")], "EUR"
        )

        assert [r.converted for r in results] == [Decimal("0.92"), Decimal("1.84"), Decimal("3")]
        assert api.calls == ["/v4/latest/USD"]

    async def test_convert_many_marks_unavailable(self, service, api):
        """Pairs without a rate come back as None."""
        api.fail = True

        results = await service.convert_many([(Decimal("5"), "USD"), (Decimal("5"), "EUR")], "EUR")

        assert results[0] is None
        assert results[1].rate == Decimal("1")


class TestAvailableCurrencies:
    """Currency code listing."""

    async def test_lists_provider_codes(self, service):
        """Currency codes come from the provider's rate table."""
        assert await service.available_currencies("USD") == ["EUR", "INR", "USD"]

    async def test_falls_back_on_failure(self, service, api):
        """The built-in currency list is used when the provider fails."""
        api.fail = True
        assert await service.available_currencies() == FALLBACK_CURRENCIES
