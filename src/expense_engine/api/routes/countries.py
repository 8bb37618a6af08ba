"""Country and currency lookup endpoints. Public: used before sign-up."""

from typing import Annotated

from fastapi import APIRouter, Path

from expense_engine.api.dependencies import Countries, Currencies
from expense_engine.api.schemas import (
    ConversionResponse,
    ConvertRequest,
    CountryCurrencyResponse,
    CountryResponse,
    ErrorResponse,
    ExchangeRatesResponse,
)

router = APIRouter(tags=["countries"])


@router.get("/countries", response_model=list[CountryResponse])
async def list_countries(countries: Countries) -> list[CountryResponse]:
    """Every country/currency pair."""
    return [CountryResponse.model_validate(c) for c in await countries.list_countries()]


@router.get("/countries/unique", response_model=list[CountryCurrencyResponse])
async def list_unique_countries(countries: Countries) -> list[CountryCurrencyResponse]:
    """One entry per country with its primary currency."""
    return [
        CountryCurrencyResponse(country=name, currency_code=code)
        for name, code in await countries.unique_countries()
    ]


@router.get("/countries/{country_name}/currency", response_model=CountryCurrencyResponse)
async def get_country_currency(
    countries: Countries,
    country_name: Annotated[str, Path()],
) -> CountryCurrencyResponse:
    """Primary currency of a country (USD when unknown)."""
    code = await countries.currency_for_country(country_name)
    return CountryCurrencyResponse(country=country_name, currency_code=code)


@router.get("/currencies", response_model=list[str])
async def list_currencies(currencies: Currencies) -> list[str]:
    """Currency codes known to the rate provider."""
    return await currencies.available_currencies()


@router.get(
    "/currencies/rates/{base_currency}",
    response_model=ExchangeRatesResponse,
    responses={502: {"model": ErrorResponse}},
)
async def get_rates(
    currencies: Currencies,
    base_currency: Annotated[str, Path(min_length=3, max_length=3)],
) -> ExchangeRatesResponse:
    """Exchange rates against a base currency."""
    rates = await currencies.get_exchange_rates(base_currency)
    return ExchangeRatesResponse.model_validate(rates)


@router.post(
    "/currencies/convert",
    response_model=ConversionResponse,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def convert_currency(currencies: Currencies, payload: ConvertRequest) -> ConversionResponse:
    """Convert an amount between two currencies."""
    result = await currencies.convert(payload.amount, payload.from_currency, payload.to_currency)
    return ConversionResponse.model_validate(result)
