"""
Tests for currency lookup: the static fallback table, country-code
expansion, and the AI path with its fallbacks.
"""
import pytest

from services.currency_service import CurrencyService, expand_country_code, fallback_currency
from services.errors import AIUnavailable
from conftest import make_ai


class TestExpandCountryCode:
    @pytest.mark.parametrize("raw, expected", [
        ("AU", "Australia"),
        ("nz", "New Zealand"),
        (" GB ", "United Kingdom"),
        ("Australia", "Australia"),
        ("ZZ", "ZZ"),
        ("", ""),
    ])
    def test_expand(self, raw, expected):
        assert expand_country_code(raw) == expected


class TestFallbackTable:
    @pytest.mark.parametrize("country, code", [
        ("United States", "USD"),
        ("AU", "AUD"),
        ("new zealand", "NZD"),
        ("UK", "GBP"),
        ("Germany", "EUR"),
        ("Japan", "JPY"),
        ("Atlantis", "USD"),
        ("", "USD"),
    ])
    def test_lookup(self, country, code):
        assert fallback_currency(country).currency_code == code


class TestCurrencyService:

    @pytest.mark.asyncio
    async def test_unconfigured_uses_table(self):
        ai = make_ai(configured=False)
        info = await CurrencyService(ai).currency_for_country("Canada")
        assert info.currency_code == "CAD"
        ai.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ai_answer(self):
        ai = make_ai(reply='```json\n{"currency_code": "sgd", "currency_name": "Singapore Dollar", '
                           '"currency_symbol": "S$"}\n```')
        info = await CurrencyService(ai).currency_for_country("Singapore")
        assert info.currency_code == "SGD"
        assert info.currency_symbol == "S$"

    @pytest.mark.asyncio
    async def test_ai_error_falls_back(self):
        ai = make_ai(side_effect=AIUnavailable("Claude API error: overloaded"))
        info = await CurrencyService(ai).currency_for_country("Australia")
        assert info.currency_code == "AUD"

    @pytest.mark.asyncio
    async def test_prose_reply_falls_back(self):
        ai = make_ai(reply="The currency of Japan is the yen.")
        info = await CurrencyService(ai).currency_for_country("Japan")
        assert info.currency_code == "JPY"

    @pytest.mark.asyncio
    async def test_bad_code_falls_back(self):
        ai = make_ai(reply='{"currency_code": "Euro", "currency_name": "Euro", "currency_symbol": "€"}')
        info = await CurrencyService(ai).currency_for_country("France")
        assert info.currency_code == "EUR"
        assert info.currency_name == "Euro"
