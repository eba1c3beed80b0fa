"""
Currency lookup by country, plus country-code expansion.

Claude is asked first; when it is unconfigured or answers with something
unusable, a static table covers the common countries and anything else is
treated as US dollars.
"""
import json
import logging
import re

from pydantic import ValidationError

from models.schemas import CurrencyInfo
from services.ai_client import AIClient
from services.errors import AIUnavailable, MalformedAIResponse
from services.extraction_service import find_json_block

logger = logging.getLogger("smartreceipts.currency")

_USD = CurrencyInfo(currency_code="USD", currency_name="US Dollar", currency_symbol="$")
_AED = CurrencyInfo(currency_code="AED", currency_name="UAE Dirham", currency_symbol="د.إ")
_GBP = CurrencyInfo(currency_code="GBP", currency_name="British Pound", currency_symbol="£")
_EUR = CurrencyInfo(currency_code="EUR", currency_name="Euro", currency_symbol="€")

FALLBACK_CURRENCIES: dict[str, CurrencyInfo] = {
    "united states": _USD,
    "usa": _USD,
    "us": _USD,
    "uae": _AED,
    "united arab emirates": _AED,
    "uk": _GBP,
    "gb": _GBP,
    "united kingdom": _GBP,
    "canada": CurrencyInfo(currency_code="CAD", currency_name="Canadian Dollar", currency_symbol="C$"),
    "australia": CurrencyInfo(currency_code="AUD", currency_name="Australian Dollar", currency_symbol="A$"),
    "new zealand": CurrencyInfo(currency_code="NZD", currency_name="New Zealand Dollar", currency_symbol="NZ$"),
    "germany": _EUR,
    "france": _EUR,
    "japan": CurrencyInfo(currency_code="JPY", currency_name="Japanese Yen", currency_symbol="¥"),
    "india": CurrencyInfo(currency_code="INR", currency_name="Indian Rupee", currency_symbol="₹"),
    "china": CurrencyInfo(currency_code="CNY", currency_name="Chinese Yuan", currency_symbol="¥"),
}

COUNTRY_CODES: dict[str, str] = {
    "AU": "Australia",
    "US": "United States",
    "USA": "United States",
    "UK": "United Kingdom",
    "GB": "United Kingdom",
    "CA": "Canada",
    "DE": "Germany",
    "FR": "France",
    "IT": "Italy",
    "ES": "Spain",
    "JP": "Japan",
    "CN": "China",
    "IN": "India",
    "BR": "Brazil",
    "MX": "Mexico",
    "NZ": "New Zealand",
    "SG": "Singapore",
    "HK": "Hong Kong",
    "TH": "Thailand",
    "MY": "Malaysia",
    "PH": "Philippines",
    "ID": "Indonesia",
    "VN": "Vietnam",
    "KR": "South Korea",
    "TW": "Taiwan",
}


def expand_country_code(country: str) -> str:
    """'AU' → 'Australia'; full names and unknown codes pass through unchanged."""
    if not country:
        return country
    return COUNTRY_CODES.get(country.strip().upper(), country)


def fallback_currency(country: str) -> CurrencyInfo:
    key = expand_country_code((country or "").strip()).lower()
    return FALLBACK_CURRENCIES.get(key, _USD)


class CurrencyService:
    def __init__(self, ai: AIClient):
        self.ai = ai

    async def currency_for_country(self, country: str) -> CurrencyInfo:
        if not self.ai.configured:
            return fallback_currency(country)

        prompt = f"""What is the official currency for {country}?
Return ONLY valid JSON in this format:
{{
  "currency_code": "USD",
  "currency_name": "US Dollar",
  "currency_symbol": "$"
}}"""
        try:
            reply = await self.ai.complete(
                prompt,
                system="You are a currency expert. Return only valid JSON with currency information.",
                max_tokens=200,
            )
            info = CurrencyInfo.model_validate(json.loads(find_json_block(reply)))
        except (AIUnavailable, MalformedAIResponse, json.JSONDecodeError, ValidationError) as e:
            logger.warning("Currency lookup for %r failed (%s), using fallback table", country, e)
            return fallback_currency(country)

        if not re.fullmatch(r'[A-Z]{3}', info.currency_code.strip().upper()):
            logger.warning("Currency lookup for %r returned code %r, using fallback table",
                           country, info.currency_code)
            return fallback_currency(country)
        return info.model_copy(update={"currency_code": info.currency_code.strip().upper()})
