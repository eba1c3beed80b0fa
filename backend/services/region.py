"""
Region gate for AI field validation.

Validation prompts are tuned for Australian and New Zealand retailers, so a
receipt must show some sign of being from there before any validation call
is made.  Checks run in order: country, store name, purchase location.
"""
import re
from typing import Optional

from models.schemas import ExtractedReceiptData

REGION_COUNTRIES = {
    "au", "aus", "australia",
    "nz", "nzl", "new zealand", "aotearoa",
}

REGION_RETAILERS = [
    "jb hi-fi", "jb hifi", "harvey norman", "bunnings", "officeworks",
    "the good guys", "good guys", "kmart", "big w", "target australia",
    "myer", "david jones", "bing lee", "appliances online", "jaycar",
    "rebel sport", "ebgames", "eb games", "woolworths", "coles",
    "noel leeming", "warehouse stationery", "the warehouse", "briscoes",
    "pb tech", "smiths city", "farmers", "mitre 10",
]

REGION_PLACES = [
    # Australia
    "sydney", "melbourne", "brisbane", "perth", "adelaide", "hobart",
    "canberra", "darwin", "gold coast", "newcastle", "wollongong", "geelong",
    "nsw", "vic", "qld", "tas",
    "new south wales", "victoria", "queensland", "western australia",
    "south australia", "tasmania", "northern territory",
    # New Zealand
    "auckland", "wellington", "christchurch", "hamilton", "tauranga",
    "dunedin", "queenstown", "nelson", "napier", "palmerston north",
]

_PLACE_RE = re.compile(
    r'\b(?:' + '|'.join(re.escape(p) for p in sorted(REGION_PLACES, key=len, reverse=True)) + r')\b',
    re.I,
)


def country_in_region(country: Optional[str]) -> bool:
    return (country or "").strip().lower() in REGION_COUNTRIES


def store_in_region(store_name: Optional[str]) -> bool:
    lower = (store_name or "").lower()
    return any(retailer in lower for retailer in REGION_RETAILERS)


def location_in_region(location: Optional[str]) -> bool:
    return bool(location and _PLACE_RE.search(location))


def is_in_region(data: ExtractedReceiptData) -> bool:
    return (
        country_in_region(data.country)
        or store_in_region(data.store_name)
        or location_in_region(data.purchase_location)
    )
