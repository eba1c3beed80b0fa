"""
Warranty Calculator

Turns a purchase date plus free-text warranty period ("2 years", "18 months",
"Lifetime") into an expiry date, days remaining and an urgency tier.  Nothing
here is persisted; warranty items are derived from stored receipts on read.
"""
import calendar
import logging
import math
import re
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional, Union

from models.schemas import StoredReceipt, WarrantyItem

logger = logging.getLogger("smartreceipts.warranty")

LIFETIME_EXPIRY = date(2099, 12, 31)
DEFAULT_WARRANTY = "1 year"

YEAR_RE  = re.compile(r'(\d+)\s*year', re.I)
MONTH_RE = re.compile(r'(\d+)\s*month', re.I)
DAY_RE   = re.compile(r'(\d+)\s*day', re.I)

# keyword family → default period.  Every family currently resolves to the
# same default; see DESIGN.md before changing.
CATEGORY_DEFAULTS: list[tuple[tuple[str, ...], str]] = [
    (("nintendo", "xbox", "playstation", "switch", "ps5", "ps4"), "1 year"),
    (("surface", "macbook", "ipad", "laptop", "computer", "tablet"), "1 year"),
    (("dji", "drone", "camera", "gopro"), "1 year"),
    (("tv", "microwave", "appliance", "electronic", "device"), "1 year"),
]


def add_months(d: date, months: int) -> date:
    """Add calendar months, clamping to the last day of the target month."""
    total = d.month - 1 + months
    year = d.year + total // 12
    month = total % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def parse_date(value: Union[str, date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def calculate_expiry(purchase_date: Union[str, date], warranty_period: Optional[str]) -> date:
    start = parse_date(purchase_date)
    period = (warranty_period or "").strip()

    if "lifetime" in period.lower():
        return LIFETIME_EXPIRY

    m = YEAR_RE.search(period)
    if m:
        return add_months(start, int(m.group(1)) * 12)
    m = MONTH_RE.search(period)
    if m:
        return add_months(start, int(m.group(1)))
    m = DAY_RE.search(period)
    if m:
        return start + timedelta(days=int(m.group(1)))

    return add_months(start, 12)


def days_left(expiry: date, now: Optional[Union[date, datetime]] = None) -> int:
    """Whole days until expiry, rounded up (midnight of the expiry date)."""
    if now is None:
        now = datetime.now()
    if not isinstance(now, datetime):
        now = datetime.combine(now, time.min)
    delta = datetime.combine(expiry, time.min) - now
    return math.ceil(delta.total_seconds() / 86400)


def urgency(remaining: int) -> str:
    if remaining < 0:
        return "expired"
    if remaining <= 30:
        return "high"
    if remaining <= 90:
        return "medium"
    return "low"


def default_warranty_period(product_description: Optional[str], brand_name: Optional[str]) -> str:
    text = f"{product_description or ''} {brand_name or ''}".lower()
    for keywords, period in CATEGORY_DEFAULTS:
        if any(k in text for k in keywords):
            return period
    return DEFAULT_WARRANTY


def warranty_item(receipt: StoredReceipt, now: Optional[Union[date, datetime]] = None) -> WarrantyItem:
    period = (receipt.warranty_period or "").strip()
    if not period:
        period = default_warranty_period(receipt.product_description, receipt.brand_name)
    expiry = calculate_expiry(receipt.purchase_date, period)
    remaining = days_left(expiry, now)
    return WarrantyItem(
        receipt_id=receipt.id,
        item_name=receipt.product_description or "Unknown Product",
        brand_name=receipt.brand_name,
        purchase_date=parse_date(receipt.purchase_date).isoformat(),
        expiry_date=expiry.isoformat(),
        days_left=remaining,
        urgency=urgency(remaining),
        warranty_period=period,
    )


def warranty_items(
    receipts: Iterable[StoredReceipt],
    now: Optional[Union[date, datetime]] = None,
) -> list[WarrantyItem]:
    """Derive warranty items for every receipt row, soonest expiry first."""
    items = []
    for r in receipts:
        if not r.purchase_date:
            continue
        try:
            items.append(warranty_item(r, now))
        except ValueError as e:
            logger.warning("Skipping receipt %s with unreadable purchase date %r: %s",
                           r.id, r.purchase_date, e)
    items.sort(key=lambda w: w.days_left)
    return items
