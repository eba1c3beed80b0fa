"""
Structured Extraction Service

Converts raw OCR text into an ExtractedReceiptData.

  1. Ask Claude to pull every line item plus store info out of the text as
     JSON, then validate that JSON against an explicit schema.
  2. If the AI is unavailable or its reply does not fit the schema, fall back
     to a heuristic parser that always produces a single-product record.

The AI reply is treated as untrusted text: prose around the JSON, numbers as
strings ("$1,299.00") and missing fields are all expected.
"""
import json
import logging
import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ValidationError, field_validator

from models.schemas import ExtractedReceiptData, Product, StructuredReceipt
from services.ai_client import AIClient
from services.errors import AIUnavailable, MalformedAIResponse

logger = logging.getLogger("smartreceipts.extract")

DEFAULT_COUNTRY = "United States"
DEFAULT_CURRENCY = "USD"

SYSTEM_PROMPT = (
    "You are a precise data extraction assistant specialized in retail receipts. "
    "Extract ALL items from receipts and return only valid JSON."
)


def build_prompt(raw_text: str) -> str:
    return f"""Extract structured data from this retail receipt text.

Include EVERY purchased product as its own entry in "items" (skip tax, subtotal,
payment and change lines).  Use null for anything you cannot find.

Return ONLY this JSON (no prose, no markdown):
{{
  "items": [
    {{
      "product_description": "string",
      "brand_name": "string or null",
      "model_number": "string or null",
      "price": number,
      "quantity": number,
      "warranty_period_months": number or null,
      "extended_warranty_months": number or null
    }}
  ],
  "store_info": {{
    "store_name": "string",
    "purchase_location": "string or null",
    "purchase_date": "YYYY-MM-DD",
    "total_amount": number,
    "country": "string",
    "currency": "ISO 4217 code or null"
  }}
}}

Receipt text:
<receipt_text>
{raw_text.strip()}
</receipt_text>"""


# ── Outcome types ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Structured:
    data: ExtractedReceiptData


@dataclass(frozen=True)
class Unstructured:
    error: str


ExtractionOutcome = Union[Structured, Unstructured]


# ── AI payload schema ─────────────────────────────────────────────────────────

def _to_number(value: Any) -> Any:
    """Accept 12.5, "12.50", "$1,299.00"; anything unreadable becomes None."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        cleaned = value
    else:
        cleaned = re.sub(r'[^\d.\-]', '', str(value))
        if not cleaned or cleaned in (".", "-"):
            return None
    try:
        number = float(cleaned)
    except (ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _to_text(value: Any) -> Any:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class AIItem(BaseModel):
    product_description: Optional[str] = None
    brand_name: Optional[str] = None
    model_number: Optional[str] = None
    price: Optional[float] = None
    quantity: Optional[float] = None
    warranty_period_months: Optional[float] = None
    extended_warranty_months: Optional[float] = None

    @field_validator("price", "quantity", "warranty_period_months", "extended_warranty_months", mode="before")
    @classmethod
    def coerce_numbers(cls, v):
        return _to_number(v)

    @field_validator("product_description", "brand_name", "model_number", mode="before")
    @classmethod
    def coerce_texts(cls, v):
        return _to_text(v)


class AIStoreInfo(BaseModel):
    store_name: Optional[str] = None
    purchase_location: Optional[str] = None
    purchase_date: Optional[str] = None
    total_amount: Optional[float] = None
    country: Optional[str] = None
    currency: Optional[str] = None

    @field_validator("total_amount", mode="before")
    @classmethod
    def coerce_numbers(cls, v):
        return _to_number(v)

    @field_validator("store_name", "purchase_location", "purchase_date", "country", "currency", mode="before")
    @classmethod
    def coerce_texts(cls, v):
        return _to_text(v)


class AIExtractionPayload(BaseModel):
    items: List[AIItem]
    store_info: AIStoreInfo


def find_json_block(text: str) -> str:
    """Return the first balanced {...} block in text, honouring JSON strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        start = text.find("{", start + 1)
    raise MalformedAIResponse("No JSON object found in AI response")


def parse_ai_payload(raw: str) -> AIExtractionPayload:
    try:
        data = json.loads(find_json_block(raw))
    except json.JSONDecodeError as e:
        raise MalformedAIResponse(f"Invalid JSON from AI: {e}") from e
    if not isinstance(data, dict):
        raise MalformedAIResponse("AI response is not a JSON object")
    if not isinstance(data.get("items"), list):
        raise MalformedAIResponse("AI response 'items' is not a list")
    if not isinstance(data.get("store_info"), dict):
        raise MalformedAIResponse("AI response is missing 'store_info'")
    try:
        return AIExtractionPayload.model_validate(data)
    except ValidationError as e:
        raise MalformedAIResponse(f"AI response failed schema validation: {e}") from e


# ── Coercion helpers ──────────────────────────────────────────────────────────

DATE_FORMATS = (
    "%Y-%m-%d", "%Y/%m/%d", "%d/%m/%Y", "%m/%d/%Y", "%d-%m-%Y", "%m-%d-%Y",
    "%d/%m/%y", "%m/%d/%y", "%d %b %Y", "%d %B %Y", "%b %d, %Y", "%B %d, %Y",
)


def coerce_date(value: Optional[str], today: Optional[date] = None) -> str:
    """Return an ISO date; unreadable or missing values become today."""
    today = today or date.today()
    if value:
        value = value.strip()
        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(value, fmt).date().isoformat()
            except ValueError:
                continue
        logger.debug("Unrecognised purchase date %r, using today", value)
    return today.isoformat()


def format_warranty_period(months: Optional[float]) -> str:
    if months is None or months <= 0:
        return "1 year"
    months = int(round(months))
    if months == 12:
        return "1 year"
    if months < 12:
        return f"{months} month" if months == 1 else f"{months} months"
    years, remaining = divmod(months, 12)
    year_text = "1 year" if years == 1 else f"{years} years"
    if remaining == 0:
        return year_text
    month_text = "1 month" if remaining == 1 else f"{remaining} months"
    return f"{year_text} {month_text}"


def validate_extracted_item(item: AIItem) -> list[str]:
    errors = []
    if not item.product_description:
        errors.append("Product description is required")
    if item.quantity and item.quantity <= 0:
        errors.append("Quantity must be greater than 0")
    if item.price and item.price <= 0:
        errors.append("Price must be greater than 0")
    return errors


def validate_store_info(info: AIStoreInfo) -> list[str]:
    errors = []
    if not info.purchase_date:
        errors.append("Purchase date is required")
    elif not re.fullmatch(r'\d{4}-\d{2}-\d{2}', info.purchase_date):
        errors.append("Purchase date must be in YYYY-MM-DD format")
    if not info.country:
        errors.append("Country is required")
    if info.total_amount and info.total_amount <= 0:
        errors.append("Total amount must be greater than 0")
    return errors


def payload_to_receipt(payload: AIExtractionPayload, today: Optional[date] = None) -> ExtractedReceiptData:
    if not payload.items:
        raise MalformedAIResponse("AI response contained no items")

    info = payload.store_info
    for problem in validate_store_info(info):
        logger.debug("store_info: %s", problem)

    products = []
    for item in payload.items:
        for problem in validate_extracted_item(item):
            logger.debug("item %r: %s", item.product_description, problem)
        quantity = item.quantity if item.quantity and item.quantity > 0 else 1
        amount = round((item.price or 0.0) * quantity, 2)
        if not math.isfinite(amount):
            raise MalformedAIResponse(f"AI item {item.product_description!r} has an unusable price")
        products.append(Product(
            product_description=item.product_description or "Unknown Product",
            brand_name=item.brand_name,
            model_number=item.model_number,
            amount=amount,
            warranty_period=format_warranty_period(item.warranty_period_months),
        ))

    extended = payload.items[0].extended_warranty_months
    common = dict(
        store_name=info.store_name or "Unknown Store",
        purchase_location=info.purchase_location or "",
        purchase_date=coerce_date(info.purchase_date, today),
        country=info.country or DEFAULT_COUNTRY,
        currency=(info.currency or DEFAULT_CURRENCY).upper(),
        extended_warranty=format_warranty_period(extended) if extended else "",
    )

    if len(products) == 1:
        only = products[0]
        return ExtractedReceiptData(
            **common,
            product_description=only.product_description,
            brand_name=only.brand_name,
            model_number=only.model_number,
            amount=only.amount,
            warranty_period=only.warranty_period,
            total_amount=only.amount or (info.total_amount or 0.0),
        )

    return ExtractedReceiptData(
        **common,
        products=products,
        total_amount=sum(p.amount for p in products),
    )


# ── Heuristic fallback ────────────────────────────────────────────────────────

AMOUNT_RE = re.compile(r'\$?(\d+\.?\d*)')
DATE_RE   = re.compile(r'(\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4})')


def parse_numeric_date(token: str) -> Optional[date]:
    """
    Parse D/M/Y or M/D/Y.  The first field is read as the day when it cannot
    be a month (> 12), otherwise month-first.  Two-digit years are 20xx.
    """
    parts = re.split(r'[/\-]', token)
    if len(parts) != 3:
        return None
    try:
        a, b, year = (int(p) for p in parts)
    except ValueError:
        return None
    if len(parts[2]) == 2:
        year += 2000
    month, day = (b, a) if a > 12 else (a, b)
    try:
        return date(year, month, day)
    except ValueError:
        return None


def heuristic_parse(raw_text: str, today: Optional[date] = None) -> ExtractedReceiptData:
    """Best-effort single-product record from raw text.  Never raises."""
    today = today or date.today()
    text = raw_text or ""
    lines = [ln.strip() for ln in text.split("\n") if ln.strip()]

    store_name = lines[0] if lines else "Unknown Store"

    amounts = AMOUNT_RE.findall(text)
    amount = 0.0
    if amounts:
        try:
            amount = float(amounts[-1])
        except ValueError:
            amount = 0.0

    purchase = today
    m = DATE_RE.search(text)
    if m:
        purchase = parse_numeric_date(m.group(1)) or today

    return ExtractedReceiptData(
        store_name=store_name,
        purchase_location="Unknown Location",
        purchase_date=purchase.isoformat(),
        country=DEFAULT_COUNTRY,
        product_description="Receipt Item",
        brand_name="Unknown Brand",
        amount=amount,
        total_amount=amount,
        warranty_period="1 year",
    )


# ── Service ───────────────────────────────────────────────────────────────────

class StructuredExtractionService:
    def __init__(self, ai: AIClient):
        self.ai = ai

    async def structure_outcome(self, raw_text: str) -> ExtractionOutcome:
        if not raw_text or not raw_text.strip():
            return Unstructured("No text to structure")
        try:
            reply = await self.ai.complete(build_prompt(raw_text), system=SYSTEM_PROMPT, max_tokens=2048)
            payload = parse_ai_payload(reply)
            try:
                return Structured(payload_to_receipt(payload))
            except ValueError as e:
                # pydantic ValidationError is a ValueError too
                raise MalformedAIResponse(f"AI response could not be converted: {e}") from e
        except (AIUnavailable, MalformedAIResponse) as e:
            logger.warning("AI structuring failed (%s): %s", type(e).__name__, e)
            return Unstructured(str(e))

    async def structure_receipt(self, raw_text: str) -> StructuredReceipt:
        outcome = await self.structure_outcome(raw_text)
        if isinstance(outcome, Structured):
            return StructuredReceipt(data=outcome.data, processing_method="gpt_structured")
        return StructuredReceipt(
            data=heuristic_parse(raw_text),
            processing_method="fallback_parsing",
            error=outcome.error,
        )

    async def structure(self, raw_text: str) -> ExtractedReceiptData:
        return (await self.structure_receipt(raw_text)).data
