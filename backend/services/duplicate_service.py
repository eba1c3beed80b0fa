"""
Duplicate Detection Engine

Scores a new receipt against the same user's receipts from ±3 days around
its purchase date.  Each matching field adds a fixed weight; anything above
DUPLICATE_THRESHOLD is reported as a likely duplicate.

If the candidate query fails the check fails open (not a duplicate), so an
unavailable store never blocks a legitimate save.
"""
import logging
from datetime import timedelta
from typing import Optional

from db.database import ReceiptStore
from models.schemas import DuplicateCheckResult, DuplicateMatch, ExtractedReceiptData, StoredReceipt
from services.errors import DuplicateQueryFailure
from services.similarity import is_similar
from services.warranty_service import parse_date

logger = logging.getLogger("smartreceipts.duplicates")

DUPLICATE_THRESHOLD = 0.6
DATE_WINDOW_DAYS = 3
AMOUNT_TOLERANCE = 0.01

# single-product weights (sum to 1.0)
W_STORE = 0.25
W_DATE = 0.20
W_DESCRIPTION = 0.25
W_BRAND = 0.15
W_AMOUNT = 0.10
W_MODEL = 0.05

# multi-product weights (sum to 1.0)
WM_STORE = 0.30
WM_DATE = 0.25
WM_TOTAL = 0.20
WM_PRODUCT = 0.25


def _amounts_equal(a: Optional[float], b: Optional[float]) -> bool:
    return a is not None and b is not None and abs(a - b) < AMOUNT_TOLERANCE


def score_single(new: ExtractedReceiptData, existing: StoredReceipt) -> tuple[float, list[str]]:
    score = 0.0
    reasons = []

    if is_similar(new.store_name, existing.store_name):
        score += W_STORE
        reasons.append("Same store")
    if new.purchase_date and new.purchase_date == existing.purchase_date:
        score += W_DATE
        reasons.append("Same purchase date")
    if is_similar(new.product_description, existing.product_description):
        score += W_DESCRIPTION
        reasons.append("Similar product")
    if is_similar(new.brand_name, existing.brand_name):
        score += W_BRAND
        reasons.append("Same brand")
    if new.amount and existing.amount and _amounts_equal(new.amount, existing.amount):
        score += W_AMOUNT
        reasons.append("Same amount")
    if new.model_number and existing.model_number and is_similar(new.model_number, existing.model_number):
        score += W_MODEL
        reasons.append("Same model")

    return round(score, 2), reasons


def score_multi(new: ExtractedReceiptData, existing: StoredReceipt) -> tuple[float, list[str]]:
    score = 0.0
    reasons = []

    if is_similar(new.store_name, existing.store_name):
        score += WM_STORE
        reasons.append("Same store")
    if new.purchase_date and new.purchase_date == existing.purchase_date:
        score += WM_DATE
        reasons.append("Same purchase date")
    if new.total_amount and existing.receipt_total and _amounts_equal(new.total_amount, existing.receipt_total):
        score += WM_TOTAL
        reasons.append("Same total amount")
    if any(is_similar(p.product_description, existing.product_description) for p in new.products):
        score += WM_PRODUCT
        reasons.append("Contains similar product")

    return round(score, 2), reasons


def score_candidate(new: ExtractedReceiptData, existing: StoredReceipt) -> tuple[float, list[str]]:
    if new.is_multi_product:
        return score_multi(new, existing)
    return score_single(new, existing)


def format_duplicate_message(matches: list[DuplicateMatch]) -> str:
    if not matches:
        return ""
    best = matches[0]
    store = best.receipt.store_name or "Unknown Store"
    when = best.receipt.purchase_date or "an unknown date"
    message = f"Similar receipt found from {store} on {when} ({', '.join(best.match_reasons)})"
    if len(matches) > 1:
        message += f" and {len(matches) - 1} more"
    return message


class DuplicateDetectionService:
    def __init__(self, store: ReceiptStore):
        self.store = store

    async def _candidates(self, new: ExtractedReceiptData, user_id: str) -> list[StoredReceipt]:
        try:
            purchased = parse_date(new.purchase_date)
        except ValueError as e:
            raise DuplicateQueryFailure(f"unreadable purchase date {new.purchase_date!r}") from e
        window = timedelta(days=DATE_WINDOW_DAYS)
        store_like = (new.store_name or "").strip().lower() or None
        try:
            return await self.store.query_by_user_and_date_range(
                user_id, purchased - window, purchased + window, store_name_like=store_like,
            )
        except Exception as e:
            raise DuplicateQueryFailure(str(e)) from e

    async def check_for_duplicates(self, new: ExtractedReceiptData, user_id: str) -> DuplicateCheckResult:
        try:
            candidates = await self._candidates(new, user_id)
        except DuplicateQueryFailure as e:
            logger.warning("Duplicate check skipped for user %s: %s", user_id, e)
            return DuplicateCheckResult()

        if not candidates:
            return DuplicateCheckResult()

        matches = []
        for existing in candidates:
            score, reasons = score_candidate(new, existing)
            if score > DUPLICATE_THRESHOLD:
                matches.append(DuplicateMatch(receipt=existing, match_score=score, match_reasons=reasons))
        matches.sort(key=lambda m: m.match_score, reverse=True)

        if matches:
            logger.info("Found %d likely duplicate(s) for user %s (best %.2f)",
                        len(matches), user_id, matches[0].match_score)
        return DuplicateCheckResult(
            is_duplicate=bool(matches),
            matches=matches,
            confidence=matches[0].match_score if matches else 0.0,
        )
