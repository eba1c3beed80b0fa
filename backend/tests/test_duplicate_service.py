"""
Tests for duplicate detection: per-field weights, the match threshold,
candidate retrieval through the SQLite store, and fail-open behaviour.
"""
from datetime import date

import pytest

from db.database import SqliteReceiptStore
from models.schemas import DuplicateMatch, ExtractedReceiptData, Product, StoredReceipt
from services.duplicate_service import (
    DUPLICATE_THRESHOLD, DuplicateDetectionService, format_duplicate_message,
    score_multi, score_single,
)


def existing(**overrides):
    base = dict(
        id=1,
        user_id="u1",
        store_name="Harvey Norman",
        purchase_date="2024-05-10",
        product_description="Dyson V15 Detect",
        brand_name="Dyson",
        model_number="SV22",
        amount=1199.0,
        receipt_total=1199.0,
    )
    base.update(overrides)
    return StoredReceipt(**base)


BLANK = ExtractedReceiptData()


# ── Single-product weights ──────────────────────────────────────────────────

class TestSingleProductScore:

    @pytest.mark.parametrize("fields, weight, reason", [
        ({"store_name": "Harvey Norman"}, 0.25, "Same store"),
        ({"purchase_date": "2024-05-10"}, 0.20, "Same purchase date"),
        ({"product_description": "Dyson V15 Detect"}, 0.25, "Similar product"),
        ({"brand_name": "Dyson"}, 0.15, "Same brand"),
        ({"amount": 1199.0}, 0.10, "Same amount"),
        ({"model_number": "SV22"}, 0.05, "Same model"),
    ])
    def test_each_field_adds_its_weight(self, fields, weight, reason):
        score, reasons = score_single(BLANK.model_copy(update=fields), existing())
        assert score == weight
        assert reasons == [reason]

    def test_empty_scores_zero(self):
        assert score_single(BLANK, existing()) == (0.0, [])

    def test_monotonic_as_fields_added(self):
        order = [
            {"store_name": "Harvey Norman"},
            {"purchase_date": "2024-05-10"},
            {"product_description": "Dyson V15 Detect"},
            {"brand_name": "Dyson"},
            {"amount": 1199.0},
            {"model_number": "SV22"},
        ]
        data = BLANK
        previous = 0.0
        for fields in order:
            data = data.model_copy(update=fields)
            score, _ = score_single(data, existing())
            assert score >= previous
            previous = score
        assert previous == 1.0

    def test_identical_receipt_scores_one(self):
        data = ExtractedReceiptData(
            store_name="Harvey Norman", purchase_date="2024-05-10",
            product_description="Dyson V15 Detect", brand_name="Dyson",
            model_number="SV22", amount=1199.0,
        )
        score, reasons = score_single(data, existing())
        assert score == 1.0
        for r in ("Same store", "Same purchase date", "Similar product", "Same amount"):
            assert r in reasons

    def test_amount_tolerance(self):
        near = BLANK.model_copy(update={"amount": 1199.005})
        far = BLANK.model_copy(update={"amount": 1199.02})
        assert score_single(near, existing())[0] == 0.10
        assert score_single(far, existing())[0] == 0.0

    def test_zero_amounts_do_not_match(self):
        assert score_single(BLANK, existing(amount=0.0))[0] == 0.0

    def test_model_requires_both_sides(self):
        assert score_single(BLANK.model_copy(update={"model_number": "SV22"}), existing(model_number=None))[0] == 0.0


# ── Multi-product weights ───────────────────────────────────────────────────

class TestMultiProductScore:

    def multi(self, **overrides):
        base = dict(products=[
            Product(product_description="Bosch drill", amount=199.0),
            Product(product_description="Dyson V15", amount=1000.0),
        ])
        base.update(overrides)
        return ExtractedReceiptData(**base)

    @pytest.mark.parametrize("fields, weight, reason", [
        ({"store_name": "Harvey Norman"}, 0.30, "Same store"),
        ({"purchase_date": "2024-05-10"}, 0.25, "Same purchase date"),
        ({"total_amount": 1199.0}, 0.20, "Same total amount"),
    ])
    def test_each_field_adds_its_weight(self, fields, weight, reason):
        score, reasons = score_multi(self.multi(**fields), existing(product_description="Something else"))
        assert score == weight
        assert reasons == [reason]

    def test_contains_similar_product_counts_once(self):
        data = self.multi(products=[
            Product(product_description="Dyson V15", amount=1.0),
            Product(product_description="Dyson V15 Detect", amount=2.0),
        ])
        score, reasons = score_multi(data, existing())
        assert score == 0.25
        assert reasons == ["Contains similar product"]

    def test_total_compares_receipt_total(self):
        data = self.multi(total_amount=1500.0)
        assert score_multi(data, existing(amount=1500.0, receipt_total=1199.0))[0] == 0.25

    def test_zero_totals_do_not_match(self):
        data = self.multi(total_amount=0.0)
        assert score_multi(data, existing(product_description="Something else", receipt_total=0.0)) == (0.0, [])
        assert score_multi(data, existing(product_description="Something else", receipt_total=None)) == (0.0, [])


# ── Service ──────────────────────────────────────────────────────────────────

async def seed(db, user_id="u1", **fields):
    data = ExtractedReceiptData(**{
        "store_name": "Harvey Norman",
        "purchase_date": "2024-05-10",
        "product_description": "Dyson V15 Detect",
        "brand_name": "Dyson",
        "model_number": "SV22",
        "amount": 1199.0,
        **fields,
    })
    return await SqliteReceiptStore(db).save(user_id, data)


class TestDuplicateDetectionService:

    @pytest.mark.asyncio
    async def test_no_candidates(self, db):
        svc = DuplicateDetectionService(SqliteReceiptStore(db))
        result = await svc.check_for_duplicates(
            ExtractedReceiptData(store_name="Harvey Norman", purchase_date="2024-05-10"), "u1",
        )
        assert result.is_duplicate is False
        assert result.matches == []
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_identical_receipt_is_duplicate(self, db):
        await seed(db)
        svc = DuplicateDetectionService(SqliteReceiptStore(db))

        result = await svc.check_for_duplicates(ExtractedReceiptData(
            store_name="Harvey Norman", purchase_date="2024-05-10",
            product_description="Dyson V15 Detect", brand_name="Dyson",
            model_number="SV22", amount=1199.0,
        ), "u1")

        assert result.is_duplicate is True
        assert result.confidence == 1.0
        assert result.matches[0].match_score == 1.0

    @pytest.mark.asyncio
    async def test_window_is_three_days(self, db):
        await seed(db, purchase_date="2024-05-07")
        await seed(db, purchase_date="2024-05-06")
        svc = DuplicateDetectionService(SqliteReceiptStore(db))

        result = await svc.check_for_duplicates(ExtractedReceiptData(
            store_name="Harvey Norman", purchase_date="2024-05-10",
            product_description="Dyson V15 Detect", brand_name="Dyson", amount=1199.0,
        ), "u1")

        # 0.25 store + 0.25 product + 0.15 brand + 0.10 amount, no date match
        assert [m.receipt.purchase_date for m in result.matches] == ["2024-05-07"]
        assert result.confidence == 0.75

    @pytest.mark.asyncio
    async def test_other_users_ignored(self, db):
        await seed(db, user_id="someone-else")
        svc = DuplicateDetectionService(SqliteReceiptStore(db))
        result = await svc.check_for_duplicates(ExtractedReceiptData(
            store_name="Harvey Norman", purchase_date="2024-05-10",
            product_description="Dyson V15 Detect", amount=1199.0,
        ), "u1")
        assert result.is_duplicate is False

    @pytest.mark.asyncio
    async def test_threshold_is_exclusive(self, db):
        await seed(db)
        svc = DuplicateDetectionService(SqliteReceiptStore(db))
        # store 0.25 + date 0.20 + brand 0.15 = 0.60, not above the threshold
        result = await svc.check_for_duplicates(ExtractedReceiptData(
            store_name="Harvey Norman", purchase_date="2024-05-10", brand_name="Dyson",
        ), "u1")
        assert DUPLICATE_THRESHOLD == 0.6
        assert result.is_duplicate is False

    @pytest.mark.asyncio
    async def test_matches_sorted_descending(self, db):
        await seed(db, product_description="Dyson V15 Detect Absolute", amount=499.0, model_number=None)
        await seed(db)
        svc = DuplicateDetectionService(SqliteReceiptStore(db))
        result = await svc.check_for_duplicates(ExtractedReceiptData(
            store_name="Harvey Norman", purchase_date="2024-05-10",
            product_description="Dyson V15 Detect", brand_name="Dyson", amount=1199.0,
        ), "u1")
        scores = [m.match_score for m in result.matches]
        assert scores == sorted(scores, reverse=True)
        assert len(scores) == 2

    @pytest.mark.asyncio
    async def test_query_failure_fails_open(self):
        class BrokenStore:
            async def query_by_user_and_date_range(self, *args, **kwargs):
                raise ConnectionError("database is locked")

        result = await DuplicateDetectionService(BrokenStore()).check_for_duplicates(
            ExtractedReceiptData(store_name="Harvey Norman", purchase_date="2024-05-10"), "u1",
        )
        assert result.is_duplicate is False
        assert result.matches == []

    @pytest.mark.asyncio
    async def test_unreadable_date_fails_open(self, db):
        result = await DuplicateDetectionService(SqliteReceiptStore(db)).check_for_duplicates(
            ExtractedReceiptData(store_name="Harvey Norman", purchase_date="yesterday"), "u1",
        )
        assert result.is_duplicate is False

    @pytest.mark.asyncio
    async def test_query_window_arguments(self):
        calls = []

        class RecordingStore:
            async def query_by_user_and_date_range(self, user_id, start, end, store_name_like=None):
                calls.append((user_id, start, end, store_name_like))
                return []

        await DuplicateDetectionService(RecordingStore()).check_for_duplicates(
            ExtractedReceiptData(store_name="  JB Hi-Fi ", purchase_date="2024-03-01"), "u9",
        )
        assert calls == [("u9", date(2024, 2, 27), date(2024, 3, 4), "jb hi-fi")]


class TestFormatDuplicateMessage:
    def test_message(self):
        match = DuplicateMatch(receipt=existing(), match_score=0.85, match_reasons=["Same store", "Same amount"])
        assert format_duplicate_message([match]) == (
            "Similar receipt found from Harvey Norman on 2024-05-10 (Same store, Same amount)"
        )

    def test_empty(self):
        assert format_duplicate_message([]) == ""
