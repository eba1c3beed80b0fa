"""
Tests for the warranty calculator: expiry parsing, month-end clamping,
remaining days, urgency tiers and derived warranty items.
"""
from datetime import date, datetime

import pytest

from models.schemas import StoredReceipt
from services.warranty_service import (
    LIFETIME_EXPIRY, add_months, calculate_expiry, days_left, default_warranty_period,
    urgency, warranty_item, warranty_items,
)

D = date(2023, 1, 15)


class TestCalculateExpiry:
    def test_years(self):
        assert calculate_expiry("2023-01-15", "2 years") == date(2025, 1, 15)

    def test_empty_defaults_to_one_year(self):
        assert calculate_expiry(D, "") == date(2024, 1, 15)
        assert calculate_expiry(D, None) == date(2024, 1, 15)

    def test_unparseable_defaults_to_one_year(self):
        assert calculate_expiry(D, "manufacturer standard") == date(2024, 1, 15)

    def test_lifetime(self):
        assert calculate_expiry(D, "Lifetime") == LIFETIME_EXPIRY == date(2099, 12, 31)
        assert calculate_expiry(D, "limited lifetime warranty") == date(2099, 12, 31)

    def test_months(self):
        assert calculate_expiry(D, "18 months") == date(2024, 7, 15)

    def test_days(self):
        assert calculate_expiry(D, "90 days") == date(2023, 4, 15)

    def test_year_wins_over_month(self):
        assert calculate_expiry(D, "1 year 6 months") == date(2024, 1, 15)

    def test_case_insensitive(self):
        assert calculate_expiry(D, "3 YEARS") == date(2026, 1, 15)

    def test_leap_day_clamps(self):
        assert calculate_expiry("2024-02-29", "1 year") == date(2025, 2, 28)

    def test_month_end_clamps(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2023, 8, 31), 1) == date(2023, 9, 30)
        assert add_months(date(2023, 12, 15), 1) == date(2024, 1, 15)


class TestDaysLeftAndUrgency:
    def test_whole_days(self):
        assert days_left(date(2024, 1, 31), date(2024, 1, 1)) == 30

    def test_partial_day_rounds_up(self):
        assert days_left(date(2024, 1, 2), datetime(2024, 1, 1, 18, 0)) == 1

    def test_past(self):
        assert days_left(date(2024, 1, 1), date(2024, 1, 5)) == -4

    @pytest.mark.parametrize("remaining, tier", [
        (-1, "expired"),
        (0, "high"),
        (30, "high"),
        (31, "medium"),
        (90, "medium"),
        (91, "low"),
    ])
    def test_tiers(self, remaining, tier):
        assert urgency(remaining) == tier


class TestDefaultWarranty:
    @pytest.mark.parametrize("description, brand", [
        ("PlayStation 5 Console", "Sony"),
        ("MacBook Air 13", "Apple"),
        ("Mini 4 Pro", "DJI"),
        ("55in OLED TV", "LG"),
        ("Garden hose", "Hoselink"),
    ])
    def test_every_family_is_one_year(self, description, brand):
        assert default_warranty_period(description, brand) == "1 year"


def row(**overrides):
    base = dict(id=7, user_id="u1", purchase_date="2024-01-01",
                product_description="Nintendo Switch OLED", brand_name="Nintendo",
                warranty_period="2 years")
    base.update(overrides)
    return StoredReceipt(**base)


class TestWarrantyItems:
    def test_item_fields(self):
        item = warranty_item(row(), now=date(2025, 12, 1))
        assert item.expiry_date == "2026-01-01"
        assert item.days_left == 31
        assert item.urgency == "medium"
        assert item.item_name == "Nintendo Switch OLED"
        assert item.warranty_period == "2 years"

    def test_blank_period_uses_default(self):
        item = warranty_item(row(warranty_period=""), now=date(2024, 6, 1))
        assert item.warranty_period == "1 year"
        assert item.expiry_date == "2025-01-01"

    def test_sorted_and_skips_undated(self):
        items = warranty_items([
            row(id=1, warranty_period="5 years"),
            row(id=2, warranty_period="30 days"),
            row(id=3, purchase_date=None),
            row(id=4, purchase_date="garbage"),
        ], now=date(2024, 1, 10))
        assert [i.receipt_id for i in items] == [2, 1]
        assert items[0].urgency == "high"
