"""
Single ↔ multi-product editing for draft receipts.

Every operation takes an immutable ExtractedReceiptData and returns a new one
with ``total_amount`` recomputed, so a stale total can never be observed.

Collapsing from two products to one keeps only the survivor's description,
brand, model and amount.  The receipt-level warranty_period is whatever it
was before the lift, not the survivor's.
"""
from datetime import date
from typing import Any, Optional

from models.schemas import ExtractedReceiptData, Product

DEFAULT_PRODUCT_WARRANTY = "1 year"
EDITABLE_FIELDS = set(Product.model_fields)


def _total(products: list[Product]) -> float:
    return sum(p.amount for p in products)


def _blank_product() -> Product:
    return Product(warranty_period=DEFAULT_PRODUCT_WARRANTY)


def _lift(data: ExtractedReceiptData) -> Product:
    return Product(
        product_description=data.product_description,
        brand_name=data.brand_name,
        model_number=data.model_number,
        amount=data.amount or 0.0,
        warranty_period=data.warranty_period or DEFAULT_PRODUCT_WARRANTY,
    )


def _with_products(data: ExtractedReceiptData, products: list[Product]) -> ExtractedReceiptData:
    return data.model_copy(update={"products": products, "total_amount": _total(products)})


def convert_to_multi_product(data: ExtractedReceiptData) -> ExtractedReceiptData:
    """Lift the single-product fields into a one-element product list."""
    if data.is_multi_product:
        return data
    return _with_products(data, [_lift(data)])


def add_product(data: ExtractedReceiptData) -> ExtractedReceiptData:
    if data.is_multi_product:
        return _with_products(data, [*data.products, _blank_product()])
    return _with_products(data, [_lift(data), _blank_product()])


def remove_product(data: ExtractedReceiptData, index: int) -> ExtractedReceiptData:
    if not 0 <= index < len(data.products):
        raise IndexError(f"product index {index} out of range")
    remaining = [p for i, p in enumerate(data.products) if i != index]

    if not remaining:
        return data.model_copy(update={
            "products": [],
            "product_description": "",
            "brand_name": None,
            "model_number": None,
            "amount": 0.0,
            "total_amount": 0.0,
        })

    if len(remaining) == 1:
        survivor = remaining[0]
        return data.model_copy(update={
            "products": [],
            "product_description": survivor.product_description,
            "brand_name": survivor.brand_name,
            "model_number": survivor.model_number,
            "amount": survivor.amount,
            "total_amount": survivor.amount,
        })

    return _with_products(data, remaining)


def update_product(data: ExtractedReceiptData, index: int, field: str, value: Any) -> ExtractedReceiptData:
    if field not in EDITABLE_FIELDS:
        raise ValueError(f"unknown product field: {field}")
    if not 0 <= index < len(data.products):
        raise IndexError(f"product index {index} out of range")

    # validate the edited product so amount strings like "12.50" coerce
    current = data.products[index].model_dump()
    current[field] = value
    updated = Product.model_validate(current)

    products = list(data.products)
    products[index] = updated
    return _with_products(data, products)


# ── Manual-entry templates ────────────────────────────────────────────────────

def manual_entry_template(today: Optional[date] = None) -> ExtractedReceiptData:
    return ExtractedReceiptData(
        purchase_date=(today or date.today()).isoformat(),
        warranty_period=DEFAULT_PRODUCT_WARRANTY,
        country="United States",
    )


def multi_product_template(today: Optional[date] = None) -> ExtractedReceiptData:
    return ExtractedReceiptData(
        purchase_date=(today or date.today()).isoformat(),
        country="United States",
        products=[_blank_product()],
    )
