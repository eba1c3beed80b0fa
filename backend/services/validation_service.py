"""
Field Validation Service

AI-assisted correction of individual receipt fields (store, product
description, brand, warranty period).  Each field is its own prompt and the
calls run concurrently; a field that fails keeps its original value with
confidence 0 instead of failing the whole validation.

Validation only runs for receipts that pass the AU/NZ region gate and only
when a validation key is configured.  Otherwise the input is returned as-is
with ``success=False``.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from models.schemas import (
    ExtractedReceiptData, FieldValidation, Product, ProductValidation, ValidationResult,
)
from services.ai_client import AIClient
from services.currency_service import expand_country_code
from services.errors import ApiKeyMissing, FieldValidationError, RegionNotSupported
from services.region import is_in_region
from services.response_normalizer import (
    Matched, Outcome, normalize_store, normalize_text, normalize_warranty,
)
from services.similarity import similarity

logger = logging.getLogger("smartreceipts.validate")

SYSTEM_PROMPT = (
    "You correct OCR mistakes in retail receipt fields. "
    "Answer with the corrected value only, on a single line, with no explanation."
)


def description_prompt(description: str) -> str:
    return f"""Create a short, clean product name from this receipt description: "{description}"

Please:
1. Keep the brand name and main product type
2. Include the model number if important
3. Remove unnecessary technical specifications and marketing text
4. Make it concise and readable (maximum 60 characters)

Examples:
- "APPLE IPHONE 15 PRO MAX 256GB NATURAL TITANIUM UNLOCKED" → "Apple iPhone 15 Pro Max 256GB"
- "SAMSUNG 65IN QLED 4K SMART TV QA65Q80C" → "Samsung 65\" QLED 4K TV QA65Q80C"

Return ONLY the product name."""


def brand_prompt(brand: str) -> str:
    return f"""Validate and correct this brand name from a receipt: "{brand}"

Please:
1. Check if the brand name is spelled correctly
2. Use the official brand name format (proper capitalization)
3. Correct any OCR errors
4. Return the standardized brand name

Return ONLY the brand name."""


def store_prompt(store: str) -> str:
    return f"""Validate and correct this store name from a receipt: "{store}"

Please:
1. Check if the store name is spelled correctly
2. Use the official store name format
3. Correct any OCR errors
4. Return the standardized store name

Return ONLY the store name, nothing else."""


def warranty_prompt(warranty: str, description: str) -> str:
    return f"""Validate and correct this warranty period for the product "{description}": "{warranty}"

Please:
1. Check if the warranty period is reasonable for this type of product
2. Correct the format to be standardized (e.g., "1 year", "6 months", "90 days")
3. If the warranty seems incorrect, provide the standard warranty for this product type

Return ONLY the warranty period in a format like "3 years"."""


def field_confidence(original: str, validated: str) -> int:
    if original == validated:
        return 100
    return round(similarity(original, validated) * 100)


def unchanged(original: Optional[str]) -> FieldValidation:
    return FieldValidation(original=original, validated=original, confidence=0, changed=False)


class FieldValidationService:
    def __init__(self, ai: AIClient, field_timeout: float = 30.0):
        self.ai = ai
        self.field_timeout = field_timeout

    async def _validate_field(
        self,
        name: str,
        original: Optional[str],
        prompt: str,
        normalize: Callable[[str], Outcome],
    ) -> FieldValidation:
        if not original or not original.strip():
            return unchanged(original)
        try:
            reply = await asyncio.wait_for(
                self.ai.complete(prompt, system=SYSTEM_PROMPT, max_tokens=200),
                timeout=self.field_timeout,
            )
            outcome = normalize(reply)
            if not isinstance(outcome, Matched):
                raise FieldValidationError(f"no usable answer in reply: {reply[:80]!r}")
            validated = outcome.value
        except Exception as e:
            logger.warning("Validation of %s failed (%s): %s", name, type(e).__name__, e)
            return unchanged(original)

        return FieldValidation(
            original=original,
            validated=validated,
            confidence=field_confidence(original, validated),
            changed=original != validated,
        )

    def _store(self, data: ExtractedReceiptData) -> Awaitable[FieldValidation]:
        return self._validate_field(
            "store_name", data.store_name, store_prompt(data.store_name), normalize_store,
        )

    def _product_fields(
        self, description: str, brand: Optional[str], warranty: str,
    ) -> list[Awaitable[FieldValidation]]:
        return [
            self._validate_field(
                "product_description", description, description_prompt(description), normalize_text,
            ),
            self._validate_field("brand", brand, brand_prompt(brand or ""), normalize_text),
            self._validate_field(
                "warranty_period", warranty, warranty_prompt(warranty, description), normalize_warranty,
            ),
        ]

    async def _validate_product(self, product: Product) -> ProductValidation:
        desc, brand, warranty = await asyncio.gather(*self._product_fields(
            product.product_description, product.brand_name, product.warranty_period,
        ))
        return ProductValidation(product_description=desc, brand=brand, warranty_period=warranty)

    def check_eligibility(self, data: ExtractedReceiptData) -> None:
        if not is_in_region(data):
            raise RegionNotSupported()
        if not self.ai.configured:
            raise ApiKeyMissing()

    async def validate(self, data: ExtractedReceiptData) -> ValidationResult:
        try:
            self.check_eligibility(data)
        except (RegionNotSupported, ApiKeyMissing) as e:
            logger.info("Skipping field validation: %s", e)
            return ValidationResult(success=False, validated_data=data, error=str(e))

        if data.is_multi_product:
            return await self._validate_multi(data)
        return await self._validate_single(data)

    async def _validate_single(self, data: ExtractedReceiptData) -> ValidationResult:
        store, desc, brand, warranty = await asyncio.gather(
            self._store(data),
            *self._product_fields(data.product_description, data.brand_name, data.warranty_period),
        )
        validated = data.model_copy(update={
            "store_name": store.validated,
            "product_description": desc.validated,
            "brand_name": brand.validated,
            "warranty_period": warranty.validated,
            "country": expand_country_code(data.country),
        })
        return ValidationResult(
            success=True,
            validated_data=validated,
            store_name=store,
            product_description=desc,
            brand=brand,
            warranty_period=warranty,
        )

    async def _validate_multi(self, data: ExtractedReceiptData) -> ValidationResult:
        store, *per_product = await asyncio.gather(
            self._store(data),
            *(self._validate_product(p) for p in data.products),
        )
        products = [
            p.model_copy(update={
                "product_description": v.product_description.validated,
                "brand_name": v.brand.validated,
                "warranty_period": v.warranty_period.validated,
            })
            for p, v in zip(data.products, per_product)
        ]
        validated = data.model_copy(update={
            "store_name": store.validated,
            "products": products,
            "country": expand_country_code(data.country),
        })
        return ValidationResult(
            success=True,
            validated_data=validated,
            store_name=store,
            product_validations=per_product,
        )
