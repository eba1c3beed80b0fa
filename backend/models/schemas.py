from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ── Capture ────────────────────────────────────────────
class CaptureSource(str, Enum):
    camera = "camera"
    file_upload = "file_upload"
    manual_entry = "manual_entry"


class CaptureMode(str, Enum):
    single_frame = "single_frame"
    multi_frame_long = "multi_frame_long"


class RawCapture(BaseModel):
    data: bytes
    content_type: str
    filename: Optional[str] = None
    source: CaptureSource = CaptureSource.file_upload
    mode: CaptureMode = CaptureMode.single_frame


# ── OCR ────────────────────────────────────────────────
class EngineAttempt(BaseModel):
    model_config = ConfigDict(frozen=True)

    engine: str
    error: str


class OCRResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str = ""
    confidence: float = Field(0.0, ge=0, le=100)
    engine: Optional[Literal["primary", "fallback"]] = None
    error: Optional[str] = None
    processing_time_ms: int = 0
    attempts: List[EngineAttempt] = []


class OCRQuality(BaseModel):
    is_valid: bool
    quality: Literal["excellent", "good", "poor", "failed"]
    suggestions: List[str] = []
    confidence: float = 0.0


# ── Extracted receipt ──────────────────────────────────
class Product(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_description: str = ""
    brand_name: Optional[str] = None
    model_number: Optional[str] = None
    amount: float = 0.0
    warranty_period: str = "1 year"
    category: Optional[str] = None


class ExtractedReceiptData(BaseModel):
    """
    A structured receipt in either the single-product shape (the five product
    fields set directly) or the multi-product shape (``products`` non-empty).
    Instances are immutable; the normalizer returns new copies on every edit.
    """
    model_config = ConfigDict(frozen=True)

    store_name: str = ""
    purchase_location: str = ""
    purchase_date: str = ""                 # YYYY-MM-DD
    country: str = ""
    total_amount: float = 0.0
    extended_warranty: str = ""
    currency: Optional[str] = None

    # single-product shape
    product_description: str = ""
    brand_name: Optional[str] = None
    model_number: Optional[str] = None
    amount: float = 0.0
    warranty_period: str = ""

    # multi-product shape
    products: List[Product] = []

    @property
    def is_multi_product(self) -> bool:
        return len(self.products) > 0


class StructuredReceipt(BaseModel):
    """Response body for the structuring step."""
    data: ExtractedReceiptData
    processing_method: Literal["gpt_structured", "fallback_parsing"]
    error: Optional[str] = None


# ── Validation ─────────────────────────────────────────
class FieldValidation(BaseModel):
    original: Optional[str] = None
    validated: Optional[str] = None
    confidence: int = 0
    changed: bool = False


class ProductValidation(BaseModel):
    product_description: FieldValidation
    brand: FieldValidation
    warranty_period: FieldValidation


class ValidationResult(BaseModel):
    success: bool
    validated_data: ExtractedReceiptData
    store_name: Optional[FieldValidation] = None
    product_description: Optional[FieldValidation] = None
    brand: Optional[FieldValidation] = None
    warranty_period: Optional[FieldValidation] = None
    product_validations: List[ProductValidation] = []
    error: Optional[str] = None


# ── Stored receipts & duplicates ───────────────────────
class StoredReceipt(BaseModel):
    id: int
    user_id: str
    purchase_date: Optional[str] = None
    country: Optional[str] = None
    product_description: Optional[str] = None
    brand_name: Optional[str] = None
    model_number: Optional[str] = None
    warranty_period: Optional[str] = None
    extended_warranty: Optional[str] = None
    amount: Optional[float] = None
    receipt_total: Optional[float] = None
    store_name: Optional[str] = None
    purchase_location: Optional[str] = None
    currency: Optional[str] = None
    processing_method: Optional[str] = None
    ocr_confidence: Optional[float] = None
    extracted_text: Optional[str] = None
    receipt_group_id: Optional[str] = None
    is_group_receipt: bool = False
    created_at: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ReceiptGroup(BaseModel):
    """One logical receipt: a single row, or every row sharing a group id."""
    receipt_group_id: Optional[str] = None
    store_name: Optional[str] = None
    purchase_date: Optional[str] = None
    receipt_total: float = 0.0
    is_group_receipt: bool = False
    receipts: List[StoredReceipt]


class DuplicateMatch(BaseModel):
    receipt: StoredReceipt
    match_score: float
    match_reasons: List[str]


class DuplicateCheckResult(BaseModel):
    is_duplicate: bool = False
    matches: List[DuplicateMatch] = []
    confidence: float = 0.0


# ── Warranty ───────────────────────────────────────────
class WarrantyItem(BaseModel):
    receipt_id: int
    item_name: str
    brand_name: Optional[str] = None
    purchase_date: str
    expiry_date: str
    days_left: int
    urgency: Literal["expired", "high", "medium", "low"]
    warranty_period: str


# ── Currency ───────────────────────────────────────────
class CurrencyInfo(BaseModel):
    currency_code: str
    currency_name: str
    currency_symbol: str


# ── Requests ───────────────────────────────────────────
class StructureRequest(BaseModel):
    text: str


class SaveReceiptRequest(BaseModel):
    data: ExtractedReceiptData
    processing_method: str = "manual_entry"
    ocr_confidence: Optional[float] = None
    extracted_text: Optional[str] = None
    force: bool = False


class SaveReceiptResponse(BaseModel):
    saved: bool
    receipts: List[StoredReceipt] = []
    duplicates: Optional[DuplicateCheckResult] = None
    message: Optional[str] = None


class UpdateProductRequest(BaseModel):
    data: ExtractedReceiptData
    field: str
    value: Optional[str | float] = None


class ScanResult(BaseModel):
    ocr: OCRResult
    quality: OCRQuality
    structured: Optional[StructuredReceipt] = None
    validation: Optional[ValidationResult] = None
