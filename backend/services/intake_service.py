"""
Intake orchestration: image → OCR → structure → validate, then a duplicate
gated save.

Every stage before the save degrades instead of aborting, so a scan always
returns whatever could be recovered.  Only a bad upload (shape) or a failed
insert stops the user.
"""
import asyncio
import logging
import weakref
from typing import Optional

from config import Settings, settings as default_settings
from db.database import ReceiptStore
from models.schemas import (
    RawCapture, SaveReceiptRequest, SaveReceiptResponse, ScanResult,
)
from services.ai_client import AIClient
from services.currency_service import CurrencyService
from services.duplicate_service import DuplicateDetectionService, format_duplicate_message
from services.extraction_service import StructuredExtractionService
from services.ocr_service import OCRService, validate_ocr_result
from services.validation_service import FieldValidationService

logger = logging.getLogger("smartreceipts.intake")

# Serialises check-then-insert per user within this process.  Entries drop
# out once no save for that user holds or awaits the lock.
_user_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def _lock_for(user_id: str) -> asyncio.Lock:
    lock = _user_locks.get(user_id)
    if lock is None:
        lock = asyncio.Lock()
        _user_locks[user_id] = lock
    return lock


class IntakeService:
    def __init__(
        self,
        cfg: Settings = default_settings,
        ocr: Optional[OCRService] = None,
        extractor: Optional[StructuredExtractionService] = None,
        validator: Optional[FieldValidationService] = None,
        currency: Optional[CurrencyService] = None,
    ):
        self.settings = cfg
        structuring_ai = AIClient(cfg.anthropic_api_key, cfg.anthropic_model, cfg.ai_timeout_seconds)
        validation_ai = AIClient(cfg.effective_validation_key, cfg.validation_model, cfg.ai_timeout_seconds)
        self.ocr = ocr or OCRService(cfg)
        self.extractor = extractor or StructuredExtractionService(structuring_ai)
        self.validator = validator or FieldValidationService(validation_ai, field_timeout=cfg.ai_timeout_seconds)
        self.currency = currency or CurrencyService(structuring_ai)

    async def scan(self, capture: RawCapture, validate: bool = True) -> ScanResult:
        ocr_result = await self.ocr.extract_text(capture)
        quality = validate_ocr_result(ocr_result)
        if not ocr_result.text:
            logger.info("Scan produced no text: %s", ocr_result.error)
            return ScanResult(ocr=ocr_result, quality=quality)

        structured = await self.extractor.structure_receipt(ocr_result.text)
        validation = None
        if validate:
            validation = await self.validator.validate(structured.data)
        return ScanResult(ocr=ocr_result, quality=quality, structured=structured, validation=validation)

    async def save(self, store: ReceiptStore, user_id: str, request: SaveReceiptRequest) -> SaveReceiptResponse:
        """
        Check for duplicates, then insert.  A likely duplicate is returned
        unsaved unless ``request.force`` is set.  SaveFailure propagates.
        """
        async with _lock_for(user_id):
            if not request.force:
                duplicates = await DuplicateDetectionService(store).check_for_duplicates(request.data, user_id)
                if duplicates.is_duplicate:
                    return SaveReceiptResponse(
                        saved=False,
                        duplicates=duplicates,
                        message=format_duplicate_message(duplicates.matches),
                    )

            saved = await store.save(
                user_id,
                request.data,
                processing_method=request.processing_method,
                ocr_confidence=request.ocr_confidence,
                extracted_text=request.extracted_text,
            )
        return SaveReceiptResponse(saved=True, receipts=saved)


_service: Optional[IntakeService] = None


def get_intake_service() -> IntakeService:
    """Dependency: one IntakeService per process, built from settings."""
    global _service
    if _service is None:
        _service = IntakeService(default_settings)
    return _service
