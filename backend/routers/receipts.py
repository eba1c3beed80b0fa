"""
Receipts Router

POST   /api/receipts/scan                       upload image, OCR + structure + validate
POST   /api/receipts/structure                  structure raw OCR text
POST   /api/receipts/validate                   AI field validation
POST   /api/receipts/check-duplicates           duplicate check only
POST   /api/receipts                            save (duplicate gated, force to override)
GET    /api/receipts                            list the user's receipts, grouped
GET    /api/receipts/templates/{kind}           blank manual-entry drafts
POST   /api/receipts/draft/convert              lift a single-product draft into a list
POST   /api/receipts/draft/products             add a product to a draft
POST   /api/receipts/draft/products/{i}/remove  remove a product from a draft
PATCH  /api/receipts/draft/products/{i}         edit one product field of a draft

Drafts live on the client; the draft endpoints are pure functions of the
posted body.  The caller is identified by the X-User-Id header.
"""
import logging
from typing import Optional

import aiosqlite
from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, UploadFile
from fastapi.responses import JSONResponse

from config import settings
from db.database import SqliteReceiptStore, get_db
from models.schemas import (
    CaptureMode, CaptureSource, DuplicateCheckResult, ExtractedReceiptData, RawCapture,
    ReceiptGroup, SaveReceiptRequest, SaveReceiptResponse, ScanResult, StructureRequest,
    StructuredReceipt, UpdateProductRequest, ValidationResult,
)
from services import product_normalizer
from services.duplicate_service import DuplicateDetectionService
from services.errors import FileTooLarge, InvalidFileType, SaveFailure
from services.intake_service import IntakeService, get_intake_service
from services.ocr_service import check_capture

logger = logging.getLogger("smartreceipts.receipts")
router = APIRouter()


async def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Authentication happens upstream; we only need a stable user id."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


# ── Scan pipeline ─────────────────────────────────────────────────────────────

@router.post("/scan", response_model=ScanResult)
async def scan_receipt(
    file: UploadFile = File(...),
    source: CaptureSource = Form(CaptureSource.file_upload),
    mode: CaptureMode = Form(CaptureMode.single_frame),
    validate: bool = Form(True),
    intake: IntakeService = Depends(get_intake_service),
):
    """
    Run OCR, structuring and field validation on an uploaded image.
    Nothing is saved; the client reviews the result and then POSTs it back.
    """
    contents = await file.read()
    capture = RawCapture(
        data=contents,
        content_type=file.content_type or "",
        filename=file.filename,
        source=source,
        mode=mode,
    )
    try:
        check_capture(capture, settings.max_upload_bytes)
    except InvalidFileType as e:
        raise HTTPException(status_code=422, detail=str(e))
    except FileTooLarge as e:
        raise HTTPException(status_code=413, detail=str(e))

    logger.info("Scanning %s (%d KB, %s)", file.filename, len(contents) // 1024, source.value)
    return await intake.scan(capture, validate=validate)


@router.post("/structure", response_model=StructuredReceipt)
async def structure_text(body: StructureRequest, intake: IntakeService = Depends(get_intake_service)):
    return await intake.extractor.structure_receipt(body.text)


@router.post("/validate", response_model=ValidationResult)
async def validate_receipt(data: ExtractedReceiptData, intake: IntakeService = Depends(get_intake_service)):
    return await intake.validator.validate(data)


@router.post("/check-duplicates", response_model=DuplicateCheckResult)
async def check_duplicates(
    data: ExtractedReceiptData,
    user_id: str = Depends(get_user_id),
    db: aiosqlite.Connection = Depends(get_db),
):
    return await DuplicateDetectionService(SqliteReceiptStore(db)).check_for_duplicates(data, user_id)


# ── Save & list ───────────────────────────────────────────────────────────────

@router.post("", response_model=SaveReceiptResponse, status_code=201)
async def save_receipt(
    body: SaveReceiptRequest,
    user_id: str = Depends(get_user_id),
    db: aiosqlite.Connection = Depends(get_db),
    intake: IntakeService = Depends(get_intake_service),
):
    try:
        result = await intake.save(SqliteReceiptStore(db), user_id, body)
    except SaveFailure as e:
        raise HTTPException(status_code=500, detail=str(e))

    if not result.saved:
        return JSONResponse(status_code=409, content=result.model_dump(mode="json"))
    return result


@router.get("", response_model=list[ReceiptGroup])
async def list_receipts(
    user_id: str = Depends(get_user_id),
    db: aiosqlite.Connection = Depends(get_db),
):
    return await SqliteReceiptStore(db).grouped_receipts(user_id)


# ── Draft editing ─────────────────────────────────────────────────────────────

@router.get("/templates/{kind}", response_model=ExtractedReceiptData)
async def draft_template(kind: str):
    if kind == "single":
        return product_normalizer.manual_entry_template()
    if kind == "multi":
        return product_normalizer.multi_product_template()
    raise HTTPException(status_code=404, detail=f"Unknown template: {kind}")


@router.post("/draft/convert", response_model=ExtractedReceiptData)
async def convert_draft(data: ExtractedReceiptData):
    return product_normalizer.convert_to_multi_product(data)


@router.post("/draft/products", response_model=ExtractedReceiptData)
async def add_draft_product(data: ExtractedReceiptData):
    return product_normalizer.add_product(data)


@router.post("/draft/products/{index}/remove", response_model=ExtractedReceiptData)
async def remove_draft_product(index: int, data: ExtractedReceiptData):
    try:
        return product_normalizer.remove_product(data, index)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/draft/products/{index}", response_model=ExtractedReceiptData)
async def update_draft_product(index: int, body: UpdateProductRequest):
    try:
        return product_normalizer.update_product(body.data, index, body.field, body.value)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
