import logging
import os
import uuid
from datetime import date
from typing import Optional, Protocol

import aiosqlite

from config import settings
from models.schemas import ExtractedReceiptData, ReceiptGroup, StoredReceipt
from services.errors import SaveFailure

logger = logging.getLogger("smartreceipts.db")
DB_PATH = settings.db_path


async def get_db() -> aiosqlite.Connection:
    """Dependency: yields an open DB connection."""
    async with aiosqlite.connect(DB_PATH) as db:
        db.row_factory = aiosqlite.Row
        yield db


async def init_db():
    """Create all tables if they don't exist."""
    directory = os.path.dirname(DB_PATH)
    if directory:
        os.makedirs(directory, exist_ok=True)
    async with aiosqlite.connect(DB_PATH) as db:
        await db.executescript(SCHEMA)
        await db.commit()
    logger.info("Initialized at %s", DB_PATH)


SCHEMA = """
-- One row per purchased product.  A multi-product receipt is several rows
-- sharing receipt_group_id, each carrying the whole receipt's total.
CREATE TABLE IF NOT EXISTS receipts (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id             TEXT NOT NULL,
    purchase_date       TEXT,                 -- YYYY-MM-DD
    country             TEXT,
    product_description TEXT,
    brand_name          TEXT,
    model_number        TEXT,
    warranty_period     TEXT,
    extended_warranty   TEXT,
    amount              REAL,
    receipt_total       REAL,
    store_name          TEXT,
    purchase_location   TEXT,
    currency            TEXT,
    processing_method   TEXT,                 -- gpt_structured / fallback_parsing / manual_entry
    ocr_confidence      REAL,
    extracted_text      TEXT,
    receipt_group_id    TEXT,
    is_group_receipt    INTEGER NOT NULL DEFAULT 0,
    created_at          TEXT DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_receipts_user_date ON receipts(user_id, purchase_date);
CREATE INDEX IF NOT EXISTS idx_receipts_group     ON receipts(receipt_group_id);
"""

_COLUMNS = (
    "user_id, purchase_date, country, product_description, brand_name, model_number, "
    "warranty_period, extended_warranty, amount, receipt_total, store_name, purchase_location, "
    "currency, processing_method, ocr_confidence, extracted_text, receipt_group_id, is_group_receipt"
)


class ReceiptStore(Protocol):
    """What the pipeline needs from persistence."""

    async def query_by_user_and_date_range(
        self,
        user_id: str,
        start: date,
        end: date,
        store_name_like: Optional[str] = None,
    ) -> list[StoredReceipt]: ...

    async def save(
        self,
        user_id: str,
        data: ExtractedReceiptData,
        *,
        processing_method: str = "manual_entry",
        ocr_confidence: Optional[float] = None,
        extracted_text: Optional[str] = None,
    ) -> list[StoredReceipt]: ...


def row_to_receipt(row: aiosqlite.Row) -> StoredReceipt:
    data = dict(row)
    data["is_group_receipt"] = bool(data.get("is_group_receipt"))
    return StoredReceipt(**data)


class SqliteReceiptStore:
    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def query_by_user_and_date_range(
        self,
        user_id: str,
        start: date,
        end: date,
        store_name_like: Optional[str] = None,
    ) -> list[StoredReceipt]:
        sql = "SELECT * FROM receipts WHERE user_id = ? AND purchase_date BETWEEN ? AND ?"
        params: list = [user_id, start.isoformat(), end.isoformat()]
        if store_name_like:
            sql += " AND LOWER(store_name) LIKE ?"
            params.append(f"%{store_name_like.lower()}%")
        sql += " ORDER BY purchase_date DESC, id DESC"
        async with self.db.execute(sql, params) as cur:
            rows = await cur.fetchall()
        return [row_to_receipt(r) for r in rows]

    async def list_for_user(self, user_id: str) -> list[StoredReceipt]:
        async with self.db.execute(
            "SELECT * FROM receipts WHERE user_id = ? ORDER BY purchase_date DESC, id",
            (user_id,),
        ) as cur:
            rows = await cur.fetchall()
        return [row_to_receipt(r) for r in rows]

    async def get(self, receipt_id: int) -> Optional[StoredReceipt]:
        async with self.db.execute("SELECT * FROM receipts WHERE id = ?", (receipt_id,)) as cur:
            row = await cur.fetchone()
        return row_to_receipt(row) if row else None

    async def save(
        self,
        user_id: str,
        data: ExtractedReceiptData,
        *,
        processing_method: str = "manual_entry",
        ocr_confidence: Optional[float] = None,
        extracted_text: Optional[str] = None,
    ) -> list[StoredReceipt]:
        common = dict(
            purchase_date=data.purchase_date,
            country=data.country,
            extended_warranty=data.extended_warranty,
            store_name=data.store_name,
            purchase_location=data.purchase_location,
            currency=data.currency,
            processing_method=processing_method,
            ocr_confidence=ocr_confidence,
            extracted_text=extracted_text,
        )

        if data.is_multi_product:
            group_id = str(uuid.uuid4())
            total = sum(p.amount for p in data.products)
            rows = [
                (user_id, common["purchase_date"], common["country"], p.product_description,
                 p.brand_name, p.model_number, p.warranty_period, common["extended_warranty"],
                 p.amount, total, common["store_name"], common["purchase_location"],
                 common["currency"], processing_method, ocr_confidence, extracted_text,
                 group_id, 1)
                for p in data.products
            ]
        else:
            rows = [
                (user_id, common["purchase_date"], common["country"], data.product_description,
                 data.brand_name, data.model_number, data.warranty_period, common["extended_warranty"],
                 data.amount, data.amount, common["store_name"], common["purchase_location"],
                 common["currency"], processing_method, ocr_confidence, extracted_text,
                 None, 0)
            ]

        ids = []
        try:
            for params in rows:
                cur = await self.db.execute(
                    f"INSERT INTO receipts ({_COLUMNS}) VALUES ({', '.join('?' * 18)})",
                    params,
                )
                ids.append(cur.lastrowid)
            await self.db.commit()
        except aiosqlite.Error as e:
            await self.db.rollback()
            logger.error("Saving receipt for user %s failed: %s", user_id, e)
            raise SaveFailure(f"Could not save receipt: {e}") from e

        logger.info("Saved %d receipt row(s) for user %s", len(ids), user_id)
        saved = []
        for receipt_id in ids:
            receipt = await self.get(receipt_id)
            if receipt:
                saved.append(receipt)
        return saved

    async def grouped_receipts(self, user_id: str) -> list[ReceiptGroup]:
        """Fold rows back into logical receipts, newest first."""
        groups: dict[str, ReceiptGroup] = {}
        result: list[ReceiptGroup] = []
        for r in await self.list_for_user(user_id):
            if r.receipt_group_id:
                group = groups.get(r.receipt_group_id)
                if group is None:
                    group = ReceiptGroup(
                        receipt_group_id=r.receipt_group_id,
                        store_name=r.store_name,
                        purchase_date=r.purchase_date,
                        receipt_total=r.receipt_total or 0.0,
                        is_group_receipt=True,
                        receipts=[],
                    )
                    groups[r.receipt_group_id] = group
                    result.append(group)
                group.receipts.append(r)
            else:
                result.append(ReceiptGroup(
                    store_name=r.store_name,
                    purchase_date=r.purchase_date,
                    receipt_total=r.receipt_total if r.receipt_total is not None else (r.amount or 0.0),
                    receipts=[r],
                ))
        return result
