"""
Warranties Router

GET /api/warranties                 warranty status for every stored product
GET /api/warranties/currency/{c}    currency info for a country
"""
from typing import Optional

import aiosqlite
from fastapi import APIRouter, Depends

from db.database import SqliteReceiptStore, get_db
from models.schemas import CurrencyInfo, WarrantyItem
from routers.receipts import get_user_id
from services.intake_service import IntakeService, get_intake_service
from services.warranty_service import warranty_items

router = APIRouter()


@router.get("", response_model=list[WarrantyItem])
async def list_warranties(
    urgency: Optional[str] = None,
    user_id: str = Depends(get_user_id),
    db: aiosqlite.Connection = Depends(get_db),
):
    """Soonest expiry first.  Optional ?urgency=expired|high|medium|low filter."""
    items = warranty_items(await SqliteReceiptStore(db).list_for_user(user_id))
    if urgency:
        items = [w for w in items if w.urgency == urgency]
    return items


@router.get("/currency/{country}", response_model=CurrencyInfo)
async def currency_for_country(country: str, intake: IntakeService = Depends(get_intake_service)):
    return await intake.currency.currency_for_country(country)
