from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from database import get_db
from crud import part_items as crud_part_items
from exceptions import QuotationEngineError
from models.parts import Part as PartModel
from models.part_items import PartItemStatus
from schemas.part_items import (
    PartItem as PartItemSchema,
    PartItemBulkCreate,
    PartItemCreate,
    PartItemUpdate,
    StockSummary,
)
from services import reservation_ledger
from services.quotation_state import Actor
from utils.auth_utils import require_seller
from utils.http_errors import to_http_exception

router = APIRouter(prefix="/part-items", tags=["Part Items"])
logger = logging.getLogger("part_items")


@router.post("/", response_model=PartItemSchema, status_code=status.HTTP_201_CREATED)
def create_part_item(item: PartItemCreate, db: Session = Depends(get_db), actor: Actor = Depends(require_seller)):
    """Register one physical unit."""
    try:
        created = crud_part_items.create_part_items(db, [item], actor.user_id)
    except QuotationEngineError as e:
        db.rollback()
        raise to_http_exception(e)
    logger.info(f"Unit {item.bar_code} of part {item.part_id} registered by {actor.user_id}")
    return created[0]


@router.post("/bulk", response_model=List[PartItemSchema], status_code=status.HTTP_201_CREATED)
def create_part_items_bulk(payload: PartItemBulkCreate, db: Session = Depends(get_db), actor: Actor = Depends(require_seller)):
    """Register several units at once. Nothing is saved if any unit is rejected."""
    if not payload.items:
        raise HTTPException(status_code=400, detail="At least one unit is required.")
    try:
        created = crud_part_items.create_part_items(db, payload.items, actor.user_id)
    except QuotationEngineError as e:
        db.rollback()
        raise to_http_exception(e)
    logger.info(f"{len(created)} unit(s) registered by {actor.user_id}")
    return created


@router.get("/", response_model=List[PartItemSchema])
def list_part_items(
    part_id: Optional[int] = None,
    status_filter: Optional[PartItemStatus] = Query(None, alias="status"),
    supplier_id: Optional[int] = None,
    quotation_id: Optional[int] = None,
    location: Optional[str] = None,
    order_by: str = "added_on",
    order_direction: str = Query("asc", pattern="^(asc|desc)$"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_seller)
):
    try:
        return crud_part_items.get_part_items(
            db, part_id=part_id, status=status_filter, supplier_id=supplier_id,
            quotation_id=quotation_id, location=location, order_by=order_by,
            order_direction=order_direction, skip=skip, limit=limit
        )
    except QuotationEngineError as e:
        raise to_http_exception(e)


@router.get("/barcode/{bar_code}", response_model=PartItemSchema)
def get_part_item_by_barcode(bar_code: str, db: Session = Depends(get_db), actor: Actor = Depends(require_seller)):
    db_item = crud_part_items.get_part_item_by_barcode(db, bar_code)
    if db_item is None:
        raise HTTPException(status_code=404, detail=f"Unit with barcode {bar_code} not found")
    return db_item


@router.get("/stock/{part_id}", response_model=StockSummary)
def get_stock_summary(part_id: int, db: Session = Depends(get_db), actor: Actor = Depends(require_seller)):
    """Unit counts per status for a catalog part."""
    if db.query(PartModel.id).filter(PartModel.id == part_id).first() is None:
        raise HTTPException(status_code=404, detail="Part not found")
    return {"part_id": part_id, **reservation_ledger.stock_summary(db, part_id)}


@router.get("/{item_id}", response_model=PartItemSchema)
def get_part_item(item_id: int, db: Session = Depends(get_db), actor: Actor = Depends(require_seller)):
    db_item = crud_part_items.get_part_item(db, item_id)
    if db_item is None:
        raise HTTPException(status_code=404, detail="Unit not found")
    return db_item


@router.patch("/{item_id}", response_model=PartItemSchema)
def update_part_item(item_id: int, item: PartItemUpdate, db: Session = Depends(get_db), actor: Actor = Depends(require_seller)):
    """Update a unit's details. Reserved and sold are managed by quotations only."""
    try:
        return crud_part_items.update_part_item(db, item_id, item, actor.user_id)
    except QuotationEngineError as e:
        db.rollback()
        raise to_http_exception(e)
