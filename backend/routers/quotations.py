from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
import logging

from database import get_db
from crud import quotations as crud_quotations
from exceptions import QuotationEngineError
from models.quotations import QuotationStatus
from schemas.audit_log import AuditLogEntry
from schemas.invoices import Invoice as InvoiceSchema
from schemas.quotation_items import QuotationItemCreateRequest, QuotationItemUpdate
from schemas.quotations import (
    PricePreview,
    PricePreviewRequest,
    Quotation as QuotationSchema,
    QuotationCancel,
    QuotationCreate,
    QuotationPage,
    QuotationStatistics,
    QuotationUpdate,
)
from services import quotation_service
from services.quotation_state import Actor, Role
from utils.auth_utils import get_actor, require_seller
from utils.http_errors import to_http_exception
from utils.time_utils import utc_now

router = APIRouter(prefix="/quotations", tags=["Quotations"])
logger = logging.getLogger("quotations")


def _to_response(quotation) -> QuotationSchema:
    """Serialize with lazy expiry applied to the status."""
    response = QuotationSchema.model_validate(quotation)
    response.status = quotation_service.current_status(quotation)
    return response


@router.post("/", response_model=QuotationSchema, status_code=status.HTTP_201_CREATED)
def create_quotation(quotation: QuotationCreate, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    """Create a draft quotation, optionally with initial items."""
    try:
        db_quotation = quotation_service.create_quotation(db, quotation, actor)
    except QuotationEngineError as e:
        logger.warning(f"Create quotation rejected for {actor.role.value}: {e.message}")
        raise to_http_exception(e)
    return _to_response(db_quotation)


@router.get("/", response_model=QuotationPage)
def list_quotations(
    status_filter: Optional[QuotationStatus] = Query(None, alias="status"),
    company_id: Optional[int] = None,
    customer_email: Optional[str] = None,
    created_by: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    order_by: str = "created_at",
    order_direction: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor)
):
    """List quotations. Customers only ever see their own."""
    if actor.role == Role.ANONYMOUS:
        raise HTTPException(status_code=401, detail="Sign in to list quotations")
    if not actor.is_seller:
        created_by = actor.user_id
    try:
        result = crud_quotations.get_quotations(
            db,
            status=status_filter,
            company_id=company_id,
            customer_email=customer_email,
            created_by=created_by,
            date_from=date_from,
            date_to=date_to,
            min_amount=min_amount,
            max_amount=max_amount,
            search=search,
            page=page,
            limit=limit,
            order_by=order_by,
            order_direction=order_direction,
        )
    except QuotationEngineError as e:
        raise to_http_exception(e)
    result["items"] = [_to_response(q) for q in result["items"]]
    return result


@router.get("/statistics", response_model=List[QuotationStatistics])
def quotation_statistics(db: Session = Depends(get_db), actor: Actor = Depends(require_seller)):
    return crud_quotations.get_statistics(db)


@router.get("/expiring-soon", response_model=List[QuotationSchema])
def expiring_soon(days: int = Query(7, ge=1, le=365), db: Session = Depends(get_db), actor: Actor = Depends(require_seller)):
    return [_to_response(q) for q in crud_quotations.get_expiring_soon(db, days=days, now=utc_now())]


@router.post("/price-preview", response_model=PricePreview)
def price_preview(request: PricePreviewRequest, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    """Price an unsaved cart with the same rules used for stored quotations."""
    try:
        return quotation_service.price_preview(db, request, actor)
    except QuotationEngineError as e:
        raise to_http_exception(e)


@router.get("/{quotation_id}", response_model=QuotationSchema)
def get_quotation(quotation_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    try:
        return _to_response(quotation_service.get_quotation(db, quotation_id, actor))
    except QuotationEngineError as e:
        raise to_http_exception(e)


@router.get("/{quotation_id}/history", response_model=List[AuditLogEntry])
def quotation_history(quotation_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    try:
        return quotation_service.get_history(db, quotation_id, actor)
    except QuotationEngineError as e:
        raise to_http_exception(e)


@router.patch("/{quotation_id}", response_model=QuotationSchema)
def update_quotation(quotation_id: int, changes: QuotationUpdate, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    try:
        return _to_response(quotation_service.update_quotation(db, quotation_id, changes, actor))
    except QuotationEngineError as e:
        logger.warning(f"Update of quotation {quotation_id} rejected: {e.message}")
        raise to_http_exception(e)


@router.post("/{quotation_id}/items", response_model=QuotationSchema, status_code=status.HTTP_201_CREATED)
def add_quotation_item(quotation_id: int, item: QuotationItemCreateRequest, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    try:
        return _to_response(quotation_service.add_item(db, quotation_id, item, actor))
    except QuotationEngineError as e:
        logger.warning(f"Adding part {item.part_id} to quotation {quotation_id} rejected: {e.message}")
        raise to_http_exception(e)


@router.patch("/{quotation_id}/items/{item_id}", response_model=QuotationSchema)
def update_quotation_item(quotation_id: int, item_id: int, changes: QuotationItemUpdate, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    try:
        return _to_response(quotation_service.update_item(db, quotation_id, item_id, changes, actor))
    except QuotationEngineError as e:
        raise to_http_exception(e)


@router.delete("/{quotation_id}/items/{item_id}", response_model=QuotationSchema)
def remove_quotation_item(quotation_id: int, item_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    try:
        return _to_response(quotation_service.remove_item(db, quotation_id, item_id, actor))
    except QuotationEngineError as e:
        raise to_http_exception(e)


@router.post("/{quotation_id}/submit", response_model=QuotationSchema)
def submit_quotation(quotation_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    """Customers submit for review (pending); sellers submit straight to confirmed."""
    try:
        return _to_response(quotation_service.submit_quotation(db, quotation_id, actor))
    except QuotationEngineError as e:
        logger.warning(f"Submit of quotation {quotation_id} by {actor.role.value} rejected: {e.message}")
        raise to_http_exception(e)


@router.post("/{quotation_id}/confirm", response_model=QuotationSchema)
def confirm_quotation(quotation_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    """Confirm and reserve stock for every line. All or nothing."""
    try:
        return _to_response(quotation_service.confirm_quotation(db, quotation_id, actor))
    except QuotationEngineError as e:
        logger.warning(f"Confirm of quotation {quotation_id} rejected: {e.message}")
        raise to_http_exception(e)


@router.post("/{quotation_id}/cancel", response_model=QuotationSchema)
def cancel_quotation(quotation_id: int, body: Optional[QuotationCancel] = None, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    reason = body.reason if body else None
    try:
        return _to_response(quotation_service.cancel_quotation(db, quotation_id, actor, reason=reason))
    except QuotationEngineError as e:
        raise to_http_exception(e)


@router.post("/{quotation_id}/invoice", response_model=InvoiceSchema, status_code=status.HTTP_201_CREATED)
def convert_to_invoice(quotation_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    """Sell the reserved units and freeze the quotation as an invoice."""
    try:
        return quotation_service.convert_to_invoice(db, quotation_id, actor)
    except QuotationEngineError as e:
        logger.warning(f"Invoicing quotation {quotation_id} rejected: {e.message}")
        raise to_http_exception(e)
