from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime

from database import get_db
from crud import invoices as crud_invoices
from schemas.invoices import Invoice as InvoiceSchema, InvoiceStatistics
from services.quotation_state import Actor
from utils.auth_utils import require_seller
from utils.time_utils import utc_now

router = APIRouter(prefix="/invoices", tags=["Invoices"])


@router.get("/", response_model=List[InvoiceSchema])
def list_invoices(
    company_id: Optional[int] = None,
    payment_status: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_seller)
):
    return crud_invoices.get_invoices(
        db, company_id=company_id, payment_status=payment_status,
        date_from=date_from, date_to=date_to, skip=skip, limit=limit
    )


@router.get("/overdue", response_model=List[InvoiceSchema])
def overdue_invoices(db: Session = Depends(get_db), actor: Actor = Depends(require_seller)):
    return crud_invoices.get_overdue_invoices(db, now=utc_now())


@router.get("/statistics", response_model=InvoiceStatistics)
def invoice_statistics(
    company_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_seller)
):
    return crud_invoices.get_statistics(db, company_id=company_id, date_from=date_from, date_to=date_to, now=utc_now())


@router.get("/{invoice_id}", response_model=InvoiceSchema)
def get_invoice(invoice_id: int, db: Session = Depends(get_db), actor: Actor = Depends(require_seller)):
    db_invoice = crud_invoices.get_invoice(db, invoice_id)
    if db_invoice is None:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return db_invoice
