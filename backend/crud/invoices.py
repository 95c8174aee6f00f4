from sqlalchemy.orm import Session, selectinload
from sqlalchemy import func
from typing import Optional
from datetime import datetime

from models.invoices import Invoice
from utils.time_utils import utc_now

OPEN_PAYMENT_STATUSES = ("pending", "partial")


def format_invoice_number(sequence: int) -> str:
    return f"INV-{sequence:06d}"


def next_invoice_number(db: Session) -> str:
    last_id = db.query(func.max(Invoice.id)).scalar() or 0
    return format_invoice_number(last_id + 1)


def get_invoice(db: Session, invoice_id: int):
    return db.query(Invoice).options(selectinload(Invoice.items)).filter(Invoice.id == invoice_id).first()


def get_invoice_by_quotation(db: Session, quotation_id: int):
    return db.query(Invoice).filter(Invoice.quotation_id == quotation_id).first()


def get_invoices(
    db: Session,
    company_id: Optional[int] = None,
    payment_status: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    skip: int = 0,
    limit: int = 100
):
    query = db.query(Invoice).options(selectinload(Invoice.items))
    query = _apply_period(query, company_id, date_from, date_to)
    if payment_status:
        query = query.filter(Invoice.payment_status == payment_status)
    return query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).offset(skip).limit(limit).all()


def get_overdue_invoices(db: Session, now: Optional[datetime] = None):
    """Unpaid invoices past their due date."""
    now = now or utc_now()
    return db.query(Invoice).options(selectinload(Invoice.items)).filter(
        Invoice.due_date < now,
        Invoice.payment_status.in_(OPEN_PAYMENT_STATUSES)
    ).order_by(Invoice.due_date.asc(), Invoice.id.asc()).all()


def _apply_period(query, company_id: Optional[int], date_from: Optional[datetime], date_to: Optional[datetime]):
    if company_id is not None:
        query = query.filter(Invoice.company_id == company_id)
    if date_from:
        query = query.filter(Invoice.created_at >= date_from)
    if date_to:
        query = query.filter(Invoice.created_at <= date_to)
    return query


def get_statistics(
    db: Session,
    company_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    now: Optional[datetime] = None
):
    """Invoice counts and amounts per payment status, plus the overdue balance."""
    now = now or utc_now()
    rows = _apply_period(
        db.query(
            Invoice.payment_status,
            func.count(Invoice.id),
            func.coalesce(func.sum(Invoice.total_amount), 0),
            func.coalesce(func.sum(Invoice.paid_amount), 0),
            func.coalesce(func.sum(Invoice.balance_amount), 0),
        ),
        company_id, date_from, date_to
    ).group_by(Invoice.payment_status).order_by(Invoice.payment_status).all()

    overdue_count, overdue_balance = _apply_period(
        db.query(func.count(Invoice.id), func.coalesce(func.sum(Invoice.balance_amount), 0)),
        company_id, date_from, date_to
    ).filter(
        Invoice.due_date < now,
        Invoice.payment_status.in_(OPEN_PAYMENT_STATUSES)
    ).one()

    return {
        "by_status": [
            {
                "payment_status": status,
                "count": count,
                "total_amount": total,
                "paid_amount": paid,
                "balance_amount": balance,
            }
            for status, count, total, paid, balance in rows
        ],
        "overdue": {"count": overdue_count, "balance_amount": overdue_balance},
    }
