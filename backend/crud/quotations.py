from sqlalchemy.orm import Session, selectinload
from sqlalchemy import func, or_, and_
from typing import Optional
from datetime import datetime, timedelta
from decimal import Decimal
import math

from models.quotations import Quotation, QuotationStatus
from services.quotation_state import TERMINAL_STATUSES
from exceptions import ValidationError
from utils.time_utils import utc_now

ORDERABLE_FIELDS = {"created_at", "updated_at", "valid_until", "total_amount", "quotation_number"}
NON_TERMINAL_STATUSES = [s for s in QuotationStatus if s not in TERMINAL_STATUSES]


def format_quotation_number(sequence: int) -> str:
    return f"QT-{sequence:06d}"


def next_quotation_number(db: Session) -> str:
    last_id = db.query(func.max(Quotation.id)).scalar() or 0
    return format_quotation_number(last_id + 1)


def get_quotation(db: Session, quotation_id: int, lock: bool = False):
    query = db.query(Quotation).options(selectinload(Quotation.items)).filter(Quotation.id == quotation_id)
    if lock:
        query = query.with_for_update(of=Quotation)
    return query.first()


def get_quotation_by_number(db: Session, quotation_number: str):
    return db.query(Quotation).filter(Quotation.quotation_number == quotation_number).first()


def _status_filter(status: QuotationStatus, now: datetime):
    """Match the status readers see, with lazy expiry applied."""
    if status == QuotationStatus.EXPIRED:
        return or_(
            Quotation.status == QuotationStatus.EXPIRED,
            and_(Quotation.status.in_(NON_TERMINAL_STATUSES), Quotation.valid_until < now),
        )
    if status in TERMINAL_STATUSES:
        return Quotation.status == status
    return and_(Quotation.status == status, Quotation.valid_until >= now)


def get_quotations(
    db: Session,
    status: Optional[QuotationStatus] = None,
    company_id: Optional[int] = None,
    customer_email: Optional[str] = None,
    created_by: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    order_by: str = "created_at",
    order_direction: str = "desc",
    now: Optional[datetime] = None
) -> dict:
    """Filtered, paginated quotation list. Returns items plus paging totals."""
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive", field="page" if page < 1 else "limit")
    if order_by not in ORDERABLE_FIELDS:
        raise ValidationError(f"Cannot order quotations by '{order_by}'", field="order_by")
    now = now or utc_now()

    query = db.query(Quotation)
    if status is not None:
        query = query.filter(_status_filter(status, now))
    if company_id is not None:
        query = query.filter(Quotation.company_id == company_id)
    if customer_email:
        query = query.filter(func.lower(Quotation.customer_email) == customer_email.lower())
    if created_by:
        query = query.filter(Quotation.created_by == created_by)
    if date_from:
        query = query.filter(Quotation.created_at >= date_from)
    if date_to:
        query = query.filter(Quotation.created_at <= date_to)
    if min_amount is not None:
        query = query.filter(Quotation.total_amount >= min_amount)
    if max_amount is not None:
        query = query.filter(Quotation.total_amount <= max_amount)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Quotation.quotation_number.ilike(pattern),
            Quotation.customer_name.ilike(pattern),
            Quotation.customer_email.ilike(pattern),
        ))

    total = query.count()
    column = getattr(Quotation, order_by)
    items = query.options(selectinload(Quotation.items)).order_by(
        column.desc() if order_direction == "desc" else column.asc(),
        Quotation.id.desc() if order_direction == "desc" else Quotation.id.asc()
    ).offset((page - 1) * limit).limit(limit).all()

    return {
        "items": items,
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": math.ceil(total / limit) if total else 0,
    }


def get_statistics(db: Session):
    """Count and summed total per stored status."""
    rows = db.query(
        Quotation.status,
        func.count(Quotation.id),
        func.coalesce(func.sum(Quotation.total_amount), 0)
    ).group_by(Quotation.status).all()
    counts = {s: (0, Decimal("0")) for s in QuotationStatus}
    for status, count, total in rows:
        counts[status] = (count, Decimal(str(total)))
    return [
        {"status": s, "count": count, "total_amount": total}
        for s, (count, total) in counts.items()
    ]


def get_expiring_soon(db: Session, days: int = 7, now: Optional[datetime] = None):
    """Pending and confirmed quotations whose validity ends within `days`."""
    now = now or utc_now()
    return db.query(Quotation).filter(
        Quotation.status.in_([QuotationStatus.PENDING, QuotationStatus.CONFIRMED]),
        Quotation.valid_until >= now,
        Quotation.valid_until <= now + timedelta(days=days)
    ).order_by(Quotation.valid_until.asc(), Quotation.id.asc()).all()


def get_stale_quotation_ids(db: Session, now: Optional[datetime] = None):
    """Ids of non-terminal quotations already past valid_until."""
    now = now or utc_now()
    rows = db.query(Quotation.id).filter(
        Quotation.status.in_(NON_TERMINAL_STATUSES),
        Quotation.valid_until < now
    ).order_by(Quotation.id).all()
    return [row[0] for row in rows]
