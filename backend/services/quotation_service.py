"""
Quotation aggregate service.

Owns the quotation lifecycle end to end: line items and catalog price
snapshots, totals, status transitions, inventory reservation and the
invoice snapshot. Every public operation takes an explicit Actor and runs as
one unit of work: it commits when the operation succeeds and rolls back
everything (status, totals, reservations, stock transactions, audit rows and
queued events) when any step fails.

Row lock contention during reservation is retried a bounded number of times
with exponential backoff; every other error surfaces immediately.
"""
import hashlib
import hmac
import logging
import secrets
import time
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from config import QuotationSettings
from crud import quotations as crud_quotations
from crud import invoices as crud_invoices
from crud.app_config import get_quotation_settings
from database import set_lock_timeout
from crud.audit_log import create_audit_log, get_audit_logs
from exceptions import NotFound, PermissionDenied, ReservationContention, StateConflict, ValidationError
from models.companies import Company
from models.invoice_items import InvoiceItem
from models.invoices import Invoice
from models.parts import Part
from models.quotation_items import QuotationItem
from models.quotations import Quotation, QuotationStatus
from schemas.audit_log import AuditLogCreate
from schemas.quotation_items import QuotationItemCreateRequest, QuotationItemUpdate
from schemas.quotations import PricePreviewRequest, QuotationCreate, QuotationUpdate
from services import events
from services import reservation_ledger as ledger
from services.pricing import (
    PricingAdjustments, QuoteLine, ZERO, calculate_pricing,
    validate_discount_percent, validate_line,
)
from services.quotation_state import (
    EDITABLE_STATUSES, Actor, Role, TransitionContext, check_transition, effective_status,
    is_past_validity, is_terminal, submission_target,
)
from utils import sqlalchemy_to_dict
from utils.time_utils import ensure_aware, utc_now

logger = logging.getLogger("quotations")


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------

def _atomic(db: Session, operation: str, work: Callable):
    try:
        result = work()
        db.commit()
        return result
    except Exception:
        db.rollback()
        logger.info(f"Rolled back {operation}")
        raise


def _atomic_with_retry(db: Session, operation: str, work: Callable, settings: QuotationSettings):
    """Run work atomically, retrying when reservation row locks are contended."""
    attempt = 0
    while True:
        try:
            return _atomic(db, operation, work)
        except ReservationContention as e:
            if attempt >= settings.max_reservation_retries:
                logger.error(f"Giving up on {operation} after {attempt + 1} attempt(s): {e.message}")
                raise
            delay = settings.retry_backoff_seconds * (2 ** attempt)
            attempt += 1
            logger.warning(f"{operation} hit lock contention ({e.message}); retry {attempt} in {delay:.2f}s")
            time.sleep(delay)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _load(db: Session, quotation_id: int, lock: bool = False) -> Quotation:
    quotation = crud_quotations.get_quotation(db, quotation_id, lock=lock)
    if quotation is None:
        raise NotFound("Quotation", quotation_id)
    return quotation


def _load_for_update(db: Session, quotation_id: int, settings: QuotationSettings) -> Quotation:
    """Lock the quotation row for this unit of work, waiting at most lock_timeout_ms for any lock it takes."""
    set_lock_timeout(db, settings.lock_timeout_ms)
    return ledger.run_locked(lambda: _load(db, quotation_id, lock=True), target=f"quotation {quotation_id}")


def hash_access_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _is_owner(quotation: Quotation, actor: Actor) -> bool:
    if actor.role == Role.ANONYMOUS:
        if quotation.created_by is not None or not quotation.access_token_hash or not actor.access_token:
            return False
        return hmac.compare_digest(hash_access_token(actor.access_token), quotation.access_token_hash)
    return actor.user_id is not None and quotation.created_by == actor.user_id


def _ensure_access(quotation: Quotation, actor: Actor, action: str):
    """Sellers and the system see every quotation; everyone else only their own."""
    if actor.role in (Role.SELLER, Role.SYSTEM):
        return
    if not _is_owner(quotation, actor):
        raise PermissionDenied(f"{action} quotation {quotation.quotation_number}", actor.role.value)


def _ensure_editable(quotation: Quotation):
    if quotation.status not in EDITABLE_STATUSES:
        raise StateConflict(quotation.status, detail="line items and terms can only change while the quotation is draft or pending")


def _is_set(value) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return value != 0
    return True


def _check_seller_fields(actor: Actor, fields: Dict[str, object]):
    """Discounts, shipping, validity and internal notes are set by sellers only."""
    if actor.is_seller:
        return
    for name, value in fields.items():
        if _is_set(value):
            raise PermissionDenied(f"set {name}", actor.role.value)


def _has_contact(quotation: Quotation) -> bool:
    if quotation.company_id is not None:
        return True
    return bool(quotation.customer_name) and bool(quotation.customer_email)


def _context(quotation: Quotation, actor: Actor, now: datetime) -> TransitionContext:
    return TransitionContext(
        now=now,
        valid_until=quotation.valid_until,
        item_count=len(quotation.items),
        has_contact=_has_contact(quotation),
        is_owner=_is_owner(quotation, actor),
    )


def _resolve_tax_rate(db: Session, company_id: Optional[int], settings: QuotationSettings) -> Decimal:
    if company_id is None:
        return settings.tax_rate
    company = db.query(Company).filter(Company.id == company_id).first()
    if company is None:
        raise NotFound("Company", company_id)
    if company.tax_rate is not None:
        return Decimal(company.tax_rate)
    return settings.tax_rate


def _catalog_part(db: Session, part_id: int) -> Part:
    part = db.query(Part).filter(Part.id == part_id).first()
    if part is None:
        raise NotFound("Part", part_id)
    return part


def _catalog_line(db: Session, part_id: int, quantity: int, discount=None) -> QuoteLine:
    part = _catalog_part(db, part_id)
    if discount is None:
        discount = part.discount
    return QuoteLine(
        part_id=part_id,
        quantity=quantity,
        unit_price=Decimal(part.price),
        list_price=Decimal(part.list_price) if part.list_price is not None else None,
        line_discount_percent=Decimal(discount or 0),
    )


def _snapshot_item(db: Session, part_id: int, quantity: int, discount, notes: Optional[str],
                   line_index: Optional[int] = None) -> QuotationItem:
    """
    Build a line priced from the catalog as it is right now.

    Without an explicit discount the line takes the part's catalog discount.
    """
    line = _catalog_line(db, part_id, quantity, discount)
    validate_line(line, line_index)
    return QuotationItem(
        part_id=part_id,
        quantity=quantity,
        unit_price=line.unit_price,
        list_price=line.list_price,
        discount=line.line_discount_percent,
        total_price=ZERO,
        backordered_quantity=0,
        notes=notes,
    )


def recompute_totals(quotation: Quotation):
    """Re-derive line totals and the quotation totals from the persisted snapshots."""
    lines = [QuoteLine.from_item(item) for item in quotation.items]
    adjustments = PricingAdjustments(
        quote_discount_percent=Decimal(quotation.discount_percent or 0),
        shipping_amount=Decimal(quotation.shipping_amount or 0),
        tax_rate=Decimal(quotation.tax_rate or 0),
    )
    summary = calculate_pricing(lines, adjustments).rounded()
    for item, total in zip(quotation.items, summary.line_totals):
        item.total_price = total
    quotation.subtotal = summary.subtotal
    quotation.discount_amount = summary.discount_amount
    quotation.shipping_amount = summary.shipping_amount
    quotation.tax_amount = summary.tax_amount
    quotation.total_amount = summary.total_amount
    return summary


def _audit(db: Session, quotation: Quotation, actor: Actor, action: str, old_values: Optional[dict]):
    new_values = sqlalchemy_to_dict(quotation)
    for values in (old_values, new_values):
        if values:
            values.pop("access_token_hash", None)
    create_audit_log(db, AuditLogCreate(
        table_name="quotations",
        record_id=quotation.id,
        changed_by=actor.identifier or actor.role.value,
        action=action,
        old_values=old_values or {},
        new_values=new_values,
    ))


def _event_payload(quotation: Quotation, actor: Actor, **extra) -> dict:
    payload = {
        "quotation_id": quotation.id,
        "quotation_number": quotation.quotation_number,
        "status": quotation.status.value,
        "total_amount": str(quotation.total_amount),
        "actor": actor.identifier or actor.role.value,
    }
    payload.update(extra)
    return payload


def _settle_expiry(db: Session, quotation_id: int, now: datetime, actor: Actor, action: str):
    """Persist the expiry of a quotation that is past valid_until but not yet marked."""
    quotation = _load(db, quotation_id)
    _ensure_access(quotation, actor, action)
    if not is_terminal(quotation.status) and is_past_validity(quotation.valid_until, now):
        expire_quotation(db, quotation_id, now=now)


def current_status(quotation: Quotation, now: Optional[datetime] = None) -> QuotationStatus:
    return effective_status(quotation.status, quotation.valid_until, now or utc_now())


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_quotation(db: Session, quotation_id: int, actor: Actor) -> Quotation:
    """
    Read a quotation.

    The stored row is returned unchanged; use current_status for the status
    with lazy expiry applied.
    """
    quotation = _load(db, quotation_id)
    _ensure_access(quotation, actor, "view")
    return quotation


def get_history(db: Session, quotation_id: int, actor: Actor):
    """Audit rows for a quotation, oldest first."""
    quotation = _load(db, quotation_id)
    _ensure_access(quotation, actor, "view")
    return get_audit_logs(db, "quotations", quotation.id)


def price_preview(db: Session, request: PricePreviewRequest, actor: Actor,
                  settings: QuotationSettings = None) -> dict:
    """Price unsaved lines with the same calculator that prices stored quotations."""
    settings = settings or get_quotation_settings(db)
    _check_seller_fields(actor, {
        "discount_percent": request.discount_percent,
        "shipping_amount": request.shipping_amount,
        "line discounts": [line.discount for line in request.lines if _is_set(line.discount)] or None,
    })
    tax_rate = _resolve_tax_rate(db, request.company_id, settings)

    lines = [_catalog_line(db, requested.part_id, requested.quantity, requested.discount) for requested in request.lines]
    summary = calculate_pricing(lines, PricingAdjustments(
        quote_discount_percent=Decimal(request.discount_percent or 0),
        shipping_amount=Decimal(request.shipping_amount or 0),
        tax_rate=tax_rate,
    )).rounded()

    return {
        "lines": [
            {
                "part_id": line.part_id,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
                "list_price": line.list_price,
                "discount": line.line_discount_percent,
                "total_price": total,
            }
            for line, total in zip(lines, summary.line_totals)
        ],
        "subtotal": summary.subtotal,
        "discount_amount": summary.discount_amount,
        "shipping_amount": summary.shipping_amount,
        "tax_rate": tax_rate,
        "tax_amount": summary.tax_amount,
        "total_amount": summary.total_amount,
        "total_savings": summary.total_savings,
    }


# ---------------------------------------------------------------------------
# Drafting
# ---------------------------------------------------------------------------

def create_quotation(db: Session, data: QuotationCreate, actor: Actor,
                     settings: QuotationSettings = None, now: datetime = None) -> Quotation:
    """Create a draft, snapshotting catalog prices for any initial items."""
    settings = settings or get_quotation_settings(db)
    now = now or utc_now()

    def work():
        if actor.role == Role.SYSTEM:
            raise PermissionDenied("create a quotation", actor.role.value)
        _check_seller_fields(actor, {
            "internal_notes": data.internal_notes,
            "discount_percent": data.discount_percent,
            "shipping_amount": data.shipping_amount,
            "valid_until": data.valid_until,
            "line discounts": [item.discount for item in data.items if _is_set(item.discount)] or None,
        })
        valid_until = data.valid_until or now + timedelta(days=settings.validity_days)
        if ensure_aware(valid_until) <= now:
            raise ValidationError("valid_until must be in the future", field="valid_until")
        access_token = secrets.token_urlsafe(32) if actor.role == Role.ANONYMOUS else None

        quotation = Quotation(
            quotation_number=crud_quotations.next_quotation_number(db),
            company_id=data.company_id,
            customer_name=data.customer_name,
            customer_email=data.customer_email,
            customer_phone=data.customer_phone,
            customer_address=data.customer_address,
            payment_terms=data.payment_terms,
            notes=data.notes,
            internal_notes=data.internal_notes,
            discount_percent=data.discount_percent or ZERO,
            shipping_amount=data.shipping_amount or ZERO,
            tax_rate=_resolve_tax_rate(db, data.company_id, settings),
            status=QuotationStatus.DRAFT,
            valid_until=valid_until,
            created_by=actor.user_id,
            updated_by=actor.user_id,
            access_token_hash=hash_access_token(access_token) if access_token else None,
        )
        for index, item in enumerate(data.items):
            quotation.items.append(_snapshot_item(db, item.part_id, item.quantity, item.discount, item.notes, index))
        recompute_totals(quotation)
        db.add(quotation)
        db.flush()

        _audit(db, quotation, actor, "CREATE", None)
        logger.info(
            f"Quotation {quotation.quotation_number} created by {actor.identifier or actor.role.value} "
            f"with {len(quotation.items)} item(s), total {quotation.total_amount}"
        )
        return quotation, access_token

    quotation, access_token = _atomic(db, "create quotation", work)
    db.refresh(quotation)
    # Not stored; the anonymous creator must keep it to reach the quotation again
    quotation.access_token = access_token
    return quotation


def add_item(db: Session, quotation_id: int, item: QuotationItemCreateRequest, actor: Actor,
             settings: QuotationSettings = None, now: datetime = None) -> Quotation:
    settings = settings or get_quotation_settings(db)
    now = now or utc_now()
    _settle_expiry(db, quotation_id, now, actor, "edit")

    def work():
        quotation = _load_for_update(db, quotation_id, settings)
        _ensure_access(quotation, actor, "edit")
        _ensure_editable(quotation)
        _check_seller_fields(actor, {"line discount": item.discount})

        old_values = sqlalchemy_to_dict(quotation)
        quotation.items.append(_snapshot_item(db, item.part_id, item.quantity, item.discount, item.notes))
        recompute_totals(quotation)
        quotation.updated_by = actor.user_id
        db.flush()
        _audit(db, quotation, actor, "UPDATE", old_values)
        logger.info(f"Added part {item.part_id} x{item.quantity} to quotation {quotation.quotation_number}")
        return quotation

    quotation = _atomic_with_retry(db, "add quotation item", work, settings)
    db.refresh(quotation)
    return quotation


def _find_item(quotation: Quotation, item_id: int) -> QuotationItem:
    for item in quotation.items:
        if item.id == item_id:
            return item
    raise NotFound("Quotation item", item_id)


def update_item(db: Session, quotation_id: int, item_id: int, changes: QuotationItemUpdate, actor: Actor,
                settings: QuotationSettings = None, now: datetime = None) -> Quotation:
    settings = settings or get_quotation_settings(db)
    now = now or utc_now()
    _settle_expiry(db, quotation_id, now, actor, "edit")

    def work():
        quotation = _load_for_update(db, quotation_id, settings)
        _ensure_access(quotation, actor, "edit")
        _ensure_editable(quotation)
        item = _find_item(quotation, item_id)
        update_data = changes.model_dump(exclude_unset=True)
        _check_seller_fields(actor, {"line discount": update_data.get("discount")})

        old_values = sqlalchemy_to_dict(quotation)
        if update_data.get("quantity") is not None:
            item.quantity = update_data["quantity"]
        if update_data.get("discount") is not None:
            item.discount = validate_discount_percent(update_data["discount"], "line discount")
        if "notes" in update_data:
            item.notes = update_data["notes"]
        validate_line(QuoteLine.from_item(item))

        recompute_totals(quotation)
        quotation.updated_by = actor.user_id
        db.flush()
        _audit(db, quotation, actor, "UPDATE", old_values)
        logger.info(f"Updated item {item_id} on quotation {quotation.quotation_number}: {update_data}")
        return quotation

    quotation = _atomic_with_retry(db, "update quotation item", work, settings)
    db.refresh(quotation)
    return quotation


def remove_item(db: Session, quotation_id: int, item_id: int, actor: Actor,
                settings: QuotationSettings = None, now: datetime = None) -> Quotation:
    settings = settings or get_quotation_settings(db)
    now = now or utc_now()
    _settle_expiry(db, quotation_id, now, actor, "edit")

    def work():
        quotation = _load_for_update(db, quotation_id, settings)
        _ensure_access(quotation, actor, "edit")
        _ensure_editable(quotation)
        item = _find_item(quotation, item_id)

        old_values = sqlalchemy_to_dict(quotation)
        quotation.items.remove(item)
        recompute_totals(quotation)
        quotation.updated_by = actor.user_id
        db.flush()
        _audit(db, quotation, actor, "UPDATE", old_values)
        logger.info(f"Removed item {item_id} from quotation {quotation.quotation_number}")
        return quotation

    quotation = _atomic_with_retry(db, "remove quotation item", work, settings)
    db.refresh(quotation)
    return quotation


def update_quotation(db: Session, quotation_id: int, changes: QuotationUpdate, actor: Actor,
                     settings: QuotationSettings = None, now: datetime = None) -> Quotation:
    """Change contact details, notes and (sellers only) the pricing adjustments."""
    settings = settings or get_quotation_settings(db)
    now = now or utc_now()
    _settle_expiry(db, quotation_id, now, actor, "edit")

    def work():
        quotation = _load_for_update(db, quotation_id, settings)
        _ensure_access(quotation, actor, "edit")
        _ensure_editable(quotation)
        update_data = changes.model_dump(exclude_unset=True)
        _check_seller_fields(actor, {
            name: update_data.get(name)
            for name in ("internal_notes", "discount_percent", "shipping_amount", "valid_until")
        })

        old_values = sqlalchemy_to_dict(quotation)
        if update_data.get("valid_until") is not None and ensure_aware(update_data["valid_until"]) <= now:
            raise ValidationError("valid_until must be in the future", field="valid_until")
        if update_data.get("discount_percent") is not None:
            update_data["discount_percent"] = validate_discount_percent(update_data["discount_percent"], "quote discount")
        if "company_id" in update_data and update_data["company_id"] != quotation.company_id:
            quotation.tax_rate = _resolve_tax_rate(db, update_data["company_id"], settings)

        for key, value in update_data.items():
            if key in ("discount_percent", "shipping_amount", "valid_until") and value is None:
                continue
            setattr(quotation, key, value)
        recompute_totals(quotation)
        quotation.updated_by = actor.user_id
        db.flush()
        _audit(db, quotation, actor, "UPDATE", old_values)
        logger.info(f"Updated quotation {quotation.quotation_number}: {sorted(update_data.keys())}")
        return quotation

    quotation = _atomic_with_retry(db, "update quotation", work, settings)
    db.refresh(quotation)
    return quotation


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def submit_quotation(db: Session, quotation_id: int, actor: Actor,
                     settings: QuotationSettings = None, now: datetime = None) -> Quotation:
    """
    Submit a draft.

    A seller's submission confirms the quotation (and reserves stock); a
    customer's or anonymous visitor's waits in pending for a seller.
    """
    target = submission_target(actor.role)
    if target == QuotationStatus.CONFIRMED:
        return confirm_quotation(db, quotation_id, actor, settings=settings, now=now)

    settings = settings or get_quotation_settings(db)
    now = now or utc_now()
    _settle_expiry(db, quotation_id, now, actor, "submit")

    def work():
        quotation = _load_for_update(db, quotation_id, settings)
        _ensure_access(quotation, actor, "submit")
        check_transition(quotation.status, target, actor, _context(quotation, actor, now))

        old_values = sqlalchemy_to_dict(quotation)
        recompute_totals(quotation)
        quotation.status = target
        quotation.submitted_at = now
        quotation.updated_by = actor.user_id
        db.flush()
        _audit(db, quotation, actor, "SUBMIT", old_values)
        events.queue_event(db, events.QUOTATION_SUBMITTED, _event_payload(quotation, actor))
        logger.info(f"Quotation {quotation.quotation_number} submitted by {actor.role.value}; now {target.value}")
        return quotation

    quotation = _atomic_with_retry(db, f"submit quotation {quotation_id}", work, settings)
    db.refresh(quotation)
    return quotation


def _reserve_demand(db: Session, quotation: Quotation, actor: Actor, settings: QuotationSettings):
    """Reserve stock for every line, one part at a time in ascending part id order."""
    demand = defaultdict(int)
    items_by_part = defaultdict(list)
    for item in quotation.items:
        demand[item.part_id] += item.quantity
        items_by_part[item.part_id].append(item)

    for part_id in sorted(demand):
        ledger.reserve(
            db, quotation.id, part_id, demand[part_id],
            actor_id=actor.identifier,
            allow_partial=settings.allow_backorder,
            lock_timeout_ms=settings.lock_timeout_ms,
        )
        covered = ledger.count_reserved(db, quotation.id, part_id)
        for item in sorted(items_by_part[part_id], key=lambda i: i.id or 0):
            filled = min(item.quantity, covered)
            item.backordered_quantity = item.quantity - filled
            covered -= filled
        shortfall = sum(item.backordered_quantity for item in items_by_part[part_id])
        if shortfall:
            logger.warning(f"Quotation {quotation.quotation_number}: {shortfall} unit(s) of part {part_id} backordered")


def confirm_quotation(db: Session, quotation_id: int, actor: Actor,
                      settings: QuotationSettings = None, now: datetime = None) -> Quotation:
    """
    Confirm a draft or pending quotation and reserve its stock.

    Totals are re-derived from the stored price snapshots first. Reservation
    is all-or-nothing: if any line cannot be covered the quotation keeps its
    previous status and no unit is claimed.
    """
    settings = settings or get_quotation_settings(db)
    now = now or utc_now()
    _settle_expiry(db, quotation_id, now, actor, "confirm")

    def work():
        quotation = _load_for_update(db, quotation_id, settings)
        _ensure_access(quotation, actor, "confirm")
        check_transition(quotation.status, QuotationStatus.CONFIRMED, actor, _context(quotation, actor, now))

        old_values = sqlalchemy_to_dict(quotation)
        recompute_totals(quotation)
        _reserve_demand(db, quotation, actor, settings)

        previous = quotation.status
        quotation.status = QuotationStatus.CONFIRMED
        quotation.confirmed_by = actor.identifier
        quotation.confirmed_at = now
        if quotation.submitted_at is None:
            quotation.submitted_at = now
        quotation.updated_by = actor.user_id
        db.flush()
        _audit(db, quotation, actor, "CONFIRM", old_values)
        events.queue_event(db, events.QUOTATION_CONFIRMED, _event_payload(quotation, actor))
        logger.info(
            f"Quotation {quotation.quotation_number} confirmed by {actor.identifier} "
            f"(was {previous.value}), total {quotation.total_amount}"
        )
        return quotation

    quotation = _atomic_with_retry(db, f"confirm quotation {quotation_id}", work, settings)
    db.refresh(quotation)
    return quotation


def cancel_quotation(db: Session, quotation_id: int, actor: Actor, reason: Optional[str] = None,
                     settings: QuotationSettings = None, now: datetime = None) -> Quotation:
    """Cancel a quotation and return any reserved units to stock."""
    settings = settings or get_quotation_settings(db)
    now = now or utc_now()
    _settle_expiry(db, quotation_id, now, actor, "cancel")

    def work():
        quotation = _load_for_update(db, quotation_id, settings)
        _ensure_access(quotation, actor, "cancel")
        check_transition(quotation.status, QuotationStatus.CANCELLED, actor, _context(quotation, actor, now))

        old_values = sqlalchemy_to_dict(quotation)
        released = ledger.release(db, quotation.id, actor_id=actor.identifier, note=reason or "quotation cancelled")
        quotation.status = QuotationStatus.CANCELLED
        quotation.cancellation_reason = reason
        quotation.cancelled_at = now
        quotation.updated_by = actor.user_id
        db.flush()
        _audit(db, quotation, actor, "CANCEL", old_values)
        events.queue_event(db, events.QUOTATION_CANCELLED, _event_payload(quotation, actor, reason=reason, released_units=released))
        logger.info(f"Quotation {quotation.quotation_number} cancelled by {actor.role.value}; released {released} unit(s)")
        return quotation

    quotation = _atomic_with_retry(db, f"cancel quotation {quotation_id}", work, settings)
    db.refresh(quotation)
    return quotation


def expire_quotation(db: Session, quotation_id: int, now: datetime = None,
                     settings: QuotationSettings = None) -> Quotation:
    """Mark a quotation past its validity as expired and release its reservations."""
    settings = settings or get_quotation_settings(db)
    now = now or utc_now()
    actor = Actor.system()

    def work():
        quotation = _load_for_update(db, quotation_id, settings)
        check_transition(quotation.status, QuotationStatus.EXPIRED, actor, _context(quotation, actor, now))

        old_values = sqlalchemy_to_dict(quotation)
        released = ledger.release(db, quotation.id, actor_id=actor.identifier, note="quotation expired")
        quotation.status = QuotationStatus.EXPIRED
        quotation.expired_at = now
        quotation.updated_by = actor.identifier
        db.flush()
        _audit(db, quotation, actor, "EXPIRE", old_values)
        events.queue_event(db, events.QUOTATION_EXPIRED, _event_payload(quotation, actor, released_units=released))
        logger.info(f"Quotation {quotation.quotation_number} expired; released {released} unit(s)")
        return quotation

    quotation = _atomic_with_retry(db, f"expire quotation {quotation_id}", work, settings)
    db.refresh(quotation)
    return quotation


def expire_stale_quotations(db: Session, now: datetime = None, settings: QuotationSettings = None) -> List[int]:
    """
    Expire every non-terminal quotation past valid_until.

    Each quotation is its own unit of work, so one failure does not hold back
    the rest. Returns the ids that were expired.
    """
    settings = settings or get_quotation_settings(db)
    now = now or utc_now()
    expired = []
    for quotation_id in crud_quotations.get_stale_quotation_ids(db, now):
        try:
            expire_quotation(db, quotation_id, now=now, settings=settings)
            expired.append(quotation_id)
        except StateConflict as e:
            # Moved on (confirmed, cancelled, extended) between the scan and the lock
            logger.info(f"Skipping expiry of quotation {quotation_id}: {e.message}")
        except ReservationContention as e:
            logger.warning(f"Could not expire quotation {quotation_id} this round: {e.message}")
    if expired:
        logger.info(f"Expired {len(expired)} stale quotation(s)")
    return expired


def convert_to_invoice(db: Session, quotation_id: int, actor: Actor,
                       settings: QuotationSettings = None, now: datetime = None) -> Invoice:
    """
    Invoice a confirmed quotation.

    Reserved units become sold, each quotation item is copied into an invoice
    item carrying the serial numbers of the units shipped, and the quotation
    is frozen as invoiced. The invoice keeps its own copy of every amount.
    """
    settings = settings or get_quotation_settings(db)
    now = now or utc_now()
    _settle_expiry(db, quotation_id, now, actor, "invoice")

    def work():
        quotation = _load_for_update(db, quotation_id, settings)
        _ensure_access(quotation, actor, "invoice")
        check_transition(quotation.status, QuotationStatus.INVOICED, actor, _context(quotation, actor, now))
        if crud_invoices.get_invoice_by_quotation(db, quotation.id) is not None:
            raise StateConflict(quotation.status, QuotationStatus.INVOICED, "an invoice already exists for this quotation")

        old_values = sqlalchemy_to_dict(quotation)
        sold = ledger.finalize(db, quotation.id, actor_id=actor.identifier)
        units_by_part = defaultdict(list)
        for unit in sold:
            units_by_part[unit.part_id].append(unit)

        invoice = Invoice(
            invoice_number=crud_invoices.next_invoice_number(db),
            quotation_id=quotation.id,
            company_id=quotation.company_id,
            subtotal=quotation.subtotal,
            tax_amount=quotation.tax_amount,
            discount_amount=quotation.discount_amount,
            shipping_amount=quotation.shipping_amount,
            total_amount=quotation.total_amount,
            paid_amount=ZERO,
            balance_amount=quotation.total_amount,
            due_date=now + timedelta(days=settings.invoice_due_days),
            payment_status="pending",
            notes=quotation.notes,
            created_by=actor.user_id,
            updated_by=actor.user_id,
        )
        for item in quotation.items:
            shipped_count = item.quantity - (item.backordered_quantity or 0)
            shipped = units_by_part[item.part_id][:shipped_count]
            units_by_part[item.part_id] = units_by_part[item.part_id][shipped_count:]
            invoice.items.append(InvoiceItem(
                quotation_item_id=item.id,
                part_id=item.part_id,
                quantity=item.quantity,
                unit_price=item.unit_price,
                discount=item.discount,
                total_price=item.total_price,
                serial_numbers=[unit.serial_number for unit in shipped if unit.serial_number],
                bar_codes=[unit.bar_code for unit in shipped],
                notes=item.notes,
            ))
        db.add(invoice)

        quotation.status = QuotationStatus.INVOICED
        quotation.invoiced_at = now
        quotation.updated_by = actor.user_id
        db.flush()
        _audit(db, quotation, actor, "INVOICE", old_values)
        events.queue_event(db, events.INVOICE_CREATED, _event_payload(
            quotation, actor, invoice_id=invoice.id, invoice_number=invoice.invoice_number
        ))
        logger.info(
            f"Quotation {quotation.quotation_number} converted to invoice {invoice.invoice_number}; "
            f"{len(sold)} unit(s) sold"
        )
        return invoice

    invoice = _atomic_with_retry(db, f"invoice quotation {quotation_id}", work, settings)
    db.refresh(invoice)
    return invoice
