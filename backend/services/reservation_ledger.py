"""
Inventory reservation ledger.

Binds concrete PartItem units to quotations:

    reserve   available -> reserved   (quotation_id set)
    release   reserved  -> available  (quotation_id cleared)
    finalize  reserved  -> sold       (permanent)

Reservations for a part serialize on the part's catalog row
(SELECT ... FOR UPDATE), so two confirmations can never pick the same unit.
Every status change is written to stock_transactions. The ledger only
flushes: the caller owns the transaction and decides commit or rollback.
"""
import logging
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from database import set_lock_timeout
from exceptions import InsufficientStock, NotFound, ReservationContention, ValidationError
from models.parts import Part
from models.part_items import PartItem, PartItemStatus
from models.stock_transactions import StockTransaction

logger = logging.getLogger("reservation_ledger")

# lock_not_available and deadlock_detected
LOCK_FAILURE_PGCODES = ("55P03", "40P01")


def _is_lock_failure(exc: OperationalError) -> bool:
    pgcode = getattr(exc.orig, "pgcode", None)
    if pgcode in LOCK_FAILURE_PGCODES:
        return True
    # SQLite reports contention as "database is locked"
    return "locked" in str(exc.orig).lower()


def run_locked(query_fn, part_id: Optional[int] = None, target: Optional[str] = None):
    """Run a locking query; lock timeouts and deadlocks become ReservationContention."""
    try:
        return query_fn()
    except OperationalError as e:
        if _is_lock_failure(e):
            what = target or f"part {part_id}"
            logger.warning(f"Lock not acquired for {what}: {e.orig}")
            detail = str(e.orig).strip()
            raise ReservationContention(part_id, detail=f"{target}: {detail}" if target else detail) from e
        raise


def _lock_part(db: Session, part_id: int) -> Part:
    part = run_locked(
        lambda: db.query(Part).filter(Part.id == part_id).with_for_update().first(),
        part_id,
    )
    if part is None:
        raise NotFound("Part", part_id)
    return part


def _record(db: Session, unit: PartItem, transaction_type: str, old_status: PartItemStatus,
            quotation_id: int, actor_id: Optional[str], note: Optional[str] = None):
    db.add(StockTransaction(
        part_id=unit.part_id,
        part_item_id=unit.id,
        transaction_type=transaction_type,
        quantity=1,
        old_status=old_status.value,
        new_status=unit.status.value,
        reference_type="quotation",
        reference_id=quotation_id,
        notes=note,
        created_by=actor_id,
    ))


def count_reserved(db: Session, quotation_id: int, part_id: int) -> int:
    return db.query(func.count(PartItem.id)).filter(
        PartItem.quotation_id == quotation_id,
        PartItem.part_id == part_id,
        PartItem.status == PartItemStatus.RESERVED,
    ).scalar() or 0


def reserve(db: Session, quotation_id: int, part_id: int, quantity: int,
            actor_id: Optional[str] = None, allow_partial: bool = False,
            lock_timeout_ms: Optional[int] = None) -> List[PartItem]:
    """
    Claim `quantity` available units of a part for a quotation, oldest first.

    `quantity` is the quotation's total demand for the part: units it already
    holds count toward it, so calling twice never over-reserves. Raises
    InsufficientStock when fewer units are available, unless allow_partial is
    set, in which case whatever is available is claimed. Returns the units
    claimed by this call.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError(f"Reservation quantity for part {part_id} must be a positive whole number, got {quantity!r}", field="quantity")

    if lock_timeout_ms:
        set_lock_timeout(db, lock_timeout_ms)
    _lock_part(db, part_id)

    already_reserved = count_reserved(db, quotation_id, part_id)
    needed = quantity - already_reserved
    if needed <= 0:
        logger.info(f"Quotation {quotation_id} already holds {already_reserved} unit(s) of part {part_id}; nothing to reserve")
        return []

    candidates = run_locked(
        lambda: db.query(PartItem).filter(
            PartItem.part_id == part_id,
            PartItem.status == PartItemStatus.AVAILABLE,
            PartItem.quotation_id.is_(None),
        ).order_by(PartItem.added_on.asc(), PartItem.id.asc()).limit(needed).with_for_update().all(),
        part_id,
    )

    if len(candidates) < needed and not allow_partial:
        raise InsufficientStock(part_id, requested=needed, available=len(candidates))

    for unit in candidates:
        old_status = unit.status
        unit.status = PartItemStatus.RESERVED
        unit.quotation_id = quotation_id
        unit.updated_by = actor_id
        _record(db, unit, "reserve", old_status, quotation_id, actor_id)
    db.flush()

    logger.info(f"Reserved {len(candidates)}/{needed} unit(s) of part {part_id} for quotation {quotation_id}")
    return candidates


def release(db: Session, quotation_id: int, actor_id: Optional[str] = None, note: Optional[str] = None) -> int:
    """Return every unit reserved by the quotation to available. Returns the number released."""
    units = run_locked(
        lambda: db.query(PartItem).filter(
            PartItem.quotation_id == quotation_id,
            PartItem.status == PartItemStatus.RESERVED,
        ).order_by(PartItem.id).with_for_update().all()
    )
    for unit in units:
        old_status = unit.status
        unit.status = PartItemStatus.AVAILABLE
        unit.quotation_id = None
        unit.updated_by = actor_id
        _record(db, unit, "release", old_status, quotation_id, actor_id, note)
    db.flush()

    if units:
        logger.info(f"Released {len(units)} unit(s) held by quotation {quotation_id}")
    return len(units)


def finalize(db: Session, quotation_id: int, actor_id: Optional[str] = None) -> List[PartItem]:
    """Mark every unit reserved by the quotation as sold. Irreversible here."""
    units = run_locked(
        lambda: db.query(PartItem).filter(
            PartItem.quotation_id == quotation_id,
            PartItem.status == PartItemStatus.RESERVED,
        ).order_by(PartItem.part_id, PartItem.added_on, PartItem.id).with_for_update().all()
    )
    for unit in units:
        old_status = unit.status
        unit.status = PartItemStatus.SOLD
        unit.updated_by = actor_id
        _record(db, unit, "sell", old_status, quotation_id, actor_id)
    db.flush()

    logger.info(f"Finalized {len(units)} unit(s) as sold for quotation {quotation_id}")
    return units


def reserved_units(db: Session, quotation_id: int) -> List[PartItem]:
    return db.query(PartItem).filter(
        PartItem.quotation_id == quotation_id,
        PartItem.status == PartItemStatus.RESERVED,
    ).order_by(PartItem.part_id, PartItem.id).all()


def stock_summary(db: Session, part_id: int) -> Dict[str, int]:
    """Unit count per status for a part, plus the total."""
    rows = db.query(PartItem.status, func.count(PartItem.id)).filter(
        PartItem.part_id == part_id
    ).group_by(PartItem.status).all()
    summary = {status.value: 0 for status in PartItemStatus}
    for status, count in rows:
        summary[status.value] = count
    summary["total"] = sum(summary[status.value] for status in PartItemStatus)
    return summary
