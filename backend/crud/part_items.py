from typing import List, Optional
from sqlalchemy.orm import Session
from models.part_items import PartItem, PartItemStatus, CLAIMED_STATUSES
from models.parts import Part
from schemas.part_items import PartItemCreate, PartItemUpdate
from exceptions import NotFound, ValidationError
from crud.audit_log import create_audit_log
from schemas.audit_log import AuditLogCreate
from utils import sqlalchemy_to_dict

ORDERABLE_FIELDS = {"added_on", "updated_on", "purchase_date", "bar_code"}
# NOT NULL columns a PATCH may change but never clear
REQUIRED_FIELDS = ("status", "condition")


def _check_unclaimed_status(status: PartItemStatus, bar_code: str):
    if status in CLAIMED_STATUSES:
        raise ValidationError(
            f"Unit {bar_code}: status '{status.value}' can only be set by a quotation reservation",
            field="status"
        )


def get_part_item(db: Session, item_id: int):
    return db.query(PartItem).filter(PartItem.id == item_id).first()


def get_part_item_by_barcode(db: Session, bar_code: str):
    return db.query(PartItem).filter(PartItem.bar_code == bar_code).first()


def get_part_items(
    db: Session,
    part_id: Optional[int] = None,
    status: Optional[PartItemStatus] = None,
    supplier_id: Optional[int] = None,
    quotation_id: Optional[int] = None,
    location: Optional[str] = None,
    order_by: str = "added_on",
    order_direction: str = "asc",
    skip: int = 0,
    limit: int = 100
):
    query = db.query(PartItem)
    if part_id is not None:
        query = query.filter(PartItem.part_id == part_id)
    if status is not None:
        query = query.filter(PartItem.status == status)
    if supplier_id is not None:
        query = query.filter(PartItem.supplier_id == supplier_id)
    if quotation_id is not None:
        query = query.filter(PartItem.quotation_id == quotation_id)
    if location:
        query = query.filter(PartItem.location == location)

    if order_by not in ORDERABLE_FIELDS:
        raise ValidationError(f"Cannot order part items by '{order_by}'", field="order_by")
    column = getattr(PartItem, order_by)
    query = query.order_by(column.desc() if order_direction == "desc" else column.asc(), PartItem.id.asc())
    return query.offset(skip).limit(limit).all()


def create_part_items(db: Session, items: List[PartItemCreate], user_id: Optional[str]) -> List[PartItem]:
    """Register one or more units in a single transaction."""
    seen = set()
    for item in items:
        _check_unclaimed_status(item.status, item.bar_code)
        if item.bar_code in seen or get_part_item_by_barcode(db, item.bar_code):
            raise ValidationError(f"Unit with barcode {item.bar_code} already exists", field="bar_code")
        seen.add(item.bar_code)
        if db.query(Part.id).filter(Part.id == item.part_id).first() is None:
            raise NotFound("Part", item.part_id)

    db_items = [PartItem(**item.model_dump(), added_by=user_id, updated_by=user_id) for item in items]
    db.add_all(db_items)
    db.commit()
    for db_item in db_items:
        db.refresh(db_item)
    return db_items


def update_part_item(db: Session, item_id: int, item: PartItemUpdate, user_id: Optional[str]):
    db_item = get_part_item(db, item_id)
    if db_item is None:
        raise NotFound("Part item", item_id)

    update_data = item.model_dump(exclude_unset=True)
    for field in REQUIRED_FIELDS:
        if field in update_data and update_data[field] is None:
            raise ValidationError(f"{field} cannot be cleared", field=field)
    new_status = update_data.get("status")
    if new_status is not None and new_status != db_item.status:
        _check_unclaimed_status(new_status, db_item.bar_code)
        if db_item.status in CLAIMED_STATUSES:
            raise ValidationError(
                f"Unit {db_item.bar_code} is {db_item.status.value} by quotation {db_item.quotation_id}; release it through the quotation",
                field="status"
            )

    old_values = sqlalchemy_to_dict(db_item)
    for key, value in update_data.items():
        setattr(db_item, key, value)
    db_item.updated_by = user_id
    db.flush()

    create_audit_log(db=db, log_entry=AuditLogCreate(
        table_name='part_items',
        record_id=item_id,
        changed_by=user_id or "system",
        action='UPDATE',
        old_values=old_values,
        new_values=sqlalchemy_to_dict(db_item)
    ))
    db.commit()
    db.refresh(db_item)
    return db_item
