from sqlalchemy import Column, Integer, String, Text, Numeric, DateTime, ForeignKey, Enum, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from database import Base
import enum
import pytz

class PartItemCondition(enum.Enum):
    NEW = "new"
    REFURBISHED = "refurbished"
    USED = "used"
    DAMAGED = "damaged"

class PartItemStatus(enum.Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    SOLD = "sold"
    DAMAGED = "damaged"
    MAINTENANCE = "maintenance"

# Statuses that require quotation_id to be set
CLAIMED_STATUSES = (PartItemStatus.RESERVED, PartItemStatus.SOLD)

class PartItem(Base):
    """One physically trackable unit of a catalog part."""
    __tablename__ = "part_items"
    __table_args__ = (
        Index("ix_part_items_part_status_added", "part_id", "status", "added_on"),
    )

    id = Column(Integer, primary_key=True, index=True)
    part_id = Column(Integer, ForeignKey("parts.id"), nullable=False, index=True)
    bar_code = Column(String(100), nullable=False, unique=True)
    serial_number = Column(String(100), nullable=True)
    location = Column(String(100), nullable=True)
    shelve_location = Column(String(100), nullable=True)
    supplier_id = Column(Integer, ForeignKey("companies.id"), nullable=True)
    purchase_price = Column(Numeric(15, 2), nullable=True)
    purchase_date = Column(DateTime(timezone=True), nullable=True)
    warranty_period = Column(Integer, nullable=True) # in months
    condition = Column(
        Enum(PartItemCondition, name="part_item_condition", values_callable=lambda e: [m.value for m in e]),
        default=PartItemCondition.NEW, nullable=False
    )
    status = Column(
        Enum(PartItemStatus, name="part_item_status", values_callable=lambda e: [m.value for m in e]),
        default=PartItemStatus.AVAILABLE, nullable=False
    )
    quotation_id = Column(Integer, ForeignKey("quotations.id"), nullable=True, index=True)
    notes = Column(Text, nullable=True)
    added_by = Column(String, nullable=True)
    updated_by = Column(String, nullable=True)
    added_on = Column(DateTime(timezone=True), default=lambda: datetime.now(pytz.utc), nullable=False)
    updated_on = Column(DateTime(timezone=True), default=lambda: datetime.now(pytz.utc), onupdate=lambda: datetime.now(pytz.utc))

    # Relationships
    part = relationship("Part", back_populates="part_items")
    supplier = relationship("Company", foreign_keys=[supplier_id])
    quotation = relationship("Quotation", back_populates="part_items")
