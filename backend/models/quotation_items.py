from sqlalchemy import Column, Integer, Numeric, ForeignKey, Text, CheckConstraint
from sqlalchemy.orm import relationship
from database import Base
from models.audit_mixin import TimestampMixin

class QuotationItem(Base, TimestampMixin):
    __tablename__ = "quotation_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_quotation_items_quantity_positive"),
        CheckConstraint("discount >= 0 AND discount <= 50", name="ck_quotation_items_discount_range"),
    )

    id = Column(Integer, primary_key=True, index=True)
    quotation_id = Column(Integer, ForeignKey("quotations.id"), nullable=False, index=True)
    part_id = Column(Integer, ForeignKey("parts.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False) # Catalog price snapshot, never re-read
    list_price = Column(Numeric(15, 2), nullable=True)
    discount = Column(Numeric(5, 2), default=0, nullable=False) # Line discount percent
    total_price = Column(Numeric(15, 2), nullable=False)
    backordered_quantity = Column(Integer, default=0, nullable=False)
    notes = Column(Text, nullable=True)

    # Relationships
    quotation = relationship("Quotation", back_populates="items")
    part = relationship("Part")
