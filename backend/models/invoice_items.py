from sqlalchemy import Column, Integer, Numeric, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship
from database import Base

class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False, index=True)
    quotation_item_id = Column(Integer, ForeignKey("quotation_items.id"), nullable=True)
    part_id = Column(Integer, ForeignKey("parts.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False)
    discount = Column(Numeric(5, 2), default=0, nullable=False)
    total_price = Column(Numeric(15, 2), nullable=False)
    serial_numbers = Column(JSON, nullable=True) # Serial numbers of the units shipped
    bar_codes = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)

    # Relationships
    invoice = relationship("Invoice", back_populates="items")
    quotation_item = relationship("QuotationItem")
