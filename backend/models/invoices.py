from sqlalchemy import Column, Integer, String, Text, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from database import Base
from models.audit_mixin import TimestampMixin

class Invoice(Base, TimestampMixin):
    """Snapshot of a confirmed quotation. Never recomputed from the quotation after creation."""
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    invoice_number = Column(String(100), nullable=False, unique=True, index=True)
    quotation_id = Column(Integer, ForeignKey("quotations.id"), nullable=False, unique=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True)
    subtotal = Column(Numeric(15, 2), nullable=False)
    tax_amount = Column(Numeric(15, 2), default=0, nullable=False)
    discount_amount = Column(Numeric(15, 2), default=0, nullable=False)
    shipping_amount = Column(Numeric(15, 2), default=0, nullable=False)
    total_amount = Column(Numeric(15, 2), nullable=False)
    paid_amount = Column(Numeric(15, 2), default=0, nullable=False)
    balance_amount = Column(Numeric(15, 2), nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=True)
    payment_status = Column(String(50), default="pending", nullable=False) # pending, partial, paid, overdue
    notes = Column(Text, nullable=True)

    # Relationships
    quotation = relationship("Quotation", back_populates="invoices")
    company = relationship("Company", back_populates="invoices")
    items = relationship("InvoiceItem", back_populates="invoice", cascade="all, delete-orphan", order_by="InvoiceItem.id")
