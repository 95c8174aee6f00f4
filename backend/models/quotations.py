from sqlalchemy import Column, Integer, String, Text, Numeric, DateTime, ForeignKey, Enum
from sqlalchemy.orm import relationship
from database import Base
import enum
from models.audit_mixin import TimestampMixin

class QuotationStatus(enum.Enum):
    DRAFT = "draft"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    INVOICED = "invoiced"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

class Quotation(Base, TimestampMixin):
    __tablename__ = "quotations"

    id = Column(Integer, primary_key=True, index=True)
    quotation_number = Column(String(100), nullable=False, unique=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True)
    customer_name = Column(String(255), nullable=True)
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(20), nullable=True)
    customer_address = Column(Text, nullable=True)

    # Derived totals, recomputed from items inside every mutating transaction
    subtotal = Column(Numeric(15, 2), default=0, nullable=False)
    tax_amount = Column(Numeric(15, 2), default=0, nullable=False)
    discount_amount = Column(Numeric(15, 2), default=0, nullable=False)
    shipping_amount = Column(Numeric(15, 2), default=0, nullable=False)
    total_amount = Column(Numeric(15, 2), default=0, nullable=False)

    # Quote-level adjustments the totals are derived from
    discount_percent = Column(Numeric(5, 2), default=0, nullable=False)
    tax_rate = Column(Numeric(6, 4), nullable=False)

    status = Column(
        Enum(QuotationStatus, name="quotation_status", values_callable=lambda e: [m.value for m in e]),
        default=QuotationStatus.DRAFT, nullable=False, index=True
    )
    valid_until = Column(DateTime(timezone=True), nullable=False)
    payment_terms = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    internal_notes = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    # SHA-256 of the token handed to an anonymous creator; required to reach the quotation again
    access_token_hash = Column(String(64), nullable=True)

    confirmed_by = Column(String, nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    invoiced_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    company = relationship("Company", back_populates="quotations")
    items = relationship("QuotationItem", back_populates="quotation", cascade="all, delete-orphan", order_by="QuotationItem.id")
    part_items = relationship("PartItem", back_populates="quotation")
    invoices = relationship("Invoice", back_populates="quotation")
