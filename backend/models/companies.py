from sqlalchemy import Column, Integer, String, Numeric
from sqlalchemy.orm import relationship
from database import Base
from models.audit_mixin import TimestampMixin

class Company(Base, TimestampMixin):
    """Client directory entry. Only the fields the quotation engine reads."""
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone_number = Column(String(20), nullable=True)
    tax_rate = Column(Numeric(6, 4), nullable=True) # Overrides the default flat rate when set

    # Relationships
    quotations = relationship("Quotation", back_populates="company")
    invoices = relationship("Invoice", back_populates="company")
