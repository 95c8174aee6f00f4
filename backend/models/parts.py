from sqlalchemy import Column, Integer, String, Numeric, Text
from sqlalchemy.orm import relationship
from database import Base
from models.audit_mixin import TimestampMixin

class Part(Base, TimestampMixin):
    """Catalog entry. Prices here are live; quotations snapshot them."""
    __tablename__ = "parts"

    id = Column(Integer, primary_key=True, index=True)
    part_number = Column(String(100), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    brand = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    price = Column(Numeric(15, 2), nullable=False)
    list_price = Column(Numeric(15, 2), nullable=True) # Pre-discount reference price
    discount = Column(Numeric(5, 2), default=0, nullable=False) # Catalog discount percent, copied onto new quotation lines

    # Relationships
    part_items = relationship("PartItem", back_populates="part")
