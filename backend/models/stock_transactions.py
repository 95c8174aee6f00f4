from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from datetime import datetime
from database import Base
import pytz

class StockTransaction(Base):
    """One row per inventory unit status change made by the reservation ledger."""
    __tablename__ = "stock_transactions"

    id = Column(Integer, primary_key=True, index=True)
    part_id = Column(Integer, ForeignKey("parts.id"), nullable=False, index=True)
    part_item_id = Column(Integer, ForeignKey("part_items.id"), nullable=True)
    transaction_type = Column(String(50), nullable=False)  # "reserve", "release", "sell"
    quantity = Column(Integer, nullable=False, default=1)
    old_status = Column(String(50), nullable=True)
    new_status = Column(String(50), nullable=True)
    reference_type = Column(String(50), nullable=True)  # "quotation"
    reference_id = Column(Integer, nullable=True, index=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(pytz.utc))

    part_item = relationship("PartItem")
