from sqlalchemy import Column, Integer, String, DateTime, JSON
from database import Base
from datetime import datetime
import pytz

class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, index=True)
    table_name = Column(String, nullable=False)
    record_id = Column(Integer, nullable=False)
    changed_at = Column(DateTime(timezone=True), default=lambda: datetime.now(pytz.utc))
    changed_by = Column(String, nullable=False)
    action = Column(String, nullable=False)  # e.g., 'CREATE', 'UPDATE', 'SUBMIT', 'CONFIRM', 'CANCEL', 'EXPIRE', 'INVOICE'
    old_values = Column(JSON)
    new_values = Column(JSON)
