from sqlalchemy import Column, DateTime, String
from datetime import datetime
import pytz


class TimestampMixin:
    """Mixin that provides created/updated timestamps and user info.

    All timestamps are stored timezone-aware in UTC. created_by/updated_by hold
    the identifier of the acting user, or NULL for anonymous buyers and the
    system expiry sweep.
    """
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(pytz.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=lambda: datetime.now(pytz.utc))
    created_by = Column(String, nullable=True)
    updated_by = Column(String, nullable=True)
