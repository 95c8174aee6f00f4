from sqlalchemy.orm import class_mapper
from .time_utils import utc_now, ensure_aware

def sqlalchemy_to_dict(obj):
    """Convert a SQLAlchemy object to a JSON-safe dictionary."""
    if not obj:
        return None
    mapper = class_mapper(obj.__class__)
    result = {}
    for c in mapper.columns:
        value = getattr(obj, c.key)
        # Convert datetime objects to ISO format strings
        if hasattr(value, 'isoformat'):
            value = value.isoformat()
        # Keep Decimals exact by serializing them as strings
        elif hasattr(value, 'normalize') and hasattr(value, 'from_float'):  # Check if it's a Decimal
            value = str(value)
        # Convert enum types to their stored values
        elif hasattr(value, 'value') and hasattr(value, 'name'):  # Check if it's an enum
            value = value.value
        result[c.key] = value
    return result

__all__ = ['ensure_aware', 'sqlalchemy_to_dict', 'utc_now']
