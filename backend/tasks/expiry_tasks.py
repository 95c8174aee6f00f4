import logging
from sqlalchemy.orm import Session

from database import SessionLocal
from services import quotation_service
from utils.time_utils import utc_now

logger = logging.getLogger(__name__)


def run_expiry_sweep(session_factory=SessionLocal):
    """
    Expire quotations whose validity window has passed and return their stock.

    Scheduled by scheduler.py. Reads already treat such quotations as expired;
    this persists the status and frees the reserved units for other buyers.
    """
    now = utc_now()
    logger.info(f"Starting quotation expiry sweep at {now.isoformat()}.")
    db: Session = session_factory()
    try:
        expired = quotation_service.expire_stale_quotations(db, now=now)
        logger.info(f"Quotation expiry sweep finished; {len(expired)} quotation(s) expired.")
        return expired
    except Exception as e:
        db.rollback()
        logger.error(f"Quotation expiry sweep failed: {e}", exc_info=True)
        raise
    finally:
        db.close()
