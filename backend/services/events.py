"""
Domain events for the document/notification layer.

Services queue events on the session while they work; the events are only
delivered after the transaction commits, and are dropped if it rolls back,
so subscribers never hear about a confirmation that did not happen.
"""
import logging
from collections import defaultdict

from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger("events")

QUOTATION_SUBMITTED = "quotation.submitted"
QUOTATION_CONFIRMED = "quotation.confirmed"
QUOTATION_CANCELLED = "quotation.cancelled"
QUOTATION_EXPIRED = "quotation.expired"
INVOICE_CREATED = "invoice.created"

# Subscribing to ALL_EVENTS receives every event
ALL_EVENTS = "*"

_PENDING_KEY = "pending_domain_events"
_subscribers = defaultdict(list)


def subscribe(event_name: str, handler):
    """Register handler(event_name, payload) for an event name or ALL_EVENTS."""
    if handler not in _subscribers[event_name]:
        _subscribers[event_name].append(handler)


def unsubscribe(event_name: str, handler):
    if handler in _subscribers[event_name]:
        _subscribers[event_name].remove(handler)


def queue_event(db: Session, event_name: str, payload: dict):
    """Hold an event until the session's transaction commits."""
    db.info.setdefault(_PENDING_KEY, []).append((event_name, dict(payload)))


def publish(event_name: str, payload: dict):
    for handler in list(_subscribers[event_name]) + list(_subscribers[ALL_EVENTS]):
        try:
            handler(event_name, payload)
        except Exception:
            # The transaction is already committed; a failing subscriber must not undo it
            logger.exception(f"Subscriber {getattr(handler, '__name__', handler)} failed for event {event_name}")


@event.listens_for(Session, "after_commit")
def _publish_pending(session):
    for event_name, payload in session.info.pop(_PENDING_KEY, []):
        publish(event_name, payload)


@event.listens_for(Session, "after_rollback")
def _discard_pending(session):
    dropped = session.info.pop(_PENDING_KEY, [])
    if dropped:
        logger.info(f"Discarded {len(dropped)} event(s) from a rolled back transaction")


def _log_event(event_name: str, payload: dict):
    logger.info(f"Event {event_name}: {payload}")


subscribe(ALL_EVENTS, _log_event)
