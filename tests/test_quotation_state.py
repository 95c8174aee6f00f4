from datetime import timedelta

import pytest

from exceptions import PermissionDenied, StateConflict, ValidationError
from models.quotations import QuotationStatus
from services.quotation_state import (
    Actor, Role, TransitionContext, VALID_TRANSITIONS, allowed_targets, check_transition,
    effective_status, is_terminal, submission_target,
)
from utils.time_utils import utc_now

NOW = utc_now()
SELLER = Actor(Role.SELLER, "seller-1")
CUSTOMER = Actor(Role.CUSTOMER, "customer-1")
ANONYMOUS = Actor.anonymous()
SYSTEM = Actor.system()


def ready(**overrides):
    values = dict(now=NOW, valid_until=NOW + timedelta(days=5), item_count=2, has_contact=True, is_owner=True)
    values.update(overrides)
    return TransitionContext(**values)


@pytest.mark.parametrize("terminal", [QuotationStatus.INVOICED, QuotationStatus.CANCELLED, QuotationStatus.EXPIRED])
@pytest.mark.parametrize("target", list(QuotationStatus))
def test_terminal_states_have_no_exit(terminal, target):
    assert is_terminal(terminal)
    with pytest.raises(StateConflict):
        check_transition(terminal, target, SELLER, ready())


def test_every_non_terminal_state_can_be_cancelled_or_expired():
    for status, targets in VALID_TRANSITIONS.items():
        if not is_terminal(status):
            assert QuotationStatus.CANCELLED in targets
            assert QuotationStatus.EXPIRED in targets


def test_submission_target_depends_on_role():
    assert submission_target(Role.SELLER) == QuotationStatus.CONFIRMED
    assert submission_target(Role.CUSTOMER) == QuotationStatus.PENDING
    assert submission_target(Role.ANONYMOUS) == QuotationStatus.PENDING
    with pytest.raises(PermissionDenied):
        submission_target(Role.SYSTEM)


def test_customer_submits_to_pending():
    check_transition(QuotationStatus.DRAFT, QuotationStatus.PENDING, CUSTOMER, ready())
    check_transition(QuotationStatus.DRAFT, QuotationStatus.PENDING, ANONYMOUS, ready())


def test_seller_does_not_park_quotes_in_pending():
    with pytest.raises(PermissionDenied):
        check_transition(QuotationStatus.DRAFT, QuotationStatus.PENDING, SELLER, ready())


def test_only_sellers_confirm():
    check_transition(QuotationStatus.PENDING, QuotationStatus.CONFIRMED, SELLER, ready())
    check_transition(QuotationStatus.DRAFT, QuotationStatus.CONFIRMED, SELLER, ready())
    with pytest.raises(PermissionDenied):
        check_transition(QuotationStatus.PENDING, QuotationStatus.CONFIRMED, CUSTOMER, ready())


def test_confirmed_cannot_go_back_to_pending():
    with pytest.raises(StateConflict):
        check_transition(QuotationStatus.CONFIRMED, QuotationStatus.PENDING, CUSTOMER, ready())


def test_submission_needs_items_and_contact():
    with pytest.raises(ValidationError) as exc:
        check_transition(QuotationStatus.DRAFT, QuotationStatus.PENDING, CUSTOMER, ready(item_count=0))
    assert exc.value.field == "items"
    with pytest.raises(ValidationError):
        check_transition(QuotationStatus.DRAFT, QuotationStatus.PENDING, CUSTOMER, ready(has_contact=False))
    with pytest.raises(ValidationError):
        check_transition(QuotationStatus.PENDING, QuotationStatus.CONFIRMED, SELLER, ready(item_count=0))


def test_customer_cancels_only_own_draft():
    check_transition(QuotationStatus.DRAFT, QuotationStatus.CANCELLED, CUSTOMER, ready())
    with pytest.raises(PermissionDenied):
        check_transition(QuotationStatus.DRAFT, QuotationStatus.CANCELLED, CUSTOMER, ready(is_owner=False))
    with pytest.raises(PermissionDenied):
        check_transition(QuotationStatus.PENDING, QuotationStatus.CANCELLED, CUSTOMER, ready())
    with pytest.raises(PermissionDenied):
        check_transition(QuotationStatus.DRAFT, QuotationStatus.CANCELLED, ANONYMOUS, ready())


def test_seller_cancels_confirmed():
    check_transition(QuotationStatus.CONFIRMED, QuotationStatus.CANCELLED, SELLER, ready())


def test_invoice_requires_seller_and_validity():
    check_transition(QuotationStatus.CONFIRMED, QuotationStatus.INVOICED, SELLER, ready())
    with pytest.raises(PermissionDenied):
        check_transition(QuotationStatus.CONFIRMED, QuotationStatus.INVOICED, CUSTOMER, ready())
    with pytest.raises(StateConflict):
        check_transition(QuotationStatus.CONFIRMED, QuotationStatus.INVOICED, SELLER,
                         ready(valid_until=NOW - timedelta(seconds=1)))
    with pytest.raises(StateConflict):
        check_transition(QuotationStatus.PENDING, QuotationStatus.INVOICED, SELLER, ready())


def test_expiry_is_system_only_and_needs_past_validity():
    past = ready(valid_until=NOW - timedelta(minutes=1))
    check_transition(QuotationStatus.CONFIRMED, QuotationStatus.EXPIRED, SYSTEM, past)
    with pytest.raises(PermissionDenied):
        check_transition(QuotationStatus.CONFIRMED, QuotationStatus.EXPIRED, SELLER, past)
    with pytest.raises(StateConflict):
        check_transition(QuotationStatus.CONFIRMED, QuotationStatus.EXPIRED, SYSTEM, ready())


def test_effective_status_applies_lazy_expiry():
    past = NOW - timedelta(hours=1)
    assert effective_status(QuotationStatus.PENDING, past, NOW) == QuotationStatus.EXPIRED
    assert effective_status(QuotationStatus.CONFIRMED, past, NOW) == QuotationStatus.EXPIRED
    assert effective_status(QuotationStatus.INVOICED, past, NOW) == QuotationStatus.INVOICED
    assert effective_status(QuotationStatus.PENDING, NOW + timedelta(hours=1), NOW) == QuotationStatus.PENDING


def test_effective_status_accepts_naive_timestamps():
    naive_past = (NOW - timedelta(hours=1)).replace(tzinfo=None)
    assert effective_status(QuotationStatus.DRAFT, naive_past, NOW) == QuotationStatus.EXPIRED


def test_allowed_targets_of_draft():
    assert allowed_targets(QuotationStatus.DRAFT) == {
        QuotationStatus.PENDING, QuotationStatus.CONFIRMED, QuotationStatus.CANCELLED, QuotationStatus.EXPIRED,
    }
