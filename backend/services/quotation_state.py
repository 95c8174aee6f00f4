"""
Quotation lifecycle rules.

    draft -> pending -> confirmed -> invoiced
      \________\___________\______-> cancelled | expired

invoiced, cancelled and expired are terminal. Who may trigger a transition
depends on the actor's role: a seller's submission lands directly in
confirmed, a customer's waits in pending for a seller. Nothing here touches
the database; callers pass the facts the rules need in a TransitionContext.
"""
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from exceptions import PermissionDenied, StateConflict, ValidationError
from models.quotations import QuotationStatus
from utils.time_utils import ensure_aware


class Role(enum.Enum):
    SELLER = "seller"
    CUSTOMER = "customer"
    ANONYMOUS = "anonymous"
    SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    """Who is acting. Passed explicitly into every service call."""
    role: Role
    user_id: Optional[str] = None
    # Proof of ownership for anonymous buyers, issued when they create a quotation
    access_token: Optional[str] = field(default=None, repr=False)

    @property
    def is_seller(self) -> bool:
        return self.role == Role.SELLER

    @property
    def identifier(self) -> Optional[str]:
        if self.role == Role.SYSTEM:
            return "system"
        return self.user_id

    @classmethod
    def system(cls) -> "Actor":
        return cls(role=Role.SYSTEM)

    @classmethod
    def anonymous(cls, access_token: Optional[str] = None) -> "Actor":
        return cls(role=Role.ANONYMOUS, access_token=access_token)


TERMINAL_STATUSES = frozenset({
    QuotationStatus.INVOICED,
    QuotationStatus.CANCELLED,
    QuotationStatus.EXPIRED,
})

# Statuses whose line items may still change
EDITABLE_STATUSES = frozenset({QuotationStatus.DRAFT, QuotationStatus.PENDING})

VALID_TRANSITIONS = {
    QuotationStatus.DRAFT: frozenset({
        QuotationStatus.PENDING, QuotationStatus.CONFIRMED,
        QuotationStatus.CANCELLED, QuotationStatus.EXPIRED,
    }),
    QuotationStatus.PENDING: frozenset({
        QuotationStatus.CONFIRMED, QuotationStatus.CANCELLED, QuotationStatus.EXPIRED,
    }),
    QuotationStatus.CONFIRMED: frozenset({
        QuotationStatus.INVOICED, QuotationStatus.CANCELLED, QuotationStatus.EXPIRED,
    }),
    # Terminal states
    QuotationStatus.INVOICED: frozenset(),
    QuotationStatus.CANCELLED: frozenset(),
    QuotationStatus.EXPIRED: frozenset(),
}

TRANSITION_ROLES = {
    QuotationStatus.PENDING: frozenset({Role.CUSTOMER, Role.ANONYMOUS}),
    QuotationStatus.CONFIRMED: frozenset({Role.SELLER}),
    QuotationStatus.INVOICED: frozenset({Role.SELLER}),
    QuotationStatus.CANCELLED: frozenset({Role.SELLER, Role.CUSTOMER}),
    QuotationStatus.EXPIRED: frozenset({Role.SYSTEM}),
}


@dataclass(frozen=True)
class TransitionContext:
    """Facts about the quotation the transition rules depend on."""
    now: datetime
    valid_until: Optional[datetime] = None
    item_count: int = 0
    has_contact: bool = False
    is_owner: bool = False


def is_terminal(status: QuotationStatus) -> bool:
    return status in TERMINAL_STATUSES


def allowed_targets(status: QuotationStatus) -> frozenset:
    return VALID_TRANSITIONS.get(status, frozenset())


def is_past_validity(valid_until: Optional[datetime], now: datetime) -> bool:
    if valid_until is None:
        return False
    return ensure_aware(now) > ensure_aware(valid_until)


def effective_status(status: QuotationStatus, valid_until: Optional[datetime], now: datetime) -> QuotationStatus:
    """
    Status as readers should see it.

    A non-terminal quotation past valid_until reads as expired even before
    the sweep has stored that status.
    """
    if not is_terminal(status) and is_past_validity(valid_until, now):
        return QuotationStatus.EXPIRED
    return status


def submission_target(role: Role) -> QuotationStatus:
    """Where a submitted draft lands for the given role."""
    if role == Role.SELLER:
        return QuotationStatus.CONFIRMED
    if role in (Role.CUSTOMER, Role.ANONYMOUS):
        return QuotationStatus.PENDING
    raise PermissionDenied("submit a quotation", role.value)


def check_transition(current: QuotationStatus, target: QuotationStatus, actor: Actor, context: TransitionContext) -> None:
    """
    Validate current -> target for actor, or raise.

    StateConflict when the move is not in the lifecycle at all,
    PermissionDenied when the role may not make it, ValidationError when the
    quotation's contents do not meet the precondition.
    """
    if target not in allowed_targets(current):
        raise StateConflict(current, target)

    if actor.role not in TRANSITION_ROLES.get(target, frozenset()):
        raise PermissionDenied(f"move a quotation from '{current.value}' to '{target.value}'", actor.role.value)

    if target == QuotationStatus.CANCELLED and actor.role == Role.CUSTOMER:
        if current != QuotationStatus.DRAFT or not context.is_owner:
            raise PermissionDenied("cancel a quotation that is not their own draft", actor.role.value)

    if target == QuotationStatus.PENDING:
        if context.item_count < 1:
            raise ValidationError("Quotation has no line items and cannot be submitted", field="items")
        if not context.has_contact:
            raise ValidationError(
                "Customer name and email, or a linked company, are required to submit a quotation",
                field="customer_email",
            )

    if target == QuotationStatus.CONFIRMED and context.item_count < 1:
        raise ValidationError("Quotation has no line items and cannot be confirmed", field="items")

    if target == QuotationStatus.INVOICED and is_past_validity(context.valid_until, context.now):
        raise StateConflict(current, target, f"quotation expired at {ensure_aware(context.valid_until).isoformat()}")

    if target == QuotationStatus.EXPIRED and not is_past_validity(context.valid_until, context.now):
        raise StateConflict(current, target, "quotation is still within its validity window")
