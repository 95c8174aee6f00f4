from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from crud import quotations as crud_quotations
from exceptions import (
    InsufficientStock, NotFound, PermissionDenied, ReservationContention, StateConflict, ValidationError,
)
from models.audit_log import AuditLog
from models.invoices import Invoice
from models.part_items import PartItem, PartItemStatus
from models.quotations import QuotationStatus
from models.stock_transactions import StockTransaction
from schemas.quotation_items import QuotationItemCreateRequest, QuotationItemUpdate
from schemas.quotations import PricePreviewLine, PricePreviewRequest, QuotationCreate, QuotationUpdate
from services import events
from services import quotation_service as service
from services import reservation_ledger
from services.quotation_state import Actor
from utils.time_utils import utc_now


@pytest.fixture
def catalog(make_part):
    part_a = make_part(price="100.00", list_price="120.00")
    part_b = make_part(price="50.00", discount="10")
    return part_a, part_b


def customer_cart(catalog, **extra):
    part_a, part_b = catalog
    data = dict(
        customer_name="Dana Ortiz",
        customer_email="dana@acme-mining.com",
        items=[
            QuotationItemCreateRequest(part_id=part_a.id, quantity=2),
            QuotationItemCreateRequest(part_id=part_b.id, quantity=1),
        ],
    )
    data.update(extra)
    return QuotationCreate(**data)


def single_line(part, quantity):
    return QuotationCreate(
        customer_name="Dana Ortiz",
        customer_email="dana@acme-mining.com",
        items=[QuotationItemCreateRequest(part_id=part.id, quantity=quantity)],
    )


def unit_statuses(db, part):
    db.expire_all()
    return [u.status for u in db.query(PartItem).filter(PartItem.part_id == part.id).order_by(PartItem.id)]


# --- pricing through the service ------------------------------------------------

def test_customer_draft_is_priced_from_catalog(db, catalog, customer, settings):
    quotation = service.create_quotation(db, customer_cart(catalog), customer, settings=settings)

    assert quotation.status == QuotationStatus.DRAFT
    assert quotation.quotation_number == "QT-000001"
    assert quotation.subtotal == Decimal("245.00")
    assert quotation.tax_amount == Decimal("20.83")
    assert quotation.total_amount == Decimal("265.83")
    assert [item.unit_price for item in quotation.items] == [Decimal("100.00"), Decimal("50.00")]
    assert [item.discount for item in quotation.items] == [Decimal("0"), Decimal("10")]
    assert [item.total_price for item in quotation.items] == [Decimal("200.00"), Decimal("45.00")]
    assert quotation.created_by == customer.user_id
    assert quotation.valid_until is not None


def test_seller_discount_and_shipping(db, catalog, customer, seller, settings):
    quotation = service.create_quotation(db, customer_cart(catalog), customer, settings=settings)

    quotation = service.update_quotation(
        db, quotation.id,
        QuotationUpdate(discount_percent=Decimal("10"), shipping_amount=Decimal("25")),
        seller, settings=settings,
    )

    assert quotation.discount_amount == Decimal("24.50")
    assert quotation.tax_amount == Decimal("20.87")
    assert quotation.total_amount == Decimal("266.37")


@pytest.mark.parametrize("changes", [
    {"discount_percent": Decimal("10.125")},
    {"shipping_amount": Decimal("25.005")},
])
def test_adjustments_finer_than_cents_are_rejected(db, catalog, customer, seller, settings, changes):
    with pytest.raises(ValidationError):
        service.create_quotation(db, customer_cart(catalog, **changes), seller, settings=settings)

    quotation = service.create_quotation(db, customer_cart(catalog), customer, settings=settings)
    with pytest.raises(ValidationError):
        service.update_quotation(db, quotation.id, QuotationUpdate(**changes), seller, settings=settings)
    db.expire_all()
    assert service.get_quotation(db, quotation.id, seller).total_amount == Decimal("265.83")


def test_line_discount_finer_than_cents_is_rejected(db, catalog, customer, seller, settings):
    quotation = service.create_quotation(db, customer_cart(catalog), customer, settings=settings)
    item_id = quotation.items[0].id
    with pytest.raises(ValidationError):
        service.update_item(db, quotation.id, item_id, QuotationItemUpdate(discount=Decimal("7.505")), seller)
    with pytest.raises(ValidationError):
        service.add_item(db, quotation.id, QuotationItemCreateRequest(part_id=catalog[0].id, quantity=1, discount=Decimal("0.001")), seller)


def test_confirm_does_not_move_stored_totals(db, make_part, make_units, seller, settings):
    part = make_part(price="1000.00")
    make_units(part, 1)
    data = single_line(part, 1).model_copy(update={"discount_percent": Decimal("10.12"), "shipping_amount": Decimal("12.34")})
    quotation = service.create_quotation(db, data, seller, settings=settings)
    before = (quotation.discount_amount, quotation.tax_amount, quotation.total_amount)

    quotation = service.confirm_quotation(db, quotation.id, seller, settings=settings)

    assert (quotation.discount_amount, quotation.tax_amount, quotation.total_amount) == before


def test_catalog_price_change_does_not_reprice_existing_lines(db, catalog, customer, settings):
    part_a, _ = catalog
    quotation = service.create_quotation(db, customer_cart(catalog), customer, settings=settings)

    part_a.price = Decimal("150.00")
    db.commit()
    quotation = service.update_quotation(db, quotation.id, QuotationUpdate(notes="Deliver to site 4"), customer, settings=settings)

    assert quotation.items[0].unit_price == Decimal("100.00")
    assert quotation.total_amount == Decimal("265.83")


def test_company_tax_rate_overrides_default(db, catalog, customer, make_company, settings):
    company = make_company(tax_rate=Decimal("0.1"))
    quotation = service.create_quotation(db, customer_cart(catalog, company_id=company.id), customer, settings=settings)
    assert quotation.tax_rate == Decimal("0.1")
    assert quotation.tax_amount == Decimal("24.50")


def test_unknown_company_is_rejected(db, catalog, customer, settings):
    with pytest.raises(NotFound):
        service.create_quotation(db, customer_cart(catalog, company_id=404), customer, settings=settings)


@pytest.mark.parametrize("field, value", [
    ("discount_percent", Decimal("5")),
    ("shipping_amount", Decimal("10")),
    ("internal_notes", "margin is thin"),
])
def test_customers_cannot_set_seller_fields(db, catalog, customer, settings, field, value):
    with pytest.raises(PermissionDenied):
        service.create_quotation(db, customer_cart(catalog, **{field: value}), customer, settings=settings)
    assert db.query(AuditLog).count() == 0


def test_customers_cannot_override_line_discounts(db, catalog, customer, seller, settings):
    part_a, _ = catalog
    data = QuotationCreate(items=[QuotationItemCreateRequest(part_id=part_a.id, quantity=1, discount=Decimal("20"))])
    with pytest.raises(PermissionDenied):
        service.create_quotation(db, data, customer, settings=settings)

    quotation = service.create_quotation(db, data, seller, settings=settings)
    assert quotation.items[0].discount == Decimal("20")
    assert quotation.subtotal == Decimal("80.00")


def test_invalid_line_names_the_line(db, catalog, seller, settings):
    part_a, part_b = catalog
    data = QuotationCreate(items=[
        QuotationItemCreateRequest(part_id=part_a.id, quantity=1),
        QuotationItemCreateRequest(part_id=part_b.id, quantity=0),
    ])
    with pytest.raises(ValidationError) as exc:
        service.create_quotation(db, data, seller, settings=settings)
    assert exc.value.line_index == 1
    assert "Line 2" in exc.value.message


def test_add_update_remove_items_recompute_totals(db, catalog, customer, settings):
    part_a, part_b = catalog
    quotation = service.create_quotation(db, QuotationCreate(customer_name="Dana", customer_email="dana@acme-mining.com"), customer, settings=settings)
    assert quotation.total_amount == Decimal("0.00")

    quotation = service.add_item(db, quotation.id, QuotationItemCreateRequest(part_id=part_a.id, quantity=1), customer)
    assert quotation.subtotal == Decimal("100.00")

    item_id = quotation.items[0].id
    quotation = service.update_item(db, quotation.id, item_id, QuotationItemUpdate(quantity=3), customer)
    assert quotation.subtotal == Decimal("300.00")

    with pytest.raises(PermissionDenied):
        service.update_item(db, quotation.id, item_id, QuotationItemUpdate(discount=Decimal("5")), customer)

    quotation = service.add_item(db, quotation.id, QuotationItemCreateRequest(part_id=part_b.id, quantity=2), customer)
    quotation = service.remove_item(db, quotation.id, item_id, customer)
    assert [item.part_id for item in quotation.items] == [part_b.id]
    assert quotation.subtotal == Decimal("90.00")


def test_other_customers_cannot_touch_a_quotation(db, catalog, customer, other_customer, settings):
    quotation = service.create_quotation(db, customer_cart(catalog), customer, settings=settings)
    with pytest.raises(PermissionDenied):
        service.get_quotation(db, quotation.id, other_customer)
    with pytest.raises(PermissionDenied):
        service.submit_quotation(db, quotation.id, other_customer, settings=settings)


# --- lifecycle scenarios --------------------------------------------------------

def test_customer_submit_lands_in_pending(db, catalog, customer, settings, published_events):
    quotation = service.create_quotation(db, customer_cart(catalog), customer, settings=settings)

    quotation = service.submit_quotation(db, quotation.id, customer, settings=settings)

    assert quotation.status == QuotationStatus.PENDING
    assert quotation.submitted_at is not None
    assert [name for name, _ in published_events] == [events.QUOTATION_SUBMITTED]


def test_empty_draft_cannot_be_submitted(db, customer, settings):
    quotation = service.create_quotation(db, QuotationCreate(customer_name="Dana", customer_email="dana@acme-mining.com"), customer, settings=settings)
    with pytest.raises(ValidationError):
        service.submit_quotation(db, quotation.id, customer, settings=settings)
    db.expire_all()
    assert service.get_quotation(db, quotation.id, customer).status == QuotationStatus.DRAFT


def test_submit_without_contact_details_fails(db, catalog, customer, settings):
    part_a, _ = catalog
    quotation = service.create_quotation(db, single_line(part_a, 1).model_copy(update={"customer_email": None}), customer, settings=settings)
    with pytest.raises(ValidationError):
        service.submit_quotation(db, quotation.id, customer, settings=settings)


def test_anonymous_buyer_can_draft_and_submit(db, catalog, settings):
    quotation = service.create_quotation(db, customer_cart(catalog), Actor.anonymous(), settings=settings)
    assert quotation.access_token
    assert quotation.access_token_hash == service.hash_access_token(quotation.access_token)

    visitor = Actor.anonymous(access_token=quotation.access_token)
    quotation = service.submit_quotation(db, quotation.id, visitor, settings=settings)
    assert quotation.status == QuotationStatus.PENDING
    assert quotation.created_by is None


def test_anonymous_buyers_cannot_reach_each_others_quotations(db, catalog, settings):
    quotation = service.create_quotation(db, customer_cart(catalog), Actor.anonymous(), settings=settings)
    stranger = service.create_quotation(db, customer_cart(catalog), Actor.anonymous(), settings=settings)

    for visitor in (Actor.anonymous(), Actor.anonymous(access_token=stranger.access_token)):
        with pytest.raises(PermissionDenied):
            service.get_quotation(db, quotation.id, visitor)
        with pytest.raises(PermissionDenied):
            service.submit_quotation(db, quotation.id, visitor, settings=settings)
    db.expire_all()
    assert service.get_quotation(db, quotation.id, Actor.anonymous(access_token=quotation.access_token)).status == QuotationStatus.DRAFT


def test_access_token_never_reaches_the_audit_trail(db, catalog, settings):
    quotation = service.create_quotation(db, customer_cart(catalog), Actor.anonymous(), settings=settings)
    entry = db.query(AuditLog).filter(AuditLog.table_name == "quotations", AuditLog.record_id == quotation.id).one()
    assert "access_token_hash" not in entry.new_values


def test_confirm_with_insufficient_stock_changes_nothing(db, make_part, make_units, customer, seller, settings, published_events):
    part = make_part()
    make_units(part, 3)
    quotation = service.create_quotation(db, single_line(part, 5), customer, settings=settings)
    service.submit_quotation(db, quotation.id, customer, settings=settings)
    published_events.clear()

    with pytest.raises(InsufficientStock) as exc:
        service.confirm_quotation(db, quotation.id, seller, settings=settings)

    assert exc.value.part_id == part.id
    assert exc.value.available == 3
    db.expire_all()
    assert service.get_quotation(db, quotation.id, seller).status == QuotationStatus.PENDING
    assert set(unit_statuses(db, part)) == {PartItemStatus.AVAILABLE}
    assert db.query(StockTransaction).count() == 0
    assert published_events == []


def test_confirm_reserves_units(db, make_part, make_units, customer, seller, settings, published_events):
    part = make_part()
    units = make_units(part, 3)
    quotation = service.create_quotation(db, single_line(part, 3), customer, settings=settings)
    service.submit_quotation(db, quotation.id, customer, settings=settings)

    quotation = service.confirm_quotation(db, quotation.id, seller, settings=settings)

    assert quotation.status == QuotationStatus.CONFIRMED
    assert quotation.confirmed_by == seller.user_id
    assert unit_statuses(db, part) == [PartItemStatus.RESERVED] * 3
    assert {u.quotation_id for u in units} == {quotation.id}
    assert published_events[-1][0] == events.QUOTATION_CONFIRMED


def test_failing_line_rolls_back_reservations_of_earlier_lines(db, make_part, make_units, customer, seller, settings):
    plenty, scarce = make_part(), make_part()
    make_units(plenty, 5)
    make_units(scarce, 1)
    data = QuotationCreate(
        customer_name="Dana", customer_email="dana@acme-mining.com",
        items=[
            QuotationItemCreateRequest(part_id=plenty.id, quantity=2),
            QuotationItemCreateRequest(part_id=scarce.id, quantity=2),
        ],
    )
    quotation = service.create_quotation(db, data, customer, settings=settings)
    service.submit_quotation(db, quotation.id, customer, settings=settings)

    with pytest.raises(InsufficientStock):
        service.confirm_quotation(db, quotation.id, seller, settings=settings)

    assert set(unit_statuses(db, plenty)) == {PartItemStatus.AVAILABLE}
    assert set(unit_statuses(db, scarce)) == {PartItemStatus.AVAILABLE}


def test_demand_for_the_same_part_on_two_lines_is_combined(db, make_part, make_units, seller, settings):
    part = make_part()
    make_units(part, 3)
    data = QuotationCreate(items=[
        QuotationItemCreateRequest(part_id=part.id, quantity=2),
        QuotationItemCreateRequest(part_id=part.id, quantity=2),
    ])
    quotation = service.create_quotation(db, data, seller, settings=settings)
    with pytest.raises(InsufficientStock) as exc:
        service.confirm_quotation(db, quotation.id, seller, settings=settings)
    assert exc.value.requested == 4


def test_backorder_reserves_what_is_available(db, make_part, make_units, seller, settings):
    part = make_part()
    make_units(part, 2)
    quotation = service.create_quotation(db, single_line(part, 5), seller, settings=settings)

    quotation = service.confirm_quotation(db, quotation.id, seller, settings=replace(settings, allow_backorder=True))

    assert quotation.status == QuotationStatus.CONFIRMED
    assert quotation.items[0].backordered_quantity == 3
    assert unit_statuses(db, part) == [PartItemStatus.RESERVED] * 2


def test_seller_submit_confirms_directly(db, make_part, make_units, seller, settings):
    part = make_part()
    make_units(part, 1)
    quotation = service.create_quotation(db, single_line(part, 1), seller, settings=settings)

    quotation = service.submit_quotation(db, quotation.id, seller, settings=settings)

    assert quotation.status == QuotationStatus.CONFIRMED
    assert quotation.submitted_at is not None


def test_customer_cannot_confirm(db, catalog, customer, settings):
    quotation = service.create_quotation(db, customer_cart(catalog), customer, settings=settings)
    service.submit_quotation(db, quotation.id, customer, settings=settings)
    with pytest.raises(PermissionDenied):
        service.confirm_quotation(db, quotation.id, customer, settings=settings)


def test_invoice_sells_units_and_freezes_quotation(db, make_part, make_units, customer, seller, settings, published_events):
    part = make_part(price="100.00")
    make_units(part, 3)
    quotation = service.create_quotation(db, single_line(part, 3), customer, settings=settings)
    service.submit_quotation(db, quotation.id, customer, settings=settings)
    service.confirm_quotation(db, quotation.id, seller, settings=settings)

    invoice = service.convert_to_invoice(db, quotation.id, seller, settings=settings)

    assert invoice.invoice_number == "INV-000001"
    assert invoice.total_amount == Decimal("325.50")
    assert invoice.balance_amount == invoice.total_amount
    assert invoice.payment_status == "pending"
    assert len(invoice.items) == 1
    assert invoice.items[0].quantity == 3
    assert len(invoice.items[0].serial_numbers) == 3
    assert unit_statuses(db, part) == [PartItemStatus.SOLD] * 3

    quotation = service.get_quotation(db, quotation.id, seller)
    assert quotation.status == QuotationStatus.INVOICED
    assert published_events[-1][0] == events.INVOICE_CREATED

    for attempt in (
        lambda: service.confirm_quotation(db, quotation.id, seller, settings=settings),
        lambda: service.cancel_quotation(db, quotation.id, seller, settings=settings),
        lambda: service.convert_to_invoice(db, quotation.id, seller, settings=settings),
        lambda: service.expire_quotation(db, quotation.id, now=utc_now() + timedelta(days=365), settings=settings),
    ):
        with pytest.raises(StateConflict):
            attempt()
    with pytest.raises(StateConflict):
        service.add_item(db, quotation.id, QuotationItemCreateRequest(part_id=part.id, quantity=1), seller)
    assert db.query(Invoice).count() == 1


def test_invoice_requires_confirmation(db, catalog, customer, seller, settings):
    quotation = service.create_quotation(db, customer_cart(catalog), customer, settings=settings)
    service.submit_quotation(db, quotation.id, customer, settings=settings)
    with pytest.raises(StateConflict):
        service.convert_to_invoice(db, quotation.id, seller, settings=settings)


def test_cancel_releases_reservations(db, make_part, make_units, seller, settings, published_events):
    part = make_part()
    make_units(part, 2)
    quotation = service.create_quotation(db, single_line(part, 2), seller, settings=settings)
    service.confirm_quotation(db, quotation.id, seller, settings=settings)

    quotation = service.cancel_quotation(db, quotation.id, seller, reason="Customer went elsewhere", settings=settings)

    assert quotation.status == QuotationStatus.CANCELLED
    assert quotation.cancellation_reason == "Customer went elsewhere"
    assert unit_statuses(db, part) == [PartItemStatus.AVAILABLE] * 2
    assert published_events[-1][0] == events.QUOTATION_CANCELLED
    assert published_events[-1][1]["released_units"] == 2


def test_customer_cancels_own_draft_only(db, catalog, customer, settings):
    quotation = service.create_quotation(db, customer_cart(catalog), customer, settings=settings)
    service.submit_quotation(db, quotation.id, customer, settings=settings)
    with pytest.raises(PermissionDenied):
        service.cancel_quotation(db, quotation.id, customer, settings=settings)

    draft = service.create_quotation(db, customer_cart(catalog), customer, settings=settings)
    assert service.cancel_quotation(db, draft.id, customer, settings=settings).status == QuotationStatus.CANCELLED


# --- expiry ---------------------------------------------------------------------

def test_quotation_past_validity_reads_as_expired(db, catalog, customer, settings):
    created_at = utc_now() - timedelta(days=40)
    quotation = service.create_quotation(db, customer_cart(catalog), customer, settings=settings, now=created_at)

    assert quotation.status == QuotationStatus.DRAFT
    assert service.current_status(quotation) == QuotationStatus.EXPIRED


def test_mutating_a_stale_quotation_persists_expiry(db, catalog, customer, settings, published_events):
    part_a, _ = catalog
    quotation = service.create_quotation(db, customer_cart(catalog), customer, settings=settings, now=utc_now() - timedelta(days=40))

    with pytest.raises(StateConflict):
        service.add_item(db, quotation.id, QuotationItemCreateRequest(part_id=part_a.id, quantity=1), customer)

    db.expire_all()
    quotation = service.get_quotation(db, quotation.id, customer)
    assert quotation.status == QuotationStatus.EXPIRED
    assert quotation.expired_at is not None
    assert len(quotation.items) == 2
    assert [name for name, _ in published_events] == [events.QUOTATION_EXPIRED]


def test_strangers_cannot_settle_the_expiry_of_a_quotation(db, catalog, customer, other_customer, settings, published_events):
    part_a, _ = catalog
    quotation = service.create_quotation(db, customer_cart(catalog), customer, settings=settings, now=utc_now() - timedelta(days=40))

    with pytest.raises(PermissionDenied):
        service.add_item(db, quotation.id, QuotationItemCreateRequest(part_id=part_a.id, quantity=1), other_customer)

    db.expire_all()
    assert service.get_quotation(db, quotation.id, customer).status == QuotationStatus.DRAFT
    assert published_events == []
    assert db.query(AuditLog).filter(AuditLog.action == "EXPIRE").count() == 0


def test_expire_sweep_releases_stock(db, make_part, make_units, seller, settings):
    part = make_part()
    make_units(part, 2)
    stale = service.create_quotation(db, single_line(part, 2), seller, settings=settings)
    service.confirm_quotation(db, stale.id, seller, settings=settings)
    fresh = service.create_quotation(
        db, single_line(part, 1).model_copy(update={"valid_until": utc_now() + timedelta(days=90)}), seller, settings=settings
    )

    expired = service.expire_stale_quotations(db, now=utc_now() + timedelta(days=31), settings=settings)

    assert expired == [stale.id]
    assert unit_statuses(db, part) == [PartItemStatus.AVAILABLE] * 2
    assert service.get_quotation(db, fresh.id, seller).status == QuotationStatus.DRAFT
    assert service.expire_stale_quotations(db, now=utc_now() + timedelta(days=31), settings=settings) == []


def test_expire_before_validity_ends_is_rejected(db, catalog, customer, settings):
    quotation = service.create_quotation(db, customer_cart(catalog), customer, settings=settings)
    with pytest.raises(StateConflict):
        service.expire_quotation(db, quotation.id, settings=settings)


def test_valid_until_must_be_in_the_future(db, catalog, seller, settings):
    with pytest.raises(ValidationError):
        service.create_quotation(db, customer_cart(catalog, valid_until=utc_now() - timedelta(days=1)), seller, settings=settings)


# --- contention -----------------------------------------------------------------

def test_locked_quotation_row_surfaces_as_contention(db, catalog, customer, settings, monkeypatch):
    quotation = service.create_quotation(db, customer_cart(catalog), customer, settings=settings)
    lock_error = OperationalError("SELECT ... FOR UPDATE", {}, Exception("canceling statement due to lock timeout"))
    lock_error.orig.pgcode = "55P03"
    real_get = crud_quotations.get_quotation

    def locked_get(db, quotation_id, lock=False):
        if lock:
            raise lock_error
        return real_get(db, quotation_id, lock=lock)

    timeouts = []
    monkeypatch.setattr(crud_quotations, "get_quotation", locked_get)
    monkeypatch.setattr(service, "set_lock_timeout", lambda db, ms: timeouts.append(ms))
    monkeypatch.setattr(service.time, "sleep", lambda seconds: None)

    with pytest.raises(ReservationContention) as exc:
        service.cancel_quotation(db, quotation.id, customer, settings=settings)

    assert "quotation" in exc.value.message
    assert timeouts == [settings.lock_timeout_ms] * (settings.max_reservation_retries + 1)
    db.expire_all()
    assert service.get_quotation(db, quotation.id, customer).status == QuotationStatus.DRAFT


def test_contention_is_retried_with_backoff(db, make_part, make_units, seller, settings, monkeypatch):
    part = make_part()
    make_units(part, 1)
    quotation = service.create_quotation(db, single_line(part, 1), seller, settings=settings)

    real_reserve = reservation_ledger.reserve
    calls = []
    sleeps = []

    def flaky_reserve(*args, **kwargs):
        calls.append(args)
        if len(calls) < 3:
            raise ReservationContention(part.id, detail="lock timeout")
        return real_reserve(*args, **kwargs)

    monkeypatch.setattr(reservation_ledger, "reserve", flaky_reserve)
    monkeypatch.setattr(service.time, "sleep", sleeps.append)

    quotation = service.confirm_quotation(db, quotation.id, seller, settings=settings)

    assert quotation.status == QuotationStatus.CONFIRMED
    assert len(calls) == 3
    assert sleeps == pytest.approx([0.1, 0.2])


def test_contention_surfaces_after_retries(db, make_part, make_units, seller, settings, monkeypatch):
    part = make_part()
    make_units(part, 1)
    quotation = service.create_quotation(db, single_line(part, 1), seller, settings=settings)
    sleeps = []

    def locked(*args, **kwargs):
        raise ReservationContention(part.id)

    monkeypatch.setattr(reservation_ledger, "reserve", locked)
    monkeypatch.setattr(service.time, "sleep", sleeps.append)

    with pytest.raises(ReservationContention):
        service.confirm_quotation(db, quotation.id, seller, settings=settings)

    assert len(sleeps) == settings.max_reservation_retries
    db.expire_all()
    assert service.get_quotation(db, quotation.id, seller).status == QuotationStatus.DRAFT


def test_other_errors_are_not_retried(db, make_part, seller, settings, monkeypatch):
    part = make_part()
    quotation = service.create_quotation(db, single_line(part, 1), seller, settings=settings)
    sleeps = []
    monkeypatch.setattr(service.time, "sleep", sleeps.append)

    with pytest.raises(InsufficientStock):
        service.confirm_quotation(db, quotation.id, seller, settings=settings)
    assert sleeps == []


# --- reads, previews, audit -----------------------------------------------------

def test_price_preview_matches_stored_pricing(db, catalog, customer, settings):
    part_a, part_b = catalog
    request = PricePreviewRequest(lines=[
        PricePreviewLine(part_id=part_a.id, quantity=2),
        PricePreviewLine(part_id=part_b.id, quantity=1),
    ])

    preview = service.price_preview(db, request, customer, settings=settings)

    assert preview["subtotal"] == Decimal("245.00")
    assert preview["total_amount"] == Decimal("265.83")
    assert preview["total_savings"] == Decimal("45.00")
    assert [line["total_price"] for line in preview["lines"]] == [Decimal("200.00"), Decimal("45.00")]


def test_price_preview_rejects_customer_shipping(db, catalog, customer, settings):
    request = PricePreviewRequest(lines=[], shipping_amount=Decimal("10"))
    with pytest.raises(PermissionDenied):
        service.price_preview(db, request, customer, settings=settings)


def test_status_changes_are_audited(db, make_part, make_units, seller, settings):
    part = make_part()
    make_units(part, 1)
    quotation = service.create_quotation(db, single_line(part, 1), seller, settings=settings)
    service.confirm_quotation(db, quotation.id, seller, settings=settings)
    service.convert_to_invoice(db, quotation.id, seller, settings=settings)

    actions = [row.action for row in db.query(AuditLog).filter(AuditLog.table_name == "quotations").order_by(AuditLog.id)]
    assert actions == ["CREATE", "CONFIRM", "INVOICE"]


def test_missing_quotation(db, seller):
    with pytest.raises(NotFound):
        service.get_quotation(db, 12345, seller)
