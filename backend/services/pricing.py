"""
Pricing calculator for quotations.

Pure functions over Decimal values: no database, no I/O. The same code prices
an unsaved cart (QuoteLine values built in the request) and a persisted
quotation (QuoteLine.from_item over its QuotationItems).

Amounts keep full precision until PricingSummary.rounded(), which is the only
place cents are rounded.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Optional, Sequence, Tuple

from exceptions import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")
MAX_DISCOUNT_PERCENT = Decimal("50")

# Enough digits that sums of many lines stay exact and order independent
PRICING_PRECISION = 50


def money(value) -> Decimal:
    """Round to cents, half up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _as_decimal(value, name: str, line_index: Optional[int] = None) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, bool):
        raise ValidationError(f"{_where(line_index)}{name} must be a number", field=name, line_index=line_index)
    if isinstance(value, float):
        # Go through str so 0.1 stays 0.1 rather than its binary expansion
        value = str(value)
    try:
        result = Decimal(value)
    except Exception:
        raise ValidationError(f"{_where(line_index)}{name} must be a number, got {value!r}", field=name, line_index=line_index)
    if not result.is_finite():
        raise ValidationError(f"{_where(line_index)}{name} must be finite", field=name, line_index=line_index)
    return result


def _where(line_index: Optional[int]) -> str:
    return f"Line {line_index + 1}: " if line_index is not None else ""


@dataclass(frozen=True)
class QuoteLine:
    """A priced line that has not necessarily been persisted."""
    part_id: int
    quantity: int
    unit_price: Decimal
    list_price: Optional[Decimal] = None
    line_discount_percent: Decimal = ZERO

    @classmethod
    def from_item(cls, item) -> "QuoteLine":
        """Build a line from a persisted QuotationItem (or anything shaped like one)."""
        return cls(
            part_id=item.part_id,
            quantity=item.quantity,
            unit_price=Decimal(item.unit_price),
            list_price=Decimal(item.list_price) if item.list_price is not None else None,
            line_discount_percent=Decimal(item.discount or 0),
        )


@dataclass(frozen=True)
class PricingAdjustments:
    quote_discount_percent: Decimal = ZERO
    shipping_amount: Decimal = ZERO
    tax_rate: Decimal = ZERO


@dataclass(frozen=True)
class PricingSummary:
    subtotal: Decimal
    discount_amount: Decimal
    shipping_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    total_savings: Decimal
    line_totals: Tuple[Decimal, ...] = field(default_factory=tuple)

    def rounded(self) -> "PricingSummary":
        """
        Cents-rounded copy for display and persistence.

        The total is rebuilt from the rounded components so the stored
        identity total = subtotal - discount + tax + shipping holds exactly.
        """
        subtotal = money(self.subtotal)
        discount_amount = money(self.discount_amount)
        shipping_amount = money(self.shipping_amount)
        tax_amount = money(self.tax_amount)
        return PricingSummary(
            subtotal=subtotal,
            discount_amount=discount_amount,
            shipping_amount=shipping_amount,
            tax_amount=tax_amount,
            total_amount=subtotal - discount_amount + tax_amount + shipping_amount,
            total_savings=money(self.total_savings),
            line_totals=tuple(money(t) for t in self.line_totals),
        )


def _check_cents(value: Decimal, name: str, line_index: Optional[int] = None) -> None:
    """Values are stored with two decimal places; anything finer would be lost on save."""
    with localcontext() as ctx:
        ctx.prec = PRICING_PRECISION
        if value != value.quantize(CENT):
            raise ValidationError(
                f"{_where(line_index)}{name} {value} has more than two decimal places",
                field=name,
                line_index=line_index,
            )


def validate_discount_percent(value, name: str = "discount", line_index: Optional[int] = None) -> Decimal:
    percent = _as_decimal(value, name, line_index)
    if percent < ZERO or percent > MAX_DISCOUNT_PERCENT:
        raise ValidationError(
            f"{_where(line_index)}{name} {percent}% is outside the allowed range 0-{MAX_DISCOUNT_PERCENT}%",
            field=name,
            line_index=line_index,
        )
    _check_cents(percent, name, line_index)
    return percent


def validate_line(line: QuoteLine, line_index: Optional[int] = None) -> None:
    quantity = line.quantity
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(
            f"{_where(line_index)}quantity for part {line.part_id} must be a whole number, got {quantity!r}",
            field="quantity",
            line_index=line_index,
        )
    if quantity < 1:
        raise ValidationError(
            f"{_where(line_index)}quantity for part {line.part_id} must be at least 1, got {quantity}",
            field="quantity",
            line_index=line_index,
        )
    if _as_decimal(line.unit_price, "unit_price", line_index) < ZERO:
        raise ValidationError(f"{_where(line_index)}unit_price for part {line.part_id} cannot be negative", field="unit_price", line_index=line_index)
    if line.list_price is not None and _as_decimal(line.list_price, "list_price", line_index) < ZERO:
        raise ValidationError(f"{_where(line_index)}list_price for part {line.part_id} cannot be negative", field="list_price", line_index=line_index)
    validate_discount_percent(line.line_discount_percent, "line discount", line_index)


def validate_lines(lines: Sequence[QuoteLine]) -> None:
    for index, line in enumerate(lines):
        validate_line(line, index)


def validate_adjustments(adjustments: PricingAdjustments) -> None:
    validate_discount_percent(adjustments.quote_discount_percent, "quote discount")
    shipping = _as_decimal(adjustments.shipping_amount, "shipping_amount")
    if shipping < ZERO:
        raise ValidationError("shipping_amount cannot be negative", field="shipping_amount")
    _check_cents(shipping, "shipping_amount")
    tax_rate = _as_decimal(adjustments.tax_rate, "tax_rate")
    if tax_rate < ZERO or tax_rate > Decimal("1"):
        raise ValidationError(f"tax_rate {tax_rate} must be a fraction between 0 and 1", field="tax_rate")


def line_total(line: QuoteLine) -> Decimal:
    """unit_price x quantity x (1 - discount/100), unrounded."""
    unit_price = _as_decimal(line.unit_price, "unit_price")
    discount = _as_decimal(line.line_discount_percent, "line discount")
    with localcontext() as ctx:
        ctx.prec = PRICING_PRECISION
        return unit_price * line.quantity * (1 - discount / HUNDRED)


def line_savings(line: QuoteLine) -> Decimal:
    """Savings against the list price plus the line discount, for the whole quantity."""
    unit_price = _as_decimal(line.unit_price, "unit_price")
    discount = _as_decimal(line.line_discount_percent, "line discount")
    with localcontext() as ctx:
        ctx.prec = PRICING_PRECISION
        list_gap = ZERO
        if line.list_price is not None:
            list_gap = _as_decimal(line.list_price, "list_price") - unit_price
        return (list_gap + unit_price * discount / HUNDRED) * line.quantity


def calculate_pricing(lines: Sequence[QuoteLine], adjustments: PricingAdjustments = None) -> PricingSummary:
    """
    Price a set of lines.

    Tax is charged on (subtotal - discount + shipping); savings are reported
    alongside and never enter the total. Raises ValidationError before any
    arithmetic if a line or adjustment is out of range.
    """
    adjustments = adjustments or PricingAdjustments()
    validate_lines(lines)
    validate_adjustments(adjustments)

    quote_discount = _as_decimal(adjustments.quote_discount_percent, "quote discount")
    shipping = _as_decimal(adjustments.shipping_amount, "shipping_amount")
    tax_rate = _as_decimal(adjustments.tax_rate, "tax_rate")

    with localcontext() as ctx:
        ctx.prec = PRICING_PRECISION
        totals = tuple(line_total(line) for line in lines)
        subtotal = sum(totals, ZERO)
        discount_amount = subtotal * quote_discount / HUNDRED
        tax_amount = (subtotal - discount_amount + shipping) * tax_rate
        total_amount = subtotal - discount_amount + tax_amount + shipping
        total_savings = sum((line_savings(line) for line in lines), ZERO)

    return PricingSummary(
        subtotal=subtotal,
        discount_amount=discount_amount,
        shipping_amount=shipping,
        tax_amount=tax_amount,
        total_amount=total_amount,
        total_savings=total_savings,
        line_totals=totals,
    )
