# Overview: Pure cart pricing (subtotal, discount, tax, trade-ins) and the immutable Cart value.

"""
Pricing rules (authoritative):

- subtotal = sum(unit_price * quantity) over lines.
- Cart discount: percentage of subtotal, or a fixed amount.
- Tax: the cart discount is allocated pro-rata by each line's share of the
  subtotal (ratio 0 when the subtotal is 0); each line's tax_rate applies to
  its post-discount amount.
- total = subtotal - discount_total + tax_total.
- part_exchange_total = sum(allowances); net_total = total - part_exchange_total,
  which may be negative (approval policy lives in the committer).

Line-level discounts are absolute per-line reductions tracked apart from the
cart discount: they reduce that line's taxable base and are added to
discount_total, so the persisted totals agree with line revenue.

All arithmetic is full-precision Decimal. Rounding to the cent happens once,
in PricingResult.rounded(), and total is derived from the rounded parts so
the totals invariant holds exactly to the cent.

Nothing in this module touches the database.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Iterable, Sequence

from ..models.sales import DISCOUNT_FIXED, DISCOUNT_PERCENTAGE, VALID_DISCOUNT_TYPES
from ..money import HUNDRED, ZERO, quantize_money, to_decimal
from ..validation import FieldErrors


@dataclass(frozen=True)
class PricedLine:
    """Minimal pricing input for one line."""
    unit_price: Decimal
    quantity: int
    discount: Decimal = ZERO
    tax_rate: Decimal = ZERO

    @property
    def line_subtotal(self) -> Decimal:
        return to_decimal(self.unit_price) * self.quantity


@dataclass(frozen=True)
class DiscountSpec:
    type: str = DISCOUNT_FIXED
    value: Decimal = ZERO

    @classmethod
    def none(cls) -> "DiscountSpec":
        return cls(DISCOUNT_FIXED, ZERO)


@dataclass(frozen=True)
class LineBreakdown:
    line_subtotal: Decimal
    line_discount: Decimal
    allocated_cart_discount: Decimal
    taxable: Decimal
    tax: Decimal


@dataclass(frozen=True)
class PricingResult:
    subtotal: Decimal
    cart_discount: Decimal
    line_discount_total: Decimal
    discount_total: Decimal
    tax_total: Decimal
    total: Decimal
    part_exchange_total: Decimal
    net_total: Decimal
    lines: tuple[LineBreakdown, ...] = ()

    def rounded(self) -> "PricingResult":
        """Cent-rounded copy; total and net_total are re-derived from rounded parts."""
        subtotal = quantize_money(self.subtotal)
        cart_discount = quantize_money(self.cart_discount)
        line_discount_total = quantize_money(self.line_discount_total)
        discount_total = cart_discount + line_discount_total
        tax_total = quantize_money(self.tax_total)
        total = subtotal - discount_total + tax_total
        part_exchange_total = quantize_money(self.part_exchange_total)
        return PricingResult(
            subtotal=subtotal,
            cart_discount=cart_discount,
            line_discount_total=line_discount_total,
            discount_total=discount_total,
            tax_total=tax_total,
            total=total,
            part_exchange_total=part_exchange_total,
            net_total=total - part_exchange_total,
            lines=self.lines,
        )

    def to_dict(self) -> dict:
        r = self.rounded()
        return {
            "subtotal": str(r.subtotal),
            "cart_discount": str(r.cart_discount),
            "line_discount_total": str(r.line_discount_total),
            "discount_total": str(r.discount_total),
            "tax_total": str(r.tax_total),
            "total": str(r.total),
            "part_exchange_total": str(r.part_exchange_total),
            "net_total": str(r.net_total),
        }


def validate_discount(discount: DiscountSpec, field_prefix: str = "discount") -> None:
    errors = FieldErrors()
    if discount.type not in VALID_DISCOUNT_TYPES:
        errors.add(f"{field_prefix}.type", "discount type must be 'percentage' or 'fixed'")
    value = to_decimal(discount.value)
    if value < 0:
        errors.add(f"{field_prefix}.value", "discount value must be >= 0")
    elif discount.type == DISCOUNT_PERCENTAGE and value > HUNDRED:
        errors.add(f"{field_prefix}.value", "percentage discount cannot exceed 100")
    errors.raise_if_any("Invalid discount")


def cart_discount_amount(subtotal: Decimal, discount: DiscountSpec, cap: Decimal | None = None) -> Decimal:
    """Cart-level discount in money; a fixed amount never exceeds cap."""
    value = to_decimal(discount.value)
    if discount.type == DISCOUNT_PERCENTAGE:
        return subtotal * value / HUNDRED
    limit = subtotal if cap is None else cap
    return min(value, max(limit, ZERO))


def calculate_totals(
    lines: Sequence[PricedLine],
    discount: DiscountSpec | None = None,
    allowances: Iterable = (),
) -> PricingResult:
    """
    Price a cart. Full precision; call .rounded() for presentation/persistence.
    """
    discount = discount or DiscountSpec.none()
    validate_discount(discount)

    subtotal = sum((line.line_subtotal for line in lines), ZERO)
    line_discount_total = sum((to_decimal(line.discount) for line in lines), ZERO)
    cart_discount = cart_discount_amount(subtotal, discount, cap=subtotal - line_discount_total)

    ratio = cart_discount / subtotal if subtotal > 0 else ZERO

    breakdown = []
    tax_total = ZERO
    for line in lines:
        line_subtotal = line.line_subtotal
        line_discount = to_decimal(line.discount)
        allocated = line_subtotal * ratio
        taxable = max(line_subtotal - line_discount - allocated, ZERO)
        tax = taxable * to_decimal(line.tax_rate) / HUNDRED
        tax_total += tax
        breakdown.append(LineBreakdown(line_subtotal, line_discount, allocated, taxable, tax))

    discount_total = cart_discount + line_discount_total
    total = subtotal - discount_total + tax_total
    part_exchange_total = sum((to_decimal(a) for a in allowances), ZERO)

    return PricingResult(
        subtotal=subtotal,
        cart_discount=cart_discount,
        line_discount_total=line_discount_total,
        discount_total=discount_total,
        tax_total=tax_total,
        total=total,
        part_exchange_total=part_exchange_total,
        net_total=total - part_exchange_total,
        lines=tuple(breakdown),
    )


# =============================================================================
# CART VALUE
# =============================================================================

@dataclass(frozen=True)
class CartLine:
    product_id: int
    name: str
    unit_price: Decimal
    quantity: int = 1
    discount: Decimal = ZERO
    tax_rate: Decimal = ZERO

    def priced(self) -> PricedLine:
        return PricedLine(
            unit_price=to_decimal(self.unit_price),
            quantity=self.quantity,
            discount=to_decimal(self.discount),
            tax_rate=to_decimal(self.tax_rate),
        )


@dataclass(frozen=True)
class TradeIn:
    title: str
    allowance: Decimal
    category: str | None = None
    description: str | None = None
    serial: str | None = None
    customer_name: str | None = None
    customer_contact: str | None = None
    supplier_id: int | None = None
    notes: str | None = None


@dataclass(frozen=True)
class Cart:
    """
    Immutable till cart. Every change returns a new Cart, so the same value
    can be priced, displayed and committed without shared mutable state.
    """
    lines: tuple[CartLine, ...] = ()
    trade_ins: tuple[TradeIn, ...] = ()
    discount: DiscountSpec = field(default_factory=DiscountSpec.none)

    def _find(self, product_id: int) -> CartLine | None:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    def add_product(self, product_id: int, name: str, unit_price, tax_rate=ZERO) -> "Cart":
        """Adding a product already in the cart bumps its quantity by one."""
        existing = self._find(product_id)
        if existing is not None:
            return self.update_quantity(product_id, existing.quantity + 1)
        line = CartLine(
            product_id=product_id,
            name=name,
            unit_price=to_decimal(unit_price),
            tax_rate=to_decimal(tax_rate),
        )
        return replace(self, lines=self.lines + (line,))

    def update_quantity(self, product_id: int, quantity: int) -> "Cart":
        """A quantity of zero or less removes the line."""
        if quantity <= 0:
            return self.remove_product(product_id)
        return replace(
            self,
            lines=tuple(
                replace(line, quantity=quantity) if line.product_id == product_id else line
                for line in self.lines
            ),
        )

    def set_line_discount(self, product_id: int, amount) -> "Cart":
        return replace(
            self,
            lines=tuple(
                replace(line, discount=to_decimal(amount)) if line.product_id == product_id else line
                for line in self.lines
            ),
        )

    def remove_product(self, product_id: int) -> "Cart":
        return replace(self, lines=tuple(line for line in self.lines if line.product_id != product_id))

    def with_discount(self, discount_type: str, value) -> "Cart":
        spec = DiscountSpec(discount_type, to_decimal(value))
        validate_discount(spec)
        return replace(self, discount=spec)

    def add_trade_in(self, trade_in: TradeIn) -> "Cart":
        return replace(self, trade_ins=self.trade_ins + (trade_in,))

    def remove_trade_in(self, index: int) -> "Cart":
        return replace(self, trade_ins=tuple(t for i, t in enumerate(self.trade_ins) if i != index))

    @property
    def is_empty(self) -> bool:
        return not self.lines and not self.trade_ins

    def totals(self) -> PricingResult:
        return calculate_totals(
            [line.priced() for line in self.lines],
            self.discount,
            [t.allowance for t in self.trade_ins],
        )
