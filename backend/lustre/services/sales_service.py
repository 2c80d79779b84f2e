"""
Transaction Committer: turns a finalized cart into a committed sale.

WHY: A sale touches the sale header, its lines, consignment settlements,
trade-in intake rows, the stock ledger and the cash drawer. Those writes are
one unit: either the whole sale is visible or none of it is.

Commit order inside the unit:
1. Sale header with computed totals
2. Lines, snapshotting unit_cost and tax_rate from the product
3. Consignment settlements for consignment lines
4. Pending part-exchange items for trade-ins
5. Authoritative stock decrement (conditional UPDATE per tracked line)
6. Cash drawer inflow of net_total for cash sales with net_total > 0
7. sale.committed audit event

Nothing is retried. A failure rolls the unit back and surfaces either the
typed error that caused it or CommitFailure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import PartExchangeItem, Product, Sale, SaleLineItem, Staff
from ..models.inventory import MOVEMENT_SALE
from ..models.sales import PAYMENT_CASH, PX_PENDING, VALID_PAYMENT_METHODS
from ..models.cash import Location
from ..money import ZERO, quantize_money, to_decimal
from ..time_utils import utcnow
from ..validation import (
    FieldErrors,
    ValidationError,
    clean_text,
    coerce_amount,
    coerce_int,
    has_cent_precision,
    require_reason,
)
from . import cash_drawer_service, consignment_service, permission_service, stock_service
from .audit_service import append_sale_event
from .concurrency import check_version, lock_for_update, run_in_transaction
from .errors import ApprovalRequiredError, CommitFailure, NotFoundError, SaleStateError
from .pricing_service import (
    DISCOUNT_FIXED,
    Cart,
    DiscountSpec,
    PricedLine,
    PricingResult,
    TradeIn,
    calculate_totals,
    validate_discount,
)


@dataclass(frozen=True)
class SaleLineInput:
    product_id: int
    quantity: int
    unit_price: Decimal | None = None  # None -> catalog price
    discount: Decimal = ZERO


@dataclass(frozen=True)
class SaleRequest:
    lines: tuple[SaleLineInput, ...]
    payment: str
    discount: DiscountSpec = field(default_factory=DiscountSpec.none)
    trade_ins: tuple[TradeIn, ...] = ()
    location_id: int | None = None
    customer_id: int | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    notes: str | None = None
    signature_data: str | None = None


# =============================================================================
# INPUT PARSING
# =============================================================================

def _parse_trade_in(raw, prefix: str, errors: FieldErrors) -> TradeIn | None:
    if not isinstance(raw, dict):
        errors.add(prefix, "must be an object")
        return None
    title = clean_text(raw.get("title"), f"{prefix}.title", errors, required=True)
    allowance = coerce_amount(raw.get("allowance"), f"{prefix}.allowance", errors, positive=True)
    supplier_id = None
    if raw.get("supplier_id") is not None:
        supplier_id = coerce_int(raw.get("supplier_id"), f"{prefix}.supplier_id", errors, minimum=1)
    item = TradeIn(
        title=title,
        allowance=allowance,
        category=clean_text(raw.get("category"), f"{prefix}.category", errors, max_length=64),
        description=clean_text(raw.get("description"), f"{prefix}.description", errors, max_length=None),
        serial=clean_text(raw.get("serial"), f"{prefix}.serial", errors, max_length=128),
        customer_name=clean_text(raw.get("customer_name"), f"{prefix}.customer_name", errors),
        customer_contact=clean_text(raw.get("customer_contact"), f"{prefix}.customer_contact", errors),
        supplier_id=supplier_id,
        notes=clean_text(raw.get("notes"), f"{prefix}.notes", errors, max_length=None),
    )
    return item


def parse_trade_in(raw) -> TradeIn:
    errors = FieldErrors()
    item = _parse_trade_in(raw, "part_exchange", errors)
    errors.raise_if_any("Invalid part exchange")
    return item


def parse_sale_payload(payload: dict | None) -> SaleRequest:
    """
    Validate a JSON sale payload. Raises ValidationError with one entry per
    bad field (e.g. "lines[1].quantity").
    """
    payload = payload or {}
    errors = FieldErrors()

    raw_lines = payload.get("lines") or []
    raw_trade_ins = payload.get("part_exchanges") or []
    if not isinstance(raw_lines, list):
        errors.add("lines", "lines must be a list")
        raw_lines = []
    if not isinstance(raw_trade_ins, list):
        errors.add("part_exchanges", "part_exchanges must be a list")
        raw_trade_ins = []

    lines = []
    for i, raw in enumerate(raw_lines):
        prefix = f"lines[{i}]"
        if not isinstance(raw, dict):
            errors.add(prefix, "must be an object")
            continue
        product_id = coerce_int(raw.get("product_id"), f"{prefix}.product_id", errors, minimum=1)
        quantity = coerce_int(raw.get("quantity"), f"{prefix}.quantity", errors, minimum=1)
        unit_price = coerce_amount(raw.get("unit_price"), f"{prefix}.unit_price", errors, required=False)
        discount = coerce_amount(raw.get("discount"), f"{prefix}.discount", errors, required=False)
        lines.append(SaleLineInput(product_id, quantity, unit_price, discount if discount is not None else ZERO))

    trade_ins = [_parse_trade_in(raw, f"part_exchanges[{i}]", errors) for i, raw in enumerate(raw_trade_ins)]

    payment = payload.get("payment")
    if payment not in VALID_PAYMENT_METHODS:
        errors.add("payment", f"payment must be one of: {', '.join(VALID_PAYMENT_METHODS)}")

    discount = DiscountSpec.none()
    raw_discount = payload.get("discount")
    if raw_discount is not None:
        if not isinstance(raw_discount, dict):
            errors.add("discount", "discount must be an object")
        else:
            value = coerce_amount(raw_discount.get("value"), "discount.value", errors, required=False)
            discount = DiscountSpec(raw_discount.get("type") or DISCOUNT_FIXED, value if value is not None else ZERO)
            try:
                validate_discount(discount)
            except ValidationError as exc:
                for k, v in exc.fields.items():
                    errors.add(k, v)

    location_id = None
    if payload.get("location_id") is not None:
        location_id = coerce_int(payload.get("location_id"), "location_id", errors, minimum=1)
    customer_id = None
    if payload.get("customer_id") is not None:
        customer_id = coerce_int(payload.get("customer_id"), "customer_id", errors, minimum=1)

    request = SaleRequest(
        lines=tuple(lines),
        payment=payment,
        discount=discount,
        trade_ins=tuple(t for t in trade_ins if t is not None),
        location_id=location_id,
        customer_id=customer_id,
        customer_name=clean_text(payload.get("customer_name"), "customer_name", errors),
        customer_email=clean_text(payload.get("customer_email"), "customer_email", errors),
        notes=clean_text(payload.get("notes"), "notes", errors, max_length=None),
        signature_data=clean_text(payload.get("signature_data"), "signature_data", errors, max_length=None),
    )
    if not raw_lines and not raw_trade_ins:
        errors.add("lines", "cart is empty")
    errors.raise_if_any("Invalid sale")
    return request


def request_from_cart(cart: Cart, *, payment: str, **kwargs) -> SaleRequest:
    """Finalize an in-memory Cart into a commit request."""
    return SaleRequest(
        lines=tuple(
            SaleLineInput(line.product_id, line.quantity, to_decimal(line.unit_price), to_decimal(line.discount))
            for line in cart.lines
        ),
        payment=payment,
        discount=cart.discount,
        trade_ins=cart.trade_ins,
        **kwargs,
    )


# =============================================================================
# PRICING AGAINST THE CATALOG
# =============================================================================

def _check_money(value: Decimal, field: str, errors: FieldErrors) -> None:
    if value < 0:
        errors.add(field, f"{field} must be >= 0")
    elif not has_cent_precision(value):
        errors.add(field, f"{field} must have at most 2 decimal places")


def _resolve_products(request: SaleRequest) -> list[Product]:
    """Load each line's product; unknown or inactive products are field errors."""
    errors = FieldErrors()
    if not request.lines and not request.trade_ins:
        errors.add("lines", "cart is empty")
    if request.payment not in VALID_PAYMENT_METHODS:
        errors.add("payment", f"payment must be one of: {', '.join(VALID_PAYMENT_METHODS)}")

    products = []
    for i, line in enumerate(request.lines):
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
            errors.add(f"lines[{i}].quantity", "quantity must be a positive integer")
        if line.unit_price is not None:
            _check_money(to_decimal(line.unit_price), f"lines[{i}].unit_price", errors)
        _check_money(to_decimal(line.discount), f"lines[{i}].discount", errors)
        product = db.session.get(Product, line.product_id)
        if product is None or not product.is_active:
            errors.add(f"lines[{i}].product_id", "product not found")
        products.append(product)

    for i, item in enumerate(request.trade_ins):
        if not item.title or not str(item.title).strip():
            errors.add(f"part_exchanges[{i}].title", "title is required")
        if item.allowance is None or to_decimal(item.allowance) <= 0:
            errors.add(f"part_exchanges[{i}].allowance", "allowance must be > 0")
        else:
            _check_money(to_decimal(item.allowance), f"part_exchanges[{i}].allowance", errors)

    # discount_value is persisted to the cent and re-read by every edit.
    _check_money(to_decimal(request.discount.value), "discount.value", errors)

    if request.location_id is not None and db.session.get(Location, request.location_id) is None:
        errors.add("location_id", "location not found")

    errors.raise_if_any("Invalid sale")
    validate_discount(request.discount)
    return products


def _priced_lines(request: SaleRequest, products: list[Product]) -> list[PricedLine]:
    return [
        PricedLine(
            unit_price=to_decimal(line.unit_price if line.unit_price is not None else product.unit_price),
            quantity=line.quantity,
            discount=to_decimal(line.discount),
            tax_rate=to_decimal(product.tax_rate),
        )
        for line, product in zip(request.lines, products)
    ]


def quote_sale(request: SaleRequest) -> PricingResult:
    """Price a request against the catalog without writing anything."""
    products = _resolve_products(request)
    return calculate_totals(
        _priced_lines(request, products),
        request.discount,
        [t.allowance for t in request.trade_ins],
    ).rounded()


def resolve_negative_approval(net_total: Decimal, actor: Staff, approver: Staff | None) -> int | None:
    """Net-negative sales need APPROVE_NEGATIVE_SALE from the actor or an approver."""
    if net_total >= 0:
        return None
    for candidate in (actor, approver):
        if candidate is not None and permission_service.staff_has_permission(candidate, "APPROVE_NEGATIVE_SALE"):
            return candidate.id
    raise ApprovalRequiredError(
        "Part-exchange allowance exceeds the sale total; manager approval required",
        details={"net_total": str(net_total), "permission": "APPROVE_NEGATIVE_SALE"},
    )


# =============================================================================
# COMMIT
# =============================================================================

def commit_sale(request: SaleRequest, *, actor: Staff, approver: Staff | None = None) -> Sale:
    """
    Commit a finalized cart as one unit.

    Raises ValidationError, PermissionDeniedError or ApprovalRequiredError
    before any write; InsufficientStockError if the authoritative decrement
    finds too little stock; CommitFailure for anything unexpected.
    """
    permission_service.require_permission(actor, "CREATE_SALE", resource="sale:new")

    products = _resolve_products(request)
    priced = _priced_lines(request, products)
    pricing = calculate_totals(priced, request.discount, [t.allowance for t in request.trade_ins]).rounded()

    if request.payment == PAYMENT_CASH and pricing.net_total > 0 and request.location_id is None:
        errors = FieldErrors()
        errors.add("location_id", "location_id is required for cash sales")
        errors.raise_if_any("Invalid sale")

    approved_by = resolve_negative_approval(pricing.net_total, actor, approver)

    # Advisory only; decrement_stock below is authoritative.
    stock_service.check_availability(
        (line.product_id, line.quantity) for line, product in zip(request.lines, products) if product.track_stock
    )

    def _op():
        now = utcnow()
        sale = Sale(
            staff_id=actor.id,
            staff_member_name=actor.display_name,
            payment=request.payment,
            location_id=request.location_id,
            subtotal=pricing.subtotal,
            discount_total=pricing.discount_total,
            tax_total=pricing.tax_total,
            part_exchange_total=pricing.part_exchange_total,
            total=pricing.total,
            discount_type=request.discount.type,
            discount_value=quantize_money(request.discount.value),
            customer_id=request.customer_id,
            customer_name=request.customer_name,
            customer_email=request.customer_email,
            notes=request.notes,
            signature_data=request.signature_data,
            negative_net_approved_by=approved_by,
            is_voided=False,
            sold_at=now,
        )
        db.session.add(sale)
        db.session.flush()

        lines = []
        for line_in, product, priced_line in zip(request.lines, products, priced):
            line = SaleLineItem(
                sale_id=sale.id,
                product_id=product.id,
                product=product,
                quantity=line_in.quantity,
                original_quantity=line_in.quantity,
                unit_price=quantize_money(priced_line.unit_price),
                unit_cost=quantize_money(product.unit_cost),
                discount=quantize_money(priced_line.discount),
                tax_rate=product.tax_rate,
            )
            db.session.add(line)
            lines.append(line)
        db.session.flush()

        settlements = consignment_service.link_settlements_for_sale(sale, lines)

        for item in request.trade_ins:
            db.session.add(_part_exchange_row(sale.id, item))
        db.session.flush()

        # Product order keeps row locks consistent across concurrent tills.
        for line in sorted(lines, key=lambda l: l.product_id):
            stock_service.decrement_stock(
                line.product_id,
                line.quantity,
                movement_type=MOVEMENT_SALE,
                sale_id=sale.id,
                staff_id=actor.id,
                note=f"Sale #{sale.id}",
            )

        if request.payment == PAYMENT_CASH and pricing.net_total > 0:
            cash_drawer_service.record_sale_cash_in(
                location_id=request.location_id,
                sale_id=sale.id,
                amount=pricing.net_total,
                staff_id=actor.id,
            )

        append_sale_event(
            sale_id=sale.id,
            event_type="sale.committed",
            actor_staff_id=actor.id,
            occurred_at=now,
            payload={
                "totals": pricing.to_dict(),
                "line_count": len(lines),
                "part_exchange_count": len(request.trade_ins),
                "settlement_ids": [s.id for s in settlements],
                "negative_net_approved_by": approved_by,
            },
        )
        return sale

    return run_in_transaction(_op, failure_cls=CommitFailure)


def _part_exchange_row(sale_id: int, item: TradeIn, notes: str | None = None) -> PartExchangeItem:
    return PartExchangeItem(
        sale_id=sale_id,
        title=item.title,
        category=item.category,
        description=item.description,
        serial=item.serial,
        allowance=quantize_money(item.allowance),
        customer_name=item.customer_name,
        customer_contact=item.customer_contact,
        customer_supplier_id=item.supplier_id,
        notes=notes if notes is not None else item.notes,
        status=PX_PENDING,
        product_id=None,
    )


def add_part_exchange_to_sale(
    sale_id: int,
    item: TradeIn,
    *,
    reason: str,
    actor: Staff,
    expected_version: int | None = None,
) -> PartExchangeItem:
    """
    Attach a trade-in to an already committed sale.

    Manager-or-above with a justification. Only part_exchange_total moves;
    total stays the gross figure.
    """
    permission_service.require_role(actor, "manager", resource=f"sale:{sale_id}")
    reason = require_reason(reason)
    errors = FieldErrors()
    clean_text(item.title, "title", errors, required=True)
    coerce_amount(item.allowance, "allowance", errors, positive=True)
    errors.raise_if_any("Invalid part exchange")

    def _op():
        sale = get_sale(sale_id, lock=True)
        if sale.is_voided:
            raise SaleStateError(f"Sale {sale_id} is voided", details={"sale_id": sale_id})
        check_version(sale, expected_version)

        allowance = quantize_money(item.allowance)
        new_px_total = to_decimal(sale.part_exchange_total) + allowance
        new_net = to_decimal(sale.total) - new_px_total
        approved_by = resolve_negative_approval(new_net, actor, None)

        notes = f"{item.notes} [Late addition: {reason}]" if item.notes else f"[Late addition: {reason}]"
        px = _part_exchange_row(sale.id, item, notes=notes)
        db.session.add(px)

        sale.part_exchange_total = new_px_total
        if approved_by is not None:
            sale.negative_net_approved_by = approved_by
        db.session.flush()

        append_sale_event(
            sale_id=sale.id,
            event_type="sale.part_exchange_added",
            actor_staff_id=actor.id,
            note=reason,
            payload={
                "part_exchange_id": px.id,
                "allowance": str(allowance),
                "part_exchange_total": str(quantize_money(new_px_total)),
                "net_total": str(quantize_money(new_net)),
            },
        )
        return px

    return run_in_transaction(_op)


# =============================================================================
# READS
# =============================================================================

def get_sale(sale_id: int, *, lock: bool = False) -> Sale:
    q = db.session.query(Sale).filter_by(id=sale_id)
    if lock:
        q = lock_for_update(q)
    sale = q.first()
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


def get_sale_detail(sale_id: int) -> dict:
    """Sale with lines, part exchanges and settlements, as the receipt reads it."""
    sale = get_sale(sale_id)
    data = sale.to_dict()
    data["lines"] = [line.to_dict() for line in sale.lines]
    data["part_exchanges"] = [px.to_dict() for px in sale.part_exchanges]
    data["settlements"] = [s.to_dict() for s in consignment_service.list_for_sale(sale.id)]
    return data


def summarize_sales(start: datetime | None = None, end: datetime | None = None, staff_id: int | None = None) -> dict:
    """Revenue aggregates over active sales; voided sales are counted separately only."""
    base = db.session.query(Sale)
    if start is not None:
        base = base.filter(Sale.sold_at >= start)
    if end is not None:
        base = base.filter(Sale.sold_at <= end)
    if staff_id is not None:
        base = base.filter(Sale.staff_id == staff_id)

    row = (
        base.filter(Sale.is_voided.is_(False))
        .with_entities(
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.subtotal), 0),
            func.coalesce(func.sum(Sale.discount_total), 0),
            func.coalesce(func.sum(Sale.tax_total), 0),
            func.coalesce(func.sum(Sale.total), 0),
            func.coalesce(func.sum(Sale.part_exchange_total), 0),
        )
        .one()
    )
    voided_count = base.filter(Sale.is_voided.is_(True)).count()

    count, subtotal, discount, tax, total, px = row
    total = to_decimal(total)
    px = to_decimal(px)
    return {
        "sale_count": int(count or 0),
        "voided_count": int(voided_count or 0),
        "subtotal": str(quantize_money(subtotal)),
        "discount_total": str(quantize_money(discount)),
        "tax_total": str(quantize_money(tax)),
        "revenue": str(quantize_money(total)),
        "part_exchange_total": str(quantize_money(px)),
        "net_total": str(quantize_money(total - px)),
    }
