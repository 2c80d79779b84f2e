from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..money import ZERO, money_str, to_decimal
from ..time_utils import to_utc_z


PAYMENT_CASH = "cash"
PAYMENT_CARD = "card"
PAYMENT_TRANSFER = "transfer"
PAYMENT_OTHER = "other"
VALID_PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_CARD, PAYMENT_TRANSFER, PAYMENT_OTHER)

DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"
VALID_DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED)

PX_PENDING = "pending"
PX_LINKED = "linked"
PX_DISCARDED = "discarded"
VALID_PX_STATUSES = (PX_PENDING, PX_LINKED, PX_DISCARDED)


class Sale(db.Model):
    """
    Committed sale header.

    Totals invariant: total == subtotal - discount_total + tax_total.
    part_exchange_total is netted by consumers (see net_total); it never
    reduces total itself.

    LIFECYCLE: Active -> Voided (one-way). A voided sale keeps its lines and
    stays queryable but drops out of revenue and commission aggregates.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_staff_sold", "staff_id", "sold_at"),
        db.Index("ix_sales_voided_sold", "is_voided", "sold_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=False, index=True)
    staff_member_name = db.Column(db.String(255), nullable=True)
    payment = db.Column(db.String(16), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)

    # Totals (NUMERIC, rounded to the cent at commit time)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    part_exchange_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # Cart-level discount spec, kept so an edit can re-price the sale
    discount_type = db.Column(db.String(16), nullable=False, default=DISCOUNT_FIXED)
    discount_value = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # Customer (CRM record is optional; name/email are free text)
    customer_id = db.Column(db.Integer, nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    signature_data = db.Column(db.Text, nullable=True)

    # Net-negative sales (trade-in worth more than the goods) need approval
    negative_net_approved_by = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)

    # Void audit trail
    is_voided = db.Column(db.Boolean, nullable=False, default=False, index=True)
    void_reason = db.Column(db.String(255), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)

    # Edit audit trail (latest edit; full history in sale_audit_events)
    edited_at = db.Column(db.DateTime(timezone=True), nullable=True)
    edited_by = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)
    edit_reason = db.Column(db.String(255), nullable=True)

    commission_override = db.Column(db.Numeric(12, 2), nullable=True)
    commission_override_reason = db.Column(db.String(255), nullable=True)

    sold_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    staff = db.relationship("Staff", foreign_keys=[staff_id], backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def net_total(self) -> Decimal:
        return to_decimal(self.total) - to_decimal(self.part_exchange_total)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "staff_id": self.staff_id,
            "staff_member_name": self.staff_member_name,
            "payment": self.payment,
            "location_id": self.location_id,
            "subtotal": money_str(self.subtotal),
            "discount_total": money_str(self.discount_total),
            "tax_total": money_str(self.tax_total),
            "part_exchange_total": money_str(self.part_exchange_total),
            "total": money_str(self.total),
            "net_total": money_str(self.net_total),
            "discount_type": self.discount_type,
            "discount_value": money_str(self.discount_value),
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "notes": self.notes,
            "signature_data": self.signature_data,
            "negative_net_approved_by": self.negative_net_approved_by,
            "is_voided": self.is_voided,
            "void_reason": self.void_reason,
            "voided_at": to_utc_z(self.voided_at),
            "voided_by": self.voided_by,
            "edited_at": to_utc_z(self.edited_at),
            "edited_by": self.edited_by,
            "edit_reason": self.edit_reason,
            "commission_override": money_str(self.commission_override),
            "commission_override_reason": self.commission_override_reason,
            "sold_at": to_utc_z(self.sold_at),
            "version_id": self.version_id,
        }


class SaleLineItem(db.Model):
    """
    One product line of a committed sale.

    unit_cost and tax_rate are snapshots taken at commit time and never
    follow later catalog changes. original_quantity is the quantity at
    commit; quantity reflects edits.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        db.CheckConstraint("discount >= 0", name="ck_sale_items_discount_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    original_quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    unit_cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True, order_by="SaleLineItem.id"))
    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def line_revenue(self) -> Decimal:
        return self.quantity * to_decimal(self.unit_price) - to_decimal(self.discount)

    @property
    def line_cost(self) -> Decimal:
        return self.quantity * to_decimal(self.unit_cost)

    @property
    def line_profit(self) -> Decimal:
        return self.line_revenue - self.line_cost

    @property
    def margin_percent(self) -> Decimal:
        revenue = self.line_revenue
        if revenue <= ZERO:
            return ZERO
        return self.line_profit / revenue * 100

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "original_quantity": self.original_quantity,
            "unit_price": money_str(self.unit_price),
            "unit_cost": money_str(self.unit_cost),
            "discount": money_str(self.discount),
            "tax_rate": money_str(self.tax_rate),
            "line_revenue": money_str(self.line_revenue),
            "line_cost": money_str(self.line_cost),
            "line_profit": money_str(self.line_profit),
            "margin_percent": money_str(self.margin_percent),
            "version_id": self.version_id,
        }


class PartExchangeItem(db.Model):
    """
    Trade-in surrendered by the customer as part payment.

    Created as 'pending' with no product. The intake workflow later turns it
    into a catalog product ('linked', product_id set) or drops it
    ('discarded').
    """
    __tablename__ = "part_exchanges"
    __table_args__ = (
        db.CheckConstraint("allowance > 0", name="ck_part_exchanges_allowance_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    title = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)
    description = db.Column(db.Text, nullable=True)
    serial = db.Column(db.String(128), nullable=True)
    allowance = db.Column(db.Numeric(12, 2), nullable=False)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_contact = db.Column(db.String(255), nullable=True)
    customer_supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=PX_PENDING, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("part_exchanges", lazy=True, order_by="PartExchangeItem.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "title": self.title,
            "category": self.category,
            "description": self.description,
            "serial": self.serial,
            "allowance": money_str(self.allowance),
            "customer_name": self.customer_name,
            "customer_contact": self.customer_contact,
            "customer_supplier_id": self.customer_supplier_id,
            "notes": self.notes,
            "status": self.status,
            "product_id": self.product_id,
            "created_at": to_utc_z(self.created_at),
        }


class ConsignmentSettlement(db.Model):
    """
    Payout owed to a consignor for one sold consignment line.

    payout_amount is the line cost snapshot and is fixed at creation.
    paid_at null means unsettled; once set it is never cleared.
    """
    __tablename__ = "consignment_settlements"
    __table_args__ = (
        db.UniqueConstraint("product_id", "sale_id", name="uq_consignment_settlements_product_sale"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    sale_price = db.Column(db.Numeric(12, 2), nullable=False)
    payout_amount = db.Column(db.Numeric(12, 2), nullable=False)

    paid_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    paid_by = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)
    payout_method = db.Column(db.String(32), nullable=True)
    payout_reference = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("settlements", lazy=True))
    product = db.relationship("Product")
    supplier = db.relationship("Supplier", backref=db.backref("settlements", lazy=True))

    @property
    def is_paid(self) -> bool:
        return self.paid_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "sale_id": self.sale_id,
            "supplier_id": self.supplier_id,
            "sale_price": money_str(self.sale_price),
            "payout_amount": money_str(self.payout_amount),
            "paid_at": to_utc_z(self.paid_at),
            "paid_by": self.paid_by,
            "payout_method": self.payout_method,
            "payout_reference": self.payout_reference,
        }


class SaleAuditEvent(db.Model):
    """
    Append-only audit trail for committed sales.

    Written inside the same DB transaction as the change it records.
    occurred_at is business time; rows are never updated or deleted.
    """
    __tablename__ = "sale_audit_events"
    __table_args__ = (
        db.Index("ix_sale_audit_sale_occurred", "sale_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    event_type = db.Column(db.String(64), nullable=False, index=True)
    actor_staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)
    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.JSON, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "event_type": self.event_type,
            "actor_staff_id": self.actor_staff_id,
            "note": self.note,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }
