from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z


MOVEMENT_RECEIVE = "receive"
MOVEMENT_SALE = "sale"
MOVEMENT_SALE_EDIT = "sale_edit"
MOVEMENT_SALE_VOID = "sale_void"
MOVEMENT_ADJUSTMENT = "adjustment"

SALE_MOVEMENT_TYPES = (MOVEMENT_SALE, MOVEMENT_SALE_EDIT, MOVEMENT_SALE_VOID)


class Supplier(db.Model):
    """Supplier or consignor. Only what the settlement linker needs."""
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    contact = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "contact": self.contact}


class Product(db.Model):
    """
    Catalog product as consumed by the sale engine.

    quantity_on_hand is the Stock Ledger's authoritative balance. It is only
    ever changed by stock_service through a conditional UPDATE, and every
    change is mirrored by a StockMovement row so the balance can be
    re-derived from the movement history.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.CheckConstraint("quantity_on_hand >= 0", name="ck_products_on_hand_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)

    unit_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    unit_cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    # Services and made-to-order pieces are sold without stock tracking
    track_stock = db.Column(db.Boolean, nullable=False, default=True)
    quantity_on_hand = db.Column(db.Integer, nullable=False, default=0)
    reorder_level = db.Column(db.Integer, nullable=True)

    is_consignment = db.Column(db.Boolean, nullable=False, default=False)
    consignment_supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    consignment_supplier = db.relationship("Supplier", backref=db.backref("consigned_products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "unit_price": money_str(self.unit_price),
            "unit_cost": money_str(self.unit_cost),
            "tax_rate": money_str(self.tax_rate),
            "track_stock": self.track_stock,
            "quantity_on_hand": self.quantity_on_hand,
            "reorder_level": self.reorder_level,
            "is_consignment": self.is_consignment,
            "consignment_supplier_id": self.consignment_supplier_id,
            "is_active": self.is_active,
        }


class StockMovement(db.Model):
    """
    Append-only stock movement ledger.

    quantity_delta is signed: sales are negative, restores positive.
    Movements written by the sale engine carry sale_id so the net effect of
    a sale on a product can be summed back.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        db.Index("ix_stock_movements_sale_product", "sale_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    movement_type = db.Column(db.String(32), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Numeric(12, 2), nullable=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "unit_cost": money_str(self.unit_cost),
            "sale_id": self.sale_id,
            "staff_id": self.staff_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
