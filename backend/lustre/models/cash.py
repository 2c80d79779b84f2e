from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z


CASH_SALE_IN = "sale_cash_in"
CASH_VOID_REFUND = "sale_void_refund"
CASH_WITHDRAWAL = "withdrawal"
CASH_DEPOSIT = "deposit"
CASH_FLOAT_SET = "float_set"
CASH_ADJUSTMENT = "adjustment"

VALID_CASH_MOVEMENT_TYPES = (
    CASH_SALE_IN,
    CASH_VOID_REFUND,
    CASH_WITHDRAWAL,
    CASH_DEPOSIT,
    CASH_FLOAT_SET,
    CASH_ADJUSTMENT,
)


class Location(db.Model):
    """Shop or counter holding a cash drawer."""
    __tablename__ = "locations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "is_active": self.is_active}


class CashDrawerMovement(db.Model):
    """
    Signed cash drawer movement. The drawer balance is the sum of amounts.

    EVENT TYPES:
    - sale_cash_in: net cash taken for a cash sale
    - sale_void_refund: cash handed back when a cash sale is voided
    - withdrawal / deposit / float_set / adjustment: manual movements
    """
    __tablename__ = "cash_drawer_movements"
    __table_args__ = (
        db.Index("ix_cash_movements_location_created", "location_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    movement_type = db.Column(db.String(32), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    reference_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    notes = db.Column(db.String(255), nullable=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    location = db.relationship("Location", backref=db.backref("cash_movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "location_id": self.location_id,
            "movement_type": self.movement_type,
            "amount": money_str(self.amount),
            "reference_sale_id": self.reference_sale_id,
            "notes": self.notes,
            "staff_id": self.staff_id,
            "created_at": to_utc_z(self.created_at),
        }
