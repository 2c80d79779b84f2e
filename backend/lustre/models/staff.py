from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z


ROLE_STAFF = "staff"
ROLE_MANAGER = "manager"
ROLE_OWNER = "owner"
ROLE_HIERARCHY = [ROLE_STAFF, ROLE_MANAGER, ROLE_OWNER]

BASIS_REVENUE = "revenue"
BASIS_PROFIT = "profit"
VALID_COMMISSION_BASES = (BASIS_REVENUE, BASIS_PROFIT)


class Staff(db.Model):
    """
    Staff member who rings up, edits and voids sales.

    Identity and role only. Login, password and session handling belong to
    the authentication collaborator; requests authenticate with a bearer
    token whose SHA-256 hash is stored here.
    """
    __tablename__ = "staff"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False, unique=True)
    full_name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    # staff < manager < owner
    role = db.Column(db.String(16), nullable=False, default=ROLE_STAFF, index=True)

    api_token_hash = db.Column(db.String(64), nullable=True, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def display_name(self) -> str:
        return self.full_name or self.username

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "full_name": self.full_name,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class CommissionOverride(db.Model):
    """
    Per-staff commission terms that supersede the store-wide defaults.

    Either field may be null, in which case the global value applies for
    that field only.
    """
    __tablename__ = "staff_commission_overrides"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=False, unique=True)
    commission_rate = db.Column(db.Numeric(5, 2), nullable=True)
    commission_basis = db.Column(db.String(16), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    staff = db.relationship("Staff", backref=db.backref("commission_override", uselist=False))

    def to_dict(self) -> dict:
        return {
            "staff_id": self.staff_id,
            "commission_rate": money_str(self.commission_rate),
            "commission_basis": self.commission_basis,
            "updated_at": to_utc_z(self.updated_at),
        }


class CommissionPayment(db.Model):
    """
    Commission paid to a staff member for a period (inclusive dates).

    The period figures are copied from the commission summary at payment
    time, so the row stays a faithful record of what the payment was based
    on even if later edits or voids change the sales. Append-only.
    """
    __tablename__ = "commission_payments"
    __table_args__ = (
        db.CheckConstraint("commission_amount > 0", name="ck_commission_payments_amount_positive"),
        db.CheckConstraint("period_end >= period_start", name="ck_commission_payments_period"),
        db.Index("ix_commission_payments_staff_period", "staff_id", "period_start", "period_end"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=False)
    period_start = db.Column(db.Date, nullable=False)
    period_end = db.Column(db.Date, nullable=False)

    sales_count = db.Column(db.Integer, nullable=False, default=0)
    revenue_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    profit_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    commission_rate = db.Column(db.Numeric(5, 2), nullable=False)
    commission_basis = db.Column(db.String(16), nullable=False)
    commission_amount = db.Column(db.Numeric(12, 2), nullable=False)

    payment_method = db.Column(db.String(32), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    paid_by = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=False)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    staff = db.relationship("Staff", foreign_keys=[staff_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "staff_id": self.staff_id,
            "staff_name": self.staff.display_name if self.staff is not None else None,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "sales_count": self.sales_count,
            "revenue_total": money_str(self.revenue_total),
            "profit_total": money_str(self.profit_total),
            "commission_rate": money_str(self.commission_rate),
            "commission_basis": self.commission_basis,
            "commission_amount": money_str(self.commission_amount),
            "payment_method": self.payment_method,
            "notes": self.notes,
            "paid_by": self.paid_by,
            "paid_at": to_utc_z(self.paid_at),
        }


class SecurityEvent(db.Model):
    """Denied capability checks. Append-only."""
    __tablename__ = "security_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True, index=True)
    event_type = db.Column(db.String(64), nullable=False, index=True)
    resource = db.Column(db.String(255), nullable=True)
    action = db.Column(db.String(64), nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "staff_id": self.staff_id,
            "event_type": self.event_type,
            "resource": self.resource,
            "action": self.action,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
        }
