from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class StoreSetting(db.Model):
    """
    Key-value store settings (e.g. commission.default_rate).

    Values are JSON so numbers and booleans keep their type.
    """
    __tablename__ = "store_settings"
    __table_args__ = (
        db.UniqueConstraint("key", name="uq_store_settings_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), nullable=False)
    value_json = db.Column(db.JSON, nullable=True)

    updated_by = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "value": self.value_json,
            "updated_by": self.updated_by,
            "updated_at": to_utc_z(self.updated_at),
        }
