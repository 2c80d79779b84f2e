# Overview: Store settings lookup (setting row -> app config default).

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from flask import current_app

from ..extensions import db
from ..models import StoreSetting
from ..models.staff import VALID_COMMISSION_BASES
from ..money import HUNDRED, ZERO, to_decimal
from ..time_utils import utcnow
from ..validation import ValidationError


KEY_COMMISSION_ENABLED = "commission.enabled"
KEY_COMMISSION_DEFAULT_RATE = "commission.default_rate"
KEY_COMMISSION_BASIS = "commission.basis"

# setting key -> app config key holding the default
CONFIG_DEFAULTS = {
    KEY_COMMISSION_ENABLED: "COMMISSION_ENABLED",
    KEY_COMMISSION_DEFAULT_RATE: "COMMISSION_DEFAULT_RATE",
    KEY_COMMISSION_BASIS: "COMMISSION_BASIS",
}


@dataclass(frozen=True)
class CommissionSettings:
    enabled: bool
    default_rate: Decimal
    basis: str

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "default_rate": str(self.default_rate),
            "basis": self.basis,
        }


def get_setting(key: str, default: Any = None) -> Any:
    row = db.session.query(StoreSetting).filter_by(key=key).first()
    if row is not None and row.value_json is not None:
        return row.value_json
    config_key = CONFIG_DEFAULTS.get(key)
    if config_key is not None:
        return current_app.config.get(config_key, default)
    return default


def _validate(key: str, value: Any) -> Any:
    if key == KEY_COMMISSION_ENABLED:
        if not isinstance(value, bool):
            raise ValidationError("Invalid setting", fields={key: "must be true or false"})
        return value
    if key == KEY_COMMISSION_DEFAULT_RATE:
        try:
            rate = to_decimal(value)
        except ValueError:
            raise ValidationError("Invalid setting", fields={key: "must be a number"})
        if isinstance(value, bool) or not rate.is_finite() or rate < ZERO or rate > HUNDRED:
            raise ValidationError("Invalid setting", fields={key: "must be between 0 and 100"})
        return str(rate)
    if key == KEY_COMMISSION_BASIS:
        if value not in VALID_COMMISSION_BASES:
            raise ValidationError("Invalid setting", fields={key: f"must be one of: {', '.join(VALID_COMMISSION_BASES)}"})
        return value
    return value


def set_setting(key: str, value: Any, *, actor_staff_id: int | None = None) -> StoreSetting:
    """Upsert a setting row. Commits."""
    value = _validate(key, value)
    row = db.session.query(StoreSetting).filter_by(key=key).first()
    if row is None:
        row = StoreSetting(key=key)
        db.session.add(row)
    row.value_json = value
    row.updated_by = actor_staff_id
    row.updated_at = utcnow()
    db.session.commit()
    return row


def get_commission_settings() -> CommissionSettings:
    enabled = get_setting(KEY_COMMISSION_ENABLED, True)
    rate = get_setting(KEY_COMMISSION_DEFAULT_RATE, "5")
    basis = get_setting(KEY_COMMISSION_BASIS, "revenue")
    if basis not in VALID_COMMISSION_BASES:
        basis = VALID_COMMISSION_BASES[0]
    return CommissionSettings(enabled=bool(enabled), default_rate=to_decimal(rate), basis=basis)
