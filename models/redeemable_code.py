from datetime import datetime
from enum import Enum

from models.db import db


class CodeType(str, Enum):
    REFERRAL = "referral"
    PRIZE = "prize"


class CodeEffect(str, Enum):
    DISCOUNT_PERCENTAGE = "discount_percentage"
    FREE_ITEM = "free_item"
    FREE_CONSULTATION = "free_consultation"


class RedemptionContext(str, Enum):
    CONSULTATION = "consultation"
    CHECKOUT = "checkout"


class RedeemableCode(db.Model):
    __tablename__ = "redeemable_codes"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(40), nullable=False, unique=True, index=True)

    owner_identity = db.Column(db.String(255), nullable=False, index=True)
    code_type = db.Column(db.String(20), nullable=False)
    effect = db.Column(db.String(30), nullable=False)
    effect_value = db.Column(db.Integer, nullable=True)    # percentage for discount codes
    effect_item = db.Column(db.String(160), nullable=True)  # line item name for free_item codes
    label = db.Column(db.String(120), nullable=True)
    # What minted the code ("booking:<id>", "spin-wheel"); one code per owner and source
    source_key = db.Column(db.String(80), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=True)

    active = db.Column(db.Boolean, default=True, nullable=False)
    used_by = db.Column(db.String(255), nullable=True)
    used_at = db.Column(db.DateTime, nullable=True)
    used_for = db.Column(db.String(20), nullable=True)

    __table_args__ = (
        db.UniqueConstraint("owner_identity", "source_key", name="uq_code_owner_source"),
    )

    def effect_dict(self) -> dict:
        return {
            "type": self.effect,
            "value": self.effect_value,
            "item": self.effect_item,
            "label": self.label,
        }

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "ownerIdentity": self.owner_identity,
            "type": self.code_type,
            "effect": self.effect_dict(),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "usedBy": [self.used_by] if self.used_by else [],
            "usedAt": self.used_at.isoformat() if self.used_at else None,
            "active": self.active,
        }
