from __future__ import annotations

import logging
import random
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError

from engine.errors import (
    AlreadyUsed,
    CodeGenerationExhausted,
    CodeRejected,
    NotFound,
    ValidationError,
)
from engine.events import EngineEvent
from models import db
from models.redeemable_code import CodeEffect, CodeType, RedeemableCode, RedemptionContext
from utils.clock import utcnow

logger = logging.getLogger(__name__)

SPIN_SOURCE_KEY = "spin-wheel"
_PRIZE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

REASON_MESSAGES = {
    "not_found": "Invalid code",
    "inactive": "This code is no longer active",
    "expired": "This code has expired",
    "wrong_context": "This code cannot be used here",
    "self_use": "You cannot redeem your own referral code",
    "owner_mismatch": "This code was issued to a different email address",
    "already_used": "This code has already been used",
    "already_spun": "This email has already spun the wheel",
}


def normalize_code(value) -> str:
    return (value or "").strip().upper()


def normalize_identity(value) -> str:
    return (value or "").strip().lower()


def referral_code() -> str:
    return f"REF-{secrets.token_hex(4).upper()}"


def prize_code() -> str:
    return "SPIN" + "".join(secrets.choice(_PRIZE_ALPHABET) for _ in range(6))


def parse_context(value) -> RedemptionContext:
    if isinstance(value, RedemptionContext):
        return value
    try:
        return RedemptionContext((value or "").strip().lower())
    except ValueError:
        raise ValidationError("context must be consultation or checkout", field="context")


def parse_effect(value) -> CodeEffect:
    if isinstance(value, CodeEffect):
        return value
    try:
        return CodeEffect((value or "").strip().lower())
    except ValueError:
        raise ValidationError(
            "effect must be discount_percentage, free_item or free_consultation",
            field="effect",
        )


def parse_code_type(value) -> CodeType:
    if isinstance(value, CodeType):
        return value
    try:
        return CodeType((value or "").strip().lower())
    except ValueError:
        raise ValidationError("type must be referral or prize", field="type")


@dataclass(frozen=True)
class CodeValidation:
    valid: bool
    reason: Optional[str] = None
    code: Optional[RedeemableCode] = None

    def to_dict(self) -> dict:
        out = {"valid": self.valid}
        if self.valid:
            out["effect"] = self.code.effect_dict()
            out["expiresAt"] = self.code.expires_at.isoformat() if self.code.expires_at else None
        else:
            out["reason"] = self.reason
            out["error"] = REASON_MESSAGES.get(self.reason, self.reason)
        return out


def _check(record: Optional[RedeemableCode], redeemer: str, context: RedemptionContext, now: datetime) -> CodeValidation:
    # Order matters: callers show the first failing reason
    if record is None:
        return CodeValidation(False, "not_found")
    if not record.active:
        return CodeValidation(False, "already_used" if record.used_by else "inactive", record)
    if record.expires_at is not None and now > record.expires_at:
        return CodeValidation(False, "expired", record)

    is_consultation_code = record.effect == CodeEffect.FREE_CONSULTATION.value
    if (context is RedemptionContext.CONSULTATION) != is_consultation_code:
        return CodeValidation(False, "wrong_context", record)

    if record.code_type == CodeType.REFERRAL.value and redeemer == record.owner_identity:
        return CodeValidation(False, "self_use", record)
    if record.code_type == CodeType.PRIZE.value and redeemer != record.owner_identity:
        return CodeValidation(False, "owner_mismatch", record)

    if record.used_by:
        return CodeValidation(False, "already_used", record)
    return CodeValidation(True, None, record)


def _rejection(check: CodeValidation) -> CodeRejected:
    if check.reason == "already_used":
        return AlreadyUsed()
    return CodeRejected(check.reason, REASON_MESSAGES.get(check.reason))


class CodeRegistry:
    """Single-use referral and prize codes."""

    def __init__(self, max_attempts: int = 10, generators: Optional[dict] = None):
        self.max_attempts = max(1, max_attempts)
        self.generators = {CodeType.REFERRAL: referral_code, CodeType.PRIZE: prize_code}
        if generators:
            self.generators.update(generators)

    def get(self, code: str) -> Optional[RedeemableCode]:
        stmt = select(RedeemableCode).where(RedeemableCode.code == normalize_code(code))
        return db.session.execute(stmt).scalars().first()

    def find_by_source(self, owner_identity: str, source_key: str) -> Optional[RedeemableCode]:
        stmt = select(RedeemableCode).where(
            RedeemableCode.owner_identity == normalize_identity(owner_identity),
            RedeemableCode.source_key == source_key,
        )
        return db.session.execute(stmt).scalars().first()

    def issue(
        self,
        owner_identity: str,
        code_type,
        effect,
        value: Optional[int] = None,
        item: Optional[str] = None,
        label: Optional[str] = None,
        ttl: Optional[timedelta] = None,
        source_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> tuple[RedeemableCode, bool]:
        """
        Mint a new code; returns (code, created).

        With a ``source_key`` issuance is idempotent per owner: a second call for
        the same source returns the code minted the first time.
        """
        owner = normalize_identity(owner_identity)
        if not owner:
            raise ValidationError("ownerIdentity is required", field="ownerIdentity")
        code_type = parse_code_type(code_type)
        effect = parse_effect(effect)
        if effect is CodeEffect.DISCOUNT_PERCENTAGE and not (value and 0 < int(value) <= 100):
            raise ValidationError("discount codes need a percentage between 1 and 100", field="value")
        if effect is CodeEffect.FREE_ITEM and not (item or "").strip():
            raise ValidationError("free_item codes need an item name", field="item")

        now = now or utcnow()
        if source_key:
            existing = self.find_by_source(owner, source_key)
            if existing is not None:
                return existing, False

        generate: Callable[[], str] = self.generators[code_type]
        for attempt in range(1, self.max_attempts + 1):
            candidate = normalize_code(generate())
            if self.get(candidate) is not None:
                logger.info("generated code collided (attempt %d)", attempt)
                continue

            record = RedeemableCode(
                code=candidate,
                owner_identity=owner,
                code_type=code_type.value,
                effect=effect.value,
                effect_value=int(value) if value is not None else None,
                effect_item=(item or "").strip() or None,
                label=label,
                source_key=source_key,
                created_at=now,
                expires_at=now + ttl if ttl else None,
                active=True,
            )
            db.session.add(record)
            try:
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
                if source_key:
                    existing = self.find_by_source(owner, source_key)
                    if existing is not None:
                        return existing, False
                logger.info("code insert collided (attempt %d)", attempt)
                continue
            return record, True

        raise CodeGenerationExhausted(
            f"Could not generate a unique code after {self.max_attempts} attempts"
        )

    def validate(self, code: str, redeemer_identity: str, context, now: Optional[datetime] = None) -> CodeValidation:
        redeemer = normalize_identity(redeemer_identity)
        if not redeemer:
            raise ValidationError("redeemerIdentity is required", field="redeemerIdentity")
        return _check(self.get(code), redeemer, parse_context(context), now or utcnow())

    def redeem(
        self,
        code: str,
        redeemer_identity: str,
        context,
        now: Optional[datetime] = None,
        commit: bool = True,
    ) -> tuple[dict, list]:
        """
        Validate and mark a code used in one conditional UPDATE.

        Only the request whose UPDATE matches the still-unused row succeeds;
        everyone else re-reads the row to report why. Returns (effect, events).
        With ``commit=False`` the UPDATE joins the caller's transaction.
        """
        now = now or utcnow()
        context = parse_context(context)
        redeemer = normalize_identity(redeemer_identity)

        check = self.validate(code, redeemer, context, now)
        if check.code is None:
            raise NotFound(REASON_MESSAGES["not_found"], code=normalize_code(code))
        if not check.valid:
            raise _rejection(check)

        record = check.code
        stmt = (
            update(RedeemableCode)
            .where(
                RedeemableCode.id == record.id,
                RedeemableCode.active.is_(True),
                RedeemableCode.used_by.is_(None),
                or_(RedeemableCode.expires_at.is_(None), RedeemableCode.expires_at >= now),
            )
            .values(active=False, used_by=redeemer, used_at=now, used_for=context.value)
            .execution_options(synchronize_session=False)
        )
        matched = db.session.execute(stmt).rowcount

        if matched != 1:
            if commit:
                db.session.rollback()
            db.session.expire(record)
            again = _check(db.session.get(RedeemableCode, record.id), redeemer, context, now)
            logger.info("code %s lost redemption race: %s", record.code, again.reason)
            raise _rejection(again) if not again.valid else AlreadyUsed()

        if commit:
            db.session.commit()
        db.session.expire(record)

        effect = record.effect_dict()
        effect["code"] = record.code
        effect["source"] = record.code_type
        events = [EngineEvent("code_redeemed", record.code, {
            "code": record.code,
            "redeemer": redeemer,
            "context": context.value,
        })]
        return effect, events

    def spin(self, identity: str, prizes, ttl_days: int, rng: Optional[random.Random] = None,
             now: Optional[datetime] = None) -> RedeemableCode:
        """Spin the prize wheel once per identity and issue the won prize as a code."""
        owner = normalize_identity(identity)
        if "@" not in owner:
            raise ValidationError("A valid email is required", field="email")
        if self.find_by_source(owner, SPIN_SOURCE_KEY) is not None:
            raise CodeRejected("already_spun", REASON_MESSAGES["already_spun"])

        enabled = [p for p in prizes if p.get("enabled", True) and p.get("weight", 0) > 0]
        if not enabled:
            raise ValidationError("No prizes available")
        prize = (rng or random.Random()).choices(enabled, weights=[p["weight"] for p in enabled], k=1)[0]

        record, created = self.issue(
            owner,
            CodeType.PRIZE,
            prize["effect"],
            value=prize.get("value"),
            item=prize.get("item"),
            label=prize.get("label"),
            ttl=timedelta(days=ttl_days),
            source_key=SPIN_SOURCE_KEY,
            now=now,
        )
        if not created:
            raise CodeRejected("already_spun", REASON_MESSAGES["already_spun"])
        return record
