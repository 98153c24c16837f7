from sqlalchemy.orm import Session
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
import structlog

from app.core.exceptions import CouponIneligible, CouponNotFound, ValidationError
from app.models.coupon import Coupon, CouponUserUsage, DiscountType
from app.schemas.coupon import (
    ActiveCouponResponse,
    CouponCreate,
    CouponResponse,
    CouponUpdate,
    ValidateCouponResponse,
)
from app.services.coupon_rules import (
    REASON_MESSAGES,
    EligibilityReason,
    compute_discount,
    validate_eligibility,
)
from app.services.pricing import from_cents, to_cents

logger = structlog.get_logger()


REQUIRED_FIELDS = {"code", "label", "discount_type", "discount_value", "min_order_amount", "active", "per_user_limit"}


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


class CouponService:

    @staticmethod
    def _get_or_404(db: Session, coupon_id: int) -> Coupon:
        coupon = db.query(Coupon).filter(Coupon.id == coupon_id).first()
        if not coupon:
            raise CouponNotFound()
        return coupon

    @staticmethod
    def _check_percentage(discount_type, discount_value) -> None:
        if discount_type == DiscountType.PERCENTAGE and Decimal(str(discount_value)) > 100:
            raise ValidationError("INVALID_DISCOUNT", "Percentage discount cannot exceed 100%")

    @staticmethod
    def get_by_code(db: Session, code: Optional[str]) -> Optional[Coupon]:
        normalized = normalize_code(code)
        if not normalized:
            return None
        return db.query(Coupon).filter(Coupon.code == normalized).first()

    @staticmethod
    def create_coupon(db: Session, coupon_data: CouponCreate, created_by: Optional[int] = None) -> CouponResponse:
        """Create a new coupon (admin only)."""
        existing = db.query(Coupon).filter(Coupon.code == coupon_data.code).first()
        if existing:
            raise ValidationError("DUPLICATE_CODE", "Coupon code already exists")

        CouponService._check_percentage(coupon_data.discount_type, coupon_data.discount_value)

        coupon = Coupon(**coupon_data.model_dump(), usage_count=0, created_by=created_by)
        db.add(coupon)
        db.commit()
        db.refresh(coupon)

        logger.info("coupon_created", coupon_id=coupon.id, code=coupon.code, created_by=created_by)
        return CouponResponse.model_validate(coupon)

    @staticmethod
    def update_coupon(db: Session, coupon_id: int, coupon_data: CouponUpdate) -> CouponResponse:
        """Partial update (admin only). Usage counters are never edited here."""
        update_data = coupon_data.model_dump(exclude_unset=True)
        if not update_data:
            raise ValidationError("NO_UPDATES", "No updates provided")

        coupon = CouponService._get_or_404(db, coupon_id)

        new_code = update_data.get("code")
        if new_code and new_code != coupon.code:
            clash = db.query(Coupon).filter(Coupon.code == new_code, Coupon.id != coupon.id).first()
            if clash:
                raise ValidationError("DUPLICATE_CODE", "Coupon code already exists")

        for key, value in update_data.items():
            if key in REQUIRED_FIELDS and value is None:
                continue
            setattr(coupon, key, value)

        CouponService._check_percentage(coupon.discount_type, coupon.discount_value)
        if coupon.start_date and coupon.end_date and coupon.end_date < coupon.start_date:
            raise ValidationError("INVALID_WINDOW", "End date must be after the start date")

        db.commit()
        db.refresh(coupon)

        logger.info("coupon_updated", coupon_id=coupon.id, fields=sorted(update_data))
        return CouponResponse.model_validate(coupon)

    @staticmethod
    def delete_coupon(db: Session, coupon_id: int):
        """Delete a coupon (admin only). Orders keep their coupon snapshot."""
        coupon = CouponService._get_or_404(db, coupon_id)
        code = coupon.code
        db.delete(coupon)
        db.commit()
        logger.info("coupon_deleted", coupon_id=coupon_id, code=code)

    @staticmethod
    def get_coupon(db: Session, coupon_id: int) -> CouponResponse:
        return CouponResponse.model_validate(CouponService._get_or_404(db, coupon_id))

    @staticmethod
    def list_coupons(db: Session, skip: int = 0, limit: int = 100) -> List[CouponResponse]:
        """List all coupons, newest first."""
        coupons = (
            db.query(Coupon)
            .order_by(Coupon.created_at.desc(), Coupon.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return [CouponResponse.model_validate(coupon) for coupon in coupons]

    @staticmethod
    def validate_coupon(
        db: Session,
        code: Optional[str],
        subtotal,
        user_id: Optional[int] = None,
    ) -> ValidateCouponResponse:
        """Preview a coupon against a cart subtotal without redeeming it."""
        normalized = normalize_code(code)
        if not normalized:
            return ValidateCouponResponse(valid=False, message="Enter a coupon code")

        coupon = CouponService.get_by_code(db, normalized)
        result = validate_eligibility(coupon, subtotal, user_id)
        if not result.valid:
            return ValidateCouponResponse(valid=False, message=result.message, reason=result.reason.value)

        discount = from_cents(to_cents(compute_discount(coupon, subtotal)))
        return ValidateCouponResponse(
            valid=True,
            message=result.message,
            discount_amount=float(discount),
            coupon=CouponResponse.model_validate(coupon),
        )

    @staticmethod
    def list_active_coupons(db: Session, limit: int = 6) -> List[ActiveCouponResponse]:
        """Coupons a customer could apply right now."""
        now = datetime.utcnow()
        coupons = (
            db.query(Coupon)
            .filter(
                Coupon.active.is_(True),
                or_(Coupon.start_date.is_(None), Coupon.start_date <= now),
                or_(Coupon.end_date.is_(None), Coupon.end_date >= now),
                or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
            )
            .order_by(Coupon.created_at.desc(), Coupon.id.desc())
            .limit(limit)
            .all()
        )

        return [
            ActiveCouponResponse(
                code=coupon.code,
                label=coupon.label,
                description=coupon.description or "",
                discount_type=coupon.discount_type,
                discount_value=float(coupon.discount_value),
                min_order_amount=float(coupon.min_order_amount or 0),
                max_discount_value=float(coupon.max_discount_value) if coupon.max_discount_value is not None else None,
                end_date=coupon.end_date,
                remaining_redemptions=(
                    max(coupon.usage_limit - (coupon.usage_count or 0), 0)
                    if coupon.usage_limit is not None
                    else None
                ),
            )
            for coupon in coupons
        ]

    @staticmethod
    def redeem(db: Session, coupon_code: str, user_id: int) -> Coupon:
        """Increment the global and per-user counters inside the caller's transaction.

        Both increments are conditional UPDATEs, so two checkouts that passed
        eligibility against the last remaining use cannot both succeed. On
        rejection the global increment is reversed before ``CouponIneligible``
        is raised; nothing is committed here.
        """
        # Pending order rows must hit the database first so the expire below
        # cannot discard them.
        db.flush()

        coupon = CouponService.get_by_code(db, coupon_code)
        if coupon is None:
            raise CouponIneligible(EligibilityReason.NOT_FOUND, REASON_MESSAGES[EligibilityReason.NOT_FOUND])

        claimed = (
            db.query(Coupon)
            .filter(
                Coupon.id == coupon.id,
                or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
            )
            .update({Coupon.usage_count: Coupon.usage_count + 1}, synchronize_session=False)
        )
        if claimed != 1:
            db.expire_all()
            raise CouponIneligible(
                EligibilityReason.GLOBAL_LIMIT_REACHED,
                REASON_MESSAGES[EligibilityReason.GLOBAL_LIMIT_REACHED],
            )

        has_row = (
            db.query(CouponUserUsage.id)
            .filter(CouponUserUsage.coupon_id == coupon.id, CouponUserUsage.user_id == user_id)
            .first()
        )
        if not has_row:
            try:
                with db.begin_nested():
                    db.add(CouponUserUsage(coupon_id=coupon.id, user_id=user_id, count=0))
            except IntegrityError:
                # Another checkout created the row first; its count is what matters.
                logger.info("coupon_usage_row_exists", coupon_id=coupon.id, user_id=user_id)

        per_user_limit = select(Coupon.per_user_limit).where(Coupon.id == coupon.id).scalar_subquery()
        claimed_for_user = (
            db.query(CouponUserUsage)
            .filter(
                CouponUserUsage.coupon_id == coupon.id,
                CouponUserUsage.user_id == user_id,
                CouponUserUsage.count < per_user_limit,
            )
            .update({CouponUserUsage.count: CouponUserUsage.count + 1}, synchronize_session=False)
        )
        if claimed_for_user != 1:
            db.query(Coupon).filter(Coupon.id == coupon.id, Coupon.usage_count > 0).update(
                {Coupon.usage_count: Coupon.usage_count - 1}, synchronize_session=False
            )
            db.expire_all()
            raise CouponIneligible(
                EligibilityReason.PER_USER_LIMIT_REACHED,
                REASON_MESSAGES[EligibilityReason.PER_USER_LIMIT_REACHED],
            )

        db.expire_all()
        logger.info("coupon_redeemed", coupon_id=coupon.id, code=coupon.code, user_id=user_id)
        return coupon

    @staticmethod
    def release(db: Session, coupon_code: str, user_id: int) -> bool:
        """Reverse one redemption. Counters never go below zero.

        Returns False when the coupon no longer exists.
        """
        db.flush()

        coupon = CouponService.get_by_code(db, coupon_code)
        if coupon is None:
            logger.warning("coupon_release_skipped", code=normalize_code(coupon_code), reason="coupon_missing")
            return False

        db.query(Coupon).filter(Coupon.id == coupon.id, Coupon.usage_count > 0).update(
            {Coupon.usage_count: Coupon.usage_count - 1}, synchronize_session=False
        )
        db.query(CouponUserUsage).filter(
            CouponUserUsage.coupon_id == coupon.id,
            CouponUserUsage.user_id == user_id,
            CouponUserUsage.count > 0,
        ).update({CouponUserUsage.count: CouponUserUsage.count - 1}, synchronize_session=False)

        db.expire_all()
        logger.info("coupon_released", coupon_id=coupon.id, code=coupon.code, user_id=user_id)
        return True
