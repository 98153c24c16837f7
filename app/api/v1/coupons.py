from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_active_user, require_admin
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.models.user import User
from app.schemas.coupon import CouponCreate, CouponUpdate, ValidateCouponRequest
from app.services.coupon_service import CouponService
from app.utils.response import error, success

router = APIRouter()


@router.post("/", response_model=dict, status_code=status.HTTP_201_CREATED)
def create_coupon(
    coupon_data: CouponCreate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Create a new coupon (admin only)."""
    coupon = CouponService.create_coupon(db, coupon_data, created_by=current_user.id)
    return success(data=coupon.model_dump(), message="Coupon created successfully")


@router.get("/", response_model=dict)
def list_coupons(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """List all coupons (admin only)."""
    coupons = CouponService.list_coupons(db, skip, limit)
    return success(data=[c.model_dump() for c in coupons], message="Coupons retrieved successfully")


@router.get("/active", response_model=dict)
def list_active_coupons(
    limit: int = Query(6, ge=1, le=20),
    db: Session = Depends(get_db),
):
    """Offers shown on the storefront."""
    coupons = CouponService.list_active_coupons(db, limit=limit)
    return success(data=[c.model_dump() for c in coupons])


@router.post("/validate", response_model=dict)
@limiter.limit("30/minute")
def validate_coupon(
    request: Request,
    payload: ValidateCouponRequest,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    """Preview a coupon against the cart subtotal. Nothing is redeemed."""
    result = CouponService.validate_coupon(db, payload.code, payload.subtotal, current_user.id)
    if not result.valid:
        return error(
            message=result.message,
            errors=[{"code": result.reason or "CODE_REQUIRED"}],
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    return success(data=result.model_dump(), message=result.message)


@router.get("/{coupon_id}", response_model=dict)
def get_coupon(
    coupon_id: int,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Get a coupon by ID (admin only)."""
    coupon = CouponService.get_coupon(db, coupon_id)
    return success(data=coupon.model_dump(), message="Coupon retrieved successfully")


@router.put("/{coupon_id}", response_model=dict)
def update_coupon(
    coupon_id: int,
    coupon_data: CouponUpdate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Update a coupon (admin only)."""
    coupon = CouponService.update_coupon(db, coupon_id, coupon_data)
    return success(data=coupon.model_dump(), message="Coupon updated successfully")


@router.delete("/{coupon_id}", response_model=dict)
def delete_coupon(
    coupon_id: int,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Delete a coupon (admin only)."""
    CouponService.delete_coupon(db, coupon_id)
    return success(message="Coupon deleted successfully")
