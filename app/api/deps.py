import structlog
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.core.security import decode_access_token
from app.db.session import get_db
from app.models.user import User, UserRole

logger = structlog.get_logger()


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    """Get current authenticated user from cookie or bearer token."""
    token = None

    if request.cookies.get("access_token"):
        token = request.cookies.get("access_token")
    elif request.headers.get("Authorization"):
        auth_header = request.headers.get("Authorization")
        if auth_header.startswith("Bearer "):
            token = auth_header.split(" ", 1)[1]
    elif request.headers.get("token"):
        # Header used by the storefront and admin panel clients.
        token = request.headers.get("token")

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    user_id = decode_access_token(token)
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )

    return user


def get_current_active_user(
    current_user: User = Depends(get_current_user),
) -> User:
    return current_user


def is_admin(user: User) -> bool:
    return user is not None and user.role == UserRole.ADMIN


def require_admin(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> User:
    action_name = f"{request.method} {request.url.path}"

    if not is_admin(current_user):
        logger.warning("admin_access_denied", action=action_name, user_id=current_user.id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )

    logger.info("admin_action", action=action_name, admin_user_id=current_user.id)
    return current_user
