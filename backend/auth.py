from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session
from typing import Optional

from database import get_db
from models import User
import config
import crud

# ------------------------------------------------------------------
# CALLER IDENTITY
# ------------------------------------------------------------------
# Login and sessions live in front of this service. Requests arrive with
# the caller's user id in X-User-Id, the same id the WebSocket handshake
# announces.


def get_current_user(
    x_user_id: Optional[int] = Header(default=None),
    db: Session = Depends(get_db),
):
    """
    Dependency resolving the calling user.
    Raises 401 when the header is missing or names an unknown / inactive user.
    """
    if x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    user = crud.get_user_by_id(db, x_user_id)

    if not user or not user.active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    return user


# ------------------------------------------------------------------
# PERMISSION CHECKING UTILITIES
# ------------------------------------------------------------------

def require_admin(user: User = Depends(get_current_user)):
    """
    Dependency for admin-only routes.
    """
    if (user.role or "").lower() != config.ROLE_ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized"
        )
    return user
