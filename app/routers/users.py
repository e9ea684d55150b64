"""
Users router: profile management.

Endpoints:
  GET  /users/me  → current user's full profile
  PUT  /users/me  → update name, phone, two-factor preference
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.core.dependencies import get_current_user
from app.core.exceptions import BadRequestException
from app.models.user import User
from app.schemas.user import UserOut, UserUpdateRequest

router = APIRouter()


@router.get("/me", response_model=UserOut)
def get_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.put("/me", response_model=UserOut)
def update_me(
    body: UserUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Update profile fields. Only provided fields are changed (PATCH-like behaviour
    even though this is a PUT — all fields in the request body are optional).
    """
    if body.name is not None:
        current_user.name = body.name

    if body.phone is not None:
        current_user.phone = body.phone or None

    if body.two_factor_enabled is not None:
        # Two-factor codes go to the email address, so only verified accounts qualify.
        if body.two_factor_enabled and not current_user.is_verified:
            raise BadRequestException("Verify your account before enabling two-factor login")
        current_user.two_factor_enabled = body.two_factor_enabled

    db.commit()
    db.refresh(current_user)
    return current_user
