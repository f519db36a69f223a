from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.core.exceptions import AuthenticationError, ValidationError
from app.core.permissions import resolve_permissions
from app.core.security import (
    PASSWORD_RESET,
    REFRESH,
    create_access_token,
    create_password_reset_token,
    create_refresh_token,
    decode_token,
    get_current_user,
    hash_password,
    refresh_token_ttl,
    verify_password,
)
from app.config import settings
from app.database import get_db
from app.models import User, UserSession
from app.models.base import as_utc, utcnow
from app.schemas.auth import (
    LoginRequest,
    LogoutRequest,
    PasswordResetComplete,
    PasswordResetRequest,
    RefreshRequest,
    RegisterRequest,
)
from app.schemas.user import ProfileUpdate, serialize_user
from app.services.roles import grant_role

logger = logging.getLogger(__name__)

router = APIRouter()

RESET_REQUESTED_MESSAGE = "If your email is registered, you will receive a password reset link"


def _issue_tokens(db: Session, user: User, request: Request | None = None) -> dict[str, str]:
    refresh_token = create_refresh_token(user.id)
    db.add(
        UserSession(
            user_id=user.id,
            refresh_token=refresh_token,
            expires_at=utcnow() + refresh_token_ttl(),
            user_agent=request.headers.get("user-agent") if request else None,
            ip_address=request.client.host if request and request.client else None,
        )
    )
    return {
        "access_token": create_access_token(user.id),
        "refresh_token": refresh_token,
        "token_type": "bearer",
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterRequest, request: Request, db: Session = Depends(get_db)) -> dict[str, Any]:
    if db.query(User.id).filter(User.email == payload.email).first():
        raise ValidationError("User already exists with this email")
    user = User(
        email=payload.email,
        password_hash=hash_password(payload.password),
        first_name=payload.first_name,
        last_name=payload.last_name,
        company_name=payload.company_name,
        status="active",
    )
    db.add(user)
    db.flush()
    grant_role(db, user.id, settings.default_role)
    tokens = _issue_tokens(db, user, request)
    db.commit()
    db.refresh(user)
    logger.info("Registered user %s", user.id)
    return {"user": serialize_user(user, resolve_permissions(db, user.id)), **tokens}


@router.post("/login")
async def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)) -> dict[str, Any]:
    user = db.query(User).filter(User.email == payload.email).first()
    if user is None or not verify_password(payload.password, user.password_hash):
        raise ValidationError("Invalid credentials")
    if not user.is_active:
        raise AuthenticationError("User account is not active")
    user.last_login_at = utcnow()
    tokens = _issue_tokens(db, user, request)
    db.commit()
    db.refresh(user)
    return {"user": serialize_user(user, resolve_permissions(db, user.id)), **tokens}


@router.post("/refresh")
async def refresh(payload: RefreshRequest, request: Request, db: Session = Depends(get_db)) -> dict[str, str]:
    claims = decode_token(payload.refresh_token, expected_type=REFRESH)
    session = db.query(UserSession).filter(UserSession.refresh_token == payload.refresh_token).first()
    if session is None or session.user_id != claims["sub"]:
        raise AuthenticationError("Invalid or expired refresh token")
    if as_utc(session.expires_at) <= utcnow():
        db.delete(session)
        db.commit()
        raise AuthenticationError("Invalid or expired refresh token")
    user = db.get(User, session.user_id)
    if user is None or not user.is_active:
        raise AuthenticationError("User not found")

    db.delete(session)
    tokens = _issue_tokens(db, user, request)
    db.commit()
    return tokens


@router.post("/logout")
async def logout(payload: LogoutRequest, db: Session = Depends(get_db)) -> dict[str, str]:
    if payload.refresh_token:
        db.query(UserSession).filter(UserSession.refresh_token == payload.refresh_token).delete()
        db.commit()
    return {"message": "Logged out successfully"}


@router.get("/me")
async def me(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> dict[str, Any]:
    return {"user": serialize_user(user, resolve_permissions(db, user.id))}


@router.put("/me")
async def update_me(
    payload: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(user, key, value)
    db.commit()
    db.refresh(user)
    return {"user": serialize_user(user, resolve_permissions(db, user.id))}


@router.post("/password/reset")
async def request_password_reset(payload: PasswordResetRequest, db: Session = Depends(get_db)) -> dict[str, str]:
    user = db.query(User).filter(User.email == payload.email.strip().lower()).first()
    if user is not None:
        user.password_reset_token = create_password_reset_token(user.id)
        user.password_reset_expires = utcnow() + timedelta(minutes=settings.password_reset_ttl_minutes)
        db.commit()
        logger.info("Password reset requested for user %s", user.id)
    return {"message": RESET_REQUESTED_MESSAGE}


@router.put("/password/reset")
async def complete_password_reset(payload: PasswordResetComplete, db: Session = Depends(get_db)) -> dict[str, str]:
    try:
        claims = decode_token(payload.token, expected_type=PASSWORD_RESET)
    except AuthenticationError:
        raise ValidationError("Invalid or expired reset token")
    user = db.get(User, claims["sub"])
    expires = as_utc(user.password_reset_expires) if user else None
    if user is None or user.password_reset_token != payload.token or expires is None or expires <= utcnow():
        raise ValidationError("Invalid or expired reset token")

    user.password_hash = hash_password(payload.new_password)
    user.password_reset_token = None
    user.password_reset_expires = None
    db.query(UserSession).filter(UserSession.user_id == user.id).delete()
    db.commit()
    return {"message": "Password has been reset successfully"}
