from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session, selectinload

from app.config import settings
from app.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from app.core.permissions import has_permission, require_permission, resolve_permissions
from app.core.security import get_current_user, hash_password, verify_password
from app.database import get_db
from app.models import Permission, Role, RolePermission, User, UserRole, UserSession
from app.schemas.subscription import serialize_subscription
from app.schemas.user import AdminPasswordReset, PasswordChange, UserCreate, UserUpdate, serialize_user
from app.services.roles import grant_role, replace_roles
from app.services.subscription_lifecycle import get_current_subscription

logger = logging.getLogger(__name__)

router = APIRouter()

ADMIN_FIELDS = {"email", "status", "role_ids"}


def _get_user(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


@router.get("/")
async def list_users(
    skip: int = 0,
    limit: int = 100,
    _: User = Depends(require_permission("users:read")),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    rows = (
        db.query(User)
        .options(selectinload(User.user_roles).selectinload(UserRole.role))
        .order_by(User.created_at.desc())
        .offset(skip)
        .limit(min(limit, 500))
        .all()
    )
    return {"users": [serialize_user(u) for u in rows]}


@router.get("/roles/all")
async def list_roles(
    _: User = Depends(require_permission("roles:read")),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    roles = (
        db.query(Role)
        .options(selectinload(Role.role_permissions).selectinload(RolePermission.permission))
        .order_by(Role.name)
        .all()
    )
    return {
        "roles": [
            {
                "id": role.id,
                "name": role.name,
                "description": role.description,
                "is_system": bool(role.is_system),
                "permissions": sorted(
                    (
                        {"id": rp.permission.id, "name": rp.permission.name, "description": rp.permission.description}
                        for rp in role.role_permissions
                    ),
                    key=lambda p: p["name"],
                ),
            }
            for role in roles
        ]
    }


@router.get("/permissions/all")
async def list_permissions(
    _: User = Depends(require_permission("roles:read")),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    rows = db.query(Permission).order_by(Permission.name).all()
    return {
        "permissions": [
            {"id": p.id, "name": p.name, "resource": p.resource, "action": p.action, "description": p.description}
            for p in rows
        ]
    }


@router.post("/change-password")
async def change_password(
    payload: PasswordChange,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, str]:
    if not verify_password(payload.current_password, user.password_hash):
        raise ValidationError("Current password is incorrect")
    user.password_hash = hash_password(payload.new_password)
    db.commit()
    return {"message": "Password changed successfully"}


@router.get("/{user_id}")
async def get_user(
    user_id: str,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    if user_id != current.id and not has_permission(resolve_permissions(db, current.id), "users:read"):
        raise AuthorizationError()
    user = _get_user(db, user_id)
    data = serialize_user(user, resolve_permissions(db, user.id))
    data["facebook_accounts"] = [
        {"id": a.id, "name": a.name, "email": a.email} for a in user.facebook_accounts
    ]
    data["subscription"] = serialize_subscription(get_current_subscription(db, user.id))
    return {"user": data}


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: UserCreate,
    _: User = Depends(require_permission("users:write")),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    if db.query(User.id).filter(User.email == payload.email).first():
        raise ValidationError("User with this email already exists")
    user = User(
        email=payload.email,
        password_hash=hash_password(payload.password),
        first_name=payload.first_name,
        last_name=payload.last_name,
        company_name=payload.company_name,
        job_title=payload.job_title,
        phone=payload.phone,
        status="active",
    )
    db.add(user)
    try:
        db.flush()
        if payload.role_ids:
            replace_roles(db, user.id, payload.role_ids)
        else:
            grant_role(db, user.id, settings.default_role)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(user)
    logger.info("Created user %s", user.id)
    return {"message": "User created successfully", "user": serialize_user(user)}


@router.put("/{user_id}")
async def update_user(
    user_id: str,
    payload: UserUpdate,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    is_admin = has_permission(resolve_permissions(db, current.id), "users:write")
    if user_id != current.id and not is_admin:
        raise AuthorizationError()
    changes = payload.model_dump(exclude_unset=True)
    if ADMIN_FIELDS & changes.keys() and not is_admin:
        raise AuthorizationError()

    user = _get_user(db, user_id)
    role_ids = changes.pop("role_ids", None)
    new_email = changes.get("email")
    if new_email and new_email != user.email:
        if db.query(User.id).filter(User.email == new_email).first():
            raise ValidationError("User with this email already exists")

    # Profile fields and the role swap commit together.
    try:
        for key, value in changes.items():
            setattr(user, key, value)
        if role_ids is not None:
            replace_roles(db, user.id, role_ids)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(user)
    return {"message": "User updated successfully", "user": serialize_user(user)}


@router.post("/{user_id}/reset-password")
async def admin_reset_password(
    user_id: str,
    payload: AdminPasswordReset,
    _: User = Depends(require_permission("users:write")),
    db: Session = Depends(get_db),
) -> dict[str, str]:
    user = _get_user(db, user_id)
    user.password_hash = hash_password(payload.new_password)
    db.query(UserSession).filter(UserSession.user_id == user.id).delete()
    db.commit()
    return {"message": "Password reset successfully"}


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    current: User = Depends(require_permission("users:delete")),
    db: Session = Depends(get_db),
) -> dict[str, str]:
    if user_id == current.id:
        raise ValidationError("You cannot delete your own account")
    user = _get_user(db, user_id)
    db.delete(user)
    db.commit()
    logger.info("User %s deleted by %s", user_id, current.id)
    return {"message": "User deleted successfully"}
