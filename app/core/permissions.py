"""Role-based permission resolution and FastAPI permission guards."""
from __future__ import annotations

import logging
from typing import Callable, Iterable

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.exceptions import AuthorizationError
from app.core.security import get_current_user, get_optional_user
from app.database import get_db
from app.models import Permission, RolePermission, User, UserRole

logger = logging.getLogger(__name__)


def resolve_permissions(db: Session, user_id: str | None) -> set[str]:
    """Union of permission names granted through every role the user holds.

    Unknown or not-yet-persisted users resolve to the empty set.
    """
    if not user_id:
        return set()
    stmt = (
        select(Permission.name)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .where(UserRole.user_id == user_id)
        .distinct()
    )
    return set(db.scalars(stmt).all())


def has_permission(permissions: Iterable[str], name: str) -> bool:
    return name in set(permissions)


def require_permission(name: str) -> Callable[..., User]:
    """Dependency factory: authenticate, then insist on ``name``.

    Authentication runs as a sub-dependency, so an unauthenticated request
    never reaches permission resolution.
    """

    def dependency(
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> User:
        if not has_permission(resolve_permissions(db, user.id), name):
            logger.info("Permission %s denied for user %s", name, user.id)
            raise AuthorizationError()
        return user

    dependency.__name__ = f"require_{name.replace(':', '_')}"
    return dependency


def get_user_permissions(
    user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
) -> set[str]:
    """Permission set for optional-auth routes; anonymous callers get none."""
    return resolve_permissions(db, user.id if user else None)
