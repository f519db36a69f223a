"""Role membership changes. Callers own the transaction (commit/rollback)."""
from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy.orm import Session

from app.core.exceptions import ValidationError
from app.models import Role, UserRole

logger = logging.getLogger(__name__)


def get_role(db: Session, name: str) -> Role | None:
    return db.query(Role).filter(Role.name == name).first()


def grant_role(db: Session, user_id: str, role_name: str) -> bool:
    """Grant ``role_name`` unless already held. Returns True when a row was added."""
    role = get_role(db, role_name)
    if role is None:
        logger.warning("Role %s does not exist; cannot grant to %s", role_name, user_id)
        return False
    existing = (
        db.query(UserRole)
        .filter(UserRole.user_id == user_id, UserRole.role_id == role.id)
        .first()
    )
    if existing:
        return False
    db.add(UserRole(user_id=user_id, role_id=role.id))
    db.flush()
    return True


def revoke_role(db: Session, user_id: str, role_name: str) -> int:
    role = get_role(db, role_name)
    if role is None:
        return 0
    return (
        db.query(UserRole)
        .filter(UserRole.user_id == user_id, UserRole.role_id == role.id)
        .delete(synchronize_session="fetch")
    )


def replace_roles(db: Session, user_id: str, role_ids: Iterable[str]) -> list[Role]:
    """Swap the user's role set for ``role_ids`` inside the caller's transaction."""
    wanted = list(dict.fromkeys(role_ids))
    roles = db.query(Role).filter(Role.id.in_(wanted)).all() if wanted else []
    missing = set(wanted) - {r.id for r in roles}
    if missing:
        raise ValidationError(f"Unknown role ids: {', '.join(sorted(missing))}")

    db.query(UserRole).filter(UserRole.user_id == user_id).delete(synchronize_session="fetch")
    for role in roles:
        db.add(UserRole(user_id=user_id, role_id=role.id))
    db.flush()
    return roles
