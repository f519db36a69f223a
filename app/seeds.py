from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from app.config import settings
from app.core.security import hash_password
from app.models import Permission, Role, RolePermission, SubscriptionPlan, User
from app.services.roles import grant_role

logger = logging.getLogger(__name__)

PERMISSIONS: list[dict[str, str]] = [
    {"name": "users:read", "resource": "users", "action": "read", "description": "View users"},
    {"name": "users:write", "resource": "users", "action": "write", "description": "Create/update users"},
    {"name": "users:delete", "resource": "users", "action": "delete", "description": "Delete users"},
    {"name": "roles:read", "resource": "roles", "action": "read", "description": "View roles and permissions"},
    {"name": "adAccounts:read", "resource": "adAccounts", "action": "read", "description": "View ad accounts"},
    {"name": "adAccounts:write", "resource": "adAccounts", "action": "write", "description": "Create/update ad accounts"},
    {"name": "adAccounts:delete", "resource": "adAccounts", "action": "delete", "description": "Delete ad accounts"},
    {"name": "campaigns:read", "resource": "campaigns", "action": "read", "description": "View campaigns"},
    {"name": "campaigns:write", "resource": "campaigns", "action": "write", "description": "Create/update campaigns"},
    {"name": "campaigns:delete", "resource": "campaigns", "action": "delete", "description": "Delete campaigns"},
    {"name": "analytics:read", "resource": "analytics", "action": "read", "description": "View analytics"},
    {"name": "analytics:export", "resource": "analytics", "action": "export", "description": "Export analytics"},
    {"name": "adLibrary:read", "resource": "adLibrary", "action": "read", "description": "View ad library"},
    {"name": "adLibrary:write", "resource": "adLibrary", "action": "write", "description": "Create/update ad collections"},
    {"name": "billing:read", "resource": "billing", "action": "read", "description": "View billing information"},
    {"name": "billing:write", "resource": "billing", "action": "write", "description": "Update billing information"},
    {"name": "subscriptions:read", "resource": "subscriptions", "action": "read", "description": "View subscription"},
    {"name": "subscriptions:write", "resource": "subscriptions", "action": "write", "description": "Change or cancel subscription"},
]

ALL_PERMISSIONS = [p["name"] for p in PERMISSIONS]

ROLE_DEFINITIONS: list[dict[str, Any]] = [
    {"name": "Admin", "description": "Full system access", "permissions": ALL_PERMISSIONS},
    {
        "name": "Manager",
        "description": "Can manage campaigns and team members",
        "permissions": [
            "users:read", "users:write",
            "adAccounts:read", "adAccounts:write",
            "campaigns:read", "campaigns:write",
            "analytics:read", "analytics:export",
            "adLibrary:read", "adLibrary:write",
            "billing:read",
        ],
    },
    {
        "name": "Analyst",
        "description": "View-only access to campaigns and analytics",
        "permissions": ["adAccounts:read", "campaigns:read", "analytics:read", "analytics:export", "adLibrary:read"],
    },
    {
        "name": "Creator",
        "description": "Can create and edit ads",
        "permissions": [
            "adAccounts:read", "campaigns:read", "campaigns:write",
            "analytics:read", "adLibrary:read", "adLibrary:write",
        ],
    },
    {"name": "Client", "description": "Limited access to specific campaigns", "permissions": ["campaigns:read", "analytics:read"]},
    {
        "name": "PAID_USER",
        "description": "Active paid subscription",
        "permissions": [
            "adAccounts:read", "adAccounts:write",
            "campaigns:read", "campaigns:write", "campaigns:delete",
            "analytics:read", "analytics:export",
            "adLibrary:read", "adLibrary:write",
            "billing:read", "billing:write",
            "subscriptions:read", "subscriptions:write",
        ],
    },
    {
        "name": "FREE_USER",
        "description": "Free tier",
        "permissions": [
            "adAccounts:read", "campaigns:read", "analytics:read", "adLibrary:read",
            "billing:read", "subscriptions:read", "subscriptions:write",
        ],
    },
]

PLAN_SEED_DATA: list[dict[str, Any]] = [
    {
        "name": "Basic",
        "description": "One ad account, core dashboards",
        "price": Decimal("29.00"),
        "features": ["1 ad account", "Campaign dashboards", "Ad library search"],
    },
    {
        "name": "Pro",
        "description": "Up to five ad accounts with breakdown analytics",
        "price": Decimal("79.00"),
        "features": ["5 ad accounts", "Demographic, placement and device breakdowns", "Ad collections"],
    },
    {
        "name": "Agency",
        "description": "Unlimited ad accounts and team roles",
        "price": Decimal("199.00"),
        "features": ["Unlimited ad accounts", "Team roles", "Priority support"],
    },
]


def seed_rbac(db: Session) -> int:
    """Upsert permissions, roles and role grants. Returns the number of new grants."""
    by_name = {p.name: p for p in db.query(Permission).all()}
    for item in PERMISSIONS:
        if item["name"] not in by_name:
            row = Permission(**item)
            db.add(row)
            by_name[item["name"]] = row
    db.flush()

    inserted = 0
    for definition in ROLE_DEFINITIONS:
        role = db.query(Role).filter(Role.name == definition["name"]).first()
        if role is None:
            role = Role(name=definition["name"], description=definition["description"], is_system=True)
            db.add(role)
            db.flush()
        granted = {
            rp.permission_id
            for rp in db.query(RolePermission).filter(RolePermission.role_id == role.id).all()
        }
        for permission_name in definition["permissions"]:
            permission = by_name[permission_name]
            if permission.id not in granted:
                db.add(RolePermission(role_id=role.id, permission_id=permission.id))
                inserted += 1
    db.flush()
    return inserted


def seed_plans(db: Session) -> int:
    existing = {plan.name for plan in db.query(SubscriptionPlan).all()}
    inserted = 0
    for item in PLAN_SEED_DATA:
        if item["name"] in existing:
            continue
        db.add(SubscriptionPlan(currency="usd", billing_interval="month", is_active=True, **item))
        inserted += 1
    db.flush()
    return inserted


def seed_admin(db: Session) -> User | None:
    if not settings.seed_admin_email or settings.seed_admin_password is None:
        return None
    email = settings.seed_admin_email.strip().lower()
    user = db.query(User).filter(User.email == email).first()
    if user is None:
        user = User(
            email=email,
            password_hash=hash_password(settings.seed_admin_password.get_secret_value()),
            first_name="Admin",
            last_name="User",
            is_email_verified=True,
            status="active",
        )
        db.add(user)
        db.flush()
        logger.info("Seeded admin user %s", email)
    grant_role(db, user.id, "Admin")
    return user


def seed_all(db: Session) -> None:
    grants = seed_rbac(db)
    plans = seed_plans(db)
    seed_admin(db)
    db.commit()
    if grants or plans:
        logger.info("Seeded %s role grants and %s plans", grants, plans)
