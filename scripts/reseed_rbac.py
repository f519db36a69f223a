"""
Utility to reseed permissions, roles, role grants and subscription plans
from the canonical app seed data. Safe to run repeatedly.

Usage:
  python scripts/reseed_rbac.py
"""
from __future__ import annotations

from app.database import SessionLocal
from app.models import Permission, Role, RolePermission, SubscriptionPlan
from app.seeds import seed_all


def main() -> None:
    db = SessionLocal()
    try:
        seed_all(db)
        print(
            "permissions={} roles={} grants={} plans={}".format(
                db.query(Permission).count(),
                db.query(Role).count(),
                db.query(RolePermission).count(),
                db.query(SubscriptionPlan).count(),
            )
        )
    finally:
        db.close()


if __name__ == "__main__":
    main()
