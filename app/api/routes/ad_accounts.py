from __future__ import annotations

from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.permissions import require_permission
from app.database import get_db
from app.models import AdAccount, AdAccountUser, Campaign, FacebookAccount, User
from app.schemas.campaign import AdAccountUpdate, serialize_ad_account, serialize_campaign, serialize_insight
from app.services.facebook_sync import get_owned_ad_account
from app.services.insights_service import InsightsService

router = APIRouter()


@router.get("/")
async def list_ad_accounts(
    user: User = Depends(require_permission("adAccounts:read")),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    rows = (
        db.query(AdAccount)
        .join(FacebookAccount, FacebookAccount.id == AdAccount.facebook_account_id)
        .filter(FacebookAccount.user_id == user.id)
        .order_by(AdAccount.name)
        .all()
    )
    return {"ad_accounts": [serialize_ad_account(a) for a in rows]}


@router.get("/{ad_account_id}")
async def get_ad_account(
    ad_account_id: str,
    user: User = Depends(require_permission("adAccounts:read")),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    account = get_owned_ad_account(db, user.id, ad_account_id)
    data = serialize_ad_account(account)
    data["campaign_count"] = len(account.campaigns)
    return {"ad_account": data}


@router.put("/{ad_account_id}")
async def rename_ad_account(
    ad_account_id: str,
    payload: AdAccountUpdate,
    user: User = Depends(require_permission("adAccounts:write")),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    account = get_owned_ad_account(db, user.id, ad_account_id)
    account.name = payload.name
    db.commit()
    db.refresh(account)
    return {"ad_account": serialize_ad_account(account)}


@router.get("/{ad_account_id}/campaigns")
async def ad_account_campaigns(
    ad_account_id: str,
    user: User = Depends(require_permission("campaigns:read")),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    account = get_owned_ad_account(db, user.id, ad_account_id)
    rows = (
        db.query(Campaign)
        .filter(Campaign.ad_account_id == account.id)
        .order_by(Campaign.created_at.desc())
        .all()
    )
    return {"campaigns": [serialize_campaign(c) for c in rows]}


@router.get("/{ad_account_id}/insights")
async def ad_account_insights(
    ad_account_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    user: User = Depends(require_permission("analytics:read")),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    rows = InsightsService(db, user.id).list_insights(
        ad_account_id=ad_account_id, object_type="ACCOUNT", start=start_date, end=end_date
    )
    return {"insights": [serialize_insight(r) for r in rows]}


@router.get("/{ad_account_id}/users")
async def ad_account_users(
    ad_account_id: str,
    user: User = Depends(require_permission("adAccounts:read")),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    account = get_owned_ad_account(db, user.id, ad_account_id)
    rows = db.query(AdAccountUser).filter(AdAccountUser.ad_account_id == account.id).all()
    return {
        "ad_account_users": [
            {"id": r.id, "facebook_user_id": r.facebook_user_id, "name": r.name, "role": r.role}
            for r in rows
        ]
    }
