from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.exceptions import ValidationError
from app.core.permissions import require_permission
from app.core.security import get_current_user
from app.database import get_db
from app.integrations.facebook import GraphAPIClient, get_graph_client
from app.models import FacebookAccount, User
from app.schemas.campaign import serialize_ad_account
from app.services.facebook_sync import (
    get_owned_ad_account,
    get_owned_facebook_account,
    store_ad_accounts,
    store_facebook_account,
    token_expiry,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class OAuthCallback(BaseModel):
    code: str
    state: Optional[str] = None


def _serialize_facebook_account(account: FacebookAccount) -> dict[str, Any]:
    return {
        "id": account.id,
        "facebook_user_id": account.facebook_user_id,
        "name": account.name,
        "email": account.email,
        "profile_picture_url": account.profile_picture_url,
        "token_expires_at": account.token_expires_at.isoformat() if account.token_expires_at else None,
        "has_valid_token": account.has_valid_token(),
        "ad_accounts": [serialize_ad_account(a) for a in account.ad_accounts],
    }


@router.get("/auth-url")
async def auth_url(
    _: User = Depends(get_current_user),
    graph: GraphAPIClient = Depends(get_graph_client),
) -> dict[str, str]:
    return graph.authorization_url()


@router.post("/callback")
async def oauth_callback(
    payload: OAuthCallback,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    graph: GraphAPIClient = Depends(get_graph_client),
) -> dict[str, Any]:
    if not payload.code:
        raise ValidationError("Authorization code is required")
    short_lived = await graph.exchange_code_for_token(payload.code)
    long_lived = await graph.get_long_lived_token(short_lived["access_token"])
    access_token = long_lived["access_token"]
    profile = await graph.get_user_profile(access_token)
    first_page = await graph.get_ad_accounts(access_token)
    ad_account_rows = [row async for row in graph.iter_pages(first_page)]

    try:
        account = store_facebook_account(
            db, user.id, profile, access_token, token_expiry(long_lived.get("expires_in"))
        )
        store_ad_accounts(db, account.id, ad_account_rows)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(account)
    logger.info("Connected facebook account %s for user %s", account.facebook_user_id, user.id)
    return {
        "message": "Facebook account connected successfully",
        "facebook_account": _serialize_facebook_account(account),
    }


@router.get("/accounts")
async def list_accounts(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    rows = db.query(FacebookAccount).filter(FacebookAccount.user_id == user.id).all()
    return {"facebook_accounts": [_serialize_facebook_account(a) for a in rows]}


@router.delete("/accounts/{account_id}")
async def disconnect_account(
    account_id: str,
    user: User = Depends(require_permission("users:write")),
    db: Session = Depends(get_db),
) -> dict[str, str]:
    account = get_owned_facebook_account(db, user.id, account_id)
    db.delete(account)
    db.commit()
    return {"message": "Facebook account disconnected successfully"}


@router.post("/accounts/{account_id}/sync")
async def sync_ad_accounts(
    account_id: str,
    user: User = Depends(require_permission("adAccounts:write")),
    db: Session = Depends(get_db),
    graph: GraphAPIClient = Depends(get_graph_client),
) -> dict[str, Any]:
    account = get_owned_facebook_account(db, user.id, account_id)
    if not account.has_valid_token():
        raise ValidationError("Facebook token has expired, reconnect the account")
    first_page = await graph.get_ad_accounts(account.access_token)
    rows = [row async for row in graph.iter_pages(first_page)]
    stored = store_ad_accounts(db, account.id, rows)
    db.commit()
    return {
        "message": "Ad accounts synced successfully",
        "ad_accounts": [serialize_ad_account(a) for a in stored],
    }


@router.get("/ad-accounts/{ad_account_id}/campaigns")
async def live_campaigns(
    ad_account_id: str,
    user: User = Depends(require_permission("campaigns:read")),
    db: Session = Depends(get_db),
    graph: GraphAPIClient = Depends(get_graph_client),
) -> dict[str, Any]:
    ad_account = get_owned_ad_account(db, user.id, ad_account_id)
    page = await graph.get_campaigns(ad_account.graph_id, ad_account.facebook_account.access_token)
    return {"campaigns": page.data, "paging": page.paging}


@router.get("/ad-accounts/{ad_account_id}/insights")
async def live_account_insights(
    ad_account_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    time_increment: Optional[str] = None,
    user: User = Depends(require_permission("analytics:read")),
    db: Session = Depends(get_db),
    graph: GraphAPIClient = Depends(get_graph_client),
) -> dict[str, Any]:
    ad_account = get_owned_ad_account(db, user.id, ad_account_id)
    page = await graph.get_account_insights(
        ad_account.graph_id,
        ad_account.facebook_account.access_token,
        since=start_date.isoformat() if start_date else None,
        until=end_date.isoformat() if end_date else None,
        time_increment=time_increment,
    )
    return {"insights": page.data, "paging": page.paging}
