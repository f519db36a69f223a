"""Persist Facebook profiles and ad accounts fetched through the Graph adapter."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List

from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, ValidationError
from app.models import AdAccount, Campaign, FacebookAccount
from app.models.base import utcnow

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL_SECONDS = 60 * 24 * 60 * 60


def token_expiry(expires_in: Any) -> datetime:
    try:
        seconds = int(expires_in)
    except (TypeError, ValueError):
        seconds = DEFAULT_TOKEN_TTL_SECONDS
    return utcnow() + timedelta(seconds=seconds or DEFAULT_TOKEN_TTL_SECONDS)


def store_facebook_account(
    db: Session,
    user_id: str,
    profile: Dict[str, Any],
    access_token: str,
    token_expires_at: datetime | None,
) -> FacebookAccount:
    facebook_user_id = profile.get("id")
    if not facebook_user_id:
        raise ValidationError("Facebook profile has no id")
    picture = ((profile.get("picture") or {}).get("data") or {}).get("url")

    account = (
        db.query(FacebookAccount)
        .filter(FacebookAccount.user_id == user_id, FacebookAccount.facebook_user_id == facebook_user_id)
        .first()
    )
    if account is None:
        account = FacebookAccount(user_id=user_id, facebook_user_id=facebook_user_id)
        db.add(account)
    account.access_token = access_token
    account.token_expires_at = token_expires_at
    account.name = profile.get("name")
    account.email = profile.get("email")
    account.profile_picture_url = picture
    db.flush()
    return account


def store_ad_accounts(
    db: Session, facebook_account_id: str, rows: Iterable[Dict[str, Any]]
) -> List[AdAccount]:
    existing = {
        a.facebook_ad_account_id: a
        for a in db.query(AdAccount).filter(AdAccount.facebook_account_id == facebook_account_id).all()
    }
    stored: List[AdAccount] = []
    for row in rows:
        external_id = row.get("id")
        if not external_id:
            continue
        account = existing.get(external_id)
        if account is None:
            account = AdAccount(facebook_account_id=facebook_account_id, facebook_ad_account_id=external_id)
            db.add(account)
            existing[external_id] = account
        account.name = row.get("name")
        account.currency = row.get("currency")
        account.timezone = row.get("timezone_name")
        account.business_name = row.get("business_name")
        account.business_id = row.get("business_id")
        status = row.get("account_status")
        account.account_status = str(status) if status is not None else None
        stored.append(account)
    db.flush()
    logger.info("Stored %s ad accounts for facebook account %s", len(stored), facebook_account_id)
    return stored


def get_owned_facebook_account(db: Session, user_id: str, facebook_account_id: str) -> FacebookAccount:
    account = (
        db.query(FacebookAccount)
        .filter(FacebookAccount.id == facebook_account_id, FacebookAccount.user_id == user_id)
        .first()
    )
    if account is None:
        raise NotFoundError("Facebook account not found")
    return account


def get_owned_ad_account(db: Session, user_id: str, ad_account_id: str) -> AdAccount:
    account = (
        db.query(AdAccount)
        .join(FacebookAccount, FacebookAccount.id == AdAccount.facebook_account_id)
        .filter(AdAccount.id == ad_account_id, FacebookAccount.user_id == user_id)
        .first()
    )
    if account is None:
        raise NotFoundError("Ad account not found")
    return account


def get_valid_facebook_account(db: Session, user_id: str) -> FacebookAccount:
    """First connected account whose token has not expired."""
    accounts = (
        db.query(FacebookAccount)
        .filter(FacebookAccount.user_id == user_id, FacebookAccount.access_token.isnot(None))
        .order_by(FacebookAccount.updated_at.desc())
        .all()
    )
    for account in accounts:
        if account.has_valid_token():
            return account
    raise ValidationError("No valid Facebook account found")


def get_owned_campaign(db: Session, user_id: str, campaign_id: str) -> Campaign:
    campaign = (
        db.query(Campaign)
        .join(AdAccount, AdAccount.id == Campaign.ad_account_id)
        .join(FacebookAccount, FacebookAccount.id == AdAccount.facebook_account_id)
        .filter(Campaign.id == campaign_id, FacebookAccount.user_id == user_id)
        .first()
    )
    if campaign is None:
        raise NotFoundError("Campaign not found")
    return campaign
