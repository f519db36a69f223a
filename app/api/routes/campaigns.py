from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.core.exceptions import UpstreamError, ValidationError
from app.core.permissions import require_permission
from app.database import get_db
from app.integrations.facebook import GraphAPIClient, get_graph_client
from app.models import AdAccount, AdSet, Campaign, FacebookAccount, User
from app.schemas.campaign import (
    CampaignCreate,
    CampaignUpdate,
    serialize_ad_set,
    serialize_campaign,
    serialize_insight,
    to_graph_fields,
)
from app.services.facebook_sync import get_owned_ad_account, get_owned_campaign
from app.services.insights_service import InsightsService

logger = logging.getLogger(__name__)

router = APIRouter()


def _access_token(ad_account: AdAccount) -> str:
    facebook_account = ad_account.facebook_account
    if not facebook_account.has_valid_token():
        raise ValidationError("Facebook token has expired, reconnect the account")
    return facebook_account.access_token


@router.get("/")
async def list_campaigns(
    ad_account_id: Optional[str] = None,
    user: User = Depends(require_permission("campaigns:read")),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    query = db.query(Campaign)
    if ad_account_id:
        get_owned_ad_account(db, user.id, ad_account_id)
        query = query.filter(Campaign.ad_account_id == ad_account_id)
    else:
        query = (
            query.join(AdAccount, AdAccount.id == Campaign.ad_account_id)
            .join(FacebookAccount, FacebookAccount.id == AdAccount.facebook_account_id)
            .filter(FacebookAccount.user_id == user.id)
        )
    rows = query.order_by(Campaign.created_at.desc()).all()
    return {"campaigns": [serialize_campaign(c) for c in rows]}


@router.get("/{campaign_id}")
async def get_campaign(
    campaign_id: str,
    user: User = Depends(require_permission("campaigns:read")),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    campaign = get_owned_campaign(db, user.id, campaign_id)
    data = serialize_campaign(campaign)
    data["ad_account"] = {"id": campaign.ad_account.id, "name": campaign.ad_account.name}
    return {"campaign": data}


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_campaign(
    payload: CampaignCreate,
    user: User = Depends(require_permission("campaigns:write")),
    db: Session = Depends(get_db),
    graph: GraphAPIClient = Depends(get_graph_client),
) -> dict[str, Any]:
    ad_account = get_owned_ad_account(db, user.id, payload.ad_account_id)
    created = await graph.create_campaign(ad_account.graph_id, to_graph_fields(payload), _access_token(ad_account))
    if not created.get("id"):
        raise UpstreamError("Graph API did not return a campaign id")

    campaign = Campaign(
        ad_account_id=ad_account.id,
        facebook_campaign_id=str(created["id"]),
        name=payload.name,
        objective=payload.objective,
        status=payload.status,
        buying_type="AUCTION",
        special_ad_categories=payload.special_ad_categories,
        daily_budget=payload.daily_budget,
        lifetime_budget=payload.lifetime_budget,
        start_time=payload.start_time,
        end_time=payload.end_time,
    )
    db.add(campaign)
    db.commit()
    db.refresh(campaign)
    logger.info("Created campaign %s (facebook %s)", campaign.id, campaign.facebook_campaign_id)
    return {"campaign": serialize_campaign(campaign)}


@router.put("/{campaign_id}")
async def update_campaign(
    campaign_id: str,
    payload: CampaignUpdate,
    user: User = Depends(require_permission("campaigns:write")),
    db: Session = Depends(get_db),
    graph: GraphAPIClient = Depends(get_graph_client),
) -> dict[str, Any]:
    campaign = get_owned_campaign(db, user.id, campaign_id)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise ValidationError("No changes supplied")
    await graph.update_campaign(
        campaign.facebook_campaign_id, to_graph_fields(payload), _access_token(campaign.ad_account)
    )
    for key, value in changes.items():
        setattr(campaign, key, value)
    db.commit()
    db.refresh(campaign)
    return {"campaign": serialize_campaign(campaign)}


@router.delete("/{campaign_id}")
async def delete_campaign(
    campaign_id: str,
    user: User = Depends(require_permission("campaigns:delete")),
    db: Session = Depends(get_db),
    graph: GraphAPIClient = Depends(get_graph_client),
) -> dict[str, str]:
    campaign = get_owned_campaign(db, user.id, campaign_id)
    await graph.delete_campaign(campaign.facebook_campaign_id, _access_token(campaign.ad_account))
    db.delete(campaign)
    db.commit()
    return {"message": "Campaign deleted successfully"}


@router.get("/{campaign_id}/adsets")
async def campaign_ad_sets(
    campaign_id: str,
    user: User = Depends(require_permission("campaigns:read")),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    campaign = get_owned_campaign(db, user.id, campaign_id)
    rows = db.query(AdSet).filter(AdSet.campaign_id == campaign.id).order_by(AdSet.created_at.desc()).all()
    return {"ad_sets": [serialize_ad_set(a) for a in rows]}


@router.get("/{campaign_id}/insights")
async def campaign_insights(
    campaign_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    user: User = Depends(require_permission("analytics:read")),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    campaign = get_owned_campaign(db, user.id, campaign_id)
    rows = InsightsService(db, user.id).list_insights(
        ad_account_id=campaign.ad_account_id, campaign_id=campaign.id, start=start_date, end=end_date
    )
    return {"insights": [serialize_insight(r) for r in rows]}
