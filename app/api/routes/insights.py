from __future__ import annotations

from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.exceptions import ValidationError
from app.core.permissions import require_permission
from app.database import get_db
from app.integrations.facebook import GraphAPIClient, get_graph_client
from app.models import User
from app.schemas.campaign import serialize_insight
from app.services.facebook_sync import get_owned_ad_account, get_owned_campaign
from app.services.insights_service import InsightsService, default_range

router = APIRouter()

analytics_reader = require_permission("analytics:read")


@router.get("/")
async def list_insights(
    ad_account_id: Optional[str] = None,
    campaign_id: Optional[str] = None,
    ad_set_id: Optional[str] = None,
    ad_id: Optional[str] = None,
    object_type: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    user: User = Depends(analytics_reader),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    rows = InsightsService(db, user.id).list_insights(
        ad_account_id=ad_account_id,
        campaign_id=campaign_id,
        ad_set_id=ad_set_id,
        ad_id=ad_id,
        object_type=object_type,
        start=start_date,
        end=end_date,
    )
    return {"insights": [serialize_insight(r) for r in rows]}


@router.get("/performance")
async def performance(
    ad_account_id: Optional[str] = None,
    campaign_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    user: User = Depends(analytics_reader),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    if campaign_id:
        get_owned_campaign(db, user.id, campaign_id)
    start, end = default_range(start_date, end_date)
    metrics = InsightsService(db, user.id).performance(
        ad_account_id=ad_account_id, campaign_id=campaign_id, start=start, end=end
    )
    return {"performance": metrics, "start_date": start.isoformat(), "end_date": end.isoformat()}


async def _breakdown(
    kind: str,
    db: Session,
    user: User,
    graph: GraphAPIClient,
    ad_account_id: str | None,
    campaign_id: str | None,
    start_date: date | None,
    end_date: date | None,
) -> list[dict[str, Any]]:
    if campaign_id:
        campaign = get_owned_campaign(db, user.id, campaign_id)
        object_id, facebook_account = campaign.facebook_campaign_id, campaign.ad_account.facebook_account
    elif ad_account_id:
        ad_account = get_owned_ad_account(db, user.id, ad_account_id)
        object_id, facebook_account = f"act_{ad_account.graph_id}", ad_account.facebook_account
    else:
        raise ValidationError("ad_account_id or campaign_id is required")
    if not facebook_account.has_valid_token():
        raise ValidationError("Facebook token has expired, reconnect the account")

    start, end = default_range(start_date, end_date)
    page = await graph.get_breakdown(
        object_id, facebook_account.access_token, kind, since=start.isoformat(), until=end.isoformat()
    )
    return [row async for row in graph.iter_pages(page)]


@router.get("/demographics")
async def demographics(
    ad_account_id: Optional[str] = None,
    campaign_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    user: User = Depends(analytics_reader),
    db: Session = Depends(get_db),
    graph: GraphAPIClient = Depends(get_graph_client),
) -> dict[str, Any]:
    rows = await _breakdown("demographics", db, user, graph, ad_account_id, campaign_id, start_date, end_date)
    return {"demographics": rows}


@router.get("/placements")
async def placements(
    ad_account_id: Optional[str] = None,
    campaign_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    user: User = Depends(analytics_reader),
    db: Session = Depends(get_db),
    graph: GraphAPIClient = Depends(get_graph_client),
) -> dict[str, Any]:
    rows = await _breakdown("placements", db, user, graph, ad_account_id, campaign_id, start_date, end_date)
    return {"placements": rows}


@router.get("/devices")
async def devices(
    ad_account_id: Optional[str] = None,
    campaign_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    user: User = Depends(analytics_reader),
    db: Session = Depends(get_db),
    graph: GraphAPIClient = Depends(get_graph_client),
) -> dict[str, Any]:
    rows = await _breakdown("devices", db, user, graph, ad_account_id, campaign_id, start_date, end_date)
    return {"devices": rows}
