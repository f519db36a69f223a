from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from app.models import AdAccount, AdSet, Campaign, Insight

CAMPAIGN_STATUSES = ("ACTIVE", "PAUSED", "ARCHIVED")


class AdAccountUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class CampaignUpdate(BaseModel):
    name: Optional[str] = None
    status: Optional[str] = Field(default=None, pattern="^(ACTIVE|PAUSED|ARCHIVED)$")
    daily_budget: Optional[Decimal] = Field(default=None, ge=0)
    lifetime_budget: Optional[Decimal] = Field(default=None, ge=0)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class CampaignCreate(CampaignUpdate):
    ad_account_id: str
    name: str = Field(min_length=1)
    objective: str = "OUTCOME_TRAFFIC"
    status: str = Field(default="PAUSED", pattern="^(ACTIVE|PAUSED|ARCHIVED)$")
    special_ad_categories: list[str] = Field(default_factory=list)


def to_graph_fields(payload: CampaignUpdate) -> dict[str, Any]:
    """Graph campaign fields; budgets travel in minor currency units."""
    data = payload.model_dump(exclude_none=True, exclude={"ad_account_id"})
    for key in ("daily_budget", "lifetime_budget"):
        if key in data:
            data[key] = int(Decimal(data[key]) * 100)
    for key in ("start_time", "end_time"):
        if key in data:
            data[key] = data[key].isoformat()
    return data


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _money(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def serialize_ad_account(account: AdAccount) -> dict[str, Any]:
    return {
        "id": account.id,
        "facebook_account_id": account.facebook_account_id,
        "facebook_ad_account_id": account.facebook_ad_account_id,
        "name": account.name,
        "currency": account.currency,
        "timezone": account.timezone,
        "business_name": account.business_name,
        "business_id": account.business_id,
        "account_status": account.account_status,
    }


def serialize_campaign(campaign: Campaign) -> dict[str, Any]:
    return {
        "id": campaign.id,
        "ad_account_id": campaign.ad_account_id,
        "facebook_campaign_id": campaign.facebook_campaign_id,
        "name": campaign.name,
        "objective": campaign.objective,
        "status": campaign.status,
        "buying_type": campaign.buying_type,
        "special_ad_categories": campaign.special_ad_categories or [],
        "daily_budget": _money(campaign.daily_budget),
        "lifetime_budget": _money(campaign.lifetime_budget),
        "start_time": _iso(campaign.start_time),
        "end_time": _iso(campaign.end_time),
        "created_at": _iso(campaign.created_at),
    }


def serialize_ad_set(ad_set: AdSet) -> dict[str, Any]:
    return {
        "id": ad_set.id,
        "campaign_id": ad_set.campaign_id,
        "facebook_ad_set_id": ad_set.facebook_ad_set_id,
        "name": ad_set.name,
        "status": ad_set.status,
        "optimization_goal": ad_set.optimization_goal,
        "billing_event": ad_set.billing_event,
        "daily_budget": _money(ad_set.daily_budget),
        "lifetime_budget": _money(ad_set.lifetime_budget),
        "targeting": ad_set.targeting or {},
    }


def serialize_insight(row: Insight) -> dict[str, Any]:
    return {
        "id": row.id,
        "ad_account_id": row.ad_account_id,
        "object_id": row.object_id,
        "object_type": row.object_type,
        "date": row.date.isoformat(),
        "impressions": row.impressions or 0,
        "clicks": row.clicks or 0,
        "reach": row.reach or 0,
        "spend": _money(row.spend) or 0.0,
        "conversions": row.conversions or 0,
        "conversion_value": _money(row.conversion_value) or 0.0,
    }
