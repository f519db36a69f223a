from __future__ import annotations

from datetime import date, timedelta
from typing import Any

from sqlalchemy import func

from app.models import AdAccount, FacebookAccount, Insight
from app.services.facebook_sync import get_owned_ad_account

DEFAULT_WINDOW_DAYS = 30
OBJECT_TYPES = ("ACCOUNT", "CAMPAIGN", "ADSET", "AD")


def default_range(start: date | None, end: date | None) -> tuple[date, date]:
    end = end or date.today()
    start = start or end - timedelta(days=DEFAULT_WINDOW_DAYS)
    return start, end


def _ratio(numerator: float, denominator: float, scale: float = 1.0) -> float:
    return round(numerator / denominator * scale, 2) if denominator else 0.0


class InsightsService:
    def __init__(self, db, user_id: str):
        self.db = db
        self.user_id = user_id

    def owned_ad_account_ids(self) -> list[str]:
        rows = (
            self.db.query(AdAccount.id)
            .join(FacebookAccount, FacebookAccount.id == AdAccount.facebook_account_id)
            .filter(FacebookAccount.user_id == self.user_id)
            .all()
        )
        return [row[0] for row in rows]

    def _scoped(self, ad_account_id: str | None, start: date | None, end: date | None):
        start, end = default_range(start, end)
        query = self.db.query(Insight).filter(Insight.date >= start, Insight.date <= end)
        if ad_account_id:
            get_owned_ad_account(self.db, self.user_id, ad_account_id)
            return query.filter(Insight.ad_account_id == ad_account_id)
        return query.filter(Insight.ad_account_id.in_(self.owned_ad_account_ids()))

    def list_insights(
        self,
        *,
        ad_account_id: str | None = None,
        campaign_id: str | None = None,
        ad_set_id: str | None = None,
        ad_id: str | None = None,
        object_type: str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> list[Insight]:
        query = self._scoped(ad_account_id, start, end)
        if object_type:
            query = query.filter(Insight.object_type == object_type.upper())
        # Most specific object wins.
        for object_id, kind in ((campaign_id, "CAMPAIGN"), (ad_set_id, "ADSET"), (ad_id, "AD")):
            if object_id:
                query = query.filter(Insight.object_id == object_id, Insight.object_type == kind)
                break
        return query.order_by(Insight.date.asc()).all()

    def performance(
        self,
        *,
        ad_account_id: str | None = None,
        campaign_id: str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> dict[str, Any]:
        """Aggregate stored insight rows into headline metrics."""
        query = self._scoped(ad_account_id, start, end)
        if campaign_id:
            query = query.filter(Insight.object_type == "CAMPAIGN", Insight.object_id == campaign_id)
        else:
            # Account-level rows only, so campaign rows are not double counted.
            query = query.filter(Insight.object_type == "ACCOUNT")

        totals = query.with_entities(
            func.coalesce(func.sum(Insight.impressions), 0),
            func.coalesce(func.sum(Insight.clicks), 0),
            func.coalesce(func.sum(Insight.spend), 0),
            func.coalesce(func.sum(Insight.conversions), 0),
            func.coalesce(func.sum(Insight.conversion_value), 0),
        ).one()
        impressions, clicks, spend, conversions, conversion_value = (
            int(totals[0]),
            int(totals[1]),
            float(totals[2]),
            int(totals[3]),
            float(totals[4]),
        )
        return {
            "impressions": impressions,
            "clicks": clicks,
            "ctr": _ratio(clicks, impressions, 100),
            "spend": round(spend, 2),
            "cpc": _ratio(spend, clicks),
            "conversions": conversions,
            "cost_per_conversion": _ratio(spend, conversions),
            "roas": _ratio(conversion_value, spend),
        }

