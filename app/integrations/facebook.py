from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from app.config import settings
from app.core.exceptions import IntegrationNotConfigured, UpstreamError

logger = logging.getLogger(__name__)

INSIGHT_FIELDS = "impressions,clicks,spend,cpc,ctr,reach,frequency,actions"
CAMPAIGN_FIELDS = (
    "id,name,objective,status,buying_type,special_ad_categories,spend_cap,"
    "daily_budget,lifetime_budget,start_time,end_time,created_time,updated_time"
)
AD_SET_FIELDS = (
    "id,name,status,targeting,optimization_goal,billing_event,bid_strategy,"
    "bid_amount,daily_budget,lifetime_budget,start_time,end_time"
)
AD_FIELDS = "id,name,status,creative,tracking_specs,created_time,updated_time"
AD_ACCOUNT_FIELDS = "id,name,account_id,account_status,business_name,currency,timezone_name"
AD_LIBRARY_FIELDS = (
    "id,ad_creation_time,ad_creative_bodies,ad_creative_link_captions,"
    "ad_creative_link_descriptions,ad_creative_link_titles,ad_delivery_start_time,"
    "ad_delivery_stop_time,ad_snapshot_url,demographic_distribution,funding_entity,"
    "impressions,page_id,page_name,region_distribution,spend"
)
AD_DETAIL_FIELDS = "id,creative,effective_status,insights{impressions,clicks,spend,ctr},targeting"

BREAKDOWNS = {
    "demographics": ("impressions,clicks,spend", "age,gender"),
    "placements": ("impressions,clicks,spend,ctr", "publisher_platform,platform_position"),
    "devices": ("impressions,clicks,spend,ctr", "device_platform,impression_device"),
}


class GraphAPIError(UpstreamError):
    """Graph API answered with its error envelope (or a non-JSON failure)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: int | None = None,
        error_type: str | None = None,
        error_subcode: int | None = None,
        fbtrace_id: str | None = None,
    ):
        super().__init__(
            message,
            http_status=status_code,
            code=code,
            error_type=error_type,
            error_subcode=error_subcode,
            fbtrace_id=fbtrace_id,
        )
        self.http_status = status_code
        self.code = code
        self.error_type = error_type
        self.error_subcode = error_subcode
        self.fbtrace_id = fbtrace_id

    @property
    def is_token_error(self) -> bool:
        return self.error_type == "OAuthException" or self.code == 190


class GraphTransportError(UpstreamError):
    """Graph API could not be reached (DNS, connect, timeout, protocol)."""


@dataclass
class GraphPage:
    data: List[Dict[str, Any]] = field(default_factory=list)
    paging: Dict[str, Any] = field(default_factory=dict)

    @property
    def next_url(self) -> Optional[str]:
        return self.paging.get("next")

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "GraphPage":
        return cls(data=list(payload.get("data") or []), paging=dict(payload.get("paging") or {}))


class GraphAPIClient:
    """Facebook Graph API and Ad Library API adapter."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.graph_base_url).rstrip("/")
        self.timeout = timeout or settings.graph_api_timeout
        self.transport = transport
        self.app_id = settings.facebook_app_id
        self.app_secret = settings.facebook_app_secret.get_secret_value()
        self.redirect_uri = settings.facebook_redirect_uri

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        access_token: str | None = None,
        params: Dict[str, Any] | None = None,
        data: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        url = path if path.startswith("http") else f"{self.base_url}/{path.lstrip('/')}"
        query = {k: v for k, v in (params or {}).items() if v is not None}
        if access_token:
            query["access_token"] = access_token
        try:
            async with self._client() as client:
                response = await client.request(method, url, params=query or None, data=data)
        except httpx.HTTPError as exc:
            logger.error("Graph API transport failure on %s %s: %s", method, path, exc)
            raise GraphTransportError(f"Graph API unreachable: {exc}") from exc
        return self._parse(response)

    @staticmethod
    def _parse(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            err = body["error"]
            logger.error("Graph API error envelope: %s", err)
            raise GraphAPIError(
                err.get("message") or "Graph API error",
                status_code=response.status_code,
                code=err.get("code"),
                error_type=err.get("type"),
                error_subcode=err.get("error_subcode"),
                fbtrace_id=err.get("fbtrace_id"),
            )
        if response.status_code >= 400 or body is None:
            logger.error("Graph API HTTP %s: %s", response.status_code, response.text[:500])
            raise GraphAPIError(
                f"Graph API returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if not isinstance(body, dict):
            return {"data": body}
        return body

    async def _get_page(self, path: str, access_token: str, params: Dict[str, Any]) -> GraphPage:
        return GraphPage.from_payload(await self._request("GET", path, access_token=access_token, params=params))

    async def iter_pages(
        self, first: GraphPage, max_pages: int | None = None
    ) -> AsyncIterator[Dict[str, Any]]:
        """Yield every row, following ``paging.next`` links (which embed the token)."""
        page: GraphPage | None = first
        fetched = 1
        while page is not None:
            for row in page.data:
                yield row
            if not page.next_url or (max_pages is not None and fetched >= max_pages):
                break
            page = GraphPage.from_payload(await self._request("GET", page.next_url))
            fetched += 1

    # OAuth

    def authorization_url(self, state: str | None = None) -> dict[str, str]:
        if not self.app_id or not self.redirect_uri:
            raise IntegrationNotConfigured("Facebook OAuth is not configured")
        state_value = state or secrets.token_urlsafe(24)
        params = {
            "client_id": self.app_id,
            "redirect_uri": self.redirect_uri,
            "scope": settings.facebook_oauth_scope,
            "response_type": "code",
            "state": state_value,
        }
        return {
            "auth_url": f"https://www.facebook.com/{settings.graph_api_version}/dialog/oauth?{urlencode(params)}",
            "state": state_value,
        }

    def _require_app_credentials(self) -> None:
        if not self.app_id or not self.app_secret:
            raise IntegrationNotConfigured("Facebook app credentials are not configured")

    async def exchange_code_for_token(self, code: str) -> Dict[str, Any]:
        self._require_app_credentials()
        return await self._request(
            "GET",
            "oauth/access_token",
            params={
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "redirect_uri": self.redirect_uri,
                "code": code,
            },
        )

    async def get_long_lived_token(self, short_lived_token: str) -> Dict[str, Any]:
        self._require_app_credentials()
        return await self._request(
            "GET",
            "oauth/access_token",
            params={
                "grant_type": "fb_exchange_token",
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "fb_exchange_token": short_lived_token,
            },
        )

    # Reads

    async def get_user_profile(self, access_token: str) -> Dict[str, Any]:
        return await self._request(
            "GET", "me", access_token=access_token, params={"fields": "id,name,email,picture"}
        )

    async def get_ad_accounts(self, access_token: str) -> GraphPage:
        return await self._get_page("me/adaccounts", access_token, {"fields": AD_ACCOUNT_FIELDS})

    async def get_campaigns(self, ad_account_id: str, access_token: str) -> GraphPage:
        return await self._get_page(f"act_{ad_account_id}/campaigns", access_token, {"fields": CAMPAIGN_FIELDS})

    async def get_ad_sets(self, campaign_id: str, access_token: str) -> GraphPage:
        return await self._get_page(f"{campaign_id}/adsets", access_token, {"fields": AD_SET_FIELDS})

    async def get_ads(self, ad_set_id: str, access_token: str) -> GraphPage:
        return await self._get_page(f"{ad_set_id}/ads", access_token, {"fields": AD_FIELDS})

    @staticmethod
    def _insight_params(
        since: str | None = None,
        until: str | None = None,
        time_increment: str | int | None = None,
        **extra: Any,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"fields": INSIGHT_FIELDS}
        if since and until:
            params["time_range"] = json.dumps({"since": since, "until": until})
        if time_increment:
            params["time_increment"] = time_increment
        params.update({k: v for k, v in extra.items() if v is not None})
        return params

    async def get_account_insights(
        self, ad_account_id: str, access_token: str, **params: Any
    ) -> GraphPage:
        return await self._get_page(
            f"act_{ad_account_id}/insights", access_token, self._insight_params(**params)
        )

    async def get_campaign_insights(
        self, campaign_id: str, access_token: str, **params: Any
    ) -> GraphPage:
        return await self._get_page(
            f"{campaign_id}/insights", access_token, self._insight_params(**params)
        )

    async def get_breakdown(
        self,
        object_id: str,
        access_token: str,
        kind: str,
        since: str | None = None,
        until: str | None = None,
    ) -> GraphPage:
        """Insights split by demographics, placements or devices."""
        if kind not in BREAKDOWNS:
            raise ValueError(f"Unknown breakdown: {kind}")
        fields, breakdowns = BREAKDOWNS[kind]
        params: Dict[str, Any] = {"fields": fields, "breakdowns": breakdowns}
        if since and until:
            params["time_range"] = json.dumps({"since": since, "until": until})
        return await self._get_page(f"{object_id}/insights", access_token, params)

    async def search_ad_library(
        self,
        access_token: str,
        search_terms: str | None = None,
        ad_type: str | None = None,
        countries: List[str] | None = None,
        delivery_date_min: str | None = None,
        delivery_date_max: str | None = None,
        limit: int = 25,
        after: str | None = None,
    ) -> GraphPage:
        params = {
            "search_terms": search_terms,
            "ad_type": ad_type or "POLITICAL_AND_ISSUE_ADS",
            "ad_reached_countries": json.dumps(countries or ["US"]),
            "ad_delivery_date_min": delivery_date_min,
            "ad_delivery_date_max": delivery_date_max,
            "fields": AD_LIBRARY_FIELDS,
            "limit": limit,
            "after": after,
        }
        return await self._get_page("ads_archive", access_token, params)

    async def get_ad_library_details(self, ad_id: str, access_token: str) -> Dict[str, Any]:
        return await self._request("GET", ad_id, access_token=access_token, params={"fields": AD_DETAIL_FIELDS})

    # Writes

    async def create_campaign(
        self, ad_account_id: str, campaign: Dict[str, Any], access_token: str
    ) -> Dict[str, Any]:
        return await self._request(
            "POST", f"act_{ad_account_id}/campaigns", access_token=access_token, data=_form(campaign)
        )

    async def update_campaign(
        self, campaign_id: str, changes: Dict[str, Any], access_token: str
    ) -> Dict[str, Any]:
        return await self._request("POST", campaign_id, access_token=access_token, data=_form(changes))

    async def delete_campaign(self, campaign_id: str, access_token: str) -> Dict[str, Any]:
        return await self._request("DELETE", campaign_id, access_token=access_token)


def _form(values: Dict[str, Any]) -> Dict[str, str]:
    """Graph POST bodies are form-encoded; lists and dicts travel as JSON."""
    encoded: Dict[str, str] = {}
    for key, value in values.items():
        if value is None:
            continue
        if isinstance(value, (list, dict)):
            encoded[key] = json.dumps(value)
        else:
            encoded[key] = str(value)
    return encoded


def get_graph_client() -> GraphAPIClient:
    return GraphAPIClient()
