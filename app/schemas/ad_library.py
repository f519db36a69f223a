from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from app.models import AdCollection, AdLibraryItem


class CollectionCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    is_public: bool = False


class CollectionUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    is_public: Optional[bool] = None


class AdSnapshot(BaseModel):
    """Ad Library row as returned by search, stored alongside the collection item."""

    page_id: Optional[str] = None
    page_name: Optional[str] = None
    ad_snapshot_url: Optional[str] = None
    ad_delivery_start_time: Optional[datetime] = None
    ad_delivery_stop_time: Optional[datetime] = None
    content: dict[str, Any] = Field(default_factory=dict)


class CollectionItemAdd(BaseModel):
    ad_library_item_id: str = Field(min_length=1, max_length=64)
    notes: Optional[str] = None
    ad: Optional[AdSnapshot] = None


def serialize_library_item(item: AdLibraryItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "facebook_ad_id": item.facebook_ad_id,
        "page_id": item.page_id,
        "page_name": item.page_name,
        "content": item.content or {},
        "snapshot_url": item.snapshot_url,
        "delivery_start": item.delivery_start.isoformat() if item.delivery_start else None,
        "delivery_stop": item.delivery_stop.isoformat() if item.delivery_stop else None,
    }


def serialize_collection(collection: AdCollection, include_items: bool = False) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": collection.id,
        "user_id": collection.user_id,
        "name": collection.name,
        "description": collection.description,
        "is_public": bool(collection.is_public),
        "item_count": len(collection.items),
        "created_at": collection.created_at.isoformat() if collection.created_at else None,
    }
    if include_items:
        data["items"] = [
            {
                "id": entry.id,
                "notes": entry.notes,
                "ad": serialize_library_item(entry.ad_library_item),
            }
            for entry in collection.items
        ]
    return data
