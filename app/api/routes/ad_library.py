from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, ValidationError
from app.core.permissions import get_user_permissions, has_permission, require_permission
from app.core.security import get_optional_user
from app.database import get_db
from app.integrations.facebook import GraphAPIClient, get_graph_client
from app.models import AdCollection, AdCollectionItem, AdLibraryItem, User
from app.schemas.ad_library import (
    CollectionCreate,
    CollectionItemAdd,
    CollectionUpdate,
    serialize_collection,
)
from app.services.facebook_sync import get_valid_facebook_account

logger = logging.getLogger(__name__)

router = APIRouter()


def _own_collection(db: Session, user_id: str, collection_id: str) -> AdCollection:
    collection = (
        db.query(AdCollection)
        .filter(AdCollection.id == collection_id, AdCollection.user_id == user_id)
        .first()
    )
    if collection is None:
        raise NotFoundError("Collection not found")
    return collection


@router.get("/search")
async def search(
    query: Optional[str] = None,
    ad_type: Optional[str] = None,
    country: list[str] = Query(default=["US"]),
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    limit: int = Query(default=25, ge=1, le=100),
    after: Optional[str] = None,
    user: User = Depends(require_permission("adLibrary:read")),
    db: Session = Depends(get_db),
    graph: GraphAPIClient = Depends(get_graph_client),
) -> dict[str, Any]:
    account = get_valid_facebook_account(db, user.id)
    page = await graph.search_ad_library(
        account.access_token,
        search_terms=query,
        ad_type=ad_type,
        countries=country,
        delivery_date_min=date_from,
        delivery_date_max=date_to,
        limit=limit,
        after=after,
    )
    cursors = page.paging.get("cursors") or {}
    return {"results": page.data, "next_cursor": cursors.get("after") if page.next_url else None}


@router.get("/ads/{ad_id}")
async def ad_details(
    ad_id: str,
    user: User = Depends(require_permission("adLibrary:read")),
    db: Session = Depends(get_db),
    graph: GraphAPIClient = Depends(get_graph_client),
) -> dict[str, Any]:
    account = get_valid_facebook_account(db, user.id)
    return {"ad": await graph.get_ad_library_details(ad_id, account.access_token)}


@router.get("/collections")
async def list_collections(
    user: User = Depends(require_permission("adLibrary:read")),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    rows = (
        db.query(AdCollection)
        .filter(AdCollection.user_id == user.id)
        .order_by(AdCollection.created_at.desc())
        .all()
    )
    return {"collections": [serialize_collection(c) for c in rows]}


@router.post("/collections", status_code=status.HTTP_201_CREATED)
async def create_collection(
    payload: CollectionCreate,
    user: User = Depends(require_permission("adLibrary:write")),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    collection = AdCollection(user_id=user.id, **payload.model_dump())
    db.add(collection)
    db.commit()
    db.refresh(collection)
    return {"collection": serialize_collection(collection)}


@router.get("/collections/{collection_id}")
async def get_collection(
    collection_id: str,
    user: User | None = Depends(get_optional_user),
    permissions: set[str] = Depends(get_user_permissions),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Public collections are readable without a token; private ones only by their owner."""
    collection = db.get(AdCollection, collection_id)
    visible = collection is not None and (
        bool(collection.is_public)
        or (
            user is not None
            and collection.user_id == user.id
            and has_permission(permissions, "adLibrary:read")
        )
    )
    if not visible:
        raise NotFoundError("Collection not found")
    return {"collection": serialize_collection(collection, include_items=True)}


@router.put("/collections/{collection_id}")
async def update_collection(
    collection_id: str,
    payload: CollectionUpdate,
    user: User = Depends(require_permission("adLibrary:write")),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    collection = _own_collection(db, user.id, collection_id)
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(collection, key, value)
    db.commit()
    db.refresh(collection)
    return {"collection": serialize_collection(collection)}


@router.delete("/collections/{collection_id}")
async def delete_collection(
    collection_id: str,
    user: User = Depends(require_permission("adLibrary:write")),
    db: Session = Depends(get_db),
) -> dict[str, str]:
    collection = _own_collection(db, user.id, collection_id)
    db.delete(collection)
    db.commit()
    return {"message": "Collection deleted successfully"}


@router.post("/collections/{collection_id}/ads", status_code=status.HTTP_201_CREATED)
async def add_ad(
    collection_id: str,
    payload: CollectionItemAdd,
    user: User = Depends(require_permission("adLibrary:write")),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    collection = _own_collection(db, user.id, collection_id)
    item = db.get(AdLibraryItem, payload.ad_library_item_id)
    if item is None:
        if payload.ad is None:
            raise ValidationError("Ad snapshot is required for ads not yet saved")
        item = AdLibraryItem(id=payload.ad_library_item_id, facebook_ad_id=payload.ad_library_item_id)
        db.add(item)
    if payload.ad is not None:
        item.page_id = payload.ad.page_id
        item.page_name = payload.ad.page_name
        item.snapshot_url = payload.ad.ad_snapshot_url
        item.delivery_start = payload.ad.ad_delivery_start_time
        item.delivery_stop = payload.ad.ad_delivery_stop_time
        item.content = payload.ad.content

    duplicate = (
        db.query(AdCollectionItem.id)
        .filter(
            AdCollectionItem.collection_id == collection.id,
            AdCollectionItem.ad_library_item_id == payload.ad_library_item_id,
        )
        .first()
    )
    if duplicate:
        db.rollback()
        raise ValidationError("Ad is already in this collection")

    entry = AdCollectionItem(
        collection_id=collection.id, ad_library_item_id=payload.ad_library_item_id, notes=payload.notes
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return {
        "collection_item": {
            "id": entry.id,
            "collection_id": entry.collection_id,
            "ad_library_item_id": entry.ad_library_item_id,
            "notes": entry.notes,
        }
    }


@router.delete("/collections/{collection_id}/ads/{ad_id}")
async def remove_ad(
    collection_id: str,
    ad_id: str,
    user: User = Depends(require_permission("adLibrary:write")),
    db: Session = Depends(get_db),
) -> dict[str, str]:
    collection = _own_collection(db, user.id, collection_id)
    removed = (
        db.query(AdCollectionItem)
        .filter(AdCollectionItem.collection_id == collection.id, AdCollectionItem.ad_library_item_id == ad_id)
        .delete()
    )
    if not removed:
        raise NotFoundError("Ad is not in this collection")
    db.commit()
    return {"message": "Ad removed from collection successfully"}
