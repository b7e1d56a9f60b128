"""
Favorites API endpoints - per-identity POI favorites
"""
from typing import Annotated, Optional, Set

from fastapi import APIRouter, Depends, Path

from poi_share.core.dependencies import get_device_identity, get_favorite_store, get_identity, get_owner
from poi_share.core.exceptions import ValidationError
from poi_share.core.identity import AnonymousIdentity, AuthenticatedIdentity, Identity
from poi_share.schemas.base import Envelope
from poi_share.schemas.favorite import (
    FavoriteList,
    FavoriteMergeRequest,
    FavoriteToggleResult,
)
from poi_share.services.favorite_store import FavoriteStore

router = APIRouter(prefix="/favorites", tags=["favorites"])

PoiId = Annotated[str, Path(min_length=1, max_length=64)]


def _favorite_list(poi_ids: Set[str]) -> FavoriteList:
    ordered = sorted(poi_ids)
    return FavoriteList(poi_ids=ordered, count=len(ordered))


@router.get("", response_model=Envelope[FavoriteList])
async def list_favorites(
    identity: Identity = Depends(get_identity),
    store: FavoriteStore = Depends(get_favorite_store),
):
    """
    List the caller's favorites

    Authenticated callers read their account favorites, anonymous callers
    (``X-Device-Id``) read the device list.
    """
    favorites = await store.list(identity)
    return Envelope(status="ok", data=_favorite_list(favorites))


@router.post("/{poi_id}/toggle", response_model=Envelope[FavoriteToggleResult])
async def toggle_favorite(
    poi_id: PoiId,
    identity: Identity = Depends(get_identity),
    store: FavoriteStore = Depends(get_favorite_store),
):
    favorited = await store.toggle(identity, poi_id)
    return Envelope(status="ok", data=FavoriteToggleResult(poi_id=poi_id, favorited=favorited))


@router.put("/{poi_id}", response_model=Envelope[FavoriteToggleResult])
async def add_favorite(
    poi_id: PoiId,
    identity: Identity = Depends(get_identity),
    store: FavoriteStore = Depends(get_favorite_store),
):
    """Idempotent add."""
    await store.add(identity, poi_id)
    return Envelope(status="ok", data=FavoriteToggleResult(poi_id=poi_id, favorited=True))


@router.delete("/{poi_id}", response_model=Envelope[FavoriteToggleResult])
async def remove_favorite(
    poi_id: PoiId,
    identity: Identity = Depends(get_identity),
    store: FavoriteStore = Depends(get_favorite_store),
):
    """Idempotent remove."""
    await store.remove(identity, poi_id)
    return Envelope(status="ok", data=FavoriteToggleResult(poi_id=poi_id, favorited=False))


@router.post("/merge", response_model=Envelope[FavoriteList])
async def merge_favorites(
    request: FavoriteMergeRequest,
    identity: Identity = Depends(get_identity),
    store: FavoriteStore = Depends(get_favorite_store),
):
    """
    Union a set of POI ids into the caller's favorites

    Merging is idempotent; ids already present are left alone.
    """
    favorites = await store.merge(identity, request.poi_ids)
    return Envelope(status="ok", data=_favorite_list(favorites))


@router.post("/login-merge", response_model=Envelope[FavoriteList])
async def login_merge(
    owner: AuthenticatedIdentity = Depends(get_owner),
    device: Optional[AnonymousIdentity] = Depends(get_device_identity),
    store: FavoriteStore = Depends(get_favorite_store),
):
    """
    Move the calling device's anonymous favorites into the signed-in account

    Send the bearer token together with the device's own ``X-Device-Id``
    header; that device's local list is merged and then cleared.
    """
    if device is None:
        raise ValidationError("Send the X-Device-Id header of the device to merge")
    favorites = await store.merge_on_login(device, owner)
    return Envelope(status="ok", data=_favorite_list(favorites))
