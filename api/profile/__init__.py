"""Profile, dashboard and favorites endpoints."""

from typing import List

from fastapi import APIRouter, Depends, Security

from auth import Identity, get_current_user
from backend import BackendError
from favorites import FavoritesManager, FavoritesError, FavoriteListingNotFoundError
from listings import Listing, Profile
from profiles import ProfileManager, ProfileError, ProfileUpdate, DashboardOverview
from ..dependencies import get_favorites_manager, get_profile_manager
from ..errors import bad_request, not_found, service_unavailable

router = APIRouter(
    prefix="/profile",
    tags=["Profile"]
)

@router.get("/", response_model=Profile)
async def get_profile(
    identity: Identity = Security(get_current_user),
    manager: ProfileManager = Depends(get_profile_manager)
):
    """Get the authenticated user's profile."""
    try:
        return await manager.get_profile(identity)
    except BackendError as e:
        raise service_unavailable("get_profile", e)

@router.patch("/", response_model=Profile)
async def update_profile(
    update: ProfileUpdate,
    identity: Identity = Security(get_current_user),
    manager: ProfileManager = Depends(get_profile_manager)
):
    """Update the authenticated user's name and phone."""
    try:
        return await manager.update_profile(identity, name=update.name, phone=update.phone)
    except ProfileError as e:
        raise bad_request(e)
    except BackendError as e:
        raise service_unavailable("update_profile", e)

@router.get("/dashboard", response_model=DashboardOverview)
async def get_dashboard(
    identity: Identity = Security(get_current_user),
    manager: ProfileManager = Depends(get_profile_manager)
):
    """Get the dashboard overview counts."""
    try:
        return await manager.get_dashboard(identity)
    except BackendError as e:
        raise service_unavailable("get_dashboard", e)

@router.get("/favorites", response_model=List[Listing])
async def get_favorites(
    identity: Identity = Security(get_current_user),
    manager: FavoritesManager = Depends(get_favorites_manager)
):
    """Get the authenticated user's favorite listings."""
    try:
        return await manager.get_favorite_listings(identity)
    except BackendError as e:
        raise service_unavailable("get_favorites", e)

@router.get("/favorites/ids", response_model=List[str])
async def get_favorite_ids(
    identity: Identity = Security(get_current_user),
    manager: FavoritesManager = Depends(get_favorites_manager)
):
    """Get the ids of the authenticated user's favorite listings."""
    try:
        return sorted(await manager.get_favorite_ids(identity))
    except BackendError as e:
        raise service_unavailable("get_favorite_ids", e)

@router.post("/favorites/{listing_id}")
async def toggle_favorite(
    listing_id: str,
    identity: Identity = Security(get_current_user),
    manager: FavoritesManager = Depends(get_favorites_manager)
):
    """Add a listing to favorites, or remove it if it is already there."""
    try:
        favorite = await manager.toggle_favorite(identity, listing_id)
    except FavoriteListingNotFoundError as e:
        raise not_found(e)
    except FavoritesError as e:
        raise bad_request(e)
    except BackendError as e:
        raise service_unavailable("toggle_favorite", e)
    return {"listing_id": listing_id, "favorite": favorite}
