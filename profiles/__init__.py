"""Profiles module for the account dashboard.

Profiles hold the display data shown next to a user's listings. The profile
row id is the user id issued by the auth backend.
"""

import logging
from typing import Dict, Optional

from pydantic import BaseModel

from auth import Identity, require_identity
from backend import Backend
from listings.models import Analytics, Profile, ListingStatus

logger = logging.getLogger(__name__)

class ProfileError(Exception):
    """Base exception for profile operations."""
    pass

class ProfileUpdate(BaseModel):
    """Fields a user can change on the settings tab."""
    name: Optional[str] = None
    phone: Optional[str] = None

class DashboardOverview(BaseModel):
    """Counts shown on the dashboard overview tab."""
    listings: int = 0
    active_listings: int = 0
    draft_listings: int = 0
    inactive_listings: int = 0
    conversations: int = 0
    favorites: int = 0
    views: int = 0

class ProfileManager:
    """Manager class for the caller's profile and dashboard."""

    def __init__(self, backend: Optional[Backend] = None):
        self.backend = backend or Backend()

    async def get_profile(self, identity: Identity) -> Profile:
        """Get the caller's profile, or an empty one if none is stored yet."""
        identity = require_identity(identity)
        row = await self.backend.select_one('profiles', filters={'id': identity.user_id})
        if not row:
            return Profile(id=identity.user_id)
        return Profile.model_validate(row)

    async def update_profile(
        self,
        identity: Identity,
        name: Optional[str] = None,
        phone: Optional[str] = None
    ) -> Profile:
        """Update the caller's name and phone, creating the profile if missing.

        Raises:
            ProfileError: If nothing was given to update
        """
        identity = require_identity(identity)
        values: Dict[str, str] = {}
        if name is not None:
            values['name'] = name.strip()
        if phone is not None:
            values['phone'] = phone.strip()
        if not values:
            raise ProfileError("Nothing to update")

        rows = await self.backend.update('profiles', values, filters={'id': identity.user_id})
        if rows:
            return Profile.model_validate(rows[0])

        logger.info(f"Creating profile for {identity.user_id}")
        row = await self.backend.insert('profiles', {'id': identity.user_id, **values})
        return Profile.model_validate(row)

    async def get_dashboard(self, identity: Identity) -> DashboardOverview:
        """Get counts of the caller's listings, conversations and favorites."""
        identity = require_identity(identity)

        listings = await self.backend.select(
            'listings',
            columns=('id', 'status', 'analytics'),
            filters={'owner_id': identity.user_id}
        )
        conversations = await self.backend.select(
            'conversations',
            columns=('id',),
            either={'buyer_id': identity.user_id, 'seller_id': identity.user_id}
        )
        favorites = await self.backend.select(
            'favorites',
            columns=('id',),
            filters={'user_id': identity.user_id}
        )

        by_status = {status: 0 for status in ListingStatus}
        views = 0
        for listing in listings:
            try:
                by_status[ListingStatus(listing['status'])] += 1
            except ValueError:
                logger.warning(f"Listing {listing['id']} has unknown status {listing['status']}")
            views += Analytics.model_validate(listing.get('analytics') or {}).views

        return DashboardOverview(
            listings=len(listings),
            active_listings=by_status[ListingStatus.ACTIVE],
            draft_listings=by_status[ListingStatus.DRAFT],
            inactive_listings=by_status[ListingStatus.INACTIVE],
            conversations=len(conversations),
            favorites=len(favorites),
            views=views
        )

__all__ = [
    'ProfileManager',
    'ProfileError',
    'ProfileUpdate',
    'DashboardOverview'
]
