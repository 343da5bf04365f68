"""Favorites module for saving listings to a user's watch list."""

import logging
from typing import List, Optional, Set

from auth import Identity, require_identity
from backend import Backend, DuplicateRecordError, InvalidArgumentError, ReferenceNotFoundError
from listings import Listing, ListingManager

logger = logging.getLogger(__name__)

class FavoritesError(Exception):
    """Base exception for favorites operations."""
    pass

class FavoriteListingNotFoundError(FavoritesError):
    """Raised when favoriting a listing that does not exist."""
    pass

class FavoritesManager:
    """Manager class for a user's favorite listings."""

    def __init__(self, backend: Optional[Backend] = None):
        self.backend = backend or Backend()

    async def is_favorite(self, identity: Identity, listing_id: str) -> bool:
        identity = require_identity(identity)
        row = await self.backend.select_one(
            'favorites',
            columns=('id',),
            filters={'user_id': identity.user_id, 'listing_id': listing_id}
        )
        return row is not None

    async def toggle_favorite(self, identity: Identity, listing_id: str) -> bool:
        """Add the listing to the caller's favorites, or remove it if already there.

        Args:
            identity: The signed-in user
            listing_id: The listing to toggle

        Returns:
            True if the listing is now a favorite, False if it was removed

        Raises:
            FavoriteListingNotFoundError: If the listing does not exist
        """
        identity = require_identity(identity)
        if not listing_id:
            raise FavoritesError("A listing is required")
        keys = {'user_id': identity.user_id, 'listing_id': listing_id}

        try:
            present = await self.is_favorite(identity, listing_id)
        except InvalidArgumentError:
            raise FavoriteListingNotFoundError(f"Listing {listing_id} not found")

        if present:
            await self.backend.delete('favorites', filters=keys)
            logger.debug(f"Listing {listing_id} removed from favorites of {identity.user_id}")
            return False

        try:
            await self.backend.insert('favorites', keys)
        except DuplicateRecordError:
            # A concurrent toggle already added it
            logger.debug(f"Listing {listing_id} already a favorite of {identity.user_id}")
        except ReferenceNotFoundError:
            raise FavoriteListingNotFoundError(f"Listing {listing_id} not found")
        return True

    async def get_favorite_ids(self, identity: Identity) -> Set[str]:
        identity = require_identity(identity)
        rows = await self.backend.select(
            'favorites',
            columns=('listing_id',),
            filters={'user_id': identity.user_id}
        )
        return {row['listing_id'] for row in rows}

    async def get_favorite_listings(self, identity: Identity) -> List[Listing]:
        """Get the caller's favorite listings, most recently saved first."""
        identity = require_identity(identity)
        rows = await self.backend.select(
            'favorites',
            columns=('listing_id', 'created_at'),
            filters={'user_id': identity.user_id},
            order_by='created_at',
            descending=True
        )
        listing_ids = [row['listing_id'] for row in rows]
        return await ListingManager(self.backend).get_listings_by_ids(listing_ids)

__all__ = [
    'FavoritesManager',
    'FavoritesError',
    'FavoriteListingNotFoundError'
]
