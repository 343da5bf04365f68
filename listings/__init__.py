"""Listings module for managing marketplace listings.

This module provides functionality for:
- Creating and updating listings (owner only)
- Pausing and re-activating listings
- Reading a listing with its owner's profile
- Searching through the backend's search_listings procedure
- Recording views and contact clicks (see listings.analytics)
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional, Any

from auth import Identity, require_identity
from backend import Backend, BackendError, InvalidArgumentError
from .models import (
    Listing, ListingAttributes, ListingStatus, Profile, PromotionState, PlanTier
)
from .analytics import AnalyticsRecorder, CounterType, COUNTER_KEYS

logger = logging.getLogger(__name__)


# User-mutable fields for listings
MUTABLE_FIELDS = {
    'title',
    'description',
    'price',
    'category_id',
    'type',
    'city',
    'state',
    'status',
    'attributes',
    'images'
}

# System-managed fields (not directly mutable by users)
SYSTEM_FIELDS = {
    'id',
    'owner_id',
    'created_at',
    'analytics'
}

PROFILE_COLUMNS = ('id', 'name', 'phone', 'avatar_url', 'created_at')

class ListingError(Exception):
    """Base exception for listing operations."""
    pass

class ListingNotFoundError(ListingError):
    """Raised when a listing is not found."""
    pass

class ListingPermissionError(ListingError):
    """Raised when someone other than the owner tries to change a listing."""
    pass

class ContactValidationError(ListingError):
    """Raised when an email contact request is incomplete."""
    pass

def _prepare_updates(updates: Dict[str, Any]) -> Dict[str, Any]:
    """Validate update fields and convert typed values for the backend."""
    invalid_fields = set(updates.keys()) - MUTABLE_FIELDS
    if invalid_fields:
        raise ListingError(f"Cannot update fields: {sorted(invalid_fields)}")

    values = dict(updates)
    if 'status' in values:
        try:
            values['status'] = ListingStatus(values['status']).value
        except ValueError:
            raise ListingError(f"Invalid status: {values['status']}")
    if isinstance(values.get('attributes'), ListingAttributes):
        values['attributes'] = values['attributes'].to_bag()
    if values.get('price') is not None:
        try:
            values['price'] = Decimal(str(values['price']))
        except ArithmeticError:
            raise ListingError(f"Invalid price: {values['price']}")
    return values

class ListingManager:
    """Manager class for handling listing operations."""

    def __init__(self, backend: Optional[Backend] = None, analytics_fallback: bool = True):
        """Initialize the listing manager.

        Args:
            backend: Optional backend client. If not provided, one bound to the shared pool is used.
            analytics_fallback: Allow the read-modify-write counter fallback
        """
        self.backend = backend or Backend()
        self.analytics = AnalyticsRecorder(self.backend, fallback_enabled=analytics_fallback)

    async def create_listing(
        self,
        identity: Identity,
        title: str,
        category_id: str,
        description: Optional[str] = None,
        price: Optional[Decimal] = None,
        type: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
        attributes: Optional[ListingAttributes] = None,
        images: Optional[List[str]] = None
    ) -> Listing:
        """Create a new listing as a draft owned by the caller.

        Args:
            identity: The signed-in user creating the listing
            title: Listing title
            category_id: Category the listing is published in
            description: Optional description
            price: Optional asking price
            type: Optional listing type (product, service, job)
            city: Optional city
            state: Optional state
            attributes: Optional category details and promotion state
            images: Optional ordered list of image URLs

        Returns:
            The created listing

        Raises:
            AuthRequiredError: If there is no signed-in user
            ListingError: If the title is empty
        """
        identity = require_identity(identity)

        if not title or not title.strip():
            raise ListingError("Listing title is required")

        row = await self.backend.insert('listings', {
            'title': title.strip(),
            'description': description,
            'price': Decimal(str(price)) if price is not None else None,
            'category_id': category_id,
            'type': type,
            'city': city,
            'state': state,
            'status': ListingStatus.DRAFT.value,
            'owner_id': identity.user_id,
            'attributes': (attributes or ListingAttributes()).to_bag(),
            'images': list(images or [])
        })
        logger.info(f"Listing {row['id']} created by {identity.user_id}")
        return Listing.from_row(row)

    async def _get_row(self, listing_id: str) -> Dict[str, Any]:
        try:
            row = await self.backend.select_one('listings', filters={'id': listing_id})
        except InvalidArgumentError:
            row = None
        if not row:
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        return row

    async def get_listing(self, listing_id: str) -> Listing:
        """Get a listing by ID with its owner's profile joined.

        Raises:
            ListingNotFoundError: If the listing does not exist
        """
        row = await self._get_row(listing_id)
        profile = await self.backend.select_one(
            'profiles',
            columns=PROFILE_COLUMNS,
            filters={'id': row['owner_id']}
        )
        return Listing.from_row(row, profile)

    async def get_public_listing(self, listing_id: str, viewer: Optional[Identity] = None) -> Listing:
        """Get a listing for its detail page.

        Drafts and paused listings are only shown to their owner.

        Raises:
            ListingNotFoundError: If the listing does not exist or is hidden from the viewer
        """
        listing = await self.get_listing(listing_id)
        if listing.status != ListingStatus.ACTIVE and (viewer is None or viewer.user_id != listing.owner_id):
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        return listing

    async def get_owned_listing(self, identity: Identity, listing_id: str) -> Listing:
        """Get a listing, checking the caller owns it.

        Raises:
            AuthRequiredError: If there is no signed-in user
            ListingNotFoundError: If the listing does not exist
            ListingPermissionError: If the caller is not the owner
        """
        identity = require_identity(identity)
        row = await self._get_row(listing_id)
        if row['owner_id'] != identity.user_id:
            raise ListingPermissionError("You can only change your own listings")
        return Listing.from_row(row)

    async def get_listings_by_ids(self, listing_ids: List[str]) -> List[Listing]:
        """Get listings with owner profiles, in the order of the given ids."""
        if not listing_ids:
            return []

        rows = await self.backend.select('listings', filters={'id': list(listing_ids)})
        owner_ids = sorted({row['owner_id'] for row in rows})
        profiles = {}
        if owner_ids:
            for profile in await self.backend.select(
                'profiles', columns=PROFILE_COLUMNS, filters={'id': owner_ids}
            ):
                profiles[profile['id']] = profile

        by_id = {row['id']: row for row in rows}
        return [
            Listing.from_row(by_id[listing_id], profiles.get(by_id[listing_id]['owner_id']))
            for listing_id in listing_ids
            if listing_id in by_id
        ]

    async def get_my_listings(self, identity: Identity) -> List[Listing]:
        """Get the caller's listings, newest first."""
        identity = require_identity(identity)
        rows = await self.backend.select(
            'listings',
            filters={'owner_id': identity.user_id},
            order_by='created_at',
            descending=True
        )
        return [Listing.from_row(row) for row in rows]

    async def update_listing(
        self,
        identity: Identity,
        listing_id: str,
        updates: Dict[str, Any]
    ) -> Listing:
        """Update a listing's details.

        Args:
            identity: The signed-in user, who must own the listing
            listing_id: The listing id
            updates: Dict of mutable fields to change

        Returns:
            Updated listing

        Raises:
            ListingNotFoundError: If listing doesn't exist
            ListingPermissionError: If the caller is not the owner
            ListingError: If update contains invalid fields or values
        """
        await self.get_owned_listing(identity, listing_id)

        values = _prepare_updates(updates)
        if not values:
            return await self.get_listing(listing_id)

        rows = await self.backend.update(
            'listings',
            values,
            filters={'id': listing_id, 'owner_id': identity.user_id}
        )
        if not rows:
            # Deleted between the ownership check and the update
            raise ListingNotFoundError(f"Listing {listing_id} not found")

        logger.info(f"Listing {listing_id} updated fields {sorted(values)}")
        return Listing.from_row(rows[0])

    async def set_status(self, identity: Identity, listing_id: str, status: ListingStatus) -> Listing:
        """Set a listing's status (owner only)."""
        return await self.update_listing(identity, listing_id, {'status': ListingStatus(status)})

    async def toggle_status(self, identity: Identity, listing_id: str) -> Listing:
        """Pause an active listing or activate a paused or draft one."""
        listing = await self.get_owned_listing(identity, listing_id)
        new_status = (
            ListingStatus.INACTIVE
            if listing.status == ListingStatus.ACTIVE
            else ListingStatus.ACTIVE
        )
        return await self.update_listing(identity, listing_id, {'status': new_status})

    async def update_attributes(
        self,
        identity: Identity,
        listing_id: str,
        attributes: ListingAttributes
    ) -> Listing:
        """Replace a listing's attribute bag in a single update (owner only)."""
        return await self.update_listing(identity, listing_id, {'attributes': attributes})

    async def search_listings(
        self,
        category_id: Optional[str] = None,
        city: Optional[str] = None,
        price_min: Optional[Decimal] = None,
        price_max: Optional[Decimal] = None,
        attributes: Optional[Dict[str, Any]] = None
    ) -> List[Listing]:
        """Search active listings through the search_listings procedure.

        Filtering and ordering happen in the backend. A failed search is
        logged and returns no results.

        Args:
            category_id: Optional category filter
            city: Optional city filter
            price_min: Optional minimum price
            price_max: Optional maximum price
            attributes: Optional attribute values the listing bag must contain

        Returns:
            Matching listings
        """
        try:
            rows = await self.backend.call(
                'search_listings',
                p_category_id=category_id or None,
                p_city=city or None,
                p_price_min=price_min,
                p_price_max=price_max,
                p_attrs=attributes or {}
            )
        except BackendError as e:
            logger.error(f"search_listings failed: {e}")
            return []
        return [Listing.from_row(row) for row in rows]

    async def record_view(self, listing_id: str) -> bool:
        """Count a detail page view."""
        return await self.analytics.increment(listing_id, CounterType.VIEW)

    async def record_whatsapp_click(self, listing_id: str) -> bool:
        """Count a WhatsApp contact click."""
        return await self.analytics.increment(listing_id, CounterType.WHATSAPP)

    async def request_email_contact(
        self,
        listing_id: str,
        email: Optional[str],
        robot_check: bool
    ) -> Dict[str, Any]:
        """Validate an email contact request and count the click.

        Args:
            listing_id: The listing being contacted
            email: The visitor's email address
            robot_check: Whether the visitor confirmed they are not a robot

        Returns:
            Dict with the listing id and title and the recorded flag

        Raises:
            ContactValidationError: If the email is missing or the robot check is unchecked
            ListingNotFoundError: If the listing does not exist
        """
        if not email or not email.strip():
            raise ContactValidationError("Please enter your email")
        if '@' not in email:
            raise ContactValidationError("Please enter a valid email")
        if not robot_check:
            raise ContactValidationError("Confirm that you are not a robot")

        row = await self._get_row(listing_id)
        recorded = await self.analytics.increment(listing_id, CounterType.EMAIL)
        return {
            'listing_id': row['id'],
            'title': row['title'],
            'recorded': recorded
        }

__all__ = [
    'ListingManager',
    'ListingError',
    'ListingNotFoundError',
    'ListingPermissionError',
    'ContactValidationError',
    'Listing',
    'ListingAttributes',
    'ListingStatus',
    'Profile',
    'PromotionState',
    'PlanTier',
    'AnalyticsRecorder',
    'CounterType',
    'COUNTER_KEYS',
    'MUTABLE_FIELDS'
]
