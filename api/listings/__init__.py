"""Listings API endpoints."""

import json
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Security, status
from pydantic import BaseModel

from auth import Identity, get_current_user, get_optional_user
from backend import BackendError
from chat import (
    ChatManager, ChatError, ListingUnavailableError, Message, MessageCreate
)
from listings import (
    ListingManager, ListingError, ListingNotFoundError, ListingPermissionError,
    ContactValidationError, Listing, ListingAttributes, ListingStatus
)
from ..dependencies import get_chat_manager, get_listing_manager
from ..errors import bad_request, forbidden, not_found, service_unavailable

# Create router without global security
router = APIRouter(
    prefix="/listings",
    tags=["Listings"]
)

# Promotion endpoints go first so /promotion-plans is not taken for a listing id
from .promotion import router as promotion_router

router.include_router(promotion_router)

# Model definitions
class CreateListingRequest(BaseModel):
    """Request model for creating a listing."""
    title: str
    category_id: str
    description: Optional[str] = None
    price: Optional[Decimal] = None
    type: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    attributes: Optional[Dict[str, Any]] = None
    images: Optional[List[str]] = None

class UpdateListingRequest(BaseModel):
    """Request model for updating a listing."""
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = None
    category_id: Optional[str] = None
    type: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    attributes: Optional[Dict[str, Any]] = None
    images: Optional[List[str]] = None

class StatusRequest(BaseModel):
    """Explicit status; without one the listing is toggled."""
    status: Optional[ListingStatus] = None

class EmailContactRequest(BaseModel):
    email: Optional[str] = None
    robot_check: bool = False

def _details_only(bag: Optional[Dict[str, Any]], current: Optional[ListingAttributes] = None) -> ListingAttributes:
    """Category details from a submitted bag; promotion keys are only set by checkout."""
    details = ListingAttributes.from_bag(bag).details
    if current is None:
        return ListingAttributes(details=details)
    return ListingAttributes(details=details, promotion=current.promotion)

@router.get("/search", response_model=List[Listing])
async def search(
    category_id: Optional[str] = Query(None),
    city: Optional[str] = Query(None),
    price_min: Optional[Decimal] = Query(None),
    price_max: Optional[Decimal] = Query(None),
    attrs: Optional[str] = Query(None, description="JSON object of attribute values to match"),
    manager: ListingManager = Depends(get_listing_manager)
):
    """Search active listings."""
    attributes = None
    if attrs:
        try:
            attributes = json.loads(attrs)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="attrs must be a JSON object")
        if not isinstance(attributes, dict):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="attrs must be a JSON object")

    return await manager.search_listings(
        category_id=category_id,
        city=city,
        price_min=price_min,
        price_max=price_max,
        attributes=attributes
    )

@router.get("/mine", response_model=List[Listing])
async def my_listings(
    identity: Identity = Security(get_current_user),
    manager: ListingManager = Depends(get_listing_manager)
):
    """Get the authenticated user's listings."""
    try:
        return await manager.get_my_listings(identity)
    except BackendError as e:
        raise service_unavailable("get_my_listings", e)

@router.post("/", response_model=Listing, status_code=status.HTTP_201_CREATED)
async def create_listing(
    request: CreateListingRequest,
    identity: Identity = Security(get_current_user),
    manager: ListingManager = Depends(get_listing_manager)
):
    """Create a draft listing owned by the authenticated user."""
    try:
        return await manager.create_listing(
            identity,
            title=request.title,
            category_id=request.category_id,
            description=request.description,
            price=request.price,
            type=request.type,
            city=request.city,
            state=request.state,
            attributes=_details_only(request.attributes),
            images=request.images
        )
    except ListingError as e:
        raise bad_request(e)
    except BackendError as e:
        raise service_unavailable("create_listing", e)

@router.get("/{listing_id}", response_model=Listing)
async def get_listing(
    listing_id: str,
    viewer: Optional[Identity] = Security(get_optional_user),
    manager: ListingManager = Depends(get_listing_manager)
):
    """Get a listing with its owner's profile and count the view.

    Drafts and paused listings are only visible to their owner and are not counted.
    """
    try:
        listing = await manager.get_public_listing(listing_id, viewer)
    except ListingNotFoundError as e:
        raise not_found(e)
    except BackendError as e:
        raise service_unavailable("get_listing", e)

    if listing.status == ListingStatus.ACTIVE:
        await manager.record_view(listing_id)
    return listing

@router.patch("/{listing_id}", response_model=Listing)
async def update_listing(
    listing_id: str,
    request: UpdateListingRequest,
    identity: Identity = Security(get_current_user),
    manager: ListingManager = Depends(get_listing_manager)
):
    """Update one of the authenticated user's listings."""
    try:
        updates = request.model_dump(exclude_unset=True)
        if 'attributes' in updates:
            current = await manager.get_owned_listing(identity, listing_id)
            updates['attributes'] = _details_only(updates['attributes'], current.attributes)
        return await manager.update_listing(identity, listing_id, updates)
    except ListingNotFoundError as e:
        raise not_found(e)
    except ListingPermissionError as e:
        raise forbidden(e)
    except ListingError as e:
        raise bad_request(e)
    except BackendError as e:
        raise service_unavailable("update_listing", e)

@router.post("/{listing_id}/status", response_model=Listing)
async def change_status(
    listing_id: str,
    request: Optional[StatusRequest] = None,
    identity: Identity = Security(get_current_user),
    manager: ListingManager = Depends(get_listing_manager)
):
    """Set a listing's status, or toggle between active and inactive."""
    try:
        if request is not None and request.status is not None:
            return await manager.set_status(identity, listing_id, request.status)
        return await manager.toggle_status(identity, listing_id)
    except ListingNotFoundError as e:
        raise not_found(e)
    except ListingPermissionError as e:
        raise forbidden(e)
    except ListingError as e:
        raise bad_request(e)
    except BackendError as e:
        raise service_unavailable("change_status", e)

@router.post("/{listing_id}/contact", response_model=Message, status_code=status.HTTP_201_CREATED)
async def contact_seller(
    listing_id: str,
    request: MessageCreate,
    identity: Identity = Security(get_current_user),
    chat: ChatManager = Depends(get_chat_manager)
):
    """Send a message to a listing's owner, opening the conversation if needed."""
    try:
        return await chat.contact_seller(identity, listing_id, request.body)
    except ListingUnavailableError as e:
        raise not_found(e)
    except ChatError as e:
        raise bad_request(e)
    except BackendError as e:
        raise service_unavailable("contact_seller", e)

@router.post("/{listing_id}/email-contact")
async def email_contact(
    listing_id: str,
    request: EmailContactRequest,
    manager: ListingManager = Depends(get_listing_manager)
):
    """Validate an email contact request and count the click."""
    try:
        return await manager.request_email_contact(listing_id, request.email, request.robot_check)
    except ContactValidationError as e:
        raise bad_request(e)
    except ListingNotFoundError as e:
        raise not_found(e)
    except BackendError as e:
        raise service_unavailable("email_contact", e)

@router.post("/{listing_id}/whatsapp-click")
async def whatsapp_click(
    listing_id: str,
    manager: ListingManager = Depends(get_listing_manager)
):
    """Count a WhatsApp contact click."""
    return {"recorded": await manager.record_whatsapp_click(listing_id)}
