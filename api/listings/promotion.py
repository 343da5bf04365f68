"""Promotion plan endpoints for listing owners."""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Security
from pydantic import BaseModel, Field

from auth import Identity, get_current_user
from backend import BackendError
from listings import Listing, ListingNotFoundError, ListingPermissionError
from promotions import (
    PromotionManager, PromotionPlan, PromotionSelection, InvalidPromotionError,
    PLANS, DURATION_CHOICES, DEFAULT_DURATION_DAYS, TIERED_PLANS,
    make_selection, total_price
)
from ..dependencies import get_promotion_manager
from ..errors import bad_request, forbidden, not_found, service_unavailable

router = APIRouter(tags=["Promotions"])

class PlanCatalog(BaseModel):
    plans: List[PromotionPlan]
    duration_choices: List[int]
    default_duration_days: int
    tiered_plans: List[str]

class CheckoutRequest(BaseModel):
    """Request model for a promotion checkout."""
    plans: List[str] = Field(default_factory=list)
    website_url: Optional[str] = None
    durations: Dict[str, int] = Field(default_factory=dict)

class SelectionResponse(BaseModel):
    selection: PromotionSelection
    total: Decimal

class CheckoutResponse(BaseModel):
    listing: Listing
    total: Decimal
    plan_expires_at: Optional[datetime] = None

@router.get("/promotion-plans", response_model=PlanCatalog)
async def get_plans():
    """Get the promotion plan catalog."""
    return PlanCatalog(
        plans=list(PLANS.values()),
        duration_choices=list(DURATION_CHOICES),
        default_duration_days=DEFAULT_DURATION_DAYS,
        tiered_plans=list(TIERED_PLANS)
    )

@router.get("/{listing_id}/promotion", response_model=SelectionResponse)
async def get_selection(
    listing_id: str,
    identity: Identity = Security(get_current_user),
    manager: PromotionManager = Depends(get_promotion_manager)
):
    """Get the checkout form for a listing, pre-filled from its current plan."""
    try:
        selection = await manager.get_selection(identity, listing_id)
    except ListingNotFoundError as e:
        raise not_found(e)
    except ListingPermissionError as e:
        raise forbidden(e)
    except BackendError as e:
        raise service_unavailable("get_promotion", e)
    return SelectionResponse(selection=selection, total=total_price(selection.plans))

@router.post("/{listing_id}/promotion", response_model=CheckoutResponse)
async def checkout(
    listing_id: str,
    request: CheckoutRequest,
    identity: Identity = Security(get_current_user),
    manager: PromotionManager = Depends(get_promotion_manager)
):
    """Apply the selected promotion plans to a listing."""
    try:
        selection = make_selection(request.plans, request.website_url, request.durations)
        listing = await manager.checkout(identity, listing_id, selection)
    except InvalidPromotionError as e:
        raise bad_request(e)
    except ListingNotFoundError as e:
        raise not_found(e)
    except ListingPermissionError as e:
        raise forbidden(e)
    except BackendError as e:
        raise service_unavailable("checkout", e)

    promotion = listing.attributes.promotion
    return CheckoutResponse(
        listing=listing,
        total=total_price(promotion.promotions),
        plan_expires_at=promotion.plan_expires_at
    )
