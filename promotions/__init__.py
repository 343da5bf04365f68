"""Promotion plans for listings.

A listing's promotion state lives in its attribute bag: the plans bought, the
tier they give (vip beats premium beats normal), when a vip or premium plan
runs out and the website link shown with the website_link plan. This module
derives that state from a checkout selection, rebuilds the selection from a
stored state, and writes it back in a single update.

No payment is captured here; the price total is for display.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from auth import Identity
from listings import ListingManager, Listing, PlanTier, PromotionState
from backend import Backend
from .catalog import (
    PLANS, PromotionPlan, PlanInput, TIERED_PLANS, DURATION_CHOICES,
    DEFAULT_DURATION_DAYS, MAX_DURATION_DAYS
)

logger = logging.getLogger(__name__)

DAY = timedelta(days=1)

class PromotionError(Exception):
    """Base exception for promotion operations."""
    pass

class InvalidPromotionError(PromotionError):
    """Raised when a selection names an unknown plan or a bad duration."""
    pass

def _default_durations() -> Dict[str, int]:
    return {plan_id: DEFAULT_DURATION_DAYS for plan_id in TIERED_PLANS}

class PromotionSelection(BaseModel):
    """What the owner picked on the checkout form."""
    plans: List[str] = Field(default_factory=list)
    website_url: str = ""
    durations: Dict[str, int] = Field(default_factory=_default_durations)

    @field_validator("plans")
    @classmethod
    def known_plans(cls, value: List[str]) -> List[str]:
        unknown = [p for p in value if p not in PLANS]
        if unknown:
            raise ValueError(f"Unknown promotion plans: {unknown}")
        return value

    @field_validator("durations")
    @classmethod
    def valid_durations(cls, value: Dict[str, int]) -> Dict[str, int]:
        durations = _default_durations()
        for plan_id, days in value.items():
            if plan_id not in TIERED_PLANS:
                raise ValueError(f"Plan {plan_id} has no duration")
            if not 1 <= days <= MAX_DURATION_DAYS:
                raise ValueError(f"Duration must be between 1 and {MAX_DURATION_DAYS} days")
            durations[plan_id] = days
        return durations

def make_selection(
    plans: Iterable[str],
    website_url: Optional[str] = None,
    durations: Optional[Dict[str, int]] = None
) -> PromotionSelection:
    """Build a selection from form values.

    Raises:
        InvalidPromotionError: If a plan is unknown or a duration is out of range
    """
    try:
        return PromotionSelection(
            plans=list(plans),
            website_url=website_url or "",
            durations=durations or {}
        )
    except ValidationError as e:
        messages = "; ".join(error["msg"] for error in e.errors())
        raise InvalidPromotionError(messages) from e

def _utcnow(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now

def derive_tier(selected: Iterable[str]) -> PlanTier:
    """The tier a set of plans gives: vip, else premium, else normal."""
    selected = set(selected)
    if "vip" in selected:
        return PlanTier.VIP
    if "premium" in selected:
        return PlanTier.PREMIUM
    return PlanTier.NORMAL

def compute_expiry(
    tier: PlanTier,
    durations: Optional[Dict[str, int]] = None,
    now: Optional[datetime] = None
) -> Optional[datetime]:
    """Expiry for a tier bought now, None for the normal tier."""
    tier = PlanTier(tier)
    if tier.value not in TIERED_PLANS:
        return None
    days = (durations or {}).get(tier.value) or DEFAULT_DURATION_DAYS
    return _utcnow(now) + timedelta(days=days)

def remaining_days(expires_at: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    """Whole days left before expiry rounded up, at least 1.

    Returns None when there is no expiry or it has already passed.
    """
    if expires_at is None:
        return None
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    left = expires_at - _utcnow(now)
    if left <= timedelta(0):
        return None
    return max(1, math.ceil(left / DAY))

def load_selection(state: PromotionState, now: Optional[datetime] = None) -> PromotionSelection:
    """Rebuild the checkout form from a listing's stored promotion state.

    The tiered plan that is still running gets its remaining days as the
    pre-selected duration; everything else starts at the default.
    """
    plans = []
    for plan_id in state.promotions:
        if plan_id not in PLANS:
            logger.warning(f"Ignoring unknown stored promotion plan {plan_id}")
            continue
        if plan_id not in plans:
            plans.append(plan_id)

    durations = _default_durations()
    if state.plan_tier.value in TIERED_PLANS:
        days = remaining_days(state.plan_expires_at, now)
        if days is not None:
            durations[state.plan_tier.value] = min(days, MAX_DURATION_DAYS)

    return PromotionSelection(
        plans=plans,
        website_url=state.website_url,
        durations=durations
    )

def total_price(selected: Iterable[str]) -> Decimal:
    """Sum of the unit prices of the selected plans (each counted once)."""
    total = sum((PLANS[plan_id].price for plan_id in set(selected) if plan_id in PLANS), Decimal("0"))
    return total.quantize(Decimal("0.01"))

def build_state(selection: PromotionSelection, now: Optional[datetime] = None) -> PromotionState:
    """Promotion state to store for a checkout selection."""
    plans = list(dict.fromkeys(selection.plans))
    tier = derive_tier(plans)
    return PromotionState(
        promotions=plans,
        plan_tier=tier,
        plan_expires_at=compute_expiry(tier, selection.durations, now),
        website_url=selection.website_url.strip() if "website_link" in plans else ""
    )

class PromotionManager:
    """Applies promotion checkouts to listings."""

    def __init__(self, backend: Optional[Backend] = None):
        self.listings = ListingManager(backend)

    async def get_selection(
        self,
        identity: Identity,
        listing_id: str,
        now: Optional[datetime] = None
    ) -> PromotionSelection:
        """Checkout form for one of the caller's listings."""
        listing = await self.listings.get_owned_listing(identity, listing_id)
        return load_selection(listing.attributes.promotion, now)

    async def checkout(
        self,
        identity: Identity,
        listing_id: str,
        selection: PromotionSelection,
        now: Optional[datetime] = None
    ) -> Listing:
        """Store the promotion state for a selection on the caller's listing.

        Category details in the attribute bag are kept; only the promotion
        keys are replaced, in one update.

        Raises:
            ListingNotFoundError: If the listing does not exist
            ListingPermissionError: If the caller is not the owner
        """
        listing = await self.listings.get_owned_listing(identity, listing_id)
        state = build_state(selection, now)
        attributes = listing.attributes.model_copy(update={"promotion": state})

        updated = await self.listings.update_attributes(identity, listing_id, attributes)
        logger.info(
            f"Listing {listing_id} promoted: plans={state.promotions} tier={state.plan_tier.value} "
            f"total={total_price(state.promotions)}"
        )
        return updated

__all__ = [
    'PromotionManager',
    'PromotionSelection',
    'PromotionError',
    'InvalidPromotionError',
    'make_selection',
    'PromotionPlan',
    'PlanInput',
    'PLANS',
    'TIERED_PLANS',
    'DURATION_CHOICES',
    'DEFAULT_DURATION_DAYS',
    'derive_tier',
    'compute_expiry',
    'remaining_days',
    'load_selection',
    'total_price',
    'build_state'
]
