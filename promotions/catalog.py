"""Catalog of the paid promotion plans a listing owner can buy."""

from decimal import Decimal
from enum import Enum
from typing import Dict

from pydantic import BaseModel


class PlanInput(str, Enum):
    CHECKBOX = "checkbox"
    INPUT = "input"


class PromotionPlan(BaseModel):
    """A purchasable promotion plan."""
    id: str
    title: str
    description: str
    price: Decimal
    duration_days: int
    input: PlanInput = PlanInput.CHECKBOX


# Plans that set the listing's tier and carry a chosen duration
TIERED_PLANS = ("vip", "premium")

DURATION_CHOICES = (7, 15, 30, 60, 90)
DEFAULT_DURATION_DAYS = 30
MAX_DURATION_DAYS = 90

PLANS: Dict[str, PromotionPlan] = {
    plan.id: plan for plan in (
        PromotionPlan(
            id="vip",
            title="VIP listing",
            description="Dedicated space with large photos",
            price=Decimal("99.95"),
            duration_days=DEFAULT_DURATION_DAYS
        ),
        PromotionPlan(
            id="premium",
            title="Premium listing",
            description="Shown above listings that only paid the publishing fee",
            price=Decimal("39.98"),
            duration_days=DEFAULT_DURATION_DAYS
        ),
        PromotionPlan(
            id="highlight",
            title="Colour highlight",
            description="The listing is shown highlighted in green",
            price=Decimal("59.95"),
            duration_days=DEFAULT_DURATION_DAYS
        ),
        PromotionPlan(
            id="top_bump",
            title="Back to the top",
            description="The listing moves up the results, unlimited bumps every 20 minutes",
            price=Decimal("129.95"),
            duration_days=DEFAULT_DURATION_DAYS
        ),
        PromotionPlan(
            id="new_label",
            title="NEW label",
            description="Draws attention to the listing",
            price=Decimal("69.00"),
            duration_days=DEFAULT_DURATION_DAYS
        ),
        PromotionPlan(
            id="website_link",
            title="Website link",
            description="Visitors can click through to your website",
            price=Decimal("24.99"),
            duration_days=DEFAULT_DURATION_DAYS,
            input=PlanInput.INPUT
        ),
    )
}
