"""Typed models for listings, owner profiles and the listing attribute bag.

The backend stores category specific fields and promotion fields together in
one flat ``attributes`` JSON bag. In Python the bag is split into a
``details`` record, a tagged union keyed by ``kind``, and a separate
``promotion`` record. ``ListingAttributes.from_bag``/``to_bag`` convert
between the two shapes so existing rows stay readable.
"""

import logging
import math
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


class ListingStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"


class PlanTier(str, Enum):
    VIP = "vip"
    PREMIUM = "premium"
    NORMAL = "normal"


# Bag keys owned by the promotion record
PROMOTION_KEYS = ("promotions", "plan_tier", "plan_expires_at", "website_url")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp as written by browsers, None when empty or invalid."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> str:
    """ISO timestamp in UTC with millisecond precision, empty string for None."""
    if value is None:
        return ""
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


class PromotionState(BaseModel):
    """Promotion fields of a listing."""
    promotions: List[str] = Field(default_factory=list)
    plan_tier: PlanTier = PlanTier.NORMAL
    plan_expires_at: Optional[datetime] = None
    website_url: str = ""

    @classmethod
    def from_bag(cls, bag: Optional[Dict[str, Any]]) -> "PromotionState":
        """Read the promotion keys of an attribute bag, ignoring malformed values."""
        bag = bag or {}

        promotions = bag.get("promotions")
        if not isinstance(promotions, list):
            promotions = []

        try:
            tier = PlanTier(bag.get("plan_tier") or PlanTier.NORMAL)
        except ValueError:
            tier = PlanTier.NORMAL

        website_url = bag.get("website_url")
        return cls(
            promotions=[str(p) for p in promotions],
            plan_tier=tier,
            plan_expires_at=parse_timestamp(bag.get("plan_expires_at")),
            website_url=website_url if isinstance(website_url, str) else ""
        )

    def to_bag(self) -> Dict[str, Any]:
        return {
            "promotions": list(self.promotions),
            "plan_tier": self.plan_tier.value,
            "plan_expires_at": format_timestamp(self.plan_expires_at),
            "website_url": self.website_url
        }


def _split_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _to_number(value: Any, kind: type) -> Any:
    """Numeric form of a form value; blanks become None, other text is kept as typed."""
    value = _blank_to_none(value)
    if not isinstance(value, str):
        return value
    text = value.strip()
    try:
        number = float(text.replace(",", "."))
    except ValueError:
        return text
    if not math.isfinite(number):
        return text
    if kind is int:
        return int(number) if number.is_integer() else text
    return number


class EscortDetails(BaseModel):
    model_config = ConfigDict(extra="allow")

    kind: Literal["escort"] = "escort"
    # Single choice on old forms, multi-select on newer ones
    gender: Optional[Union[str, List[str]]] = None
    age: Optional[Union[int, str]] = None
    ethnicity: Optional[str] = None
    services: List[str] = Field(default_factory=list)
    attends: Optional[Union[str, List[str]]] = None
    locations: List[str] = Field(default_factory=list)
    address: Optional[str] = None
    languages: List[str] = Field(default_factory=list)
    rate_30m: Optional[Union[float, str]] = None
    rate_1h: Optional[Union[float, str]] = None
    rate_2h: Optional[Union[float, str]] = None
    video_url: Optional[str] = None

    @field_validator("services", "locations", "languages", mode="before")
    @classmethod
    def split_lists(cls, value: Any) -> Any:
        return _split_list(value)

    @field_validator("gender", "ethnicity", "attends", "address", "video_url", mode="before")
    @classmethod
    def blank_text(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("age", mode="before")
    @classmethod
    def whole_number(cls, value: Any) -> Any:
        return _to_number(value, int)

    @field_validator("rate_30m", "rate_1h", "rate_2h", mode="before")
    @classmethod
    def amount(cls, value: Any) -> Any:
        return _to_number(value, float)


class RealEstateDetails(BaseModel):
    model_config = ConfigDict(extra="allow")

    kind: Literal["real_estate"] = "real_estate"
    advertiser_type: Optional[str] = None
    property_type: Optional[str] = None
    # Text such as "3+" is kept as entered
    rooms: Optional[Union[int, str]] = None
    size: Optional[Union[float, str]] = None
    address: Optional[str] = None
    video_url: Optional[str] = None

    @field_validator("advertiser_type", "property_type", "address", "video_url", mode="before")
    @classmethod
    def blank_text(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("rooms", mode="before")
    @classmethod
    def whole_number(cls, value: Any) -> Any:
        return _to_number(value, int)

    @field_validator("size", mode="before")
    @classmethod
    def area(cls, value: Any) -> Any:
        return _to_number(value, float)


class GeneralDetails(BaseModel):
    model_config = ConfigDict(extra="allow")

    kind: Literal["general"] = "general"
    video_url: Optional[str] = None

    @field_validator("video_url", mode="before")
    @classmethod
    def blank_text(cls, value: Any) -> Any:
        return _blank_to_none(value)


ListingDetails = Annotated[
    Union[EscortDetails, RealEstateDetails, GeneralDetails],
    Field(discriminator="kind")
]

DETAIL_MODELS = {
    "escort": EscortDetails,
    "real_estate": RealEstateDetails,
    "general": GeneralDetails,
}

# Keys that only appear in one category, used to classify bags written without a kind
ESCORT_KEYS = {"gender", "age", "ethnicity", "services", "attends", "languages",
               "rate_30m", "rate_1h", "rate_2h"}
REAL_ESTATE_KEYS = {"advertiser_type", "property_type", "rooms", "size"}


def infer_kind(bag: Dict[str, Any]) -> str:
    keys = set(bag)
    if keys & ESCORT_KEYS:
        return "escort"
    if keys & REAL_ESTATE_KEYS:
        return "real_estate"
    return "general"


class ListingAttributes(BaseModel):
    """Category details plus promotion state of a listing."""
    details: ListingDetails = Field(default_factory=GeneralDetails)
    promotion: PromotionState = Field(default_factory=PromotionState)

    @classmethod
    def from_bag(cls, bag: Optional[Dict[str, Any]]) -> "ListingAttributes":
        bag = dict(bag or {})
        rest = {k: v for k, v in bag.items() if k not in PROMOTION_KEYS}
        kind = rest.get("kind")
        if kind not in DETAIL_MODELS:
            kind = infer_kind(rest)
        rest["kind"] = kind
        try:
            details = DETAIL_MODELS[kind].model_validate(rest)
        except ValidationError as e:
            # Keep whatever was stored; unreadable values stay as untyped extras
            logger.warning(f"Attribute bag not readable as {kind} details, kept as general: {e.error_count()} errors")
            extras = {k: v for k, v in rest.items() if k != "kind"}
            if not isinstance(extras.get("video_url"), (str, type(None))):
                extras.pop("video_url")
            details = GeneralDetails(**extras)
        return cls(
            details=details,
            promotion=PromotionState.from_bag(bag)
        )

    def to_bag(self) -> Dict[str, Any]:
        """Flatten back into the single bag the backend stores."""
        bag = self.details.model_dump(mode="json", exclude_none=True)
        bag.update(self.promotion.to_bag())
        return bag


class Analytics(BaseModel):
    model_config = ConfigDict(extra="ignore")

    views: int = 0
    whatsapp_clicks: int = 0
    email_clicks: int = 0


class Profile(BaseModel):
    """Display data of a user, joined onto listings for their owner."""
    id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: Optional[datetime] = None


class Listing(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    price: Optional[Decimal] = None
    category_id: str
    type: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    status: ListingStatus = ListingStatus.DRAFT
    owner_id: str
    attributes: ListingAttributes = Field(default_factory=ListingAttributes)
    images: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    analytics: Analytics = Field(default_factory=Analytics)
    profile: Optional[Profile] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any], profile: Optional[Dict[str, Any]] = None) -> "Listing":
        """Build a listing from a backend row and an optional owner profile row."""
        data = dict(row)
        data["attributes"] = ListingAttributes.from_bag(row.get("attributes"))
        data["analytics"] = row.get("analytics") or {}
        data["images"] = row.get("images") or []
        if profile:
            data["profile"] = profile
        return cls.model_validate(data)
