from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from enum import Enum

from pydantic import Field, AliasChoices, field_validator

from .base import EngineModel
from .issues import RuleIssue


class ServiceKind(str, Enum):
    MOBILE_CAR_WASH = "Mobile Car Wash"
    HOME_CLEANING = "Home Cleaning"
    LAUNDRY_SERVICE = "Laundry Service"
    # Sentinel for descriptor text no grammar matched; never priced
    UNKNOWN = "Unknown"


class PropertyType(str, Enum):
    APARTMENT_LOFT = "Apartment/Loft"
    CONDO_TOWNHOUSE = "Condo/Townhouse"
    HOUSE = "House"


_PROPERTY_TYPE_ALIASES = {
    "apartment": PropertyType.APARTMENT_LOFT,
    "loft": PropertyType.APARTMENT_LOFT,
    "apartmentloft": PropertyType.APARTMENT_LOFT,
    "condo": PropertyType.CONDO_TOWNHOUSE,
    "townhouse": PropertyType.CONDO_TOWNHOUSE,
    "condotownhouse": PropertyType.CONDO_TOWNHOUSE,
    "house": PropertyType.HOUSE,
    "detachedhouse": PropertyType.HOUSE,
    "singlefamilyhome": PropertyType.HOUSE,
}


def normalize_property_type(value: str) -> Optional[PropertyType]:
    key = "".join(ch for ch in value.lower() if ch.isalnum())
    return _PROPERTY_TYPE_ALIASES.get(key)


class LaundryBag(EngineModel):
    bag_type: str
    quantity: int = Field(1, ge=1)


class AddOnSelection(EngineModel):
    """An add-on as ordered; quantity matters only for per-unit add-ons"""

    name: str
    quantity: int = Field(1, ge=1)


class PropertyAttributes(EngineModel):
    """Structural data: rooms for cleaning, vehicle class for car wash, bags for laundry"""

    bedrooms: Optional[int] = Field(None, ge=0)
    bathrooms: Optional[int] = Field(None, ge=0)
    property_type: Optional[PropertyType] = None
    vehicle_type: Optional[str] = None
    vehicle_count: int = Field(1, ge=1, le=3)
    bags: List[LaundryBag] = Field(default_factory=list)

    @field_validator("property_type", mode="before")
    @classmethod
    def _coerce_property_type(cls, value):
        if value is None or isinstance(value, PropertyType):
            return value
        normalized = normalize_property_type(str(value))
        if normalized is None:
            raise ValueError(f"Unknown property type: {value}")
        return normalized

    @property
    def total_bags(self) -> int:
        return sum(bag.quantity for bag in self.bags)


class ServiceLineItem(EngineModel):
    """One (service, tier, add-ons) unit extracted from an order descriptor"""

    service: ServiceKind
    tier: str = ""
    add_ons: List[AddOnSelection] = Field(default_factory=list)
    attributes: Optional[PropertyAttributes] = None
    original_index: int
    # Laundry entries are grouped into one item; all of their positions live here
    original_indexes: List[int] = Field(default_factory=list)
    source_text: Optional[str] = None
    needs_review: bool = False
    issues: List[RuleIssue] = Field(default_factory=list)

    @property
    def add_on_names(self) -> List[str]:
        return [add_on.name for add_on in self.add_ons]


class Order(EngineModel):
    """Customer order as placed; read-only input to the engine"""

    order_id: str
    customer_name: str
    services_descriptor: str = Field(
        ...,
        validation_alias=AliasChoices("servicesDescriptor", "rawServicesDescriptor", "services_descriptor"),
    )
    total: Decimal = Field(..., ge=0)
    created_at: datetime
