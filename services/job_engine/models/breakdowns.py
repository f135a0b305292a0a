from typing import Optional, List
from decimal import Decimal

from pydantic import Field

from .base import EngineModel
from .issues import RuleIssue


class DurationBreakdown(EngineModel):
    base: int = 0
    add_on_time: int = 0
    structural_time: int = 0
    raw_total: int = 0
    adjusted_total: int = 0
    vehicle_multiplier: Decimal = Decimal("1")
    property_discount: Decimal = Decimal("0")
    # formula | override | processing_time | unrated
    source: str = "formula"
    processing_hours: Optional[int] = None
    customer_visible: bool = True
    issues: List[RuleIssue] = Field(default_factory=list)

    @property
    def rated(self) -> bool:
        return self.source != "unrated"


class AddOnPayout(EngineModel):
    name: str
    quantity: int = 1
    amount: Decimal = Decimal("0")
    rated: bool = True


class PayoutBreakdown(EngineModel):
    base: Decimal = Decimal("0")
    add_ons: List[AddOnPayout] = Field(default_factory=list)
    eco_bonus: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    rated: bool = True
    issues: List[RuleIssue] = Field(default_factory=list)
