from typing import Optional
from enum import Enum

from .base import EngineModel


class IssueCode(str, Enum):
    UNMODELED_RULE = "unmodeled_rule"
    UNKNOWN_ADDON = "unknown_addon"
    UNPARSEABLE_LINE_ITEM = "unparseable_line_item"
    TIER_DEFAULTED = "tier_defaulted"
    UNKNOWN_VEHICLE_TYPE = "unknown_vehicle_type"
    UNKNOWN_PROPERTY_TYPE = "unknown_property_type"
    ADDON_IMPLIED_BY_TIER = "addon_implied_by_tier"
    UNKNOWN_ATTRIBUTE = "unknown_attribute"


# Codes that leave a computed value missing and need a human to price/review
REVIEW_CODES = frozenset({
    IssueCode.UNMODELED_RULE,
    IssueCode.UNPARSEABLE_LINE_ITEM,
})


class RuleIssue(EngineModel):
    """A per-item warning surfaced on line items and jobs"""

    code: IssueCode
    message: str
    subject: Optional[str] = None

    @property
    def needs_review(self) -> bool:
        return self.code in REVIEW_CODES
