#!/usr/bin/env python3
"""
Descriptor Parser - raw order services text -> ServiceLineItem list

Two descriptor shapes are accepted:

JSON array (what the booking form stores):
    [{"service": "Mobile Car Wash", "tier": "Signature Shine",
      "addons": ["Clay Bar Treatment"], "vehicleType": "SUV"}, ...]

Free text, one service per top-level ",", ";" or newline:
    Service [- Tier] [(AddOn [xN], ...)] [[attribute, ...]]
    e.g. "Home Cleaning - Signature Deep Clean (Fridge Cleaning) [2 bed, 1 bath, Apartment]"

A failure in one entry never aborts the order: that entry becomes an Unknown
line item flagged for review and the rest still parse. All laundry entries of
an order are grouped into one line item at the position of the first one.
"""

import json
import re
from typing import Dict, Any, List, Optional, Tuple
import logging

from pydantic import ValidationError

from .models import (
    ServiceKind,
    ServiceLineItem,
    AddOnSelection,
    PropertyAttributes,
    LaundryBag,
    RuleIssue,
    IssueCode,
    normalize_property_type,
)
from .rules import RuleCatalog, normalize_name

logger = logging.getLogger(__name__)

SEPARATORS = {",", ";", "\n"}
MAX_VEHICLES = 3
DEFAULT_BAG_TYPE = "Standard"

_ITEM_PATTERN = re.compile(
    r"^(?P<head>[^(\[]+?)\s*"
    r"(?:\((?P<addons>[^)]*)\))?\s*"
    r"(?:\[(?P<attrs>[^\]]*)\])?\s*$"
)
_QUANTITY_PATTERN = re.compile(r"^(?P<name>.+?)\s*(?:x\s*(?P<qty>\d+))?$", re.IGNORECASE)
_BEDROOMS_PATTERN = re.compile(r"^(\d+)\s*(?:bed|beds|bedroom|bedrooms|br)$", re.IGNORECASE)
_BATHROOMS_PATTERN = re.compile(r"^(\d+)\s*(?:bath|baths|bathroom|bathrooms|ba)$", re.IGNORECASE)
_VEHICLES_PATTERN = re.compile(r"^(\d+)\s*(?:vehicle|vehicles|car|cars)$", re.IGNORECASE)
_BAGS_PATTERN = re.compile(r"^(\d+)\s*(?:x\s*)?(?P<type>[A-Za-z ]*?)\s*bags?$", re.IGNORECASE)


def split_top_level(text: str) -> List[str]:
    """Split on separators that are not inside () or []"""
    parts = []
    depth = 0
    current = []
    for ch in text:
        if ch in "([":
            depth += 1
        elif ch in ")]" and depth > 0:
            depth -= 1

        if ch in SEPARATORS and depth == 0:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    parts.append("".join(current).strip())
    return [part for part in parts if part]


class DescriptorParser:
    """
    Turns a services descriptor into ordered, normalized line items
    """

    def __init__(self, catalog: RuleCatalog):
        self.catalog = catalog

    def parse(self, descriptor: Optional[str]) -> List[ServiceLineItem]:
        if not descriptor or not descriptor.strip():
            return []

        entries = self._json_entries(descriptor)
        if entries is not None:
            items = [self._parse_json_entry(entry, index) for index, entry in enumerate(entries)]
        else:
            items = [self._parse_text_entry(text, index) for index, text in enumerate(split_top_level(descriptor))]

        items = self._group_laundry(items)
        logger.debug(f"Parsed descriptor into {len(items)} line items")
        return items

    def _json_entries(self, descriptor: str) -> Optional[List[Any]]:
        stripped = descriptor.strip()
        if not stripped.startswith("["):
            return None
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError:
            # "[...]" that is not JSON is read as free text
            return None
        return data if isinstance(data, list) else None

    # ------------------------------------------------------------------
    # Entry parsing
    # ------------------------------------------------------------------

    def _unparseable(self, index: int, source_text: str, reason: str) -> ServiceLineItem:
        logger.warning(f"Unparseable line item {index}: {reason}")
        return ServiceLineItem(
            service=ServiceKind.UNKNOWN,
            original_index=index,
            original_indexes=[index],
            source_text=source_text,
            needs_review=True,
            issues=[RuleIssue(code=IssueCode.UNPARSEABLE_LINE_ITEM, message=reason, subject=source_text)],
        )

    def _parse_json_entry(self, entry: Any, index: int) -> ServiceLineItem:
        source_text = json.dumps(entry, sort_keys=True, default=str)
        if not isinstance(entry, dict):
            return self._unparseable(index, source_text, "Service entry is not an object")

        service_name = str(entry.get("service") or "").strip()
        service = self.catalog.resolve_service(service_name)
        if service is None:
            return self._unparseable(index, source_text, f"Unknown service '{service_name}'")

        issues: List[RuleIssue] = []
        try:
            add_ons = self._json_add_ons(entry.get("addons") or entry.get("addOns") or [])
            attributes = self._json_attributes(service, entry, issues)
        except (ValidationError, ValueError, TypeError) as e:
            return self._unparseable(index, source_text, f"Invalid attributes: {e}")

        return self._build_item(service, str(entry.get("tier") or ""), add_ons, attributes,
                                index, source_text, issues)

    def _json_add_ons(self, raw: Any) -> List[AddOnSelection]:
        if isinstance(raw, str):
            raw = split_top_level(raw)
        add_ons = []
        for value in raw:
            if isinstance(value, dict):
                add_ons.append(AddOnSelection(name=str(value.get("name", "")).strip(),
                                              quantity=int(value.get("quantity") or 1)))
            else:
                add_ons.append(self._add_on_from_text(str(value)))
        return [add_on for add_on in add_ons if add_on.name]

    def _json_attributes(self, service: ServiceKind, entry: Dict[str, Any],
                         issues: List[RuleIssue]) -> PropertyAttributes:
        values: Dict[str, Any] = {}

        if entry.get("bedrooms") is not None:
            values["bedrooms"] = int(entry["bedrooms"])
        if entry.get("bathrooms") is not None:
            values["bathrooms"] = int(entry["bathrooms"])

        property_type = entry.get("propertyType") or entry.get("property_type")
        if property_type:
            normalized = normalize_property_type(str(property_type))
            if normalized is None:
                issues.append(RuleIssue(
                    code=IssueCode.UNKNOWN_PROPERTY_TYPE,
                    message=f"Property type '{property_type}' not modeled; no discount applied",
                    subject=str(property_type),
                ))
            else:
                values["property_type"] = normalized

        if entry.get("vehicleType"):
            values["vehicle_type"] = str(entry["vehicleType"])

        quantity = int(entry.get("quantity") or 1)
        if service == ServiceKind.LAUNDRY_SERVICE:
            # quantity is a bag count even when no bag type was picked
            bag_type = str(entry.get("bagType") or "").strip() or DEFAULT_BAG_TYPE
            values["bags"] = [LaundryBag(bag_type=bag_type, quantity=max(quantity, 1))]
        elif service == ServiceKind.MOBILE_CAR_WASH:
            values["vehicle_count"] = self._vehicle_count(int(entry.get("vehicleCount") or quantity), issues)

        return PropertyAttributes(**values)

    def _parse_text_entry(self, text: str, index: int) -> ServiceLineItem:
        match = _ITEM_PATTERN.match(text)
        if not match:
            return self._unparseable(index, text, f"'{text}' does not match 'Service - Tier (add-ons)'")

        service, tier = self._split_head(match.group("head"))
        if service is None:
            return self._unparseable(index, text, f"Unknown service '{match.group('head').strip()}'")

        issues: List[RuleIssue] = []
        add_ons = [self._add_on_from_text(part) for part in split_top_level(match.group("addons") or "")]
        attributes = self._text_attributes(service, match.group("attrs") or "", issues)

        return self._build_item(service, tier, add_ons, attributes, index, text, issues)

    def _split_head(self, head: str) -> Tuple[Optional[ServiceKind], str]:
        """'Home Cleaning - Refresh Clean' -> (HOME_CLEANING, 'Refresh Clean')"""
        head = head.strip()
        parts = re.split(r"\s*[-:]\s+|\s+[-:]\s*", head, maxsplit=1)
        service = self.catalog.resolve_service(parts[0])
        if service is not None:
            return service, parts[1].strip() if len(parts) > 1 else ""

        # A bare tier name identifies its service when exactly one kind has it
        owners = [kind for kind in self.catalog.services() if self.catalog.resolve_tier(kind, head)]
        if len(owners) == 1:
            return owners[0], head
        return None, ""

    def _add_on_from_text(self, text: str) -> AddOnSelection:
        match = _QUANTITY_PATTERN.match(text.strip())
        name = match.group("name").strip() if match else text.strip()
        quantity = int(match.group("qty")) if match and match.group("qty") else 1
        return AddOnSelection(name=name, quantity=max(quantity, 1))

    def _text_attributes(self, service: ServiceKind, text: str, issues: List[RuleIssue]) -> PropertyAttributes:
        values: Dict[str, Any] = {}
        bags: List[LaundryBag] = []

        for token in re.split(r"[,;/]", text):
            token = token.strip()
            if not token:
                continue

            if _BEDROOMS_PATTERN.match(token):
                values["bedrooms"] = int(_BEDROOMS_PATTERN.match(token).group(1))
            elif _BATHROOMS_PATTERN.match(token):
                values["bathrooms"] = int(_BATHROOMS_PATTERN.match(token).group(1))
            elif _VEHICLES_PATTERN.match(token):
                values["vehicle_count"] = self._vehicle_count(int(_VEHICLES_PATTERN.match(token).group(1)), issues)
            elif _BAGS_PATTERN.match(token):
                bag_match = _BAGS_PATTERN.match(token)
                bags.append(LaundryBag(bag_type=bag_match.group("type").strip() or DEFAULT_BAG_TYPE,
                                       quantity=max(int(bag_match.group(1)), 1)))
            elif normalize_property_type(token) is not None:
                values["property_type"] = normalize_property_type(token)
            elif self.catalog.vehicle_multiplier(token) is not None:
                values.setdefault("vehicle_type", token)
            else:
                issues.append(RuleIssue(
                    code=IssueCode.UNKNOWN_ATTRIBUTE,
                    message=f"Attribute '{token}' not recognized for {service.value}",
                    subject=token,
                ))

        if bags:
            values["bags"] = bags
        return PropertyAttributes(**values)

    def _vehicle_count(self, count: int, issues: List[RuleIssue]) -> int:
        if count > MAX_VEHICLES:
            issues.append(RuleIssue(
                code=IssueCode.UNKNOWN_ATTRIBUTE,
                message=f"{count} vehicles requested; capped at {MAX_VEHICLES} per order",
                subject=str(count),
            ))
            return MAX_VEHICLES
        return max(count, 1)

    def _build_item(self, service: ServiceKind, tier: str, add_ons: List[AddOnSelection],
                    attributes: PropertyAttributes, index: int, source_text: str,
                    issues: List[RuleIssue]) -> ServiceLineItem:
        needs_review = False
        tier = tier.strip()

        if not tier:
            tier = self.catalog.default_tier(service)
            issues.append(RuleIssue(
                code=IssueCode.TIER_DEFAULTED,
                message=f"No tier given; defaulted to {tier}",
                subject=tier,
            ))
        else:
            canonical = self.catalog.resolve_tier(service, tier)
            if canonical is None:
                # Kept as ordered so the unrated value stays traceable
                needs_review = True
                issues.append(RuleIssue(
                    code=IssueCode.UNMODELED_RULE,
                    message=f"Tier '{tier}' is not modeled for {service.value}",
                    subject=tier,
                ))
            else:
                tier = canonical

        canonical_add_ons = []
        for add_on in add_ons:
            name = self.catalog.resolve_add_on(service, add_on.name) or add_on.name
            canonical_add_ons.append(AddOnSelection(name=name, quantity=add_on.quantity))

        return ServiceLineItem(
            service=service,
            tier=tier,
            add_ons=canonical_add_ons,
            attributes=attributes,
            original_index=index,
            original_indexes=[index],
            source_text=source_text,
            needs_review=needs_review,
            issues=issues,
        )

    # ------------------------------------------------------------------
    # Laundry grouping
    # ------------------------------------------------------------------

    def _group_laundry(self, items: List[ServiceLineItem]) -> List[ServiceLineItem]:
        laundry = [item for item in items if item.service == ServiceKind.LAUNDRY_SERVICE]
        if len(laundry) <= 1:
            return items

        first = laundry[0]
        tiers = {item.tier for item in laundry}
        issues: List[RuleIssue] = []
        for item in laundry:
            issues.extend(issue for issue in item.issues if issue not in issues)
        if len(tiers) > 1:
            logger.warning(f"Laundry entries request different tiers {sorted(tiers)}; using {first.tier}")

        add_ons: Dict[str, AddOnSelection] = {}
        bags: List[LaundryBag] = []
        for item in laundry:
            for add_on in item.add_ons:
                key = normalize_name(add_on.name)
                if key not in add_ons or add_on.quantity > add_ons[key].quantity:
                    add_ons[key] = add_on
            if item.attributes:
                bags.extend(item.attributes.bags)

        grouped = ServiceLineItem(
            service=ServiceKind.LAUNDRY_SERVICE,
            tier=first.tier,
            add_ons=list(add_ons.values()),
            attributes=PropertyAttributes(bags=bags),
            original_index=first.original_index,
            original_indexes=[item.original_index for item in laundry],
            source_text="; ".join(item.source_text or "" for item in laundry),
            needs_review=any(item.needs_review for item in laundry),
            issues=issues,
        )

        result = []
        for item in items:
            if item is first:
                result.append(grouped)
            elif item.service != ServiceKind.LAUNDRY_SERVICE:
                result.append(item)
        return result
