#!/usr/bin/env python3
"""
Duration Estimator - expected job duration per line item

Car wash:       (base(tier) + add-on time) x vehicle multiplier, per vehicle
Home cleaning:  base(tier) + structural room time + add-on time, discounted by
                property type; a tuned override for the exact configuration
                replaces the formula core when the catalog has one
Laundry:        tier processing time (SLA hours), not the per-item formula
"""

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Any, List, Optional, Set
import logging

from .models import (
    ServiceKind,
    ServiceLineItem,
    PropertyAttributes,
    DurationBreakdown,
    RuleIssue,
    IssueCode,
)
from .rules import RuleCatalog

logger = logging.getLogger(__name__)

ONE = Decimal("1")


def round_minutes(value: Decimal) -> int:
    """Half-up rounding to whole minutes"""
    return int(Decimal(value).quantize(ONE, rounding=ROUND_HALF_UP))


class DurationEstimator:
    """
    Computes DurationBreakdown records from the rule catalog
    """

    def __init__(self, catalog: RuleCatalog):
        self.catalog = catalog

    def estimate(self, line_item: ServiceLineItem) -> DurationBreakdown:
        service = line_item.service

        if service == ServiceKind.UNKNOWN:
            return self._unrated(f"No duration rules for unparsed service '{line_item.source_text or ''}'",
                                 subject=line_item.source_text)

        tier = self.catalog.resolve_tier(service, line_item.tier)
        if tier is None:
            logger.warning(f"Unrated duration: tier '{line_item.tier}' is not modeled for {service.value}")
            return self._unrated(f"Tier '{line_item.tier}' is not modeled for {service.value}",
                                 subject=line_item.tier)

        attributes = line_item.attributes or PropertyAttributes()

        if service == ServiceKind.MOBILE_CAR_WASH:
            return self._estimate_car_wash(tier, line_item, attributes)
        elif service == ServiceKind.HOME_CLEANING:
            return self._estimate_home_cleaning(tier, line_item, attributes)
        else:
            return self._estimate_laundry(tier, line_item)

    def _unrated(self, message: str, subject: Optional[str] = None) -> DurationBreakdown:
        return DurationBreakdown(
            source="unrated",
            issues=[RuleIssue(code=IssueCode.UNMODELED_RULE, message=message, subject=subject)],
        )

    def _add_on_time(self, service: ServiceKind, line_item: ServiceLineItem,
                     implied: Set[str], issues: List[RuleIssue]) -> int:
        total = 0
        for add_on in line_item.add_ons:
            canonical = self.catalog.resolve_add_on(service, add_on.name)
            if canonical is None:
                # Unknown add-ons cost no time but stay visible on the record
                logger.warning(f"Unknown {service.value} add-on '{add_on.name}' contributes 0 minutes")
                issues.append(RuleIssue(
                    code=IssueCode.UNKNOWN_ADDON,
                    message=f"Add-on '{add_on.name}' is not modeled for {service.value}; no time added",
                    subject=add_on.name,
                ))
                continue

            if canonical in implied:
                issues.append(RuleIssue(
                    code=IssueCode.ADDON_IMPLIED_BY_TIER,
                    message=f"'{canonical}' is already included in the selected tier",
                    subject=canonical,
                ))
                continue

            total += self.catalog.add_on_duration(service, canonical)
        return total

    def _estimate_car_wash(self, tier: str, line_item: ServiceLineItem,
                           attributes: PropertyAttributes) -> DurationBreakdown:
        service = ServiceKind.MOBILE_CAR_WASH
        issues: List[RuleIssue] = []

        base = self.catalog.base_duration(service, tier)
        add_on_time = self._add_on_time(service, line_item, set(), issues)

        multiplier = self.catalog.vehicle_multiplier(attributes.vehicle_type)
        if multiplier is None:
            issues.append(RuleIssue(
                code=IssueCode.UNKNOWN_VEHICLE_TYPE,
                message=f"Vehicle type '{attributes.vehicle_type}' not modeled; using standard class",
                subject=attributes.vehicle_type,
            ))
            multiplier = self.catalog.vehicle_multiplier(None) or ONE

        per_vehicle = Decimal(base + add_on_time) * multiplier
        total = round_minutes(per_vehicle * attributes.vehicle_count)

        return DurationBreakdown(
            base=base,
            add_on_time=add_on_time,
            structural_time=total - (base + add_on_time),
            raw_total=total,
            adjusted_total=total,
            vehicle_multiplier=multiplier,
            source="formula",
            issues=issues,
        )

    def _estimate_home_cleaning(self, tier: str, line_item: ServiceLineItem,
                                attributes: PropertyAttributes) -> DurationBreakdown:
        service = ServiceKind.HOME_CLEANING
        issues: List[RuleIssue] = []

        bedrooms = attributes.bedrooms if attributes.bedrooms is not None else 1
        bathrooms = attributes.bathrooms if attributes.bathrooms is not None else 1

        base = self.catalog.base_duration(service, tier)
        structural = self.structural_time(bedrooms, bathrooms)
        implied = set(self.catalog.implied_add_ons(service, tier))
        add_on_time = self._add_on_time(service, line_item, implied, issues)

        raw_total = base + structural + add_on_time
        discount = self.catalog.property_discount(attributes.property_type)
        remaining_share = ONE - discount

        override = self.catalog.duration_override(service, tier, bedrooms, bathrooms, attributes.property_type)
        if override is not None:
            adjusted = override + round_minutes(Decimal(add_on_time) * remaining_share)
            # A discount never turns into a surcharge
            adjusted = min(adjusted, raw_total)
            source = "override"
        else:
            adjusted = round_minutes(Decimal(raw_total) * remaining_share)
            source = "formula"

        return DurationBreakdown(
            base=base,
            add_on_time=add_on_time,
            structural_time=structural,
            raw_total=raw_total,
            adjusted_total=adjusted,
            property_discount=discount,
            source=source,
            issues=issues,
        )

    def _estimate_laundry(self, tier: str, line_item: ServiceLineItem) -> DurationBreakdown:
        service = ServiceKind.LAUNDRY_SERVICE
        issues: List[RuleIssue] = []

        hours = self.catalog.processing_hours(service, tier)
        if hours is None:
            return self._unrated(f"No processing time configured for laundry tier '{tier}'", subject=tier)

        # Still surfaces unknown add-ons even though they never change the SLA
        self._add_on_time(service, line_item, set(), issues)
        minutes = hours * 60

        return DurationBreakdown(
            base=minutes,
            raw_total=minutes,
            adjusted_total=minutes,
            source="processing_time",
            processing_hours=hours,
            customer_visible=self.catalog.is_public_tier(service, tier),
            issues=issues,
        )

    def structural_time(self, bedrooms: int, bathrooms: int) -> int:
        """Extra minutes for every bedroom/bathroom beyond the first"""
        return (max(0, bedrooms - 1) * self.catalog.per_extra_bedroom
                + max(0, bathrooms - 1) * self.catalog.per_extra_bathroom)

    def duration_status(self, expected_minutes: Optional[int], actual_minutes: Optional[float]) -> str:
        """on_time / nearing_overage / overdue / unknown for a running or finished job"""
        if not expected_minutes or actual_minutes is None:
            return "unknown"
        if actual_minutes <= expected_minutes:
            return "on_time"
        if Decimal(str(actual_minutes)) <= Decimal(expected_minutes) * self.catalog.nearing_ratio:
            return "nearing_overage"
        return "overdue"

    def laundry_time_remaining(self, tier: str, picked_up_at: Optional[datetime],
                               now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """Elapsed/remaining processing hours for a laundry job since pickup"""
        service = ServiceKind.LAUNDRY_SERVICE
        hours = self.catalog.processing_hours(service, tier)
        if hours is None or picked_up_at is None:
            return None

        now = now or datetime.now(timezone.utc)
        if picked_up_at.tzinfo is None:
            picked_up_at = picked_up_at.replace(tzinfo=timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        elapsed = (now - picked_up_at).total_seconds() / 3600
        remaining = max(0.0, hours - elapsed)
        overdue = elapsed > hours
        remaining_pct = (remaining / hours) * 100

        if overdue:
            urgency = "overdue"
        elif remaining_pct <= 25:
            urgency = "critical"
        elif remaining_pct <= 50:
            urgency = "warning"
        else:
            urgency = "normal"

        return {
            "tier": self.catalog.resolve_tier(service, tier),
            "display_name": self.catalog.tier_display_name(service, tier),
            "processing_hours": hours,
            "elapsed_hours": round(elapsed, 2),
            "remaining_hours": round(remaining, 2),
            "is_overdue": overdue,
            "urgency": urgency,
        }
