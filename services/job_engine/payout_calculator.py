#!/usr/bin/env python3
"""
Payout Calculator - worker payout per line item

total = base(tier) + sum of add-on payouts + eco bonus

The eco bonus is paid only when the order selected an eco-friendly add-on AND
the worker taking the job opts into eco jobs. Worker preference is unknown at
decomposition time, so jobs are materialized with eco_eligible=False and the
bonus is applied when a worker is assigned.
"""

from decimal import Decimal
from typing import List
import logging

from .errors import UnmodeledRule
from .models import (
    ServiceKind,
    ServiceLineItem,
    AddOnSelection,
    AddOnPayout,
    PayoutBreakdown,
    RuleIssue,
    IssueCode,
)
from .rules import RuleCatalog

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class PayoutCalculator:
    """
    Computes PayoutBreakdown records from the rule catalog
    """

    def __init__(self, catalog: RuleCatalog):
        self.catalog = catalog

    def calculate(self, line_item: ServiceLineItem, eco_eligible: bool = False,
                  strict: bool = False) -> PayoutBreakdown:
        """
        Calculate the payout for one line item

        Args:
            line_item: Normalized line item
            eco_eligible: Worker opts into eco-friendly jobs
            strict: Raise UnmodeledRule instead of returning an unrated breakdown

        Returns:
            PayoutBreakdown; rated=False when the tier is not in the catalog
        """
        service = line_item.service
        tier = None if service == ServiceKind.UNKNOWN else self.catalog.resolve_tier(service, line_item.tier)

        if tier is None:
            message = f"No payout rule for {service.value} tier '{line_item.tier}'"
            if strict:
                raise UnmodeledRule(message, subject=line_item.tier)
            logger.warning(f"Unrated payout: {message}")
            return PayoutBreakdown(
                rated=False,
                issues=[RuleIssue(code=IssueCode.UNMODELED_RULE, message=message, subject=line_item.tier or None)],
            )

        issues: List[RuleIssue] = []
        base = self.catalog.base_payout(service, tier)

        add_on_payouts = []
        for add_on in line_item.add_ons:
            quantity = self._billable_quantity(service, add_on, line_item)
            amount = self.catalog.add_on_payout(service, add_on.name, quantity)

            if amount is None:
                logger.warning(f"Unknown {service.value} add-on '{add_on.name}', paying 0")
                issues.append(RuleIssue(
                    code=IssueCode.UNKNOWN_ADDON,
                    message=f"Add-on '{add_on.name}' is not modeled for {service.value}; no payout added",
                    subject=add_on.name,
                ))
                add_on_payouts.append(AddOnPayout(name=add_on.name, quantity=quantity, amount=ZERO, rated=False))
                continue

            add_on_payouts.append(AddOnPayout(
                name=self.catalog.resolve_add_on(service, add_on.name),
                quantity=quantity,
                amount=amount,
            ))

        eco_bonus = self.catalog.eco_bonus if (eco_eligible and self.eco_requested(line_item)) else ZERO
        total = base + sum((entry.amount for entry in add_on_payouts), ZERO) + eco_bonus

        return PayoutBreakdown(
            base=base,
            add_ons=add_on_payouts,
            eco_bonus=eco_bonus,
            total=total,
            issues=issues,
        )

    def _billable_quantity(self, service: ServiceKind, add_on: AddOnSelection, line_item: ServiceLineItem) -> int:
        """Per-unit add-ons without an explicit count are charged per laundry bag"""
        if not self.catalog.is_per_unit_add_on(service, add_on.name):
            return add_on.quantity
        if add_on.quantity > 1:
            return add_on.quantity
        bags = line_item.attributes.total_bags if line_item.attributes else 0
        return max(bags, 1)

    def eco_requested(self, line_item: ServiceLineItem) -> bool:
        """Customer selected at least one eco-friendly add-on"""
        if line_item.service == ServiceKind.UNKNOWN:
            return False
        return any(self.catalog.is_eco_add_on(line_item.service, add_on.name) for add_on in line_item.add_ons)

    def takeover_payout(self, remaining_payout: Decimal) -> Decimal:
        """Payout for a worker finishing a job another worker left incomplete"""
        return Decimal(str(remaining_payout)) + self.catalog.takeover_bonus
