#!/usr/bin/env python3
"""
Order Decomposer - order -> line items -> schedulable jobs

decompose() is a pure function of the order's services descriptor.
materialize() turns line items into Job records with a stable job id, an equal
share of the order total, and the estimator/payout/enrichment results. Running
both twice on the same order yields identical job ids and computed fields, so
the store can upsert by job id and a retried split never duplicates work.
"""

import hashlib
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple
import logging

from .descriptor_parser import DescriptorParser
from .duration_estimator import DurationEstimator
from .payout_calculator import PayoutCalculator
from .enrichers import AssignmentEnricher
from .models import (
    Order,
    Job,
    ServiceLineItem,
    DurationBreakdown,
    PayoutBreakdown,
    RuleIssue,
)
from .rules import RuleCatalog

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def derive_job_id(order_id: str, line_item_index: int, revision: int = 0) -> str:
    """Deterministic job id; revision > 0 identifies a rescheduled successor"""
    key = f"{order_id}:{line_item_index}"
    if revision:
        key = f"{key}:{revision}"
    return "JOB-" + hashlib.sha256(key.encode("utf-8")).hexdigest()[:12].upper()


def distribute_price(total: Decimal, count: int) -> List[Decimal]:
    """
    Equal split of an order total in whole cents

    Leftover cents go to the first line items so the shares always sum to the
    total rounded to cents.
    """
    if count <= 0:
        return []

    cents = int((Decimal(str(total)) / CENT).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    share, remainder = divmod(cents, count)
    return [(Decimal(share + (1 if i < remainder else 0)) * CENT).quantize(CENT) for i in range(count)]


def merge_issues(*groups: List[RuleIssue]) -> List[RuleIssue]:
    """Concatenate issue lists, keeping the first issue per (code, subject)"""
    merged = []
    seen = set()
    for group in groups:
        for issue in group:
            key = (issue.code, issue.subject)
            if key in seen:
                continue
            seen.add(key)
            merged.append(issue)
    return merged


class OrderDecomposer:
    """
    Splits orders into line items and materializes them as jobs
    """

    def __init__(self, catalog: RuleCatalog,
                 estimator: Optional[DurationEstimator] = None,
                 payout_calculator: Optional[PayoutCalculator] = None,
                 enricher: Optional[AssignmentEnricher] = None):
        self.catalog = catalog
        self.parser = DescriptorParser(catalog)
        self.estimator = estimator or DurationEstimator(catalog)
        self.payout_calculator = payout_calculator or PayoutCalculator(catalog)
        self.enricher = enricher or AssignmentEnricher(catalog)

    def decompose(self, order: Order) -> List[ServiceLineItem]:
        items = self.parser.parse(order.services_descriptor)
        review = sum(1 for item in items if item.needs_review)
        if review:
            logger.warning(f"Order {order.order_id}: {review} of {len(items)} line items need review")
        return items

    @staticmethod
    def is_splittable(line_items: List[ServiceLineItem]) -> bool:
        """A single-service order is scheduled directly, never split"""
        return len(line_items) > 1

    def estimate(self, line_item: ServiceLineItem,
                 eco_eligible: bool = False) -> Tuple[DurationBreakdown, PayoutBreakdown]:
        return self.estimator.estimate(line_item), self.payout_calculator.calculate(line_item, eco_eligible)

    def materialize(self, order: Order, line_items: List[ServiceLineItem],
                    first_time: bool = False, visit_count: int = 0) -> List[Job]:
        shares = distribute_price(order.total, len(line_items))
        jobs = [
            self.build_job(order.order_id, item, share, first_time=first_time, visit_count=visit_count)
            for item, share in zip(line_items, shares)
        ]
        logger.info(f"Materialized {len(jobs)} jobs for order {order.order_id}")
        return jobs

    def build_job(self, order_id: str, line_item: ServiceLineItem, price_share: Decimal,
                  revision: int = 0, first_time: bool = False, visit_count: int = 0) -> Job:
        """Build one job; eco bonus stays 0 until a worker is assigned"""
        duration, payout = self.estimate(line_item, eco_eligible=False)
        estimated = duration.adjusted_total if duration.rated else None
        extras = self.enricher.enrich(line_item, estimated, first_time=first_time, visit_count=visit_count)

        issues = merge_issues(line_item.issues, duration.issues, payout.issues)
        needs_review = (
            line_item.needs_review
            or not duration.rated
            or not payout.rated
            or any(issue.needs_review for issue in issues)
        )

        return Job(
            job_id=derive_job_id(order_id, line_item.original_index, revision),
            order_id=order_id,
            line_item_index=line_item.original_index,
            revision=revision,
            service=line_item.service,
            tier=line_item.tier,
            add_ons=line_item.add_ons,
            attributes=line_item.attributes,
            payout=payout.total,
            payout_breakdown=payout,
            expected_duration_minutes=estimated or 0,
            duration_breakdown=duration,
            price_share=price_share,
            eco_requested=self.payout_calculator.eco_requested(line_item),
            needs_review=needs_review,
            issues=issues,
            photo_requirements=extras["photo_requirements"],
            perks=extras["perks"],
            crew=extras["crew"],
            catalog_version=self.catalog.version,
        )

    def line_item_for(self, job: Job) -> ServiceLineItem:
        """Rebuild the line item a job was materialized from"""
        return ServiceLineItem(
            service=job.service,
            tier=job.tier,
            add_ons=job.add_ons,
            attributes=job.attributes,
            original_index=job.line_item_index,
            original_indexes=[job.line_item_index],
        )
