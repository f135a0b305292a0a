import json
from decimal import Decimal

import pytest

from job_engine.models import IssueCode, JobStatus, ServiceKind
from job_engine.order_decomposer import derive_job_id, distribute_price, merge_issues
from job_engine.models import RuleIssue

from conftest import make_item, make_order


class TestPriceDistribution:

    @pytest.mark.parametrize("total,count,expected", [
        ("100.00", 2, ["50.00", "50.00"]),
        ("100.00", 3, ["33.34", "33.33", "33.33"]),
        ("0.05", 3, ["0.02", "0.02", "0.01"]),
        ("0", 2, ["0.00", "0.00"]),
    ])
    def test_shares_sum_to_total(self, total, count, expected):
        shares = distribute_price(Decimal(total), count)

        assert shares == [Decimal(value) for value in expected]
        assert sum(shares) == Decimal(total)

    def test_no_items_no_shares(self):
        assert distribute_price(Decimal("10"), 0) == []


class TestJobIds:

    def test_stable_and_distinct(self):
        assert derive_job_id("ORDER-1", 0) == derive_job_id("ORDER-1", 0)
        assert derive_job_id("ORDER-1", 0) != derive_job_id("ORDER-1", 1)
        assert derive_job_id("ORDER-1", 0) != derive_job_id("ORDER-2", 0)
        assert derive_job_id("ORDER-1", 0, revision=1) != derive_job_id("ORDER-1", 0)
        assert derive_job_id("ORDER-1", 0).startswith("JOB-")

    def test_merge_issues_drops_duplicates(self):
        issue = RuleIssue(code=IssueCode.UNKNOWN_ADDON, message="a", subject="Glitter Coat")
        same = RuleIssue(code=IssueCode.UNKNOWN_ADDON, message="b", subject="Glitter Coat")
        other = RuleIssue(code=IssueCode.UNKNOWN_ADDON, message="c", subject="Wax")

        assert merge_issues([issue], [same, other]) == [issue, other]


class TestDecompose:

    def test_two_service_order(self, decomposer):
        order = make_order("Home Cleaning, Mobile Car Wash", total="100.00")
        items = decomposer.decompose(order)
        jobs = decomposer.materialize(order, items)

        assert decomposer.is_splittable(items)
        assert [job.service for job in jobs] == [ServiceKind.HOME_CLEANING, ServiceKind.MOBILE_CAR_WASH]
        assert [job.price_share for job in jobs] == [Decimal("50.00"), Decimal("50.00")]
        assert len({job.job_id for job in jobs}) == 2
        assert all(job.status == JobStatus.UNASSIGNED for job in jobs)
        assert all(job.assigned_worker_id is None for job in jobs)
        assert [job.payout for job in jobs] == [Decimal("40"), Decimal("25")]
        assert [job.expected_duration_minutes for job in jobs] == [120, 25]

    def test_single_service_order_is_not_splittable(self, decomposer):
        items = decomposer.decompose(make_order("Mobile Car Wash - Supreme Shine"))
        assert not decomposer.is_splittable(items)

    def test_decomposition_is_idempotent(self, decomposer):
        order = make_order("Mobile Car Wash - Signature Shine (Clay Bar Treatment) [SUV], Laundry, Home Cleaning")

        first = decomposer.materialize(order, decomposer.decompose(order))
        second = decomposer.materialize(order, decomposer.decompose(order))

        assert [job.model_dump() for job in first] == [job.model_dump() for job in second]

    def test_price_shares_sum_to_order_total(self, decomposer):
        order = make_order("Home Cleaning, Mobile Car Wash, Laundry", total="100.00")
        jobs = decomposer.materialize(order, decomposer.decompose(order))

        assert sum(job.price_share for job in jobs) == Decimal("100.00")

    def test_grouped_laundry_keeps_first_position_for_job_id(self, decomposer):
        order = make_order("Laundry - Express, Home Cleaning, Laundry - Express")
        jobs = decomposer.materialize(order, decomposer.decompose(order))

        assert len(jobs) == 2
        assert jobs[0].job_id == derive_job_id(order.order_id, 0)
        assert jobs[1].job_id == derive_job_id(order.order_id, 1)
        assert jobs[0].expected_duration_minutes == 24 * 60
        assert jobs[0].crew is None

    def test_unknown_service_becomes_review_job(self, decomposer):
        order = make_order("Pool Cleaning, Home Cleaning")
        jobs = decomposer.materialize(order, decomposer.decompose(order))

        unknown = jobs[0]
        assert unknown.service == ServiceKind.UNKNOWN
        assert unknown.needs_review
        assert unknown.payout == Decimal("0")
        assert unknown.expected_duration_minutes == 0
        assert unknown.crew is None
        assert not jobs[1].needs_review

    def test_eco_bonus_waits_for_assignment(self, decomposer):
        order = make_order("Mobile Car Wash - Express Shine (Eco-friendly Products), Home Cleaning")
        job = decomposer.materialize(order, decomposer.decompose(order))[0]

        assert job.eco_requested
        assert job.payout_breakdown.eco_bonus == Decimal("0")
        assert job.payout == Decimal("29")

    def test_jobs_carry_extras(self, decomposer):
        order = make_order("Mobile Car Wash - Supreme Shine (Interior Shampoo), Home Cleaning - Deep")
        car_wash, cleaning = decomposer.materialize(order, decomposer.decompose(order), first_time=True)

        assert "Interior Shampoo after photo" in car_wash.photo_requirements
        assert car_wash.perks == ["Free Car Freshener"]
        assert car_wash.crew.crew_type == "solo"
        assert cleaning.perks == ["Free Candle"]
        assert cleaning.catalog_version == decomposer.catalog.version


class TestLaundryBagsFromBookingForm:

    def test_quantity_without_bag_type_counts_bags(self, decomposer):
        order = make_order(json.dumps([
            {"service": "Laundry Service", "tier": "Standard", "addons": ["Eco-friendly Detergent"], "quantity": 3},
            {"service": "Home Cleaning"},
        ]))
        items = decomposer.decompose(order)
        laundry = decomposer.materialize(order, items)[0]

        assert items[0].attributes.total_bags == 3
        assert laundry.payout_breakdown.add_ons[0].quantity == 3
        assert laundry.payout == Decimal("45")

    def test_grouped_entries_sum_their_bags(self, decomposer):
        order = make_order(json.dumps([
            {"service": "Laundry Service", "tier": "Standard", "addons": ["Eco-friendly Detergent"], "quantity": 3},
            {"service": "Mobile Car Wash"},
            {"service": "Laundry Service", "tier": "Standard", "quantity": 2},
        ]))
        items = decomposer.decompose(order)
        laundry = decomposer.materialize(order, items)[0]

        assert items[0].original_indexes == [0, 2]
        assert items[0].attributes.total_bags == 5
        assert laundry.payout == Decimal("55")


class TestEstimate:

    def test_estimate_returns_both_breakdowns(self, decomposer):
        duration, payout = decomposer.estimate(make_item(ServiceKind.MOBILE_CAR_WASH, "Signature Shine",
                                                         ["Clay Bar Treatment"], vehicle_type="SUV"))
        assert duration.adjusted_total == 60
        assert payout.total == Decimal("50")

    def test_line_item_round_trip(self, decomposer):
        order = make_order("Home Cleaning - Deep (Oven Cleaning) [2 bed, 2 bath, Condo], Mobile Car Wash")
        job = decomposer.materialize(order, decomposer.decompose(order))[0]
        item = decomposer.line_item_for(job)

        assert item.original_index == job.line_item_index
        assert decomposer.estimator.estimate(item).adjusted_total == job.expected_duration_minutes
